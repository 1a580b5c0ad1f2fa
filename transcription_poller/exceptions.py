class TranscriptionError(Exception):
    """Base class for errors raised before a transcription job exists"""


class ConfigurationError(TranscriptionError):
    pass


class RecordingDownloadError(TranscriptionError):
    def __init__(self, url: str, status: int, reason: str = ""):
        super().__init__(f"Failed to download audio: {reason or status}")
        self.url = url
        self.status = status


class UploadError(TranscriptionError):
    def __init__(self, status: int, body: str):
        super().__init__(f"Audio upload failed with HTTP {status}: {body}")
        self.status = status
        self.body = body


class SubmissionError(TranscriptionError):
    def __init__(self, status: int, body: str):
        super().__init__(f"Transcription request failed with HTTP {status}: {body}")
        self.status = status
        self.body = body


class UnexpectedStatusError(TranscriptionError):
    """The provider reported a job status the poller does not know"""

    def __init__(self, job_id: str, status: object):
        super().__init__(f"Unexpected status {status!r} for job {job_id}")
        self.job_id = job_id
        self.status = status
