import asyncio
from typing import Any, Callable, Optional

import aiohttp
from loguru import logger
from transcription_poller.exceptions import (
    RecordingDownloadError,
    SubmissionError,
    UnexpectedStatusError,
    UploadError,
)
from transcription_poller.models import (
    JobStatus,
    PollAttempt,
    PollingConfig,
    PollJob,
    PollOutcome,
    StatusCheck,
)
from transcription_poller.poller import BoundedPoller

DEFAULT_BASE_URL = "https://api.assemblyai.com/v2"
DEFAULT_SPEECH_MODEL = "universal"

# Provider status values mapped onto the poller's job states
PROVIDER_STATUSES = {
    "queued": JobStatus.queued,
    "processing": JobStatus.processing,
    "completed": JobStatus.completed,
    "error": JobStatus.failed,
}


class TranscriptionClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        config: Optional[PollingConfig] = None,
        on_status_change: Optional[Callable[[PollAttempt], Any]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.config = config or PollingConfig()
        self.logger = logger
        self.poller = BoundedPoller(self.config, on_status_change=on_status_change)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "TranscriptionClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def _auth_headers(self) -> dict:
        return {"Authorization": self.api_key}

    async def download(self, url: str) -> bytes:
        """Fetches a recording from a third-party URL (no provider auth sent)"""
        async with self.session.get(url) as response:
            if response.status >= 400:
                self.logger.error(
                    f"Recording download failed ({response.status}) at {url}"
                )
                raise RecordingDownloadError(url, response.status, response.reason)
            audio = await response.read()

        self.logger.debug(f"Downloaded {len(audio)} bytes from {url}")
        return audio

    async def upload(self, audio: bytes) -> str:
        """Uploads raw audio and returns the provider URL it is stored at"""
        url = f"{self.base_url}/upload"
        headers = {**self._auth_headers, "Content-Type": "application/octet-stream"}

        async with self.session.post(url, data=audio, headers=headers) as response:
            if response.status >= 400:
                body = await response.text()
                self.logger.error(f"Audio upload failed ({response.status}): {body}")
                raise UploadError(response.status, body)
            data = await response.json()
            if not data.get("upload_url"):
                self.logger.error(f"Upload response has no upload_url: {data}")
                raise UploadError(response.status, str(data))

        self.logger.debug(f"Uploaded {len(audio)} bytes of audio")
        return data["upload_url"]

    async def submit(
        self,
        audio_url: str,
        speech_model: str = DEFAULT_SPEECH_MODEL,
        language_code: Optional[str] = None,
    ) -> PollJob:
        """Creates a transcription job for previously uploaded audio"""
        url = f"{self.base_url}/transcript"
        payload = {"audio_url": audio_url, "speech_model": speech_model}
        if language_code:
            payload["language_code"] = language_code

        async with self.session.post(
            url, json=payload, headers=self._auth_headers
        ) as response:
            if response.status >= 400:
                body = await response.text()
                self.logger.error(
                    f"Transcription request failed ({response.status}): {body}"
                )
                raise SubmissionError(response.status, body)
            data = await response.json()
            if not data.get("id"):
                self.logger.error(f"Transcription response has no job id: {data}")
                raise SubmissionError(response.status, str(data))

        job = PollJob(job_id=data["id"])
        self.logger.info(f"Transcription job {job.job_id} submitted")
        return job

    async def check_status(self, job_id: str) -> StatusCheck:
        """Fetches the status of a transcription job from the provider"""
        url = f"{self.base_url}/transcript/{job_id}"

        try:
            async with self.session.get(url, headers=self._auth_headers) as response:
                response.raise_for_status()
                data = await response.json()
        except aiohttp.ClientResponseError as e:
            self.logger.error(f"HTTP error {e.status} at {url}: {e.message}")
            raise

        raw_status = data.get("status")
        status = PROVIDER_STATUSES.get(raw_status)
        if status is None:
            raise UnexpectedStatusError(job_id, raw_status)

        if status == JobStatus.failed:
            return StatusCheck(status=status, reason=data.get("error"))
        if status == JobStatus.completed:
            return StatusCheck(status=status, payload=data)
        return StatusCheck(status=status)

    async def wait_for_transcript(
        self, job_id: str, cancel_event: Optional[asyncio.Event] = None
    ) -> PollOutcome:
        return await self.poller.poll(job_id, self.check_status, cancel_event)

    async def transcribe(
        self,
        audio: bytes,
        speech_model: str = DEFAULT_SPEECH_MODEL,
        language_code: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PollOutcome:
        """Upload audio, request a transcript and wait for the job to finish.

        Upload and submission failures raise; once a job exists the result is
        always a ``PollOutcome``.
        """
        audio_url = await self.upload(audio)
        job = await self.submit(audio_url, speech_model, language_code)
        return await self.wait_for_transcript(job.job_id, cancel_event)
