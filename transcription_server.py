import random
import uuid
from datetime import datetime

from aiohttp import web
from loguru import logger


class TranscriptionServer:
    """In-process stand-in for an AssemblyAI-style transcription API"""

    def __init__(
        self,
        completion_time: float = 10.0,
        error_rate: float = 0.1,
        http_error_rate: float = 0.0,
        api_key: str = "test-key",
        transcript_text: str = "hello world",
    ):
        self.completion_time = completion_time
        self.error_rate = error_rate
        self.http_error_rate = http_error_rate
        self.api_key = api_key
        self.transcript_text = transcript_text
        self.fail_upload = False
        self.fail_submit = False
        self.jobs = {}
        self.recordings = {}
        self.status_requests = 0
        self.port = None
        self.runner = None
        self.app = web.Application()
        self.app.router.add_post("/v2/upload", self.handle_upload)
        self.app.router.add_post("/v2/transcript", self.handle_submit)
        self.app.router.add_get("/v2/transcript/{job_id}", self.handle_status)
        self.app.router.add_get("/recordings/{name}", self.handle_recording)
        self.logger = logger

    def _authorized(self, request) -> bool:
        return request.headers.get("Authorization") == self.api_key

    async def handle_upload(self, request):
        if not self._authorized(request):
            return web.json_response({"error": "Invalid API key"}, status=401)
        if self.fail_upload:
            return web.json_response({"error": "upload rejected"}, status=500)

        audio = await request.read()
        upload_url = f"https://cdn.example.invalid/upload/{uuid.uuid4().hex}"
        self.logger.info(f"Stored {len(audio)} bytes at {upload_url}")
        return web.json_response({"upload_url": upload_url})

    async def handle_submit(self, request):
        if not self._authorized(request):
            return web.json_response({"error": "Invalid API key"}, status=401)
        if self.fail_submit:
            return web.json_response({"error": "bad request"}, status=400)

        body = await request.json()
        job_id = uuid.uuid4().hex
        self.jobs[job_id] = {"submitted_at": datetime.now(), "request": body}
        self.logger.info(f"Created transcription job {job_id}")
        return web.json_response({"id": job_id, "status": "queued"})

    async def handle_status(self, request):
        self.status_requests += 1
        job_id = request.match_info["job_id"]
        job = self.jobs.get(job_id)
        if job is None:
            return web.json_response({"error": "Transcript not found"}, status=404)

        if random.random() < self.http_error_rate:
            self.logger.info("Returning HTTP 500")
            return web.json_response({"error": "internal error"}, status=500)

        if random.random() < self.error_rate:
            self.logger.info("Returning error status")
            return web.json_response(
                {"id": job_id, "status": "error", "error": "Audio file is corrupt"}
            )

        elapsed = (datetime.now() - job["submitted_at"]).total_seconds()

        if elapsed >= self.completion_time:
            self.logger.info("Returning completed status")
            return web.json_response(
                {
                    "id": job_id,
                    "status": "completed",
                    "text": self.transcript_text,
                    "confidence": 0.93,
                    "language_code": job["request"].get("language_code", "en_us"),
                }
            )
        status = "queued" if elapsed < self.completion_time / 2 else "processing"
        self.logger.info(f"Returning {status} status (elapsed: {elapsed:.1f}s)")
        return web.json_response({"id": job_id, "status": status})

    async def handle_recording(self, request):
        audio = self.recordings.get(request.match_info["name"])
        if audio is None:
            return web.Response(status=404, text="Recording not found")
        return web.Response(body=audio, content_type="audio/wav")

    def recording_url(self, name: str) -> str:
        return f"http://localhost:{self.port}/recordings/{name}"

    @property
    def base_url(self) -> str:
        return f"http://localhost:{self.port}/v2"

    async def start(self, port: int = 8080):
        self.port = port
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
