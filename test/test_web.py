import json
from typing import AsyncGenerator

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from transcription_poller.client import TranscriptionClient
from transcription_poller.config import Settings
from transcription_poller.models import PollingConfig, PollOutcome
from transcription_poller.web import create_app, outcome_to_response
from transcription_server import TranscriptionServer

AUDIO = b"RIFF" + b"\x00" * 4096


@pytest.fixture
def provider_class():
    return TranscriptionServer


@pytest_asyncio.fixture
async def provider(
    unused_tcp_port_factory, provider_class
) -> AsyncGenerator[TranscriptionServer, None]:
    port = unused_tcp_port_factory()
    server_instance = provider_class(completion_time=0.3, error_rate=0.0)
    await server_instance.start(port=port)
    try:
        yield server_instance
    finally:
        await server_instance.stop()


@pytest.fixture
def settings(provider) -> Settings:
    return Settings(
        api_key=provider.api_key,
        base_url=provider.base_url,
        polling=PollingConfig(
            initial_delay_ms=50, max_delay_ms=100, backoff_multiplier=2.0, max_attempts=20
        ),
    )


@pytest_asyncio.fixture
async def app_url(unused_tcp_port_factory, settings) -> AsyncGenerator[str, None]:
    """Serve the transcription routes on a random port and yield their base URL."""
    port = unused_tcp_port_factory()
    runner = web.AppRunner(create_app(settings))
    await runner.setup()
    await web.TCPSite(runner, "localhost", port).start()
    try:
        yield f"http://localhost:{port}"
    finally:
        await runner.cleanup()


async def _post(url, **kwargs):
    async with aiohttp.ClientSession() as session:
        async with session.post(url, **kwargs) as response:
            assert response.content_type == "application/json"
            return response.status, await response.json()


@pytest.fixture
def upload(app_url):
    """Post a multipart form to the upload-audio route."""

    async def post(audio=AUDIO, field="audio"):
        form = aiohttp.FormData()
        form.add_field(field, audio, filename="clip.wav", content_type="audio/wav")
        return await _post(f"{app_url}/upload-audio", data=form)

    return post


@pytest.fixture
def stt(app_url):
    """Post a JSON body to the telephony speech-to-text route."""

    async def post(body=None, raw=None):
        if raw is not None:
            return await _post(
                f"{app_url}/telephony/stt",
                data=raw,
                headers={"Content-Type": "application/json"},
            )
        return await _post(f"{app_url}/telephony/stt", json=body)

    return post


@pytest.mark.asyncio
async def test_upload_audio_returns_transcript(upload, provider):
    status, body = await upload()

    assert status == 200
    assert body["text"] == "hello world"
    assert body["transcriptId"] in provider.jobs


@pytest.mark.asyncio
async def test_missing_audio_field(upload, provider):
    status, body = await upload(field="file")

    assert status == 400
    assert body == {"error": "No audio file provided"}
    assert provider.jobs == {}


@pytest.mark.asyncio
async def test_empty_audio_file(upload, provider):
    status, body = await upload(audio=b"")

    assert status == 400
    assert body == {"error": "Empty audio file received"}
    assert provider.jobs == {}


@pytest.mark.asyncio
async def test_missing_api_key(upload, settings):
    settings.api_key = None

    status, body = await upload()

    assert status == 500
    assert body == {"error": "Speech-to-text service not configured"}


@pytest.mark.asyncio
async def test_upload_rejected(upload, provider):
    provider.fail_upload = True

    status, body = await upload()

    assert status == 500
    assert body == {"error": "Failed to upload audio"}


@pytest.mark.asyncio
async def test_submission_rejected(upload, provider):
    provider.fail_submit = True

    status, body = await upload()

    assert status == 500
    assert body == {"error": "Failed to create transcription job"}


@pytest.mark.asyncio
async def test_transcription_failed(upload, provider):
    provider.error_rate = 1.0

    status, body = await upload()

    assert status == 500
    assert body == {"error": "Transcription failed", "reason": "Audio file is corrupt"}


@pytest.mark.asyncio
async def test_transcription_timeout(upload, provider, settings):
    provider.completion_time = 30.0
    settings.polling.max_attempts = 2

    status, body = await upload()

    assert status == 408
    assert body == {"error": "Transcription timeout"}


@pytest.mark.asyncio
async def test_provider_unreachable(upload, settings, unused_tcp_port_factory):
    settings.base_url = f"http://localhost:{unused_tcp_port_factory()}/v2"

    status, body = await upload()

    assert status == 500
    assert body == {"error": "Internal server error"}


@pytest.mark.parametrize(
    "outcome, expected_status, expected_body",
    [
        (
            PollOutcome.completed("t1", {"text": None}),
            200,
            {"text": "", "transcriptId": "t1"},
        ),
        (
            PollOutcome.failed("t2", "bad audio"),
            500,
            {"error": "Transcription failed", "reason": "bad audio"},
        ),
        (PollOutcome.timed_out("t3"), 408, {"error": "Transcription timeout"}),
    ],
)
def test_outcome_to_response(outcome, expected_status, expected_body):
    response = outcome_to_response(outcome)

    assert response.status == expected_status
    assert json.loads(response.body) == expected_body


class MalformedUploadServer(TranscriptionServer):
    async def handle_upload(self, request):
        return web.json_response({"unexpected": True})


@pytest.mark.asyncio
@pytest.mark.parametrize("provider_class", [MalformedUploadServer])
async def test_upload_response_without_url(upload, provider):
    status, body = await upload()

    assert status == 500
    assert body == {"error": "Failed to upload audio"}
    assert provider.jobs == {}


@pytest.mark.asyncio
async def test_unexpected_error_returns_json(upload, monkeypatch):
    async def broken_transcribe(self, *args, **kwargs):
        raise KeyError("upload_url")

    monkeypatch.setattr(TranscriptionClient, "transcribe", broken_transcribe)

    status, body = await upload()

    assert status == 500
    assert body == {"error": "Internal server error"}


@pytest.mark.asyncio
async def test_telephony_stt_transcribes_recording(stt, provider):
    provider.recordings["call-1.wav"] = AUDIO

    status, body = await stt({"recordingUrl": provider.recording_url("call-1.wav")})

    assert status == 200
    assert body == {
        "success": True,
        "text": "hello world",
        "confidence": 0.93,
        "language": "hi",
    }
    (job,) = provider.jobs.values()
    assert job["request"]["language_code"] == "hi"


@pytest.mark.asyncio
async def test_telephony_stt_uses_requested_language(stt, provider):
    provider.recordings["call-2.wav"] = AUDIO

    status, body = await stt(
        {"recordingUrl": provider.recording_url("call-2.wav"), "language": "en_us"}
    )

    assert status == 200
    assert body["language"] == "en_us"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{}, {"language": "hi"}, {"recordingUrl": ""}, []])
async def test_telephony_stt_requires_recording_url(stt, provider, payload):
    status, body = await stt(payload)

    assert status == 400
    assert body == {"error": "recordingUrl is required"}
    assert provider.jobs == {}


@pytest.mark.asyncio
async def test_telephony_stt_invalid_json(stt):
    status, body = await stt(raw="not json")

    assert status == 500
    assert body["error"] == "Failed to transcribe audio"


@pytest.mark.asyncio
async def test_telephony_stt_missing_api_key(stt, provider, settings):
    provider.recordings["call-3.wav"] = AUDIO
    settings.api_key = None

    status, body = await stt({"recordingUrl": provider.recording_url("call-3.wav")})

    assert status == 500
    assert body == {"error": "STT service not configured"}


@pytest.mark.asyncio
async def test_telephony_stt_missing_recording(stt, provider):
    status, body = await stt({"recordingUrl": provider.recording_url("missing.wav")})

    assert status == 500
    assert body["error"] == "Failed to transcribe audio"
    assert body["details"].startswith("Failed to download audio")
    assert provider.jobs == {}


@pytest.mark.asyncio
async def test_telephony_stt_transcription_failed(stt, provider):
    provider.recordings["call-4.wav"] = AUDIO
    provider.error_rate = 1.0

    status, body = await stt({"recordingUrl": provider.recording_url("call-4.wav")})

    assert status == 500
    assert body == {
        "error": "Failed to transcribe audio",
        "details": "Transcription failed: Audio file is corrupt",
    }


@pytest.mark.asyncio
async def test_telephony_stt_timeout(stt, provider, settings):
    provider.recordings["call-5.wav"] = AUDIO
    provider.completion_time = 30.0
    settings.polling.max_attempts = 2

    status, body = await stt({"recordingUrl": provider.recording_url("call-5.wav")})

    assert status == 500
    assert body == {
        "error": "Failed to transcribe audio",
        "details": "Transcription timeout",
    }
