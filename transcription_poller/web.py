from typing import Optional

import aiohttp
from aiohttp import web
from loguru import logger
from transcription_poller.client import TranscriptionClient
from transcription_poller.config import Settings
from transcription_poller.exceptions import (
    ConfigurationError,
    SubmissionError,
    TranscriptionError,
    UploadError,
)
from transcription_poller.log import setup_logging
from transcription_poller.models import OutcomeKind, PollOutcome

MAX_AUDIO_BYTES = 100 * 1024 * 1024
SETTINGS_KEY = web.AppKey("settings", Settings)
DEFAULT_TELEPHONY_LANGUAGE = "hi"


def outcome_to_response(outcome: PollOutcome) -> web.Response:
    """Maps a poll outcome onto the HTTP response returned to the uploader"""
    if outcome.outcome == OutcomeKind.completed:
        payload = outcome.payload or {}
        return web.json_response(
            {"text": payload.get("text") or "", "transcriptId": outcome.job_id}
        )
    if outcome.outcome == OutcomeKind.failed:
        return web.json_response(
            {"error": "Transcription failed", "reason": outcome.reason}, status=500
        )
    return web.json_response({"error": "Transcription timeout"}, status=408)


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


async def handle_upload_audio(request: web.Request) -> web.Response:
    settings = request.app[SETTINGS_KEY]
    form = await request.post()
    audio = form.get("audio")

    if not isinstance(audio, web.FileField):
        return _error("No audio file provided", 400)

    try:
        api_key = settings.require_api_key()
    except ConfigurationError as e:
        logger.error(str(e))
        return _error("Speech-to-text service not configured", 500)

    audio_bytes = audio.file.read()
    logger.info(
        f"Received audio file {audio.filename!r} "
        f"({len(audio_bytes)} bytes, {audio.content_type})"
    )
    if not audio_bytes:
        return _error("Empty audio file received", 400)

    async with TranscriptionClient(
        api_key, base_url=settings.base_url, config=settings.polling
    ) as client:
        try:
            outcome = await client.transcribe(audio_bytes, settings.speech_model)
        except UploadError:
            return _error("Failed to upload audio", 500)
        except SubmissionError:
            return _error("Failed to create transcription job", 500)
        except aiohttp.ClientError as e:
            logger.error(f"Upload audio error: {e!r}")
            return _error("Internal server error", 500)
        except Exception:
            logger.exception("Upload audio error")
            return _error("Internal server error", 500)

    return outcome_to_response(outcome)


def _stt_failure(details: str) -> web.Response:
    return web.json_response(
        {"error": "Failed to transcribe audio", "details": details}, status=500
    )


def telephony_outcome_to_response(outcome: PollOutcome) -> web.Response:
    """Maps a poll outcome onto the telephony speech-to-text response"""
    if outcome.outcome == OutcomeKind.completed:
        payload = outcome.payload or {}
        return web.json_response(
            {
                "success": True,
                "text": payload.get("text"),
                "confidence": payload.get("confidence"),
                "language": payload.get("language_code"),
            }
        )
    if outcome.outcome == OutcomeKind.failed:
        return _stt_failure(f"Transcription failed: {outcome.reason}")
    return _stt_failure("Transcription timeout")


async def handle_telephony_stt(request: web.Request) -> web.Response:
    """Transcribes a call recording fetched from the telephony provider"""
    settings = request.app[SETTINGS_KEY]
    try:
        body = await request.json()
    except ValueError as e:
        logger.error(f"Telephony STT received invalid JSON: {e}")
        return _stt_failure("Request body is not valid JSON")

    if not isinstance(body, dict) or not body.get("recordingUrl"):
        return _error("recordingUrl is required", 400)

    recording_url = body["recordingUrl"]
    language = body.get("language") or DEFAULT_TELEPHONY_LANGUAGE
    logger.info(f"Processing recording {recording_url} ({language})")

    try:
        api_key = settings.require_api_key()
    except ConfigurationError as e:
        logger.error(str(e))
        return _error("STT service not configured", 500)

    async with TranscriptionClient(
        api_key, base_url=settings.base_url, config=settings.polling
    ) as client:
        try:
            audio = await client.download(recording_url)
            outcome = await client.transcribe(
                audio, settings.speech_model, language_code=language
            )
        except (TranscriptionError, aiohttp.ClientError) as e:
            logger.error(f"Telephony STT error: {e!r}")
            return _stt_failure(str(e) or repr(e))
        except Exception as e:
            logger.exception("Telephony STT error")
            return _stt_failure(str(e) or repr(e))

    return telephony_outcome_to_response(outcome)


def create_app(settings: Optional[Settings] = None) -> web.Application:
    app = web.Application(client_max_size=MAX_AUDIO_BYTES)
    app[SETTINGS_KEY] = settings or Settings.from_env()
    app.router.add_post("/upload-audio", handle_upload_audio)
    app.router.add_post("/telephony/stt", handle_telephony_stt)
    return app


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    web.run_app(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
