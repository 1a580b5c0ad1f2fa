import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field
from transcription_poller.client import DEFAULT_BASE_URL, DEFAULT_SPEECH_MODEL
from transcription_poller.exceptions import ConfigurationError
from transcription_poller.models import PollingConfig

# Environment variable -> PollingConfig field
POLLING_ENV = {
    "POLL_INITIAL_DELAY_MS": "initial_delay_ms",
    "POLL_MAX_DELAY_MS": "max_delay_ms",
    "POLL_BACKOFF_MULTIPLIER": "backoff_multiplier",
    "POLL_MAX_ATTEMPTS": "max_attempts",
}


class Settings(BaseModel):
    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    speech_model: str = DEFAULT_SPEECH_MODEL
    polling: PollingConfig = Field(default_factory=PollingConfig)
    log_level: str = "INFO"
    host: str = "localhost"
    port: int = 8080

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, dotenv: bool = True
    ) -> "Settings":
        """Builds settings from environment variables, reading .env first"""
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ

        polling = {
            field: environ[name]
            for name, field in POLLING_ENV.items()
            if environ.get(name)
        }
        return cls(
            api_key=environ.get("ASSEMBLYAI_API_KEY") or None,
            base_url=environ.get("ASSEMBLYAI_BASE_URL") or DEFAULT_BASE_URL,
            speech_model=environ.get("TRANSCRIPTION_SPEECH_MODEL")
            or DEFAULT_SPEECH_MODEL,
            polling=PollingConfig(**polling),
            log_level=environ.get("LOG_LEVEL", "INFO").upper(),
            host=environ.get("HOST", "localhost"),
            port=int(environ.get("PORT", 8080)),
        )

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("ASSEMBLYAI_API_KEY is not configured")
        return self.api_key
