from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class JobStatus(str, Enum):
    queued = "queued"
    processing = "processing"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.completed, JobStatus.failed)


class OutcomeKind(str, Enum):
    completed = "completed"
    failed = "failed"
    timeout = "timeout"


class StatusCheck(BaseModel):
    status: JobStatus
    payload: Optional[dict] = None
    reason: Optional[str] = None


class PollingConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    initial_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=5000, ge=0)
    backoff_multiplier: float = Field(default=1.5, ge=1.0)
    max_attempts: int = Field(default=60, ge=1)  # ~5 minutes at the 5s cap

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> "PollingConfig":
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        return self


class PollJob(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    submitted_at: datetime = Field(default_factory=datetime.now)


class PollAttempt(BaseModel):
    attempt_number: int
    delay_before_ms: int
    status: Optional[JobStatus] = None
    result_payload: Optional[dict] = None
    error: Optional[str] = None


class PollOutcome(BaseModel):
    """Terminal result of polling a single job"""

    model_config = ConfigDict(frozen=True)

    outcome: OutcomeKind
    job_id: str
    payload: Optional[dict] = None
    reason: Optional[str] = None
    attempts: List[PollAttempt] = Field(default_factory=list)
    elapsed_time: float = 0.0

    @classmethod
    def completed(cls, job_id: str, payload: Optional[dict], **kwargs) -> "PollOutcome":
        return cls(outcome=OutcomeKind.completed, job_id=job_id, payload=payload, **kwargs)

    @classmethod
    def failed(cls, job_id: str, reason: str, **kwargs) -> "PollOutcome":
        return cls(outcome=OutcomeKind.failed, job_id=job_id, reason=reason, **kwargs)

    @classmethod
    def timed_out(
        cls, job_id: str, reason: Optional[str] = None, **kwargs
    ) -> "PollOutcome":
        return cls(outcome=OutcomeKind.timeout, job_id=job_id, reason=reason, **kwargs)

    @property
    def calls(self) -> int:
        return len(self.attempts)

    @property
    def delays_ms(self) -> List[int]:
        """Delays slept between consecutive attempts"""
        return [a.delay_before_ms for a in self.attempts[1:]]

    def to_response(self) -> dict:
        body = {"outcome": self.outcome.value}
        if self.payload is not None:
            body["payload"] = self.payload
        if self.reason is not None:
            body["reason"] = self.reason
        return body
