import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from loguru import logger
from transcription_poller.models import (
    JobStatus,
    PollAttempt,
    PollingConfig,
    PollOutcome,
    StatusCheck,
)

StatusChecker = Callable[[str], Awaitable[StatusCheck]]

DEFAULT_FAILURE_REASON = "transcription failed"
CANCELLED_REASON = "cancelled"


class BoundedPoller:
    """Waits on an asynchronous job with capped multiplicative backoff.

    Every call to ``poll`` resolves to exactly one ``PollOutcome`` after at most
    ``config.max_attempts`` status checks. Errors raised by the status checker
    are treated as transient and use up an attempt; a ``failed`` status ends
    polling immediately.
    """

    def __init__(
        self,
        config: Optional[PollingConfig] = None,
        on_status_change: Optional[Callable[[PollAttempt], Any]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or PollingConfig()
        self.on_status_change = on_status_change
        self.logger = logger
        self._sleep = sleep

    def next_delay(self, delay_ms: int) -> int:
        """Grows the delay by the backoff multiplier, capped at max_delay_ms"""
        grown = int(round(delay_ms * self.config.backoff_multiplier))
        return min(grown, self.config.max_delay_ms)

    def delay_schedule(self, n: int) -> List[int]:
        delays = []
        delay = self.config.initial_delay_ms
        for _ in range(n):
            delays.append(delay)
            delay = self.next_delay(delay)
        return delays

    async def _check_once(
        self, job_id: str, check_status: StatusChecker
    ) -> Tuple[Optional[StatusCheck], Optional[str]]:
        """Runs one status check, turning any error into a transient result"""
        try:
            return await check_status(job_id), None
        except Exception as e:
            self.logger.warning(f"Status check for job {job_id} failed: {e!r}")
            return None, repr(e)

    async def _handle_status_change(
        self, attempt: PollAttempt, last_status: Optional[JobStatus]
    ) -> None:
        """Invoke the status change callback if the status has changed"""
        if attempt.status is None or attempt.status == last_status:
            return
        self.logger.debug(f"Job status changed to {attempt.status.value}")
        if self.on_status_change is None:
            return
        try:
            result = self.on_status_change(attempt)
            if inspect.isawaitable(result):
                await result
        except Exception:
            self.logger.exception(
                f"Status change callback failed on attempt {attempt.attempt_number}"
            )

    async def _wait_before_retry(self, delay_ms: int) -> None:
        self.logger.debug(
            f"Job not finished, waiting {delay_ms}ms before next attempt"
        )
        await self._sleep(delay_ms / 1000)

    async def poll(
        self,
        job_id: str,
        check_status: StatusChecker,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PollOutcome:
        """Poll ``check_status`` until the job completes, fails or attempts run out.

        The delay is slept only between attempts: once the final attempt comes
        back non-terminal the poller returns ``TimedOut`` without a trailing
        sleep. Errors raised by ``on_status_change`` are logged and ignored.
        """
        start_time = asyncio.get_event_loop().time()
        attempts: List[PollAttempt] = []
        attempt = 0
        delay = self.config.initial_delay_ms
        delay_before = 0
        last_status = None

        def elapsed() -> float:
            return asyncio.get_event_loop().time() - start_time

        while attempt < self.config.max_attempts:
            if cancel_event is not None and cancel_event.is_set():
                self.logger.info(
                    f"Polling for job {job_id} cancelled after {attempt} attempts"
                )
                return PollOutcome.timed_out(
                    job_id, CANCELLED_REASON, attempts=attempts, elapsed_time=elapsed()
                )

            check, error = await self._check_once(job_id, check_status)
            record = PollAttempt(
                attempt_number=attempt + 1,
                delay_before_ms=delay_before,
                status=check.status if check else None,
                result_payload=check.payload if check else None,
                error=error,
            )
            attempts.append(record)

            await self._handle_status_change(record, last_status)
            if record.status is not None:
                last_status = record.status

            if check is not None and check.status == JobStatus.completed:
                self.logger.info(
                    f"Job {job_id} completed after {record.attempt_number} attempts"
                )
                return PollOutcome.completed(
                    job_id, check.payload, attempts=attempts, elapsed_time=elapsed()
                )

            if check is not None and check.status == JobStatus.failed:
                reason = check.reason or DEFAULT_FAILURE_REASON
                self.logger.error(f"Job {job_id} failed: {reason}")
                return PollOutcome.failed(
                    job_id, reason, attempts=attempts, elapsed_time=elapsed()
                )

            attempt += 1
            if attempt < self.config.max_attempts:
                await self._wait_before_retry(delay)
                delay_before = delay
                delay = self.next_delay(delay)

        self.logger.error(
            f"Job {job_id} did not finish within {self.config.max_attempts} attempts"
        )
        return PollOutcome.timed_out(job_id, attempts=attempts, elapsed_time=elapsed())
