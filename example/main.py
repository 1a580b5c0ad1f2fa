import asyncio

from transcription_poller.client import TranscriptionClient
from transcription_poller.models import OutcomeKind, PollingConfig
from transcription_server import TranscriptionServer


async def status_changed(attempt):
    print(f"Attempt {attempt.attempt_number}: status changed to {attempt.status.value}")


async def main():
    PORT = 8000
    server = TranscriptionServer(completion_time=6.0, error_rate=0.05)
    await server.start(port=PORT)
    print(f"Server started on {server.base_url}")

    config = PollingConfig(
        initial_delay_ms=500, max_delay_ms=2000, backoff_multiplier=1.5, max_attempts=20
    )

    async with TranscriptionClient(
        server.api_key, server.base_url, config, on_status_change=status_changed
    ) as client:
        outcome = await client.transcribe(b"\x00\x01" * 8000)

    if outcome.outcome == OutcomeKind.completed:
        print(f"Transcript: {outcome.payload['text']}")
    elif outcome.outcome == OutcomeKind.failed:
        print(f"Transcription failed: {outcome.reason}")
    else:
        print("Transcription timed out, try again later")
    print(f"Attempts: {outcome.calls}, delays: {outcome.delays_ms}")
    print(f"Total time: {outcome.elapsed_time:.3f}s")

    await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
