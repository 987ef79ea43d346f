"""Cooperative cancellation token passed down every pipeline call chain."""
import asyncio
from typing import Any, Awaitable, Optional

from shared.errors import JobCancelledError


class CancellationToken:
    """Per-job cancellation flag that running code checks cooperatively.

    `cancel()` only sets the flag. Pipelines call `raise_if_cancelled()` at
    stage and item boundaries, and wrap slow external calls with `run()` so a
    pending call is abandoned as soon as cancellation is requested.
    """

    def __init__(self, job_id: str):
        self.job_id = job_id
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelledError(self.job_id)

    async def wait(self) -> None:
        await self._event.wait()

    async def run(self, awaitable: Awaitable[Any], timeout: Optional[float] = None) -> Any:
        """Await `awaitable` unless cancellation (or `timeout`) comes first."""
        self.raise_if_cancelled()

        call = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {call, waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            call.cancel()
            waiter.cancel()
            raise

        waiter.cancel()
        if call in done:
            return call.result()

        call.cancel()
        await asyncio.gather(call, return_exceptions=True)
        if self._event.is_set():
            raise JobCancelledError(self.job_id)
        raise asyncio.TimeoutError(f"Call did not finish within {timeout} seconds")

    async def sleep(self, delay: float) -> None:
        """Sleep that wakes up early with JobCancelledError on cancellation."""
        await self.run(asyncio.sleep(delay))
