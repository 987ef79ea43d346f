"""Cancellation token and job context tests."""
import asyncio
import pytest

from shared.cancellation import CancellationToken
from shared.errors import JobCancelledError
from tests.fakes import drain


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_not_cancelled_initially(self):
        token = CancellationToken("job_1")
        assert not token.cancelled
        token.raise_if_cancelled()

    def test_raise_if_cancelled_after_cancel(self):
        token = CancellationToken("job_1")
        token.cancel()

        with pytest.raises(JobCancelledError) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.job_id == "job_1"

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        token = CancellationToken("job_1")

        async def work():
            return 42

        assert await token.run(work()) == 42

    @pytest.mark.asyncio
    async def test_run_propagates_errors(self):
        token = CancellationToken("job_1")

        async def work():
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await token.run(work())

    @pytest.mark.asyncio
    async def test_run_abandons_pending_call_on_cancel(self):
        """A slow call is abandoned as soon as cancellation is requested."""
        token = CancellationToken("job_1")
        started = asyncio.Event()
        abandoned = asyncio.Event()

        async def slow():
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                abandoned.set()
                raise

        runner = asyncio.create_task(token.run(slow()))
        await started.wait()
        token.cancel()

        with pytest.raises(JobCancelledError):
            await asyncio.wait_for(runner, timeout=1)
        assert abandoned.is_set()

    @pytest.mark.asyncio
    async def test_run_refuses_when_already_cancelled(self):
        token = CancellationToken("job_1")
        token.cancel()

        async def work():
            return 1

        coro = work()
        with pytest.raises(JobCancelledError):
            await token.run(coro)
        coro.close()

    @pytest.mark.asyncio
    async def test_run_timeout(self):
        token = CancellationToken("job_1")

        with pytest.raises(asyncio.TimeoutError):
            await token.run(asyncio.sleep(10), timeout=0.01)
        assert not token.cancelled

    @pytest.mark.asyncio
    async def test_sleep_wakes_on_cancel(self):
        token = CancellationToken("job_1")
        asyncio.get_running_loop().call_later(0.01, token.cancel)

        with pytest.raises(JobCancelledError):
            await asyncio.wait_for(token.sleep(10), timeout=1)


class TestJobContext:
    """Tests for JobContext progress reporting."""

    @pytest.mark.asyncio
    async def test_report_enqueues_in_order(self, make_context):
        ctx, queue = make_context()

        await ctx.report("fetch", 5, "Fetching...")
        await ctx.report("fetch", 30, "Fetched", items=3)

        updates = drain(queue)
        assert [(u.stage, u.percent) for u in updates] == [("fetch", 5), ("fetch", 30)]
        assert updates[1].data == {"items": 3}

    @pytest.mark.asyncio
    async def test_report_never_goes_backwards(self, make_context):
        ctx, queue = make_context()

        await ctx.report("processing", 60)
        await ctx.report("processing", 40)

        assert [u.percent for u in drain(queue)] == [60, 60]
        assert ctx.percent == 60

    @pytest.mark.asyncio
    async def test_report_clamps_to_100(self, make_context):
        ctx, queue = make_context()

        await ctx.report("complete", 140)

        assert drain(queue)[0].percent == 100
