"""Job orchestrator tests."""
import asyncio
from datetime import timedelta
import pytest

from api.models.job import JobStatusEnum, JobTypeEnum
from shared.errors import (
    AlreadyRunning,
    InvalidState,
    JobCancelledError,
    JobNotFound,
    JobRunning,
    NotRunning,
)

TENANT = "tenant-a"
CURATION = JobTypeEnum.CURATION


async def collect(subscription, timeout=2.0):
    """Events up to and including the first terminal one."""
    events = []
    while True:
        event = await subscription.get(timeout=timeout)
        events.append(event)
        if event.is_terminal:
            return events


async def succeed(ctx):
    await ctx.report("fetch", 10, "Fetching...")
    await ctx.report("processing", 60, "Article 1/1", curated=1)
    return {"curated": 1}


def slow_pipeline(started: asyncio.Event):
    """Runs until cancelled, then reports how far it got."""
    async def pipeline(ctx):
        processed = 0
        started.set()
        try:
            while True:
                await ctx.token.sleep(0.01)
                processed += 1
        except JobCancelledError:
            raise JobCancelledError(ctx.job_id, {"processed": processed})
    return pipeline


class TestAdmission:
    """Single-flight admission per (tenant, type)."""

    @pytest.mark.asyncio
    async def test_concurrent_create_admits_exactly_one(self, make_orchestrator):
        orchestrator = make_orchestrator()

        outcomes = await asyncio.gather(
            *(orchestrator.create_job(TENANT, CURATION) for _ in range(5)),
            return_exceptions=True
        )

        admitted = [o for o in outcomes if not isinstance(o, Exception)]
        rejected = [o for o in outcomes if isinstance(o, AlreadyRunning)]
        assert len(admitted) == 1
        assert len(rejected) == 4
        assert all(e.job_id == admitted[0].id for e in rejected)
        assert admitted[0].status == JobStatusEnum.PENDING

    @pytest.mark.asyncio
    async def test_other_tenants_and_types_are_independent(self, make_orchestrator):
        orchestrator = make_orchestrator()

        await orchestrator.create_job(TENANT, CURATION)
        await orchestrator.create_job("tenant-b", CURATION)
        await orchestrator.create_job(TENANT, JobTypeEnum.GENERATION)

        page = await orchestrator.get_jobs()
        assert page.total == 3

    @pytest.mark.asyncio
    async def test_slot_freed_after_terminal(self, make_orchestrator):
        orchestrator = make_orchestrator({CURATION: succeed})
        job = await orchestrator.create_job(TENANT, CURATION)
        await orchestrator.run_job(job)

        second = await orchestrator.create_job(TENANT, CURATION)

        assert second.id != job.id

    @pytest.mark.asyncio
    async def test_run_job_requires_pending(self, make_orchestrator):
        orchestrator = make_orchestrator({CURATION: succeed})
        job = await orchestrator.create_job(TENANT, CURATION)
        await orchestrator.run_job(job)

        with pytest.raises(InvalidState):
            await orchestrator.run_job(job)


class TestExecution:
    """Outcomes, progress and the event stream."""

    @pytest.mark.asyncio
    async def test_success(self, make_orchestrator, publisher, job_repo):
        orchestrator = make_orchestrator({CURATION: succeed})
        job = await orchestrator.create_job(TENANT, CURATION, {"source_ids": None})
        subscription = publisher.subscribe(job.id)

        outcome = await orchestrator.run_job(job)

        assert outcome.status == JobStatusEnum.COMPLETED
        stored = await orchestrator.get_job(job.id)
        assert stored.status == JobStatusEnum.COMPLETED
        assert stored.result == {"curated": 1}
        assert stored.progress_percent == 100
        assert stored.completed_at is not None

        events = await collect(subscription)
        assert [e.event for e in events] == ["start", "progress", "progress", "complete"]
        assert events[2].data["curated"] == 1
        assert events[2].data["jobId"] == job.id
        assert events[-1].data["result"] == {"curated": 1}
        assert not subscription.pending()

    @pytest.mark.asyncio
    async def test_progress_persisted_and_forwarded_in_order(self, make_orchestrator, job_repo):
        orchestrator = make_orchestrator({CURATION: succeed})
        job = await orchestrator.create_job(TENANT, CURATION)
        seen = []

        async def on_progress(update):
            seen.append((update.stage, update.percent))

        await orchestrator.run_job(job, on_progress=on_progress)

        assert seen == [("fetch", 10), ("processing", 60)]
        assert [(stage, pct) for _, stage, pct in job_repo.progress_writes] == seen

    @pytest.mark.asyncio
    async def test_failing_progress_callback_does_not_fail_job(self, make_orchestrator):
        orchestrator = make_orchestrator({CURATION: succeed})
        job = await orchestrator.create_job(TENANT, CURATION)

        async def on_progress(update):
            raise RuntimeError("listener went away")

        outcome = await orchestrator.run_job(job, on_progress=on_progress)

        assert outcome.status == JobStatusEnum.COMPLETED

    @pytest.mark.asyncio
    async def test_pipeline_error_fails_job(self, make_orchestrator, publisher):
        async def explode(ctx):
            await ctx.report("fetch", 5)
            raise RuntimeError("Feed store unreachable")

        orchestrator = make_orchestrator({CURATION: explode})
        job = await orchestrator.create_job(TENANT, CURATION)
        subscription = publisher.subscribe(job.id)

        outcome = await orchestrator.run_job(job)

        assert outcome.status == JobStatusEnum.FAILED
        stored = await orchestrator.get_job(job.id)
        assert stored.error_message == "Feed store unreachable"
        assert stored.result is None
        events = await collect(subscription)
        assert events[-1].event == "error"
        assert events[-1].data["error"] == "Feed store unreachable"

    @pytest.mark.asyncio
    async def test_timeout_fails_job(self, make_orchestrator):
        async def hang(ctx):
            await asyncio.sleep(10)

        orchestrator = make_orchestrator({CURATION: hang}, job_timeout=0.05)
        job = await orchestrator.create_job(TENANT, CURATION)

        outcome = await orchestrator.run_job(job)

        assert outcome.status == JobStatusEnum.FAILED
        assert outcome.error == "Job timed out after 0.05 seconds"
        stored = await orchestrator.get_job(job.id)
        assert stored.status == JobStatusEnum.FAILED

    @pytest.mark.asyncio
    async def test_missing_pipeline_fails_job(self, make_orchestrator):
        orchestrator = make_orchestrator()
        job = await orchestrator.create_job(TENANT, JobTypeEnum.EMAIL_SEND)

        outcome = await orchestrator.run_job(job)

        assert outcome.status == JobStatusEnum.FAILED
        assert "No pipeline configured" in outcome.error


class TestCancellation:
    """Cancellation through the API and through the stored flag."""

    @pytest.mark.asyncio
    async def test_cancel_running_job(self, make_orchestrator, publisher):
        started = asyncio.Event()
        orchestrator = make_orchestrator({CURATION: slow_pipeline(started)})
        job = await orchestrator.create_job(TENANT, CURATION)
        subscription = publisher.subscribe(job.id)
        task = orchestrator.launch(job)
        await started.wait()

        requested = await orchestrator.cancel_job(job.id)
        outcome = await asyncio.wait_for(task, timeout=2)

        assert requested.cancel_requested
        assert outcome.status == JobStatusEnum.CANCELLED
        assert "processed" in outcome.result
        stored = await orchestrator.get_job(job.id)
        assert stored.status == JobStatusEnum.CANCELLED
        assert stored.result is None

        events = await collect(subscription)
        assert [e.event for e in events if e.is_terminal] == ["cancelled"]
        assert events[-1].data["result"] == outcome.result

    @pytest.mark.asyncio
    async def test_stored_flag_cancels_job(self, make_orchestrator, job_repo):
        """A cancel request recorded by another process is picked up by polling."""
        started = asyncio.Event()
        orchestrator = make_orchestrator({CURATION: slow_pipeline(started)})
        job = await orchestrator.create_job(TENANT, CURATION)
        task = orchestrator.launch(job)
        await started.wait()

        await job_repo.request_cancel(job.id)
        outcome = await asyncio.wait_for(task, timeout=2)

        assert outcome.status == JobStatusEnum.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_current(self, make_orchestrator):
        started = asyncio.Event()
        orchestrator = make_orchestrator({CURATION: slow_pipeline(started)})
        job = await orchestrator.create_job(TENANT, CURATION)
        task = orchestrator.launch(job)
        await started.wait()

        current = await orchestrator.get_current_job(TENANT, CURATION)
        await orchestrator.cancel_current(TENANT, CURATION)
        outcome = await asyncio.wait_for(task, timeout=2)

        assert current.id == job.id
        assert outcome.status == JobStatusEnum.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_requires_running(self, make_orchestrator):
        orchestrator = make_orchestrator({CURATION: succeed})
        job = await orchestrator.create_job(TENANT, CURATION)

        with pytest.raises(NotRunning):
            await orchestrator.cancel_job(job.id)

        await orchestrator.run_job(job)
        with pytest.raises(NotRunning):
            await orchestrator.cancel_job(job.id)

    @pytest.mark.asyncio
    async def test_cancel_unknown_job(self, make_orchestrator):
        orchestrator = make_orchestrator()

        with pytest.raises(JobNotFound):
            await orchestrator.cancel_job("job_missing")

    @pytest.mark.asyncio
    async def test_cancel_current_without_running_job(self, make_orchestrator):
        orchestrator = make_orchestrator()

        with pytest.raises(NotRunning):
            await orchestrator.cancel_current(TENANT, CURATION)


class TestDeleteAndRerun:
    """State rules for delete and re-run."""

    @pytest.mark.asyncio
    async def test_delete_running_job_refused(self, make_orchestrator):
        started = asyncio.Event()
        orchestrator = make_orchestrator({CURATION: slow_pipeline(started)})
        job = await orchestrator.create_job(TENANT, CURATION)
        task = orchestrator.launch(job)
        await started.wait()

        with pytest.raises(JobRunning):
            await orchestrator.delete_job(job.id)

        await orchestrator.cancel_job(job.id)
        await asyncio.wait_for(task, timeout=2)
        await orchestrator.delete_job(job.id)
        assert await orchestrator.get_job(job.id) is None

    @pytest.mark.asyncio
    async def test_delete_unknown_job(self, make_orchestrator):
        orchestrator = make_orchestrator()

        with pytest.raises(JobNotFound):
            await orchestrator.delete_job("job_missing")

    @pytest.mark.asyncio
    async def test_delete_older_than(self, make_orchestrator, job_repo):
        orchestrator = make_orchestrator({CURATION: succeed})
        old = await orchestrator.create_job(TENANT, CURATION)
        await orchestrator.run_job(old)
        job_repo.jobs[old.id]["created_at"] -= timedelta(days=40)
        recent = await orchestrator.create_job(TENANT, CURATION)
        await orchestrator.run_job(recent)

        deleted = await orchestrator.delete_jobs_older_than(30, TENANT)

        assert deleted == 1
        assert await orchestrator.get_job(old.id) is None
        assert await orchestrator.get_job(recent.id) is not None

    @pytest.mark.asyncio
    async def test_delete_older_than_rejects_negative(self, make_orchestrator):
        orchestrator = make_orchestrator()

        with pytest.raises(ValueError):
            await orchestrator.delete_jobs_older_than(-1)

    @pytest.mark.asyncio
    async def test_rerun_copies_parameters(self, make_orchestrator, publisher):
        orchestrator = make_orchestrator({CURATION: succeed})
        original = await orchestrator.create_job(TENANT, CURATION, {"source_ids": ["s1"]})
        await orchestrator.run_job(original)

        job = await orchestrator.rerun_job(original.id)
        subscription = publisher.subscribe(job.id)
        events = await collect(subscription)

        assert job.id != original.id
        assert job.rerun_of == original.id
        assert job.params == {"source_ids": ["s1"]}
        assert events[0].event == "start"
        assert events[-1].event == "complete"

    @pytest.mark.asyncio
    async def test_rerun_requires_terminal(self, make_orchestrator):
        orchestrator = make_orchestrator({CURATION: succeed})
        job = await orchestrator.create_job(TENANT, CURATION)

        with pytest.raises(InvalidState):
            await orchestrator.rerun_job(job.id)

    @pytest.mark.asyncio
    async def test_rerun_unknown_job(self, make_orchestrator):
        orchestrator = make_orchestrator()

        with pytest.raises(JobNotFound):
            await orchestrator.rerun_job("job_missing")

    @pytest.mark.asyncio
    async def test_launch_of_deleted_job_ends_stream(self, make_orchestrator, publisher):
        orchestrator = make_orchestrator({CURATION: succeed})
        job = await orchestrator.create_job(TENANT, CURATION)
        subscription = publisher.subscribe(job.id)
        task = orchestrator.launch(job)
        await orchestrator.delete_job(job.id)

        outcome = await asyncio.wait_for(task, timeout=2)

        assert outcome.status == JobStatusEnum.FAILED
        events = await collect(subscription)
        assert [e.event for e in events] == ["error"]
        assert events[0].data["jobId"] == job.id


class TestScheduledRuns:
    """One job per tenant across all tenants."""

    @pytest.mark.asyncio
    async def test_runs_every_tenant(self, make_orchestrator):
        orchestrator = make_orchestrator({CURATION: succeed})

        summaries = await orchestrator.run_for_tenants(["tenant-a", "tenant-b"])

        assert [s.tenant_id for s in summaries] == ["tenant-a", "tenant-b"]
        for summary in summaries:
            assert summary.status == "COMPLETED"
            assert (summary.curated, summary.duplicates, summary.low_score, summary.errors) == (1, 0, 0, 0)
            stored = await orchestrator.get_job(summary.job_id)
            assert stored.tenant_id == summary.tenant_id

    @pytest.mark.asyncio
    async def test_busy_tenant_is_skipped(self, make_orchestrator):
        orchestrator = make_orchestrator({CURATION: succeed})
        holder = await orchestrator.create_job("tenant-a", CURATION)

        summaries = await orchestrator.run_for_tenants(["tenant-a", "tenant-b"])

        skipped, ran = summaries
        assert skipped.status == "SKIPPED"
        assert skipped.job_id == holder.id
        assert ran.status == "COMPLETED"
        assert (await orchestrator.get_job(holder.id)).status == JobStatusEnum.PENDING

    @pytest.mark.asyncio
    async def test_failed_tenant_counts_one_error(self, make_orchestrator):
        async def pipeline(ctx):
            if ctx.tenant_id == "tenant-b":
                raise RuntimeError("No active sources configured for this tenant")
            return {"curated": 2, "duplicates": 1, "low_score": 3, "errors": 0}

        orchestrator = make_orchestrator({CURATION: pipeline})

        summaries = await orchestrator.run_for_tenants(["tenant-a", "tenant-b"])

        by_tenant = {s.tenant_id: s for s in summaries}
        assert (by_tenant["tenant-a"].curated, by_tenant["tenant-a"].low_score) == (2, 3)
        assert by_tenant["tenant-b"].status == "FAILED"
        assert by_tenant["tenant-b"].errors == 1
        assert by_tenant["tenant-b"].curated == 0

    @pytest.mark.asyncio
    async def test_no_tenants(self, make_orchestrator):
        orchestrator = make_orchestrator({CURATION: succeed})

        assert await orchestrator.run_for_tenants([]) == []


class TestLifecycle:
    """Startup reconciliation, shutdown and queries."""

    @pytest.mark.asyncio
    async def test_reconcile_orphans(self, make_orchestrator, job_repo):
        orphan = await job_repo.create_if_none_running(TENANT, CURATION.value)
        await job_repo.mark_running(orphan["_id"])
        orchestrator = make_orchestrator()

        count = await orchestrator.reconcile_orphans()

        assert count == 1
        stored = await orchestrator.get_job(orphan["_id"])
        assert stored.status == JobStatusEnum.FAILED
        assert stored.error_message == "Interrupted by service restart"
        await orchestrator.create_job(TENANT, CURATION)

    @pytest.mark.asyncio
    async def test_shutdown_fails_running_jobs(self, make_orchestrator, publisher):
        started = asyncio.Event()
        orchestrator = make_orchestrator({CURATION: slow_pipeline(started)})
        job = await orchestrator.create_job(TENANT, CURATION)
        subscription = publisher.subscribe(job.id)
        orchestrator.launch(job)
        await started.wait()

        await orchestrator.shutdown()

        stored = await orchestrator.get_job(job.id)
        assert stored.status == JobStatusEnum.FAILED
        assert stored.error_message == "Job interrupted by service shutdown"
        events = await collect(subscription)
        assert events[-1].event == "error"

    @pytest.mark.asyncio
    async def test_get_jobs_pages(self, make_orchestrator):
        orchestrator = make_orchestrator({CURATION: succeed})
        for _ in range(3):
            job = await orchestrator.create_job(TENANT, CURATION)
            await orchestrator.run_job(job)

        page = await orchestrator.get_jobs(TENANT, job_type=CURATION, page=2, limit=2)

        assert page.total == 3
        assert page.total_pages == 2
        assert len(page.jobs) == 1
