"""Job orchestrator: admission, execution, cancellation and finalization of jobs."""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set

from api.models.job import JobModel, JobStatusEnum, JobTypeEnum
from api.services.publisher import ProgressEvent, ProgressPublisher
from database.repositories.job_repo import JobRepository
from shared.cancellation import CancellationToken
from shared.config import settings
from shared.context import JobContext, ProgressUpdate
from shared.errors import AlreadyRunning, InvalidState, JobCancelledError, JobNotFound, JobRunning, NotRunning

logger = logging.getLogger(__name__)

PipelineFn = Callable[[JobContext], Awaitable[Dict[str, Any]]]
ProgressCallback = Callable[[ProgressUpdate], Awaitable[None]]


@dataclass
class JobOutcome:
    """How a run ended. `result` is partial for CANCELLED runs."""
    job_id: str
    status: JobStatusEnum
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


@dataclass
class TenantRunSummary:
    """Per-tenant line of a scheduled run across all tenants."""
    tenant_id: str
    job_id: Optional[str]
    status: str
    curated: int = 0
    duplicates: int = 0
    low_score: int = 0
    errors: int = 0


@dataclass
class JobPage:
    jobs: List[JobModel] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class JobOrchestrator:
    """Owns the lifecycle of background jobs.

    The job store is the source of truth: single-flight admission, the
    cancellation flag and the terminal transition are all conditional writes
    there. The in-process token map only speeds up cancellation of jobs this
    process is running and is rebuilt empty on restart.
    """

    def __init__(
        self,
        job_repo: JobRepository,
        publisher: ProgressPublisher,
        pipelines: Mapping[JobTypeEnum, PipelineFn],
        job_timeout: float = None,
        cancel_poll_interval: float = None
    ):
        self.job_repo = job_repo
        self.publisher = publisher
        self.pipelines = dict(pipelines)
        self.job_timeout = job_timeout or settings.job_timeout_seconds
        self.cancel_poll_interval = cancel_poll_interval or settings.cancel_poll_interval
        self._tokens: Dict[str, CancellationToken] = {}
        self._tasks: Set[asyncio.Task] = set()

    # Admission

    async def create_job(
        self,
        tenant_id: str,
        job_type: JobTypeEnum,
        params: Optional[Dict[str, Any]] = None,
        rerun_of: Optional[str] = None
    ) -> JobModel:
        """Admit a PENDING job. Raises AlreadyRunning if (tenant, type) is busy."""
        job_type = JobTypeEnum(job_type)
        doc = await self.job_repo.create_if_none_running(tenant_id, job_type.value, params, rerun_of)
        logger.info(f"Created {job_type.value} job {doc['_id']} for tenant {tenant_id}")
        return JobModel(**doc)

    # Execution

    def launch(
        self,
        job: JobModel,
        pipeline: Optional[PipelineFn] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> asyncio.Task:
        """Run a job in the background."""
        task = asyncio.create_task(self._run_launched(job, pipeline, on_progress), name=f"job-{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    async def _run_launched(
        self,
        job: JobModel,
        pipeline: Optional[PipelineFn],
        on_progress: Optional[ProgressCallback]
    ) -> JobOutcome:
        try:
            return await self.run_job(job, pipeline, on_progress)
        except InvalidState as e:
            # Deleted or finalized before the task got to run; end any attached stream.
            logger.warning(f"Skipping launch of job {job.id}: {e.message}")
            await self._emit(job.id, "error", {"error": e.message, "jobId": job.id})
            return JobOutcome(job.id, JobStatusEnum.FAILED, error=e.message)

    def _on_task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background {task.get_name()} crashed: {task.exception()!r}")

    async def run_job(
        self,
        job: JobModel,
        pipeline: Optional[PipelineFn] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> JobOutcome:
        """Run a PENDING job to a terminal state and return how it ended."""
        pipeline = pipeline or self.pipelines.get(job.type)
        if await self.job_repo.mark_running(job.id) is None:
            raise InvalidState(f"Job {job.id} is not PENDING", job_id=job.id)

        token = CancellationToken(job.id)
        self._tokens[job.id] = token
        queue: "asyncio.Queue[Optional[ProgressUpdate]]" = asyncio.Queue()
        ctx = JobContext(job.id, job.tenant_id, dict(job.params), token, queue)

        await self._emit(job.id, "start", {
            "message": f"Starting {job.type.value.lower()} job...",
            "jobId": job.id
        })
        relay = asyncio.create_task(self._relay(job.id, queue, on_progress))
        watcher = asyncio.create_task(self._watch_cancellation(job.id, token))

        try:
            outcome = await self._execute(job, pipeline, ctx)
        except asyncio.CancelledError:
            outcome = JobOutcome(job.id, JobStatusEnum.FAILED, error="Job interrupted by service shutdown")
            await self._finish(job, outcome, queue, relay, watcher)
            raise

        await self._finish(job, outcome, queue, relay, watcher)
        return outcome

    async def _execute(self, job: JobModel, pipeline: Optional[PipelineFn], ctx: JobContext) -> JobOutcome:
        """Run the pipeline in its own task under the overall time budget."""
        if pipeline is None:
            return JobOutcome(job.id, JobStatusEnum.FAILED, error=f"No pipeline configured for {job.type.value} jobs")

        task = asyncio.create_task(pipeline(ctx), name=f"pipeline-{job.id}")
        try:
            done, _ = await asyncio.wait({task}, timeout=self.job_timeout)
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise

        if not done:
            ctx.token.cancel()
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            logger.error(f"Job {job.id} exceeded its {self.job_timeout:g}s budget")
            return JobOutcome(job.id, JobStatusEnum.FAILED, error=f"Job timed out after {self.job_timeout:g} seconds")

        try:
            result = task.result()
        except JobCancelledError as e:
            logger.info(f"Job {job.id} observed cancellation")
            return JobOutcome(job.id, JobStatusEnum.CANCELLED, result=e.partial_result)
        except Exception as e:
            logger.exception(f"Job {job.id} failed")
            return JobOutcome(job.id, JobStatusEnum.FAILED, error=str(e) or type(e).__name__)

        return JobOutcome(job.id, JobStatusEnum.COMPLETED, result=result or {})

    async def _finish(
        self,
        job: JobModel,
        outcome: JobOutcome,
        queue: "asyncio.Queue[Optional[ProgressUpdate]]",
        relay: asyncio.Task,
        watcher: asyncio.Task
    ):
        """Drain progress, then finalize once and emit exactly one terminal event."""
        watcher.cancel()
        await queue.put(None)
        await relay
        await asyncio.gather(watcher, return_exceptions=True)
        self._tokens.pop(job.id, None)

        try:
            finalized = await self.job_repo.finalize(
                job.id, outcome.status, result=outcome.result, error_message=outcome.error
            )
        except Exception as e:
            logger.error(f"Failed to record outcome of job {job.id}: {e}")
            await self._emit(job.id, "error", {"error": f"Failed to record job outcome: {e}", "jobId": job.id})
            return

        if finalized is None:
            logger.warning(f"Job {job.id} was already finalized; keeping the stored outcome")

        name = job.type.value.lower()
        if outcome.status == JobStatusEnum.COMPLETED:
            await self._emit(job.id, "complete", {
                "message": f"{name.capitalize()} job completed!",
                "jobId": job.id,
                "result": outcome.result
            })
        elif outcome.status == JobStatusEnum.CANCELLED:
            await self._emit(job.id, "cancelled", {
                "message": f"{name.capitalize()} job was cancelled",
                "jobId": job.id,
                "result": outcome.result
            })
        else:
            await self._emit(job.id, "error", {"error": outcome.error, "jobId": job.id})
        logger.info(f"Job {job.id} finished with status {outcome.status.value}")

    async def _relay(
        self,
        job_id: str,
        queue: "asyncio.Queue[Optional[ProgressUpdate]]",
        on_progress: Optional[ProgressCallback]
    ):
        """Persist and forward progress updates in emission order."""
        while True:
            update = await queue.get()
            if update is None:
                return

            try:
                await self.job_repo.update_progress(job_id, update.stage, update.percent, update.message)
            except Exception as e:
                logger.warning(f"Failed to persist progress for job {job_id}: {e}")

            if on_progress is not None:
                try:
                    await on_progress(update)
                except Exception as e:
                    logger.warning(f"Progress callback failed for job {job_id}: {e}")

            await self._emit(job_id, "progress", {
                **update.data,
                "jobId": job_id,
                "stage": update.stage,
                "percent": update.percent,
                "message": update.message
            })

    async def _watch_cancellation(self, job_id: str, token: CancellationToken):
        """Mirror the stored cancellation flag into the token."""
        while not token.cancelled:
            await asyncio.sleep(self.cancel_poll_interval)
            try:
                if await self.job_repo.is_cancel_requested(job_id):
                    logger.info(f"Cancellation requested for job {job_id}")
                    token.cancel()
            except Exception as e:
                logger.warning(f"Could not read cancellation flag for job {job_id}: {e}")

    async def _emit(self, job_id: str, event: str, data: Dict[str, Any]):
        await self.publisher.publish(ProgressEvent(job_id, event, data))

    # Control

    async def cancel_job(self, job_id: str) -> JobModel:
        """Request cancellation. The status changes once the pipeline unwinds."""
        doc = await self.job_repo.request_cancel(job_id)
        if doc is None:
            existing = await self.job_repo.get_job(job_id)
            if existing is None:
                raise JobNotFound(f"Job {job_id} not found", job_id=job_id)
            raise NotRunning(f"Cannot cancel job with status {existing['status']}", job_id=job_id)

        token = self._tokens.get(job_id)
        if token is not None:
            token.cancel()
        logger.info(f"Cancellation of job {job_id} requested")
        return JobModel(**doc)

    async def cancel_current(self, tenant_id: str, job_type: JobTypeEnum) -> JobModel:
        """Cancel the tenant's running job of a type."""
        job = await self.get_current_job(tenant_id, job_type)
        if job is None:
            raise NotRunning(f"No {JobTypeEnum(job_type).value.lower()} job is running")
        return await self.cancel_job(job.id)

    async def rerun_job(self, job_id: str) -> JobModel:
        """Start a new job with the same tenant, type and parameters as a finished one."""
        original = await self.get_job(job_id)
        if original is None:
            raise JobNotFound(f"Job {job_id} not found", job_id=job_id)
        if not original.status.is_terminal:
            raise InvalidState(
                f"Cannot re-run a job with status: {original.status.value}. "
                "Only COMPLETED, FAILED, or CANCELLED jobs can be re-run.",
                job_id=job_id
            )

        job = await self.create_job(original.tenant_id, original.type, dict(original.params), rerun_of=original.id)
        self.launch(job)
        return job

    async def run_for_tenants(
        self,
        tenant_ids: List[str],
        job_type: JobTypeEnum = JobTypeEnum.CURATION
    ) -> List[TenantRunSummary]:
        """Run one job per tenant concurrently and summarize each tenant's counts.

        Tenants that already have an active job of the type are skipped.
        """
        job_type = JobTypeEnum(job_type)
        summaries: Dict[str, TenantRunSummary] = {}
        launched: List[asyncio.Task] = []

        for tenant_id in dict.fromkeys(tenant_ids):
            try:
                job = await self.create_job(tenant_id, job_type, {"source_ids": None})
            except AlreadyRunning as e:
                logger.info(f"Skipping tenant {tenant_id}: job {e.job_id} is still active")
                summaries[tenant_id] = TenantRunSummary(tenant_id, e.job_id, "SKIPPED")
                continue
            summaries[tenant_id] = TenantRunSummary(tenant_id, job.id, JobStatusEnum.RUNNING.value)
            launched.append(self.launch(job))

        for outcome in await asyncio.gather(*launched, return_exceptions=True):
            if not isinstance(outcome, JobOutcome):
                continue
            summary = next(s for s in summaries.values() if s.job_id == outcome.job_id)
            summary.status = outcome.status.value
            if outcome.status == JobStatusEnum.FAILED:
                summary.errors = 1
            else:
                counts = outcome.result or {}
                summary.curated = counts.get("curated", 0)
                summary.duplicates = counts.get("duplicates", 0)
                summary.low_score = counts.get("low_score", 0)
                summary.errors = counts.get("errors", 0)

        for summary in summaries.values():
            if summary.status == JobStatusEnum.RUNNING.value:
                summary.status = JobStatusEnum.FAILED.value
                summary.errors = 1

        logger.info(f"Scheduled {job_type.value.lower()} run finished for {len(summaries)} tenant(s)")
        return list(summaries.values())

    # Queries

    async def get_job(self, job_id: str) -> Optional[JobModel]:
        doc = await self.job_repo.get_job(job_id)
        return JobModel(**doc) if doc else None

    async def get_current_job(self, tenant_id: str, job_type: JobTypeEnum) -> Optional[JobModel]:
        doc = await self.job_repo.get_running_job(tenant_id, JobTypeEnum(job_type).value)
        return JobModel(**doc) if doc else None

    async def get_jobs(
        self,
        tenant_id: Optional[str] = None,
        job_type: Optional[JobTypeEnum] = None,
        status: Optional[JobStatusEnum] = None,
        page: int = 1,
        limit: int = 10
    ) -> JobPage:
        docs, total = await self.job_repo.list_jobs(
            tenant_id=tenant_id,
            job_type=JobTypeEnum(job_type).value if job_type else None,
            status=JobStatusEnum(status).value if status else None,
            page=page,
            limit=limit
        )
        return JobPage(jobs=[JobModel(**d) for d in docs], total=total, page=page, limit=limit)

    # Cleanup

    async def delete_job(self, job_id: str):
        """Delete a job record. RUNNING jobs cannot be deleted."""
        if await self.job_repo.delete_job(job_id):
            logger.info(f"Deleted job {job_id}")
            return
        if await self.job_repo.get_job(job_id) is None:
            raise JobNotFound(f"Job {job_id} not found", job_id=job_id)
        raise JobRunning(f"Cannot delete running job {job_id}", job_id=job_id)

    async def delete_jobs_older_than(self, days: int, tenant_id: Optional[str] = None) -> int:
        """Bulk-delete terminal jobs older than `days` days."""
        if days < 0:
            raise ValueError("days must be non-negative")
        count = await self.job_repo.delete_older_than(days, tenant_id)
        logger.info(f"Deleted {count} jobs older than {days} days")
        return count

    async def reconcile_orphans(self) -> int:
        """Fail jobs left active by a previous process; frees their single-flight slot."""
        count = 0
        for doc in await self.job_repo.find_active_jobs():
            if doc["_id"] in self._tokens:
                continue
            finalized = await self.job_repo.finalize(
                doc["_id"], JobStatusEnum.FAILED, error_message="Interrupted by service restart"
            )
            if finalized is not None:
                count += 1
        if count:
            logger.warning(f"Marked {count} orphaned job(s) as FAILED")
        return count

    async def shutdown(self):
        """Cancel background jobs; each is finalized as FAILED while unwinding."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
