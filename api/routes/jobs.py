"""Job routes for the REST API."""
from typing import Optional
from fastapi import APIRouter, Depends, Query

from api.dependencies import get_orchestrator, get_publisher, get_tenant_id
from api.models.job import JobModel, JobStatusEnum, JobTypeEnum
from api.schemas.responses import (
    JobResponse,
    JobListResponse,
    JobCancelResponse,
    JobDeleteResponse
)
from api.services.orchestrator import JobOrchestrator
from api.services.publisher import ProgressPublisher
from api.streaming import sse_response, stream_job_events
from shared.config import settings
from shared.errors import JobNotFound


router = APIRouter(prefix="/jobs", tags=["jobs"])


async def _get_owned_job(orchestrator: JobOrchestrator, job_id: str, tenant_id: str) -> JobModel:
    """Load a job of the calling tenant; other tenants' jobs look missing."""
    job = await orchestrator.get_job(job_id)
    if job is None or job.tenant_id != tenant_id:
        raise JobNotFound(f"Job {job_id} not found", job_id=job_id)
    return job


@router.get("", response_model=JobListResponse)
async def list_jobs(
    type: Optional[JobTypeEnum] = None,
    status: Optional[JobStatusEnum] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator)
):
    """List the tenant's jobs, newest first."""
    result = await orchestrator.get_jobs(tenant_id, job_type=type, status=status, page=page, limit=limit)

    return JobListResponse(
        jobs=[JobResponse.from_job(job) for job in result.jobs],
        total=result.total,
        page=result.page,
        total_pages=result.total_pages
    )


@router.get("/current", response_model=Optional[JobResponse])
async def get_current_job(
    type: JobTypeEnum = JobTypeEnum.CURATION,
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator)
):
    """The tenant's running job of a type, or null."""
    job = await orchestrator.get_current_job(tenant_id, type)
    return JobResponse.from_job(job) if job else None


@router.delete("", response_model=JobDeleteResponse)
async def delete_old_jobs(
    older_than_days: int = Query(settings.job_retention_days, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator)
):
    """Delete the tenant's finished jobs older than the given number of days."""
    deleted = await orchestrator.delete_jobs_older_than(older_than_days, tenant_id)

    return JobDeleteResponse(
        deleted=deleted,
        message=f"Deleted {deleted} jobs older than {older_than_days} days"
    )


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator)
):
    """Get a job, including its log."""
    job = await _get_owned_job(orchestrator, job_id, tenant_id)
    return JobResponse.from_job(job, include_logs=True)


@router.get("/{job_id}/stream")
async def stream_job(
    job_id: str,
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    publisher: ProgressPublisher = Depends(get_publisher)
):
    """Follow a job's progress as Server-Sent Events.

    Finished jobs yield their terminal event straight away.
    """
    await _get_owned_job(orchestrator, job_id, tenant_id)
    subscription = publisher.subscribe(job_id)
    return sse_response(stream_job_events(subscription, orchestrator))


@router.post("/{job_id}/cancel", response_model=JobCancelResponse)
async def cancel_job(
    job_id: str,
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator)
):
    """Request cancellation of a running job."""
    await _get_owned_job(orchestrator, job_id, tenant_id)
    job = await orchestrator.cancel_job(job_id)

    return JobCancelResponse(
        job_id=job.id,
        status=job.status,
        message="Cancellation requested"
    )


@router.post("/{job_id}/rerun")
async def rerun_job(
    job_id: str,
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    publisher: ProgressPublisher = Depends(get_publisher)
):
    """Start a new job with the parameters of a finished one and stream it."""
    await _get_owned_job(orchestrator, job_id, tenant_id)
    job = await orchestrator.rerun_job(job_id)

    # The new job's task has not started yet, so nothing is missed
    subscription = publisher.subscribe(job.id)
    return sse_response(stream_job_events(subscription, orchestrator))


@router.delete("/{job_id}", response_model=JobDeleteResponse)
async def delete_job(
    job_id: str,
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator)
):
    """Delete a job that is not running."""
    await _get_owned_job(orchestrator, job_id, tenant_id)
    await orchestrator.delete_job(job_id)

    return JobDeleteResponse(deleted=1, message=f"Job {job_id} deleted")
