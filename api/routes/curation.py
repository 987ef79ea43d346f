"""Curation routes: start a run and stream its progress, or cancel it."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends

from api.dependencies import get_orchestrator, get_publisher, get_tenant_id
from api.models.job import JobTypeEnum
from api.schemas.requests import CurationRequest
from api.schemas.responses import JobCancelResponse
from api.services.orchestrator import JobOrchestrator
from api.services.publisher import ProgressPublisher
from api.streaming import sse_response, stream_job_events

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/curation", tags=["curation"])


@router.post("/collect")
async def collect(
    request: Optional[CurationRequest] = None,
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    publisher: ProgressPublisher = Depends(get_publisher)
):
    """
    Start a curation run and stream its progress as Server-Sent Events.

    - Admits a CURATION job (409 if one is already active for the tenant)
    - Runs it in the background
    - Streams start, progress and exactly one terminal event
    """
    source_ids = request.source_ids if request else None
    job = await orchestrator.create_job(tenant_id, JobTypeEnum.CURATION, {"source_ids": source_ids})

    # Subscribe before launching so the start event is not missed
    subscription = publisher.subscribe(job.id)
    orchestrator.launch(job)

    return sse_response(stream_job_events(subscription, orchestrator))


@router.post("/cancel", response_model=JobCancelResponse)
async def cancel(
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator)
):
    """Cancel the tenant's running curation job."""
    job = await orchestrator.cancel_current(tenant_id, JobTypeEnum.CURATION)

    return JobCancelResponse(
        job_id=job.id,
        status=job.status,
        message="Cancellation requested"
    )
