"""Scheduled routes, called by an external scheduler."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from api.dependencies import get_orchestrator, get_source_repo
from api.models.job import JobTypeEnum
from api.schemas.responses import DailyCollectionResponse, TenantCollectionResult
from api.services.orchestrator import JobOrchestrator
from database.repositories.source_repo import SourceRepository
from shared.config import settings
from shared.utils import get_utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


def verify_cron_secret(authorization: Optional[str] = Header(None)):
    """Require `Authorization: Bearer <cron_secret>` when a secret is configured."""
    if settings.cron_secret and authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.get(
    "/daily-collection",
    response_model=DailyCollectionResponse,
    dependencies=[Depends(verify_cron_secret)]
)
async def daily_collection(
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    source_repo: SourceRepository = Depends(get_source_repo)
):
    """
    Run curation for every tenant with an active source.

    - One CURATION job per tenant, run concurrently
    - Tenants with a curation job already active are reported as SKIPPED
    - Responds once every job has finished
    """
    tenant_ids = await source_repo.get_tenants_with_active_sources()
    logger.info(f"Starting scheduled collection for {len(tenant_ids)} tenant(s)")

    summaries = await orchestrator.run_for_tenants(tenant_ids, JobTypeEnum.CURATION)

    return DailyCollectionResponse(
        success=True,
        message="Daily content collection completed",
        results=[TenantCollectionResult(**vars(s)) for s in summaries],
        timestamp=get_utc_now()
    )
