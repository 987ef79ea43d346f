"""FastAPI dependencies shared by the routers."""
from fastapi import Header, HTTPException, Request, status

from api.services.orchestrator import JobOrchestrator
from api.services.publisher import ProgressPublisher
from database.repositories.source_repo import SourceRepository


def get_orchestrator(request: Request) -> JobOrchestrator:
    """The orchestrator built at startup."""
    return request.app.state.orchestrator


def get_publisher(request: Request) -> ProgressPublisher:
    return request.app.state.publisher


def get_source_repo(request: Request) -> SourceRepository:
    return request.app.state.source_repo


async def get_tenant_id(x_tenant_id: str = Header(..., alias="X-Tenant-ID")) -> str:
    """Tenant of the caller, taken from the X-Tenant-ID header."""
    tenant_id = x_tenant_id.strip()
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header must not be empty"
        )
    return tenant_id
