# Schemas module
from .requests import CurationRequest
from .responses import (
    JobResponse,
    JobListResponse,
    JobCancelResponse,
    JobDeleteResponse,
    ErrorResponse,
    TenantCollectionResult,
    DailyCollectionResponse
)

__all__ = [
    "CurationRequest",
    "JobResponse",
    "JobListResponse",
    "JobCancelResponse",
    "JobDeleteResponse",
    "ErrorResponse",
    "TenantCollectionResult",
    "DailyCollectionResponse"
]
