"""Response schemas for API endpoints."""
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from api.models.job import JobModel, JobLogEntry, JobStatusEnum, JobTypeEnum


class JobResponse(BaseModel):
    """Response schema for a job record."""
    job_id: str = Field(..., description="Unique job identifier")
    tenant_id: str = Field(..., description="Owning tenant")
    type: JobTypeEnum = Field(..., description="Kind of job")
    status: JobStatusEnum = Field(..., description="Current job status")
    progress_percent: int = Field(..., description="Progress from 0 to 100")
    current_stage: Optional[str] = Field(None, description="Label of the current stage")
    params: Dict[str, Any] = Field(default_factory=dict, description="Pipeline parameters")
    result: Optional[Dict[str, Any]] = Field(None, description="Result, set when COMPLETED")
    error_message: Optional[str] = Field(None, description="Error, set when FAILED")
    cancel_requested: bool = Field(False, description="Whether cancellation was requested")
    rerun_of: Optional[str] = Field(None, description="Job this one re-runs")
    created_at: datetime = Field(..., description="Job creation timestamp")
    started_at: Optional[datetime] = Field(None, description="Execution start timestamp")
    completed_at: Optional[datetime] = Field(None, description="Terminal transition timestamp")
    logs: Optional[List[JobLogEntry]] = Field(None, description="Job log (detail view only)")

    @classmethod
    def from_job(cls, job: JobModel, include_logs: bool = False) -> "JobResponse":
        return cls(
            job_id=job.id,
            tenant_id=job.tenant_id,
            type=job.type,
            status=job.status,
            progress_percent=job.progress_percent,
            current_stage=job.current_stage,
            params=job.params,
            result=job.result,
            error_message=job.error_message,
            cancel_requested=job.cancel_requested,
            rerun_of=job.rerun_of,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            logs=job.logs if include_logs else None
        )


class JobListResponse(BaseModel):
    """Response schema for a page of jobs."""
    jobs: List[JobResponse] = Field(default_factory=list)
    total: int = Field(..., description="Number of matching jobs")
    page: int = Field(..., description="Current page (1-based)")
    total_pages: int = Field(..., description="Number of pages")


class JobCancelResponse(BaseModel):
    """Response schema for job cancellation."""
    job_id: str = Field(..., description="Unique job identifier")
    status: JobStatusEnum = Field(..., description="Job status (unchanged until the job unwinds)")
    message: str = Field(..., description="Cancellation message")


class JobDeleteResponse(BaseModel):
    """Response schema for deleting jobs."""
    deleted: int = Field(..., description="Number of deleted jobs")
    message: str


class ErrorResponse(BaseModel):
    """Schema for error responses."""
    error: str = Field(..., description="Error message")
    job_id: Optional[str] = Field(None, description="Related job, if any")


class TenantCollectionResult(BaseModel):
    """Outcome of one tenant in a scheduled collection."""
    tenant_id: str
    job_id: Optional[str] = None
    status: str = Field(..., description="Terminal job status, or SKIPPED when a job was already active")
    curated: int = 0
    duplicates: int = 0
    low_score: int = 0
    errors: int = 0


class DailyCollectionResponse(BaseModel):
    """Response for the scheduled collection across all tenants."""
    success: bool
    message: str
    results: List[TenantCollectionResult] = Field(default_factory=list)
    timestamp: datetime
