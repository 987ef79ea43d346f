"""Job model definitions."""
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field


class JobStatusEnum(str, Enum):
    """Job status enumeration."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    JobStatusEnum.COMPLETED,
    JobStatusEnum.FAILED,
    JobStatusEnum.CANCELLED,
})

ACTIVE_STATUSES = frozenset({JobStatusEnum.PENDING, JobStatusEnum.RUNNING})


class JobTypeEnum(str, Enum):
    """Kinds of long-running workflows the orchestrator runs."""
    CURATION = "CURATION"
    GENERATION = "GENERATION"
    SEARCH = "SEARCH"
    EMAIL_SEND = "EMAIL_SEND"


class JobLogEntry(BaseModel):
    """A single line in a job's log."""
    timestamp: datetime
    level: str = "info"
    message: str


class JobModel(BaseModel):
    """Job model for database representation."""
    id: str = Field(alias="_id")
    tenant_id: str
    type: JobTypeEnum
    status: JobStatusEnum
    progress_percent: int = 0
    current_stage: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    cancel_requested: bool = False
    rerun_of: Optional[str] = None
    logs: List[JobLogEntry] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
