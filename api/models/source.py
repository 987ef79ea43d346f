"""Feed source model definitions."""
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class SourceModel(BaseModel):
    """A tenant's configured content feed."""
    id: str = Field(alias="_id")
    tenant_id: str
    name: str
    url: str
    category: Optional[str] = None
    active: bool = True
    last_fetched_at: Optional[datetime] = None
    last_error: Optional[str] = None

    class Config:
        populate_by_name = True
