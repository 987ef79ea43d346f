"""Request schemas for API endpoints."""
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator


class CurationRequest(BaseModel):
    """Request schema for starting a curation run."""
    source_ids: Optional[List[str]] = Field(
        default=None,
        max_length=100,
        description="Restrict the run to these source ids (default: all active sources)"
    )

    @field_validator('source_ids')
    @classmethod
    def validate_source_ids(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        """Drop blanks and duplicates, keeping order."""
        if v is None:
            return None
        cleaned = list(dict.fromkeys(s.strip() for s in v if s and s.strip()))
        return cleaned or None
