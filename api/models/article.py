"""Article model definitions."""
from enum import Enum
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field


class ArticleStatusEnum(str, Enum):
    """Article review status enumeration."""
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ArticleModel(BaseModel):
    """Article model for database representation."""
    id: str = Field(alias="_id")
    tenant_id: str
    source_url: str
    source_url_key: str
    source_id: Optional[str] = None
    title: str
    content: str
    summary: str = ""
    author: Optional[str] = None
    relevance_score: float = Field(ge=0, le=10)
    categories: List[str] = Field(default_factory=list)
    embedding: List[float] = Field(default_factory=list, repr=False)
    status: ArticleStatusEnum = ArticleStatusEnum.PENDING_REVIEW
    published_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        populate_by_name = True
