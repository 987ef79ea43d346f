# Models module
from .job import (
    JobModel,
    JobStatusEnum,
    JobTypeEnum,
    JobLogEntry,
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
)
from .article import ArticleModel, ArticleStatusEnum
from .source import SourceModel

__all__ = [
    "JobModel",
    "JobStatusEnum",
    "JobTypeEnum",
    "JobLogEntry",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "ArticleModel",
    "ArticleStatusEnum",
    "SourceModel",
]
