# Routes module
from .jobs import router as jobs_router
from .curation import router as curation_router
from .cron import router as cron_router

__all__ = ["jobs_router", "curation_router", "cron_router"]
