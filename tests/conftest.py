"""Pytest configuration and fixtures."""
import asyncio
import pytest
from unittest.mock import MagicMock, AsyncMock

from api.models.job import JobTypeEnum
from api.services.orchestrator import JobOrchestrator
from api.services.publisher import ProgressPublisher
from shared.cancellation import CancellationToken
from shared.config import Settings
from shared.context import JobContext
from tests.fakes import InMemoryJobRepository


@pytest.fixture
def mock_mongo_db():
    """Create mock MongoDB database."""
    db = MagicMock()

    # Mock collections
    db.jobs = MagicMock()
    db.articles = MagicMock()
    db.sources = MagicMock()
    db.tenant_settings = MagicMock()

    # Mock common operations
    db.jobs.find_one = AsyncMock()
    db.jobs.insert_one = AsyncMock()
    db.jobs.update_one = AsyncMock()
    db.jobs.find_one_and_update = AsyncMock()
    db.jobs.delete_one = AsyncMock()
    db.jobs.delete_many = AsyncMock()
    db.jobs.find = MagicMock()

    db.articles.find_one = AsyncMock()
    db.articles.insert_one = AsyncMock()
    db.articles.find = MagicMock()

    db.tenant_settings.find_one = AsyncMock(return_value=None)

    return db


@pytest.fixture
def mock_redis_client():
    """Create mock Redis client."""
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def test_settings():
    """Settings with instant retries."""
    return Settings(scoring_retry_base_delay=0, fetch_concurrency=2, similarity_window=50)


@pytest.fixture
def job_repo():
    return InMemoryJobRepository()


@pytest.fixture
def publisher():
    return ProgressPublisher()


@pytest.fixture
def make_orchestrator(job_repo, publisher):
    """Build an orchestrator over the in-memory job store."""
    def factory(pipelines=None, job_timeout=5.0, cancel_poll_interval=0.01):
        return JobOrchestrator(
            job_repo,
            publisher,
            pipelines or {},
            job_timeout=job_timeout,
            cancel_poll_interval=cancel_poll_interval
        )
    return factory


@pytest.fixture
def make_context():
    """Build a JobContext whose progress queue the test can inspect."""
    def factory(tenant_id="tenant-a", params=None, job_id="job_test123"):
        queue = asyncio.Queue()
        return JobContext(job_id, tenant_id, params or {}, CancellationToken(job_id), queue), queue
    return factory


@pytest.fixture
def sample_job():
    """Create sample job data."""
    return {
        "_id": "job_test123",
        "tenant_id": "tenant-a",
        "type": JobTypeEnum.CURATION.value,
        "status": "RUNNING",
        "active": True,
        "progress_percent": 40,
        "current_stage": "processing",
        "params": {"source_ids": None},
        "result": None,
        "error_message": None,
        "cancel_requested": False,
        "rerun_of": None,
        "logs": [],
        "created_at": "2024-02-04T10:30:00Z",
        "updated_at": "2024-02-04T10:35:00Z",
        "started_at": "2024-02-04T10:30:01Z",
        "completed_at": None
    }
