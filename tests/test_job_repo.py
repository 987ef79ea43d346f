"""Job repository tests against a mocked collection."""
import pytest
from unittest.mock import AsyncMock, MagicMock
from pymongo.errors import DuplicateKeyError

from api.models.job import JobStatusEnum
from database.repositories.job_repo import JobRepository, MAX_LOG_ENTRIES
from shared.errors import AlreadyRunning


class TestJobRepository:
    """Tests for JobRepository."""

    @pytest.fixture
    def job_repo(self, mock_mongo_db):
        return JobRepository(mock_mongo_db)

    @pytest.mark.asyncio
    async def test_create_inserts_active_pending_job(self, job_repo, mock_mongo_db):
        job = await job_repo.create_if_none_running("tenant-a", "CURATION", {"source_ids": None})

        inserted = mock_mongo_db.jobs.insert_one.call_args.args[0]
        assert inserted is job
        assert job["_id"].startswith("job_")
        assert job["status"] == "PENDING"
        assert job["active"] is True
        assert job["progress_percent"] == 0
        assert job["params"] == {"source_ids": None}

    @pytest.mark.asyncio
    async def test_create_duplicate_key_is_already_running(self, job_repo, mock_mongo_db):
        mock_mongo_db.jobs.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")
        mock_mongo_db.jobs.find_one.return_value = {"_id": "job_holder"}

        with pytest.raises(AlreadyRunning) as exc_info:
            await job_repo.create_if_none_running("tenant-a", "CURATION")

        assert exc_info.value.job_id == "job_holder"
        query = mock_mongo_db.jobs.find_one.call_args.args[0]
        assert query == {"tenant_id": "tenant-a", "type": "CURATION", "active": True}

    @pytest.mark.asyncio
    async def test_finalize_is_conditional_on_active_status(self, job_repo, mock_mongo_db):
        mock_mongo_db.jobs.find_one_and_update.return_value = {"_id": "job_1", "status": "COMPLETED"}

        await job_repo.finalize("job_1", JobStatusEnum.COMPLETED, result={"curated": 4})

        query, update = mock_mongo_db.jobs.find_one_and_update.call_args.args
        assert query["_id"] == "job_1"
        assert sorted(query["status"]["$in"]) == ["PENDING", "RUNNING"]
        assert update["$set"]["status"] == "COMPLETED"
        assert update["$set"]["active"] is False
        assert update["$set"]["result"] == {"curated": 4}
        assert update["$set"]["progress_percent"] == 100
        assert update["$push"]["logs"]["$slice"] == -MAX_LOG_ENTRIES

    @pytest.mark.asyncio
    async def test_finalize_failed_sets_error_not_result(self, job_repo, mock_mongo_db):
        await job_repo.finalize("job_1", JobStatusEnum.FAILED, result={"partial": 1}, error_message="boom")

        _, update = mock_mongo_db.jobs.find_one_and_update.call_args.args
        assert update["$set"]["error_message"] == "boom"
        assert "result" not in update["$set"]
        assert update["$push"]["logs"]["$each"][0]["level"] == "error"

    @pytest.mark.asyncio
    async def test_finalize_cancelled_keeps_result_unset(self, job_repo, mock_mongo_db):
        await job_repo.finalize("job_1", JobStatusEnum.CANCELLED, result={"processed": 3})

        _, update = mock_mongo_db.jobs.find_one_and_update.call_args.args
        assert "result" not in update["$set"]
        assert "error_message" not in update["$set"]

    @pytest.mark.asyncio
    async def test_finalize_rejects_non_terminal(self, job_repo):
        with pytest.raises(ValueError):
            await job_repo.finalize("job_1", JobStatusEnum.RUNNING)

    @pytest.mark.asyncio
    async def test_update_progress_is_monotone(self, job_repo, mock_mongo_db):
        mock_mongo_db.jobs.update_one.return_value = MagicMock(modified_count=1)

        assert await job_repo.update_progress("job_1", "processing", 140, "Article 3/10")

        query, update = mock_mongo_db.jobs.update_one.call_args.args
        assert query == {"_id": "job_1", "status": "RUNNING"}
        assert update["$max"] == {"progress_percent": 100}
        assert update["$set"]["current_stage"] == "processing"
        assert "cancel_requested" not in update["$set"]

    @pytest.mark.asyncio
    async def test_request_cancel_only_running(self, job_repo, mock_mongo_db):
        mock_mongo_db.jobs.find_one_and_update.return_value = None

        assert await job_repo.request_cancel("job_1") is None
        query, update = mock_mongo_db.jobs.find_one_and_update.call_args.args
        assert query == {"_id": "job_1", "status": "RUNNING"}
        assert update["$set"] == {"cancel_requested": True}

    @pytest.mark.asyncio
    async def test_delete_job_excludes_running(self, job_repo, mock_mongo_db):
        mock_mongo_db.jobs.delete_one.return_value = MagicMock(deleted_count=0)

        assert await job_repo.delete_job("job_1") is False
        query = mock_mongo_db.jobs.delete_one.call_args.args[0]
        assert query == {"_id": "job_1", "status": {"$ne": "RUNNING"}}

    @pytest.mark.asyncio
    async def test_list_jobs_pages_and_counts(self, job_repo, mock_mongo_db):
        cursor = MagicMock()
        cursor.sort.return_value = cursor
        cursor.skip.return_value = cursor
        cursor.limit.return_value = cursor
        cursor.to_list = AsyncMock(return_value=[{"_id": "job_1"}])
        mock_mongo_db.jobs.find.return_value = cursor
        mock_mongo_db.jobs.count_documents = AsyncMock(return_value=21)

        jobs, total = await job_repo.list_jobs(tenant_id="tenant-a", status="FAILED", page=3, limit=10)

        assert jobs == [{"_id": "job_1"}]
        assert total == 21
        cursor.skip.assert_called_once_with(20)
        query = mock_mongo_db.jobs.find.call_args.args[0]
        assert query == {"tenant_id": "tenant-a", "status": "FAILED"}
