"""Job repository: the persisted job record and its atomic transitions."""
from datetime import timedelta
from typing import Optional, List, Dict, Any, Tuple
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from api.models.job import JobStatusEnum, ACTIVE_STATUSES, TERMINAL_STATUSES
from shared.errors import AlreadyRunning
from shared.utils import generate_job_id, get_utc_now

MAX_LOG_ENTRIES = 200

_ACTIVE = [s.value for s in ACTIVE_STATUSES]
_TERMINAL = [s.value for s in TERMINAL_STATUSES]


def _log_entry(level: str, message: str) -> Dict[str, Any]:
    return {"timestamp": get_utc_now(), "level": level, "message": message}


def _push_log(level: str, message: str) -> Dict[str, Any]:
    return {"logs": {"$each": [_log_entry(level, message)], "$slice": -MAX_LOG_ENTRIES}}


class JobRepository:
    """Repository for Job records.

    Every state transition is a single conditional write, so concurrent
    writers (the running job, a cancel request, an admin delete) can never
    overwrite each other's fields or finalize a job twice.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.jobs

    async def create_if_none_running(
        self,
        tenant_id: str,
        job_type: str,
        params: Optional[Dict[str, Any]] = None,
        rerun_of: Optional[str] = None
    ) -> Dict[str, Any]:
        """Insert a PENDING job unless one is already active for (tenant, type).

        The check and the insert are the same operation: the partial unique
        index on (tenant_id, type, active=True) rejects the second insert.
        """
        now = get_utc_now()
        job = {
            "_id": generate_job_id(),
            "tenant_id": tenant_id,
            "type": job_type,
            "status": JobStatusEnum.PENDING.value,
            "active": True,
            "progress_percent": 0,
            "current_stage": None,
            "params": params or {},
            "result": None,
            "error_message": None,
            "cancel_requested": False,
            "rerun_of": rerun_of,
            "logs": [],
            "created_at": now,
            "updated_at": now,
            "started_at": None,
            "completed_at": None
        }

        try:
            await self.collection.insert_one(job)
        except DuplicateKeyError:
            holder = await self.collection.find_one(
                {"tenant_id": tenant_id, "type": job_type, "active": True},
                projection={"_id": 1}
            )
            raise AlreadyRunning(
                f"A {job_type.lower()} job is already running",
                job_id=holder["_id"] if holder else None
            )
        return job

    async def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Get a job by ID."""
        return await self.collection.find_one({"_id": job_id})

    async def get_running_job(self, tenant_id: str, job_type: str) -> Optional[Dict[str, Any]]:
        """Get the RUNNING job of a type for a tenant, if any."""
        return await self.collection.find_one(
            {"tenant_id": tenant_id, "type": job_type, "status": JobStatusEnum.RUNNING.value},
            sort=[("started_at", -1)]
        )

    async def mark_running(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Move a PENDING job to RUNNING. Returns None if it was not PENDING."""
        now = get_utc_now()
        return await self.collection.find_one_and_update(
            {"_id": job_id, "status": JobStatusEnum.PENDING.value},
            {
                "$set": {
                    "status": JobStatusEnum.RUNNING.value,
                    "started_at": now,
                    "updated_at": now
                },
                "$push": _push_log("info", "Job started")
            },
            return_document=True
        )

    async def update_progress(
        self,
        job_id: str,
        stage: str,
        percent: int,
        message: Optional[str] = None
    ) -> bool:
        """Record progress on a RUNNING job.

        `$max` keeps progress_percent non-decreasing and touches no field a
        cancel request writes.
        """
        update: Dict[str, Any] = {
            "$max": {"progress_percent": max(0, min(100, int(percent)))},
            "$set": {"current_stage": stage, "updated_at": get_utc_now()}
        }
        if message:
            update["$push"] = _push_log("info", message)

        result = await self.collection.update_one(
            {"_id": job_id, "status": JobStatusEnum.RUNNING.value},
            update
        )
        return result.modified_count > 0

    async def request_cancel(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Set the cancellation flag on a RUNNING job. None if not RUNNING."""
        return await self.collection.find_one_and_update(
            {"_id": job_id, "status": JobStatusEnum.RUNNING.value},
            {
                "$set": {"cancel_requested": True},
                "$push": _push_log("info", "Cancellation requested")
            },
            return_document=True
        )

    async def is_cancel_requested(self, job_id: str) -> bool:
        """Check the cancellation flag."""
        job = await self.collection.find_one(
            {"_id": job_id},
            projection={"cancel_requested": 1}
        )
        return bool(job and job.get("cancel_requested"))

    async def finalize(
        self,
        job_id: str,
        status: JobStatusEnum,
        result: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
        log_message: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Move an active job to a terminal status, exactly once.

        Returns the updated job, or None if the job was already terminal
        (or no longer exists).
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"{status} is not a terminal status")

        now = get_utc_now()
        fields: Dict[str, Any] = {
            "status": status.value,
            "active": False,
            "completed_at": now,
            "updated_at": now
        }
        if status == JobStatusEnum.COMPLETED:
            fields["result"] = result
            fields["progress_percent"] = 100
        if status == JobStatusEnum.FAILED:
            fields["error_message"] = error_message

        level = "error" if status == JobStatusEnum.FAILED else "info"
        message = log_message or error_message or f"Job {status.value.lower()}"

        return await self.collection.find_one_and_update(
            {"_id": job_id, "status": {"$in": _ACTIVE}},
            {"$set": fields, "$push": _push_log(level, message)},
            return_document=True
        )

    async def list_jobs(
        self,
        tenant_id: Optional[str] = None,
        job_type: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[Dict[str, Any]], int]:
        """List jobs newest first. Returns (jobs, total matching)."""
        query: Dict[str, Any] = {}
        if tenant_id:
            query["tenant_id"] = tenant_id
        if job_type:
            query["type"] = job_type
        if status:
            query["status"] = status

        skip = (max(page, 1) - 1) * limit
        cursor = self.collection.find(query, projection={"logs": 0}).sort("created_at", -1).skip(skip).limit(limit)
        jobs = await cursor.to_list(length=limit)
        total = await self.collection.count_documents(query)
        return jobs, total

    async def find_active_jobs(self) -> List[Dict[str, Any]]:
        """All PENDING or RUNNING jobs."""
        cursor = self.collection.find({"status": {"$in": _ACTIVE}})
        return await cursor.to_list(length=None)

    async def delete_job(self, job_id: str) -> bool:
        """Delete a job unless it is RUNNING."""
        result = await self.collection.delete_one(
            {"_id": job_id, "status": {"$ne": JobStatusEnum.RUNNING.value}}
        )
        return result.deleted_count > 0

    async def delete_older_than(self, days: int, tenant_id: Optional[str] = None) -> int:
        """Delete terminal jobs created more than `days` days ago."""
        query: Dict[str, Any] = {
            "created_at": {"$lt": get_utc_now() - timedelta(days=days)},
            "status": {"$in": _TERMINAL}
        }
        if tenant_id:
            query["tenant_id"] = tenant_id

        result = await self.collection.delete_many(query)
        return result.deleted_count
