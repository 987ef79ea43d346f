"""Source repository for tenants' configured feeds."""
from typing import Optional, List, Dict, Any
from motor.motor_asyncio import AsyncIOMotorDatabase
from shared.utils import get_utc_now


class SourceRepository:
    """Repository for feed Source records."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.sources

    async def get_active_sources(
        self,
        tenant_id: str,
        source_ids: Optional[List[str]] = None
    ) -> List[Dict[str, Any]]:
        """Active sources for a tenant, optionally restricted to `source_ids`.

        Sources come back in creation order so runs are reproducible.
        """
        query: Dict[str, Any] = {"tenant_id": tenant_id, "active": True}
        if source_ids:
            query["_id"] = {"$in": list(source_ids)}

        cursor = self.collection.find(query).sort([("created_at", 1), ("_id", 1)])
        return await cursor.to_list(length=None)

    async def record_fetch(self, source_id: str, error: Optional[str] = None) -> bool:
        """Record the outcome of the latest fetch attempt."""
        result = await self.collection.update_one(
            {"_id": source_id},
            {"$set": {"last_fetched_at": get_utc_now(), "last_error": error}}
        )
        return result.modified_count > 0

    async def get_tenants_with_active_sources(self) -> List[str]:
        """Ids of tenants that have at least one active source, sorted."""
        tenant_ids = await self.collection.distinct("tenant_id", {"active": True})
        return sorted(tenant_ids)
