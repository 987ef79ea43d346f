"""Per-tenant curation settings."""
from dataclasses import dataclass
from typing import Any, Dict
from motor.motor_asyncio import AsyncIOMotorDatabase
from shared.config import Settings


@dataclass(frozen=True)
class CurationSettings:
    """Thresholds the curation pipeline applies for one tenant."""
    relevance_threshold: float
    similarity_threshold: float
    max_age_days: int


class TenantSettingsRepository:
    """Reads tenant overrides, falling back to the service defaults."""

    def __init__(self, db: AsyncIOMotorDatabase, defaults: Settings):
        self.collection = db.tenant_settings
        self.defaults = defaults

    async def get_curation_settings(self, tenant_id: str) -> CurationSettings:
        doc: Dict[str, Any] = await self.collection.find_one({"_id": tenant_id}) or {}
        return CurationSettings(
            relevance_threshold=float(doc.get("relevance_threshold", self.defaults.relevance_threshold)),
            similarity_threshold=float(doc.get("similarity_threshold", self.defaults.similarity_threshold)),
            max_age_days=int(doc.get("max_age_days", self.defaults.max_age_days)),
        )
