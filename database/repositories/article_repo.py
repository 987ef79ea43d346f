"""Article repository for the curated Articles collection."""
from typing import Optional, List, Dict, Any
from datetime import datetime
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from api.models.article import ArticleModel, ArticleStatusEnum
from shared.errors import DuplicateArticleError
from shared.utils import generate_article_id, get_utc_now, normalize_url


class ArticleRepository:
    """Repository for Article records, partitioned by tenant."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.articles

    async def create_article(
        self,
        tenant_id: str,
        source_url: str,
        title: str,
        content: str,
        summary: str,
        relevance_score: float,
        categories: List[str],
        embedding: List[float],
        author: Optional[str] = None,
        source_id: Optional[str] = None,
        published_at: Optional[datetime] = None,
        status: ArticleStatusEnum = ArticleStatusEnum.PENDING_REVIEW
    ) -> Dict[str, Any]:
        """Create a new article. Raises DuplicateArticleError if the URL is known."""
        article = {
            "_id": generate_article_id(),
            "tenant_id": tenant_id,
            "source_url": source_url,
            "source_url_key": normalize_url(source_url),
            "source_id": source_id,
            "title": title,
            "content": content,
            "summary": summary,
            "author": author,
            "relevance_score": relevance_score,
            "categories": categories,
            "embedding": embedding,
            "status": status.value,
            "published_at": published_at,
            "created_at": get_utc_now()
        }
        # Rejects out-of-range scores before anything is written
        ArticleModel(**article)

        try:
            await self.collection.insert_one(article)
        except DuplicateKeyError:
            raise DuplicateArticleError(f"Article already exists: {source_url}")
        return article

    async def find_by_source_url(self, tenant_id: str, url: str) -> Optional[Dict[str, Any]]:
        """Get a tenant's article by source URL."""
        return await self.collection.find_one({
            "tenant_id": tenant_id,
            "source_url_key": normalize_url(url)
        })

    async def recent_by_tenant(self, tenant_id: str, limit: int) -> List[Dict[str, Any]]:
        """The tenant's `limit` most recently created articles that have an embedding."""
        cursor = self.collection.find(
            {"tenant_id": tenant_id, "embedding.0": {"$exists": True}},
            projection={"_id": 1, "title": 1, "embedding": 1, "created_at": 1}
        ).sort("created_at", -1).limit(limit)
        return await cursor.to_list(length=limit)
