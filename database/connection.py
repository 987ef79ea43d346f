"""Database connection setup for MongoDB and Redis."""
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
import redis.asyncio as redis
from shared.config import settings


class DatabaseConnection:
    """Manages MongoDB and Redis connections."""

    _mongo_client: Optional[AsyncIOMotorClient] = None
    _redis_client: Optional[redis.Redis] = None
    _db: Optional[AsyncIOMotorDatabase] = None

    @classmethod
    async def init_mongo(cls) -> AsyncIOMotorDatabase:
        """Initialize MongoDB connection."""
        if cls._mongo_client is None:
            cls._mongo_client = AsyncIOMotorClient(settings.mongo_url, tz_aware=True)
            cls._db = cls._mongo_client[settings.mongo_db_name]
            await setup_indexes(cls._db)
        return cls._db

    @classmethod
    async def get_mongo_db(cls) -> AsyncIOMotorDatabase:
        """Get MongoDB database instance."""
        if cls._db is None:
            await cls.init_mongo()
        return cls._db

    @classmethod
    async def init_redis(cls) -> redis.Redis:
        """Initialize Redis connection."""
        if cls._redis_client is None:
            cls._redis_client = redis.from_url(
                settings.redis_url,
                decode_responses=True
            )
        return cls._redis_client

    @classmethod
    async def get_redis(cls) -> redis.Redis:
        """Get Redis client instance."""
        if cls._redis_client is None:
            await cls.init_redis()
        return cls._redis_client

    @classmethod
    async def close_connections(cls):
        """Close all database connections."""
        if cls._mongo_client:
            cls._mongo_client.close()
            cls._mongo_client = None
            cls._db = None
        if cls._redis_client:
            await cls._redis_client.aclose()
            cls._redis_client = None


async def setup_indexes(db: AsyncIOMotorDatabase):
    """Set up MongoDB indexes, including the ones that carry invariants.

    - jobs (tenant_id, type) unique over active jobs: single-flight admission
      is a single insert that the index either accepts or rejects.
    - articles (tenant_id, source_url_key) unique: a known URL is never stored
      twice; the key is the normalized URL, `source_url` keeps the feed link.
    """
    await db.jobs.create_index(
        [("tenant_id", 1), ("type", 1)],
        unique=True,
        partialFilterExpression={"active": True},
        name="single_flight_per_tenant_type"
    )
    await db.jobs.create_index([("tenant_id", 1), ("created_at", -1)])
    await db.jobs.create_index("status")

    await db.articles.create_index(
        [("tenant_id", 1), ("source_url_key", 1)],
        unique=True,
        name="unique_source_url_per_tenant"
    )
    await db.articles.create_index([("tenant_id", 1), ("created_at", -1)])

    await db.sources.create_index([("tenant_id", 1), ("active", 1)])


# Convenience functions
async def get_db() -> AsyncIOMotorDatabase:
    """Dependency for getting MongoDB database."""
    return await DatabaseConnection.get_mongo_db()


async def get_redis() -> redis.Redis:
    """Dependency for getting Redis client."""
    return await DatabaseConnection.get_redis()
