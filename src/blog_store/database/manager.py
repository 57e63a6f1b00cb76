"""
# Database Management Module

This module provides the **MongoDB infrastructure** for Blog Store.
`DatabaseManager` owns the **Motor** async client, establishes the connection
with retries, exposes collections to the services and creates the indexes the
blog and post collections rely on.

## Architecture Overview

```
┌──────────────┐      ┌───────────────────────────────┐
│   Services   │─────▶│        DatabaseManager        │
│ (Blog, Post) │      │          (Singleton)          │
└──────────────┘      └──────────────┬────────────────┘
                                     │
                      ┌──────────────▼──────────────┐
                      │      Connection Pool        │
                      │  (Motor/PyMongo Internal)   │
                      └─────────────────────────────┘
```

## Key Features

### 1. Connection Lifecycle Management
- **Async Initialization**: `connect()` is awaited once by the host application.
- **Exponential Backoff**: Up to 3 attempts with 1s, 2s, 4s waits.
- **Graceful Shutdown**: `disconnect()` closes the pooled sockets.

### 2. Timeouts
- `MONGODB_SERVER_SELECTION_TIMEOUT` and `MONGODB_CONNECTION_TIMEOUT` are passed
  straight to the Motor client, so every store call is bounded by them.

### 3. Indexes
- `blogs`: unique `(creatorId, url)` so slugs are unique per owner.
- `posts`: `blogId` for listing a blog's posts.

## Usage Example

```python
from blog_store.database import db_manager

await db_manager.connect()
blogs = db_manager.get_collection("blogs")
blog = await blogs.find_one({"url": "my-first-blog"})
await db_manager.disconnect()
```

## Module Attributes

Attributes:
    db_logger (Logger): Logger for database operations (`[DATABASE]`).
    perf_logger (Logger): Logger for timing metrics (`[DB_PERFORMANCE]`).
    db_manager (DatabaseManager): Global singleton instance.
"""

import asyncio
import time
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from blog_store.config import settings
from blog_store.managers.logging_manager import get_logger

db_logger = get_logger(prefix="[DATABASE]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")


class DatabaseManager:
    """
    Manages the MongoDB connection and collection access.

    **Lifecycle:**
    1. **Instantiation**: Create manager (sets `client=None`, `database=None`)
    2. **Connection**: Call `connect()` to establish the MongoDB connection
    3. **Operations**: Use `get_collection()` to obtain collections
    4. **Shutdown**: Call `disconnect()` to close connections

    Attributes:
        client (`Optional[AsyncIOMotorClient]`): The Motor async MongoDB client.
        database (`Optional[AsyncIOMotorDatabase]`): The selected database.
    """

    def __init__(self):
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self._connection_retries = 3

    def _connection_string(self) -> str:
        if settings.MONGODB_USERNAME and settings.MONGODB_PASSWORD:
            password = settings.MONGODB_PASSWORD.get_secret_value()
            db_logger.debug("Using authenticated connection to MongoDB")
            return (
                f"mongodb://{settings.MONGODB_USERNAME}:"
                f"{password}@"
                f"{settings.MONGODB_URL.replace('mongodb://', '')}"
            )
        db_logger.debug("Using unauthenticated connection to MongoDB")
        return settings.MONGODB_URL

    async def connect(self):
        """
        Establish the connection to MongoDB with exponential backoff retry logic.

        Raises:
            `ServerSelectionTimeoutError`: If MongoDB is unreachable after all attempts.
            `ConnectionFailure`: If authentication fails or the connection is refused.
        """
        if self.client is not None and self.database is not None:
            db_logger.debug("connect() called while already connected")
            return

        start_time = time.time()
        db_logger.info("Starting MongoDB connection process")

        for attempt in range(self._connection_retries):
            attempt_start = time.time()
            try:
                db_logger.info("Connection attempt %d/%d to MongoDB", attempt + 1, self._connection_retries)
                self.client = AsyncIOMotorClient(
                    self._connection_string(),
                    serverSelectionTimeoutMS=settings.MONGODB_SERVER_SELECTION_TIMEOUT,
                    connectTimeoutMS=settings.MONGODB_CONNECTION_TIMEOUT,
                    maxPoolSize=50,
                    minPoolSize=5,
                )
                self.database = self.client[settings.MONGODB_DATABASE]

                ping_start = time.time()
                await self.client.admin.command("ping")
                ping_duration = time.time() - ping_start

                total_duration = time.time() - start_time
                perf_logger.info(
                    "MongoDB connection established successfully in %.3fs (ping: %.3fs)", total_duration, ping_duration
                )
                db_logger.info("Successfully connected to MongoDB database: %s", settings.MONGODB_DATABASE)
                return

            except (ServerSelectionTimeoutError, ConnectionFailure) as e:
                attempt_duration = time.time() - attempt_start
                perf_logger.warning("Connection attempt %d failed after %.3fs", attempt + 1, attempt_duration)
                db_logger.warning(
                    "Failed to connect to MongoDB (attempt %d/%d): %s", attempt + 1, self._connection_retries, e
                )
                if attempt == self._connection_retries - 1:
                    db_logger.error("All connection attempts failed after %.3fs", time.time() - start_time)
                    self.client = None
                    self.database = None
                    raise

                backoff_time = 2**attempt
                db_logger.info("Waiting %.1fs before retry (exponential backoff)", backoff_time)
                await asyncio.sleep(backoff_time)

    async def disconnect(self):
        """Close the Motor client and release all pooled connections."""
        if self.client is None:
            db_logger.warning("Disconnect called but no active MongoDB connection found")
            return
        start_time = time.time()
        self.client.close()
        self.client = None
        self.database = None
        perf_logger.info("MongoDB disconnection completed in %.3fs", time.time() - start_time)
        db_logger.info("Successfully disconnected from MongoDB")

    async def health_check(self) -> bool:
        """
        Verify MongoDB connectivity with a `ping`.

        Returns:
            `bool`: `True` if the database is reachable, `False` otherwise.
        """
        if self.client is None:
            db_logger.warning("Health check failed: No database client available")
            return False
        try:
            await self.client.admin.command("ping")
            return True
        except PyMongoError as e:
            db_logger.error("Database health check failed: %s", e)
            return False

    def get_database(self) -> AsyncIOMotorDatabase:
        if self.database is None:
            raise ConnectionError("Database not connected. Call connect() first.")
        return self.database

    def get_collection(self, collection_name: str) -> AsyncIOMotorCollection:
        """
        Retrieve a MongoDB collection by name from the connected database.

        Raises:
            `ConnectionError`: If `connect()` has not been called.
        """
        return self.get_database()[collection_name]

    async def create_indexes(self):
        """Create the indexes used by the blog and post collections."""
        blogs = self.get_collection(settings.BLOGS_COLLECTION)
        posts = self.get_collection(settings.POSTS_COLLECTION)
        start_time = time.time()
        await blogs.create_index([("creatorId", ASCENDING), ("url", ASCENDING)], unique=True, name="owner_slug_unique")
        await blogs.create_index([("public", ASCENDING)], name="public_idx")
        await posts.create_index([("blogId", ASCENDING), ("_id", ASCENDING)], name="blog_posts_idx")
        perf_logger.info("Database indexes verified in %.3fs", time.time() - start_time)


# Global database manager instance
db_manager = DatabaseManager()
