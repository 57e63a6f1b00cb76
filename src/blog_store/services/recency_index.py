"""
# Recency Index Adapter

Thin wrapper around the redis stream that lists recently active public blogs.

A blog holds at most one entry at a time. `add(blog)` first removes the entry
named by `blog.stream_id`, then appends a fresh JSON payload with
`XADD ... MAXLEN ~ N` and stores the returned stream id on the blog.
`remove(blog)` deletes that exact entry and clears the token; with no token it
is a no-op. `recent()` reads the newest entries with `XREVRANGE`. Deciding
when a blog belongs in the index is left to the consistency engine.

Every redis failure is raised as `ExternalServiceError` with the driver error
attached. Clients created with or without `decode_responses` are both accepted;
stream ids and payloads are decoded as UTF-8 when they arrive as bytes.
"""

import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from blog_store.config import settings
from blog_store.exceptions import ExternalServiceError
from blog_store.managers.logging_manager import LoggerLike, get_logger
from blog_store.managers.redis_manager import redis_manager
from blog_store.models.blog_models import Blog, RecencyIndexEntry

ENTRY_FIELD = "blog"


class RecencyIndexAdapter:
    """Append-only, newest-first index of public blogs backed by a redis stream."""

    def __init__(
        self,
        client: Optional[aioredis.Redis] = None,
        stream: Optional[str] = None,
        maxlen: Optional[int] = None,
        logger: Optional[LoggerLike] = None,
        client_factory: Optional[Callable[[], Awaitable[aioredis.Redis]]] = None,
    ):
        self._client = client
        self._client_factory = client_factory or redis_manager.get_client
        self.stream = stream or redis_manager.key(settings.RECENT_BLOGS_STREAM)
        self.maxlen = maxlen or settings.RECENT_BLOGS_MAXLEN
        self.logger = logger or get_logger(prefix="[RecencyIndex]")

    async def _get_client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = await self._client_factory()
        return self._client

    async def append(self, entry: RecencyIndexEntry) -> str:
        """Append `entry` and return its stream id."""
        payload = entry.model_dump_json(by_alias=True)
        try:
            client = await self._get_client()
            stream_id = await client.xadd(
                self.stream, {ENTRY_FIELD: payload}, maxlen=self.maxlen, approximate=True
            )
        except RedisError as e:
            self.logger.error("Failed to add blog %s to %s: %s", entry.blog_id, self.stream, e, exc_info=True)
            raise ExternalServiceError("recency index", "add", e) from e
        stream_id = _text(stream_id)
        self.logger.info("Added blog %s to %s as %s", entry.blog_id, self.stream, stream_id)
        return stream_id

    async def delete(self, stream_id: str) -> bool:
        """
        Delete the entry with `stream_id`.

        Returns:
            bool: `True` if an entry was removed; `False` if it had already been
            trimmed or deleted.
        """
        try:
            client = await self._get_client()
            removed = await client.xdel(self.stream, stream_id)
        except RedisError as e:
            self.logger.error("Failed to remove %s from %s: %s", stream_id, self.stream, e, exc_info=True)
            raise ExternalServiceError("recency index", "remove", e) from e
        self.logger.info("Removed %s from %s (%d entry)", stream_id, self.stream, removed)
        return bool(removed)

    async def recent(self, count: Optional[int] = None) -> List[RecencyIndexEntry]:
        """Return up to `count` entries, newest first."""
        count = count or self.maxlen
        try:
            client = await self._get_client()
            rows = await client.xrevrange(self.stream, count=count)
        except RedisError as e:
            self.logger.error("Failed to read %s: %s", self.stream, e, exc_info=True)
            raise ExternalServiceError("recency index", "read", e) from e
        entries = []
        for stream_id, fields in rows:
            stream_id = _text(stream_id)
            payload = _entry_payload(fields)
            if payload is None:
                continue
            try:
                entries.append(RecencyIndexEntry.model_validate(json.loads(payload)))
            except ValueError as e:
                self.logger.warning("Skipping malformed recency entry %s: %s", stream_id, e)
        return entries

    async def ids_for_blog(self, blog_id: str) -> List[str]:
        """Stream ids whose payload names `blog_id`, newest first."""
        try:
            client = await self._get_client()
            rows = await client.xrevrange(self.stream)
        except RedisError as e:
            raise ExternalServiceError("recency index", "read", e) from e
        matches = []
        for stream_id, fields in rows:
            payload = _entry_payload(fields)
            if payload and json.loads(payload).get("blogId") == blog_id:
                matches.append(_text(stream_id))
        return matches

    async def add(self, blog: Blog) -> str:
        """
        Give `blog` a fresh entry at the head of the index.

        A token already held by the blog is removed first, so the blog keeps a
        single position in the ordering. The new token is stored on `blog`.
        """
        if blog.stream_id:
            await self.remove(blog)
        blog.stream_id = await self.append(RecencyIndexEntry.from_blog(blog))
        return blog.stream_id

    async def remove(self, blog: Blog) -> bool:
        """
        Remove the entry held by `blog` and clear its token.

        Returns:
            bool: `False` when the blog held no token or the entry was already gone.
        """
        if not blog.stream_id:
            return False
        removed = await self.delete(blog.stream_id)
        blog.stream_id = None
        return removed


def _text(value: Union[str, bytes]) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


def _entry_payload(fields: Dict[Any, Any]) -> Optional[str]:
    """The entry JSON of a stream row, whether or not the client decodes responses."""
    payload = fields.get(ENTRY_FIELD)
    if payload is None:
        payload = fields.get(ENTRY_FIELD.encode())
    if payload is None:
        return None
    return _text(payload)
