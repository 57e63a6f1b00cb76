import json

import pytest
from bson import ObjectId
from redis.exceptions import RedisError

from blog_store.exceptions import ExternalServiceError
from blog_store.models.blog_models import Blog
from blog_store.services.recency_index import RecencyIndexAdapter


def _public_blog(title="Field Notes"):
    return Blog(id=str(ObjectId()), title=title, owner_name="matt", public=True, description="notes")


@pytest.mark.asyncio
async def test_add_stores_token_and_payload(recency_index, fake_redis):
    blog = _public_blog()

    token = await recency_index.add(blog)

    assert blog.stream_id == token
    (stream_id, fields), = fake_redis.streams["blogs:recent:10"]
    assert stream_id == token
    payload = json.loads(fields["blog"])
    assert payload == {
        "blogId": blog.id,
        "name": "Field Notes",
        "owner": "matt",
        "visibility": "public",
        "preview": None,
        "description": "notes",
    }


@pytest.mark.asyncio
async def test_add_replaces_previous_entry(recency_index, fake_redis, index_tokens):
    blog = _public_blog()
    first = await recency_index.add(blog)
    second = await recency_index.add(blog)

    assert first != second
    assert index_tokens(blog.id) == [second]


@pytest.mark.asyncio
async def test_remove_clears_token(recency_index, index_tokens):
    blog = _public_blog()
    await recency_index.add(blog)

    assert await recency_index.remove(blog) is True
    assert blog.stream_id is None
    assert index_tokens(blog.id) == []


@pytest.mark.asyncio
async def test_remove_without_token_is_noop(recency_index, fake_redis):
    blog = _public_blog()
    fake_redis.fail = True
    assert await recency_index.remove(blog) is False


@pytest.mark.asyncio
async def test_remove_already_trimmed_entry(recency_index):
    blog = _public_blog()
    blog.stream_id = "1-0"
    assert await recency_index.remove(blog) is False
    assert blog.stream_id is None


@pytest.mark.asyncio
async def test_recent_is_newest_first_and_capped(recency_index):
    blogs = [_public_blog(f"blog {n}") for n in range(12)]
    for blog in blogs:
        await recency_index.add(blog)

    entries = await recency_index.recent()
    assert len(entries) == 10
    assert entries[0].name == "blog 11"
    assert entries[-1].name == "blog 2"

    assert [e.name for e in await recency_index.recent(2)] == ["blog 11", "blog 10"]


@pytest.mark.asyncio
async def test_redis_errors_are_wrapped(recency_index, fake_redis):
    fake_redis.fail = True
    with pytest.raises(ExternalServiceError) as info:
        await recency_index.add(_public_blog())
    assert isinstance(info.value.cause, RedisError)

    with pytest.raises(ExternalServiceError):
        await recency_index.recent()


@pytest.mark.asyncio
async def test_client_is_created_lazily(fake_redis):
    calls = []

    async def factory():
        calls.append(1)
        return fake_redis

    adapter = RecencyIndexAdapter(stream="s", maxlen=3, client_factory=factory)
    assert calls == []
    await adapter.add(_public_blog())
    await adapter.recent()
    assert calls == [1]


class _BytesRedis:
    """Stream client that answers the way redis-py does without `decode_responses`."""

    def __init__(self, inner):
        self.inner = inner

    async def xadd(self, name, fields, **kwargs):
        return (await self.inner.xadd(name, fields, **kwargs)).encode()

    async def xdel(self, name, *ids):
        return await self.inner.xdel(name, *ids)

    async def xrevrange(self, name, **kwargs):
        rows = await self.inner.xrevrange(name, **kwargs)
        return [(sid.encode(), {k.encode(): v.encode() for k, v in fields.items()}) for sid, fields in rows]


@pytest.mark.asyncio
async def test_undecoded_client_replies(fake_redis):
    index = RecencyIndexAdapter(client=_BytesRedis(fake_redis), stream="blogs:recent:10", maxlen=10)
    blog = _public_blog()

    first = await index.add(blog)
    second = await index.add(blog)

    assert isinstance(second, str)
    assert await index.ids_for_blog(blog.id) == [second]
    assert first not in [sid for sid, _ in fake_redis.streams["blogs:recent:10"]]
    entries = await index.recent()
    assert [entry.blog_id for entry in entries] == [blog.id]
