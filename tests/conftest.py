"""
Shared fixtures: in-memory stand-ins for the document store and the redis
stream commands, plus a Pillow image factory.
"""

import copy
import itertools
import json
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from PIL import Image as PILImage
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from blog_store.integrations.pillow_tool import PillowImageTool
from blog_store.services.blog_directory import BlogDirectory
from blog_store.services.blog_service import BlogConsistencyEngine
from blog_store.services.image_pipeline import ImageDerivativePipeline
from blog_store.services.recency_index import RecencyIndexAdapter


# ============================================================================
# Document store
# ============================================================================


def _get(doc: Dict[str, Any], dotted: str) -> Any:
    value: Any = doc
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _matches(doc: Dict[str, Any], query: Optional[Dict[str, Any]]) -> bool:
    for key, condition in (query or {}).items():
        value = _get(doc, key)
        if isinstance(condition, dict) and any(k.startswith("$") for k in condition):
            for op, operand in condition.items():
                if op == "$in" and value not in operand:
                    return False
                if op == "$ne" and value == operand:
                    return False
        elif value != condition:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = docs

    def sort(self, key: str, direction: int = 1) -> "FakeCursor":
        self._docs = sorted(self._docs, key=lambda d: str(d.get(key)), reverse=direction < 0)
        return self

    def skip(self, n: int) -> "FakeCursor":
        self._docs = self._docs[n:]
        return self

    def limit(self, n: int) -> "FakeCursor":
        if n:
            self._docs = self._docs[:n]
        return self

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        docs = self._docs if length is None else self._docs[:length]
        return copy.deepcopy(docs)


class FakeCollection:
    """The subset of the Motor collection API the services use."""

    def __init__(self, name: str = "collection"):
        self.name = name
        self.docs: List[Dict[str, Any]] = []
        self.fail_on: set = set()
        self.calls: List[str] = []

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise PyMongoError(f"{self.name}.{operation} failed")

    def _find(self, query):
        return [d for d in self.docs if _matches(d, query)]

    async def find_one(self, query=None, projection=None):
        self._check("find_one")
        found = self._find(query)
        return copy.deepcopy(found[0]) if found else None

    def find(self, query=None, projection=None):
        self._check("find")
        return FakeCursor(copy.deepcopy(self._find(query)))

    async def insert_one(self, document):
        self._check("insert_one")
        self.docs.append(copy.deepcopy(document))
        return SimpleNamespace(inserted_id=document.get("_id"), acknowledged=True)

    async def update_one(self, query, update, upsert=False):
        self._check("update_one")
        found = self._find(query)
        changes = copy.deepcopy(update.get("$set", {}))
        if found:
            found[0].update(changes)
            return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if upsert:
            doc = {k: v for k, v in query.items() if not k.startswith("$")}
            doc.update(changes)
            self.docs.append(doc)
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=doc.get("_id"))
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    async def delete_one(self, query):
        self._check("delete_one")
        found = self._find(query)
        if found:
            self.docs.remove(found[0])
            return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    def aggregate(self, pipeline):
        self._check("aggregate")
        docs = copy.deepcopy(self.docs)
        for stage in pipeline:
            if "$match" in stage:
                docs = [d for d in docs if _matches(d, stage["$match"])]
            elif "$bucket" in stage:
                docs = self._bucket(docs, stage["$bucket"])
        return FakeCursor(docs)

    @staticmethod
    def _bucket(docs, bucket_stage):
        field = bucket_stage["groupBy"].lstrip("$")
        lower, upper = bucket_stage["boundaries"][0], bucket_stage["boundaries"][-1]
        push = bucket_stage["output"]["blogs"]["$push"]
        buckets: Dict[Any, Dict[str, Any]] = {}
        for doc in docs:
            value = doc.get(field)
            key = lower if value is not None and lower <= value < upper else bucket_stage["default"]
            bucket = buckets.setdefault(key, {"_id": key, "count": 0, "blogs": []})
            bucket["count"] += 1
            bucket["blogs"].append({name: doc.get(expr.lstrip("$")) for name, expr in push.items()})
        return list(buckets.values())


# ============================================================================
# Redis streams
# ============================================================================


class FakeRedis:
    """XADD / XDEL / XREVRANGE over in-memory lists."""

    def __init__(self):
        self.streams: Dict[str, List[tuple]] = {}
        self._seq = itertools.count(1)
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisError("redis unavailable")

    async def xadd(self, name, fields, maxlen=None, approximate=True):
        self._check()
        stream_id = f"1718000000000-{next(self._seq)}"
        entries = self.streams.setdefault(name, [])
        entries.append((stream_id, dict(fields)))
        if maxlen is not None and len(entries) > maxlen:
            del entries[: len(entries) - maxlen]
        return stream_id

    async def xdel(self, name, *ids):
        self._check()
        entries = self.streams.get(name, [])
        before = len(entries)
        self.streams[name] = [e for e in entries if e[0] not in ids]
        return before - len(self.streams[name])

    async def xrevrange(self, name, max="+", min="-", count=None):
        self._check()
        rows = list(reversed(self.streams.get(name, [])))
        return rows[:count] if count else rows


# ============================================================================
# Metadata extraction
# ============================================================================


class FakeExtractor:
    """Returns a fixed tag map for every file."""

    def __init__(self, tags: Optional[Dict[str, Any]] = None):
        self.tags = tags or {}
        self.calls: List[Path] = []

    async def extract(self, path, tags):
        self.calls.append(Path(path))
        return dict(self.tags)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def blogs_collection():
    return FakeCollection("blogs")


@pytest.fixture
def posts_collection():
    return FakeCollection("posts")


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def recency_index(fake_redis):
    return RecencyIndexAdapter(client=fake_redis, stream="blogs:recent:10", maxlen=10)


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def pipeline(extractor):
    return ImageDerivativePipeline(extractor=extractor, tool=PillowImageTool(), progressive=False, default_encoding="JPEG")


@pytest.fixture
def gallery_root(tmp_path):
    return tmp_path / "galleries"


@pytest.fixture
def engine(blogs_collection, posts_collection, recency_index, pipeline, gallery_root):
    return BlogConsistencyEngine.from_collections(
        blogs_collection,
        posts_collection,
        index=recency_index,
        pipeline=pipeline,
        gallery_root=str(gallery_root),
        gallery_url_prefix="/galleries",
    )


@pytest.fixture
def directory(blogs_collection, recency_index):
    return BlogDirectory.from_collections(blogs_collection, public_view=FakeCollection("publicBlogsView"), index=recency_index)


@pytest.fixture
def make_image(tmp_path):
    """Write a solid-colour image and return its path."""

    def _make(name: str, width: int, height: int, fmt: str = "PNG", mode: str = "RGB", directory: Path = None) -> Path:
        target_dir = directory or tmp_path / "sources"
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / name
        PILImage.new(mode, (width, height), color=(200, 120, 40) if mode == "RGB" else 128).save(path, format=fmt)
        return path

    return _make


@pytest.fixture
def index_tokens(fake_redis):
    """Return the live stream ids that name a given blog."""

    def _tokens(blog_id: str, stream: str = "blogs:recent:10") -> List[str]:
        return [
            sid for sid, fields in fake_redis.streams.get(stream, []) if json.loads(fields["blog"])["blogId"] == blog_id
        ]

    return _tokens
