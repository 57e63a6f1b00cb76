"""
# Post Lifecycle Manager

Create, update, read and delete Post records in the posts collection.

Every write returns the `PostSummary` projection of the Post. Writes touch the
posts collection only; merging the projection into the owning Blog is the job
of `BlogConsistencyEngine`, which calls this manager under its per-Blog lock.

Ownership is checked on every read and write: a Post whose `blogId` differs
from the given Blog is reported as `NotFoundError`, exactly like a missing Post.

## Usage Example

```python
posts = PostLifecycleManager.from_database(db_manager.get_database())
summary = await posts.create(blog, {"title": "First light", "content": "..."})
post = await posts.get(blog, summary.id)
```
"""

from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from blog_store.config import settings
from blog_store.exceptions import ExternalServiceError, NotFoundError, ValidationError
from blog_store.managers.logging_manager import LoggerLike, get_logger
from blog_store.models.blog_models import Blog, Post, PostSummary, to_object_id, utc_now
from blog_store.utils.slugify import slugify

# Fields callers may never change through update()
IMMUTABLE_FIELDS = {"id", "blog_id", "created_on"}

VISIBILITY_FILTERS = {
    "public": {"public": True},
    "private": {"public": {"$ne": True}},
    "all": {},
}


def parse_object_id(value: Any, field: str = "id") -> ObjectId:
    """Parse a canonical identity string, raising `ValidationError` when malformed."""
    if isinstance(value, ObjectId):
        return value
    if not value:
        raise ValidationError(field)
    if not ObjectId.is_valid(value):
        raise ValidationError(field, f"'{value}' is not a valid identity for '{field}'")
    return ObjectId(value)


class PostLifecycleManager:
    """Persists Post records and projects them into summaries."""

    def __init__(self, collection: AsyncIOMotorCollection, logger: Optional[LoggerLike] = None):
        self.collection = collection
        self.logger = logger or get_logger(prefix="[PostLifecycle]")

    @classmethod
    def from_database(
        cls, database: AsyncIOMotorDatabase, logger: Optional[LoggerLike] = None
    ) -> "PostLifecycleManager":
        """Bind to the configured posts collection of `database`."""
        return cls(database[settings.POSTS_COLLECTION], logger=logger)

    @classmethod
    def from_collection(
        cls, collection: AsyncIOMotorCollection, logger: Optional[LoggerLike] = None
    ) -> "PostLifecycleManager":
        """Bind to an already-selected posts collection."""
        return cls(collection, logger=logger)

    @staticmethod
    def _require_blog(blog: Blog) -> ObjectId:
        if blog is None or not blog.id:
            raise ValidationError("blogId", "The blog must be saved before it can hold posts")
        return parse_object_id(blog.id, "blogId")

    async def _load(self, blog: Blog, post_id: Any) -> Post:
        blog_oid = self._require_blog(blog)
        oid = parse_object_id(post_id, "id")
        try:
            doc = await self.collection.find_one({"_id": oid})
        except PyMongoError as e:
            self.logger.error("Failed to load post %s: %s", post_id, e, exc_info=True)
            raise ExternalServiceError("document store", "find post", e) from e
        if doc is None:
            raise NotFoundError("post", str(oid))
        post = Post.model_validate(doc)
        if post.blog_id != str(blog_oid):
            self.logger.warning("Post %s belongs to blog %s, not %s", oid, post.blog_id, blog_oid)
            raise NotFoundError("post", str(oid), f"Post '{oid}' does not belong to blog '{blog_oid}'")
        return post

    async def get(self, blog: Blog, post_id: Any) -> Post:
        """
        Load a Post owned by `blog`.

        Raises:
            ValidationError: `post_id` is missing or malformed.
            NotFoundError: No such Post, or it belongs to another Blog.
            ExternalServiceError: The store call failed.
        """
        return await self._load(blog, post_id)

    async def create(self, blog: Blog, fields: Dict[str, Any]) -> PostSummary:
        """
        Insert a new Post under `blog` and return its summary.

        A `blogId` in `fields` that names a different Blog is rejected. The slug is
        derived from the title when none is given.
        """
        blog_oid = self._require_blog(blog)
        given_blog = fields.get("blogId") or fields.get("blog_id")
        if given_blog is not None and str(given_blog) != str(blog_oid):
            raise ValidationError("blogId", f"Post blogId '{given_blog}' does not match blog '{blog_oid}'")

        post = Post.model_validate(fields)
        post.id = str(ObjectId())
        post.blog_id = str(blog_oid)
        post.created_on = utc_now()
        post.edited_on = None
        if not post.slug:
            post.slug = slugify(post.title)

        try:
            await self.collection.insert_one(post.to_document())
        except PyMongoError as e:
            self.logger.error("Failed to insert post into blog %s: %s", blog_oid, e, exc_info=True)
            raise ExternalServiceError("document store", "insert post", e) from e

        self.logger.info("Created post %s in blog %s", post.id, blog_oid)
        return post.summary()

    async def update(self, blog: Blog, post_id: Any, fields: Dict[str, Any]) -> PostSummary:
        """
        Apply `fields` to an existing Post and return its refreshed summary.

        Only the fields present in `fields` change; identity, owning Blog and
        creation time are never changed. `editedOn` is set to now.
        """
        post = await self._load(blog, post_id)
        given_blog = fields.get("blogId") or fields.get("blog_id")
        if given_blog is not None and str(given_blog) != post.blog_id:
            raise ValidationError("blogId", "A post cannot be moved to another blog")

        parsed = Post.model_validate(fields)
        changes = {name: getattr(parsed, name) for name in parsed.model_fields_set - IMMUTABLE_FIELDS}
        updated = post.model_copy(update=changes)
        if "title" in changes and "slug" not in changes and not updated.slug:
            updated.slug = slugify(updated.title)
        updated.edited_on = utc_now()

        document = updated.to_document()
        document.pop("_id")
        try:
            result = await self.collection.update_one({"_id": to_object_id(post.id)}, {"$set": document})
        except PyMongoError as e:
            self.logger.error("Failed to update post %s: %s", post.id, e, exc_info=True)
            raise ExternalServiceError("document store", "update post", e) from e
        if result.matched_count == 0:
            raise NotFoundError("post", post.id)

        self.logger.info("Updated post %s (%s)", post.id, ", ".join(sorted(changes)) or "no fields")
        return updated.summary()

    async def delete(self, blog: Blog, post_id: Any) -> bool:
        """
        Remove the Post record.

        The Blog's embedded summary is not touched here.

        Returns:
            bool: `True` when a record was deleted.
        """
        post = await self._load(blog, post_id)
        try:
            result = await self.collection.delete_one({"_id": to_object_id(post.id), "blogId": to_object_id(post.blog_id)})
        except PyMongoError as e:
            self.logger.error("Failed to delete post %s: %s", post.id, e, exc_info=True)
            raise ExternalServiceError("document store", "delete post", e) from e
        self.logger.info("Deleted post %s from blog %s", post.id, post.blog_id)
        return result.deleted_count == 1

    async def save_images(self, blog: Blog, post: Post) -> None:
        """Persist only the image collection of `post`; `editedOn` is left alone."""
        self._require_blog(blog)
        if post.blog_id != blog.id:
            raise NotFoundError("post", post.id, f"Post '{post.id}' does not belong to blog '{blog.id}'")
        images = [image.model_dump() for image in post.images]
        try:
            result = await self.collection.update_one(
                {"_id": parse_object_id(post.id)}, {"$set": {"images": images}}
            )
        except PyMongoError as e:
            self.logger.error("Failed to save images of post %s: %s", post.id, e, exc_info=True)
            raise ExternalServiceError("document store", "save images", e) from e
        if result.matched_count == 0:
            raise NotFoundError("post", post.id)

    async def list_posts(
        self,
        blog: Blog,
        start: int = 0,
        count: Union[int, str] = "all",
        order: str = "desc",
        visibility: str = "public",
    ) -> List[Post]:
        """
        List the Posts of `blog` sorted by identity (creation order).

        Args:
            start: Number of posts to skip.
            count: Maximum number of posts, or `"all"`.
            order: `"asc"` or `"desc"`.
            visibility: `"public"`, `"private"` or `"all"`.
        """
        blog_oid = self._require_blog(blog)
        if visibility not in VISIBILITY_FILTERS:
            raise ValidationError("visibility", f"Unknown visibility '{visibility}'")
        query = {"blogId": blog_oid, **VISIBILITY_FILTERS[visibility]}
        direction = ASCENDING if str(order).lower() == "asc" else DESCENDING

        cursor = self.collection.find(query).sort("_id", direction)
        if start:
            cursor = cursor.skip(int(start))
        limit = None
        if not (isinstance(count, str) and count.lower() == "all"):
            limit = int(count)
            cursor = cursor.limit(limit)
        try:
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            self.logger.error("Failed to list posts of blog %s: %s", blog_oid, e, exc_info=True)
            raise ExternalServiceError("document store", "list posts", e) from e
        return [Post.model_validate(doc) for doc in docs]

    async def ids_for_blog(self, blog: Blog) -> List[str]:
        """Identities of every Post whose `blogId` is `blog`."""
        blog_oid = self._require_blog(blog)
        try:
            docs = await self.collection.find({"blogId": blog_oid}, {"_id": 1}).to_list(length=None)
        except PyMongoError as e:
            raise ExternalServiceError("document store", "list post ids", e) from e
        return [str(doc["_id"]) for doc in docs]
