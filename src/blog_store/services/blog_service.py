"""
# Blog Consistency Engine

This module keeps the three views of a blog in agreement:

1. the **Post records** in the posts collection,
2. the **PostSummary array** embedded in the Blog record, and
3. the blog's entry in the **recency index**.

## Architecture Overview

```
  create/update/delete post
            │
            ▼
┌───────────────────────┐   summary   ┌────────────────────────┐
│ PostLifecycleManager  │────────────▶│  BlogConsistencyEngine │
│   (posts collection)  │             │  (per-blog KeyedLock)  │
└───────────────────────┘             └───────┬────────┬───────┘
                                              │        │
                                   $set/upsert│        │add/remove
                                              ▼        ▼
                                      blogs collection  RecencyIndexAdapter
```

## Rules

- **Merge**: a summary whose id is already embedded is replaced in place
  (position kept); otherwise it is appended. `postCount` always equals
  `len(posts)`.
- **Visibility**: every save re-evaluates the index. A public blog gets a fresh
  entry (its stale token is removed first); a private blog ends up with none.
- **Serialization**: every read-modify-write of a Blog runs under a lock keyed by
  the blog id, and re-reads the stored `posts` and `streamId` inside the lock.
  Two in-memory copies of the same blog therefore cannot overwrite each
  other's summaries.
- **Full deletion**: index removal is best effort, directory removal failure is
  reported, and success requires exactly one blog record to be deleted.

## Usage Example

```python
engine = BlogConsistencyEngine.from_database(db_manager.get_database())
blog = await engine.save_blog(Blog(title="Field Notes", creatorName="matt"))
summary = await engine.create_post(blog, {"title": "Day one"})
blog.public = True
await engine.save_blog(blog)
```
"""

from typing import Any, Dict, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from blog_store.config import settings
from blog_store.exceptions import ConsistencyError, ExternalServiceError, NotFoundError, ValidationError
from blog_store.managers.logging_manager import LoggerLike, get_logger
from blog_store.models.blog_models import (
    Blog,
    DeleteBlogResult,
    DeleteImageResult,
    DeletePostResult,
    PostSummary,
    to_object_id,
    utc_now,
)
from blog_store.models.image_models import Image
from blog_store.services.gallery_service import GalleryService
from blog_store.services.image_pipeline import ImageDerivativePipeline
from blog_store.services.post_service import PostLifecycleManager, parse_object_id
from blog_store.services.recency_index import RecencyIndexAdapter
from blog_store.utils.keyed_lock import KeyedLock

# Summary fields replaced in place when a post changes
SUMMARY_FIELDS = ("title", "slug", "created_on", "edited_on", "public")


class BlogConsistencyEngine:
    """
    Owns the Blog record, its embedded summaries and its recency index membership.

    **Key Responsibilities:**
    - **Save**: Upsert the Blog record and synchronize the recency index.
    - **Post orchestration**: Run post writes and merge/remove their summaries.
    - **Verification**: Detect summary/post disagreement without repairing it.
    - **Deletion**: Remove the index entry, the gallery tree and the record.
    - **Galleries**: Delegate image operations on a post to `GalleryService`.
    """

    def __init__(
        self,
        blogs: AsyncIOMotorCollection,
        posts: PostLifecycleManager,
        index: Optional[RecencyIndexAdapter] = None,
        gallery: Optional[GalleryService] = None,
        locks: Optional[KeyedLock] = None,
        logger: Optional[LoggerLike] = None,
    ):
        self.blogs = blogs
        self.posts = posts
        self.index = index or RecencyIndexAdapter()
        self.gallery = gallery or GalleryService(posts)
        self.locks = locks or KeyedLock()
        self.logger = logger or get_logger(prefix="[BlogConsistency]")

    @classmethod
    def from_database(
        cls,
        database: AsyncIOMotorDatabase,
        index: Optional[RecencyIndexAdapter] = None,
        pipeline: Optional[ImageDerivativePipeline] = None,
        logger: Optional[LoggerLike] = None,
    ) -> "BlogConsistencyEngine":
        """Bind to the configured blog and post collections of `database`."""
        return cls.from_collections(
            database[settings.BLOGS_COLLECTION],
            database[settings.POSTS_COLLECTION],
            index=index,
            pipeline=pipeline,
            logger=logger,
        )

    @classmethod
    def from_collections(
        cls,
        blogs: AsyncIOMotorCollection,
        posts: AsyncIOMotorCollection,
        index: Optional[RecencyIndexAdapter] = None,
        pipeline: Optional[ImageDerivativePipeline] = None,
        gallery_root: Optional[str] = None,
        gallery_url_prefix: Optional[str] = None,
        logger: Optional[LoggerLike] = None,
    ) -> "BlogConsistencyEngine":
        """Bind to already-selected blog and post collections."""
        lifecycle = PostLifecycleManager.from_collection(posts, logger=logger)
        gallery = GalleryService(
            lifecycle, pipeline=pipeline, root=gallery_root, url_prefix=gallery_url_prefix, logger=logger
        )
        return cls(blogs, lifecycle, index=index, gallery=gallery, logger=logger)

    # --- Store access ---

    async def _stored(self, blog_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.blogs.find_one({"_id": to_object_id(blog_id)})
        except PyMongoError as e:
            self.logger.error("Failed to load blog %s: %s", blog_id, e, exc_info=True)
            raise ExternalServiceError("document store", "find blog", e) from e

    async def _refresh_owned_state(self, blog: Blog) -> None:
        """Replace the in-memory summaries and token with the stored ones."""
        doc = await self._stored(blog.id)
        if doc is None:
            return
        stored = Blog.model_validate(doc)
        blog.posts = stored.posts
        blog.stream_id = stored.stream_id
        if blog.created_on is None:
            blog.created_on = stored.created_on

    async def _persist(self, blog: Blog) -> None:
        document = blog.to_document()
        oid = document.pop("_id")
        try:
            await self.blogs.update_one({"_id": oid}, {"$set": document}, upsert=True)
        except PyMongoError as e:
            self.logger.error("Failed to save blog %s: %s", blog.id, e, exc_info=True)
            raise ExternalServiceError("document store", "save blog", e) from e

    async def _persist_stream_id(self, blog: Blog) -> None:
        try:
            await self.blogs.update_one({"_id": to_object_id(blog.id)}, {"$set": {"streamId": blog.stream_id}})
        except PyMongoError as e:
            self.logger.error("Failed to record streamId of blog %s: %s", blog.id, e, exc_info=True)
            raise ExternalServiceError("document store", "save streamId", e) from e

    async def _sync_index(self, blog: Blog) -> None:
        original = blog.stream_id
        try:
            if blog.public:
                await self.index.add(blog)
            else:
                await self.index.remove(blog)
        finally:
            if blog.stream_id != original:
                await self._persist_stream_id(blog)

    async def _save_locked(self, blog: Blog, first_save: bool = False) -> Blog:
        blog.modified_on = utc_now()
        try:
            await self._persist(blog)
        except ExternalServiceError:
            if first_save:
                blog.id = None
                blog.created_on = None
                blog.modified_on = None
            raise
        await self._sync_index(blog)
        self.logger.info("Saved blog %s (%d posts, public=%s)", blog.id, blog.post_count, blog.public)
        return blog

    # --- Blog operations ---

    async def save_blog(self, blog: Blog) -> Blog:
        """
        Upsert `blog` and bring its recency index membership in line with `public`.

        A blog without an identity is given one, along with `createdOn`; both are
        cleared again if that first write fails. The embedded summaries are owned
        by this engine: whatever the caller holds in `blog.posts` is replaced by
        the stored array before saving.

        Raises:
            ValidationError: The blog has no title.
            ExternalServiceError: The store or the index failed.
        """
        if not blog.title:
            raise ValidationError("title")
        if not blog.url:
            blog.set_url(blog.title)
        if not blog.id:
            blog.id = str(ObjectId())
            blog.created_on = utc_now()
            blog.posts = []
            blog.stream_id = None
            async with self.locks.hold(blog.id):
                return await self._save_locked(blog, first_save=True)

        async with self.locks.hold(blog.id):
            await self._refresh_owned_state(blog)
            return await self._save_locked(blog)

    @staticmethod
    def merge_summary(blog: Blog, summary: PostSummary) -> bool:
        """
        Merge `summary` into `blog.posts`.

        Returns:
            bool: `True` when an existing entry was replaced, `False` when appended.
        """
        position = blog.find_summary(summary.id)
        if position < 0:
            blog.posts.append(summary)
            return False
        existing = blog.posts[position]
        blog.posts[position] = existing.model_copy(
            update={name: getattr(summary, name) for name in SUMMARY_FIELDS}
        )
        return True

    async def apply_summary(self, blog: Blog, summary: PostSummary) -> Blog:
        """Merge a summary produced by the Post Lifecycle Manager and save the blog."""
        self._require_saved(blog)
        async with self.locks.hold(blog.id):
            await self._refresh_owned_state(blog)
            self.merge_summary(blog, summary)
            return await self._save_locked(blog)

    async def remove_summary(self, blog: Blog, post_id: str) -> Blog:
        """Drop the summary of `post_id` (if embedded) and save the blog."""
        self._require_saved(blog)
        async with self.locks.hold(blog.id):
            await self._refresh_owned_state(blog)
            blog.posts = [summary for summary in blog.posts if summary.id != str(post_id)]
            return await self._save_locked(blog)

    @staticmethod
    def _require_saved(blog: Blog) -> None:
        if not blog.id:
            raise ValidationError("blogId", "The blog must be saved first")

    # --- Post orchestration ---

    async def create_post(self, blog: Blog, fields: Dict[str, Any]) -> PostSummary:
        """Create a Post and embed its summary in `blog`."""
        self._require_saved(blog)
        async with self.locks.hold(blog.id):
            summary = await self.posts.create(blog, fields)
            await self._refresh_owned_state(blog)
            self.merge_summary(blog, summary)
            await self._save_locked(blog)
            return summary

    async def update_post(self, blog: Blog, post_id: str, fields: Dict[str, Any]) -> PostSummary:
        """Update a Post and refresh its embedded summary."""
        self._require_saved(blog)
        async with self.locks.hold(blog.id):
            summary = await self.posts.update(blog, post_id, fields)
            await self._refresh_owned_state(blog)
            self.merge_summary(blog, summary)
            await self._save_locked(blog)
            return summary

    async def delete_post(self, blog: Blog, post_id: str) -> DeletePostResult:
        """
        Delete a Post, remove its summary and its gallery directory.

        Gallery removal is best effort and reported in the result.
        """
        self._require_saved(blog)
        result = DeletePostResult(post_id=str(post_id))
        async with self.locks.hold(blog.id):
            result.deleted = await self.posts.delete(blog, post_id)
            await self._refresh_owned_state(blog)
            blog.posts = [summary for summary in blog.posts if summary.id != str(post_id)]
            await self._save_locked(blog)

            try:
                result.gallery_removed = await self.gallery.remove_post_gallery(blog, str(post_id))
            except OSError as e:
                self.logger.warning("Could not remove gallery of post %s: %s", post_id, e)
                result.errors.append(f"gallery: {e}")
        return result

    async def verify(self, blog: Blog) -> None:
        """
        Check the stored Blog record against the posts collection.

        Raises:
            ConsistencyError: `postCount` disagrees with the embedded array, a
                summary has no Post owned by this blog, a summary is embedded
                twice, or a Post of this blog has no summary.
            NotFoundError: The blog record does not exist.
        """
        self._require_saved(blog)
        doc = await self._stored(blog.id)
        if doc is None:
            raise NotFoundError("blog", blog.id)

        problems = []
        summaries = doc.get("posts") or []
        if doc.get("postCount") != len(summaries):
            problems.append(f"postCount {doc.get('postCount')} != {len(summaries)} embedded summaries")

        embedded_ids = [str(summary.get("id")) for summary in summaries]
        duplicates = sorted({pid for pid in embedded_ids if embedded_ids.count(pid) > 1})
        for pid in duplicates:
            problems.append(f"summary {pid} is embedded more than once")

        post_ids = set(await self.posts.ids_for_blog(blog))
        for pid in embedded_ids:
            if pid not in post_ids:
                problems.append(f"summary {pid} has no post in this blog")
        for pid in sorted(post_ids - set(embedded_ids)):
            problems.append(f"post {pid} has no summary")

        if problems:
            self.logger.warning("Blog %s failed verification: %s", blog.id, "; ".join(problems))
            raise ConsistencyError(blog.id, problems)

    async def delete_blog(self, blog: Blog) -> DeleteBlogResult:
        """
        Remove the blog's index entry, its gallery tree and its record.

        Index and directory failures are reported in the result and do not stop
        the record deletion. `deleted` is true only when exactly one record was
        removed.

        Raises:
            ExternalServiceError: The record deletion itself failed.
        """
        self._require_saved(blog)
        oid = parse_object_id(blog.id, "blogId")
        result = DeleteBlogResult(blog_id=blog.id)

        async with self.locks.hold(blog.id):
            await self._refresh_owned_state(blog)
            try:
                await self.index.remove(blog)
                result.index_removed = True
            except ExternalServiceError as e:
                self.logger.warning("Recency index removal failed for blog %s: %s", blog.id, e)
                result.errors.append(f"recency index: {e}")

            try:
                result.directory_removed = await self.gallery.remove_directory(self.gallery.blog_directory(blog))
            except OSError as e:
                self.logger.warning("Gallery removal failed for blog %s: %s", blog.id, e)
                result.errors.append(f"directory: {e}")

            try:
                response = await self.blogs.delete_one({"_id": oid})
            except PyMongoError as e:
                self.logger.error("Failed to delete blog %s: %s", blog.id, e, exc_info=True)
                raise ExternalServiceError("document store", "delete blog", e) from e

            result.deleted = response.deleted_count == 1
            if not result.deleted:
                result.errors.append(f"expected 1 deleted record, got {response.deleted_count}")
        self.logger.info("Deleted blog %s (success=%s)", blog.id, result.deleted)
        return result

    # --- Galleries ---

    async def add_image(self, blog: Blog, post_id: str, source_path) -> Image:
        return await self.gallery.add_image(blog, post_id, source_path)

    async def delete_image(self, blog: Blog, post_id: str, name: str) -> DeleteImageResult:
        return await self.gallery.delete_image(blog, post_id, name)

    async def rotate_image(self, blog: Blog, post_id: str, name: str, degrees: int) -> Image:
        return await self.gallery.rotate_image(blog, post_id, name, degrees)

    async def refresh_image(self, blog: Blog, post_id: str, name: str, force_thumbnail: bool = False) -> Image:
        return await self.gallery.refresh_image(blog, post_id, name, force_thumbnail=force_thumbnail)
