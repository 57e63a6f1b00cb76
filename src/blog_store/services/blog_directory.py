"""
# Blog Directory

Read-side queries over the blogs collection: loading a blog by id or owner,
listing an owner's blogs split by visibility, the recently active public blogs,
and the owners that have at least one public blog.

New blogs are built here but saved through `BlogConsistencyEngine.save_blog`,
which owns every write.
"""

from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from blog_store.config import settings
from blog_store.exceptions import ExternalServiceError, NotFoundError, ValidationError
from blog_store.managers.logging_manager import LoggerLike, get_logger
from blog_store.models.blog_models import Blog, BlogListing, BlogListItem, RecencyIndexEntry
from blog_store.services.post_service import parse_object_id
from blog_store.services.recency_index import RecencyIndexAdapter


class BlogDirectory:
    """Lookup and listing of blogs."""

    def __init__(
        self,
        blogs: AsyncIOMotorCollection,
        public_view: Optional[AsyncIOMotorCollection] = None,
        index: Optional[RecencyIndexAdapter] = None,
        logger: Optional[LoggerLike] = None,
    ):
        self.blogs = blogs
        self.public_view = public_view
        self.index = index or RecencyIndexAdapter()
        self.logger = logger or get_logger(prefix="[BlogDirectory]")

    @classmethod
    def from_database(
        cls,
        database: AsyncIOMotorDatabase,
        index: Optional[RecencyIndexAdapter] = None,
        logger: Optional[LoggerLike] = None,
    ) -> "BlogDirectory":
        return cls(
            database[settings.BLOGS_COLLECTION],
            public_view=database[settings.PUBLIC_BLOGS_VIEW],
            index=index,
            logger=logger,
        )

    @classmethod
    def from_collections(
        cls,
        blogs: AsyncIOMotorCollection,
        public_view: Optional[AsyncIOMotorCollection] = None,
        index: Optional[RecencyIndexAdapter] = None,
        logger: Optional[LoggerLike] = None,
    ) -> "BlogDirectory":
        return cls(blogs, public_view=public_view, index=index, logger=logger)

    @staticmethod
    def new_blog(fields: Dict[str, Any]) -> Blog:
        """
        Build an unsaved Blog from `fields`.

        Raises:
            ValidationError: No title was given under any recognized name.
        """
        blog = Blog.model_validate(fields)
        if not blog.title:
            raise ValidationError("title", "A new blog needs a title")
        blog.id = None
        blog.posts = []
        blog.stream_id = None
        return blog

    async def _find_one(self, query: Dict[str, Any], operation: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.blogs.find_one(query)
        except PyMongoError as e:
            self.logger.error("Blog lookup failed (%s): %s", operation, e, exc_info=True)
            raise ExternalServiceError("document store", operation, e) from e

    async def get_by_id(self, blog_id: str) -> Blog:
        """
        Load a blog with its embedded summaries.

        Raises:
            ValidationError: `blog_id` is missing or malformed.
            NotFoundError: No blog has this id.
        """
        oid = parse_object_id(blog_id, "blogId")
        doc = await self._find_one({"_id": oid}, "find blog by id")
        if doc is None:
            raise NotFoundError("blog", str(oid))
        return Blog.model_validate(doc)

    async def get_by_owner(self, owner_name: str) -> Blog:
        """Load the first blog of `owner_name`."""
        if not owner_name:
            raise ValidationError("creatorName")
        doc = await self._find_one({"creatorName": owner_name}, "find blog by owner")
        if doc is None:
            raise NotFoundError("blog", owner_name, f"No blog owned by '{owner_name}'")
        return Blog.model_validate(doc)

    async def list_for_owner(self, owner_name: str) -> BlogListing:
        """
        List the blogs of `owner_name` grouped into public and private buckets.

        Uses a `$bucket` stage on the boolean `public` field with boundaries
        `[false, true]`; `true` values fall into the default bucket.
        """
        if not owner_name:
            raise ValidationError("creatorName")
        pipeline = [
            {"$match": {"creatorName": owner_name}},
            {
                "$bucket": {
                    "groupBy": "$public",
                    "boundaries": [False, True],
                    "default": True,
                    "output": {
                        "count": {"$sum": 1},
                        "blogs": {
                            "$push": {
                                "id": "$_id",
                                "title": "$title",
                                "url": "$url",
                                "public": "$public",
                                "description": "$description",
                            }
                        },
                    },
                }
            },
        ]
        try:
            buckets = await self.blogs.aggregate(pipeline).to_list(length=None)
        except PyMongoError as e:
            self.logger.error("Listing blogs of %s failed: %s", owner_name, e, exc_info=True)
            raise ExternalServiceError("document store", "list blogs", e) from e

        listing = BlogListing()
        for bucket in buckets:
            items = [BlogListItem.model_validate(entry) for entry in bucket.get("blogs", [])]
            if bucket.get("_id") is True:
                listing.public.extend(items)
            else:
                listing.private.extend(items)
        self.logger.debug(
            "%s owns %d public and %d private blog(s)", owner_name, listing.public_count, listing.private_count
        )
        return listing

    async def recently_added(self, count: int = 10) -> List[RecencyIndexEntry]:
        """The newest entries of the recency index."""
        return await self.index.recent(count)

    async def users_with_public_blogs(self) -> List[Dict[str, Any]]:
        """Rows of the public blogs view (owners with at least one public blog)."""
        if self.public_view is None:
            raise ValidationError("public_view", "No public blogs view is bound")
        try:
            return await self.public_view.find({}).to_list(length=None)
        except PyMongoError as e:
            self.logger.error("Reading %s failed: %s", settings.PUBLIC_BLOGS_VIEW, e, exc_info=True)
            raise ExternalServiceError("document store", "list public blog owners", e) from e
