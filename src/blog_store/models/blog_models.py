"""
# Blog Record Models

This module defines the record model for blogs, posts and the denormalized
post summaries embedded in each blog.

## Domain Model Overview

- **Blog**: A titled collection of posts owned by one user. It embeds an
  ordered array of **PostSummary** entries so a blog can be listed without a
  join, and holds the token of its entry in the recency index.
- **Post**: The authoritative post record. Its `blogId` never changes after
  creation. It owns an ordered gallery of images.
- **PostSummary**: `{id, title, slug, createdOn, editedOn, public}` projection of
  a Post. Only the consistency engine writes it.
- **RecencyIndexEntry**: The JSON payload appended to the recency index.

## Legacy Field Names

Constructors accept any subset of the recognized fields and ignore anything
else. Where older callers used several names for one field, the first name in
each list below wins:

| Field | Accepted names (precedence order) |
|-------|-----------------------------------|
| Blog.id | `blogId`, `_id`, `id` |
| Blog.title | `blogTitle`, `title` |
| Blog.url | `blogUrl`, `url`, `slug` (else slug of the title) |
| Blog.owner_id | `blogOwnerId`, `ownerId`, `creatorId` |
| Blog.owner_name | `blogOwnerName`, `ownerName`, `creatorName` |
| Blog.description | `blogDescription`, `description` |
| Blog.keywords | `blogKeywords`, `keywords` |
| Blog.header_image | `blogHeaderImage`, `headerImage`, `headerImageUrl` |
| Blog.images | `blogImages`, `images` |
| Post.id | `_id`, `id` |
| Post.slug | `slug`, `url` |
| Post.description | `description`, `desc` |

## Projections

`to_json()` returns the persisted layout with string identities;
`to_document()` returns the same layout with `ObjectId` identities, ready for
the document store.

## Usage Example

```python
blog = Blog(blogTitle="Field Notes", creatorName="matt", keywords=["travel", "travel"])
assert blog.url == "field-notes"
assert blog.keywords == {"travel"}
assert blog.post_count == 0
```
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Union

from bson import ObjectId
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from blog_store.models.image_models import Image
from blog_store.utils.slugify import slugify


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Optional[str]) -> Union[ObjectId, str, None]:
    """Convert a canonical 24-hex identity string to an `ObjectId`, leaving other values as-is."""
    if value is None or isinstance(value, ObjectId):
        return value
    if ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def _stringify_identity(v: Any) -> Any:
    if isinstance(v, ObjectId):
        return str(v)
    return v


def _keyword_set(v: Any) -> Set[str]:
    if v is None:
        return set()
    if isinstance(v, str):
        return {v}
    return set(v)


class PostSummary(BaseModel):
    """
    Denormalized projection of a Post embedded in its Blog.

    Attributes:
        id (str): Identity of the Post.
        title (Optional[str]): Post title.
        slug (Optional[str]): Post url slug.
        created_on (Optional[datetime]): When the Post was first saved.
        edited_on (Optional[datetime]): When the Post was last updated.
        public (bool): Post visibility.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    title: Optional[str] = None
    slug: Optional[str] = None
    created_on: Optional[datetime] = Field(None, alias="createdOn")
    edited_on: Optional[datetime] = Field(None, alias="editedOn")
    public: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def normalize_identity(cls, v):
        return _stringify_identity(v)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_document(self) -> Dict[str, Any]:
        doc = self.to_json()
        doc["id"] = to_object_id(self.id)
        return doc


class Blog(BaseModel):
    """
    Model representing a blog and its embedded post summaries.

    `id` stays `None` until the first successful save. `post_count` is always
    derived from the embedded `posts` array.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = Field(
        None, validation_alias=AliasChoices("blogId", "_id", "id"), serialization_alias="_id"
    )
    title: Optional[str] = Field(None, validation_alias=AliasChoices("blogTitle", "title"))
    url: Optional[str] = Field(None, validation_alias=AliasChoices("blogUrl", "url", "slug"))
    owner_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("blogOwnerId", "ownerId", "creatorId"),
        serialization_alias="creatorId",
    )
    owner_name: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("blogOwnerName", "ownerName", "creatorName"),
        serialization_alias="creatorName",
    )
    description: Optional[str] = Field(None, validation_alias=AliasChoices("blogDescription", "description"))
    keywords: Set[str] = Field(default_factory=set, validation_alias=AliasChoices("blogKeywords", "keywords"))
    public: bool = False
    header_image: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("blogHeaderImage", "headerImage", "headerImageUrl"),
        serialization_alias="headerImageUrl",
    )
    images: List[Image] = Field(default_factory=list, validation_alias=AliasChoices("blogImages", "images"))
    posts: List[PostSummary] = Field(default_factory=list)
    stream_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("streamId", "stream_id"), serialization_alias="streamId"
    )
    created_on: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("createdOn", "created_on"), serialization_alias="createdOn"
    )
    modified_on: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("modifiedOn", "modified_on"), serialization_alias="modifiedOn"
    )

    @model_validator(mode="before")
    @classmethod
    def derive_url_from_title(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if any(data.get(name) for name in ("blogUrl", "url", "slug")):
            return data
        title = data.get("blogTitle") or data.get("title")
        if title:
            data = {**data, "url": slugify(title)}
        return data

    @field_validator("id", "owner_id", mode="before")
    @classmethod
    def normalize_identity(cls, v):
        return _stringify_identity(v)

    @field_validator("keywords", mode="before")
    @classmethod
    def normalize_keywords(cls, v):
        return _keyword_set(v)

    @field_validator("posts", mode="before")
    @classmethod
    def normalize_posts(cls, v):
        return v or []

    @computed_field(alias="postCount")
    @property
    def post_count(self) -> int:
        return len(self.posts)

    def set_url(self, value: Optional[str]) -> Optional[str]:
        """Set the url slug; the value is always slugified."""
        self.url = slugify(value)
        return self.url

    def add_keyword(self, word: str) -> List[str]:
        self.keywords.add(word)
        return sorted(self.keywords)

    def remove_keyword(self, word: str) -> bool:
        if word in self.keywords:
            self.keywords.discard(word)
            return True
        return False

    def find_summary(self, post_id: str) -> int:
        """Return the index of the summary for `post_id`, or -1."""
        for index, summary in enumerate(self.posts):
            if summary.id == post_id:
                return index
        return -1

    def posts_page(self, start: int = 0, count: Union[int, str] = "all") -> List[PostSummary]:
        """Return `count` summaries starting at position `start` (`"all"` for the rest)."""
        if isinstance(count, str) and count.lower() == "all":
            return list(self.posts)
        s = int(start)
        c = int(count)
        return self.posts[s:s + c]

    def to_json(self) -> Dict[str, Any]:
        """JSON projection in the persisted layout, identities as strings."""
        doc = self.model_dump(by_alias=True)
        doc["keywords"] = sorted(self.keywords)
        doc["posts"] = [summary.to_json() for summary in self.posts]
        return doc

    def to_document(self) -> Dict[str, Any]:
        """Persisted layout with `ObjectId` identities."""
        doc = self.to_json()
        doc["_id"] = to_object_id(self.id)
        doc["creatorId"] = to_object_id(self.owner_id)
        doc["posts"] = [summary.to_document() for summary in self.posts]
        return doc


class Post(BaseModel):
    """
    Model representing a single blog post.

    Attributes:
        id (Optional[str]): Post identity, assigned on creation.
        blog_id (Optional[str]): Owning Blog identity; immutable after creation.
        title (Optional[str]): Post title.
        slug (Optional[str]): Post url slug.
        description (Optional[str]): Short description.
        content (Optional[str]): Body content.
        keywords (Set[str]): Keyword set.
        authors (List[str]): One or more author names.
        images (List[Image]): Ordered gallery.
        public (bool): Visibility flag.
        created_on (Optional[datetime]): Set once at creation.
        edited_on (Optional[datetime]): Set on every update.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = Field(None, validation_alias=AliasChoices("_id", "id"), serialization_alias="_id")
    blog_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("blogId", "blog_id"), serialization_alias="blogId"
    )
    title: Optional[str] = None
    slug: Optional[str] = Field(None, validation_alias=AliasChoices("slug", "url"))
    description: Optional[str] = Field(None, validation_alias=AliasChoices("description", "desc"))
    content: Optional[str] = None
    keywords: Set[str] = Field(default_factory=set)
    authors: List[str] = Field(default_factory=list)
    images: List[Image] = Field(default_factory=list)
    public: bool = False
    created_on: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("createdOn", "created_on"), serialization_alias="createdOn"
    )
    edited_on: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("editedOn", "edited_on"), serialization_alias="editedOn"
    )

    @field_validator("id", "blog_id", mode="before")
    @classmethod
    def normalize_identity(cls, v):
        return _stringify_identity(v)

    @field_validator("keywords", mode="before")
    @classmethod
    def normalize_keywords(cls, v):
        return _keyword_set(v)

    @field_validator("authors", mode="before")
    @classmethod
    def normalize_authors(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return list(v)

    @field_validator("images", mode="before")
    @classmethod
    def normalize_images(cls, v):
        return v or []

    def summary(self) -> PostSummary:
        """Project this Post into the summary embedded in its Blog."""
        return PostSummary(
            id=self.id,
            title=self.title,
            slug=self.slug,
            created_on=self.created_on,
            edited_on=self.edited_on,
            public=self.public,
        )

    def find_image(self, name: str) -> Optional[Image]:
        for image in self.images:
            if image.name == name:
                return image
        return None

    def to_json(self) -> Dict[str, Any]:
        doc = self.model_dump(by_alias=True)
        doc["keywords"] = sorted(self.keywords)
        return doc

    def to_document(self) -> Dict[str, Any]:
        doc = self.to_json()
        doc["_id"] = to_object_id(self.id)
        doc["blogId"] = to_object_id(self.blog_id)
        return doc


class RecencyIndexEntry(BaseModel):
    """Payload appended to the recency index for a public blog."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    blog_id: str = Field(..., alias="blogId")
    name: Optional[str] = None
    owner: Optional[str] = None
    visibility: str = "public"
    preview: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_blog(cls, blog: Blog) -> "RecencyIndexEntry":
        return cls(
            blog_id=blog.id,
            name=blog.title,
            owner=blog.owner_name,
            visibility="public" if blog.public else "private",
            preview=blog.header_image,
            description=blog.description,
        )


class BlogListItem(BaseModel):
    """One blog in an owner's listing."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    title: Optional[str] = None
    url: Optional[str] = None
    public: bool = False
    description: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def normalize_identity(cls, v):
        return _stringify_identity(v)


class BlogListing(BaseModel):
    """An owner's blogs split by visibility."""

    public: List[BlogListItem] = Field(default_factory=list)
    private: List[BlogListItem] = Field(default_factory=list)

    @property
    def public_count(self) -> int:
        return len(self.public)

    @property
    def private_count(self) -> int:
        return len(self.private)


class DeletePostResult(BaseModel):
    """Outcome of removing a post and its summary."""

    post_id: str
    deleted: bool = False
    gallery_removed: bool = False
    errors: List[str] = Field(default_factory=list)


class DeleteImageResult(BaseModel):
    """Outcome of removing one image from a gallery."""

    name: str
    found: bool = False
    removed_files: List[str] = Field(default_factory=list)


class DeleteBlogResult(BaseModel):
    """
    Outcome of a full blog deletion.

    `deleted` is true only when exactly one blog record was removed. Best-effort
    steps that failed are listed in `errors`.
    """

    blog_id: Optional[str] = None
    deleted: bool = False
    index_removed: bool = False
    directory_removed: bool = False
    errors: List[str] = Field(default_factory=list)
