import asyncio

import pytest
from bson import ObjectId

from blog_store.exceptions import ConsistencyError, ExternalServiceError, NotFoundError, ValidationError
from blog_store.models.blog_models import Blog
from blog_store.services.blog_service import BlogConsistencyEngine


async def _stored_blog(blogs_collection, blog_id):
    doc = await blogs_collection.find_one({"_id": ObjectId(blog_id)})
    return doc


@pytest.mark.asyncio
async def test_end_to_end_scenario(engine, blogs_collection, index_tokens):
    blog = await engine.save_blog(Blog(title="T", public=False))
    assert ObjectId.is_valid(blog.id)
    assert index_tokens(blog.id) == []

    summary = await engine.create_post(blog, {"blogId": blog.id, "title": "P1"})
    assert len(blog.posts) == 1
    assert blog.posts[0].title == "P1"
    assert blog.posts[0].public is False

    blog.public = True
    await engine.save_blog(blog)
    assert index_tokens(blog.id) == [blog.stream_id]

    await engine.posts.delete(blog, summary.id)
    await engine.remove_summary(blog, summary.id)
    assert blog.post_count == 0
    stored = await _stored_blog(blogs_collection, blog.id)
    assert stored["postCount"] == 0
    assert stored["posts"] == []


@pytest.mark.asyncio
async def test_new_blog_gets_identity_and_url(engine, blogs_collection):
    blog = await engine.save_blog(Blog(title="Hello, World", creatorName="matt"))
    stored = await _stored_blog(blogs_collection, blog.id)
    assert stored["url"] == "hello-world"
    assert stored["creatorName"] == "matt"
    assert stored["createdOn"] is not None
    assert stored["streamId"] is None


@pytest.mark.asyncio
async def test_save_requires_title(engine):
    with pytest.raises(ValidationError):
        await engine.save_blog(Blog())


@pytest.mark.asyncio
async def test_post_count_invariant_holds_across_operations(engine, blogs_collection):
    blog = await engine.save_blog(Blog(title="T"))
    ids = []
    for n in range(4):
        summary = await engine.create_post(blog, {"title": f"P{n}"})
        ids.append(summary.id)
        await engine.verify(blog)

    await engine.update_post(blog, ids[1], {"title": "P1 revised", "public": True})
    await engine.verify(blog)

    await engine.delete_post(blog, ids[0])
    await engine.verify(blog)

    stored = await _stored_blog(blogs_collection, blog.id)
    assert stored["postCount"] == len(stored["posts"]) == 3
    assert blog.post_count == 3


@pytest.mark.asyncio
async def test_update_replaces_summary_in_place(engine):
    blog = await engine.save_blog(Blog(title="T"))
    first = await engine.create_post(blog, {"title": "first"})
    await engine.create_post(blog, {"title": "second"})

    await engine.update_post(blog, first.id, {"title": "first, edited", "public": True})

    assert [s.title for s in blog.posts] == ["first, edited", "second"]
    assert blog.posts[0].public is True
    assert blog.posts[0].created_on == first.created_on
    assert blog.posts[0].edited_on is not None


@pytest.mark.asyncio
async def test_apply_summary_appends_then_replaces(engine):
    blog = await engine.save_blog(Blog(title="T"))
    summary = await engine.posts.create(blog, {"title": "draft"})

    await engine.apply_summary(blog, summary)
    await engine.apply_summary(blog, summary.model_copy(update={"title": "final"}))

    assert [s.title for s in blog.posts] == ["final"]


@pytest.mark.asyncio
async def test_visibility_toggling(engine, blogs_collection, index_tokens):
    blog = await engine.save_blog(Blog(title="T", public=False))

    blog.public = True
    await engine.save_blog(blog)
    assert len(index_tokens(blog.id)) == 1
    first_token = blog.stream_id

    await engine.save_blog(blog)
    assert index_tokens(blog.id) == [blog.stream_id]
    assert blog.stream_id != first_token

    blog.public = False
    await engine.save_blog(blog)
    assert index_tokens(blog.id) == []
    assert blog.stream_id is None
    stored = await _stored_blog(blogs_collection, blog.id)
    assert stored["streamId"] is None

    await engine.save_blog(blog)
    assert index_tokens(blog.id) == []


@pytest.mark.asyncio
async def test_stream_id_is_persisted(engine, blogs_collection):
    blog = await engine.save_blog(Blog(title="T", public=True))
    stored = await _stored_blog(blogs_collection, blog.id)
    assert stored["streamId"] == blog.stream_id
    assert blog.stream_id is not None


@pytest.mark.asyncio
async def test_concurrent_posts_on_copies_are_not_lost(engine, blogs_collection):
    blog = await engine.save_blog(Blog(title="T"))
    copy_a = Blog.model_validate(await _stored_blog(blogs_collection, blog.id))
    copy_b = Blog.model_validate(await _stored_blog(blogs_collection, blog.id))

    await asyncio.gather(
        engine.create_post(copy_a, {"title": "from a"}),
        engine.create_post(copy_b, {"title": "from b"}),
    )

    stored = await _stored_blog(blogs_collection, blog.id)
    assert sorted(s["title"] for s in stored["posts"]) == ["from a", "from b"]
    assert stored["postCount"] == 2
    await engine.verify(blog)


@pytest.mark.asyncio
async def test_save_blog_keeps_stored_summaries(engine, blogs_collection):
    blog = await engine.save_blog(Blog(title="T"))
    await engine.create_post(blog, {"title": "P1"})

    stale = Blog.model_validate({"_id": blog.id, "title": "Renamed"})
    await engine.save_blog(stale)

    stored = await _stored_blog(blogs_collection, blog.id)
    assert stored["title"] == "Renamed"
    assert stored["postCount"] == 1


@pytest.mark.asyncio
async def test_verify_detects_count_mismatch(engine, blogs_collection):
    blog = await engine.save_blog(Blog(title="T"))
    await engine.create_post(blog, {"title": "P1"})
    await blogs_collection.update_one({"_id": ObjectId(blog.id)}, {"$set": {"postCount": 5}})

    with pytest.raises(ConsistencyError) as info:
        await engine.verify(blog)
    assert any("postCount" in problem for problem in info.value.problems)


@pytest.mark.asyncio
async def test_verify_detects_post_removed_without_summary_update(engine):
    blog = await engine.save_blog(Blog(title="T"))
    summary = await engine.create_post(blog, {"title": "P1"})
    await engine.posts.delete(blog, summary.id)

    with pytest.raises(ConsistencyError) as info:
        await engine.verify(blog)
    assert info.value.problems == [f"summary {summary.id} has no post in this blog"]


@pytest.mark.asyncio
async def test_verify_detects_post_without_summary(engine):
    blog = await engine.save_blog(Blog(title="T"))
    summary = await engine.posts.create(blog, {"title": "orphan"})

    with pytest.raises(ConsistencyError) as info:
        await engine.verify(blog)
    assert info.value.problems == [f"post {summary.id} has no summary"]


@pytest.mark.asyncio
async def test_verify_unknown_blog(engine):
    with pytest.raises(NotFoundError):
        await engine.verify(Blog(id=str(ObjectId()), title="ghost"))


@pytest.mark.asyncio
async def test_delete_post_removes_summary_and_gallery(engine, gallery_root):
    blog = await engine.save_blog(Blog(title="T"))
    summary = await engine.create_post(blog, {"title": "P1"})
    gallery_dir = gallery_root / blog.id / summary.id
    gallery_dir.mkdir(parents=True)
    (gallery_dir / "a.jpg").write_bytes(b"x")

    result = await engine.delete_post(blog, summary.id)

    assert result.deleted is True
    assert result.gallery_removed is True
    assert blog.posts == []
    assert not gallery_dir.exists()


@pytest.mark.asyncio
async def test_delete_blog(engine, blogs_collection, gallery_root, index_tokens):
    blog = await engine.save_blog(Blog(title="T", public=True))
    (gallery_root / blog.id).mkdir(parents=True)

    result = await engine.delete_blog(blog)

    assert result.deleted is True
    assert result.index_removed is True
    assert result.directory_removed is True
    assert result.errors == []
    assert index_tokens(blog.id) == []
    assert blogs_collection.docs == []
    assert not (gallery_root / blog.id).exists()


@pytest.mark.asyncio
async def test_delete_blog_continues_past_index_failure(engine, fake_redis):
    blog = await engine.save_blog(Blog(title="T", public=True))
    fake_redis.fail = True

    result = await engine.delete_blog(blog)

    assert result.deleted is True
    assert result.index_removed is False
    assert any(error.startswith("recency index") for error in result.errors)


@pytest.mark.asyncio
async def test_delete_blog_twice_reports_failure(engine):
    blog = await engine.save_blog(Blog(title="T"))
    assert (await engine.delete_blog(blog)).deleted is True

    again = await engine.delete_blog(blog)
    assert again.deleted is False
    assert again.errors


@pytest.mark.asyncio
async def test_store_failure_on_save(engine, blogs_collection):
    blogs_collection.fail_on.add("update_one")
    blog = Blog(title="T")
    with pytest.raises(ExternalServiceError):
        await engine.save_blog(blog)

    assert blog.id is None
    assert blog.created_on is None


@pytest.mark.asyncio
async def test_index_failure_on_save_is_surfaced(engine, fake_redis):
    fake_redis.fail = True
    with pytest.raises(ExternalServiceError):
        await engine.save_blog(Blog(title="T", public=True))


def test_from_database_binds_collections():
    database = {"blogs": object(), "posts": object()}
    engine = BlogConsistencyEngine.from_database(database, index=object())
    assert engine.blogs is database["blogs"]
    assert engine.posts.collection is database["posts"]


@pytest.mark.asyncio
async def test_delete_blog_store_failure_is_raised(engine, blogs_collection, index_tokens):
    blog = await engine.save_blog(Blog(title="T", public=True))
    blogs_collection.fail_on.add("delete_one")

    with pytest.raises(ExternalServiceError):
        await engine.delete_blog(blog)

    assert index_tokens(blog.id) == []
    assert len(blogs_collection.docs) == 1
