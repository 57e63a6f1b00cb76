import asyncio

import pytest

from blog_store.managers.logging_manager import get_logger
from blog_store.utils.keyed_lock import KeyedLock
from blog_store.utils.slugify import slugify


class TestSlugify:
    def test_punctuation_is_a_word_boundary(self):
        assert slugify("Hello, World") == "hello-world"

    def test_whitespace_runs_collapse(self):
        assert slugify("a   b\tc") == "a-b-c"

    def test_unicode_letters_are_kept(self):
        assert slugify("Café Über") == "café-über"

    def test_empty_input(self):
        assert slugify("") is None
        assert slugify(None) is None

    def test_truncation(self):
        assert slugify("abcdef", max_length=3) == "abc"
        assert len(slugify("word " * 40)) == 80

    def test_idempotent(self):
        once = slugify("Hello, World: Part 2")
        assert slugify(once) == once


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = KeyedLock()
        order = []

        async def worker(tag):
            async with locks.hold("blog-1"):
                order.append(f"{tag}-in")
                await asyncio.sleep(0.01)
                order.append(f"{tag}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    @pytest.mark.asyncio
    async def test_different_keys_overlap(self):
        locks = KeyedLock()
        inside = []

        async def worker(key):
            async with locks.hold(key):
                inside.append(key)
                await asyncio.sleep(0.01)
                assert len(inside) == 2

        await asyncio.gather(worker("x"), worker("y"))

    @pytest.mark.asyncio
    async def test_registry_is_released(self):
        locks = KeyedLock()
        async with locks.hold("k"):
            assert locks.is_locked("k")
            assert len(locks) == 1
        assert not locks.is_locked("k")
        assert len(locks) == 0


def test_logger_prefix(caplog):
    logger = get_logger(prefix="[Test]")
    with caplog.at_level("INFO", logger="blog_store"):
        logger.info("hello %s", "world")
    assert "[Test] hello world" in caplog.text
