import pytest
from pydantic import ValidationError as PydanticValidationError

from blog_store.config import Settings, settings
from blog_store.exceptions import (
    BlogStoreError,
    ConsistencyError,
    DivergenceError,
    ExternalServiceError,
    ImageProcessingError,
    NotFoundError,
    ValidationError,
)


class TestSettings:
    def test_defaults(self):
        assert settings.MAX_SLUG_LENGTH == 80
        assert settings.RECENT_BLOGS_MAXLEN == 10
        assert settings.RECENT_BLOGS_STREAM == "blogs:recent:10"
        assert settings.REDIS_URL.startswith("redis://")

    def test_image_format_is_normalized(self):
        assert Settings(IMAGE_DEFAULT_FORMAT="jpg").IMAGE_DEFAULT_FORMAT == "JPEG"
        assert Settings(IMAGE_DEFAULT_FORMAT="webp").IMAGE_DEFAULT_FORMAT == "WEBP"

    def test_unknown_image_format_rejected(self):
        with pytest.raises(PydanticValidationError):
            Settings(IMAGE_DEFAULT_FORMAT="TIFF")

    @pytest.mark.parametrize("field", ["MAX_SLUG_LENGTH", "RECENT_BLOGS_MAXLEN"])
    def test_positive_integers(self, field):
        with pytest.raises(PydanticValidationError):
            Settings(**{field: 0})

    @pytest.mark.parametrize("value", [0, 301])
    def test_timeout_range(self, value):
        with pytest.raises(PydanticValidationError):
            Settings(EXIFTOOL_TIMEOUT=value)

    def test_empty_mongodb_url_rejected(self):
        with pytest.raises(PydanticValidationError):
            Settings(MONGODB_URL=" ")


class TestExceptions:
    def test_hierarchy(self):
        for exc in (
            ValidationError("name"),
            NotFoundError("post", "abc"),
            ExternalServiceError("redis", "add"),
            ConsistencyError("b1", ["x"]),
            ImageProcessingError("a.jpg", "read"),
            DivergenceError("add_image", ["/tmp/a.jpg"]),
        ):
            assert isinstance(exc, BlogStoreError)

    def test_context_is_kept(self):
        cause = OSError("disk full")
        err = ImageProcessingError("a.jpg", "write", cause)
        assert err.image_name == "a.jpg"
        assert err.stage == "write"
        assert err.cause is cause
        assert "write" in str(err)

        divergence = DivergenceError("add_image", ["/a", "/b"], cause)
        assert divergence.written_files == ["/a", "/b"]
        assert "2 file(s)" in str(divergence)

    def test_not_found_message(self):
        assert str(NotFoundError("post", "abc")) == "Post 'abc' not found"
