"""
# Image Derivative Pipeline

Derives the fixed set of resized variants of a gallery image.

## Workflow

For one source image the pipeline:

1. **Extracts metadata** through the `MetadataExtractor` (title, description,
   keywords, creator and an optional embedded preview). This only happens when an
   image is first added, or when a known image is missing its derivatives.
2. **Detects orientation** from the decoded size: `width > height` is
   landscape, anything else is portrait. Orientation selects the geometry table.
3. **Normalizes the encoding**: a source outside `ACCEPTED_ENCODINGS` is
   converted to `settings.IMAGE_DEFAULT_FORMAT`.
4. **Writes big, med and sml** (in that order) as `<stem>_<label>.<ext>`. Each
   size is resized from the pristine source unless
   `settings.IMAGE_PROGRESSIVE_RESIZE` is set, in which case each size is resized
   from the previous one.
5. **Writes the thumbnail** as `<stem>_thumbnail.<ext>` when the image has none
   yet or a regeneration is forced. Auxiliary metadata is stripped first. When an
   image is first added and carries an embedded preview, the decoded preview is
   persisted as the thumbnail instead.

Any failure raises `ImageProcessingError` naming the image and the stage
(`read`, `extract`, `preview`, `convert`, `resize:<label>`, `thumbnail`,
`write`, `rotate`). Each run writes to hidden staging files beside their targets
and moves them into place only once every stage has succeeded. A failed run
removes its staging files, so the derivatives already in the gallery, and the
urls pointing at them, stay intact.

## Usage Example

```python
pipeline = ImageDerivativePipeline()
gallery = Gallery(directory=Path("public/galleries/b1/p1"), url_prefix="/galleries/b1/p1")
image = Image(name="harbour.png")
derivatives = await pipeline.add_image(gallery, image)
assert image.big == derivatives.big
```
"""

import asyncio
import base64
import binascii
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from blog_store.config import settings
from blog_store.exceptions import ExternalServiceError, ImageProcessingError
from blog_store.integrations.base import ImageTool, MetadataExtractor
from blog_store.integrations.exiftool import ExifToolExtractor
from blog_store.integrations.pillow_tool import PillowImageTool
from blog_store.managers.logging_manager import LoggerLike, get_logger
from blog_store.models.image_models import (
    GEOMETRY_TABLES,
    SIZE_LABELS,
    THUMBNAIL_GEOMETRY,
    THUMBNAIL_LABEL,
    DerivativeSet,
    Gallery,
    Image,
    ImageMetadata,
    Orientation,
)

# Output encoding -> file extension
ACCEPTED_ENCODINGS: Dict[str, str] = {
    "JPEG": "jpg",
    "PNG": "png",
    "GIF": "gif",
    "WEBP": "webp",
}

# Metadata attribute -> tags consulted in order
TAG_MAP: Dict[str, Tuple[str, ...]] = {
    "title": ("Title", "ObjectName"),
    "description": ("Description", "Caption-Abstract", "ImageDescription"),
    "keywords": ("Keywords", "Subject"),
    "creator": ("Creator", "By-line", "Artist"),
    "preview": ("ThumbnailImage", "PreviewImage"),
}
METADATA_TAGS: Tuple[str, ...] = tuple(tag for tags in TAG_MAP.values() for tag in tags)

PREVIEW_PREFIX = "base64:"


def _first_tag(raw: Dict[str, Any], attribute: str) -> Any:
    for tag in TAG_MAP[attribute]:
        value = raw.get(tag)
        if value not in (None, ""):
            return value
    return None


def _as_keyword_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value).split(",") if part.strip()]


def derivative_filename(stem: str, label: str, extension: str) -> str:
    return f"{stem}_{label}.{extension}"


class ImageDerivativePipeline:
    """
    Produces big/med/sml variants and a thumbnail for gallery images.

    Blocking decode/resize/encode work is run with `asyncio.to_thread`.
    """

    def __init__(
        self,
        extractor: Optional[MetadataExtractor] = None,
        tool: Optional[ImageTool] = None,
        progressive: Optional[bool] = None,
        default_encoding: Optional[str] = None,
        logger: Optional[LoggerLike] = None,
    ):
        self.extractor = extractor or ExifToolExtractor()
        self.tool = tool or PillowImageTool()
        self.progressive = settings.IMAGE_PROGRESSIVE_RESIZE if progressive is None else progressive
        self.default_encoding = (default_encoding or settings.IMAGE_DEFAULT_FORMAT).upper()
        self.logger = logger or get_logger(prefix="[DerivativePipeline]")

    async def _run(self, image_name: str, stage: str, func: Callable, *args) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except ImageProcessingError:
            raise
        except Exception as e:
            self.logger.error("Image %s failed at %s: %s", image_name, stage, e, exc_info=True)
            raise ImageProcessingError(image_name, stage, e) from e

    async def extract_metadata(self, gallery: Gallery, image_name: str) -> ImageMetadata:
        """
        Read the orientation-independent attributes of a source image.

        Raises:
            ImageProcessingError: Extraction failed (`extract`) or the embedded
                preview could not be decoded (`preview`).
        """
        path = gallery.path_for(image_name)
        try:
            raw = await self.extractor.extract(path, METADATA_TAGS)
        except ExternalServiceError as e:
            self.logger.error("Metadata extraction failed for %s: %s", image_name, e)
            raise ImageProcessingError(image_name, "extract", e) from e

        preview = None
        encoded = _first_tag(raw, "preview")
        if isinstance(encoded, str) and encoded.startswith(PREVIEW_PREFIX):
            try:
                preview = base64.b64decode(encoded[len(PREVIEW_PREFIX):], validate=True)
            except (binascii.Error, ValueError) as e:
                raise ImageProcessingError(image_name, "preview", e) from e

        creator = _first_tag(raw, "creator")
        if isinstance(creator, (list, tuple)):
            creator = ", ".join(str(c) for c in creator)

        title = _first_tag(raw, "title")
        description = _first_tag(raw, "description")
        return ImageMetadata(
            name=image_name,
            title=str(title) if title is not None else None,
            description=str(description) if description is not None else None,
            keywords=_as_keyword_list(_first_tag(raw, "keywords")),
            creator=str(creator) if creator is not None else None,
            preview=preview,
            tags={k: v for k, v in raw.items() if k not in TAG_MAP["preview"]},
        )

    @staticmethod
    def apply_metadata(image: Image, metadata: ImageMetadata, overwrite: bool = True) -> None:
        """Seed the image attributes from extracted metadata."""
        for attribute in ("title", "description", "creator"):
            value = getattr(metadata, attribute)
            if value is not None and (overwrite or getattr(image, attribute) is None):
                setattr(image, attribute, value)
        if metadata.keywords and (overwrite or not image.keywords):
            image.keywords = list(dict.fromkeys(metadata.keywords))

    async def generate(
        self,
        gallery: Gallery,
        image: Image,
        force_regenerate_thumbnail: bool = False,
        preview: Optional[bytes] = None,
    ) -> DerivativeSet:
        """
        Write the derivative set of `image` into `gallery` and update its urls in place.

        Args:
            gallery: Directory and url prefix holding the source file.
            image: Gallery entry; `image.name` is the source file name.
            force_regenerate_thumbnail: Rewrite the thumbnail even if one exists.
            preview: Embedded preview bytes to persist as the thumbnail.

        Returns:
            DerivativeSet: The four urls, the orientation and the files written.

        Raises:
            ImageProcessingError: Any stage failed. Files already in the gallery
                are left untouched and the urls on `image` are not changed.
        """
        source_path = gallery.path_for(image.name)
        staged: Dict[Path, Path] = {}
        try:
            result = await self._generate(gallery, image, source_path, force_regenerate_thumbnail, preview, staged)
            await self._run(image.name, "write", _promote, staged)
        except ImageProcessingError:
            await self._discard(list(staged.values()))
            raise

        image.big = result.big
        image.med = result.med
        image.sml = result.sml
        image.thumbnail = result.thumbnail
        if image.url is None:
            image.url = gallery.url_for(image.name)
        self.logger.info(
            "Generated %d derivative file(s) for %s (%s)", len(staged), image.name, result.orientation.value
        )
        return result

    async def _generate(
        self,
        gallery: Gallery,
        image: Image,
        source_path: Path,
        force_thumbnail: bool,
        preview: Optional[bytes],
        staged: Dict[Path, Path],
    ) -> DerivativeSet:
        if not image.name:
            raise ImageProcessingError("", "read", ValueError("image has no name"))
        if not source_path.is_file():
            raise ImageProcessingError(image.name, "read", FileNotFoundError(str(source_path)))

        source = await self._run(image.name, "read", self.tool.read, source_path)
        width, height = self.tool.size(source)
        orientation = Orientation.from_size(width, height)
        table = GEOMETRY_TABLES[orientation]

        encoding = self.tool.format(source)
        if encoding not in ACCEPTED_ENCODINGS:
            self.logger.debug("Converting %s from %s to %s", image.name, encoding or "unknown", self.default_encoding)
            encoding = self.default_encoding
            source = await self._run(image.name, "convert", self.tool.convert, source, encoding)
        extension = ACCEPTED_ENCODINGS[encoding]

        urls: Dict[str, str] = {}
        working = source
        for label in SIZE_LABELS:
            geometry = table[label]
            base = working if self.progressive else source
            working = await self._run(image.name, f"resize:{label}", self.tool.resize, base, *geometry)
            filename = derivative_filename(image.stem, label, extension)
            path = _staging_path(staged, gallery.path_for(filename))
            await self._run(image.name, "write", self.tool.write, working, path, encoding)
            urls[label] = gallery.url_for(filename)

        thumbnail_url = image.thumbnail
        thumbnail_name = derivative_filename(image.stem, THUMBNAIL_LABEL, extension)
        thumbnail_path = gallery.path_for(thumbnail_name)
        if preview is not None:
            await self._write_preview(image.name, preview, _staging_path(staged, thumbnail_path), encoding)
            thumbnail_url = gallery.url_for(thumbnail_name)
        elif thumbnail_url is None or force_thumbnail:
            base = working if self.progressive else source
            stripped = await self._run(image.name, "thumbnail", self.tool.strip, base)
            thumb = await self._run(image.name, "thumbnail", self.tool.resize, stripped, *THUMBNAIL_GEOMETRY)
            await self._run(image.name, "write", self.tool.write, thumb, _staging_path(staged, thumbnail_path), encoding)
            thumbnail_url = gallery.url_for(thumbnail_name)

        return DerivativeSet(
            big=urls["big"],
            med=urls["med"],
            sml=urls["sml"],
            thumbnail=thumbnail_url,
            orientation=orientation,
            files=[str(p) for p in staged],
        )

    async def _write_preview(self, image_name: str, data: bytes, path: Path, encoding: str) -> None:
        decoded = await self._run(image_name, "preview", self.tool.read_bytes, data)
        if self.tool.format(decoded) == encoding:
            await self._run(image_name, "write", _write_bytes, path, data)
        else:
            await self._run(image_name, "write", self.tool.write, decoded, path, encoding)

    async def _discard(self, paths: List[Path]) -> None:
        for path in paths:
            try:
                await asyncio.to_thread(path.unlink, True)
            except OSError as e:
                self.logger.warning("Could not remove partial derivative %s: %s", path, e)

    async def add_image(self, gallery: Gallery, image: Image) -> DerivativeSet:
        """
        First-add path: extract metadata, seed the image, then build derivatives.

        An embedded preview found in the metadata is persisted as the thumbnail.
        """
        metadata = await self.extract_metadata(gallery, image.name)
        self.apply_metadata(image, metadata, overwrite=True)
        image.url = gallery.url_for(image.name)
        return await self.generate(gallery, image, force_regenerate_thumbnail=False, preview=metadata.preview)

    async def refresh(self, gallery: Gallery, image: Image, force_regenerate_thumbnail: bool = False) -> DerivativeSet:
        """
        Regenerate derivatives of a known image.

        Metadata is only re-read when the image is missing derivative urls, and
        then only fills attributes that are still empty.
        """
        if not image.has_derivatives:
            metadata = await self.extract_metadata(gallery, image.name)
            self.apply_metadata(image, metadata, overwrite=False)
        return await self.generate(gallery, image, force_regenerate_thumbnail=force_regenerate_thumbnail)

    async def rotate(self, gallery: Gallery, image: Image, degrees: int) -> DerivativeSet:
        """
        Rotate the source file in place, then force a full regeneration.

        Raises:
            ImageProcessingError: The source could not be read, rotated or rewritten.
        """
        source_path = gallery.path_for(image.name)
        if not source_path.is_file():
            raise ImageProcessingError(image.name, "read", FileNotFoundError(str(source_path)))
        source = await self._run(image.name, "read", self.tool.read, source_path)
        encoding = self.tool.format(source)
        if encoding not in ACCEPTED_ENCODINGS:
            encoding = self.default_encoding
        rotated = await self._run(image.name, "rotate", self.tool.rotate, source, degrees)
        staged: Dict[Path, Path] = {}
        try:
            await self._run(image.name, "write", self.tool.write, rotated, _staging_path(staged, source_path), encoding)
            await self._run(image.name, "write", _promote, staged)
        except ImageProcessingError:
            await self._discard(list(staged.values()))
            raise
        self.logger.info("Rotated %s by %s degrees", image.name, degrees)
        return await self.generate(gallery, image, force_regenerate_thumbnail=True)


def _write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def _staging_path(staged: Dict[Path, Path], target: Path) -> Path:
    staging = target.with_name(f".{target.name}.partial")
    staged[target] = staging
    return staging


def _promote(staged: Dict[Path, Path]) -> None:
    for target, staging in staged.items():
        os.replace(staging, target)
