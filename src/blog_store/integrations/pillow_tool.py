"""
Pillow implementation of the image tool used by the derivative pipeline.

All methods are synchronous; the pipeline calls them through
`asyncio.to_thread` so decoding and resampling never block the event loop.
"""

import io
from pathlib import Path
from typing import Tuple

from PIL import Image as PILImage
from PIL import ImageOps

# Encodings that cannot carry an alpha channel or a palette.
_RGB_ONLY = {"JPEG"}


class PillowImageTool:
    """Read, resize, rotate and write images with Pillow."""

    def read(self, path: Path) -> PILImage.Image:
        with PILImage.open(path) as image:
            image.load()
            source_format = image.format
            oriented = ImageOps.exif_transpose(image)
        oriented.format = source_format
        return oriented

    def read_bytes(self, data: bytes) -> PILImage.Image:
        with PILImage.open(io.BytesIO(data)) as image:
            image.load()
            copy = image.copy()
            copy.format = image.format
            return copy

    def size(self, image: PILImage.Image) -> Tuple[int, int]:
        return image.size

    def format(self, image: PILImage.Image) -> str:
        return (image.format or "").upper()

    def convert(self, image: PILImage.Image, encoding: str) -> PILImage.Image:
        if encoding.upper() in _RGB_ONLY and image.mode not in ("RGB", "L"):
            return image.convert("RGB")
        return image

    def resize(self, image: PILImage.Image, width: int, height: int) -> PILImage.Image:
        """Scale to the largest size that fits within `width` x `height`, keeping the aspect ratio."""
        src_width, src_height = image.size
        scale = min(width / src_width, height / src_height)
        target = (max(1, round(src_width * scale)), max(1, round(src_height * scale)))
        resized = image.resize(target, PILImage.Resampling.LANCZOS)
        resized.format = image.format
        return resized

    def strip(self, image: PILImage.Image) -> PILImage.Image:
        """Drop embedded metadata (EXIF, ICC, comments) from the image."""
        stripped = image.copy()
        stripped.info = {}
        stripped.format = image.format
        return stripped

    def rotate(self, image: PILImage.Image, degrees: int) -> PILImage.Image:
        # Pillow rotates counter-clockwise; callers pass clockwise degrees.
        return image.rotate(-degrees, expand=True)

    def write(self, image: PILImage.Image, path: Path, encoding: str) -> None:
        encoding = encoding.upper()
        image = self.convert(image, encoding)
        path.parent.mkdir(parents=True, exist_ok=True)
        options = {"quality": 85} if encoding in ("JPEG", "WEBP") else {}
        image.save(path, format=encoding, **options)
