"""
Collaborator interfaces for the image derivative pipeline.

The pipeline only depends on these two protocols. `ExifToolExtractor` and
`PillowImageTool` are the production implementations; tests substitute
in-memory doubles.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, Protocol, Tuple, runtime_checkable


@runtime_checkable
class MetadataExtractor(Protocol):
    """Reads embedded metadata tags from an image file."""

    async def extract(self, path: Path, tags: Iterable[str]) -> Dict[str, Any]:
        """Return a `{tag: value}` map for the requested tags present in `path`."""
        ...


@runtime_checkable
class ImageTool(Protocol):
    """Decodes, transforms and encodes raster images."""

    def read(self, path: Path) -> Any: ...

    def read_bytes(self, data: bytes) -> Any: ...

    def size(self, image: Any) -> Tuple[int, int]: ...

    def format(self, image: Any) -> str: ...

    def convert(self, image: Any, encoding: str) -> Any: ...

    def resize(self, image: Any, width: int, height: int) -> Any: ...

    def strip(self, image: Any) -> Any: ...

    def rotate(self, image: Any, degrees: int) -> Any: ...

    def write(self, image: Any, path: Path, encoding: str) -> None: ...
