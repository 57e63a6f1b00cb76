"""
# Image Gallery Models

Data structures for gallery images and their derivative sets.

- **Image**: one entry of a Post's gallery, with the public url of the source
  file and of its big/med/sml/thumbnail derivatives (`None` until generated).
- **ImageMetadata**: the orientation-independent attributes extracted from a
  source file (title, description, keywords, creator) plus the optional
  embedded preview bytes.
- **DerivativeSet**: the four urls produced by one pipeline run.
- **Orientation** / **Geometry**: landscape/portrait classification and the
  bounding boxes each size label resolves to.
"""

from enum import Enum
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SIZE_LABELS = ("big", "med", "sml")
THUMBNAIL_LABEL = "thumbnail"


class Orientation(str, Enum):
    """Orientation of a source image, decided from its decoded width and height."""

    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"

    @classmethod
    def from_size(cls, width: int, height: int) -> "Orientation":
        return cls.LANDSCAPE if width > height else cls.PORTRAIT


class Geometry(NamedTuple):
    """Bounding box a derivative is fitted into, aspect ratio preserved."""

    width: int
    height: int

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


# Each orientation frames its derivatives differently; the same label maps to
# different pixel geometry.
GEOMETRY_TABLES: Dict[Orientation, Dict[str, Geometry]] = {
    Orientation.LANDSCAPE: {
        "big": Geometry(1400, 1050),
        "med": Geometry(1024, 768),
        "sml": Geometry(640, 480),
    },
    Orientation.PORTRAIT: {
        "big": Geometry(1050, 1400),
        "med": Geometry(768, 1024),
        "sml": Geometry(480, 640),
    },
}
THUMBNAIL_GEOMETRY = Geometry(250, 250)


class Image(BaseModel):
    """
    Model representing one image in a gallery.

    Attributes:
        name (str): Source file name inside the gallery directory.
        url (Optional[str]): Public url of the source file.
        big (Optional[str]): Public url of the big derivative.
        med (Optional[str]): Public url of the medium derivative.
        sml (Optional[str]): Public url of the small derivative.
        thumbnail (Optional[str]): Public url of the thumbnail.
        title (Optional[str]): Image title, seeded from metadata.
        description (Optional[str]): Image description, seeded from metadata.
        keywords (List[str]): Keywords, seeded from metadata.
        creator (Optional[str]): Creator, seeded from metadata.
        hide (bool): Whether the image is hidden from public listings.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(..., description="Source file name")
    url: Optional[str] = Field(None, description="Public url of the source file")
    big: Optional[str] = None
    med: Optional[str] = None
    sml: Optional[str] = None
    thumbnail: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    creator: Optional[str] = None
    hide: bool = False

    @field_validator("keywords", mode="before")
    @classmethod
    def normalize_keywords(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return list(dict.fromkeys(v))

    @property
    def stem(self) -> str:
        return Path(self.name).stem

    @property
    def has_derivatives(self) -> bool:
        return all(getattr(self, label) for label in SIZE_LABELS)


class ImageMetadata(BaseModel):
    """Attributes extracted from a source image by the metadata tool."""

    name: str
    title: Optional[str] = None
    description: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    creator: Optional[str] = None
    preview: Optional[bytes] = Field(None, description="Decoded embedded preview image")
    tags: Dict[str, object] = Field(default_factory=dict, description="Raw tag map")


class DerivativeSet(BaseModel):
    """Public urls of the derivatives produced for one image."""

    big: Optional[str] = None
    med: Optional[str] = None
    sml: Optional[str] = None
    thumbnail: Optional[str] = None
    orientation: Optional[Orientation] = None
    files: List[str] = Field(default_factory=list, description="Paths written during this run")


class Gallery(BaseModel):
    """A gallery directory on disk and the public url prefix that serves it."""

    directory: Path
    url_prefix: str

    def path_for(self, filename: str) -> Path:
        return self.directory / filename

    def url_for(self, filename: str) -> str:
        return f"{self.url_prefix.rstrip('/')}/{filename}"
