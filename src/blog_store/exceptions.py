"""
# Blog Store Exceptions

Error taxonomy shared by every component.

| Exception | Raised when | Retry? |
|-----------|-------------|--------|
| `ValidationError` | A required input is missing or malformed | Never |
| `NotFoundError` | An identity is absent, or a Post does not belong to the Blog | Never |
| `ExternalServiceError` | The document store, the recency index or an external tool failed | Caller's choice |
| `ConsistencyError` | A Blog/Post invariant was found violated | Never (no auto-repair) |
| `ImageProcessingError` | The derivative pipeline failed for one image | Caller's choice |
| `DivergenceError` | Files were written but the owning record could not be saved | Caller's choice |

Lower-level components wrap and re-raise; only the consistency engine may
continue past a best-effort step, and it reports that failure in its result.
"""

from typing import Iterable, List, Optional


class BlogStoreError(Exception):
    """Base exception for all Blog Store errors."""


class ValidationError(BlogStoreError):
    """Raised when a required field is missing or a value is malformed."""

    def __init__(self, field: str, message: Optional[str] = None) -> None:
        self.field = field
        if message is None:
            message = f"Missing required field '{field}'"
        super().__init__(message)


class NotFoundError(BlogStoreError):
    """Raised when an entity is not found or is not owned by the expected parent."""

    def __init__(self, entity: str, identity: Optional[str], message: Optional[str] = None) -> None:
        self.entity = entity
        self.identity = identity
        if message is None:
            message = f"{entity.capitalize()} '{identity}' not found"
        super().__init__(message)


class ExternalServiceError(BlogStoreError):
    """Raised when a collaborator call (store, index, tool) fails."""

    def __init__(self, service: str, operation: str, cause: Optional[BaseException] = None) -> None:
        self.service = service
        self.operation = operation
        self.cause = cause
        message = f"{service} call failed during {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ConsistencyError(BlogStoreError):
    """Raised when the Blog record disagrees with the Post collection."""

    def __init__(self, blog_id: Optional[str], problems: Iterable[str]) -> None:
        self.blog_id = blog_id
        self.problems: List[str] = list(problems)
        super().__init__(f"Blog '{blog_id}' is inconsistent: {'; '.join(self.problems)}")


class ImageProcessingError(BlogStoreError):
    """Raised when a derivative set cannot be produced for an image."""

    def __init__(self, image_name: str, stage: str, cause: Optional[BaseException] = None) -> None:
        self.image_name = image_name
        self.stage = stage
        self.cause = cause
        message = f"Image '{image_name}' failed at stage '{stage}'"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class DivergenceError(BlogStoreError):
    """Raised when on-disk files were written but the owning record was not saved."""

    def __init__(
        self,
        operation: str,
        written_files: Iterable[str],
        cause: Optional[BaseException] = None,
    ) -> None:
        self.operation = operation
        self.written_files: List[str] = list(written_files)
        self.cause = cause
        message = f"{operation} wrote {len(self.written_files)} file(s) but the record was not saved"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
