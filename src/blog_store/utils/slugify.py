"""
Url slug helper.

Slugs keep letters, numbers and separators from any script, lowercase the text,
collapse whitespace runs into a single dash and truncate to `MAX_SLUG_LENGTH`.
"""

import re
import unicodedata
from typing import Optional

from blog_store.config import settings

_WHITESPACE_RUN = re.compile(r"\s+")
_KEPT_CATEGORIES = ("L", "N", "Z")


def slugify(text: Optional[str], max_length: Optional[int] = None) -> Optional[str]:
    """
    Turn a text string into a url slug.

    Every character outside the Unicode letter, number and separator classes is
    replaced by a space before whitespace runs are collapsed, so punctuation acts
    as a word boundary (`"Hello, World"` becomes `"hello-world"`).

    Args:
        text: Source text, usually a title.
        max_length: Maximum slug length; defaults to `settings.MAX_SLUG_LENGTH`.

    Returns:
        Optional[str]: The slug, or `None` for empty input.
    """
    if not text:
        return None
    limit = max_length if max_length is not None else settings.MAX_SLUG_LENGTH
    lowered = text.lower()
    kept = "".join(
        ch if unicodedata.category(ch)[0] in _KEPT_CATEGORIES else " " for ch in lowered
    )
    return _WHITESPACE_RUN.sub("-", kept)[:limit]
