"""
# Logging Manager

Central place where Blog Store components obtain their loggers.

Every component logs through the standard `logging` package under the
`blog_store` namespace. `get_logger()` returns an adapter that prefixes each
message with a bracketed component tag, so a single handler configured by the
host application shows which part of the library emitted a line:

```
[BlogConsistency] Saved blog 65f1c0... (3 posts)
[RecencyIndex] Added blog 65f1c0... to blogs:recent:10 as 1718000000000-0
```

## Usage Example

```python
from blog_store.managers.logging_manager import get_logger

logger = get_logger(prefix="[PostLifecycle]")
logger.info("Created post %s", post_id)
```

Components accept an injected logger in their constructors and only fall back
to `get_logger(prefix=...)` when none is given.
"""

import logging
from typing import Any, MutableMapping, Tuple, Union

DEFAULT_LOGGER_NAME = "blog_store"


class PrefixedLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that prepends a fixed component prefix to every message."""

    def __init__(self, logger: logging.Logger, prefix: str = ""):
        super().__init__(logger, {"prefix": prefix})
        self.prefix = prefix

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        if self.prefix:
            msg = f"{self.prefix} {msg}"
        return msg, kwargs


LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


def get_logger(name: str = DEFAULT_LOGGER_NAME, prefix: str = "") -> PrefixedLoggerAdapter:
    """
    Return a logger for a Blog Store component.

    Args:
        name: Logger name; defaults to the library namespace `blog_store`.
        prefix: Component tag prepended to every message, e.g. `"[DATABASE]"`.

    Returns:
        PrefixedLoggerAdapter: Adapter around `logging.getLogger(name)`.
    """
    return PrefixedLoggerAdapter(logging.getLogger(name), prefix)
