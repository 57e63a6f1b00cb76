"""
# Configuration Management Module

This module provides the configuration system for the Blog Store library.
Built on **Pydantic Settings**, it loads values from a configuration file or the
process environment, validates them at import time and exposes a single global
`settings` instance.

## Where Values Come From

Later sources lose to earlier ones:

1. Process environment variables.
2. The file named by `BLOG_STORE_CONFIG_PATH`.
3. `.blogstore` in the project root.
4. `.env` in the project root.
5. Field defaults.

## Configuration Groups

| Group | Purpose |
|-------|---------|
| **Database (MongoDB)** | Connection URL, database name, timeouts, collection names |
| **Redis** | Recency index connection, key prefix, socket timeout |
| **Slugs** | Maximum url slug length |
| **Recency Index** | Stream name and capacity of the "recently active" index |
| **Galleries** | Filesystem root and public url prefix for image galleries |
| **Image Tools** | Default output encoding, resize provenance, exiftool binary and timeout |

## Usage Example

```python
from blog_store.config import settings

root = settings.GALLERY_ROOT
if settings.IMAGE_PROGRESSIVE_RESIZE:
    print("Derivatives are resized from the previous derivative")
```

## Module Attributes

Attributes:
    CONFIG_PATH (Optional[str]): Path of the configuration file that was loaded, if any.
    settings (Settings): Global settings singleton.
"""

import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Constants ---
BLOGSTORE_FILENAME: str = ".blogstore"
DEFAULT_ENV_FILENAME: str = ".env"
CONFIG_ENV_VAR: str = "BLOG_STORE_CONFIG_PATH"
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent


# --- Config file discovery (no logging) ---
def get_config_path() -> Optional[str]:
    """
    Determines the configuration file path based on a predefined precedence order.

    The lookup order is:
    1.  **Environment Variable**: `BLOG_STORE_CONFIG_PATH` (if set and the file exists).
    2.  **Blog Store Config**: `.blogstore` file in the project root directory.
    3.  **Dotenv Config**: `.env` file in the project root directory.
    4.  **Fallback**: `None`, which leaves the settings in environment-only mode.

    Returns:
        Optional[str]: The absolute path to the configuration file, or `None` if not found.
    """
    env_path: Optional[str] = os.environ.get(CONFIG_ENV_VAR)
    if env_path and os.path.exists(env_path):
        return env_path
    store_path: Path = PROJECT_ROOT / BLOGSTORE_FILENAME
    if store_path.exists():
        return str(store_path)
    env_path_file: Path = PROJECT_ROOT / DEFAULT_ENV_FILENAME
    if env_path_file.exists():
        return str(env_path_file)
    return None


CONFIG_PATH: Optional[str] = get_config_path()
if CONFIG_PATH:
    load_dotenv(dotenv_path=CONFIG_PATH, override=True)


class Settings(BaseSettings):
    """
    Library configuration settings model.

    **Configuration Groups:**
    *   **Database**: MongoDB connection details and collection names.
    *   **Redis**: Connection details for the recency index.
    *   **Slugs**: Maximum length of generated url slugs.
    *   **Recency Index**: Stream key and approximate capacity.
    *   **Galleries**: On-disk root and public url prefix for post images.
    *   **Image Tools**: Output encoding, resize provenance and exiftool invocation.

    **Validation:**
    Numeric limits must be positive and timeouts must be within 1-300 seconds.
    """

    model_config = SettingsConfigDict(
        env_file=CONFIG_PATH if CONFIG_PATH else None,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",
    )

    # MongoDB configuration
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DATABASE: str = "blogs"
    MONGODB_CONNECTION_TIMEOUT: int = 10000
    MONGODB_SERVER_SELECTION_TIMEOUT: int = 5000
    MONGODB_USERNAME: Optional[str] = None
    MONGODB_PASSWORD: Optional[SecretStr] = None

    # Collections
    BLOGS_COLLECTION: str = "blogs"
    POSTS_COLLECTION: str = "posts"
    PUBLIC_BLOGS_VIEW: str = "publicBlogsView"

    # Redis configuration
    # REDIS_URL is the effective URL. It is constructed from host/port/credentials
    # below when not provided directly.
    REDIS_URL: Optional[str] = None
    REDIS_HOST: str = "127.0.0.1"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_USERNAME: Optional[str] = None
    REDIS_PASSWORD: Optional[SecretStr] = None
    REDIS_KEY_PREFIX: str = ""
    REDIS_SOCKET_TIMEOUT: int = 5

    # Slugs
    MAX_SLUG_LENGTH: int = 80

    # Recency index
    RECENT_BLOGS_STREAM: str = "blogs:recent:10"
    RECENT_BLOGS_MAXLEN: int = 10

    # Galleries
    GALLERY_ROOT: str = "public/galleries"
    GALLERY_URL_PREFIX: str = "/galleries"

    # Image tools
    IMAGE_DEFAULT_FORMAT: str = "JPEG"
    IMAGE_PROGRESSIVE_RESIZE: bool = False
    EXIFTOOL_PATH: str = "exiftool"
    EXIFTOOL_TIMEOUT: int = 30

    @field_validator("MONGODB_URL", mode="before")
    @classmethod
    def no_empty_urls(cls, v: Any, info: Any) -> Any:
        """
        Validates that the MongoDB URL is not empty.

        Raises:
            ValueError: If the URL is empty or whitespace.
        """
        if not v or not str(v).strip():
            raise ValueError(f"{info.field_name} must be set via environment or .blogstore and not empty!")
        return v

    @field_validator("MAX_SLUG_LENGTH", "RECENT_BLOGS_MAXLEN", mode="before")
    @classmethod
    def validate_positive_integers(cls, v: Any, info: Any) -> int:
        """
        Validates that numeric settings are positive integers.

        Raises:
            ValueError: If the value is not a positive integer.
        """
        value = int(v)
        if value <= 0:
            raise ValueError(f"{info.field_name} must be a positive integer")
        return value

    @field_validator("REDIS_SOCKET_TIMEOUT", "EXIFTOOL_TIMEOUT", mode="before")
    @classmethod
    def validate_timeout_values(cls, v: Any, info: Any) -> int:
        """
        Validates that timeout values are within a reasonable range (1-300 seconds).

        Raises:
            ValueError: If the timeout is out of range.
        """
        timeout = int(v)
        if timeout < 1 or timeout > 300:
            raise ValueError(f"{info.field_name} must be between 1 and 300 seconds")
        return timeout

    @field_validator("IMAGE_DEFAULT_FORMAT", mode="before")
    @classmethod
    def normalize_image_format(cls, v: Any) -> str:
        value = str(v).upper()
        if value == "JPG":
            value = "JPEG"
        if value not in ("JPEG", "PNG", "GIF", "WEBP"):
            raise ValueError("IMAGE_DEFAULT_FORMAT must be one of JPEG, PNG, GIF, WEBP")
        return value


# Global settings instance
settings: Settings = Settings()

# Compute effective REDIS_URL if not explicitly provided.
# Precedence: explicit REDIS_URL -> constructed from host/port/db and optional credentials.
if not settings.REDIS_URL:
    creds = ""
    if settings.REDIS_USERNAME or settings.REDIS_PASSWORD:
        username = settings.REDIS_USERNAME or ""
        password = settings.REDIS_PASSWORD.get_secret_value() if settings.REDIS_PASSWORD else ""
        if username and password:
            creds = f"{username}:{password}@"
        elif password and not username:
            creds = f":{password}@"

    settings.REDIS_URL = f"redis://{creds}{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
