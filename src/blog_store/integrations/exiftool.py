"""
# ExifTool Integration

Metadata extraction through the `exiftool` command line program.

`exiftool -json -b` prints one JSON object per input file. With `-b`, binary
tags such as `ThumbnailImage` and `PreviewImage` are emitted as
`"base64:<data>"` strings, which the pipeline decodes into preview bytes.

The subprocess runs under `asyncio.wait_for` with `settings.EXIFTOOL_TIMEOUT`;
a timeout, a non-zero exit or unparseable output is raised as
`ExternalServiceError`.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from blog_store.config import settings
from blog_store.exceptions import ExternalServiceError
from blog_store.managers.logging_manager import LoggerLike, get_logger


class ExifToolExtractor:
    """Runs `exiftool` as an async subprocess and returns the requested tags."""

    def __init__(
        self,
        executable: Optional[str] = None,
        timeout: Optional[int] = None,
        logger: Optional[LoggerLike] = None,
    ):
        self.executable = executable or settings.EXIFTOOL_PATH
        self.timeout = timeout or settings.EXIFTOOL_TIMEOUT
        self.logger = logger or get_logger(prefix="[ExifTool]")

    def _command(self, path: Path, tags: Iterable[str]) -> list:
        return [self.executable, "-json", "-b", *(f"-{tag}" for tag in tags), str(path)]

    async def extract(self, path: Path, tags: Iterable[str]) -> Dict[str, Any]:
        """
        Read `tags` from the file at `path`.

        Returns:
            Dict[str, Any]: Tags present in the file; `SourceFile` is dropped.

        Raises:
            ExternalServiceError: The program is missing, timed out, failed or
                produced output that is not JSON.
        """
        command = self._command(path, tags)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self.logger.error("Could not start %s: %s", self.executable, e)
            raise ExternalServiceError("exiftool", "start", e) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            self.logger.error("exiftool timed out after %ss on %s", self.timeout, path)
            raise ExternalServiceError("exiftool", "extract", e) from e

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            self.logger.error("exiftool exited with %s on %s: %s", process.returncode, path, message)
            raise ExternalServiceError("exiftool", "extract", RuntimeError(message or "non-zero exit"))

        try:
            records = json.loads(stdout.decode("utf-8") or "[]")
        except ValueError as e:
            raise ExternalServiceError("exiftool", "parse", e) from e

        if not records:
            return {}
        record = dict(records[0])
        record.pop("SourceFile", None)
        return record
