"""File-system collaborator used by the paper store and the downloader.

Every operation returns a :class:`~paperdesk.errors.Result` instead of
raising, and blocking calls run in a worker thread so the event loop only
suspends at these I/O boundaries.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from paperdesk.errors import ErrorCode, FileSystemError, Result, failure, success

logger = logging.getLogger(__name__)


class FileSystem(Protocol):
    async def read_text(self, path: Path) -> Result[str]: ...

    async def write_text(self, path: Path, text: str) -> Result[None]: ...

    async def exists(self, path: Path) -> bool: ...

    async def ensure_directory(self, path: Path) -> Result[None]: ...

    async def file_size(self, path: Path) -> Result[int]: ...


def _atomic_write(path: Path, text: str) -> None:
    """Write *text* to a sibling temp file, then rename it over *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class LocalFileSystem:
    """:class:`FileSystem` backed by the local disk."""

    async def read_text(self, path: Path) -> Result[str]:
        try:
            text = await asyncio.to_thread(Path(path).read_text, encoding="utf-8")
        except FileNotFoundError:
            return failure(FileSystemError(f"File not found: {path}", ErrorCode.NOT_FOUND, {"path": str(path)}))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Failed to read %s: %s", path, e)
            return failure(FileSystemError(f"Failed to read {path}: {e}", ErrorCode.FILE_READ_ERROR, {"path": str(path)}))
        return success(text)

    async def write_text(self, path: Path, text: str) -> Result[None]:
        try:
            await asyncio.to_thread(_atomic_write, Path(path), text)
        except OSError as e:
            logger.warning("Failed to write %s: %s", path, e)
            return failure(FileSystemError(f"Failed to write {path}: {e}", ErrorCode.FILE_WRITE_ERROR, {"path": str(path)}))
        return success(None)

    async def exists(self, path: Path) -> bool:
        return await asyncio.to_thread(Path(path).exists)

    async def ensure_directory(self, path: Path) -> Result[None]:
        try:
            await asyncio.to_thread(Path(path).mkdir, parents=True, exist_ok=True)
        except OSError as e:
            return failure(
                FileSystemError(f"Failed to create directory {path}: {e}", ErrorCode.FILE_WRITE_ERROR, {"path": str(path)})
            )
        return success(None)

    async def file_size(self, path: Path) -> Result[int]:
        try:
            stat = await asyncio.to_thread(Path(path).stat)
        except FileNotFoundError:
            return failure(FileSystemError(f"File not found: {path}", ErrorCode.NOT_FOUND, {"path": str(path)}))
        except OSError as e:
            return failure(FileSystemError(f"Failed to stat {path}: {e}", ErrorCode.FILE_READ_ERROR, {"path": str(path)}))
        return success(stat.st_size)
