"""PDF download: streams a paper's PDF to disk and records where it went."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from paperdesk.api_clients.base import USER_AGENT
from paperdesk.errors import (
    AppError,
    ErrorCode,
    NetworkError,
    RequestTimeoutError,
    Result,
    failure,
    normalize_error,
    success,
)
from paperdesk.models import Paper
from paperdesk.store import PaperStore
from paperdesk.utils.identifiers import sanitize_for_filename
from paperdesk.utils.io import FileSystem

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"
CHUNK_SIZE = 64 * 1024


class DownloadError(AppError):
    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.DOWNLOAD_FAILED, 502, details)


@dataclass(frozen=True)
class DownloadOutcome:
    paper: Paper
    local_path: Path
    file_size: int


class PdfDownloader:
    """Fetches a single PDF over HTTP, refusing anything that is not one."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 30.0,
        max_bytes: int = 50 * 1024 * 1024,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.max_bytes = max_bytes
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
                timeout=self.timeout_seconds,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str, dest: Path) -> Result[Path]:
        """Download *url* to *dest*.

        Bytes go to a temp file beside *dest* that replaces it only once a
        complete PDF has arrived; on failure any existing *dest* is untouched.
        """
        partial: Path | None = None
        try:
            partial = await asyncio.to_thread(_reserve_partial, dest)
            await asyncio.wait_for(self._stream_to(url, partial), timeout=self.timeout_seconds)
            await asyncio.to_thread(os.replace, partial, dest)
        except AppError as e:
            logger.warning("Download of %s failed: %s", url, e.message)
            return failure(e)
        except (TimeoutError, httpx.TimeoutException):
            return failure(RequestTimeoutError("download", self.timeout_seconds))
        except httpx.TransportError as e:
            return failure(NetworkError("Network request failed - no response", {"url": url, "error": str(e)}))
        except OSError as e:
            return failure(DownloadError(f"Could not write {dest}: {e}", {"url": url, "path": str(dest)}))
        finally:
            if partial is not None:
                await asyncio.to_thread(partial.unlink, missing_ok=True)
        return success(dest)

    async def _stream_to(self, url: str, path: Path) -> None:
        async with self.client.stream("GET", url) as resp:
            if not resp.is_success:
                raise DownloadError(
                    f"PDF download failed: {resp.status_code} {resp.reason_phrase}",
                    {"url": url, "status_code": resp.status_code},
                )
            content_type = resp.headers.get("content-type", "")
            if "text/html" in content_type:
                raise DownloadError("Server returned an HTML page instead of a PDF", {"url": url, "reason": "paywall"})

            written = 0
            header = b""
            f = await asyncio.to_thread(open, path, "wb")
            try:
                async for chunk in resp.aiter_bytes(chunk_size=CHUNK_SIZE):
                    if len(header) < len(PDF_MAGIC):
                        header += chunk[: len(PDF_MAGIC) - len(header)]
                        if len(header) == len(PDF_MAGIC) and header != PDF_MAGIC:
                            raise DownloadError("Downloaded file is not a PDF", {"url": url, "reason": "not_pdf"})
                    written += len(chunk)
                    if written > self.max_bytes:
                        raise DownloadError(
                            "PDF exceeds the maximum download size",
                            {"url": url, "max_bytes": self.max_bytes},
                        )
                    await asyncio.to_thread(f.write, chunk)
            finally:
                await asyncio.to_thread(f.close)

        if header != PDF_MAGIC:
            raise DownloadError("Downloaded file is not a PDF", {"url": url, "reason": "not_pdf"})
        logger.debug("Downloaded %d bytes from %s", written, url)


def _reserve_partial(dest: Path) -> Path:
    """Create an empty temp file next to *dest* to stream into."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".part", dir=dest.parent)
    os.close(fd)
    return Path(name)


class DownloadService:
    """Downloads a paper's PDF into the papers directory and remembers it."""

    def __init__(
        self,
        downloader: PdfDownloader,
        file_system: FileSystem,
        papers_dir: Path,
        store: PaperStore | None = None,
    ) -> None:
        self.downloader = downloader
        self.file_system = file_system
        self.papers_dir = Path(papers_dir)
        self.store = store

    def destination_for(self, paper: Paper) -> Path:
        return self.papers_dir / f"{sanitize_for_filename(paper.id)}.pdf"

    async def download(self, paper: Paper, destination: Path | None = None) -> Result[DownloadOutcome]:
        try:
            return await self._download(paper, destination)
        except Exception as e:
            logger.exception("Download of %s failed unexpectedly", paper.id)
            return failure(normalize_error(e, f"Failed to download {paper.id}: {e}"))

    async def _download(self, paper: Paper, destination: Path | None) -> Result[DownloadOutcome]:
        if paper.local_path and await self.file_system.exists(Path(paper.local_path)):
            size = await self.file_system.file_size(Path(paper.local_path))
            if size.ok:
                logger.info("Paper %s already downloaded at %s", paper.id, paper.local_path)
                return success(DownloadOutcome(paper, Path(paper.local_path), size.data))

        dest = Path(destination) if destination else self.destination_for(paper)
        ensured = await self.file_system.ensure_directory(dest.parent)
        if not ensured.ok:
            return failure(ensured.error)

        logger.info("Downloading %s from %s", paper.id, paper.pdf_url)
        fetched = await self.downloader.fetch(paper.pdf_url, dest)
        if not fetched.ok:
            return failure(fetched.error)

        size = await self.file_system.file_size(dest)
        if not size.ok:
            return failure(size.error)

        updated = paper.with_local_path(str(dest))
        if self.store is not None:
            recorded = await self.store.update_local_path(paper.id, str(dest))
            if not recorded.ok:
                logger.warning("Downloaded %s but could not record its path: %s", paper.id, recorded.error.message)

        logger.info("Saved %s (%d bytes) to %s", paper.id, size.data, dest)
        return success(DownloadOutcome(updated, dest, size.data))
