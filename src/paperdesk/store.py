"""Paper store: starred papers, open tabs, view state and search history.

Everything lives in one JSON document owned by :class:`PaperStore`. Writes
go through a :class:`SerialTaskQueue` so each mutation sees the result of
the previous one; reads are served from a short-lived in-memory cache.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterator
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from paperdesk.config import StorageConfig
from paperdesk.errors import (
    AppError,
    ErrorCode,
    NotFoundError,
    Result,
    StorageError,
    ValidationError,
    failure,
    normalize_error,
    success,
)
from paperdesk.models import (
    AppDataDocument,
    OpenPaper,
    Paper,
    PdfViewState,
    SearchCriteria,
    SearchHistoryEntry,
)
from paperdesk.utils.io import FileSystem
from paperdesk.utils.task_queue import SerialTaskQueue

logger = logging.getLogger(__name__)

MS_PER_DAY = 24 * 60 * 60 * 1000
REQUIRED_IMPORT_KEYS = ("version", "starredPapers")

# A mutator edits the document in place and reports whether anything changed.
Mutator = Callable[[AppDataDocument], bool]


class PaperStore:
    def __init__(
        self,
        file_system: FileSystem,
        data_file: Path,
        *,
        clock: Callable[[], float] = time.time,
        cache_ttl_seconds: float = 300.0,
        max_open_papers: int = 50,
        max_history: int = 20,
        max_document_bytes: int = 50 * 1024 * 1024,
        max_cached_papers: int = 500,
    ) -> None:
        self.file_system = file_system
        self.data_file = Path(data_file)
        self.cache_ttl_seconds = cache_ttl_seconds
        self.max_open_papers = max_open_papers
        self.max_history = max_history
        self.max_document_bytes = max_document_bytes
        self.max_cached_papers = max_cached_papers
        self._clock = clock
        self._queue = SerialTaskQueue("paper-store")
        self._cache: AppDataDocument | None = None
        self._cached_at = 0.0

    @classmethod
    def from_config(cls, storage: StorageConfig, file_system: FileSystem, **kwargs) -> PaperStore:
        return cls(
            file_system,
            storage.data_file_path,
            cache_ttl_seconds=storage.cache_ttl_seconds,
            max_open_papers=storage.max_open_papers,
            max_history=storage.max_history,
            max_document_bytes=storage.max_document_bytes,
            max_cached_papers=storage.max_cached_papers,
            **kwargs,
        )

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ---------- reads ----------

    async def load(self) -> Result[AppDataDocument]:
        """Return a private copy of the current document.

        A fresh cache answers directly. Otherwise the reload is queued
        behind pending mutations, so it can never cache a copy older than
        their writes, and any self-heal write happens in order too.
        """
        if self._cache_is_fresh():
            assert self._cache is not None
            return success(self._cache.model_copy(deep=True))
        try:
            return await self._queue.submit(self._current_document)
        except Exception as e:
            logger.exception("Failed to load %s", self.data_file)
            return failure(normalize_error(e, f"Failed to load {self.data_file}"))

    async def get_starred(self) -> Result[list[Paper]]:
        loaded = await self.load()
        if not loaded.ok:
            return loaded
        return success(list(loaded.data.starred_papers))

    async def is_starred(self, paper_id: str) -> Result[bool]:
        loaded = await self.load()
        if not loaded.ok:
            return loaded
        return success(any(p.id == paper_id for p in loaded.data.starred_papers))

    async def get_open(self) -> Result[list[OpenPaper]]:
        loaded = await self.load()
        if not loaded.ok:
            return loaded
        return success(list(loaded.data.open_papers))

    async def get_pdf_view_state(self, paper_id: str) -> Result[PdfViewState | None]:
        loaded = await self.load()
        if not loaded.ok:
            return loaded
        return success(loaded.data.pdf_view_state.get(paper_id))

    async def get_search_history(self) -> Result[list[SearchHistoryEntry]]:
        loaded = await self.load()
        if not loaded.ok:
            return loaded
        return success(list(loaded.data.search_history))

    async def find_by_id(self, paper_id: str) -> Result[Paper | None]:
        loaded = await self.load()
        if not loaded.ok:
            return loaded
        for paper in _known_papers(loaded.data):
            if paper.id == paper_id:
                return success(paper)
        return success(None)

    async def find_all(self, criteria: SearchCriteria | None = None) -> Result[list[Paper]]:
        loaded = await self.load()
        if not loaded.ok:
            return loaded
        papers = list(_known_papers(loaded.data))
        if criteria is not None:
            papers = criteria.page([p for p in papers if criteria.matches(p)])
        return success(papers)

    async def find_downloaded(self) -> Result[list[Paper]]:
        loaded = await self.load()
        if not loaded.ok:
            return loaded
        return success([p for p in _known_papers(loaded.data) if p.is_downloaded])

    async def export_data(self) -> Result[str]:
        loaded = await self.load()
        if not loaded.ok:
            return loaded
        return success(_serialize(loaded.data))

    # ---------- mutations ----------

    async def star(self, paper: Paper) -> Result[None]:
        def mutate(doc: AppDataDocument) -> bool:
            if any(p.id == paper.id for p in doc.starred_papers):
                return False
            doc.starred_papers.append(paper.to_paper())
            return True

        return await self._mutate("star paper", mutate)

    async def unstar(self, paper_id: str) -> Result[None]:
        def mutate(doc: AppDataDocument) -> bool:
            kept = [p for p in doc.starred_papers if p.id != paper_id]
            if len(kept) == len(doc.starred_papers):
                return False
            doc.starred_papers = kept
            return True

        return await self._mutate("unstar paper", mutate)

    async def add_to_open(self, paper: Paper) -> Result[None]:
        def mutate(doc: AppDataDocument) -> bool:
            entry = OpenPaper.from_paper(paper, self._now_ms())
            opened = [entry, *(p for p in doc.open_papers if p.id != paper.id)]
            if len(opened) > self.max_open_papers:
                logger.debug("Closing %d oldest papers over the cap", len(opened) - self.max_open_papers)
                opened = opened[: self.max_open_papers]
            doc.open_papers = opened
            return True

        return await self._mutate("open paper", mutate)

    async def remove_from_open(self, paper_id: str) -> Result[None]:
        def mutate(doc: AppDataDocument) -> bool:
            kept = [p for p in doc.open_papers if p.id != paper_id]
            if len(kept) == len(doc.open_papers):
                return False
            doc.open_papers = kept
            return True

        return await self._mutate("close paper", mutate)

    async def close_all(self) -> Result[None]:
        def mutate(doc: AppDataDocument) -> bool:
            if not doc.open_papers:
                return False
            doc.open_papers = []
            return True

        return await self._mutate("close all papers", mutate)

    async def reorder_open(self, paper_ids: list[str]) -> Result[None]:
        """Put the listed open papers first, in the given order.

        Unknown ids are ignored; unlisted open papers keep their relative
        order after the listed ones.
        """

        def mutate(doc: AppDataDocument) -> bool:
            by_id = {p.id: p for p in doc.open_papers}
            seen: set[str] = set()
            ordered: list[OpenPaper] = []
            for pid in paper_ids:
                if pid in by_id and pid not in seen:
                    ordered.append(by_id[pid])
                    seen.add(pid)
            ordered.extend(p for p in doc.open_papers if p.id not in seen)
            if [p.id for p in ordered] == [p.id for p in doc.open_papers]:
                return False
            doc.open_papers = ordered
            return True

        return await self._mutate("reorder open papers", mutate)

    async def update_local_path(self, paper_id: str, local_path: str) -> Result[None]:
        def mutate(doc: AppDataDocument) -> bool:
            found = False
            for i, p in enumerate(doc.starred_papers):
                if p.id == paper_id:
                    doc.starred_papers[i] = p.with_local_path(local_path)
                    found = True
            for i, p in enumerate(doc.open_papers):
                if p.id == paper_id:
                    doc.open_papers[i] = p.with_local_path(local_path)
                    found = True
            if paper_id in doc.paper_metadata:
                doc.paper_metadata[paper_id] = doc.paper_metadata[paper_id].with_local_path(local_path)
                found = True
            if not found:
                raise NotFoundError("Paper", paper_id)
            return True

        return await self._mutate("update local path", mutate)

    async def save_pdf_view_state(self, paper_id: str, state: PdfViewState) -> Result[None]:
        def mutate(doc: AppDataDocument) -> bool:
            doc.pdf_view_state[paper_id] = state.model_copy(update={"last_viewed": self._now_ms()})
            return True

        return await self._mutate("save view state", mutate)

    async def add_to_search_history(self, entry: SearchHistoryEntry) -> Result[None]:
        def mutate(doc: AppDataDocument) -> bool:
            stamped = entry.model_copy(update={"timestamp": self._now_ms()})
            others = [
                e for e in doc.search_history
                if (e.query, e.source) != (stamped.query, stamped.source)
            ]
            doc.search_history = [stamped, *others][: self.max_history]
            return True

        return await self._mutate("record search", mutate)

    async def clear_search_history(self) -> Result[None]:
        def mutate(doc: AppDataDocument) -> bool:
            if not doc.search_history:
                return False
            doc.search_history = []
            return True

        return await self._mutate("clear search history", mutate)

    async def save_many(self, papers: list[Paper]) -> Result[None]:
        """Cache search results; the oldest entries go once the cap is hit."""

        def mutate(doc: AppDataDocument) -> bool:
            if not papers:
                return False
            for paper in papers:
                doc.paper_metadata.pop(paper.id, None)
                doc.paper_metadata[paper.id] = paper.to_paper()
            overflow = len(doc.paper_metadata) - self.max_cached_papers
            if overflow > 0:
                for stale in list(doc.paper_metadata)[:overflow]:
                    del doc.paper_metadata[stale]
                logger.debug("Dropped %d cached papers over the cap", overflow)
            return True

        return await self._mutate("save papers", mutate)

    async def delete(self, paper_id: str) -> Result[None]:
        def mutate(doc: AppDataDocument) -> bool:
            before = (
                len(doc.starred_papers),
                len(doc.open_papers),
                len(doc.paper_metadata),
                len(doc.pdf_view_state),
            )
            doc.starred_papers = [p for p in doc.starred_papers if p.id != paper_id]
            doc.open_papers = [p for p in doc.open_papers if p.id != paper_id]
            doc.paper_metadata.pop(paper_id, None)
            doc.pdf_view_state.pop(paper_id, None)
            after = (
                len(doc.starred_papers),
                len(doc.open_papers),
                len(doc.paper_metadata),
                len(doc.pdf_view_state),
            )
            return before != after

        return await self._mutate("delete paper", mutate)

    async def clear(self) -> Result[None]:
        def mutate(doc: AppDataDocument) -> bool:
            _replace_contents(doc, AppDataDocument())
            return True

        return await self._mutate("clear store", mutate)

    async def cleanup(self, older_than_days: int = 30) -> Result[int]:
        """Drop search history and view states older than the cutoff.

        View states of starred papers are kept. Returns the number of
        entries removed.
        """
        removed = 0

        def mutate(doc: AppDataDocument) -> bool:
            nonlocal removed
            cutoff = self._now_ms() - older_than_days * MS_PER_DAY
            history = [e for e in doc.search_history if e.timestamp >= cutoff]
            starred = {p.id for p in doc.starred_papers}
            states = {
                pid: state
                for pid, state in doc.pdf_view_state.items()
                if pid in starred or (state.last_viewed or 0) >= cutoff
            }
            removed = (len(doc.search_history) - len(history)) + (len(doc.pdf_view_state) - len(states))
            doc.search_history = history
            doc.pdf_view_state = states
            return removed > 0

        result = await self._mutate("clean up", mutate)
        if not result.ok:
            return result
        if removed:
            logger.info("Cleanup removed %d stale entries", removed)
        return success(removed)

    async def import_data(self, text: str) -> Result[None]:
        """Replace the whole document with an exported one."""
        try:
            raw = json.loads(text)
        except ValueError as e:
            return failure(ValidationError(f"Import data is not valid JSON: {e}"))
        if not isinstance(raw, dict):
            return failure(ValidationError("Import data must be a JSON object"))
        missing = [key for key in REQUIRED_IMPORT_KEYS if key not in raw]
        if missing:
            return failure(ValidationError("Invalid import data format", {"missing_keys": missing}))
        try:
            imported = AppDataDocument.model_validate(raw)
        except PydanticValidationError as e:
            return failure(ValidationError("Invalid import data format", {"errors": e.error_count()}))

        def mutate(doc: AppDataDocument) -> bool:
            _replace_contents(doc, imported)
            return True

        return await self._mutate("import data", mutate)

    # ---------- internals ----------

    async def _mutate(self, operation: str, mutator: Mutator) -> Result[None]:
        async def run() -> Result[None]:
            loaded = await self._current_document()
            if not loaded.ok:
                return loaded
            doc = loaded.data
            try:
                changed = mutator(doc)
            except AppError as e:
                logger.info("%s rejected: %s", operation, e.message)
                return failure(e)
            if not changed:
                logger.debug("%s: nothing to change", operation)
                return success(None)
            return await self._write_document(doc)

        try:
            return await self._queue.submit(run)
        except Exception as e:
            logger.exception("Failed to %s", operation)
            return failure(normalize_error(e, f"Failed to {operation}"))

    def _cache_is_fresh(self) -> bool:
        return self._cache is not None and self._clock() - self._cached_at < self.cache_ttl_seconds

    def _remember(self, doc: AppDataDocument) -> None:
        self._cache = doc.model_copy(deep=True)
        self._cached_at = self._clock()

    async def _current_document(self) -> Result[AppDataDocument]:
        if self._cache_is_fresh():
            assert self._cache is not None
            return success(self._cache.model_copy(deep=True))
        loaded = await self._read_document()
        if loaded.ok:
            self._remember(loaded.data)
        return loaded

    async def _read_document(self) -> Result[AppDataDocument]:
        path = self.data_file
        ensured = await self.file_system.ensure_directory(path.parent)
        if not ensured.ok:
            return failure(StorageError(f"Cannot create data directory: {ensured.error.message}", {"path": str(path)}))

        if not await self.file_system.exists(path):
            logger.info("No data file at %s, creating one", path)
            return await self._reset_document()

        read = await self.file_system.read_text(path)
        if not read.ok:
            if read.error.code == ErrorCode.NOT_FOUND:
                return await self._reset_document()
            return failure(StorageError(f"Failed to read data file: {read.error.message}", {"path": str(path)}))

        text = read.data
        if not text.strip():
            problem = "file is empty"
        else:
            try:
                return success(AppDataDocument.model_validate_json(text))
            except PydanticValidationError as e:
                problem = f"{e.error_count()} validation error(s), first: {e.errors()[0]['msg']}"

        logger.warning("Data file %s is corrupt (%s); starting fresh", path, problem)
        await self._back_up_corrupt(text)
        return await self._reset_document()

    async def _back_up_corrupt(self, text: str) -> None:
        backup = path_with_suffix(self.data_file, f".corrupt-{self._now_ms()}")
        written = await self.file_system.write_text(backup, text)
        if written.ok:
            logger.warning("Corrupt data saved to %s", backup)
        else:
            logger.warning("Could not back up corrupt data: %s", written.error.message)

    async def _reset_document(self) -> Result[AppDataDocument]:
        doc = AppDataDocument()
        written = await self._write_document(doc)
        if not written.ok:
            logger.warning("Could not write a fresh data file: %s", written.error.message)
        return success(doc)

    async def _write_document(self, doc: AppDataDocument) -> Result[None]:
        doc.last_updated = self._now_ms()
        text = _serialize(doc)
        size = len(text.encode("utf-8"))
        if size > self.max_document_bytes:
            return failure(
                StorageError(
                    "Data document exceeds the maximum size",
                    {"size": size, "max_size": self.max_document_bytes},
                )
            )
        written = await self.file_system.write_text(self.data_file, text)
        if not written.ok:
            return failure(StorageError(f"Failed to save data: {written.error.message}", {"path": str(self.data_file)}))
        self._remember(doc)
        return success(None)


def path_with_suffix(path: Path, suffix: str) -> Path:
    return path.with_name(path.name + suffix)


def _serialize(doc: AppDataDocument) -> str:
    return doc.model_dump_json(by_alias=True, exclude_none=True, indent=2)


def _replace_contents(doc: AppDataDocument, source: AppDataDocument) -> None:
    for name in AppDataDocument.model_fields:
        setattr(doc, name, getattr(source, name))


def _known_papers(doc: AppDataDocument) -> Iterator[Paper]:
    """Every paper the document knows about, once per id, freshest copy first."""
    seen: set[str] = set()
    for paper in (*doc.starred_papers, *doc.open_papers, *doc.paper_metadata.values()):
        if paper.id not in seen:
            seen.add(paper.id)
            yield paper.to_paper()
