"""Shared test fixtures for PaperDesk."""

import asyncio
from pathlib import Path

import pytest

from paperdesk.errors import ErrorCode, FileSystemError, success, failure
from paperdesk.store import PaperStore

DATA_FILE = Path("/data/app-data.json")


class MemoryFileSystem:
    """In-memory FileSystem; every call yields to the loop, optionally after a delay."""

    def __init__(self, delay: float = 0.0, read_delay: float = 0.0) -> None:
        self.files: dict[Path, str] = {}
        self.delay = delay
        self.read_delay = read_delay
        self.fail_reads = False
        self.fail_writes = False
        self.writes = 0

    async def _pause(self, extra: float = 0.0) -> None:
        await asyncio.sleep(self.delay + extra)

    async def read_text(self, path):
        await self._pause(self.read_delay)
        path = Path(path)
        if self.fail_reads:
            return failure(FileSystemError(f"Failed to read {path}: I/O error", ErrorCode.FILE_READ_ERROR))
        if path not in self.files:
            return failure(FileSystemError(f"File not found: {path}", ErrorCode.NOT_FOUND))
        return success(self.files[path])

    async def write_text(self, path, text):
        await self._pause()
        if self.fail_writes:
            return failure(FileSystemError(f"Failed to write {path}: disk full", ErrorCode.FILE_WRITE_ERROR))
        self.files[Path(path)] = text
        self.writes += 1
        return success(None)

    async def exists(self, path):
        return Path(path) in self.files

    async def ensure_directory(self, path):
        return success(None)

    async def file_size(self, path):
        path = Path(path)
        if path not in self.files:
            return failure(FileSystemError(f"File not found: {path}", ErrorCode.NOT_FOUND))
        return success(len(self.files[path].encode("utf-8")))


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def memory_fs() -> MemoryFileSystem:
    return MemoryFileSystem()


@pytest.fixture
def slow_fs() -> MemoryFileSystem:
    return MemoryFileSystem(delay=0.005)


@pytest.fixture
def slow_reads_fs() -> MemoryFileSystem:
    return MemoryFileSystem(read_delay=0.05)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(memory_fs: MemoryFileSystem, clock: FakeClock) -> PaperStore:
    return PaperStore(memory_fs, DATA_FILE, clock=clock)


@pytest.fixture
def tmp_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A data directory with the env overrides cleared."""
    for var in ("ARXIV_API_URL", "BIORXIV_API_URL", "PAPERDESK_DATA_DIR", "PAPERDESK_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    return data_dir


DEFAULT_TITLE = "A  Paper\n   Title"
DEFAULT_SUMMARY = "  An abstract\n  over two lines. "


def _arxiv_entry_xml(entry: dict) -> str:
    arxiv_id = entry["id"]
    parts = [
        "<entry>",
        f"<id>http://arxiv.org/abs/{arxiv_id}v{entry.get('version', 1)}</id>",
        f"<published>{entry.get('published', '2024-01-01T00:00:00Z')}</published>",
    ]
    if entry.get("updated"):
        parts.append(f"<updated>{entry['updated']}</updated>")
    parts.append(f"<title>{entry.get('title', DEFAULT_TITLE)}</title>")
    parts.append(f"<summary>{entry.get('summary', DEFAULT_SUMMARY)}</summary>")
    for name in entry.get("authors", ["Jane Doe"]):
        parts.append(f"<author><name>{name}</name></author>")
    for term in entry.get("categories", ["cs.LG"]):
        parts.append(f'<category term="{term}" scheme="http://arxiv.org/schemas/atom"/>')
    parts.append(f'<link href="http://arxiv.org/abs/{arxiv_id}v1" rel="alternate" type="text/html"/>')
    if entry.get("pdf_link", True):
        parts.append(f'<link title="pdf" href="http://arxiv.org/pdf/{arxiv_id}v1" rel="related" type="application/pdf"/>')
    for tag in ("doi", "comment", "journal_ref"):
        if entry.get(tag):
            parts.append(f"<arxiv:{tag}>{entry[tag]}</arxiv:{tag}>")
    parts.append("</entry>")
    return "".join(parts)


def build_arxiv_feed(entries: list[dict]) -> str:
    body = "".join(_arxiv_entry_xml(e) for e in entries)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<feed xmlns="http://www.w3.org/2005/Atom" xmlns:arxiv="http://arxiv.org/schemas/atom">'
        f"<title>ArXiv Query</title>{body}</feed>"
    )


def build_biorxiv_record(**overrides) -> dict:
    record = {
        "doi": "10.1101/2024.01.02.000001",
        "title": "Single-cell atlas of the mouse brain",
        "authors": "Smith, J.; Doe, A.; Lee, K.",
        "author_corresponding": "Doe, A.",
        "author_corresponding_institution": "Example University",
        "date": "2024-01-02",
        "version": "1",
        "type": "new results",
        "license": "cc_by",
        "category": "neuroscience",
        "jatsxml": "https://www.biorxiv.org/content/early/2024/01/02/2024.01.02.000001.source.xml",
        "abstract": "We map every cell.",
        "published": "NA",
        "server": "biorxiv",
    }
    record.update(overrides)
    return record


def build_biorxiv_page(records: list[dict], total: int | None = None, cursor: int = 0) -> dict:
    return {
        "messages": [
            {
                "status": "ok",
                "interval": "2024-01-01:2024-01-31",
                "cursor": cursor,
                "count": len(records),
                "total": len(records) if total is None else total,
            }
        ],
        "collection": records,
    }


@pytest.fixture
def arxiv_feed():
    return build_arxiv_feed


@pytest.fixture
def biorxiv_record():
    return build_biorxiv_record


@pytest.fixture
def biorxiv_page():
    return build_biorxiv_page
