"""Tests for paperdesk.download."""

from pathlib import Path

import httpx
import pytest

from paperdesk.download import DownloadService, PdfDownloader
from paperdesk.errors import ErrorCode
from paperdesk.models import Author, Paper, PaperSource
from paperdesk.store import PaperStore
from paperdesk.utils.io import LocalFileSystem

PDF_BYTES = b"%PDF-1.7\n" + b"0" * 2048 + b"\n%%EOF"


def _make_paper(**kwargs) -> Paper:
    defaults = {
        "id": "2401.00001",
        "title": "Test Paper",
        "authors": [Author(name="Jane Doe")],
        "published_date": "2024-01-01",
        "pdf_url": "https://arxiv.org/pdf/2401.00001.pdf",
        "source": PaperSource.ARXIV,
    }
    defaults.update(kwargs)
    return Paper(**defaults)


def _downloader(handler, **kwargs) -> PdfDownloader:
    return PdfDownloader(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), **kwargs)


def _pdf_response(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=PDF_BYTES, headers={"content-type": "application/pdf"})


@pytest.mark.asyncio
async def test_fetch_writes_pdf(tmp_path: Path):
    dest = tmp_path / "out" / "paper.pdf"
    result = await _downloader(_pdf_response).fetch("https://example.org/p.pdf", dest)
    assert result.ok
    assert dest.read_bytes() == PDF_BYTES


@pytest.mark.asyncio
async def test_fetch_rejects_html(tmp_path: Path):
    def handler(request):
        return httpx.Response(200, text="<html>Login</html>", headers={"content-type": "text/html; charset=utf-8"})

    dest = tmp_path / "paper.pdf"
    result = await _downloader(handler).fetch("https://example.org/p.pdf", dest)
    assert not result.ok
    assert result.error.code == ErrorCode.DOWNLOAD_FAILED
    assert result.error.details["reason"] == "paywall"
    assert not dest.exists()


@pytest.mark.asyncio
async def test_fetch_rejects_non_pdf_payload(tmp_path: Path):
    def handler(request):
        return httpx.Response(200, content=b"PK\x03\x04zipdata" * 10, headers={"content-type": "application/octet-stream"})

    dest = tmp_path / "paper.pdf"
    result = await _downloader(handler).fetch("https://example.org/p.pdf", dest)
    assert result.error.details["reason"] == "not_pdf"
    assert not dest.exists()


@pytest.mark.asyncio
async def test_fetch_enforces_size_limit(tmp_path: Path):
    dest = tmp_path / "paper.pdf"
    result = await _downloader(_pdf_response, max_bytes=100).fetch("https://example.org/p.pdf", dest)
    assert result.error.code == ErrorCode.DOWNLOAD_FAILED
    assert not dest.exists()


@pytest.mark.asyncio
async def test_fetch_http_error(tmp_path: Path):
    result = await _downloader(lambda request: httpx.Response(404)).fetch("https://example.org/p.pdf", tmp_path / "p.pdf")
    assert result.error.code == ErrorCode.DOWNLOAD_FAILED
    assert result.error.details["status_code"] == 404


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503),
        httpx.Response(200, text="<html>Login</html>", headers={"content-type": "text/html"}),
        httpx.Response(200, content=b"GIF89a" * 10, headers={"content-type": "application/octet-stream"}),
    ],
)
async def test_failed_fetch_keeps_existing_file(tmp_path: Path, response):
    dest = tmp_path / "paper.pdf"
    dest.write_bytes(PDF_BYTES)

    result = await _downloader(lambda request: response).fetch("https://example.org/p.pdf", dest)
    assert not result.ok
    assert dest.read_bytes() == PDF_BYTES
    assert [p.name for p in tmp_path.iterdir()] == ["paper.pdf"]


@pytest.mark.asyncio
async def test_fetch_replaces_existing_file_only_when_complete(tmp_path: Path):
    dest = tmp_path / "paper.pdf"
    dest.write_bytes(b"%PDF-old")

    result = await _downloader(_pdf_response).fetch("https://example.org/p.pdf", dest)
    assert result.ok
    assert dest.read_bytes() == PDF_BYTES
    assert [p.name for p in tmp_path.iterdir()] == ["paper.pdf"]


@pytest.mark.asyncio
async def test_failed_download_keeps_earlier_copy(tmp_path: Path):
    fs = LocalFileSystem()
    service = DownloadService(_downloader(lambda request: httpx.Response(503)), fs, tmp_path / "papers")
    paper = _make_paper()
    existing = service.destination_for(paper)
    existing.parent.mkdir(parents=True)
    existing.write_bytes(PDF_BYTES)

    result = await service.download(paper)
    assert result.error.code == ErrorCode.DOWNLOAD_FAILED
    assert existing.read_bytes() == PDF_BYTES


@pytest.mark.asyncio
async def test_fetch_network_error(tmp_path: Path):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    result = await _downloader(handler).fetch("https://example.org/p.pdf", tmp_path / "p.pdf")
    assert result.error.code == ErrorCode.NETWORK_ERROR


@pytest.mark.asyncio
async def test_download_records_local_path(tmp_path: Path):
    fs = LocalFileSystem()
    store = PaperStore(fs, tmp_path / "app-data.json")
    paper = _make_paper(id="hep-th/9901001")
    await store.star(paper)
    await store.add_to_open(paper)

    service = DownloadService(_downloader(_pdf_response), fs, tmp_path / "papers", store)
    result = await service.download(paper)
    assert result.ok

    outcome = result.data
    assert outcome.local_path == tmp_path / "papers" / "hep-th_9901001.pdf"
    assert outcome.file_size == len(PDF_BYTES)
    assert outcome.paper.local_path == str(outcome.local_path)
    assert paper.local_path is None

    doc = (await store.load()).data
    assert doc.starred_papers[0].local_path == str(outcome.local_path)
    assert doc.open_papers[0].local_path == str(outcome.local_path)


@pytest.mark.asyncio
async def test_download_skips_existing_file(tmp_path: Path):
    existing = tmp_path / "already.pdf"
    existing.write_bytes(PDF_BYTES)
    calls = []

    def handler(request):
        calls.append(request)
        return _pdf_response(request)

    service = DownloadService(_downloader(handler), LocalFileSystem(), tmp_path / "papers")
    result = await service.download(_make_paper(local_path=str(existing)))
    assert result.ok
    assert result.data.local_path == existing
    assert calls == []


@pytest.mark.asyncio
async def test_download_unknown_paper_still_succeeds(tmp_path: Path):
    fs = LocalFileSystem()
    store = PaperStore(fs, tmp_path / "app-data.json")
    service = DownloadService(_downloader(_pdf_response), fs, tmp_path / "papers", store)

    result = await service.download(_make_paper(), destination=tmp_path / "custom.pdf")
    assert result.ok
    assert result.data.local_path == tmp_path / "custom.pdf"
