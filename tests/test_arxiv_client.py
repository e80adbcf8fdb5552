"""Tests for paperdesk.api_clients.arxiv."""

import httpx
import pytest
from tenacity import wait_fixed, wait_none

from paperdesk.api_clients.arxiv import (
    ArxivClient,
    ArxivEntry,
    arxiv_entry_to_paper,
    build_search_query,
    parse_arxiv_feed,
)
from paperdesk.errors import ApiError, ErrorCode
from paperdesk.models import PaperSource, SearchCriteria

BASE_URL = "https://export.arxiv.org/api/query"


def _make_client(handler, **kwargs) -> ArxivClient:
    defaults = dict(
        base_url=BASE_URL,
        retries=1,
        requests_per_second=0,
        retry_wait=wait_none(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    defaults.update(kwargs)
    return ArxivClient(**defaults)


# ---------- query building ----------


def test_query_empty_criteria():
    assert build_search_query(SearchCriteria()) == "all:*"


def test_query_all_parts():
    criteria = SearchCriteria(query="graph networks", title="attention", author="Vaswani", categories=["cs.LG", "cs.CL"])
    assert build_search_query(criteria) == (
        'all:"graph networks" AND ti:"attention" AND au:"Vaswani" AND (cat:cs.LG OR cat:cs.CL)'
    )


def test_query_single_category():
    assert build_search_query(SearchCriteria(categories=["q-bio.NC"])) == "(cat:q-bio.NC)"


# ---------- parsing ----------


def test_parse_feed_normalizes_entry(arxiv_feed):
    xml = arxiv_feed([
        {
            "id": "2401.00123",
            "version": 2,
            "published": "2024-01-02T10:00:00Z",
            "updated": "2024-01-05T10:00:00Z",
            "authors": ["Ada Lovelace", "Alan Turing"],
            "categories": ["cs.LG", "stat.ML"],
            "doi": "10.1000/xyz",
            "comment": "12 pages",
            "journal_ref": "JMLR 1",
        }
    ])
    papers = parse_arxiv_feed(xml)
    assert len(papers) == 1
    p = papers[0]
    assert p.id == "2401.00123"
    assert p.title == "A Paper Title"
    assert p.abstract == "An abstract over two lines."
    assert [a.name for a in p.authors] == ["Ada Lovelace", "Alan Turing"]
    assert p.categories == ["cs.LG", "stat.ML"]
    assert p.pdf_url == "http://arxiv.org/pdf/2401.00123v1"
    assert p.updated_date == "2024-01-05T10:00:00Z"
    assert p.source == PaperSource.ARXIV
    assert p.doi == "10.1000/xyz"
    assert p.comments == "12 pages"
    assert p.journal_ref == "JMLR 1"


def test_parse_feed_builds_pdf_url_when_missing(arxiv_feed):
    papers = parse_arxiv_feed(arxiv_feed([{"id": "2401.00999", "pdf_link": False}]))
    assert papers[0].pdf_url == "https://arxiv.org/pdf/2401.00999.pdf"


def test_parse_feed_skips_malformed_entry(arxiv_feed):
    xml = arxiv_feed([{"id": "2401.00001"}, {"id": "2401.00002", "authors": []}])
    papers = parse_arxiv_feed(xml)
    assert [p.id for p in papers] == ["2401.00001"]


def test_parse_feed_empty():
    assert parse_arxiv_feed("") == []
    assert parse_arxiv_feed(
        '<feed xmlns="http://www.w3.org/2005/Atom"><title>ArXiv Query</title></feed>'
    ) == []


def test_parse_feed_not_xml():
    with pytest.raises(ApiError):
        parse_arxiv_feed("<html><body>Oops")


def test_entry_to_paper_strips_version():
    entry = ArxivEntry(
        id="http://arxiv.org/abs/hep-th/9901001v3",
        title="Old style",
        authors=["A. Physicist"],
        published="1999-01-01T00:00:00Z",
    )
    paper = arxiv_entry_to_paper(entry)
    assert paper.id == "hep-th/9901001"
    assert paper.pdf_url == "https://arxiv.org/pdf/hep-th/9901001.pdf"


# ---------- client ----------


@pytest.mark.asyncio
async def test_search_sends_expected_params(arxiv_feed):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, text=arxiv_feed([{"id": "2401.00001"}]))

    client = _make_client(handler)
    result = await client.search(SearchCriteria(query="llm", limit=5, offset=10))
    await client.client.aclose()

    assert result.ok
    assert len(result.data) == 1
    assert seen["search_query"] == 'all:"llm"'
    assert seen["start"] == "10"
    assert seen["max_results"] == "5"
    assert seen["sortBy"] == "submittedDate"
    assert seen["sortOrder"] == "descending"


@pytest.mark.asyncio
async def test_search_defaults_to_configured_max_results(arxiv_feed):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, text=arxiv_feed([]))

    client = _make_client(handler, max_results=7)
    result = await client.search(SearchCriteria())
    assert result.ok and result.data == []
    assert seen["max_results"] == "7"
    assert seen["start"] == "0"
    assert seen["search_query"] == "all:*"


@pytest.mark.asyncio
async def test_search_http_error_is_api_error():
    client = _make_client(lambda request: httpx.Response(400, text="bad query"))
    result = await client.search(SearchCriteria(query="x"))
    assert not result.ok
    assert result.error.code == ErrorCode.API_ERROR
    assert result.error.status_code == 400
    assert result.error.details["operation"] == "search"
    assert result.error.details["status_code"] == 400
    assert not result.error.retryable


@pytest.mark.asyncio
async def test_search_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = await _make_client(handler).search(SearchCriteria(query="x"))
    assert result.error.code == ErrorCode.NETWORK_ERROR
    assert result.error.retryable


@pytest.mark.asyncio
async def test_search_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    result = await _make_client(handler, timeout_seconds=5).search(SearchCriteria(query="x"))
    assert result.error.code == ErrorCode.TIMEOUT
    assert "timed out after 5s" in result.error.message


@pytest.mark.asyncio
async def test_timeout_covers_retry_waits():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503, text="busy")

    client = _make_client(handler, retries=50, retry_wait=wait_fixed(0.05), timeout_seconds=0.2)
    result = await client.search(SearchCriteria(query="x"))
    assert result.error.code == ErrorCode.TIMEOUT
    assert 1 <= len(calls) < 50


@pytest.mark.asyncio
async def test_retries_transient_failures(arxiv_feed):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, text=arxiv_feed([{"id": "2401.00001"}]))

    result = await _make_client(handler, retries=3).search(SearchCriteria(query="x"))
    assert result.ok
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_does_not_retry_client_errors():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404)

    result = await _make_client(handler, retries=3).search(SearchCriteria(query="x"))
    assert not result.ok
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_unparseable_response_is_failure():
    result = await _make_client(lambda request: httpx.Response(200, text="<<<not xml")).search(SearchCriteria())
    assert result.error.code == ErrorCode.API_ERROR


@pytest.mark.asyncio
async def test_get_by_id(arxiv_feed):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["id_list"] == "2401.00123"
        return httpx.Response(200, text=arxiv_feed([{"id": "2401.00123"}]))

    result = await _make_client(handler).get_by_id("2401.00123")
    assert result.ok
    assert result.data.id == "2401.00123"


@pytest.mark.asyncio
async def test_get_by_id_not_found(arxiv_feed):
    result = await _make_client(lambda request: httpx.Response(200, text=arxiv_feed([]))).get_by_id("0000.00000")
    assert result.ok
    assert result.data is None


@pytest.mark.asyncio
async def test_get_by_doi_unsupported():
    result = await _make_client(lambda request: httpx.Response(500)).get_by_doi("10.1/x")
    assert result.error.code == ErrorCode.VALIDATION
