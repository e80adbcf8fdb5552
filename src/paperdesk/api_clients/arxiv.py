"""arXiv API adapter: direct httpx calls against the Atom query API."""

from __future__ import annotations

import logging
import re
from xml.etree import ElementTree

from pydantic import BaseModel, Field

from paperdesk.api_clients.base import PaperSourceClient
from paperdesk.config import ArxivConfig
from paperdesk.errors import ApiError, Result
from paperdesk.models import Author, Paper, PaperSource, SearchCriteria
from paperdesk.utils.identifiers import arxiv_id_from_url

logger = logging.getLogger(__name__)

ATOM_NS = {"atom": "http://www.w3.org/2005/Atom", "arxiv": "http://arxiv.org/schemas/atom"}

ARXIV_PDF_URL = "https://arxiv.org/pdf/{id}.pdf"

_WS_RE = re.compile(r"\s+")


class ArxivEntry(BaseModel):
    """One ``<entry>`` of an arXiv Atom feed, before normalization."""

    id: str = ""
    title: str = ""
    authors: list[str] = Field(default_factory=list)
    summary: str = ""
    published: str = ""
    updated: str | None = None
    categories: list[str] = Field(default_factory=list)
    pdf_link: str | None = None
    doi: str | None = None
    comment: str | None = None
    journal_ref: str | None = None


def _clean(text: str | None) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def _xml_text(elem: ElementTree.Element, path: str) -> str | None:
    node = elem.find(path, ATOM_NS)
    if node is not None and node.text and node.text.strip():
        return _clean(node.text)
    return None


def build_search_query(criteria: SearchCriteria) -> str:
    """Translate criteria into arXiv ``search_query`` syntax.

    Supplied fields combine with AND; categories OR together.
    """
    parts: list[str] = []
    if criteria.query:
        parts.append(f'all:"{criteria.query}"')
    if criteria.title:
        parts.append(f'ti:"{criteria.title}"')
    if criteria.author:
        parts.append(f'au:"{criteria.author}"')
    if criteria.categories:
        cats = " OR ".join(f"cat:{c}" for c in criteria.categories)
        parts.append(f"({cats})")
    return " AND ".join(parts) if parts else "all:*"


def parse_arxiv_entry(entry: ElementTree.Element) -> ArxivEntry:
    pdf_link = None
    for link in entry.findall("atom:link", ATOM_NS):
        href = link.get("href") or ""
        if link.get("title") == "pdf" or (link.get("rel") == "related" and "pdf" in href):
            pdf_link = href
            break

    return ArxivEntry(
        id=_xml_text(entry, "atom:id") or "",
        title=_xml_text(entry, "atom:title") or "",
        authors=[
            _clean(node.text)
            for node in entry.findall("atom:author/atom:name", ATOM_NS)
            if node.text and node.text.strip()
        ],
        summary=_xml_text(entry, "atom:summary") or "",
        published=_xml_text(entry, "atom:published") or "",
        updated=_xml_text(entry, "atom:updated"),
        categories=[
            term for node in entry.findall("atom:category", ATOM_NS) if (term := node.get("term"))
        ],
        pdf_link=pdf_link,
        doi=_xml_text(entry, "arxiv:doi"),
        comment=_xml_text(entry, "arxiv:comment"),
        journal_ref=_xml_text(entry, "arxiv:journal_ref"),
    )


def arxiv_entry_to_paper(entry: ArxivEntry) -> Paper:
    """Map a wire entry to a Paper. Raises pydantic's ValidationError on bad data."""
    paper_id = arxiv_id_from_url(entry.id) if entry.id else ""
    pdf_url = entry.pdf_link or (ARXIV_PDF_URL.format(id=paper_id) if paper_id else "")
    return Paper(
        id=paper_id,
        title=entry.title,
        authors=[Author(name=name) for name in entry.authors],
        abstract=entry.summary,
        published_date=entry.published,
        updated_date=entry.updated,
        categories=entry.categories,
        pdf_url=pdf_url,
        source=PaperSource.ARXIV,
        doi=entry.doi,
        comments=entry.comment,
        journal_ref=entry.journal_ref,
    )


def parse_arxiv_feed(xml_text: str) -> list[Paper]:
    """Parse an arXiv Atom feed into papers.

    Malformed entries are logged and skipped. A document that is not XML at
    all raises :class:`ApiError`.
    """
    if not xml_text.strip():
        return []
    try:
        root = ElementTree.fromstring(xml_text)
    except ElementTree.ParseError as e:
        raise ApiError("Failed to parse arXiv response", 502, {"error": str(e)}) from e

    papers: list[Paper] = []
    for i, entry in enumerate(root.findall("atom:entry", ATOM_NS)):
        try:
            papers.append(arxiv_entry_to_paper(parse_arxiv_entry(entry)))
        except ValueError as e:
            logger.warning("Skipping malformed arXiv entry #%d: %s", i, e)
    logger.debug("Parsed %d papers from arXiv feed", len(papers))
    return papers


class ArxivClient(PaperSourceClient):
    """Client for the arXiv query API."""

    source = PaperSource.ARXIV

    @classmethod
    def from_config(cls, config: ArxivConfig, **kwargs) -> ArxivClient:
        return cls(
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
            max_results=config.max_results,
            retries=config.retries,
            requests_per_second=config.requests_per_second,
            **kwargs,
        )

    async def search(self, criteria: SearchCriteria) -> Result[list[Paper]]:
        return await self._guard("search", self._search(criteria))

    async def _search(self, criteria: SearchCriteria) -> list[Paper]:
        search_query = build_search_query(criteria)
        params = {
            "search_query": search_query,
            "start": criteria.offset or 0,
            "max_results": criteria.limit or self.max_results,
            "sortBy": "submittedDate",
            "sortOrder": "descending",
        }
        logger.info("arXiv search: query=%r max_results=%d", search_query, params["max_results"])
        response = await self._get("search", self.base_url, params)
        papers = parse_arxiv_feed(response.text)
        logger.info("arXiv search returned %d papers", len(papers))
        return papers

    async def get_by_id(self, paper_id: str) -> Result[Paper | None]:
        return await self._guard("get_by_id", self._get_by_id(paper_id))

    async def _get_by_id(self, paper_id: str) -> Paper | None:
        response = await self._get("get_by_id", self.base_url, {"id_list": paper_id})
        papers = parse_arxiv_feed(response.text)
        if not papers:
            logger.info("arXiv paper not found: %s", paper_id)
            return None
        return papers[0]
