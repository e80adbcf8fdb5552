"""bioRxiv API adapter: date-window listing with client-side filtering."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from paperdesk.api_clients.base import PaperSourceClient
from paperdesk.config import BiorxivConfig
from paperdesk.errors import ApiError, Result
from paperdesk.models import Author, Paper, PaperSource, SearchCriteria
from paperdesk.utils.dates import trailing_window
from paperdesk.utils.identifiers import biorxiv_id_from_doi

logger = logging.getLogger(__name__)

BIORXIV_PDF_URL = "https://www.biorxiv.org/content/{doi}v{version}.full.pdf"
NO_ABSTRACT = "No abstract available"


class BiorxivRecord(BaseModel):
    """One item of a bioRxiv ``collection`` array."""

    model_config = ConfigDict(extra="ignore")

    doi: str
    title: str
    authors: str = ""
    author_corresponding: str = ""
    author_corresponding_institution: str = ""
    date: str
    version: str = "1"
    type: str = ""
    license: str = ""
    category: str = ""
    abstract: str = ""
    published: str = ""
    server: str = "biorxiv"

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_str(cls, value: Any) -> str:
        return str(value)


class BiorxivMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str = ""
    count: int = 0
    total: int = 0

    @field_validator("count", "total", mode="before")
    @classmethod
    def _lenient_int(cls, value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0


def biorxiv_record_to_paper(record: BiorxivRecord) -> Paper:
    names = [n.strip() for n in record.authors.split(";") if n.strip()]
    corresponding = record.author_corresponding.strip()
    institution = record.author_corresponding_institution.strip() or None
    authors = [
        Author(name=name, affiliation=institution if corresponding and name == corresponding else None)
        for name in names
    ]
    journal_ref = record.published.strip()
    return Paper(
        id=biorxiv_id_from_doi(record.doi),
        title=record.title,
        authors=authors,
        abstract=record.abstract.strip() or NO_ABSTRACT,
        published_date=record.date,
        categories=[record.category] if record.category else [],
        pdf_url=BIORXIV_PDF_URL.format(doi=record.doi, version=record.version),
        source=PaperSource.BIORXIV,
        doi=record.doi,
        comments=record.type or None,
        journal_ref=journal_ref if journal_ref and journal_ref.upper() != "NA" else None,
    )


def parse_collection(payload: Any) -> list[Paper]:
    """Convert a decoded response body into papers, skipping bad records."""
    if not isinstance(payload, dict):
        raise ApiError("Unexpected bioRxiv response shape", 502, {"type": type(payload).__name__})
    papers: list[Paper] = []
    for i, item in enumerate(payload.get("collection") or []):
        try:
            papers.append(biorxiv_record_to_paper(BiorxivRecord.model_validate(item)))
        except (PydanticValidationError, ValueError) as e:
            logger.warning("Skipping malformed bioRxiv record #%d: %s", i, e)
    return papers


def _first_message(payload: Any) -> BiorxivMessage:
    messages = payload.get("messages") if isinstance(payload, dict) else None
    if messages and isinstance(messages[0], dict):
        return BiorxivMessage.model_validate(messages[0])
    return BiorxivMessage()


class BiorxivClient(PaperSourceClient):
    """Client for the bioRxiv details API."""

    source = PaperSource.BIORXIV

    def __init__(
        self,
        *,
        default_window_days: int = 30,
        max_pages: int = 3,
        today: Callable[[], date] = date.today,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.default_window_days = default_window_days
        self.max_pages = max(1, max_pages)
        self._today = today

    @classmethod
    def from_config(cls, config: BiorxivConfig, **kwargs: Any) -> BiorxivClient:
        return cls(
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
            max_results=config.max_results,
            retries=config.retries,
            requests_per_second=config.requests_per_second,
            default_window_days=config.default_window_days,
            max_pages=config.max_pages,
            **kwargs,
        )

    def date_window(self, criteria: SearchCriteria) -> tuple[str, str]:
        default_start, default_end = trailing_window(self._today(), self.default_window_days)
        return criteria.start_date or default_start, criteria.end_date or default_end

    async def search(self, criteria: SearchCriteria) -> Result[list[Paper]]:
        return await self._guard("search", self._search(criteria))

    async def _search(self, criteria: SearchCriteria) -> list[Paper]:
        start, end = self.date_window(criteria)
        limit = criteria.limit or self.max_results
        offset = criteria.offset or 0
        wanted = offset + limit

        matched: list[Paper] = []
        cursor = 0
        pages = 0
        logger.info("bioRxiv search: window=%s..%s limit=%d offset=%d", start, end, limit, offset)
        while pages < self.max_pages:
            response = await self._get("search", f"{self.base_url}/{start}/{end}/{cursor}")
            payload = self._decode(response)
            pages += 1

            batch = parse_collection(payload)
            matched.extend(p for p in batch if criteria.matches(p))

            message = _first_message(payload)
            fetched = message.count or len(payload.get("collection") or [])
            cursor += fetched
            if fetched == 0 or cursor >= message.total or len(matched) >= wanted:
                break
        else:
            logger.debug("bioRxiv search stopped after %d pages", pages)

        papers = matched[offset:wanted]
        logger.info("bioRxiv search returned %d papers (%d pages)", len(papers), pages)
        return papers

    async def get_by_doi(self, doi: str) -> Result[Paper | None]:
        return await self._guard("get_by_doi", self._get_by_doi(doi))

    async def _get_by_doi(self, doi: str) -> Paper | None:
        response = await self._get("get_by_doi", f"{self.base_url}/{doi.strip()}")
        papers = parse_collection(self._decode(response))
        if not papers:
            logger.info("bioRxiv paper not found: %s", doi)
            return None
        # The collection lists every version, oldest first.
        return papers[-1]

    def _decode(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ApiError("Failed to parse bioRxiv response", 502, {"error": str(e)}) from e
