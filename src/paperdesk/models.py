"""Data models for PaperDesk: the canonical paper schema and persisted document."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from paperdesk.utils.dates import parse_iso_datetime
from paperdesk.utils.identifiers import normalize_doi

DOCUMENT_VERSION = "1.0.0"


class PaperSource(StrEnum):
    ARXIV = "arxiv"
    BIORXIV = "biorxiv"


class _CamelModel(BaseModel):
    """Persisted with camelCase keys, accepts snake_case names too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Author(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str
    affiliation: str | None = None


class Paper(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    title: str
    authors: list[Author] = Field(min_length=1)
    abstract: str = ""
    published_date: str
    updated_date: str | None = None
    categories: list[str] = Field(default_factory=list)
    pdf_url: str
    source: PaperSource
    doi: str | None = None
    comments: str | None = None
    journal_ref: str | None = None
    local_path: str | None = None

    @field_validator("id", "title", "pdf_url")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @property
    def identity(self) -> str:
        """Deduplication key: normalized DOI when present, else the source id."""
        return normalize_doi(self.doi) or self.id

    @property
    def display_date(self) -> str:
        return self.updated_date or self.published_date

    @property
    def display_datetime(self) -> datetime:
        return parse_iso_datetime(self.display_date)

    @property
    def first_author(self) -> Author:
        return self.authors[0]

    @property
    def is_downloaded(self) -> bool:
        return bool(self.local_path)

    def author_names(self) -> str:
        return ", ".join(a.name for a in self.authors)

    def with_local_path(self, path: str) -> Paper:
        """Return a copy of this paper pointing at a downloaded file."""
        return self.model_copy(update={"local_path": path})

    def to_paper(self) -> Paper:
        """Strip any list-specific fields (e.g. ``opened_at``) down to a plain Paper."""
        if type(self) is Paper:
            return self
        return Paper.model_validate(self.model_dump(include=set(Paper.model_fields)))


class OpenPaper(Paper):
    """A paper in the open-tabs list, stamped with when it was (re)opened."""

    opened_at: int = 0

    @classmethod
    def from_paper(cls, paper: Paper, opened_at: int) -> OpenPaper:
        data = paper.model_dump(include=set(Paper.model_fields))
        return cls(**data, opened_at=opened_at)


class SearchCriteria(_CamelModel):
    query: str | None = None
    author: str | None = None
    title: str | None = None
    categories: list[str] = Field(default_factory=list)
    start_date: str | None = None
    end_date: str | None = None
    limit: int | None = Field(default=None, ge=0)
    offset: int | None = Field(default=None, ge=0)

    def is_empty(self) -> bool:
        return not any(
            (self.query, self.author, self.title, self.categories, self.start_date, self.end_date)
        )

    def matches(self, paper: Paper) -> bool:
        """Case-insensitive substring filters; every supplied criterion must match.

        Dates are not checked here: sources apply them server-side.
        """
        if self.query:
            q = self.query.lower()
            if q not in paper.title.lower() and q not in paper.abstract.lower():
                return False
        if self.author:
            a = self.author.lower()
            if not any(a in author.name.lower() for author in paper.authors):
                return False
        if self.title and self.title.lower() not in paper.title.lower():
            return False
        if self.categories:
            wanted = {c.lower() for c in self.categories}
            if not any(c.lower() in wanted for c in paper.categories):
                return False
        return True

    def page(self, papers: list[Paper], default_limit: int | None = None) -> list[Paper]:
        """Apply ``offset`` then ``limit`` (falling back to *default_limit*)."""
        start = self.offset or 0
        limit = self.limit or default_limit
        return papers[start:start + limit] if limit else papers[start:]


class PdfViewState(_CamelModel):
    scale: float = 1.5
    current_page: int = Field(default=1, ge=1)
    scroll_position: float = 0.0
    last_viewed: int | None = None


class SearchHistoryEntry(_CamelModel):
    query: str = ""
    source: PaperSource | None = None
    author: str | None = None
    title: str | None = None
    categories: list[str] = Field(default_factory=list)
    start_date: str | None = None
    end_date: str | None = None
    result_count: int | None = None
    timestamp: int = 0

    @classmethod
    def from_criteria(
        cls,
        criteria: SearchCriteria,
        *,
        source: PaperSource | None = None,
        result_count: int | None = None,
    ) -> SearchHistoryEntry:
        return cls(
            query=criteria.query or "",
            source=source,
            author=criteria.author,
            title=criteria.title,
            categories=list(criteria.categories),
            start_date=criteria.start_date,
            end_date=criteria.end_date,
            result_count=result_count,
        )


class AppDataDocument(_CamelModel):
    """The single persisted root object owned by the paper store."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    version: str = DOCUMENT_VERSION
    starred_papers: list[Paper] = Field(default_factory=list)
    open_papers: list[OpenPaper] = Field(default_factory=list)
    search_history: list[SearchHistoryEntry] = Field(default_factory=list)
    pdf_view_state: dict[str, PdfViewState] = Field(default_factory=dict)
    paper_metadata: dict[str, Paper] = Field(default_factory=dict)
    last_updated: int = 0
