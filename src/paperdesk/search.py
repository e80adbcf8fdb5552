"""Search module: fans a query out to every paper source and merges the results."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from paperdesk.api_clients import ALL_SOURCES, PaperSourceClient
from paperdesk.errors import AppError, ErrorCode, Result, failure, normalize_error, success
from paperdesk.models import Paper, PaperSource, SearchCriteria, SearchHistoryEntry
from paperdesk.store import PaperStore
from paperdesk.utils.dedup import deduplicate

logger = logging.getLogger(__name__)


@dataclass
class SearchOutcome:
    papers: list[Paper] = field(default_factory=list)
    total_count: int = 0
    sources: list[PaperSource] = field(default_factory=list)
    errors: dict[PaperSource, str] = field(default_factory=dict)

    @property
    def partial(self) -> bool:
        return bool(self.errors)

    def advisory_message(self) -> str | None:
        """A short note for the user when some sources could not be searched."""
        if not self.errors:
            return None
        failed = ", ".join(str(s) for s in self.errors)
        return f"Some sources could not be searched ({failed}); showing results from the rest."


class SearchOrchestrator:
    def __init__(
        self,
        clients: Mapping[PaperSource, PaperSourceClient],
        store: PaperStore | None = None,
    ) -> None:
        self.clients = dict(clients)
        self.store = store

    async def execute(
        self,
        criteria: SearchCriteria,
        sources: Sequence[PaperSource] | None = None,
        *,
        save_to_repository: bool = False,
        record_history: bool = False,
    ) -> Result[SearchOutcome]:
        """Search the requested sources concurrently, then dedup, sort and truncate.

        The search succeeds when at least one source answers; failed sources
        are listed in :attr:`SearchOutcome.errors`.
        """
        requested = list(dict.fromkeys(sources)) if sources else list(ALL_SOURCES)
        logger.info("Searching %s for %r", ", ".join(requested), criteria.query or "")

        results = await asyncio.gather(*(self._search_one(source, criteria) for source in requested))

        merged: list[Paper] = []
        succeeded: list[PaperSource] = []
        errors: dict[PaperSource, str] = {}
        for source, result in zip(requested, results):
            if result.ok:
                logger.info("Source %s returned %d results", source, len(result.data))
                succeeded.append(source)
                merged.extend(result.data)
            else:
                logger.warning("Source %s failed: %s", source, result.error.message)
                errors[source] = result.error.message

        if not succeeded:
            messages = [f"{source}: {message}" for source, message in errors.items()]
            logger.error("All sources failed: %s", "; ".join(messages))
            return failure(
                AppError(
                    "Search failed for all sources",
                    ErrorCode.SEARCH_FAILED,
                    502,
                    {"errors": messages},
                )
            )

        papers = deduplicate(merged)
        # sorted() is stable, so ties keep the merge order.
        papers = sorted(papers, key=lambda p: p.display_datetime, reverse=True)
        if criteria.limit:
            papers = papers[: criteria.limit]

        outcome = SearchOutcome(papers=papers, total_count=len(papers), sources=succeeded, errors=errors)

        if save_to_repository and self.store is not None and papers:
            saved = await self.store.save_many(papers)
            if not saved.ok:
                logger.warning("Could not cache search results: %s", saved.error.message)

        if record_history and self.store is not None:
            entry = SearchHistoryEntry.from_criteria(
                criteria,
                source=requested[0] if len(requested) == 1 else None,
                result_count=len(papers),
            )
            recorded = await self.store.add_to_search_history(entry)
            if not recorded.ok:
                logger.warning("Could not record search history: %s", recorded.error.message)

        logger.info(
            "Search complete: %d papers from %d/%d sources",
            outcome.total_count, len(succeeded), len(requested),
        )
        return success(outcome)

    async def _search_one(self, source: PaperSource, criteria: SearchCriteria) -> Result[list[Paper]]:
        client = self.clients.get(source)
        if client is None:
            return failure(AppError(f"No client configured for source {source}", ErrorCode.CONFIG_ERROR, 500))
        try:
            return await client.search(criteria)
        except Exception as e:
            logger.exception("Search failed for source %s", source)
            return failure(normalize_error(e))

    async def aclose(self) -> None:
        for client in self.clients.values():
            await client.aclose()
