"""Deduplication utilities for papers across multiple sources."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from paperdesk.utils.identifiers import normalize_doi

if TYPE_CHECKING:
    from paperdesk.models import Paper

logger = logging.getLogger(__name__)


class DedupIndex:
    """Index of paper identities seen so far.

    A paper's identity is its normalized DOI when it has one, else its
    source-scoped id. DOIs and ids live in separate sets so an id can never
    collide with a DOI string.
    """

    def __init__(self) -> None:
        self._doi_set: set[str] = set()
        self._id_set: set[str] = set()

    def __len__(self) -> int:
        return len(self._doi_set | self._id_set)

    def add(self, paper: Paper) -> None:
        ndoi = normalize_doi(paper.doi)
        if ndoi:
            self._doi_set.add(ndoi)
        else:
            self._id_set.add(paper.id)

    def is_duplicate(self, paper: Paper) -> bool:
        ndoi = normalize_doi(paper.doi)
        if ndoi:
            return ndoi in self._doi_set
        return paper.id in self._id_set


def deduplicate(papers: Iterable[Paper]) -> list[Paper]:
    """Keep the first-seen paper for each identity, preserving order."""
    index = DedupIndex()
    unique: list[Paper] = []
    total = 0
    for paper in papers:
        total += 1
        if index.is_duplicate(paper):
            logger.debug("Duplicate paper filtered: %s", paper.identity)
            continue
        index.add(paper)
        unique.append(paper)
    logger.debug("Deduplication: %d -> %d papers", total, len(unique))
    return unique
