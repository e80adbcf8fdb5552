"""Identifier normalization and conversion utilities."""

from __future__ import annotations

import re

BIORXIV_DOI_PREFIX = "10.1101/"

_ARXIV_VERSION_RE = re.compile(r"v\d+$")


def normalize_doi(doi: str | None) -> str | None:
    """Normalize a DOI: strip URL prefixes, lowercase.

    Handles formats like:
      - 10.1101/2024.01.02.123456
      - https://doi.org/10.1101/2024.01.02.123456
      - http://dx.doi.org/10.1101/2024.01.02.123456
    """
    if not doi:
        return None
    doi = doi.strip()
    for prefix in ("https://doi.org/", "http://doi.org/", "https://dx.doi.org/", "http://dx.doi.org/", "doi:"):
        if doi.lower().startswith(prefix):
            doi = doi[len(prefix):]
            break
    return doi.lower().strip() or None


def arxiv_id_from_url(entry_id: str) -> str:
    """Extract a version-less arXiv id from an Atom ``<id>`` URL.

    ``http://arxiv.org/abs/2401.00123v2`` -> ``2401.00123``
    ``http://arxiv.org/abs/hep-th/9901001v1`` -> ``hep-th/9901001``
    """
    entry_id = entry_id.strip()
    marker = "/abs/"
    if marker in entry_id:
        raw = entry_id.split(marker, 1)[1]
    else:
        raw = entry_id.rsplit("/", 1)[-1]
    return _ARXIV_VERSION_RE.sub("", raw)


def biorxiv_id_from_doi(doi: str) -> str:
    """bioRxiv papers are identified by their DOI suffix."""
    doi = doi.strip()
    if doi.startswith(BIORXIV_DOI_PREFIX):
        return doi[len(BIORXIV_DOI_PREFIX):]
    return doi


def sanitize_for_filename(identifier: str, max_length: int = 200) -> str:
    """Convert an identifier (DOI, paper ID) into a safe filename component.

    Path separators and other unsafe characters become ``_``; runs of ``_``
    collapse and leading dots are stripped so the result can never escape
    its directory.
    """
    s = re.sub(r'[<>:"/\\|?*\x00-\x1f\s]', "_", identifier)
    s = re.sub(r"_{2,}", "_", s)
    s = s.strip("._")[:max_length]
    return s or "unknown"
