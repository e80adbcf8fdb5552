"""Paper source adapters and the factory that builds them from configuration."""

from __future__ import annotations

import httpx

from paperdesk.api_clients.arxiv import ArxivClient
from paperdesk.api_clients.base import PaperSourceClient
from paperdesk.api_clients.biorxiv import BiorxivClient
from paperdesk.config import Config
from paperdesk.errors import ConfigurationError
from paperdesk.models import PaperSource

ALL_SOURCES: tuple[PaperSource, ...] = (PaperSource.ARXIV, PaperSource.BIORXIV)


def _build_arxiv(config: Config, http_client: httpx.AsyncClient | None) -> PaperSourceClient:
    return ArxivClient.from_config(config.arxiv, http_client=http_client)


def _build_biorxiv(config: Config, http_client: httpx.AsyncClient | None) -> PaperSourceClient:
    return BiorxivClient.from_config(config.biorxiv, http_client=http_client)


_SOURCE_DISPATCH = {
    PaperSource.ARXIV: _build_arxiv,
    PaperSource.BIORXIV: _build_biorxiv,
}


def create_client(
    source: PaperSource | str,
    config: Config,
    http_client: httpx.AsyncClient | None = None,
) -> PaperSourceClient:
    """Return the adapter for *source*; unknown tags raise :class:`ConfigurationError`."""
    try:
        tag = PaperSource(source)
    except ValueError:
        tag = None
    builder = _SOURCE_DISPATCH.get(tag) if tag is not None else None
    if builder is None:
        raise ConfigurationError(
            f"Unsupported paper source: {source}",
            {"source": str(source), "supported": [s.value for s in ALL_SOURCES]},
        )
    return builder(config, http_client)


def create_clients(
    config: Config,
    sources: tuple[PaperSource, ...] = ALL_SOURCES,
    http_client: httpx.AsyncClient | None = None,
) -> dict[PaperSource, PaperSourceClient]:
    return {source: create_client(source, config, http_client) for source in sources}


__all__ = [
    "ALL_SOURCES",
    "ArxivClient",
    "BiorxivClient",
    "PaperSourceClient",
    "create_client",
    "create_clients",
]
