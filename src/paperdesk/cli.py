"""CLI entry point for PaperDesk."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

import click
from tqdm import tqdm

from paperdesk import __version__
from paperdesk.config import CONFIG_FILENAME, Config
from paperdesk.errors import ConfigurationError, Result
from paperdesk.models import Paper, PaperSource

logger = logging.getLogger("paperdesk")

T = TypeVar("T")

SOURCE_CHOICE = click.Choice([s.value for s in PaperSource])


def _setup_logging(verbose: bool, level: str = "INFO") -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


def _unwrap(result: Result[T]) -> T:
    if not result.ok:
        assert result.error is not None
        raise click.ClickException(result.error.user_message())
    return result.data  # type: ignore[return-value]


def _echo_paper(i: int, paper: Paper) -> None:
    date = paper.display_date[:10]
    marker = " [pdf]" if paper.is_downloaded else ""
    click.echo(f"  {i:3d}. [{paper.source}] {paper.id} ({date}){marker} {paper.title[:70]}")
    click.echo(f"       {paper.author_names()[:90]}")


class _Session:
    """Store, file system and source clients for one command invocation."""

    def __init__(self, config: Config) -> None:
        from paperdesk.api_clients import create_clients
        from paperdesk.store import PaperStore
        from paperdesk.utils.io import LocalFileSystem

        self.config = config
        self.file_system = LocalFileSystem()
        self.store = PaperStore.from_config(config.storage, self.file_system)
        self.clients = create_clients(config)

    async def __aenter__(self) -> _Session:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        for client in self.clients.values():
            await client.aclose()

    async def resolve_paper(self, paper_id: str, source: str | None) -> Paper:
        """Find a paper in the local store, falling back to its source."""
        from paperdesk.utils.identifiers import BIORXIV_DOI_PREFIX

        found = _unwrap(await self.store.find_by_id(paper_id))
        if found is not None:
            return found
        if source is None:
            raise click.ClickException(f"Paper {paper_id} is not in the local store; pass --source to look it up.")

        client = self.clients[PaperSource(source)]
        if source == PaperSource.BIORXIV:
            doi = paper_id if paper_id.startswith("10.") else BIORXIV_DOI_PREFIX + paper_id
            paper = _unwrap(await client.get_by_doi(doi))
        else:
            paper = _unwrap(await client.get_by_id(paper_id))
        if paper is None:
            raise click.ClickException(f"Paper {paper_id} not found on {source}.")
        return paper


@click.group()
@click.version_option(version=__version__, prog_name="paperdesk")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option(
    "-d", "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Data directory (default: the per-user application data directory).",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, data_dir: Path | None) -> None:
    """PaperDesk: search, star and read arXiv and bioRxiv papers."""
    from paperdesk.config import load_config, validate_config

    try:
        config = load_config(data_dir.resolve() if data_dir else None)
        validate_config(config)
    except ConfigurationError as e:
        raise click.ClickException(e.user_message()) from e

    _setup_logging(verbose, config.logging.level)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# ---------- init ----------


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create the data directory and a default paperdesk.toml."""
    from paperdesk.config import generate_default_toml

    config: Config = ctx.obj["config"]
    data_dir = config.storage.app_data_dir
    config.storage.papers_path.mkdir(parents=True, exist_ok=True)

    toml_path = data_dir / CONFIG_FILENAME
    if toml_path.exists():
        click.echo(f"{CONFIG_FILENAME} already exists - skipping.")
    else:
        toml_path.write_text(generate_default_toml())
        click.echo(f"Created {toml_path}")

    click.echo(f"Data directory ready at {data_dir}")


# ---------- search ----------


@cli.command()
@click.argument("query", required=False)
@click.option("--source", "sources", type=SOURCE_CHOICE, multiple=True, help="Source to search (repeatable; default: all).")
@click.option("--author", default=None, help="Author name filter.")
@click.option("--title", default=None, help="Title filter.")
@click.option("--category", "categories", multiple=True, help="Category filter (repeatable).")
@click.option("--start-date", default=None, help="Earliest date, YYYY-MM-DD.")
@click.option("--end-date", default=None, help="Latest date, YYYY-MM-DD.")
@click.option("--limit", type=click.IntRange(min=1), default=20, help="Maximum number of results.")
@click.option("--save", is_flag=True, help="Cache the results in the local store.")
@click.pass_context
def search(
    ctx: click.Context,
    query: str | None,
    sources: tuple[str, ...],
    author: str | None,
    title: str | None,
    categories: tuple[str, ...],
    start_date: str | None,
    end_date: str | None,
    limit: int,
    save: bool,
) -> None:
    """Search arXiv and bioRxiv."""
    from paperdesk.models import SearchCriteria
    from paperdesk.search import SearchOrchestrator

    criteria = SearchCriteria(
        query=query,
        author=author,
        title=title,
        categories=list(categories),
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    requested = [PaperSource(s) for s in sources] or None

    async def _search():
        async with _Session(ctx.obj["config"]) as session:
            orchestrator = SearchOrchestrator(session.clients, session.store)
            return await orchestrator.execute(
                criteria, requested, save_to_repository=save, record_history=True
            )

    click.echo(f"Searching for: {query or '(any)'}")
    outcome = _unwrap(_run(_search()))

    advisory = outcome.advisory_message()
    if advisory:
        click.echo(advisory, err=True)
    if not outcome.papers:
        click.echo("No papers found.")
        return
    click.echo(f"\n{outcome.total_count} papers from {', '.join(outcome.sources)}:\n")
    for i, paper in enumerate(outcome.papers, 1):
        _echo_paper(i, paper)


# ---------- starred ----------


@cli.command()
@click.argument("paper_id")
@click.option("--source", type=SOURCE_CHOICE, default=None, help="Where to look the paper up if it is not stored.")
@click.pass_context
def star(ctx: click.Context, paper_id: str, source: str | None) -> None:
    """Star a paper."""

    async def _star():
        async with _Session(ctx.obj["config"]) as session:
            paper = await session.resolve_paper(paper_id, source)
            _unwrap(await session.store.star(paper))
            return paper

    paper = _run(_star())
    click.echo(f"Starred {paper.id}: {paper.title}")


@cli.command()
@click.argument("paper_id")
@click.pass_context
def unstar(ctx: click.Context, paper_id: str) -> None:
    """Remove a paper from the starred list."""

    async def _unstar():
        async with _Session(ctx.obj["config"]) as session:
            _unwrap(await session.store.unstar(paper_id))

    _run(_unstar())
    click.echo(f"Unstarred {paper_id}")


@cli.command()
@click.pass_context
def starred(ctx: click.Context) -> None:
    """List starred papers."""

    async def _starred():
        async with _Session(ctx.obj["config"]) as session:
            return _unwrap(await session.store.get_starred())

    papers = _run(_starred())
    if not papers:
        click.echo("No starred papers.")
        return
    for i, paper in enumerate(papers, 1):
        _echo_paper(i, paper)


# ---------- open papers ----------


@cli.command("open")
@click.argument("paper_id")
@click.option("--source", type=SOURCE_CHOICE, default=None, help="Where to look the paper up if it is not stored.")
@click.pass_context
def open_paper(ctx: click.Context, paper_id: str, source: str | None) -> None:
    """Open a paper in a reading tab."""

    async def _open():
        async with _Session(ctx.obj["config"]) as session:
            paper = await session.resolve_paper(paper_id, source)
            _unwrap(await session.store.add_to_open(paper))
            return paper

    paper = _run(_open())
    click.echo(f"Opened {paper.id}: {paper.title}")
    click.echo(f"PDF: {paper.local_path or paper.pdf_url}")


@cli.command()
@click.argument("paper_id", required=False)
@click.option("--all", "close_every", is_flag=True, help="Close every open paper.")
@click.pass_context
def close(ctx: click.Context, paper_id: str | None, close_every: bool) -> None:
    """Close an open paper."""
    if not paper_id and not close_every:
        raise click.UsageError("Give a PAPER_ID or --all.")

    async def _close():
        async with _Session(ctx.obj["config"]) as session:
            if close_every:
                _unwrap(await session.store.close_all())
            else:
                _unwrap(await session.store.remove_from_open(paper_id))

    _run(_close())
    click.echo("Closed all papers." if close_every else f"Closed {paper_id}")


@cli.command()
@click.pass_context
def tabs(ctx: click.Context) -> None:
    """List open papers, most recently opened first."""

    async def _tabs():
        async with _Session(ctx.obj["config"]) as session:
            return _unwrap(await session.store.get_open())

    papers = _run(_tabs())
    if not papers:
        click.echo("No open papers.")
        return
    for i, paper in enumerate(papers, 1):
        _echo_paper(i, paper)


# ---------- history ----------


@cli.command()
@click.option("--clear", "clear_history", is_flag=True, help="Forget all recorded searches.")
@click.pass_context
def history(ctx: click.Context, clear_history: bool) -> None:
    """Show recent searches."""

    async def _history():
        async with _Session(ctx.obj["config"]) as session:
            if clear_history:
                _unwrap(await session.store.clear_search_history())
                return []
            return _unwrap(await session.store.get_search_history())

    entries = _run(_history())
    if clear_history:
        click.echo("Search history cleared.")
        return
    if not entries:
        click.echo("No searches recorded.")
        return
    for i, entry in enumerate(entries, 1):
        source = entry.source or "all"
        count = "?" if entry.result_count is None else entry.result_count
        click.echo(f"  {i:3d}. [{source}] {entry.query or '(any)'} ({count} results)")


@cli.command()
@click.option("--days", type=click.IntRange(min=0), default=30, help="Drop entries older than this many days.")
@click.pass_context
def cleanup(ctx: click.Context, days: int) -> None:
    """Drop old search history and reading positions."""

    async def _cleanup():
        async with _Session(ctx.obj["config"]) as session:
            return _unwrap(await session.store.cleanup(days))

    removed = _run(_cleanup())
    click.echo(f"Removed {removed} stale entries.")


# ---------- download ----------


@cli.command()
@click.argument("paper_id", required=False)
@click.option("--source", type=SOURCE_CHOICE, default=None, help="Where to look the paper up if it is not stored.")
@click.option("--starred", "all_starred", is_flag=True, help="Download every starred paper.")
@click.pass_context
def download(ctx: click.Context, paper_id: str | None, source: str | None, all_starred: bool) -> None:
    """Download paper PDFs into the papers directory."""
    from paperdesk.download import DownloadService, PdfDownloader

    if not paper_id and not all_starred:
        raise click.UsageError("Give a PAPER_ID or --starred.")
    config: Config = ctx.obj["config"]

    async def _download():
        async with _Session(config) as session:
            downloader = PdfDownloader(
                timeout_seconds=config.arxiv.timeout_seconds,
                max_bytes=config.storage.max_download_bytes,
            )
            service = DownloadService(downloader, session.file_system, config.storage.papers_path, session.store)
            try:
                if all_starred:
                    papers = _unwrap(await session.store.get_starred())
                else:
                    papers = [await session.resolve_paper(paper_id, source)]

                done, failed = 0, []
                for paper in tqdm(papers, desc="Downloading", unit="paper", disable=len(papers) < 2):
                    result = await service.download(paper)
                    if result.ok:
                        done += 1
                        if len(papers) == 1:
                            click.echo(f"Saved {result.data.local_path} ({result.data.file_size} bytes)")
                    else:
                        failed.append((paper.id, result.error))
                return done, failed
            finally:
                await downloader.aclose()

    done, failed = _run(_download())
    for pid, error in failed:
        click.echo(f"  {pid}: {error.user_message()}", err=True)
    if all_starred:
        click.echo(f"\nDownload complete: {done} downloaded, {len(failed)} failed")
    elif failed:
        raise click.ClickException("Download failed.")


# ---------- export / import ----------


@cli.command("export")
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def export_cmd(ctx: click.Context, output: Path) -> None:
    """Write the whole store to a JSON file."""

    async def _export():
        async with _Session(ctx.obj["config"]) as session:
            return _unwrap(await session.store.export_data())

    output.write_text(_run(_export()), encoding="utf-8")
    click.echo(f"Exported to {output}")


@cli.command("import")
@click.argument("input_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def import_cmd(ctx: click.Context, input_file: Path) -> None:
    """Replace the store with a previously exported JSON file."""
    text = input_file.read_text(encoding="utf-8")

    async def _import():
        async with _Session(ctx.obj["config"]) as session:
            _unwrap(await session.store.import_data(text))

    _run(_import())
    click.echo(f"Imported {input_file}")
