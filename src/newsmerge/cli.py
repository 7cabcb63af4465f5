"""CLI for newsmerge.

Commands:
    init-db                  - Create tables and the corpus index
    reset-db                 - Drop everything and recreate
    ingest <path>            - Load drafts as UNRESOLVED items
    resolve                  - Resolve UNRESOLVED items (--date / --all, --dry-run)
    rebuild-index            - Drop and repopulate the corpus index
    show-item <id|slug>      - Show an item, its sources and updates
    list-items               - List items by state / date
    updates                  - Canonical items that received updates
    view-resolutions         - Audit trail of resolution decisions
    calibrate <fixture>      - Check thresholds against labelled pairs
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Annotated
from uuid import UUID

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from sqlalchemy import text

from newsmerge.config import settings
from newsmerge.db import async_session_factory, engine, init_db
from newsmerge.models import Base, Classification, ContentItem, Resolution
from newsmerge.resolution.calibration import load_calibration_fixture, run_calibration
from newsmerge.resolution.corpus_index import CORPUS_TABLE, CorpusIndex
from newsmerge.resolution.engine import RunStats, build_resolution_engine
from newsmerge.resolution.errors import CorpusIndexError, ResolutionWriteError
from newsmerge.resolution.thresholds import Thresholds
from newsmerge.services import queries
from newsmerge.services.ingest import ingest_drafts, load_drafts

app = typer.Typer(
    name="newsmerge",
    help="newsmerge: resolve incoming news items into canonical stories, duplicates and updates",
    no_args_is_help=True,
)
console = Console()

RESOLUTION_STYLES = {
    Resolution.UNRESOLVED: "yellow",
    Resolution.NEW: "green",
    Resolution.DUPLICATE_AUTO: "red",
    Resolution.DUPLICATE_SEMANTIC: "magenta",
    Resolution.MERGED_UPDATE: "cyan",
}


def run_async(coro):
    """Run an async coroutine in sync context."""
    return asyncio.run(coro)


def _styled(resolution: Resolution) -> str:
    style = RESOLUTION_STYLES.get(resolution, "white")
    return f"[{style}]{resolution.value}[/{style}]"


def _parse_date(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Error:[/red] Invalid date (expected YYYY-MM-DD): {value}")
        raise typer.Exit(1) from None


def _fmt_score(score: float | None) -> str:
    return f"{score:.2f}" if score is not None else "N/A"


def _fmt_time(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


@app.callback()
def configure(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log at DEBUG level")
    ] = False,
):
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@app.command("init-db")
def init_db_command():
    """Initialize the database schema (creates tables if they don't exist)."""
    async def _init():
        await init_db()
        console.print("[green]Database initialized.[/green]")

    run_async(_init())


@app.command("reset-db")
def reset_db(
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Skip confirmation prompt")
    ] = False,
):
    """Drop all tables and the corpus index, then recreate them.

    WARNING: This destroys all data!
    """
    if not force:
        confirm = typer.confirm("This will DELETE ALL DATA. Are you sure?", default=False)
        if not confirm:
            console.print("[yellow]Aborted.[/yellow]")
            raise typer.Exit(0)

    async def _reset():
        async with engine.begin() as conn:
            await conn.execute(text(f"DROP TABLE IF EXISTS {CORPUS_TABLE}"))
            await conn.run_sync(Base.metadata.drop_all)
        await init_db()
        console.print("[green]Database reset.[/green]")

    run_async(_reset())


@app.command()
def ingest(
    path: Annotated[Path, typer.Argument(help="JSON file of item drafts")],
):
    """Load drafts as UNRESOLVED items."""
    async def _ingest():
        if not path.is_file():
            console.print(f"[red]Error:[/red] File does not exist: {path}")
            raise typer.Exit(1)

        drafts = load_drafts(path)
        await init_db()
        async with async_session_factory() as session, session.begin():
            result = await ingest_drafts(session, drafts)

        console.print(
            f"[bold]Ingested:[/bold] {len(result.created)} item(s), "
            f"{result.skipped_existing} already present, "
            f"{result.duplicate_sources_dropped} duplicate source(s) dropped"
        )

    run_async(_ingest())


def _print_run_stats(stats: RunStats) -> None:
    title = "Resolution Run (dry run)" if stats.dry_run else "Resolution Run"
    lines = [
        f"[bold]Processed:[/bold] {stats.processed}",
        f"  {_styled(Resolution.NEW)}: {stats.new}",
        f"  {_styled(Resolution.DUPLICATE_AUTO)}: {stats.duplicate_auto}",
        f"  {_styled(Resolution.DUPLICATE_SEMANTIC)}: {stats.duplicate_semantic}",
        f"  {_styled(Resolution.MERGED_UPDATE)}: {stats.merged_update}",
        "",
        f"[bold]Resolver calls:[/bold] {stats.resolver_calls}",
        f"[bold]Resolver failures:[/bold] {stats.resolver_failures}",
        f"[bold]Degraded updates:[/bold] {stats.degraded_updates}",
    ]
    if stats.skipped:
        lines.append(f"[bold]Skipped (already resolved):[/bold] {stats.skipped}")
    console.print(Panel("\n".join(lines), title=title))


@app.command()
def resolve(
    on_date: Annotated[
        str | None, typer.Option("--date", help="Resolve items ingested on YYYY-MM-DD")
    ] = None,
    all_items: Annotated[
        bool, typer.Option("--all", help="Resolve every UNRESOLVED item")
    ] = False,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Decide but write nothing")
    ] = False,
    lookback_days: Annotated[
        int | None, typer.Option(help="Override the lookback window in days")
    ] = None,
    limit: Annotated[int | None, typer.Option(help="Maximum items to process")] = None,
):
    """Resolve UNRESOLVED items into NEW, duplicates or updates."""
    if on_date is None and not all_items:
        console.print("[red]Error:[/red] Pass --date YYYY-MM-DD or --all")
        raise typer.Exit(1)
    if on_date is not None and all_items:
        console.print("[red]Error:[/red] --date and --all are mutually exclusive")
        raise typer.Exit(1)
    selected = _parse_date(on_date)

    async def _publishable_set_shrunk(stats: RunStats) -> None:
        scope = stats.on_date.isoformat() if stats.on_date else "all dates"
        console.print(
            f"[yellow]{stats.folded} item(s) folded ({scope}); "
            "downstream summaries for this batch need regenerating.[/yellow]"
        )

    async def _resolve():
        await init_db()
        resolution_engine = build_resolution_engine(
            async_session_factory,
            lookback_days=lookback_days,
            on_publishable_set_shrunk=_publishable_set_shrunk,
        )
        try:
            stats = await resolution_engine.run(selected, dry_run=dry_run, limit=limit)
        except CorpusIndexError as e:
            console.print(f"[red]Corpus index error:[/red] {e}")
            console.print("Run [cyan]newsmerge rebuild-index[/cyan] and retry.")
            raise typer.Exit(2) from None
        except ResolutionWriteError as e:
            console.print(f"[red]Write failed:[/red] {e}")
            console.print("The item was left UNRESOLVED; rerun to retry.")
            raise typer.Exit(2) from None

        if dry_run and stats.outcomes:
            table = Table(title="Decisions (not written)")
            table.add_column("Item", style="cyan")
            table.add_column("Resolution")
            table.add_column("Score", justify="right")
            table.add_column("Method")
            table.add_column("Reasoning")
            for outcome in stats.outcomes:
                table.add_row(
                    outcome.slug,
                    _styled(outcome.resolution),
                    _fmt_score(outcome.similarity_score),
                    outcome.method.value,
                    (outcome.reasoning or "")[:80],
                )
            console.print(table)

        _print_run_stats(stats)

    run_async(_resolve())


@app.command("rebuild-index")
def rebuild_index():
    """Drop the corpus index and repopulate it from NEW items."""
    async def _rebuild():
        await init_db()
        index = CorpusIndex()
        async with async_session_factory() as session, session.begin():
            count = await index.rebuild(session)
        console.print(f"[green]Corpus index rebuilt with {count} canonical item(s).[/green]")

    run_async(_rebuild())


async def _find_item(session, ref: str) -> ContentItem | None:
    try:
        return await queries.get_item(session, UUID(ref))
    except ValueError:
        return await queries.get_item_by_slug(session, ref)


@app.command("show-item")
def show_item(
    ref: Annotated[str, typer.Argument(help="Item UUID or slug")],
):
    """Show an item with its sources, updates and folded items."""
    async def _show():
        await init_db()
        async with async_session_factory() as session:
            item = await _find_item(session, ref)
            if item is None:
                console.print(f"[red]Error:[/red] Item not found: {ref}")
                raise typer.Exit(1)

            panel_content = [
                f"[bold]ID:[/bold] {item.id}",
                f"[bold]Slug:[/bold] {item.slug}",
                f"[bold]Headline:[/bold] {item.headline}",
                f"[bold]Resolution:[/bold] {_styled(item.resolution)}",
                f"[bold]Score:[/bold] {_fmt_score(item.similarity_score)}",
                f"[bold]Ingested:[/bold] {_fmt_time(item.ingested_at)}",
                f"[bold]Updated:[/bold] {_fmt_time(item.updated_at)}",
            ]
            if item.canonical_id and item.canonical_id != item.id:
                panel_content.append(f"[bold]Canonical:[/bold] {item.canonical_id}")
            if item.skip_reasoning:
                panel_content.append(f"[bold]Reasoning:[/bold] {item.skip_reasoning}")
            panel_content.append(f"\n{item.summary}")
            console.print(Panel("\n".join(panel_content), title="Item Details"))

            if item.sources:
                table = Table(title="Sources")
                table.add_column("#", justify="right")
                table.add_column("Title")
                table.add_column("Publisher")
                table.add_column("URL", style="dim")
                for source in item.sources:
                    table.add_row(str(source.position + 1), source.title, source.publisher, source.url)
                console.print(table)

            if item.updates:
                table = Table(title="Updates")
                table.add_column("#", justify="right")
                table.add_column("When")
                table.add_column("Severity")
                table.add_column("Summary")
                for entry in item.updates:
                    table.add_row(
                        str(entry.position + 1),
                        _fmt_time(entry.timestamp),
                        entry.severity_change.value,
                        entry.summary,
                    )
                console.print(table)

            if item.is_canonical:
                folded = await queries.list_folded_items(session, item.id)
                if folded:
                    table = Table(title="Folded Items")
                    table.add_column("Slug", style="cyan")
                    table.add_column("Resolution")
                    table.add_column("Score", justify="right")
                    for other in folded:
                        table.add_row(
                            other.slug, _styled(other.resolution), _fmt_score(other.similarity_score)
                        )
                    console.print(table)

    run_async(_show())


@app.command("list-items")
def list_items(
    resolution: Annotated[
        str | None,
        typer.Option(help="Filter by resolution (UNRESOLVED, NEW, DUPLICATE_AUTO, ...)"),
    ] = None,
    on_date: Annotated[
        str | None, typer.Option("--date", help="Only items ingested on YYYY-MM-DD")
    ] = None,
    limit: Annotated[int, typer.Option(help="Maximum number of items to show")] = 50,
):
    """List items in ingestion order."""
    resolution_filter = None
    if resolution:
        try:
            resolution_filter = Resolution(resolution.upper())
        except ValueError:
            valid = ", ".join(r.value for r in Resolution)
            console.print(f"[red]Error:[/red] Invalid resolution. Use: {valid}")
            raise typer.Exit(1) from None
    selected = _parse_date(on_date)

    async def _list():
        await init_db()
        async with async_session_factory() as session:
            items = await queries.list_items(
                session, resolution=resolution_filter, on_date=selected, limit=limit
            )
            if not items:
                console.print("[yellow]No items found.[/yellow]")
                return

            table = Table(title="Items")
            table.add_column("Ingested")
            table.add_column("Slug", style="cyan")
            table.add_column("Resolution")
            table.add_column("Score", justify="right")
            table.add_column("Updates", justify="right")
            for item in items:
                table.add_row(
                    _fmt_time(item.ingested_at),
                    item.slug,
                    _styled(item.resolution),
                    _fmt_score(item.similarity_score),
                    str(item.update_count),
                )
            console.print(table)

    run_async(_list())


@app.command()
def updates(
    limit: Annotated[int, typer.Option(help="Maximum number of items to show")] = 20,
):
    """Show canonical items that have received updates."""
    async def _updates():
        await init_db()
        async with async_session_factory() as session:
            items = await queries.list_recently_updated(session, limit=limit)
            if not items:
                console.print("[yellow]No updated items.[/yellow]")
                return

            table = Table(title="Recently Updated")
            table.add_column("Slug", style="cyan")
            table.add_column("Updates", justify="right")
            table.add_column("Last Update")
            table.add_column("Latest")
            for item in items:
                table.add_row(
                    item.slug,
                    str(item.update_count),
                    _fmt_time(item.updated_at),
                    item.updates[-1].summary if item.updates else "",
                )
            console.print(table)

    run_async(_updates())


@app.command("view-resolutions")
def view_resolutions(
    on_date: Annotated[
        str | None, typer.Option("--date", help="Only items ingested on YYYY-MM-DD")
    ] = None,
    stats_only: Annotated[
        bool, typer.Option("--stats", help="Show counts only")
    ] = False,
    limit: Annotated[int, typer.Option(help="Maximum number of records to show")] = 50,
):
    """Show resolution decisions and their reasoning."""
    selected = _parse_date(on_date)

    async def _view():
        await init_db()
        async with async_session_factory() as session:
            counts = await queries.resolution_counts(session, on_date=selected)
            methods = await queries.method_counts(session)

            lines = [f"  {_styled(r)}: {n}" for r, n in counts.items()]
            lines.append("")
            lines.extend(f"  {m.value}: {n}" for m, n in methods.items())
            console.print(Panel("\n".join(lines), title="Resolution Statistics"))

            if stats_only:
                return

            records = await queries.list_resolution_records(session, on_date=selected, limit=limit)
            if not records:
                console.print("[yellow]No resolutions recorded.[/yellow]")
                return

            table = Table(title="Resolutions")
            table.add_column("Item", style="cyan")
            table.add_column("Resolution")
            table.add_column("Score", justify="right")
            table.add_column("Method")
            table.add_column("Flags")
            table.add_column("Thresholds")
            table.add_column("Reasoning")
            for record, item in records:
                table.add_row(
                    item.slug,
                    _styled(record.resolution),
                    _fmt_score(record.similarity_score),
                    record.method.value,
                    ", ".join(record.flags or []),
                    record.threshold_version,
                    (record.reasoning or "")[:80],
                )
            console.print(table)

    run_async(_view())


@app.command()
def calibrate(
    fixture_path: Annotated[Path, typer.Argument(help="Calibration fixture JSON")],
    threshold_new: Annotated[
        float | None, typer.Option(help="Override the NEW threshold")
    ] = None,
    threshold_duplicate: Annotated[
        float | None, typer.Option(help="Override the DUPLICATE threshold")
    ] = None,
):
    """Score labelled pairs and report how the thresholds classify them."""
    if not fixture_path.is_file():
        console.print(f"[red]Error:[/red] File does not exist: {fixture_path}")
        raise typer.Exit(1)

    try:
        thresholds = Thresholds(
            new=threshold_new if threshold_new is not None else settings.threshold_new,
            duplicate=(
                threshold_duplicate
                if threshold_duplicate is not None
                else settings.threshold_duplicate
            ),
            version=(
                "adhoc"
                if threshold_new is not None or threshold_duplicate is not None
                else settings.threshold_version
            ),
        )
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    async def _calibrate():
        fixture = load_calibration_fixture(fixture_path)
        report = await run_calibration(fixture, thresholds=thresholds)

        table = Table(title=f"Calibration ({thresholds.version}: new={thresholds.new}, dup={thresholds.duplicate})")
        table.add_column("Pair", style="cyan")
        table.add_column("Score", justify="right")
        table.add_column("Expected")
        table.add_column("Actual")
        table.add_column("Top match")
        for r in report.results:
            ok = "[green]" if r.passed else "[red]"
            table.add_row(
                r.pair_id,
                _fmt_score(r.score),
                r.expected.value,
                f"{ok}{r.actual.value}[/]",
                "yes" if r.top_is_pair else "no",
            )
        console.print(table)

        for label in Classification:
            bounds = report.score_range(label)
            if bounds:
                console.print(f"  {label.value}: {bounds[0]:.2f} .. {bounds[1]:.2f}")
        console.print(
            f"\n[bold]{report.passed}/{len(report.results)}[/bold] pairs classified as expected "
            f"({report.accuracy:.0%})"
        )
        if report.failed:
            raise typer.Exit(1)

    run_async(_calibrate())


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
