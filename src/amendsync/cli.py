"""Command-line utilities for AmendSync.

``manage-versions`` inspects and maintains version history and change
requests in the configured store.
"""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING
from uuid import UUID

from rich.console import Console

if TYPE_CHECKING:
    import argparse

console = Console()

_CREATION_TYPE_LABELS = {
    "manual": "Manual",
    "suggestion_added": "Suggestion",
    "suggestion_accepted": "[green]Accepted[/]",
    "suggestion_declined": "[red]Declined[/]",
}

_STATUS_STYLES = {
    "pending": "[yellow]pending[/]",
    "accepted": "[green]accepted[/]",
    "rejected": "[red]rejected[/]",
}


def _build_version_parser() -> argparse.ArgumentParser:
    """Build argparse parser for manage-versions subcommands."""
    import argparse

    parser = argparse.ArgumentParser(
        prog="manage-versions",
        description="Inspect document versions and change requests.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    history_p = sub.add_parser("history", help="List a document's versions")
    history_p.add_argument("document_id", type=UUID, help="Document UUID")
    history_p.add_argument(
        "--search", default=None, help="Filter by title, number or author"
    )

    rename_p = sub.add_parser("rename", help="Rename a version")
    rename_p.add_argument("version_id", type=UUID, help="Version UUID")
    rename_p.add_argument("title", help="New title")

    cr_p = sub.add_parser("change-requests", help="List change requests with tallies")
    cr_p.add_argument("amendment_id", type=UUID, help="Amendment UUID")

    resume_p = sub.add_parser("resume", help="Finish interrupted promotions")
    resume_p.add_argument("document_id", type=UUID, help="Document UUID")
    resume_p.add_argument("amendment_id", type=UUID, help="Amendment UUID")

    sub.add_parser("upgrade-db", help="Run Alembic migrations to head")

    return parser


async def _cmd_history(
    document_id: UUID,
    *,
    search: str | None = None,
    console: Console | None = None,
) -> None:
    """Print version history as a Rich table."""
    from rich.table import Table

    from amendsync.notify import LoggingNotifier
    from amendsync.store import get_document_store
    from amendsync.versioning import VersionStore

    con = console or globals()["console"]
    versions = VersionStore(get_document_store(), notifier=LoggingNotifier())
    entries = await versions.history(document_id, search)

    if not entries:
        con.print("[yellow]No versions found.[/]")
        return

    table = Table(title=f"Versions of {document_id}")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Title")
    table.add_column("Type")
    table.add_column("Author")
    table.add_column("Created")

    for entry in entries:
        version = entry.version
        table.add_row(
            str(version.version_number),
            version.title,
            _CREATION_TYPE_LABELS.get(version.creation_type, version.creation_type),
            entry.author_name or "-",
            version.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    con.print(table)


async def _cmd_rename(
    version_id: UUID, title: str, *, console: Console | None = None
) -> None:
    """Rename a version."""
    from amendsync.notify import LoggingNotifier
    from amendsync.store import get_document_store
    from amendsync.versioning import VersionStore

    con = console or globals()["console"]
    versions = VersionStore(get_document_store(), notifier=LoggingNotifier())
    if await versions.rename_version(version_id, title):
        con.print(f"[green]Renamed[/] version {version_id} to '{title.strip()}'")
    else:
        con.print(f"[red]Error:[/] could not rename version {version_id}")
        sys.exit(1)


async def _cmd_change_requests(
    amendment_id: UUID, *, console: Console | None = None
) -> None:
    """List an amendment's change requests with vote tallies."""
    from rich.table import Table

    from amendsync.store import get_document_store
    from amendsync.voting import ChangeRequestVoting, tally_votes

    con = console or globals()["console"]
    voting = ChangeRequestVoting(get_document_store())
    change_requests, votes = await voting.load_board(amendment_id)

    if not change_requests:
        con.print("[yellow]No change requests found.[/]")
        return

    table = Table(title=f"Change requests of {amendment_id}")
    table.add_column("Title", style="cyan")
    table.add_column("Status")
    table.add_column("Voting")
    table.add_column("Accept", justify="right")
    table.add_column("Reject", justify="right")
    table.add_column("Abstain", justify="right")

    for change_request in change_requests:
        tally = tally_votes(
            [v for v in votes if v.change_request_id == change_request.id], []
        )
        table.add_row(
            change_request.title,
            _STATUS_STYLES.get(change_request.status, change_request.status),
            "Yes" if change_request.requires_voting else "No",
            str(tally.accept),
            str(tally.reject),
            str(tally.abstain),
        )

    con.print(table)


async def _cmd_resume(
    document_id: UUID, amendment_id: UUID, *, console: Console | None = None
) -> None:
    """Roll forward interrupted promotions on a document."""
    from amendsync.notify import LoggingNotifier
    from amendsync.promotion import SuggestionPromotionPipeline
    from amendsync.store import get_document_store
    from amendsync.versioning import VersionStore

    con = console or globals()["console"]
    store = get_document_store()
    notifier = LoggingNotifier()
    pipeline = SuggestionPromotionPipeline(
        store, VersionStore(store, notifier=notifier), notifier=notifier
    )
    results = await pipeline.resume_pending(document_id, amendment_id)
    if not results:
        con.print("[green]No interrupted promotions.[/]")
        return
    for result in results:
        con.print(f"Resumed promotion: [cyan]{result.outcome}[/]")


async def _check_database(*, console: Console | None = None) -> None:
    """Connect and refuse to run against an unmigrated schema."""
    from amendsync.db.bootstrap import verify_schema
    from amendsync.db.engine import get_engine, init_db

    con = console or globals()["console"]
    await init_db()
    try:
        await verify_schema(get_engine())
    except RuntimeError as e:
        con.print(f"[red]Error:[/] {e}")
        sys.exit(1)


def manage_versions() -> None:
    """Inspect document versions and change requests.

    Usage:
        manage-versions <command> [options]

    Commands:
        history <document_id> [--search Q]    List versions, newest first
        rename <version_id> <title>           Rename a version
        change-requests <amendment_id>        Change requests with tallies
        resume <document_id> <amendment_id>   Finish interrupted promotions
        upgrade-db                            Run Alembic migrations
    """
    from amendsync import _setup_logging
    from amendsync.config import get_settings

    parser = _build_version_parser()
    args = parser.parse_args(sys.argv[1:])

    _setup_logging()
    settings = get_settings()

    if args.command == "upgrade-db":
        from amendsync.db.bootstrap import run_alembic_upgrade

        run_alembic_upgrade()
        console.print("[green]Database schema is at head.[/]")
        return

    if settings.store.backend == "sql" and not settings.database.url:
        console.print("[red]Error:[/] DATABASE__URL not set")
        sys.exit(1)

    async def _run() -> None:
        from amendsync.db.engine import close_db

        try:
            if settings.store.backend == "sql":
                await _check_database()
            match args.command:
                case "history":
                    await _cmd_history(args.document_id, search=args.search)
                case "rename":
                    await _cmd_rename(args.version_id, args.title)
                case "change-requests":
                    await _cmd_change_requests(args.amendment_id)
                case "resume":
                    await _cmd_resume(args.document_id, args.amendment_id)
        finally:
            await close_db()

    asyncio.run(_run())
