"""Command-line interface for ji-mirror.

Usage:
    ji-mirror sync                         # Incremental sync of all configured scopes
    ji-mirror sync --full --project PROJ   # Full re-list of one project
    ji-mirror sync --cleanup --space ENG   # Full re-list + drop pages deleted remotely
    ji-mirror search "login timeout"       # Full-text search of the local mirror
    ji-mirror show jira:PROJ-123           # Print one mirrored item
    ji-mirror status                       # Mirror statistics
    ji-mirror assign PROJ-1 PROJ-2 --to me # Assign many issues at once
    ji-mirror fetch PROJ-1 PROJ-2          # Fetch issues into the mirror
    ji-mirror purge --scope PROJ           # Delete a scope from the mirror
"""

import argparse
import asyncio
import sys
from collections.abc import Sequence

import httpx

from .batch import Failure, summarize
from .config import MirrorConfig, SettingsCredentialsProvider, get_config
from .connectors.resources import batch_assign_issues, get_current_account_id
from .errors import MirrorError
from .logging_config import configure_logging
from .models import SourceKind
from .retry import RetrySettings
from .store import ContentMirrorStore
from .sync import SyncMode, SyncOrchestrator, SyncReport
from .transport import TransportClient

EXIT_OK = 0
EXIT_PARTIAL = 2
EXIT_ERROR = 1

MAX_LISTED_FAILURES = 5

_SOURCES = {"jira": SourceKind.JIRA_ISSUE, "confluence": SourceKind.CONFLUENCE_PAGE}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ji-mirror",
        description="Mirror Jira issues and Confluence pages into a local searchable store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Configuration (.env or environment):
  JI_BASE_URL=https://company.atlassian.net
  JI_EMAIL=user@example.com
  JI_API_TOKEN=your_api_token
  JI_JIRA_PROJECTS=PROJ1,PROJ2
  JI_CONFLUENCE_SPACES=ENG,OPS
        """,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Sync remote content into the mirror")
    mode = sync.add_mutually_exclusive_group()
    mode.add_argument("--full", action="store_true", help="Re-list everything")
    mode.add_argument(
        "--cleanup",
        action="store_true",
        help="Re-list everything and delete items no longer present remotely",
    )
    sync.add_argument("--project", action="append", metavar="KEY", help="Jira project (repeatable)")
    sync.add_argument("--space", action="append", metavar="KEY", help="Confluence space (repeatable)")

    search = commands.add_parser("search", help="Full-text search of the mirror")
    search.add_argument("query", help='Search terms, or "id:jira:PROJ-1"')
    search.add_argument("--source", choices=sorted(_SOURCES), help="Limit to one source")
    search.add_argument("--scope", metavar="KEY", help="Limit to one project or space")
    search.add_argument("--limit", type=int, default=20)

    show = commands.add_parser("show", help="Print one mirrored item")
    show.add_argument("item_id", metavar="ID", help="Item id, e.g. jira:PROJ-123")

    commands.add_parser("status", help="Show mirror statistics")

    assign = commands.add_parser("assign", help="Assign issues to a user")
    assign.add_argument("issue_keys", nargs="+", metavar="KEY")
    assign.add_argument(
        "--to",
        required=True,
        metavar="ACCOUNT",
        help='Account id, "me", or "none" to unassign',
    )

    fetch = commands.add_parser("fetch", help="Fetch issues into the mirror")
    fetch.add_argument("issue_keys", nargs="+", metavar="KEY")

    purge = commands.add_parser("purge", help="Delete content from the mirror")
    target = purge.add_mutually_exclusive_group(required=True)
    target.add_argument("--scope", metavar="KEY", help="Project or space key")
    target.add_argument("--older-than", type=int, metavar="DAYS", help="Items not synced for DAYS")
    purge.add_argument("--source", choices=sorted(_SOURCES), help="Limit --scope to one source")

    return parser


def _open_store(config: MirrorConfig) -> ContentMirrorStore:
    return ContentMirrorStore(config.get_db_path(), max_body_bytes=config.max_body_bytes)


def _open_client(config: MirrorConfig, transport: httpx.AsyncBaseTransport | None) -> TransportClient:
    config.require_credentials()
    return TransportClient(
        SettingsCredentialsProvider(),
        transport,
        timeout_seconds=config.request_timeout_seconds,
        retry_settings=RetrySettings.from_config(config),
    )


def print_failures(lines: list[str], total_failed: int) -> None:
    for line in lines:
        print(f"    - {line}")
    if total_failed > len(lines):
        print(f"    ... and {total_failed - len(lines)} more")


def print_report(report: SyncReport) -> None:
    for result in report.results:
        print(f"{result.scope_label}: {result.summary_line()} ({result.duration_seconds:.1f}s)")
        print_failures(
            [f"{f.item_id}: {f.error.tag.value}: {f.error.message}" for f in result.failures[:MAX_LISTED_FAILURES]],
            result.failed,
        )
    for scope, error in report.aborted.items():
        print(f"{scope}: aborted ({error.tag.value}: {error.message})")


async def run_sync(args, config: MirrorConfig, transport=None) -> int:
    scopes = [(SourceKind.JIRA_ISSUE, key) for key in args.project or []]
    scopes += [(SourceKind.CONFLUENCE_PAGE, key) for key in args.space or []]
    mode = SyncMode.CLEANUP if args.cleanup else SyncMode.FULL if args.full else SyncMode.INCREMENTAL

    store = _open_store(config)
    try:
        async with _open_client(config, transport) as client:
            orchestrator = SyncOrchestrator(client, store, config=config)
            report = await orchestrator.sync_all(mode, scopes or None)
    finally:
        store.close()

    if not report.results and not report.aborted:
        print("No projects or spaces configured (JI_JIRA_PROJECTS / JI_CONFLUENCE_SPACES)", file=sys.stderr)
        return EXIT_ERROR
    print_report(report)
    return EXIT_OK if report.ok else EXIT_PARTIAL


async def run_assign(args, config: MirrorConfig, transport=None) -> int:
    async with _open_client(config, transport) as client:
        account_id: str | None = args.to
        if args.to == "me":
            account_id = await get_current_account_id(client)
        elif args.to == "none":
            account_id = None
        results = await batch_assign_issues(
            client, args.issue_keys, account_id, concurrency=config.batch_concurrency
        )

    summary = summarize(results, MAX_LISTED_FAILURES)
    print(f"assign: {summary.summary_line()}")
    print_failures(summary.failure_lines(), summary.failed)
    return EXIT_OK if summary.failed == 0 else EXIT_PARTIAL


async def run_fetch(args, config: MirrorConfig, transport=None) -> int:
    store = _open_store(config)
    try:
        async with _open_client(config, transport) as client:
            orchestrator = SyncOrchestrator(client, store, config=config)
            results = await orchestrator.fetch_issues(args.issue_keys)
    finally:
        store.close()

    for result in results:
        if not isinstance(result, Failure):
            print(f"{result.value.item_id}: {result.value.title}")
    summary = summarize(results, MAX_LISTED_FAILURES)
    print(f"fetch: {summary.summary_line()}")
    print_failures(summary.failure_lines(), summary.failed)
    return EXIT_OK if summary.failed == 0 else EXIT_PARTIAL


def run_search(args, config: MirrorConfig) -> int:
    with _open_store(config) as store:
        hits = store.search(
            args.query,
            source=_SOURCES[args.source] if args.source else None,
            scope_key=args.scope,
            limit=args.limit,
        )
    if not hits:
        print("No results.")
        return EXIT_OK
    for hit in hits:
        print(f"{hit.item_id}  {hit.title}")
        print(f"    {hit.snippet.replace(chr(10), ' ')}")
        print(f"    {hit.url}")
    return EXIT_OK


def run_show(args, config: MirrorConfig) -> int:
    with _open_store(config) as store:
        item = store.get(args.item_id)
    if item is None:
        print(f"Not in mirror: {args.item_id}", file=sys.stderr)
        return EXIT_ERROR
    print(f"{item.item_id}  {item.title}")
    print(f"URL: {item.url}")
    print(f"Updated: {item.updated_at.isoformat() if item.updated_at else 'unknown'}")
    print("")
    print(item.body)
    return EXIT_OK


def run_status(args, config: MirrorConfig) -> int:
    with _open_store(config) as store:
        stats = store.stats()
    print(f"Database: {config.get_db_path()}")
    print(f"Items: {stats.total}")
    for source, count in sorted(stats.by_source.items()):
        print(f"  {source}: {count}")
    for scope, count in sorted(stats.by_scope.items()):
        print(f"  {scope}: {count}")
    print(f"Last sync: {stats.last_synced_at.isoformat() if stats.last_synced_at else 'never'}")
    return EXIT_OK


async def run_purge(args, config: MirrorConfig) -> int:
    with _open_store(config) as store:
        orchestrator = SyncOrchestrator(None, store, config=config)
        if args.older_than is not None:
            deleted = await orchestrator.purge_older_than(args.older_than)
        else:
            source = _SOURCES[args.source] if args.source else None
            deleted = await orchestrator.purge_scope(args.scope, source)
    print(f"purge: {deleted} deleted")
    return EXIT_OK


def main(argv: Sequence[str] | None = None, transport: httpx.AsyncBaseTransport | None = None) -> int:
    """Main CLI entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    try:
        config = get_config()
    except Exception as e:
        print(f"Error: Failed to load configuration: {e}", file=sys.stderr)
        return EXIT_ERROR
    configure_logging(config.log_level, config.log_format)

    try:
        if args.command == "sync":
            return asyncio.run(run_sync(args, config, transport))
        if args.command == "assign":
            return asyncio.run(run_assign(args, config, transport))
        if args.command == "fetch":
            return asyncio.run(run_fetch(args, config, transport))
        if args.command == "purge":
            return asyncio.run(run_purge(args, config))
        handlers = {"search": run_search, "show": run_show, "status": run_status}
        return handlers[args.command](args, config)
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130
    except MirrorError as e:
        print(f"Error: {e.tag.value}: {e.message}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
