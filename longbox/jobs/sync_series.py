"""
Job to sync a run of issues for one series.

Fetches each issue from every configured provider, reconciles the answers
and saves the result. Issues are synced one after another; the per-provider
token buckets keep the run inside published rate limits however long it is.

Usage:
    python -m longbox.jobs.sync_series SERIES_KEY [ISSUE ...] [--through N] [--refresh]

With no issues and no --through, every issue already cataloged for the
series is refreshed.
"""

import argparse
import asyncio
import logging

from longbox.bootstrap import build_http_client, build_sync_components
from longbox.db.database import async_session_factory, init_db
from longbox.db.operations import load_graph, persist_changes
from longbox.models.failure import KnownError
from longbox.services.catalog_sync import CatalogSync

logger = logging.getLogger(__name__)

STATUS_SYNCED = "synced"
STATUS_PARTIAL = "partial"


def issue_range(through: int) -> list[str]:
    """Issue numbers 1..through as strings."""
    return [str(n) for n in range(1, through + 1)]


async def sync_issues(
    catalog_sync: CatalogSync,
    series_key: str,
    issue_numbers: list[str],
    refresh: bool = False,
) -> dict[str, str]:
    """
    Sync issues one by one, continuing past failures.

    Returns:
        Dict mapping issue number to "synced", "partial" or the failure kind
    """
    results: dict[str, str] = {}
    for number in issue_numbers:
        try:
            outcome = await catalog_sync.sync_issue(series_key, number, refresh=refresh)
        except KnownError as e:
            logger.error("Could not sync %s #%s: %s (%s)", series_key, number, e.message, e.detail)
            results[number] = e.kind.value
            continue

        results[number] = STATUS_PARTIAL if outcome.is_partial else STATUS_SYNCED
        logger.info(
            "Synced %s #%s from %s", series_key, number, ", ".join(outcome.providers_succeeded)
        )
    return results


async def run_series_sync(
    series_key: str,
    issue_numbers: list[str] | None = None,
    refresh: bool = False,
) -> dict[str, str]:
    """
    Load the collection, sync the requested issues and save every change.

    Args:
        series_key: Series to sync; must already be registered
        issue_numbers: Issues to sync. If None or empty, re-syncs every
            cataloged issue of the series.
        refresh: Bypass cached provider answers

    Returns:
        Dict mapping issue number to its sync status
    """
    await init_db()
    async with async_session_factory() as session:
        graph = await load_graph(session)

    if not issue_numbers:
        issue_numbers = [issue.number for issue in graph.list_issues(series_key)]
        logger.info("Re-syncing %d cataloged issues of %s", len(issue_numbers), series_key)

    async with build_http_client() as http_client:
        components = build_sync_components(http_client, graph)
        results = await sync_issues(components.catalog_sync, series_key, issue_numbers, refresh)

    async with async_session_factory() as session:
        count = await persist_changes(session, graph)

    logger.info(
        "Series sync complete: %d/%d issues synced, %d changes saved",
        sum(1 for s in results.values() if s in (STATUS_SYNCED, STATUS_PARTIAL)),
        len(results),
        count,
    )
    return results


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync a series' issues from catalog providers.")
    parser.add_argument("series_key", help="Registered series key")
    parser.add_argument("issues", nargs="*", help="Issue numbers to sync")
    parser.add_argument("--through", type=int, help="Sync issues 1 through N")
    parser.add_argument("--refresh", action="store_true", help="Ignore cached provider answers")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for running a series sync."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = parse_args(argv)
    issues = list(args.issues)
    if args.through:
        issues.extend(n for n in issue_range(args.through) if n not in issues)
    asyncio.run(run_series_sync(args.series_key, issues, refresh=args.refresh))


if __name__ == "__main__":
    main()
