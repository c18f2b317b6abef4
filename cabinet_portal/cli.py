"""
Command line entry point for manual sync runs.

Usage:
    cabinet-portal reverse-sync
    cabinet-portal sync-folders [--limit N]
    cabinet-portal sync-dossiers
    cabinet-portal calendar-sync
    cabinet-portal health-check

Exit code is 0 when the run had no errors, 1 otherwise.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from cabinet_portal.config import get_settings
from cabinet_portal.models import SyncMode
from cabinet_portal.schemas.sync import SyncReport
from cabinet_portal.services.registry import ServiceRegistry

logger = logging.getLogger(__name__)


def print_banner(title: str) -> None:
    print("=" * 60)
    print(title)
    print("=" * 60)


def print_details(details: list[str], limit: int) -> None:
    for detail in details[:limit]:
        print(f"  - {detail}")
    if len(details) > limit:
        print(f"  ... and {len(details) - limit} more")


def print_counters(report: SyncReport) -> None:
    print(f"Processed: {report.processed}")
    print(f"Created:   {report.created}")
    print(f"Updated:   {report.updated}")
    print(f"Deleted:   {report.deleted}")
    print(f"Errors:    {report.errors}")


# ============== Commands ==============

async def reverse_sync(db: AsyncSession, services: ServiceRegistry, args) -> int:
    print_banner("OneDrive reverse sync")
    result = await services.reverse_sync.reverse_sync_from_onedrive(db, SyncMode.MANUAL)

    print(result.message)
    print(f"Files imported:     {result.created}")
    print(f"Cases linked:       {result.linked_dossiers}")
    print(f"Errors:             {result.errors}")
    print(f"Unmatched clients:  {len(result.unmatched_clients)}")
    for name in result.unmatched_clients:
        print(f"  - {name}")
    print(f"Unmatched cases:    {len(result.unmatched_dossiers)}")
    for name in result.unmatched_dossiers:
        print(f"  - {name}")

    if result.details:
        print()
        print("Details:")
        print_details(result.details, services.settings.cli_reverse_details_limit)
    return 0 if result.errors == 0 else 1


async def sync_folders(db: AsyncSession, services: ServiceRegistry, args) -> int:
    print_banner("OneDrive folder provisioning")
    report = await services.provisioner.provision_missing(db, SyncMode.MANUAL, limit=args.limit)

    print(report.message)
    for result in report.results:
        status = "OK" if result.success else f"FAILED: {result.error}"
        print(f"  {result.folder_path or result.dossier_id}: {status}")
    return 0 if report.errors == 0 else 1


async def sync_dossiers(db: AsyncSession, services: ServiceRegistry, args) -> int:
    print_banner("OneDrive case document sync")
    report = await services.reverse_sync.sync_all_dossiers(db, SyncMode.MANUAL)

    print(report.message)
    print_counters(report)
    if report.details:
        print()
        print_details(report.details, services.settings.cli_reverse_details_limit)
    return 0 if report.errors == 0 else 1


async def calendar_sync(db: AsyncSession, services: ServiceRegistry, args) -> int:
    limit = services.settings.cli_calendar_details_limit

    print_banner("Google Calendar push")
    push = await services.forward_sync.push_pending_events(db, SyncMode.MANUAL)
    print(push.message)
    print_counters(push)
    print_details(push.details, limit)
    print()

    print_banner("Google Calendar import")
    pull = await services.calendar_import.pull_from_active_calendars(db, SyncMode.MANUAL)
    print(pull.message)
    print_counters(pull)
    print_details(pull.details, limit)

    return 0 if push.errors + pull.errors == 0 else 1


async def health_check(db: AsyncSession, services: ServiceRegistry, args) -> int:
    print_banner("Integration health check")
    results = await services.health.perform_health_checks(db)

    for service, check in results.items():
        status = "OK" if check.healthy else f"UNAVAILABLE ({check.error})"
        print(f"{service:<16} {status}")
    return 0 if all(c.healthy for c in results.values()) else 1


COMMANDS = {
    "reverse-sync": reverse_sync,
    "sync-folders": sync_folders,
    "sync-dossiers": sync_dossiers,
    "calendar-sync": calendar_sync,
    "health-check": health_check,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cabinet-portal",
        description="Run OneDrive and Google Calendar sync jobs by hand",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override the configured log level (DEBUG, INFO, ...)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("reverse-sync", help="Import the OneDrive client tree")
    folders = subparsers.add_parser("sync-folders", help="Create missing case folders")
    folders.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Provision at most this many cases",
    )
    subparsers.add_parser("sync-dossiers", help="Reconcile documents of every linked case")
    subparsers.add_parser("calendar-sync", help="Push pending events, then import remote ones")
    subparsers.add_parser("health-check", help="Probe every integration")
    return parser


async def execute(
    args: argparse.Namespace,
    db: AsyncSession,
    services: ServiceRegistry,
) -> int:
    return await COMMANDS[args.command](db, services, args)


async def _run(args: argparse.Namespace) -> int:
    from cabinet_portal.database import close_db, get_db_context, init_db

    await init_db()
    services = ServiceRegistry.build()
    try:
        async with get_db_context() as db:
            return await execute(args, db, services)
    finally:
        await close_db()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, (args.log_level or settings.log_level).upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    return asyncio.run(_run(args))


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
