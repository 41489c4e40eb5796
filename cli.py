#!/usr/bin/env python
"""Command line entry point: ``backup``, ``restore``, ``ls`` and ``schedule``.

Usage::

    mongo-snapshot backup --path ~/backups --db shop --filter status:eq:'"paid"'
    mongo-snapshot restore ~/backups/shop-240105-031500
    mongo-snapshot ls --limit 5
    mongo-snapshot schedule

Connection settings come from ``MONGO_*`` variables, backup settings from
``BACKUP_*`` variables (see :mod:`settings`); flags override them.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from contextlib import suppress

import structlog
from rich import box
from rich.console import Console
from rich.table import Table

from backup.errors import (
    BackupError,
    ConfigurationError,
    OperationCancelled,
    UserAbort,
)
from backup.filters import parse_condition
from backup.prompts import ConsoleConfirmer, PasswordAuthenticator
from backup.retention import SnapshotInfo
from backup.service import SnapshotService, resolve_path
from mongo import MongoStore
from observability.logging import configure_logging
from scheduling import APSchedulerEngine, ScheduleError, log_next_invocations, schedule_job_utc
from settings import BackupSettings, Settings, get_settings

logger = structlog.get_logger(__name__)
console = Console()

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_ABORTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mongo-snapshot",
        description="Dump and restore MongoDB collections as per-document BSON files.",
    )
    parser.add_argument("--debug", action="store_true", help="log every written document")
    parser.add_argument("--path", help="backup root (overrides BACKUP_PATH)")
    parser.add_argument("--db", help="database name (overrides MONGO_DATABASE)")
    sub = parser.add_subparsers(dest="command", required=True)

    backup_cmd = sub.add_parser("backup", help="create a new snapshot")
    backup_cmd.add_argument("--retention", type=int, help="snapshots to keep (overrides BACKUP_RETENTION)")
    backup_cmd.add_argument(
        "--filter",
        dest="filters",
        action="append",
        default=[],
        metavar="FIELD:OP:VALUE",
        help="only dump matching documents; repeat to combine with AND",
    )

    restore_cmd = sub.add_parser("restore", help="replace collections with a snapshot")
    restore_cmd.add_argument("source", nargs="?", help="snapshot directory, or 'ls' to list snapshots")
    restore_cmd.add_argument("--force", action="store_true", help="skip the snapshot name check")
    restore_cmd.add_argument("--limit", type=int, help="entries shown by 'restore ls'")

    ls_cmd = sub.add_parser("ls", help="list available snapshots")
    ls_cmd.add_argument("--limit", type=int, help="entries to show (overrides BACKUP_LIST_LIMIT)")

    schedule_cmd = sub.add_parser("schedule", help="run backups on BACKUP_SCHEDULE until interrupted")
    schedule_cmd.add_argument("--retention", type=int, help="snapshots to keep (overrides BACKUP_RETENTION)")
    schedule_cmd.add_argument("--utc-offset", type=float, help="hours added to local time to reach UTC")
    return parser


def _backup_settings(settings: Settings, args: argparse.Namespace) -> BackupSettings:
    overrides: dict[str, object] = {}
    if args.path:
        overrides["path"] = args.path
    if getattr(args, "retention", None) is not None:
        overrides["retention"] = args.retention
    if getattr(args, "utc_offset", None) is not None:
        overrides["utc_offset"] = args.utc_offset
    return settings.backup.model_copy(update=overrides)


def _print_snapshots(snapshots: list[SnapshotInfo], root: str) -> None:
    if not snapshots:
        console.print(f"No snapshots under {root}")
        return
    table = Table(title="Available backups", box=box.SIMPLE)
    table.add_column("Snapshot")
    table.add_column("Created")
    table.add_column("Collections", justify="right")
    table.add_column("Path")
    for info in snapshots:
        created = info.created_at.strftime("%Y-%m-%d %H:%M:%S") if info.created_at else "-"
        table.add_row(info.name, created, str(info.collections), str(info.path))
    console.print(table)


def _install_signal_handlers(cancel: asyncio.Event) -> list[int]:
    loop = asyncio.get_running_loop()
    installed: list[int] = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops.
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signum, _on_signal, signum, cancel)
            installed.append(signum)
    return installed


def _on_signal(signum: int, cancel: asyncio.Event) -> None:
    logger.warning("shutdown_requested", signal=signal.Signals(signum).name)
    cancel.set()


async def _run_schedule(
    service: SnapshotService,
    settings: BackupSettings,
    cancel: asyncio.Event,
) -> int:
    if settings.schedule is None:
        raise ConfigurationError("backup_schedule_missing")

    engine = APSchedulerEngine()

    async def scheduled_backup() -> None:
        try:
            result = await service.backup(cancel=cancel)
            logger.info("scheduled_backup_completed", snapshot=result.snapshot)
        finally:
            log_next_invocations(engine)

    schedule_job_utc(
        settings.job_name,
        settings.schedule,
        settings.utc_offset,
        scheduled_backup,
        engine=engine,
    )
    engine.start()
    log_next_invocations(engine)
    try:
        await cancel.wait()
    finally:
        engine.shutdown()
    return EXIT_OK


async def _dispatch(args: argparse.Namespace, settings: Settings, backup_settings: BackupSettings) -> int:
    store = MongoStore.from_settings(settings.mongo, args.db)
    service = SnapshotService(backup_settings, store)

    if args.command == "ls" or (args.command == "restore" and args.source == "ls"):
        _print_snapshots(service.snapshots(args.limit), backup_settings.path)
        return EXIT_OK
    if args.command == "restore" and not args.source:
        raise ConfigurationError("restore_path_missing")
    if args.command in {"backup", "schedule"}:
        resolve_path(backup_settings.path, error="backup_path_missing")
    if args.command == "schedule" and backup_settings.schedule is None:
        raise ConfigurationError("backup_schedule_missing")
    conditions = [parse_condition(expression) for expression in getattr(args, "filters", [])]

    cancel = asyncio.Event()
    installed = _install_signal_handlers(cancel)
    try:
        await store.connect()
        if args.command == "backup":
            result = await service.backup(conditions, cancel=cancel)
            console.print(
                f"Backup created: {result.path} "
                f"({len(result.documents)} collections, {result.total_documents} documents)"
            )
            return EXIT_OK
        if args.command == "restore":
            result = await service.restore(
                args.source,
                authenticator=PasswordAuthenticator(backup_settings.restore_password_sha256),
                confirmer=ConsoleConfirmer(),
                force=args.force,
                cancel=cancel,
            )
            console.print(
                f"Restore completed: {len(result.documents)} collections, "
                f"{result.total_documents} documents"
            )
            return EXIT_OK
        return await _run_schedule(service, backup_settings, cancel)
    finally:
        console.print("Closing connections and exiting...")
        await store.close()
        loop = asyncio.get_running_loop()
        for signum in installed:
            loop.remove_signal_handler(signum)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = get_settings()
    configure_logging(debug=args.debug or settings.debug)
    backup_settings = _backup_settings(settings, args)

    try:
        return asyncio.run(_dispatch(args, settings, backup_settings))
    except (UserAbort, OperationCancelled) as exc:
        logger.warning("operation_aborted", reason=str(exc))
        return EXIT_ABORTED
    except (ConfigurationError, ScheduleError) as exc:
        logger.error("configuration_error", error=str(exc))
        return EXIT_CONFIG
    except BackupError as exc:
        logger.error("operation_failed", error=str(exc), kind=type(exc).__name__)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
