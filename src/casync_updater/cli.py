"""Command line entry point for the casync updater."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from . import __version__
from .config_loader import load_entries, load_publish_config
from .config_schema import UnifiedConfig
from .core.async_utils import run_sync_limited
from .core.client import ReplicaClient
from .errors import ConfigurationError, InvalidLocalState, ReplicaError
from .lifespan import load_settings, service_lifespan
from .logger import setup_logging
from .sync.models import CycleReport
from .sync.publisher import publish
from .sync.reporter import format_cycle_report, report_to_json
from .sync.scheduler import CycleScheduler

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


def _configure_logging(
    args: argparse.Namespace, mode: str, settings: UnifiedConfig | None = None
) -> None:
    """Set up logging from CLI flags, falling back to the settings file."""
    log_file = args.log_file
    log_format = args.log_format
    level = None
    if settings is not None:
        section = settings.logging
        log_file = log_file or section.file
        log_format = log_format or section.format
        if "level" in section.model_fields_set:
            level = section.level
    setup_logging(
        mode=mode,
        debug=args.debug,
        log_file=log_file,
        log_format=log_format or "text",
        level=level,
    )


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.casync_bin:
        overrides["casync_bin"] = args.casync_bin
    if args.diff_bin:
        overrides["diff_bin"] = args.diff_bin
    if args.debug:
        overrides["debug"] = True
    return overrides


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def serve(args: argparse.Namespace) -> None:
    """Run every entry on its interval until SIGINT/SIGTERM."""
    async with service_lifespan(args.path, _overrides(args)) as ctx:
        _configure_logging(args, "service", ctx["settings"])
        scheduler = CycleScheduler(ctx["cycles"])
        scheduler.install_signal_handlers()
        await scheduler.run()


async def run_once(args: argparse.Namespace) -> list[CycleReport]:
    """Run one cycle plus the startup commands for every entry."""
    async with service_lifespan(args.path, _overrides(args)) as ctx:
        _configure_logging(args, "cli", ctx["settings"])

        async def _one(cycle) -> CycleReport:
            report = await run_sync_limited(cycle.run)
            startup = await run_sync_limited(cycle.run_startup)
            if startup:
                report = report.model_copy(
                    update={"actions": report.actions + startup}
                )
            return report

        return list(await asyncio.gather(*(_one(c) for c in ctx["cycles"])))


def _cmd_once(args: argparse.Namespace) -> int:
    reports = asyncio.run(run_once(args))
    if args.json:
        print(json.dumps([report_to_json(r) for r in reports], indent=2))
    else:
        print("\n\n".join(format_cycle_report(r) for r in reports))
    return 0


def _cmd_check(args: argparse.Namespace) -> int:
    config, settings = load_settings(_overrides(args))
    _configure_logging(args, "cli", settings)
    entries = load_entries(args.path)

    print(f"{len(entries)} entries in {args.path}")
    for entry in entries:
        print(f"\n{entry.display_name}")
        print(f"  interval: {entry.interval} ms")
        print(f"  source:   {entry.src_index} (store {entry.src_store})")
        print(f"  dest:     {entry.dst_path}")
        if entry.has_backup:
            print(
                f"  backup:   {entry.backup_index} "
                f"(store {entry.backup_store})"
            )
        print(
            f"  triggers: {len(entry.triggers)}, "
            f"startup actions: {len(entry.startup)}"
        )
    print(
        f"\ncasync: {config.casync_bin}, "
        f"time resolution: {config.time_resolution}"
    )
    return 0


def _cmd_publish(args: argparse.Namespace) -> int:
    config, settings = load_settings(_overrides(args))
    _configure_logging(args, "cli", settings)
    target = load_publish_config(args.path)
    client = ReplicaClient(config)
    try:
        record = publish(client, target, config)
    except InvalidLocalState as e:
        _stderr_print(f"ERROR: {e}")
        return 1
    except ReplicaError as e:
        _stderr_print(f"ERROR: Unable to create archive: {e}")
        return 1
    if record is None:
        print("Source not changed")
    else:
        print(f"Created archive - checksum: {record.checksum}")
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    asyncio.run(serve(args))
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="casync-updater",
        description="casync updater - keep directories in sync with casync archives",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the updater service for every entry file in a directory
  casync-updater run /etc/casync-updater/entries

  # Run one cycle for every entry and print JSON reports
  casync-updater once /etc/casync-updater/entries --json

  # Validate entry files
  casync-updater check /etc/casync-updater/entries

  # Create or refresh an archive on the server side
  casync-updater publish /etc/casync-updater/publish.json
        """,
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging (overrides LOG_LEVEL)",
    )
    parser.add_argument(
        "--log-file",
        help="Also write log records to this file",
    )
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        help="Log record format (default: text)",
    )
    parser.add_argument(
        "--casync-bin",
        help="Override casync executable (takes precedence over CASYNC_BIN)",
    )
    parser.add_argument(
        "--diff-bin",
        help="Override diff executable (takes precedence over DIFF_BIN)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"casync-updater version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p_run = sub.add_parser("run", help="Run the updater service")
    p_run.add_argument("path", type=Path, help="Entry file or directory")
    p_run.set_defaults(handler=_cmd_run, mode="service")

    p_once = sub.add_parser("once", help="Run a single cycle per entry")
    p_once.add_argument("path", type=Path, help="Entry file or directory")
    p_once.add_argument(
        "--json", action="store_true", help="Print reports as JSON"
    )
    p_once.set_defaults(handler=_cmd_once, mode="cli")

    p_check = sub.add_parser("check", help="Validate entry files")
    p_check.add_argument("path", type=Path, help="Entry file or directory")
    p_check.set_defaults(handler=_cmd_check, mode="cli")

    p_publish = sub.add_parser(
        "publish", help="Create or refresh an archive from a directory"
    )
    p_publish.add_argument(
        "path", type=Path, help="Publisher file ({index, store, source})"
    )
    p_publish.set_defaults(handler=_cmd_publish, mode="cli")

    return parser


def run(argv: list[str] | None = None) -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Early logging so configuration problems are visible
    _configure_logging(args, args.mode)

    try:
        code = args.handler(args)
    except ConfigurationError as e:
        _stderr_print(f"ERROR: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        _stderr_print("\nInterrupted.")
        sys.exit(0)
    sys.exit(code)


if __name__ == "__main__":
    run()
