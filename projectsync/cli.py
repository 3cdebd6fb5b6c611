"""
ProjectSync CLI — setup and maintenance commands.

Commands:
- projectsync init                  — Create tables, blob root and log directories
- projectsync provision PROJECT_ID  — Run folder provisioning for one project inline
- projectsync orphans PROJECT_ID    — Print the orphan blob/record report as JSON
- projectsync events STREAM         — Print recent structured log entries (JSON lines)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from projectsync.engine.config import CONFIG_FILE_NAME, PlatformConfig, load_config
from projectsync.engine.errors import ConfigError, ProjectSyncError

logger = logging.getLogger("projectsync.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="projectsync",
        description="ProjectSync — realtime project data and permissions",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser("init", help="Create tables and storage directories")
    init_parser.add_argument("--config", default=None, help=f"Path to {CONFIG_FILE_NAME}")

    provision_parser = subparsers.add_parser("provision", help="Provision the external folder of a project")
    provision_parser.add_argument("project_id", help="Project id")
    provision_parser.add_argument("--config", default=None, help=f"Path to {CONFIG_FILE_NAME}")

    orphans_parser = subparsers.add_parser("orphans", help="Report orphaned blobs and records")
    orphans_parser.add_argument("project_id", help="Project id")
    orphans_parser.add_argument("--config", default=None, help=f"Path to {CONFIG_FILE_NAME}")

    events_parser = subparsers.add_parser("events", help="Print recent structured log entries")
    events_parser.add_argument("stream", help="Log stream (records, uploads, orphans, provisioning, ...)")
    events_parser.add_argument("--category", default="execution", help="execution or security")
    events_parser.add_argument("--event", default=None, help="Only entries with this event name")
    events_parser.add_argument("--limit", type=int, default=100)
    events_parser.add_argument("--config", default=None, help=f"Path to {CONFIG_FILE_NAME}")

    args = parser.parse_args(argv)

    if args.command == "init":
        return cmd_init(args)
    elif args.command == "provision":
        return cmd_provision(args)
    elif args.command == "orphans":
        return cmd_orphans(args)
    elif args.command == "events":
        return cmd_events(args)
    else:
        parser.print_help()
        return 0


def _load(args: argparse.Namespace) -> Optional[PlatformConfig]:
    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"[ERROR] {e.message}")
        return None
    logging.basicConfig(level=config.logging.level)
    return config


def cmd_init(args: argparse.Namespace) -> int:
    """
    Bootstrap local state:
    1. Load projectsync.yaml (defaults when absent)
    2. Create all tables
    3. Create the blob root and the structured log directories
    """
    config = _load(args)
    if config is None:
        return 1

    from projectsync.engine.runtime import ProjectSyncRuntime

    runtime = ProjectSyncRuntime(config, use_redis=False)
    try:
        runtime.startup()
    except Exception as e:
        print(f"[ERROR] Initialisation failed: {e}")
        return 1
    try:
        print(f"[OK] Tables created ({config.database.url})")
        Path(config.storage.root).mkdir(parents=True, exist_ok=True)
        print(f"[OK] Blob root: {config.storage.root}")
        print(f"[OK] Log directory: {config.logging.directory}")
    finally:
        runtime.shutdown()
    return 0


def cmd_provision(args: argparse.Namespace) -> int:
    config = _load(args)
    if config is None:
        return 1

    from projectsync.provisioning.tasks import run_provisioning

    result = asyncio.run(run_provisioning(args.project_id, config))
    print(json.dumps(result, indent=2))
    return 0 if result["folder_id"] else 1


def cmd_orphans(args: argparse.Namespace) -> int:
    config = _load(args)
    if config is None:
        return 1

    report = asyncio.run(_orphan_report(config, args.project_id))
    if report is None:
        return 1
    print(json.dumps(report, indent=2))
    return 0


def cmd_events(args: argparse.Namespace) -> int:
    config = _load(args)
    if config is None:
        return 1

    from projectsync.engine.logging import LOG_STREAMS, FileLogger

    if args.category not in LOG_STREAMS.get(args.stream, ()):
        print(f"[ERROR] Unknown log stream: {args.stream}/{args.category}")
        return 1

    filters = {"event": args.event} if args.event else None
    entries = FileLogger(log_dir=config.logging.directory).query(
        args.stream, args.category, filters=filters, limit=args.limit,
    )
    for entry in entries:
        print(json.dumps(entry, default=str))
    return 0


async def _orphan_report(config: PlatformConfig, project_id: str) -> Optional[dict]:
    from projectsync.engine.runtime import ProjectSyncRuntime

    with ProjectSyncRuntime(config, use_redis=False) as runtime:
        try:
            report = await runtime.documents.find_orphans(project_id)
        except ProjectSyncError as e:
            print(f"[ERROR] {e.message}")
            return None
    return report.to_dict()


if __name__ == "__main__":
    sys.exit(main())
