#!/usr/bin/env python3
"""
snapsync command line

Usage:
    snapsync init-db [--with-source]
    snapsync run
    snapsync poll
    snapsync backfill
    snapsync reconcile [--detailed]
    snapsync status [--id 42]
    snapsync logs [--limit 20] [--status failed]
    snapsync retry-failed
    snapsync alerts --output alert_rules.yml
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from snapsync.config import SyncSettings
from snapsync.monitoring.alerts import AlertRuleGenerator
from snapsync.utils.logging import configure_logging

logger = logging.getLogger("snapsync.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snapsync",
        description="Polling source-to-snapshot sync pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    init_parser = subparsers.add_parser("init-db", help="Create snapshot, audit and queue tables")
    init_parser.add_argument("--with-source", action="store_true", help="Also create a demo source table")

    subparsers.add_parser("run", help="Run the poller, the consumer and the HTTP API")
    subparsers.add_parser("poll", help="Run one change detection cycle")
    subparsers.add_parser("backfill", help="Queue every source row for sync")

    reconcile_parser = subparsers.add_parser("reconcile", help="Report out-of-sync records")
    reconcile_parser.add_argument("--detailed", action="store_true", help="Include differing field names")

    status_parser = subparsers.add_parser("status", help="Snapshot status summary or one record")
    status_parser.add_argument("--id", type=int, dest="record_id", help="Source record id")

    logs_parser = subparsers.add_parser("logs", help="Recent audit entries")
    logs_parser.add_argument("--limit", type=int, default=100, help="Number of entries (1-1000)")
    logs_parser.add_argument("--status", choices=["success", "failed", "retry"], help="Filter by status")

    subparsers.add_parser("retry-failed", help="Re-queue snapshots in status failed")

    alerts_parser = subparsers.add_parser("alerts", help="Export Prometheus alert rules")
    alerts_parser.add_argument("--output", default="alert_rules.yml", help="Output YAML file")

    return parser


async def _run_command(runtime, args) -> Optional[object]:
    service = runtime.service

    if args.command == "run":
        await runtime.run()
        return None

    try:
        if args.command == "poll":
            return await service.poll()
        if args.command == "backfill":
            return await service.backfill()
        if args.command == "reconcile":
            return await service.reconcile(detailed=args.detailed)
        if args.command == "status":
            result = await service.status(args.record_id)
            return {"error": "Not found"} if result is None else result
        if args.command == "logs":
            return await service.logs(limit=args.limit, status=args.status)
        if args.command == "retry-failed":
            return await service.retry_failed()
        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await runtime.shutdown()


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = SyncSettings.from_env()
        configure_logging("DEBUG" if args.verbose else settings.log_level, settings.json_logging)

        if args.command == "alerts":
            generator = AlertRuleGenerator(poll_interval_seconds=settings.poll_interval_seconds)
            generator.export_to_yaml(args.output)
            print(json.dumps(generator.get_alert_summary(), indent=2))
            return 0

        from snapsync.runtime import SyncRuntime
        runtime = SyncRuntime.from_settings(settings)

        if args.command == "init-db":
            try:
                runtime.init_schema(with_source=args.with_source)
            finally:
                asyncio.run(runtime.shutdown())
            print(json.dumps({"message": "Schema ready"}, indent=2))
            return 0

        if settings.queue_backend == "memory" and args.command in ("poll", "backfill", "retry-failed"):
            logger.warning("The memory queue does not outlive this command; queued intents will be lost")

        result = asyncio.run(_run_command(runtime, args))
        if result is not None:
            print(json.dumps(result, indent=2, default=str))
        if isinstance(result, dict) and result.get("error"):
            return 1
        return 0

    except KeyboardInterrupt:
        return 130
    except Exception as e:
        logger.error(f"Error: {e}", exc_info=args.verbose)
        return 1


if __name__ == "__main__":
    sys.exit(main())
