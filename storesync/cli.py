#!/usr/bin/env python3
"""
Command line entry point.

Launch a backend job and follow its progress, or print the chart buckets
for a date preset.

Usage:
    python -m storesync.cli launch --kind order-sync --store buycosari
    python -m storesync.cli launch --kind ltv-cohort --param sku=SKU-1 --timeout 600
    python -m storesync.cli chart --preset last90days --store buycosari
"""
import argparse
import asyncio
import sys
from typing import Any, Dict, List, Optional

from storesync.api_client import AnalyticsAPIClient
from storesync.channel import ChannelClient
from storesync.config import ConfigurationError, config, validate_config
from storesync.exceptions import StoreSyncError, ValidationError
from storesync.observability import correlation_context, get_logger, setup_logging
from storesync.progress import Stage, SyncStatus
from storesync.series import DATE_PRESETS, aggregate, date_range_for_preset, resolution
from storesync.session import SyncSession
from storesync.validators import validate_partition_key

logger = get_logger(__name__)


def parse_params(pairs: Optional[List[str]]) -> Dict[str, Any]:
    """Turn ["key=value", ...] into a dict."""
    params: Dict[str, Any] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValidationError("param", "Expected key=value", pair)
        params[key.strip()] = value.strip()
    return params


def format_status(status: SyncStatus) -> str:
    """One status line for the terminal."""
    parts = [f"[{status.kind}]", status.stage.value]
    if status.is_active:
        parts.append(f"{status.progress_pct:.0f}%")
    if status.counter_text:
        parts.append(f"({status.counter_text})")
    if status.message:
        parts.append(f"- {status.message}")
    if status.stalled:
        parts.append("[connection lost]")
    return " ".join(parts)


async def run_launch(kind: str, store_id: str, params: Dict[str, Any], timeout: float) -> int:
    """Launch a job and print status lines until it finishes."""
    channel = ChannelClient()
    session = SyncSession(channel)
    finished = asyncio.Event()
    outcome: Dict[str, Stage] = {}

    def render(status: SyncStatus) -> None:
        print(format_status(status), flush=True)
        if status.is_terminal:
            outcome["stage"] = status.stage
            finished.set()

    try:
        session.reducer(kind)
    except KeyError:
        logger.error(f"Unknown job kind '{kind}', expected one of {session.kinds}")
        return 2

    session.reducer(kind).subscribe(render)

    async with session:
        try:
            await channel.open()
        except StoreSyncError as e:
            logger.error(f"Could not connect: {e}")
            return 1

        try:
            await session.select_store(store_id)
            result = await session.launch(kind, params)
            logger.info(f"Launch {result.value}", extra={"kind": kind, "store": store_id})

            await asyncio.wait_for(finished.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"'{kind}' did not finish within {timeout:.0f}s")
            return 1
        finally:
            await channel.close()

    return 0 if outcome.get("stage") is Stage.COMPLETED else 1


async def run_chart(preset: str, store_id: str) -> int:
    """Print aggregated chart buckets for a date preset."""
    start, end = date_range_for_preset(preset)
    buckets = resolution(start, end)

    async with AnalyticsAPIClient() as api:
        points = await api.fetch_daily_series(start, end, store_id=store_id)

    for point in aggregate(points, buckets):
        revenue = point.metrics.get("revenue", 0)
        print(f"{point.range_label:<16} {point.days_count:>3}d  revenue={revenue}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="storesync", description="Store sync client")
    parser.add_argument("--log-level", default=config.log_level, help="Logging level")
    parser.add_argument("--json-logs", action="store_true", default=config.log_json,
                        help="Emit JSON log lines")

    sub = parser.add_subparsers(dest="command", required=True)

    launch = sub.add_parser("launch", help="Launch a backend job and follow its progress")
    launch.add_argument("--kind", required=True, help="Job kind, e.g. order-sync")
    launch.add_argument("--store", default=config.default_store_id,
                        help=f"Store identifier (default: {config.default_store_id})")
    launch.add_argument("--param", action="append", metavar="KEY=VALUE",
                        help="Job parameter (repeatable)")
    launch.add_argument("--timeout", type=float, default=3600.0,
                        help="Seconds to wait for the job to finish (default: 3600)")

    chart = sub.add_parser("chart", help="Print chart buckets for a date preset")
    chart.add_argument("--preset", choices=DATE_PRESETS, default="last30days")
    chart.add_argument("--store", default=config.default_store_id)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level, json_format=args.json_logs)

    try:
        validate_config(require_api=args.command == "chart")
        store_id = validate_partition_key(args.store)

        with correlation_context():
            if args.command == "launch":
                return asyncio.run(run_launch(
                    args.kind, store_id, parse_params(args.param), args.timeout
                ))
            return asyncio.run(run_chart(args.preset, store_id))
    except (ConfigurationError, ValidationError) as e:
        logger.error(str(e))
        return 2
    except StoreSyncError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
