#!/usr/bin/env python3
"""Command-line entry point: run the metrics ETL once or serve it on a schedule."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

from rpm_metrics.config import Settings, get_settings
from rpm_metrics.database import PracticeEngineRegistry
from rpm_metrics.logging import configure_logging
from rpm_metrics.services.metrics import ClinicalMetricsEtl, MetricsEtlError
from rpm_metrics.services.metrics.thresholds import EnrollmentPeriod
from rpm_metrics.services.metrics_scheduler import MetricsScheduler

logger = logging.getLogger("rpm_metrics")


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Recompute clinical metrics summaries from device telemetry."
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL for this process.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_once = subparsers.add_parser("run-once", help="Run one full ETL pass and exit.")
    run_once.add_argument(
        "--practice",
        action="append",
        dest="practices",
        help="Restrict the run to this practice id (repeatable).",
    )
    run_once.add_argument(
        "--period",
        action="append",
        dest="periods",
        choices=[period.value for period in EnrollmentPeriod],
        help="Restrict the run to this enrollment period (repeatable).",
    )
    run_once.add_argument(
        "--now",
        type=datetime.fromisoformat,
        default=None,
        help="Reference time for the period windows (ISO 8601, default: current UTC time).",
    )

    subparsers.add_parser("serve", help="Run the ETL on the configured interval until stopped.")
    return parser.parse_args(argv)


def _select_practices(config: Settings, practice_ids: Optional[list[str]]) -> Settings:
    if not practice_ids:
        return config
    known = {practice.practice_id for practice in config.practices}
    missing = sorted(set(practice_ids) - known)
    if missing:
        raise SystemExit(f"Unknown practice id(s): {', '.join(missing)}")
    practices = [p for p in config.practices if p.practice_id in practice_ids]
    return config.model_copy(update={"practices": practices})


async def _run_once(args: argparse.Namespace, config: Settings) -> int:
    config = _select_practices(config, args.practices)
    registry = PracticeEngineRegistry.from_settings(config)
    periods = [EnrollmentPeriod(p) for p in args.periods] if args.periods else tuple(EnrollmentPeriod)
    now = args.now
    if now is not None and now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    try:
        etl = ClinicalMetricsEtl(registry, config=config, periods=periods)
        stats = await etl.run(now=now)
    except MetricsEtlError:
        logger.exception("Clinical metrics run aborted")
        return 1
    finally:
        await registry.dispose_all()

    print(json.dumps(asdict(stats), indent=2))
    return 0 if not (stats.periods_failed or stats.practices_failed) else 2


async def _serve(config: Settings) -> int:
    if not config.metrics_scheduler_enabled:
        logger.info("Metrics scheduler disabled by configuration; nothing to serve")
        return 0

    registry = PracticeEngineRegistry.from_settings(config)
    scheduler = MetricsScheduler(ClinicalMetricsEtl(registry, config=config), config)
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    logger.info("Starting %s %s", config.app_name, config.app_version)
    await scheduler.start()
    try:
        await stop_requested.wait()
    finally:
        logger.info("Shutting down clinical metrics scheduler")
        await scheduler.stop()
        await registry.dispose_all()
        logger.info("Database connections closed")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    configure_logging(args.log_level)
    config = get_settings()
    if not config.practices:
        logger.warning("No practices configured; set PRACTICES to a JSON list")

    if args.command == "run-once":
        return asyncio.run(_run_once(args, config))
    return asyncio.run(_serve(config))


if __name__ == "__main__":
    raise SystemExit(main())
