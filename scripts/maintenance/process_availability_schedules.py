#!/usr/bin/env python3
"""Run one pass of availability schedule processing outside the HTTP service."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from dataclasses import asdict

from services.availability_service.app.events import AvailabilityEventPublisher
from services.availability_service.app.jobs import AvailabilityJobRunner, ProcessingAlreadyRunning
from services.availability_service.app.models import Base
from services.common import (
    DEFAULT_DATABASE_URL,
    ServiceSettings,
    close_redis_connections,
    configure_logging,
    create_schema,
    dispose_engines,
    get_session_factory,
    resolve_database_url,
    resolve_redis,
)
from services.common.kafka import KafkaProducerStub


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Process due availability schedule entries")
    parser.add_argument(
        "--database-url",
        default=os.getenv("SERVICE_DATABASE_URL"),
        help="Database URL (default: SERVICE_DATABASE_URL or the service's local SQLite file)",
    )
    parser.add_argument(
        "--reschedule",
        action="store_true",
        help="Rebuild schedule entries for every active rule after processing due ones",
    )
    parser.add_argument(
        "--retention-days",
        type=int,
        default=None,
        help="Delete processed entries older than this many days (default: service setting)",
    )
    parser.add_argument(
        "--no-events",
        action="store_true",
        help="Process entries without publishing state change events",
    )
    args = parser.parse_args()
    if args.retention_days is not None and args.retention_days <= 0:
        parser.error("--retention-days must be positive")
    return args


async def _process(args: argparse.Namespace) -> dict[str, object]:
    settings = ServiceSettings(app_name="availability-schedule-processor")
    if args.database_url:
        settings = settings.model_copy(update={"database_url": args.database_url})
    configure_logging(settings)
    database_url = resolve_database_url(settings, DEFAULT_DATABASE_URL)

    await create_schema(database_url, Base.metadata)

    producer: KafkaProducerStub | None = None
    notifier: AvailabilityEventPublisher | None = None
    if not args.no_events:
        producer = KafkaProducerStub(bootstrap_servers=settings.kafka_bootstrap_servers)
        await producer.connect()
        notifier = AvailabilityEventPublisher(producer)

    redis_client = resolve_redis(settings)
    runner = AvailabilityJobRunner(
        get_session_factory(database_url),
        redis_client=redis_client,
        notifier=notifier,
        default_timezone=settings.availability_default_timezone,
        retention_days=args.retention_days or settings.availability_schedule_retention_days,
        lock_ttl_seconds=settings.availability_job_lock_ttl_seconds,
    )
    try:
        result = await runner.run_once(reschedule=args.reschedule)
    finally:
        if producer is not None:
            await producer.close()
        await dispose_engines()
        if redis_client is not None:
            await close_redis_connections()

    report = asdict(result)
    report["status"] = "ok" if result.failed == 0 else "partial"
    return report


async def main_async() -> int:
    args = parse_args()
    try:
        report = await _process(args)
    except ProcessingAlreadyRunning as exc:
        print(json.dumps({"status": "skipped", "reason": str(exc)}))
        return 3
    print(json.dumps(report, indent=2, sort_keys=True))
    return 0 if report["status"] == "ok" else 2


def main() -> None:
    try:
        exit_code = asyncio.run(main_async())
    except Exception as exc:
        print(json.dumps({"error": str(exc)}))
        exit_code = 1
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
