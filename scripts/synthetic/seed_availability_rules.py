#!/usr/bin/env python3
"""Seed representative availability rules against the availability-service API."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, MutableMapping, Sequence

import httpx

DEFAULT_PRODUCT_IDS = ["sku-demo-1", "sku-demo-2"]


def _env_default(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


def _split_env(name: str, fallback: Sequence[str]) -> list[str]:
    value = os.getenv(name)
    if not value:
        return list(fallback)
    return [token.strip() for token in value.split(",") if token.strip()]


@dataclass(slots=True)
class SeedResult:
    product_id: str
    scenario: str
    rule_id: int | None
    duration: float
    status_code: int | None
    error: str | None


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed example availability rules")
    parser.add_argument(
        "--base-url",
        default=_env_default("AVAILABILITY_SERVICE_BASE_URL", "http://127.0.0.1:8110"),
        help="Availability service base URL (default: %(default)s or AVAILABILITY_SERVICE_BASE_URL)",
    )
    parser.add_argument(
        "--product-ids",
        nargs="*",
        default=_split_env("AVAILABILITY_SEED_PRODUCT_IDS", DEFAULT_PRODUCT_IDS),
        help="Products that receive every scenario (default: %(default)s)",
    )
    parser.add_argument(
        "--scenarios",
        nargs="*",
        default=None,
        help=f"Subset of scenarios to seed (default: all of {', '.join(sorted(SCENARIOS))})",
    )
    parser.add_argument(
        "--timezone",
        default=_env_default("AVAILABILITY_SEED_TIMEZONE", "America/Los_Angeles"),
        help="Timezone used by seasonal and time-based scenarios (default: %(default)s)",
    )
    parser.add_argument(
        "--actor",
        default=_env_default("AVAILABILITY_SEED_ACTOR", "seed-script"),
        help="Value sent as X-Actor-Id (default: %(default)s)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=float(_env_default("AVAILABILITY_SEED_TIMEOUT", "5")),
        help="HTTP timeout in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print generated payloads without calling the API",
    )
    parser.add_argument(
        "--pretty",
        action="store_true",
        help="Pretty-print the final JSON result (default: False)",
    )

    args = parser.parse_args()
    if not args.product_ids:
        parser.error("--product-ids must provide at least one product")
    unknown = set(args.scenarios or []) - set(SCENARIOS)
    if unknown:
        parser.error(f"unknown scenarios: {', '.join(sorted(unknown))}")
    return args


def _holiday_pre_order(now: datetime, _tz: str) -> dict[str, Any]:
    return {
        "name": "Holiday pre-order",
        "ruleType": "DATE_RANGE",
        "state": "PRE_ORDER",
        "priority": 50,
        "startDate": (now + timedelta(days=1)).isoformat(),
        "endDate": (now + timedelta(days=45)).isoformat(),
        "preOrderSettings": {
            "message": "Reserve now, ships after launch",
            "expectedDeliveryDate": (now + timedelta(days=60)).isoformat(),
            "depositRequired": True,
            "depositAmount": "20.00",
            "maxQuantity": 2,
        },
    }


def _summer_menu(_now: datetime, tz: str) -> dict[str, Any]:
    return {
        "name": "Summer menu",
        "ruleType": "SEASONAL",
        "state": "AVAILABLE",
        "priority": 20,
        "seasonalConfig": {"startMonth": 6, "startDay": 1, "endMonth": 8, "endDay": 31, "timezone": tz},
    }


def _winter_break(_now: datetime, tz: str) -> dict[str, Any]:
    return {
        "name": "Winter break",
        "ruleType": "SEASONAL",
        "state": "HIDDEN",
        "priority": 30,
        "seasonalConfig": {"startMonth": 12, "startDay": 20, "endMonth": 1, "endDay": 5, "timezone": tz},
    }


def _weekend_brunch(_now: datetime, tz: str) -> dict[str, Any]:
    return {
        "name": "Weekend brunch",
        "ruleType": "TIME_BASED",
        "state": "AVAILABLE",
        "priority": 40,
        "timeRestrictions": {"daysOfWeek": [0, 6], "startTime": "09:00", "endTime": "14:00", "timezone": tz},
    }


def _late_night(_now: datetime, tz: str) -> dict[str, Any]:
    return {
        "name": "Late night restriction",
        "ruleType": "TIME_BASED",
        "state": "RESTRICTED",
        "priority": 45,
        "timeRestrictions": {
            "daysOfWeek": [0, 1, 2, 3, 4, 5, 6],
            "startTime": "22:00",
            "endTime": "06:00",
            "timezone": tz,
        },
    }


def _limited_edition(now: datetime, _tz: str) -> dict[str, Any]:
    return {
        "name": "Limited edition teaser",
        "ruleType": "DATE_RANGE",
        "state": "VIEW_ONLY",
        "priority": 60,
        "startDate": now.isoformat(),
        "endDate": (now + timedelta(days=14)).isoformat(),
        "viewOnlySettings": {"message": "Available soon", "showPrice": False, "allowWishlist": True},
    }


SCENARIOS: dict[str, Callable[[datetime, str], dict[str, Any]]] = {
    "holiday-pre-order": _holiday_pre_order,
    "summer-menu": _summer_menu,
    "winter-break": _winter_break,
    "weekend-brunch": _weekend_brunch,
    "late-night": _late_night,
    "limited-edition": _limited_edition,
}


async def _post_json(
    client: httpx.AsyncClient,
    url: str,
    payload: Mapping[str, Any],
    *,
    actor: str,
) -> tuple[int, MutableMapping[str, Any]]:
    response = await client.post(url, json=payload, headers={"X-Actor-Id": actor})
    response.raise_for_status()
    body = response.json()
    if not isinstance(body, MutableMapping):
        raise ValueError("Unexpected JSON response structure")
    return response.status_code, body


async def _seed_rule(
    client: httpx.AsyncClient,
    base_url: str,
    product_id: str,
    scenario: str,
    payload: Mapping[str, Any],
    *,
    actor: str,
) -> SeedResult:
    start = time.perf_counter()
    try:
        status, body = await _post_json(
            client,
            f"{base_url}/products/{product_id}/availability-rules",
            payload,
            actor=actor,
        )
        return SeedResult(
            product_id=product_id,
            scenario=scenario,
            rule_id=int(body["id"]),
            duration=time.perf_counter() - start,
            status_code=status,
            error=None,
        )
    except (httpx.HTTPError, ValueError, KeyError) as exc:
        response = getattr(exc, "response", None)
        return SeedResult(
            product_id=product_id,
            scenario=scenario,
            rule_id=None,
            duration=time.perf_counter() - start,
            status_code=response.status_code if response is not None else None,
            error=str(exc),
        )


async def seed_rules(args: argparse.Namespace) -> Mapping[str, Any]:
    base_url = args.base_url.rstrip("/")
    now = datetime.now(timezone.utc).replace(microsecond=0)
    selected = args.scenarios or list(SCENARIOS)
    plan = [
        (product_id, scenario, SCENARIOS[scenario](now, args.timezone))
        for product_id in args.product_ids
        for scenario in selected
    ]

    if args.dry_run:
        return {
            "status": "dry-run",
            "count": len(plan),
            "sample": [payload for _, _, payload in plan[: min(3, len(plan))]],
        }

    async with httpx.AsyncClient(timeout=args.timeout) as client:
        results = await asyncio.gather(
            *(
                _seed_rule(client, base_url, product_id, scenario, payload, actor=args.actor)
                for product_id, scenario, payload in plan
            )
        )
        conflicts = {}
        for product_id in args.product_ids:
            response = await client.get(f"{base_url}/products/{product_id}/availability/conflicts")
            if response.status_code == 200:
                conflicts[product_id] = len(response.json().get("conflicts", []))

    failures = [result for result in results if result.rule_id is None]
    return {
        "status": "ok" if not failures else "partial",
        "requested": len(plan),
        "created": len(plan) - len(failures),
        "failed": len(failures),
        "conflicts": conflicts,
        "results": [
            {
                "productId": result.product_id,
                "scenario": result.scenario,
                "ruleId": result.rule_id,
                "durationSeconds": round(result.duration, 3),
                "statusCode": result.status_code,
                "error": result.error,
            }
            for result in results
        ],
    }


async def main_async() -> int:
    args = parse_args()
    report = await seed_rules(args)
    print(json.dumps(report, indent=2 if args.pretty else None))
    return 0 if report.get("status") in {"ok", "dry-run"} else 2


def main() -> None:
    try:
        exit_code = asyncio.run(main_async())
    except KeyboardInterrupt:
        exit_code = 130
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
