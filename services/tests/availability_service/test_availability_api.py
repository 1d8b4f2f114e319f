import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client import REGISTRY

from services.availability_service.app.events import STATE_CHANGED_TOPIC
from services.availability_service.app.main import create_app
from sqlalchemy import update

from services.availability_service.app.models import AvailabilityRule, AvailabilitySchedule, Base
from services.common import ServiceSettings, create_engine, dispose_engines, lifespan_session
from services.common.kafka import KafkaConsumerStub

NOW = datetime.now(timezone.utc).replace(microsecond=0)


def _run(coro):
    return asyncio.run(coro)


def _iso(moment: datetime) -> str:
    return moment.isoformat()


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


async def _prepare_app(tmp_path) -> FastAPI:
    db_file = tmp_path / "availability.db"
    database_url = f"sqlite+aiosqlite:///{db_file}"

    engine = create_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    settings = ServiceSettings(
        app_name="Availability Service Test",
        enable_metrics=False,
        enable_tracing=False,
        database_url=database_url,
    )
    return create_app(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield


def _get_metric_value(name: str, labels: dict[str, str] | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels or {})
    return float(value) if value is not None else 0.0


class _MetricTracker:
    def __init__(self, name: str, labels: dict[str, str] | None = None) -> None:
        self.name = name
        self.labels = labels or {}
        self._baseline = _get_metric_value(name, self.labels)

    def delta(self) -> float:
        return _get_metric_value(self.name, self.labels) - self._baseline


def _pre_order_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "name": "Holiday pre-order",
        "ruleType": "DATE_RANGE",
        "state": "PRE_ORDER",
        "priority": 10,
        "startDate": _iso(NOW + timedelta(days=1)),
        "endDate": _iso(NOW + timedelta(days=30)),
        "preOrderSettings": {
            "message": "Ships after the holidays",
            "expectedDeliveryDate": _iso(NOW + timedelta(days=60)),
            "depositRequired": True,
            "depositAmount": "10.00",
        },
    }
    payload.update(overrides)
    return payload


def _custom_payload(**overrides: Any) -> dict[str, Any]:
    payload = {"name": "Always on", "ruleType": "CUSTOM", "state": "AVAILABLE", "priority": 5}
    payload.update(overrides)
    return payload


def test_create_rule_and_evaluate_over_time(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                created = await client.post(
                    "/products/sku-1/availability-rules",
                    json=_pre_order_payload(),
                    headers={"X-Actor-Id": "admin-1"},
                )
                assert created.status_code == 201
                rule = created.json()
                assert rule["productId"] == "sku-1"
                assert rule["createdBy"] == "admin-1"
                assert rule["preOrderSettings"]["depositAmount"] == "10.00"

                fallback = await client.post("/products/sku-1/availability-rules", json=_custom_payload())
                assert fallback.status_code == 201

                listed = await client.get("/products/sku-1/availability-rules")
                assert listed.json()["total"] == 2
                assert [item["priority"] for item in listed.json()["items"]] == [10, 5]

                during = await client.get(
                    "/products/sku-1/availability",
                    params={"at": _iso(NOW + timedelta(days=10))},
                )
                assert during.status_code == 200
                data = during.json()
                assert data["currentState"] == "PRE_ORDER"
                assert [item["name"] for item in data["appliedRules"]] == ["Holiday pre-order", "Always on"]
                assert data["nextStateChange"]["newState"] == "AVAILABLE"
                assert data["nextStateChange"]["ruleId"] == rule["id"]
                assert _parse(data["nextStateChange"]["date"]) == NOW + timedelta(days=30)

                after = await client.get(
                    "/products/sku-1/availability",
                    params={"at": _iso(NOW + timedelta(days=40))},
                )
                assert after.json()["currentState"] == "AVAILABLE"
                assert [item["name"] for item in after.json()["appliedRules"]] == ["Always on"]

    _run(body())
    _run(dispose_engines())


def test_invalid_rule_returns_all_errors(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))
    tracker = _MetricTracker("availability_rule_validation_failures_total", {"operation": "create"})

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.post(
                    "/products/sku-1/availability-rules",
                    json=_pre_order_payload(
                        startDate=_iso(NOW + timedelta(days=5)),
                        endDate=_iso(NOW + timedelta(days=2)),
                        preOrderSettings={"expectedDeliveryDate": _iso(NOW - timedelta(days=1))},
                    ),
                )
                assert response.status_code == 422
                detail = response.json()["detail"]
                assert detail["message"] == "Validation failed"
                assert detail["errors"] == [
                    "Start date must be before end date",
                    "Expected delivery date must be in the future",
                ]

                listed = await client.get("/products/sku-1/availability-rules")
                assert listed.json()["total"] == 0

    _run(body())
    _run(dispose_engines())
    assert tracker.delta() == 1


def test_update_and_delete_rule(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                created = await client.post("/products/sku-1/availability-rules", json=_pre_order_payload())
                rule_id = created.json()["id"]

                patched = await client.patch(
                    f"/availability-rules/{rule_id}",
                    json={"priority": 50, "state": "VIEW_ONLY", "viewOnlySettings": {"showPrice": False}},
                    headers={"X-Actor-Id": "admin-2"},
                )
                assert patched.status_code == 200
                assert patched.json()["priority"] == 50
                assert patched.json()["state"] == "VIEW_ONLY"
                assert patched.json()["updatedBy"] == "admin-2"

                rejected = await client.patch(f"/availability-rules/{rule_id}", json={"priority": 5000})
                assert rejected.status_code == 422
                assert rejected.json()["detail"]["errors"] == ["Priority must be between 0 and 1000"]

                for field, message in (
                    ("enabled", "Input should be a valid boolean"),
                    ("priority", "Input should be a valid integer"),
                ):
                    nulled = await client.patch(f"/availability-rules/{rule_id}", json={field: None})
                    assert nulled.status_code == 422
                    assert nulled.json()["detail"]["errors"] == [f"{field}: {message}"]

                fetched = await client.get(f"/availability-rules/{rule_id}")
                assert fetched.json()["priority"] == 50

                deleted = await client.delete(f"/availability-rules/{rule_id}")
                assert deleted.status_code == 204

                assert (await client.get(f"/availability-rules/{rule_id}")).status_code == 404
                assert (await client.patch(f"/availability-rules/{rule_id}", json={"enabled": False})).status_code == 404
                assert (await client.delete(f"/availability-rules/{rule_id}")).status_code == 404

    _run(body())
    _run(dispose_engines())


def test_conflicts_and_statistics(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                first = await client.post("/products/sku-1/availability-rules", json=_pre_order_payload())
                second = await client.post(
                    "/products/sku-1/availability-rules",
                    json=_custom_payload(priority=10, enabled=False),
                )
                third = await client.post(
                    "/products/sku-1/availability-rules",
                    json={
                        "name": "Coming soon teaser",
                        "ruleType": "DATE_RANGE",
                        "state": "COMING_SOON",
                        "priority": 10,
                        "startDate": _iso(NOW + timedelta(days=20)),
                        "endDate": _iso(NOW + timedelta(days=40)),
                    },
                )
                first_id, third_id = first.json()["id"], third.json()["id"]
                assert second.status_code == 201

                report = await client.get("/products/sku-1/availability/conflicts")
                assert report.status_code == 200
                conflicts = report.json()["conflicts"]
                assert {"rule1Id": first_id, "rule2Id": third_id, "conflictType": "priority"} in conflicts
                assert {"rule1Id": first_id, "rule2Id": third_id, "conflictType": "date_overlap"} in conflicts
                assert len(conflicts) == 2

                stats = await client.get("/availability-rules/statistics")
                assert stats.status_code == 200
                assert stats.json() == {
                    "totalRules": 3,
                    "activeRules": 2,
                    "rulesByType": {"DATE_RANGE": 2, "CUSTOM": 1},
                    "rulesByState": {"PRE_ORDER": 1, "AVAILABLE": 1, "COMING_SOON": 1},
                }

    _run(body())
    _run(dispose_engines())


def test_bulk_operations_are_all_or_nothing(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                rejected = await client.post(
                    "/availability-rules/bulk",
                    json={
                        "productIds": ["sku-1", "sku-2"],
                        "operation": "create",
                        "rules": [_custom_payload(), _custom_payload(name=None)],
                    },
                )
                assert rejected.status_code == 422
                assert rejected.json()["detail"]["errors"] == [
                    "Product sku-1, rule 2: Rule name is required",
                    "Product sku-2, rule 2: Rule name is required",
                ]
                assert (await client.get("/availability-rules/statistics")).json()["totalRules"] == 0

                created = await client.post(
                    "/availability-rules/bulk",
                    json={"productIds": ["sku-1", "sku-2"], "operation": "create", "rules": [_custom_payload()]},
                )
                assert created.status_code == 200
                rules = created.json()["rules"]
                assert sorted(rule["productId"] for rule in rules) == ["sku-1", "sku-2"]

                updated = await client.post(
                    "/availability-rules/bulk",
                    json={
                        "productIds": ["sku-1", "sku-2"],
                        "operation": "update",
                        "rules": [{"id": rule["id"], "state": "HIDDEN"} for rule in rules],
                    },
                )
                assert updated.status_code == 200
                assert {rule["state"] for rule in updated.json()["rules"]} == {"HIDDEN"}
                assert {rule["name"] for rule in updated.json()["rules"]} == {"Always on"}

                missing = await client.post(
                    "/availability-rules/bulk",
                    json={"productIds": ["sku-1"], "operation": "delete", "rules": [{"id": rules[0]["id"]}, {"id": 9999}]},
                )
                assert missing.status_code == 404
                assert (await client.get("/availability-rules/statistics")).json()["totalRules"] == 2

                removed = await client.post(
                    "/availability-rules/bulk",
                    json={"productIds": ["sku-1", "sku-2"], "operation": "delete", "rules": [{"id": r["id"]} for r in rules]},
                )
                assert removed.status_code == 200
                assert removed.json()["deletedCount"] == 2
                assert (await client.get("/availability-rules/statistics")).json()["totalRules"] == 0

                too_many = await client.post(
                    "/availability-rules/bulk",
                    json={"productIds": [f"sku-{i}" for i in range(101)], "operation": "delete"},
                )
                assert too_many.status_code == 422

    _run(body())
    _run(dispose_engines())


def test_preview_and_batch_evaluation(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                preview = await client.post(
                    "/products/sku-1/availability/preview",
                    json={
                        "rules": [
                            _custom_payload(),
                            {
                                "name": "Late night",
                                "ruleType": "TIME_BASED",
                                "state": "RESTRICTED",
                                "priority": 20,
                                "timeRestrictions": {
                                    "daysOfWeek": [0, 1, 2, 3, 4, 5, 6],
                                    "startTime": "22:00",
                                    "endTime": "06:00",
                                    "timezone": "UTC",
                                },
                            },
                        ],
                        "at": "2025-01-07T23:30:00+00:00",
                    },
                )
                assert preview.status_code == 200
                assert preview.json()["currentState"] == "RESTRICTED"
                assert (await client.get("/products/sku-1/availability-rules")).json()["total"] == 0

                invalid_preview = await client.post(
                    "/products/sku-1/availability/preview",
                    json={"rules": [_custom_payload(priority=-1)]},
                )
                assert invalid_preview.status_code == 422
                assert invalid_preview.json()["detail"]["errors"] == ["Rule 1: Priority must be between 0 and 1000"]

                await client.post("/products/sku-2/availability-rules", json=_custom_payload(state="SOLD_OUT"))
                batch = await client.post("/availability/evaluate", json={"productIds": ["sku-2", "sku-3"]})
                assert batch.status_code == 200
                items = batch.json()["items"]
                assert items["sku-2"]["currentState"] == "SOLD_OUT"
                assert items["sku-3"]["currentState"] == "AVAILABLE"
                assert items["sku-3"]["appliedRules"] == []

                empty_batch = await client.post("/availability/evaluate", json={"productIds": []})
                assert empty_batch.status_code == 422

    _run(body())
    _run(dispose_engines())


def test_upcoming_changes_and_processing(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))
    published: list[dict[str, Any]] = []

    async def capture(_topic: str, message: dict[str, Any]) -> None:
        published.append(message)

    async def body() -> None:
        consumer = KafkaConsumerStub([STATE_CHANGED_TOPIC], capture)
        await consumer.start()
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                created = await client.post(
                    "/products/sku-1/availability-rules",
                    json={
                        "name": "Flash sale",
                        "ruleType": "DATE_RANGE",
                        "state": "AVAILABLE",
                        "priority": 30,
                        "startDate": _iso(NOW + timedelta(days=2)),
                        "endDate": _iso(NOW + timedelta(days=7)),
                    },
                )
                rule_id = created.json()["id"]

                upcoming = await client.get("/products/sku-1/availability/upcoming", params={"horizonDays": 14})
                assert upcoming.status_code == 200
                assert upcoming.json()["horizonDays"] == 14
                assert [item["transition"] for item in upcoming.json()["items"]] == [
                    "activate_AVAILABLE",
                    "deactivate_AVAILABLE",
                ]

                async with lifespan_session(app.state.session_factory) as session:
                    await session.execute(
                        update(AvailabilitySchedule)
                        .where(AvailabilitySchedule.transition == "activate_AVAILABLE")
                        .values(scheduled_at=NOW - timedelta(minutes=5))
                    )

                processed = await client.post("/availability-schedules/process")
                assert processed.status_code == 200
                assert processed.json()["processed"] == 1
                assert processed.json()["failed"] == 0

                status_resp = await client.get("/availability-schedules/status")
                status_body = status_resp.json()
                assert status_body["isRunning"] is False
                assert status_body["lastResult"]["jobId"] == processed.json()["jobId"]

                rescheduled = await client.post("/availability-schedules/reschedule")
                assert rescheduled.json() == {"rescheduled": 1}

                cleanup = await client.delete("/availability-schedules/processed", params={"daysOld": 1})
                assert cleanup.status_code == 200
                assert cleanup.json() == {"deleted": 0}

        await consumer.stop()
        assert len(published) == 1
        assert published[0]["productId"] == "sku-1"
        assert published[0]["ruleId"] == rule_id
        assert published[0]["transition"] == "activate_AVAILABLE"

    _run(body())
    _run(dispose_engines())


def test_region_name_is_not_a_timezone(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.post(
                    "/products/sku-1/availability-rules",
                    json={
                        "name": "Summer menu",
                        "ruleType": "SEASONAL",
                        "state": "AVAILABLE",
                        "seasonalConfig": {
                            "startMonth": 6,
                            "startDay": 1,
                            "endMonth": 8,
                            "endDay": 31,
                            "timezone": "America",
                        },
                    },
                )
                assert response.status_code == 422
                assert response.json()["detail"]["errors"] == ["Invalid timezone: America"]

    _run(body())
    _run(dispose_engines())


def test_unreadable_stored_rule_falls_back_to_available(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))
    fallbacks = _MetricTracker("availability_evaluation_fallback_total")

    async def body() -> None:
        async with lifespan(app):
            async with lifespan_session(app.state.session_factory) as session:
                session.add(
                    AvailabilityRule(
                        product_id="sku-broken",
                        name="Seasonal without config",
                        rule_type="SEASONAL",
                        state="HIDDEN",
                        priority=10,
                        enabled=True,
                        seasonal_config=None,
                    )
                )
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                single = await client.get("/products/sku-broken/availability")
                assert single.status_code == 200
                assert single.json()["currentState"] == "AVAILABLE"
                assert single.json()["appliedRules"] == []

                await client.post("/products/sku-ok/availability-rules", json=_custom_payload(state="SOLD_OUT"))
                batch = await client.post("/availability/evaluate", json={"productIds": ["sku-broken", "sku-ok"]})
                assert batch.status_code == 200
                items = batch.json()["items"]
                assert items["sku-broken"]["currentState"] == "AVAILABLE"
                assert items["sku-ok"]["currentState"] == "SOLD_OUT"

                report = await client.get("/products/sku-broken/availability/conflicts")
                assert report.status_code == 200
                assert report.json()["conflicts"] == []

    _run(body())
    _run(dispose_engines())
    assert fallbacks.delta() == 2
