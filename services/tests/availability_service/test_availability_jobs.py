from datetime import datetime, timezone
from typing import Any

import pytest
from prometheus_client import REGISTRY

from services.availability_service.app.jobs import AvailabilityJobRunner, ProcessingAlreadyRunning
from services.availability_service.app.models import Base
from services.availability_service.app.repository import AvailabilityRepository
from services.availability_service.app.scheduler import AvailabilityScheduler
from services.availability_service.app.schemas import RuleDraft
from services.common import (
    acquire_lock,
    create_schema,
    dispose_engines,
    get_session_factory,
    lifespan_session,
    release_lock,
)

UTC = timezone.utc


class _FakeRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.set_calls: list[dict[str, Any]] = []

    async def set(self, key: str, value: str, *, nx: bool = False, ex: int | None = None) -> bool | None:
        self.set_calls.append({"key": key, "nx": nx, "ex": ex})
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def delete(self, key: str) -> int:
        return 1 if self.values.pop(key, None) is not None else 0


class _BrokenRedis:
    async def set(self, *_: Any, **__: Any) -> bool:
        raise ConnectionError("redis down")

    async def get(self, *_: Any) -> str:
        raise ConnectionError("redis down")

    async def delete(self, *_: Any) -> int:
        raise ConnectionError("redis down")


class _MetricTracker:
    def __init__(self, name: str, labels: dict[str, str] | None = None) -> None:
        self.name = name
        self.labels = labels or {}
        baseline = REGISTRY.get_sample_value(name, self.labels)
        self._baseline = baseline if baseline is not None else 0.0

    def delta(self) -> float:
        current = REGISTRY.get_sample_value(self.name, self.labels)
        value = current if current is not None else 0.0
        return value - self._baseline


async def _seeded_session_factory(tmp_path):
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"
    await create_schema(database_url, Base.metadata)
    session_factory = get_session_factory(database_url)
    async with lifespan_session(session_factory) as session:
        repository = AvailabilityRepository(session)
        scheduler = AvailabilityScheduler(repository, clock=lambda: datetime(2025, 1, 1, tzinfo=UTC))
        draft = RuleDraft.model_validate(
            {
                "name": "Weekend launch",
                "ruleType": "DATE_RANGE",
                "state": "VIEW_ONLY",
                "startDate": "2025-01-10T00:00:00+00:00",
                "endDate": "2025-01-20T00:00:00+00:00",
                "viewOnlySettings": {"message": "Launching soon"},
            }
        )
        rule = await repository.create_rule(draft, product_id="sku-9")
        await scheduler.schedule_rule_changes(rule)
    return session_factory


@pytest.mark.asyncio
async def test_run_once_processes_and_records_status(tmp_path) -> None:
    session_factory = await _seeded_session_factory(tmp_path)
    redis = _FakeRedis()
    runner = AvailabilityJobRunner(
        session_factory,
        redis_client=redis,
        lock_ttl_seconds=120,
        clock=lambda: datetime(2025, 1, 15, tzinfo=UTC),
    )
    tracker = _MetricTracker("availability_job_runs_total", {"outcome": "success"})

    result = await runner.run_once(reschedule=True)

    assert result.processed == 1
    assert result.rescheduled == 1
    assert result.failed == 0
    assert result.cleaned_up == 0
    assert redis.set_calls == [{"key": "availability:schedule-processing", "nx": True, "ex": 120}]
    assert redis.values == {}
    status = runner.status()
    assert status.is_running is False
    assert status.current_job_id is None
    assert status.last_run is not None
    assert status.last_result is result
    assert tracker.delta() == 1
    await dispose_engines()


@pytest.mark.asyncio
async def test_run_once_refuses_when_lock_held_elsewhere(tmp_path) -> None:
    session_factory = await _seeded_session_factory(tmp_path)
    redis = _FakeRedis()
    redis.values["availability:schedule-processing"] = "other-worker"
    runner = AvailabilityJobRunner(session_factory, redis_client=redis)
    tracker = _MetricTracker("availability_job_runs_total", {"outcome": "skipped"})

    with pytest.raises(ProcessingAlreadyRunning):
        await runner.run_once()

    assert redis.values["availability:schedule-processing"] == "other-worker"
    assert runner.status().last_result is None
    assert tracker.delta() == 1
    await dispose_engines()


@pytest.mark.asyncio
async def test_run_once_refuses_concurrent_run_in_process(tmp_path) -> None:
    session_factory = await _seeded_session_factory(tmp_path)
    runner = AvailabilityJobRunner(session_factory)

    async with runner._local_lock:
        assert runner.status().is_running is True
        with pytest.raises(ProcessingAlreadyRunning):
            await runner.run_once()
    await dispose_engines()


@pytest.mark.asyncio
async def test_redis_outage_fails_open(tmp_path) -> None:
    session_factory = await _seeded_session_factory(tmp_path)
    runner = AvailabilityJobRunner(
        session_factory,
        redis_client=_BrokenRedis(),
        clock=lambda: datetime(2025, 1, 25, tzinfo=UTC),
    )
    acquire_errors = _MetricTracker("availability_job_lock_errors_total", {"operation": "acquire"})
    release_errors = _MetricTracker("availability_job_lock_errors_total", {"operation": "release"})

    result = await runner.run_once()

    assert result.processed == 2
    assert acquire_errors.delta() == 1
    assert release_errors.delta() == 1
    await dispose_engines()


@pytest.mark.asyncio
async def test_lock_release_requires_matching_token() -> None:
    redis = _FakeRedis()

    assert await acquire_lock(redis, "lock", "first", ttl_seconds=30) is True
    assert await acquire_lock(redis, "lock", "second", ttl_seconds=30) is False
    assert redis.set_calls[0] == {"key": "lock", "nx": True, "ex": 30}

    assert await release_lock(redis, "lock", "second") is False
    assert redis.values == {"lock": "first"}
    assert await release_lock(redis, "lock", "first") is True
    assert redis.values == {}
