"""Processing job that drives the availability scheduler from an external trigger."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import monotonic
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import acquire_lock, lifespan_session, release_lock
from services.common.tracing import get_tracer

from .domain import DEFAULT_TIMEZONE
from .metrics import AVAILABILITY_JOB_DURATION_SECONDS, AVAILABILITY_JOB_LOCK_ERRORS_TOTAL, AVAILABILITY_JOB_RUNS_TOTAL
from .repository import AvailabilityRepository
from .scheduler import AvailabilityScheduler, StateChangeNotifier

_LOGGER = logging.getLogger(__name__)
_TRACER = get_tracer(__name__)

DEFAULT_LOCK_KEY = "availability:schedule-processing"


class ProcessingAlreadyRunning(Exception):
    """Raised when a processing run is requested while another one holds the lock."""


@dataclass(slots=True)
class JobResult:
    job_id: str
    processed: int = 0
    failed: int = 0
    cleaned_up: int = 0
    rescheduled: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0


@dataclass(slots=True)
class JobStatus:
    is_running: bool
    current_job_id: str | None
    last_run: datetime | None
    last_result: JobResult | None


class AvailabilityJobRunner:
    """Runs one process-then-cleanup pass at a time.

    The Redis lock spans processes sharing the same Redis; the in-process lock
    always applies. Redis errors fail open so a cache outage never stalls
    schedule processing.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        redis_client: Any | None = None,
        notifier: StateChangeNotifier | None = None,
        default_timezone: str = DEFAULT_TIMEZONE,
        retention_days: int = 30,
        lock_ttl_seconds: int = 300,
        lock_key: str = DEFAULT_LOCK_KEY,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._redis = redis_client
        self._notifier = notifier
        self._default_timezone = default_timezone
        self._retention_days = max(retention_days, 1)
        self._lock_ttl = max(lock_ttl_seconds, 1)
        self._lock_key = lock_key
        self._clock = clock
        self._local_lock = asyncio.Lock()
        self._current_job_id: str | None = None
        self._last_run: datetime | None = None
        self._last_result: JobResult | None = None

    def status(self) -> JobStatus:
        return JobStatus(
            is_running=self._local_lock.locked(),
            current_job_id=self._current_job_id,
            last_run=self._last_run,
            last_result=self._last_result,
        )

    async def _acquire_shared_lock(self, job_id: str) -> bool:
        if self._redis is None:
            return True
        try:
            return await acquire_lock(self._redis, self._lock_key, job_id, ttl_seconds=self._lock_ttl)
        except Exception:
            AVAILABILITY_JOB_LOCK_ERRORS_TOTAL.labels(operation="acquire").inc()
            _LOGGER.warning("Redis unavailable while acquiring %s; continuing without it", self._lock_key)
            return True

    async def _release_shared_lock(self, job_id: str) -> None:
        if self._redis is None:
            return
        try:
            await release_lock(self._redis, self._lock_key, job_id)
        except Exception:
            AVAILABILITY_JOB_LOCK_ERRORS_TOTAL.labels(operation="release").inc()
            _LOGGER.warning("Redis unavailable while releasing %s", self._lock_key)

    async def run_once(self, *, reschedule: bool = False) -> JobResult:
        if self._local_lock.locked():
            AVAILABILITY_JOB_RUNS_TOTAL.labels(outcome="skipped").inc()
            raise ProcessingAlreadyRunning("availability processing is already running")

        async with self._local_lock:
            job_id = uuid.uuid4().hex
            if not await self._acquire_shared_lock(job_id):
                AVAILABILITY_JOB_RUNS_TOTAL.labels(outcome="skipped").inc()
                raise ProcessingAlreadyRunning("availability processing is running elsewhere")

            self._current_job_id = job_id
            started = monotonic()
            result = JobResult(job_id=job_id)
            try:
                with _TRACER.start_as_current_span("availability.process_schedules") as span:
                    span.set_attribute("availability.job_id", job_id)
                    _LOGGER.info("Availability processing job %s started", job_id)
                    async with lifespan_session(self._session_factory) as session:
                        scheduler = AvailabilityScheduler(
                            AvailabilityRepository(session),
                            self._notifier,
                            default_timezone=self._default_timezone,
                            clock=self._clock,
                        )
                        summary = await scheduler.process_pending_changes()
                        result.processed = summary.processed
                        result.failed = summary.failed
                        result.errors = summary.errors
                        if reschedule:
                            result.rescheduled = await scheduler.reschedule_all_rules()
                        result.cleaned_up = await scheduler.cleanup_old_schedules(self._retention_days)
                    span.set_attribute("availability.processed", result.processed)
                    span.set_attribute("availability.failed", result.failed)
            except Exception:
                AVAILABILITY_JOB_RUNS_TOTAL.labels(outcome="failed").inc()
                _LOGGER.exception("Availability processing job %s failed", job_id)
                raise
            else:
                AVAILABILITY_JOB_RUNS_TOTAL.labels(outcome="success").inc()
            finally:
                result.duration_seconds = monotonic() - started
                AVAILABILITY_JOB_DURATION_SECONDS.observe(result.duration_seconds)
                self._current_job_id = None
                self._last_run = datetime.now(timezone.utc)
                await self._release_shared_lock(job_id)

            self._last_result = result
            _LOGGER.info(
                "Availability processing job %s finished: processed=%d failed=%d cleaned=%d in %.3fs",
                job_id,
                result.processed,
                result.failed,
                result.cleaned_up,
                result.duration_seconds,
            )
            return result
