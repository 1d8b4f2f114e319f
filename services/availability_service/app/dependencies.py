"""Dependency helpers for the availability service."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import lifespan_session

from .domain import DEFAULT_TIMEZONE
from .jobs import AvailabilityJobRunner
from .repository import AvailabilityRepository
from .scheduler import AvailabilityScheduler
from .services import AvailabilityService


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with lifespan_session(session_factory) as session:
        yield session


def get_repository(session: AsyncSession = Depends(get_session)) -> AvailabilityRepository:
    return AvailabilityRepository(session)


def get_event_publisher(request: Request) -> Any:
    return getattr(request.app.state, "event_publisher", None)


def get_default_timezone(request: Request) -> str:
    settings = getattr(request.app.state, "settings", None)
    return getattr(settings, "availability_default_timezone", None) or DEFAULT_TIMEZONE


def get_scheduler(
    repository: AvailabilityRepository = Depends(get_repository),
    event_publisher: Any = Depends(get_event_publisher),
    default_timezone: str = Depends(get_default_timezone),
) -> AvailabilityScheduler:
    return AvailabilityScheduler(repository, event_publisher, default_timezone=default_timezone)


def get_availability_service(
    repository: AvailabilityRepository = Depends(get_repository),
    scheduler: AvailabilityScheduler = Depends(get_scheduler),
    default_timezone: str = Depends(get_default_timezone),
) -> AvailabilityService:
    return AvailabilityService(repository, scheduler, default_timezone=default_timezone)


def get_job_runner(request: Request) -> AvailabilityJobRunner:
    return request.app.state.job_runner
