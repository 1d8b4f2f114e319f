from contextlib import asynccontextmanager

from fastapi import FastAPI

from services.common import (
    DEFAULT_APP_NAME,
    DEFAULT_DATABASE_URL,
    ServiceSettings,
    build_app,
    close_redis_connections,
    configure_logging,
    create_schema,
    dispose_engines,
    get_session_factory,
    resolve_database_url,
    resolve_redis,
)
from services.common.kafka import KafkaProducerStub

from .api.availability import router as availability_router
from .api.health import router as health_router
from .api.rules import router as rules_router
from .api.schedules import router as schedules_router
from .events import AvailabilityEventPublisher
from .jobs import AvailabilityJobRunner
from .models import Base

SERVICE_NAME = "Availability Service"


def create_app(settings: ServiceSettings | None = None) -> FastAPI:
    """Create the Availability Service FastAPI application."""

    resolved_settings = settings or ServiceSettings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url)
    redis_client = resolve_redis(resolved_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        kafka_producer: KafkaProducerStub | None = None
        app.state.session_factory = session_factory
        try:
            await create_schema(database_url, Base.metadata)
            kafka_producer = KafkaProducerStub(bootstrap_servers=resolved_settings.kafka_bootstrap_servers)
            await kafka_producer.connect()
            event_publisher = AvailabilityEventPublisher(kafka_producer)
            app.state.kafka_producer = kafka_producer
            app.state.event_publisher = event_publisher
            app.state.job_runner = AvailabilityJobRunner(
                session_factory,
                redis_client=redis_client,
                notifier=event_publisher,
                default_timezone=resolved_settings.availability_default_timezone,
                retention_days=resolved_settings.availability_schedule_retention_days,
                lock_ttl_seconds=resolved_settings.availability_job_lock_ttl_seconds,
            )
            yield
        finally:
            app.state.session_factory = None  # type: ignore[assignment]
            app.state.event_publisher = None
            app.state.kafka_producer = None
            app.state.job_runner = None
            if kafka_producer is not None:
                await kafka_producer.close()
            await dispose_engines()
            if redis_client is not None:
                await close_redis_connections()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(rules_router)
    app.include_router(availability_router)
    app.include_router(schedules_router)
    return app


app = create_app()
