"""Shared utilities for the availability service and its tooling."""

from .config import DEFAULT_APP_NAME, DEFAULT_DATABASE_URL, ServiceSettings, get_settings
from .instrumentation import build_app, instrument_app
from .logging import configure_logging
from .database import (
    create_engine,
    create_schema,
    dispose_engines,
    get_session_factory,
    lifespan_session,
    resolve_database_url,
)
from .cache import acquire_lock, close_redis_connections, get_redis_client, release_lock, resolve_redis
from .kafka import KafkaConsumerStub, KafkaProducerStub

__all__ = [
    "ServiceSettings",
    "get_settings",
    "build_app",
    "instrument_app",
    "configure_logging",
    "DEFAULT_APP_NAME",
    "DEFAULT_DATABASE_URL",
    "create_engine",
    "create_schema",
    "dispose_engines",
    "get_session_factory",
    "lifespan_session",
    "resolve_database_url",
    "get_redis_client",
    "resolve_redis",
    "close_redis_connections",
    "acquire_lock",
    "release_lock",
    "KafkaProducerStub",
    "KafkaConsumerStub",
]
