"""Event publishing helpers for the availability service."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from services.common.kafka import KafkaProducerStub

STATE_CHANGED_TOPIC = "catalog.availability.changed.v1"


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return dt.isoformat()


class AvailabilityEventPublisher:
    """Publishes availability transitions for downstream catalog consumers."""

    def __init__(self, producer: KafkaProducerStub | None) -> None:
        self._producer = producer

    async def _emit(self, topic: str, payload: dict[str, Any], *, key: str | None = None) -> None:
        if self._producer is None:
            return
        envelope = {
            "eventType": topic,
            "occurredAt": datetime.now(timezone.utc).isoformat(),
            **payload,
        }
        await self._producer.send(topic, envelope, key=key)

    async def notify_state_change(
        self,
        *,
        product_id: str,
        rule_id: int,
        transition: str,
        scheduled_at: datetime,
    ) -> None:
        await self._emit(
            STATE_CHANGED_TOPIC,
            {
                "productId": product_id,
                "ruleId": rule_id,
                "transition": transition,
                "scheduledAt": _iso(scheduled_at),
            },
            key=product_id,
        )
