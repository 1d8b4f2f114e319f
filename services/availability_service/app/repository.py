"""Persistence helpers for the availability service."""

from __future__ import annotations

import enum
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .domain import Transition, ensure_utc
from .models import AvailabilityRule, AvailabilitySchedule
from .schemas import RuleDraft

_RULE_COLUMNS = frozenset(
    {
        "name",
        "description",
        "rule_type",
        "state",
        "priority",
        "enabled",
        "start_date",
        "end_date",
        "seasonal_config",
        "time_restrictions",
        "pre_order_settings",
        "view_only_settings",
        "updated_by",
    }
)


def _column_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, enum.Enum):
        return value.value
    return value


class AvailabilityRepository:
    """Database access helpers for availability rules and their schedules."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # Rules --------------------------------------------------------------------------------

    async def create_rule(
        self,
        draft: RuleDraft,
        *,
        product_id: str,
        created_by: str | None = None,
    ) -> AvailabilityRule:
        if draft.rule_type is None or draft.state is None:
            raise ValueError("rule type and state are required to store a rule")
        rule = AvailabilityRule(
            product_id=product_id,
            name=draft.name or "",
            description=draft.description,
            rule_type=draft.rule_type.value,
            state=draft.state.value,
            priority=draft.priority,
            enabled=draft.enabled,
            start_date=ensure_utc(draft.start_date),
            end_date=ensure_utc(draft.end_date),
            created_by=created_by,
            updated_by=created_by,
            **draft.config_blocks(),
        )
        self.session.add(rule)
        await self.session.flush()
        await self.session.refresh(rule, attribute_names=["created_at", "updated_at"])
        return rule

    async def get_rule(self, rule_id: int, *, include_deleted: bool = False) -> AvailabilityRule | None:
        stmt = select(AvailabilityRule).where(AvailabilityRule.id == rule_id)
        if not include_deleted:
            stmt = stmt.where(AvailabilityRule.deleted_at.is_(None))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_rules(self, rule_ids: Iterable[int]) -> dict[int, AvailabilityRule]:
        ids = list(rule_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(AvailabilityRule).where(
                AvailabilityRule.id.in_(ids),
                AvailabilityRule.deleted_at.is_(None),
            )
        )
        return {rule.id: rule for rule in result.scalars()}

    def _ordered_rules(self) -> Select[tuple[AvailabilityRule]]:
        return (
            select(AvailabilityRule)
            .where(AvailabilityRule.deleted_at.is_(None))
            .order_by(
                AvailabilityRule.priority.desc(),
                AvailabilityRule.created_at.asc(),
                AvailabilityRule.id.asc(),
            )
        )

    async def list_product_rules(self, product_id: str) -> list[AvailabilityRule]:
        result = await self.session.execute(
            self._ordered_rules().where(AvailabilityRule.product_id == product_id)
        )
        return list(result.scalars())

    async def list_rules_for_products(self, product_ids: Sequence[str]) -> dict[str, list[AvailabilityRule]]:
        grouped: dict[str, list[AvailabilityRule]] = defaultdict(list)
        if not product_ids:
            return {}
        result = await self.session.execute(
            self._ordered_rules().where(AvailabilityRule.product_id.in_(list(product_ids)))
        )
        for rule in result.scalars():
            grouped[rule.product_id].append(rule)
        return {product_id: grouped.get(product_id, []) for product_id in product_ids}

    async def list_active_rules(self) -> list[AvailabilityRule]:
        result = await self.session.execute(
            self._ordered_rules().where(AvailabilityRule.enabled.is_(True))
        )
        return list(result.scalars())

    async def update_rule(self, rule: AvailabilityRule, updates: dict[str, Any]) -> AvailabilityRule:
        for key, value in updates.items():
            if key not in _RULE_COLUMNS:
                continue
            setattr(rule, key, _column_value(value))
        await self.session.flush()
        await self.session.refresh(rule, attribute_names=["updated_at"])
        return rule

    async def soft_delete_rules(self, rule_ids: Sequence[int], *, deleted_by: str | None = None) -> int:
        """Mark rules deleted and drop their schedule entries in the caller's transaction."""

        ids = list(rule_ids)
        if not ids:
            return 0
        now = datetime.now(timezone.utc)
        result = await self.session.execute(
            update(AvailabilityRule)
            .where(AvailabilityRule.id.in_(ids), AvailabilityRule.deleted_at.is_(None))
            .values(deleted_at=now, updated_by=deleted_by, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.execute(delete(AvailabilitySchedule).where(AvailabilitySchedule.rule_id.in_(ids)))
        await self.session.flush()
        return result.rowcount or 0

    async def soft_delete_rule(self, rule: AvailabilityRule, *, deleted_by: str | None = None) -> None:
        await self.soft_delete_rules([rule.id], deleted_by=deleted_by)
        await self.session.refresh(rule, attribute_names=["deleted_at", "updated_at"])

    async def statistics(self) -> dict[str, Any]:
        live = AvailabilityRule.deleted_at.is_(None)
        total = (await self.session.execute(select(func.count(AvailabilityRule.id)).where(live))).scalar_one()
        active = (
            await self.session.execute(
                select(func.count(AvailabilityRule.id)).where(live, AvailabilityRule.enabled.is_(True))
            )
        ).scalar_one()
        by_type = await self.session.execute(
            select(AvailabilityRule.rule_type, func.count(AvailabilityRule.id))
            .where(live)
            .group_by(AvailabilityRule.rule_type)
        )
        by_state = await self.session.execute(
            select(AvailabilityRule.state, func.count(AvailabilityRule.id))
            .where(live)
            .group_by(AvailabilityRule.state)
        )
        return {
            "total_rules": total,
            "active_rules": active,
            "rules_by_type": {rule_type: count for rule_type, count in by_type.all()},
            "rules_by_state": {state: count for state, count in by_state.all()},
        }

    # Schedules ----------------------------------------------------------------------------

    async def replace_schedules(
        self,
        rule_id: int,
        transitions: Sequence[Transition],
    ) -> list[AvailabilitySchedule]:
        """Swap a rule's schedule entries for ``transitions`` within the current transaction."""

        await self.session.execute(delete(AvailabilitySchedule).where(AvailabilitySchedule.rule_id == rule_id))
        entries = [
            AvailabilitySchedule(
                rule_id=rule_id,
                scheduled_at=ensure_utc(transition.at),
                transition=transition.label,
                processed=False,
            )
            for transition in transitions
        ]
        self.session.add_all(entries)
        await self.session.flush()
        return entries

    async def list_rule_schedules(self, rule_id: int) -> list[AvailabilitySchedule]:
        result = await self.session.execute(
            select(AvailabilitySchedule)
            .where(AvailabilitySchedule.rule_id == rule_id)
            .order_by(AvailabilitySchedule.scheduled_at.asc(), AvailabilitySchedule.id.asc())
        )
        return list(result.scalars())

    async def list_due_schedules(self, now: datetime) -> list[AvailabilitySchedule]:
        result = await self.session.execute(
            select(AvailabilitySchedule)
            .where(
                AvailabilitySchedule.processed.is_(False),
                AvailabilitySchedule.scheduled_at <= ensure_utc(now),
            )
            .order_by(AvailabilitySchedule.scheduled_at.asc(), AvailabilitySchedule.id.asc())
        )
        return list(result.scalars())

    async def mark_processed(
        self,
        entry: AvailabilitySchedule,
        *,
        processed_at: datetime,
        error_message: str | None = None,
    ) -> AvailabilitySchedule:
        entry.processed = True
        entry.processed_at = ensure_utc(processed_at)
        entry.error_message = error_message
        await self.session.flush()
        return entry

    async def delete_processed_before(self, cutoff: datetime) -> int:
        result = await self.session.execute(
            delete(AvailabilitySchedule).where(
                AvailabilitySchedule.processed.is_(True),
                AvailabilitySchedule.processed_at < ensure_utc(cutoff),
            )
        )
        await self.session.flush()
        return result.rowcount or 0

    async def list_upcoming(self, product_id: str, *, now: datetime, until: datetime) -> list[AvailabilitySchedule]:
        result = await self.session.execute(
            select(AvailabilitySchedule)
            .join(AvailabilitySchedule.rule)
            .where(
                AvailabilityRule.product_id == product_id,
                AvailabilityRule.deleted_at.is_(None),
                AvailabilitySchedule.processed.is_(False),
                AvailabilitySchedule.scheduled_at > ensure_utc(now),
                AvailabilitySchedule.scheduled_at <= ensure_utc(until),
            )
            .order_by(AvailabilitySchedule.scheduled_at.asc(), AvailabilitySchedule.id.asc())
        )
        return list(result.scalars())
