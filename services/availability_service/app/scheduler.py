"""Materialization and processing of availability schedule entries."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Protocol

from .domain import DEFAULT_TIMEZONE, Rule, Transition, ensure_utc
from .engine import date_transitions, seasonal_transitions
from .metrics import AVAILABILITY_SCHEDULES_CREATED_TOTAL, AVAILABILITY_SCHEDULES_PROCESSED_TOTAL, transition_kind
from .models import AvailabilityRule, AvailabilitySchedule
from .repository import AvailabilityRepository

_LOGGER = logging.getLogger(__name__)


class StateChangeNotifier(Protocol):
    async def notify_state_change(
        self,
        *,
        product_id: str,
        rule_id: int,
        transition: str,
        scheduled_at: datetime,
    ) -> None: ...


@dataclass(slots=True)
class ProcessingSummary:
    processed: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_schedule_entries(rule: Rule, now: datetime) -> list[Transition]:
    """Transitions to persist for ``rule``, ordered by instant.

    Only instants strictly after ``now`` are kept, so re-materializing a rule
    never resurrects a transition that has already fired. Inactive rules
    yield none.
    """

    if not rule.is_active:
        return []
    now = ensure_utc(now)
    transitions = [transition for transition in date_transitions(rule) if transition.at > now]
    transitions.extend(seasonal_transitions(rule, now))
    return sorted(transitions, key=lambda transition: transition.at)


class AvailabilityScheduler:
    """Keeps schedule entries in step with rules and acts on them when due."""

    def __init__(
        self,
        repository: AvailabilityRepository,
        notifier: StateChangeNotifier | None = None,
        *,
        default_timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.notifier = notifier
        self.default_timezone = default_timezone
        self._clock = clock or _utcnow

    def now(self) -> datetime:
        return self._clock()

    async def schedule_rule_changes(self, rule: AvailabilityRule) -> list[AvailabilitySchedule]:
        domain_rule = rule.to_domain(default_timezone=self.default_timezone)
        transitions = build_schedule_entries(domain_rule, self.now())
        entries = await self.repository.replace_schedules(rule.id, transitions)
        for transition in transitions:
            AVAILABILITY_SCHEDULES_CREATED_TOTAL.labels(kind=transition_kind(transition.label)).inc()
        _LOGGER.debug("Materialized %d schedule entries for rule %s", len(entries), rule.id)
        return entries

    async def process_pending_changes(self) -> ProcessingSummary:
        """Act on every due entry once, oldest first.

        Entries are marked processed whether or not the notification succeeds;
        a failed notification is recorded on the entry and never retried. Each
        mark runs in its own savepoint, so an entry that cannot be written is
        reported and the rest of the batch still goes through.
        """

        now = self.now()
        summary = ProcessingSummary()
        due = await self.repository.list_due_schedules(now)
        for entry in due:
            entry_id = entry.id
            transition = entry.transition
            error_message: str | None = None
            try:
                if self.notifier is not None:
                    await self.notifier.notify_state_change(
                        product_id=entry.rule.product_id,
                        rule_id=entry.rule_id,
                        transition=transition,
                        scheduled_at=entry.scheduled_at,
                    )
            except Exception as exc:
                error_message = str(exc) or exc.__class__.__name__
                _LOGGER.warning(
                    "Availability notification failed for schedule %s (%s): %s",
                    entry_id,
                    transition,
                    error_message,
                )
            try:
                async with self.repository.session.begin_nested():
                    await self.repository.mark_processed(entry, processed_at=now, error_message=error_message)
            except Exception as exc:
                error_message = f"could not record processing: {str(exc) or exc.__class__.__name__}"
                _LOGGER.exception("Failed to mark schedule %s (%s) processed", entry_id, transition)
            if error_message is None:
                summary.processed += 1
                AVAILABILITY_SCHEDULES_PROCESSED_TOTAL.labels(outcome="success").inc()
            else:
                summary.failed += 1
                summary.errors.append(f"Schedule {entry_id}: {error_message}")
                AVAILABILITY_SCHEDULES_PROCESSED_TOTAL.labels(outcome="failed").inc()
        if due:
            _LOGGER.info(
                "Processed %d availability schedule entries (%d failed)",
                summary.processed + summary.failed,
                summary.failed,
            )
        return summary

    async def reschedule_all_rules(self) -> int:
        rules = await self.repository.list_active_rules()
        for rule in rules:
            await self.schedule_rule_changes(rule)
        _LOGGER.info("Rescheduled %d availability rules", len(rules))
        return len(rules)

    async def cleanup_old_schedules(self, days_old: int) -> int:
        cutoff = self.now() - timedelta(days=days_old)
        deleted = await self.repository.delete_processed_before(cutoff)
        if deleted:
            _LOGGER.info("Removed %d processed schedule entries older than %s", deleted, cutoff.isoformat())
        return deleted

    async def get_upcoming_changes(self, product_id: str, horizon_days: int) -> list[AvailabilitySchedule]:
        now = self.now()
        return await self.repository.list_upcoming(
            product_id,
            now=now,
            until=now + timedelta(days=horizon_days),
        )
