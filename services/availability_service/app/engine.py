"""Availability rule evaluation.

Every function here is a pure computation over a rule set and an instant. The
only side effects are log lines and Prometheus counters.
"""

from __future__ import annotations

import asyncio
import calendar
import logging
import sys
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from .domain import (
    AvailabilityState,
    CustomCondition,
    DateRangeCondition,
    Evaluation,
    InventoryCondition,
    NextStateChange,
    Rule,
    RuleConflict,
    SeasonalWindow,
    TimeWindow,
    Transition,
    ensure_utc,
    minutes_since_midnight,
)
from .metrics import AVAILABILITY_EVALUATION_FALLBACK_TOTAL, AVAILABILITY_EVALUATIONS_TOTAL

_LOGGER = logging.getLogger(__name__)

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def _priority_order(rule: Rule) -> tuple[int, datetime, int]:
    # Equal priorities resolve to the earliest created rule, then the lowest id.
    created_at = ensure_utc(rule.created_at) or _FAR_FUTURE
    rule_id = rule.id if rule.id is not None else sys.maxsize
    return (-rule.priority, created_at, rule_id)


def active_rules(rules: Iterable[Rule]) -> list[Rule]:
    """Enabled, non-deleted rules ordered from highest to lowest priority."""

    return sorted((rule for rule in rules if rule.is_active), key=_priority_order)


def _local(now: datetime, tz_name: str) -> datetime:
    return now.astimezone(ZoneInfo(tz_name))


def season_date(year: int, month: int, day: int) -> date:
    """Calendar date for a month/day pair; Feb 29 falls back to Feb 28 outside leap years."""

    if month == 2 and day == 29 and not calendar.isleap(year):
        return date(year, 2, 28)
    return date(year, month, day)


def is_date_range_applicable(rule: Rule, now: datetime) -> bool:
    start = ensure_utc(rule.start_date)
    end = ensure_utc(rule.end_date)
    if start is not None and now < start:
        return False
    if end is not None and now > end:
        return False
    return True


def is_seasonal_applicable(window: SeasonalWindow, now: datetime) -> bool:
    today = _local(now, window.timezone).date()
    start = season_date(today.year, window.start_month, window.start_day)
    end = season_date(today.year, window.end_month, window.end_day)
    if start <= end:
        return start <= today <= end
    return today >= start or today <= end


def is_time_window_applicable(window: TimeWindow, now: datetime) -> bool:
    local_now = _local(now, window.timezone)
    weekday = local_now.isoweekday() % 7
    if weekday not in window.days_of_week:
        return False
    current = local_now.hour * 60 + local_now.minute
    start = minutes_since_midnight(window.start_time)
    end = minutes_since_midnight(window.end_time)
    if start <= end:
        return start <= current <= end
    return current >= start or current <= end


def is_rule_applicable(rule: Rule, now: datetime) -> bool:
    """Return True when the rule's temporal condition holds at ``now``."""

    condition = rule.condition
    if isinstance(condition, DateRangeCondition):
        return is_date_range_applicable(rule, now)
    if isinstance(condition, SeasonalWindow):
        return is_seasonal_applicable(condition, now)
    if isinstance(condition, TimeWindow):
        return is_time_window_applicable(condition, now)
    if isinstance(condition, (CustomCondition, InventoryCondition)):
        return True
    return False


def _local_midnight(day: date, tz_name: str) -> datetime:
    return datetime.combine(day, time.min, tzinfo=ZoneInfo(tz_name)).astimezone(timezone.utc)


def seasonal_transitions(rule: Rule, now: datetime) -> list[Transition]:
    """Season start/end instants for the current and next local year that lie after ``now``.

    A season starts at local midnight of its first day and ends at local midnight
    after its last day.
    """

    window = rule.condition
    if not isinstance(window, SeasonalWindow):
        return []
    now = ensure_utc(now)
    current_year = _local(now, window.timezone).year
    transitions: list[Transition] = []
    for year in (current_year, current_year + 1):
        start = _local_midnight(season_date(year, window.start_month, window.start_day), window.timezone)
        end = _local_midnight(
            season_date(year, window.end_month, window.end_day) + timedelta(days=1),
            window.timezone,
        )
        if start > now:
            transitions.append(
                Transition(at=start, new_state=rule.state, label=f"seasonal_start_{rule.state.value}", rule=rule)
            )
        if end > now:
            transitions.append(
                Transition(
                    at=end,
                    new_state=AvailabilityState.AVAILABLE,
                    label=f"seasonal_end_{rule.state.value}",
                    rule=rule,
                )
            )
    return transitions


def date_transitions(rule: Rule) -> list[Transition]:
    """Activation/deactivation instants from the rule's fixed start and end dates."""

    transitions: list[Transition] = []
    start = ensure_utc(rule.start_date)
    end = ensure_utc(rule.end_date)
    if start is not None:
        transitions.append(
            Transition(at=start, new_state=rule.state, label=f"activate_{rule.state.value}", rule=rule)
        )
    if end is not None:
        transitions.append(
            Transition(
                at=end,
                new_state=AvailabilityState.AVAILABLE,
                label=f"deactivate_{rule.state.value}",
                rule=rule,
            )
        )
    return transitions


def calculate_next_state_change(rules: Sequence[Rule], now: datetime) -> NextStateChange | None:
    """Earliest transition strictly after ``now`` across the given rules."""

    upcoming: list[Transition] = []
    for rule in rules:
        upcoming.extend(transition for transition in date_transitions(rule) if transition.at > now)
        upcoming.extend(seasonal_transitions(rule, now))
    if not upcoming:
        return None
    earliest = min(upcoming, key=lambda transition: transition.at)
    return NextStateChange(date=earliest.at, new_state=earliest.new_state, rule=earliest.rule)


def fallback_evaluation(product_id: str, computed_at: datetime) -> Evaluation:
    """Unrestricted result used whenever a product's rules cannot be evaluated."""

    AVAILABILITY_EVALUATION_FALLBACK_TOTAL.inc()
    return Evaluation(
        product_id=product_id,
        current_state=AvailabilityState.AVAILABLE,
        applied_rules=[],
        computed_at=computed_at,
    )


def evaluate_product(product_id: str, rules: Iterable[Rule], now: datetime | None = None) -> Evaluation:
    """Resolve the availability state of one product at ``now``.

    Never raises. An internal failure is logged and yields ``AVAILABLE`` with no
    applied rules so a purchase flow is never blocked by the evaluator itself.
    """

    computed_at = now if now is not None else datetime.now(timezone.utc)
    try:
        computed_at = ensure_utc(computed_at)
        candidates = active_rules(rules)
        applied = [rule for rule in candidates if is_rule_applicable(rule, computed_at)]
        current_state = applied[0].state if applied else AvailabilityState.AVAILABLE
        next_change = calculate_next_state_change(candidates, computed_at)
    except Exception:
        _LOGGER.exception("Availability evaluation failed for product %s; falling back to AVAILABLE", product_id)
        return fallback_evaluation(product_id, computed_at)

    AVAILABILITY_EVALUATIONS_TOTAL.labels(state=current_state.value).inc()
    _LOGGER.debug(
        "Evaluated product %s: state=%s applied=%d next_change=%s",
        product_id,
        current_state.value,
        len(applied),
        next_change.date.isoformat() if next_change else None,
    )
    return Evaluation(
        product_id=product_id,
        current_state=current_state,
        applied_rules=applied,
        computed_at=computed_at,
        next_state_change=next_change,
    )


async def evaluate_multiple_products(
    product_rules: Mapping[str, Sequence[Rule]],
    now: datetime | None = None,
) -> dict[str, Evaluation]:
    """Evaluate several products concurrently against the same instant."""

    computed_at = now if now is not None else datetime.now(timezone.utc)
    items = list(product_rules.items())
    evaluations = await asyncio.gather(
        *(asyncio.to_thread(evaluate_product, product_id, rules, computed_at) for product_id, rules in items)
    )
    return {product_id: evaluation for (product_id, _), evaluation in zip(items, evaluations)}


def has_date_overlap(rule1: Rule, rule2: Rule) -> bool:
    """True when both rules have complete date ranges that intersect."""

    start1, end1 = ensure_utc(rule1.start_date), ensure_utc(rule1.end_date)
    start2, end2 = ensure_utc(rule2.start_date), ensure_utc(rule2.end_date)
    if start1 is None or end1 is None or start2 is None or end2 is None:
        return False
    return start1 <= end2 and start2 <= end1


def detect_rule_conflicts(rules: Sequence[Rule]) -> list[RuleConflict]:
    """Pairwise priority and date-overlap conflicts among non-deleted rules."""

    candidates = [rule for rule in rules if not rule.is_deleted]
    conflicts: list[RuleConflict] = []
    for index, rule1 in enumerate(candidates):
        for rule2 in candidates[index + 1 :]:
            if rule1.enabled and rule2.enabled and rule1.priority == rule2.priority:
                conflicts.append(RuleConflict(rule1=rule1, rule2=rule2, conflict_type="priority"))
            if rule1.state != rule2.state and has_date_overlap(rule1, rule2):
                conflicts.append(RuleConflict(rule1=rule1, rule2=rule2, conflict_type="date_overlap"))
    return conflicts
