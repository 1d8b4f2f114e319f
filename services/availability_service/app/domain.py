"""Domain types shared by the availability engine, validator and scheduler."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, ClassVar, Literal, Mapping, Union

DEFAULT_TIMEZONE = "America/Los_Angeles"


class AvailabilityState(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    PRE_ORDER = "PRE_ORDER"
    VIEW_ONLY = "VIEW_ONLY"
    HIDDEN = "HIDDEN"
    COMING_SOON = "COMING_SOON"
    SOLD_OUT = "SOLD_OUT"
    RESTRICTED = "RESTRICTED"


class RuleType(str, enum.Enum):
    DATE_RANGE = "DATE_RANGE"
    SEASONAL = "SEASONAL"
    TIME_BASED = "TIME_BASED"
    CUSTOM = "CUSTOM"
    INVENTORY = "INVENTORY"


def ensure_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _pick(data: Mapping[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    if camel in data:
        return data[camel]
    return data.get(snake, default)


# Temporal conditions ----------------------------------------------------------------------
# A rule carries exactly one condition; its rule type is derived from the condition class.


@dataclass(frozen=True, slots=True)
class DateRangeCondition:
    rule_type: ClassVar[RuleType] = RuleType.DATE_RANGE


@dataclass(frozen=True, slots=True)
class CustomCondition:
    rule_type: ClassVar[RuleType] = RuleType.CUSTOM


@dataclass(frozen=True, slots=True)
class InventoryCondition:
    rule_type: ClassVar[RuleType] = RuleType.INVENTORY


@dataclass(frozen=True, slots=True)
class SeasonalWindow:
    """Recurring yearly window between two month/day pairs, inclusive of both days."""

    rule_type: ClassVar[RuleType] = RuleType.SEASONAL

    start_month: int
    start_day: int
    end_month: int
    end_day: int
    timezone: str = DEFAULT_TIMEZONE
    yearly: bool = True

    @property
    def wraps_year(self) -> bool:
        return (self.start_month, self.start_day) > (self.end_month, self.end_day)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, default_timezone: str = DEFAULT_TIMEZONE) -> SeasonalWindow:
        return cls(
            start_month=int(_pick(data, "startMonth", "start_month")),
            start_day=int(_pick(data, "startDay", "start_day")),
            end_month=int(_pick(data, "endMonth", "end_month")),
            end_day=int(_pick(data, "endDay", "end_day")),
            timezone=_pick(data, "timezone", "timezone") or default_timezone,
            yearly=bool(_pick(data, "yearly", "yearly", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "startMonth": self.start_month,
            "startDay": self.start_day,
            "endMonth": self.end_month,
            "endDay": self.end_day,
            "timezone": self.timezone,
            "yearly": self.yearly,
        }


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """Recurring weekly time-of-day window; days use 0=Sunday..6=Saturday."""

    rule_type: ClassVar[RuleType] = RuleType.TIME_BASED

    days_of_week: frozenset[int]
    start_time: str
    end_time: str
    timezone: str = DEFAULT_TIMEZONE

    @property
    def wraps_midnight(self) -> bool:
        return minutes_since_midnight(self.start_time) > minutes_since_midnight(self.end_time)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, default_timezone: str = DEFAULT_TIMEZONE) -> TimeWindow:
        return cls(
            days_of_week=frozenset(int(day) for day in _pick(data, "daysOfWeek", "days_of_week") or ()),
            start_time=str(_pick(data, "startTime", "start_time")),
            end_time=str(_pick(data, "endTime", "end_time")),
            timezone=_pick(data, "timezone", "timezone") or default_timezone,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "daysOfWeek": sorted(self.days_of_week),
            "startTime": self.start_time,
            "endTime": self.end_time,
            "timezone": self.timezone,
        }


RuleCondition = Union[DateRangeCondition, SeasonalWindow, TimeWindow, CustomCondition, InventoryCondition]


def minutes_since_midnight(value: str) -> int:
    hours, minutes = value.split(":", 1)
    return int(hours) * 60 + int(minutes)


def condition_for(
    rule_type: RuleType,
    *,
    seasonal_config: Mapping[str, Any] | None = None,
    time_restrictions: Mapping[str, Any] | None = None,
    default_timezone: str = DEFAULT_TIMEZONE,
) -> RuleCondition:
    """Build the condition matching ``rule_type`` from its stored config block."""

    if rule_type is RuleType.SEASONAL:
        if seasonal_config is None:
            raise ValueError("seasonal rule without seasonal config")
        return SeasonalWindow.from_mapping(seasonal_config, default_timezone=default_timezone)
    if rule_type is RuleType.TIME_BASED:
        if time_restrictions is None:
            raise ValueError("time-based rule without time restrictions")
        return TimeWindow.from_mapping(time_restrictions, default_timezone=default_timezone)
    if rule_type is RuleType.CUSTOM:
        return CustomCondition()
    if rule_type is RuleType.INVENTORY:
        return InventoryCondition()
    return DateRangeCondition()


# Presentation settings --------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PreOrderSettings:
    message: str | None = None
    expected_delivery_date: datetime | None = None
    deposit_required: bool = False
    deposit_amount: Decimal | None = None
    max_quantity: int | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> PreOrderSettings:
        delivery = _pick(data, "expectedDeliveryDate", "expected_delivery_date")
        if isinstance(delivery, str):
            delivery = datetime.fromisoformat(delivery)
        deposit = _pick(data, "depositAmount", "deposit_amount")
        max_quantity = _pick(data, "maxQuantity", "max_quantity")
        return cls(
            message=_pick(data, "message", "message"),
            expected_delivery_date=ensure_utc(delivery),
            deposit_required=bool(_pick(data, "depositRequired", "deposit_required", False)),
            deposit_amount=Decimal(str(deposit)) if deposit is not None else None,
            max_quantity=int(max_quantity) if max_quantity is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        delivery = ensure_utc(self.expected_delivery_date)
        return {
            "message": self.message,
            "expectedDeliveryDate": delivery.isoformat() if delivery else None,
            "depositRequired": self.deposit_required,
            "depositAmount": str(self.deposit_amount) if self.deposit_amount is not None else None,
            "maxQuantity": self.max_quantity,
        }


@dataclass(frozen=True, slots=True)
class ViewOnlySettings:
    message: str | None = None
    show_price: bool = True
    allow_wishlist: bool = False
    notify_when_available: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ViewOnlySettings:
        return cls(
            message=_pick(data, "message", "message"),
            show_price=bool(_pick(data, "showPrice", "show_price", True)),
            allow_wishlist=bool(_pick(data, "allowWishlist", "allow_wishlist", False)),
            notify_when_available=bool(_pick(data, "notifyWhenAvailable", "notify_when_available", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "showPrice": self.show_price,
            "allowWishlist": self.allow_wishlist,
            "notifyWhenAvailable": self.notify_when_available,
        }


# Rules and evaluation results -------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Rule:
    """Immutable snapshot of an availability rule as seen by the engine."""

    product_id: str
    name: str
    state: AvailabilityState
    condition: RuleCondition = field(default_factory=DateRangeCondition)
    priority: int = 0
    enabled: bool = True
    start_date: datetime | None = None
    end_date: datetime | None = None
    pre_order_settings: PreOrderSettings | None = None
    view_only_settings: ViewOnlySettings | None = None
    id: int | None = None
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None
    updated_by: str | None = None
    deleted_at: datetime | None = None

    @property
    def rule_type(self) -> RuleType:
        return self.condition.rule_type

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_active(self) -> bool:
        return self.enabled and not self.is_deleted


@dataclass(frozen=True, slots=True)
class Transition:
    """A concrete instant at which a rule's effect changes."""

    at: datetime
    new_state: AvailabilityState
    label: str
    rule: Rule


@dataclass(frozen=True, slots=True)
class NextStateChange:
    date: datetime
    new_state: AvailabilityState
    rule: Rule


@dataclass(slots=True)
class Evaluation:
    product_id: str
    current_state: AvailabilityState
    applied_rules: list[Rule]
    computed_at: datetime
    next_state_change: NextStateChange | None = None


ConflictType = Literal["priority", "date_overlap"]


@dataclass(frozen=True, slots=True)
class RuleConflict:
    rule1: Rule
    rule2: Rule
    conflict_type: ConflictType
