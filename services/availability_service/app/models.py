"""SQLAlchemy models for the availability service."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from .domain import (
    DEFAULT_TIMEZONE,
    AvailabilityState,
    PreOrderSettings,
    Rule,
    RuleType,
    ViewOnlySettings,
    condition_for,
    ensure_utc,
)


class Base(DeclarativeBase):
    """Base class for availability ORM models."""


class AvailabilityRule(Base):
    __tablename__ = "availability_rules"
    __table_args__ = (
        CheckConstraint("priority >= 0 AND priority <= 1000", name="ck_availability_rule_priority"),
        Index("ix_availability_rules_product_active", "product_id", "deleted_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    rule_type: Mapped[str] = mapped_column(String(32), nullable=False)
    state: Mapped[str] = mapped_column(String(32), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    seasonal_config: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    time_restrictions: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    pre_order_settings: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    view_only_settings: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    schedules: Mapped[list[AvailabilitySchedule]] = relationship(
        back_populates="rule",
        lazy="noload",
        passive_deletes=True,
    )

    def to_domain(self, *, default_timezone: str = DEFAULT_TIMEZONE) -> Rule:
        return Rule(
            id=self.id,
            product_id=self.product_id,
            name=self.name,
            description=self.description,
            state=AvailabilityState(self.state),
            condition=condition_for(
                RuleType(self.rule_type),
                seasonal_config=self.seasonal_config,
                time_restrictions=self.time_restrictions,
                default_timezone=default_timezone,
            ),
            priority=self.priority,
            enabled=self.enabled,
            start_date=ensure_utc(self.start_date),
            end_date=ensure_utc(self.end_date),
            pre_order_settings=(
                PreOrderSettings.from_mapping(self.pre_order_settings) if self.pre_order_settings else None
            ),
            view_only_settings=(
                ViewOnlySettings.from_mapping(self.view_only_settings) if self.view_only_settings else None
            ),
            created_at=ensure_utc(self.created_at),
            updated_at=ensure_utc(self.updated_at),
            created_by=self.created_by,
            updated_by=self.updated_by,
            deleted_at=ensure_utc(self.deleted_at),
        )


class AvailabilitySchedule(Base):
    __tablename__ = "availability_schedules"
    __table_args__ = (
        Index("ix_availability_schedules_due", "processed", "scheduled_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rule_id: Mapped[int] = mapped_column(
        ForeignKey("availability_rules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    transition: Mapped[str] = mapped_column(String(64), nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    rule: Mapped[AvailabilityRule] = relationship(back_populates="schedules", lazy="joined")
