"""Service layer for availability rule operations."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from . import engine
from .domain import DEFAULT_TIMEZONE, Evaluation, Rule, RuleConflict, ensure_utc
from .metrics import AVAILABILITY_RULE_VALIDATION_FAILURES_TOTAL
from .models import AvailabilityRule
from .repository import AvailabilityRepository
from .scheduler import AvailabilityScheduler
from .schemas import BulkAvailabilityRequest, BulkRuleEntry, RuleDraft, RuleUpdate
from .validators import format_validation_errors, validate_bulk_request, validate_rule

_LOGGER = logging.getLogger(__name__)


class RuleValidationError(Exception):
    """Raised when a rule payload fails validation."""

    def __init__(self, errors: Sequence[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = list(errors)


class RuleNotFound(Exception):
    """Raised when a rule does not exist or has been deleted."""

    def __init__(self, rule_id: int) -> None:
        super().__init__(f"Rule {rule_id} not found")
        self.rule_id = rule_id


def draft_from_model(rule: AvailabilityRule) -> RuleDraft:
    return RuleDraft.model_validate(
        {
            "product_id": rule.product_id,
            "name": rule.name,
            "description": rule.description,
            "rule_type": rule.rule_type,
            "state": rule.state,
            "priority": rule.priority,
            "enabled": rule.enabled,
            "start_date": ensure_utc(rule.start_date),
            "end_date": ensure_utc(rule.end_date),
            "seasonal_config": rule.seasonal_config,
            "time_restrictions": rule.time_restrictions,
            "pre_order_settings": rule.pre_order_settings,
            "view_only_settings": rule.view_only_settings,
        }
    )


def _merge(rule: AvailabilityRule, changes: dict[str, Any]) -> RuleDraft:
    merged = draft_from_model(rule).model_dump()
    merged.update(changes)
    try:
        return RuleDraft.model_validate(merged)
    except ValidationError as exc:
        raise RuleValidationError(format_validation_errors(exc)) from exc


def _column_updates(draft: RuleDraft, *, actor: str | None) -> dict[str, Any]:
    return {
        "name": draft.name,
        "description": draft.description,
        "rule_type": draft.rule_type,
        "state": draft.state,
        "priority": draft.priority,
        "enabled": draft.enabled,
        "start_date": draft.start_date,
        "end_date": draft.end_date,
        "updated_by": actor,
        **draft.config_blocks(),
    }


class AvailabilityService:
    """High-level orchestration for availability rules."""

    def __init__(
        self,
        repository: AvailabilityRepository,
        scheduler: AvailabilityScheduler,
        *,
        default_timezone: str = DEFAULT_TIMEZONE,
    ) -> None:
        self.repository = repository
        self.scheduler = scheduler
        self.default_timezone = default_timezone

    def _record_rejection(self, operation: str, errors: Sequence[str]) -> None:
        AVAILABILITY_RULE_VALIDATION_FAILURES_TOTAL.labels(operation=operation).inc()
        _LOGGER.info("Rejected availability rule %s: %s", operation, "; ".join(errors))

    def _reject(self, operation: str, errors: Sequence[str]) -> None:
        if not errors:
            return
        self._record_rejection(operation, errors)
        raise RuleValidationError(errors)

    def to_domain(self, rule: AvailabilityRule) -> Rule:
        return rule.to_domain(default_timezone=self.default_timezone)

    async def get_rule(self, rule_id: int) -> AvailabilityRule:
        rule = await self.repository.get_rule(rule_id)
        if rule is None:
            raise RuleNotFound(rule_id)
        return rule

    async def list_product_rules(self, product_id: str) -> list[AvailabilityRule]:
        return await self.repository.list_product_rules(product_id)

    async def create_rule(
        self,
        product_id: str,
        draft: RuleDraft,
        *,
        actor: str | None = None,
    ) -> AvailabilityRule:
        result = validate_rule(draft, product_id, now=self.scheduler.now())
        self._reject("create", result.errors)
        rule = await self.repository.create_rule(draft, product_id=product_id, created_by=actor)
        await self.scheduler.schedule_rule_changes(rule)
        _LOGGER.info("Created availability rule %s for product %s", rule.id, product_id)
        return rule

    async def update_rule(
        self,
        rule_id: int,
        payload: RuleUpdate,
        *,
        actor: str | None = None,
    ) -> AvailabilityRule:
        rule = await self.get_rule(rule_id)
        changes = payload.model_dump(exclude_unset=True)
        try:
            merged = _merge(rule, changes)
        except RuleValidationError as exc:
            self._record_rejection("update", exc.errors)
            raise
        result = validate_rule(
            merged,
            rule.product_id,
            skip_future_date_check=set(changes) == {"enabled"},
            now=self.scheduler.now(),
        )
        self._reject("update", result.errors)
        updated = await self.repository.update_rule(rule, _column_updates(merged, actor=actor))
        await self.scheduler.schedule_rule_changes(updated)
        _LOGGER.info("Updated availability rule %s", rule_id)
        return updated

    async def delete_rule(self, rule_id: int, *, actor: str | None = None) -> None:
        rule = await self.get_rule(rule_id)
        await self.repository.soft_delete_rule(rule, deleted_by=actor)
        _LOGGER.info("Deleted availability rule %s", rule_id)

    async def bulk_update(
        self,
        request: BulkAvailabilityRequest,
        *,
        actor: str | None = None,
    ) -> tuple[list[AvailabilityRule], int]:
        """Apply a bulk create, update or delete; every write shares the caller's transaction.

        All payloads are validated before the first write so an invalid entry
        leaves the store untouched.
        """

        self._reject("bulk", validate_bulk_request(request).errors)
        product_ids = request.product_ids or []
        entries = request.rules or []
        if request.operation == "create":
            return await self._bulk_create(product_ids, entries, actor=actor), 0
        if request.operation == "update":
            return await self._bulk_modify(product_ids, entries, actor=actor), 0
        return [], await self._bulk_delete(entries, actor=actor)

    async def _bulk_create(
        self,
        product_ids: Sequence[str],
        entries: Sequence[BulkRuleEntry],
        *,
        actor: str | None,
    ) -> list[AvailabilityRule]:
        now = self.scheduler.now()
        drafts: list[tuple[str, RuleDraft]] = []
        errors: list[str] = []
        for product_id in product_ids:
            for index, entry in enumerate(entries, start=1):
                draft = RuleDraft.model_validate(entry.model_dump(exclude={"id", "product_id"}))
                result = validate_rule(draft, product_id, now=now)
                errors.extend(f"Product {product_id}, rule {index}: {error}" for error in result.errors)
                drafts.append((product_id, draft))
        self._reject("bulk", errors)
        created: list[AvailabilityRule] = []
        for product_id, draft in drafts:
            rule = await self.repository.create_rule(draft, product_id=product_id, created_by=actor)
            await self.scheduler.schedule_rule_changes(rule)
            created.append(rule)
        _LOGGER.info("Bulk created %d availability rules across %d products", len(created), len(product_ids))
        return created

    async def _bulk_modify(
        self,
        product_ids: Sequence[str],
        entries: Sequence[BulkRuleEntry],
        *,
        actor: str | None,
    ) -> list[AvailabilityRule]:
        now = self.scheduler.now()
        existing = await self.repository.get_rules(entry.id for entry in entries if entry.id is not None)
        allowed_products = set(product_ids)
        pending: list[tuple[AvailabilityRule, RuleDraft]] = []
        errors: list[str] = []
        for index, entry in enumerate(entries, start=1):
            if entry.id is None:
                errors.append(f"Rule {index}: id is required for update")
                continue
            rule = existing.get(entry.id)
            if rule is None:
                errors.append(f"Rule {entry.id} not found")
                continue
            if rule.product_id not in allowed_products:
                errors.append(f"Rule {entry.id} does not belong to the requested products")
                continue
            changes = entry.model_dump(exclude_unset=True, exclude={"id", "product_id"})
            try:
                merged = _merge(rule, changes)
            except RuleValidationError as exc:
                errors.extend(f"Rule {entry.id}: {error}" for error in exc.errors)
                continue
            result = validate_rule(
                merged,
                rule.product_id,
                skip_future_date_check=set(changes) == {"enabled"},
                now=now,
            )
            errors.extend(f"Rule {entry.id}: {error}" for error in result.errors)
            pending.append((rule, merged))
        self._reject("bulk", errors)
        updated: list[AvailabilityRule] = []
        for rule, merged in pending:
            saved = await self.repository.update_rule(rule, _column_updates(merged, actor=actor))
            await self.scheduler.schedule_rule_changes(saved)
            updated.append(saved)
        _LOGGER.info("Bulk updated %d availability rules", len(updated))
        return updated

    async def _bulk_delete(self, entries: Sequence[BulkRuleEntry], *, actor: str | None) -> int:
        rule_ids = [entry.id for entry in entries if entry.id is not None]
        existing = await self.repository.get_rules(rule_ids)
        missing = [rule_id for rule_id in rule_ids if rule_id not in existing]
        if missing:
            raise RuleNotFound(missing[0])
        deleted = await self.repository.soft_delete_rules(rule_ids, deleted_by=actor)
        _LOGGER.info("Bulk deleted %d availability rules", deleted)
        return deleted

    def _readable_rules(self, product_id: str, rules: Sequence[AvailabilityRule]) -> list[Rule] | None:
        try:
            return [self.to_domain(rule) for rule in rules]
        except Exception:
            _LOGGER.exception("Stored availability rules for product %s could not be read", product_id)
            return None

    async def evaluate_product(self, product_id: str, *, at: datetime | None = None) -> Evaluation:
        rules = await self.repository.list_product_rules(product_id)
        now = ensure_utc(at) if at is not None else self.scheduler.now()
        domain_rules = self._readable_rules(product_id, rules)
        if domain_rules is None:
            return engine.fallback_evaluation(product_id, now)
        return engine.evaluate_product(product_id, domain_rules, now)

    async def evaluate_products(
        self,
        product_ids: Sequence[str],
        *,
        at: datetime | None = None,
    ) -> dict[str, Evaluation]:
        grouped = await self.repository.list_rules_for_products(list(dict.fromkeys(product_ids)))
        now = ensure_utc(at) if at is not None else self.scheduler.now()
        product_rules: dict[str, list[Rule]] = {}
        unreadable: dict[str, Evaluation] = {}
        for product_id, rules in grouped.items():
            domain_rules = self._readable_rules(product_id, rules)
            if domain_rules is None:
                unreadable[product_id] = engine.fallback_evaluation(product_id, now)
            else:
                product_rules[product_id] = domain_rules
        evaluations = await engine.evaluate_multiple_products(product_rules, now)
        return {product_id: unreadable.get(product_id) or evaluations[product_id] for product_id in grouped}

    def preview(
        self,
        product_id: str,
        drafts: Sequence[RuleDraft],
        *,
        at: datetime | None = None,
    ) -> Evaluation:
        """Validate and evaluate unsaved drafts; nothing is persisted."""

        now = self.scheduler.now()
        errors: list[str] = []
        for index, draft in enumerate(drafts, start=1):
            result = validate_rule(draft, product_id, now=now)
            errors.extend(f"Rule {index}: {error}" for error in result.errors)
        self._reject("preview", errors)
        rules = [
            draft.to_rule(product_id=product_id, default_timezone=self.default_timezone) for draft in drafts
        ]
        return engine.evaluate_product(product_id, rules, ensure_utc(at) if at is not None else now)

    async def detect_conflicts(self, product_id: str) -> tuple[list[AvailabilityRule], list[RuleConflict]]:
        rules = await self.repository.list_product_rules(product_id)
        domain_rules: list[Rule] = []
        for rule in rules:
            try:
                domain_rules.append(self.to_domain(rule))
            except Exception:
                _LOGGER.exception("Skipping unreadable availability rule %s in conflict check", rule.id)
        conflicts = engine.detect_rule_conflicts(domain_rules)
        return rules, conflicts

    async def statistics(self) -> dict[str, Any]:
        return await self.repository.statistics()
