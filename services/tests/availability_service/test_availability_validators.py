from datetime import datetime, timezone
from typing import Any

import pytest

from services.availability_service.app.validators import (
    is_valid_month_day,
    is_valid_time,
    is_valid_timezone,
    validate_bulk_request,
    validate_rule,
)

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": "Holiday launch",
        "ruleType": "DATE_RANGE",
        "state": "AVAILABLE",
        "priority": 10,
        "startDate": "2025-02-01T00:00:00+00:00",
    }
    payload.update(overrides)
    return payload


def _seasonal(**config: Any) -> dict[str, Any]:
    seasonal = {"startMonth": 6, "startDay": 1, "endMonth": 8, "endDay": 31, "timezone": "UTC"}
    seasonal.update(config)
    return _payload(ruleType="SEASONAL", startDate=None, seasonalConfig=seasonal)


def _time_based(**restrictions: Any) -> dict[str, Any]:
    window = {"daysOfWeek": [1, 2, 3, 4, 5], "startTime": "09:00", "endTime": "17:00", "timezone": "UTC"}
    window.update(restrictions)
    return _payload(ruleType="TIME_BASED", startDate=None, timeRestrictions=window)


def _pre_order(**settings: Any) -> dict[str, Any]:
    pre_order = {"expectedDeliveryDate": "2025-03-01T00:00:00+00:00", "message": "Ships in March"}
    pre_order.update(settings)
    return _payload(state="PRE_ORDER", preOrderSettings=pre_order)


def test_accepts_rule_with_only_start_date() -> None:
    result = validate_rule(_payload(), "sku-1", now=NOW)

    assert result.is_valid
    assert result.errors == []


def test_rejects_start_after_end() -> None:
    result = validate_rule(_payload(endDate="2025-01-15T00:00:00+00:00"), "sku-1", now=NOW)

    assert not result.is_valid
    assert "Start date must be before end date" in result.errors


def test_date_bounds_relative_to_now() -> None:
    too_old = validate_rule(_payload(startDate="2022-06-01T00:00:00+00:00"), "sku-1", now=NOW)
    too_far = validate_rule(_payload(endDate="2031-01-01T00:00:00+00:00"), "sku-1", now=NOW)

    assert "Start date cannot be more than 2 years in the past" in too_old.errors
    assert "End date cannot be more than 5 years in the future" in too_far.errors


def test_collects_every_error_instead_of_stopping_early() -> None:
    result = validate_rule(
        {
            "ruleType": "DATE_RANGE",
            "state": "PRE_ORDER",
            "priority": 2000,
            "startDate": "2025-02-01T00:00:00+00:00",
            "endDate": "2025-01-01T00:00:00+00:00",
        },
        "sku-1",
        now=NOW,
    )

    assert result.errors == [
        "Rule name is required",
        "Start date must be before end date",
        "Pre-order rules must have pre-order settings configured",
        "Priority must be between 0 and 1000",
    ]


def test_requires_product_reference() -> None:
    missing = validate_rule(_payload(), now=NOW)
    mismatched = validate_rule(_payload(productId="sku-2"), "sku-1", now=NOW)

    assert "Product reference is required" in missing.errors
    assert "Rule product does not match the target product" in mismatched.errors


def test_unparseable_payload_is_reported_not_raised() -> None:
    result = validate_rule(_payload(state="SOMETIMES"), "sku-1", now=NOW)

    assert not result.is_valid
    assert any(error.startswith("state") for error in result.errors)


def test_seasonal_dates_checked_against_leap_year() -> None:
    assert validate_rule(_seasonal(startMonth=2, startDay=29), "sku-1", now=NOW).is_valid

    result = validate_rule(_seasonal(startMonth=2, startDay=30), "sku-1", now=NOW)

    assert result.errors == ["Invalid start date for seasonal rule"]


@pytest.mark.parametrize("zone", ["Mars/Olympus_Mons", "America", "Europe"])
def test_seasonal_requires_known_timezone(zone: str) -> None:
    result = validate_rule(_seasonal(timezone=zone), "sku-1", now=NOW)

    assert result.errors == [f"Invalid timezone: {zone}"]


def test_seasonal_reports_missing_fields() -> None:
    payload = _payload(ruleType="SEASONAL", startDate=None, seasonalConfig={"startMonth": 6, "startDay": 1})

    result = validate_rule(payload, "sku-1", now=NOW)

    assert result.errors == ["Seasonal configuration is missing endMonth, endDay"]


def test_time_based_allows_overnight_window() -> None:
    result = validate_rule(_time_based(startTime="22:00", endTime="06:00"), "sku-1", now=NOW)

    assert result.is_valid


@pytest.mark.parametrize(
    ("restrictions", "message"),
    [
        ({"daysOfWeek": []}, "At least one day of the week must be selected"),
        ({"daysOfWeek": [0, 7]}, "Days of week must be between 0 (Sunday) and 6 (Saturday)"),
        ({"startTime": "25:00"}, "Invalid start time format (use HH:MM)"),
        ({"endTime": "9am"}, "Invalid end time format (use HH:MM)"),
        ({"timezone": "Nowhere/Special"}, "Invalid timezone: Nowhere/Special"),
    ],
)
def test_time_based_rejections(restrictions: dict[str, Any], message: str) -> None:
    result = validate_rule(_time_based(**restrictions), "sku-1", now=NOW)

    assert result.errors == [message]


def test_pre_order_delivery_must_be_in_future_unless_skipped() -> None:
    past = _pre_order(expectedDeliveryDate="2024-12-01T00:00:00+00:00")

    rejected = validate_rule(past, "sku-1", now=NOW)
    skipped = validate_rule(past, "sku-1", skip_future_date_check=True, now=NOW)

    assert rejected.errors == ["Expected delivery date must be in the future"]
    assert skipped.is_valid


def test_pre_order_deposit_and_quantity_rules() -> None:
    result = validate_rule(
        _pre_order(depositRequired=True, depositAmount="0", maxQuantity=0),
        "sku-1",
        now=NOW,
    )

    assert result.errors == [
        "Deposit amount must be greater than 0",
        "Maximum quantity must be greater than 0",
    ]
    assert validate_rule(_pre_order(depositRequired=True, depositAmount="25.00"), "sku-1", now=NOW).is_valid


def test_view_only_requires_settings() -> None:
    missing = validate_rule(_payload(state="VIEW_ONLY"), "sku-1", now=NOW)
    present = validate_rule(_payload(state="VIEW_ONLY", viewOnlySettings={"message": "Coming back soon"}), "sku-1", now=NOW)

    assert missing.errors == ["View-only rules must have view-only settings configured"]
    assert present.is_valid


def test_config_block_must_match_rule_type() -> None:
    seasonal_without_config = validate_rule(_payload(ruleType="SEASONAL"), "sku-1", now=NOW)
    date_range_with_window = validate_rule(
        _payload(timeRestrictions={"daysOfWeek": [1], "startTime": "09:00", "endTime": "10:00"}),
        "sku-1",
        now=NOW,
    )
    empty_date_range = validate_rule(_payload(startDate=None), "sku-1", now=NOW)

    assert seasonal_without_config.errors == ["Seasonal rules must have seasonal configuration"]
    assert date_range_with_window.errors == ["Time restrictions are only allowed on time-based rules"]
    assert empty_date_range.errors == ["Date range rules must have at least a start or end date"]


def test_custom_rule_needs_no_dates() -> None:
    assert validate_rule(_payload(ruleType="CUSTOM", startDate=None), "sku-1", now=NOW).is_valid


def test_helper_predicates() -> None:
    assert is_valid_timezone("America/Los_Angeles")
    assert not is_valid_timezone("")
    assert not is_valid_timezone("Invalid/Zone")
    assert is_valid_month_day(2, 29)
    assert not is_valid_month_day(4, 31)
    assert is_valid_time("7:05")
    assert is_valid_time("23:59")
    assert not is_valid_time("24:00")


def test_bulk_request_limits() -> None:
    ok = validate_bulk_request({"productIds": ["a", "b"], "operation": "create", "rules": []})
    too_many = validate_bulk_request({"productIds": [str(i) for i in range(101)], "operation": "delete"})
    empty = validate_bulk_request({"productIds": [], "operation": "create", "rules": []})
    missing_ids = validate_bulk_request({"operation": "delete"})

    assert ok.is_valid
    assert too_many.errors == ["Cannot process more than 100 products at once"]
    assert empty.errors == ["At least one product ID must be provided"]
    assert missing_ids.errors == ["Product IDs must be provided as an array"]


def test_bulk_request_operation_and_rules() -> None:
    bad_operation = validate_bulk_request({"productIds": ["a"], "operation": "archive", "rules": []})
    missing_rules = validate_bulk_request({"productIds": ["a"], "operation": "update"})
    delete_without_rules = validate_bulk_request({"productIds": ["a"], "operation": "delete"})

    assert bad_operation.errors == ["Operation must be create, update, or delete"]
    assert missing_rules.errors == ["Rules must be provided as an array for create and update operations"]
    assert delete_without_rules.is_valid
