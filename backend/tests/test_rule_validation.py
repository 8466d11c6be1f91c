"""Tests for write-time rule validation."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from commission_engine.core.exceptions import InvalidRuleConfiguration
from commission_engine.schemas.commission import CommissionRuleCreate, TierSpec
from commission_engine.services.rule_validation import (
    format_rule_type,
    normalize_tiers,
    validate_rule_config,
)

START = datetime(2026, 1, 1, tzinfo=timezone.utc)


class TestTiers:

    def test_valid_tiers_normalized_to_strings(self):
        tiers = normalize_tiers([
            {"upper_bound": 1000, "rate": 5},
            TierSpec(upper_bound=Decimal("5000"), rate=Decimal("8")),
            {"upper_bound": None, "rate": "10"},
        ])
        assert tiers == [
            {"upper_bound": "1000", "rate": "5"},
            {"upper_bound": "5000", "rate": "8"},
            {"upper_bound": None, "rate": "10"},
        ]

    def test_single_open_tier_is_valid(self):
        assert normalize_tiers([{"upper_bound": None, "rate": "3"}]) == [{"upper_bound": None, "rate": "3"}]

    def test_empty_tiers_rejected(self):
        with pytest.raises(InvalidRuleConfiguration):
            normalize_tiers([])

    def test_missing_open_tier_rejected(self):
        with pytest.raises(InvalidRuleConfiguration, match="unbounded"):
            normalize_tiers([{"upper_bound": 1000, "rate": 5}])

    def test_open_tier_must_be_last(self):
        with pytest.raises(InvalidRuleConfiguration) as exc_info:
            normalize_tiers([{"upper_bound": None, "rate": 5}, {"upper_bound": 1000, "rate": 8}])
        assert any("only the last tier" in e for e in exc_info.value.errors)

    def test_bounds_must_ascend(self):
        with pytest.raises(InvalidRuleConfiguration, match="must be greater than"):
            normalize_tiers([
                {"upper_bound": 5000, "rate": 5},
                {"upper_bound": 1000, "rate": 8},
                {"upper_bound": None, "rate": 10},
            ])

    def test_negative_rate_rejected(self):
        with pytest.raises(InvalidRuleConfiguration, match="negative"):
            normalize_tiers([{"upper_bound": None, "rate": -1}])

    def test_all_errors_reported_together(self):
        with pytest.raises(InvalidRuleConfiguration) as exc_info:
            normalize_tiers([{"upper_bound": 1000, "rate": -1}, {"upper_bound": 500, "rate": 200}])
        assert len(exc_info.value.errors) == 4


class TestRuleConfig:

    def test_percentage_requires_rate(self):
        with pytest.raises(InvalidRuleConfiguration, match="require a rate"):
            validate_rule_config("percentage")

    def test_percentage_capped_at_hundred(self):
        with pytest.raises(InvalidRuleConfiguration):
            validate_rule_config("percentage", rate=Decimal("100.01"))

    def test_fixed_above_hundred_allowed(self):
        assert validate_rule_config("fixed", rate=Decimal("250")) is None

    def test_tiered_rejects_flat_rate(self):
        with pytest.raises(InvalidRuleConfiguration, match="not rate"):
            validate_rule_config("tiered", rate=5, tiers=[{"upper_bound": None, "rate": 5}])

    def test_flat_rule_rejects_tiers(self):
        with pytest.raises(InvalidRuleConfiguration, match="cannot define tiers"):
            validate_rule_config("fixed", rate=5, tiers=[{"upper_bound": None, "rate": 5}])

    def test_unknown_type_rejected(self):
        with pytest.raises(InvalidRuleConfiguration, match="Unknown rule type"):
            validate_rule_config("bonus", rate=5)

    def test_negative_minimum_rejected(self):
        with pytest.raises(InvalidRuleConfiguration, match="min_commission_amount"):
            validate_rule_config("fixed", rate=5, min_commission_amount=-1)

    def test_effective_window_must_be_positive(self):
        with pytest.raises(InvalidRuleConfiguration, match="effective_to"):
            validate_rule_config("fixed", rate=5, effective_from=START, effective_to=START)

    def test_schema_surfaces_configuration_errors(self):
        with pytest.raises(ValidationError):
            CommissionRuleCreate(
                employee_id="emp-1", name="Broken", type="tiered",
                tiers=[{"upper_bound": 1000, "rate": 5}], effective_from=START,
            )


class TestDisplay:

    def test_percentage(self):
        assert format_rule_type("percentage", Decimal("10.00"), None) == "10% of revenue"

    def test_fixed(self):
        assert format_rule_type("fixed", Decimal("25"), None, currency="EUR") == "EUR 25.00 fixed"

    def test_tiered(self):
        tiers = [{"upper_bound": "1000", "rate": "5"}, {"upper_bound": None, "rate": "8"}]
        assert format_rule_type("tiered", None, tiers, basis="margin") == "Tiered (2 brackets) on margin"
