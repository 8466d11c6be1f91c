"""Write-time validation for commission rules.

Rules are a tagged variant over percentage / fixed / tiered. Everything the
calculator assumes about a rule (rate present, tiers ascending with a single
unbounded last bracket, no negative rates) is checked here, before the rule is
stored, so calculation never meets a malformed rule.
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from commission_engine.core.exceptions import InvalidRuleConfiguration
from commission_engine.core.utils import as_utc
from commission_engine.models.commission import RuleType, CommissionBasis

MAX_PERCENTAGE = Decimal("100")


def to_decimal(value: Any, field: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidRuleConfiguration(f"{field} must be a number, got {value!r}")


def _tier_field(tier: Any, name: str) -> Any:
    if isinstance(tier, dict):
        return tier.get(name)
    return getattr(tier, name, None)


def normalize_tiers(tiers: Optional[List[Any]]) -> List[Dict[str, Optional[str]]]:
    """Validate tier brackets and return them in their stored JSON form.

    Accepts dicts or objects with ``upper_bound`` / ``rate``. Bounds must be
    strictly ascending, exactly one bound may be open (None) and it must be
    the last tier.
    """
    if not tiers:
        raise InvalidRuleConfiguration("Tiered rules need at least one tier")

    errors = []
    normalized = []
    previous_bound = Decimal("0")
    open_tiers = 0

    for index, tier in enumerate(tiers):
        rate = to_decimal(_tier_field(tier, "rate"), f"tiers[{index}].rate")
        upper_bound = to_decimal(_tier_field(tier, "upper_bound"), f"tiers[{index}].upper_bound")

        if rate is None:
            errors.append(f"tiers[{index}]: rate is required")
        elif rate < 0:
            errors.append(f"tiers[{index}]: rate cannot be negative")
        elif rate > MAX_PERCENTAGE:
            errors.append(f"tiers[{index}]: rate cannot exceed 100")

        if upper_bound is None:
            open_tiers += 1
            if index != len(tiers) - 1:
                errors.append(f"tiers[{index}]: only the last tier may be unbounded")
        elif upper_bound <= previous_bound:
            errors.append(
                f"tiers[{index}]: upper_bound {upper_bound} must be greater than {previous_bound}"
            )
        else:
            previous_bound = upper_bound

        normalized.append({
            "upper_bound": str(upper_bound) if upper_bound is not None else None,
            "rate": str(rate) if rate is not None else None,
        })

    if open_tiers == 0:
        errors.append("The last tier must be unbounded (upper_bound = null)")
    elif open_tiers > 1:
        errors.append("Only one tier may be unbounded")

    if errors:
        raise InvalidRuleConfiguration("; ".join(errors), errors)

    return normalized


def validate_rule_config(
    rule_type: Any,
    rate: Any = None,
    tiers: Optional[List[Any]] = None,
    basis: Any = CommissionBasis.REVENUE.value,
    effective_from: Optional[datetime] = None,
    effective_to: Optional[datetime] = None,
    min_margin_percentage: Any = None,
    min_order_value: Any = None,
    min_commission_amount: Any = None,
) -> Optional[List[Dict[str, Optional[str]]]]:
    """Check a full rule configuration. Returns the normalized tiers (or None)."""
    try:
        rule_type = RuleType(rule_type)
    except ValueError:
        raise InvalidRuleConfiguration(f"Unknown rule type: {rule_type!r}")
    try:
        CommissionBasis(basis)
    except ValueError:
        raise InvalidRuleConfiguration(f"Unknown commission basis: {basis!r}")

    rate = to_decimal(rate, "rate")
    normalized_tiers = None

    if rule_type == RuleType.TIERED:
        if rate is not None:
            raise InvalidRuleConfiguration("Tiered rules take their rates from tiers, not rate")
        normalized_tiers = normalize_tiers(tiers)
    else:
        if tiers:
            raise InvalidRuleConfiguration(f"{rule_type.value} rules cannot define tiers")
        if rate is None:
            raise InvalidRuleConfiguration(f"{rule_type.value} rules require a rate")
        if rate < 0:
            raise InvalidRuleConfiguration("rate cannot be negative")
        if rule_type == RuleType.PERCENTAGE and rate > MAX_PERCENTAGE:
            raise InvalidRuleConfiguration("percentage rate cannot exceed 100")

    for field, value in (
        ("min_margin_percentage", min_margin_percentage),
        ("min_order_value", min_order_value),
        ("min_commission_amount", min_commission_amount),
    ):
        value = to_decimal(value, field)
        if value is not None and value < 0:
            raise InvalidRuleConfiguration(f"{field} cannot be negative")

    if effective_from is not None and effective_to is not None:
        if as_utc(effective_to) <= as_utc(effective_from):
            raise InvalidRuleConfiguration("effective_to must be after effective_from")

    return normalized_tiers


def format_rule_type(rule_type: str, rate: Any, tiers: Optional[List[Any]],
                     basis: str = CommissionBasis.REVENUE.value, currency: str = "EUR") -> str:
    """Human-readable summary stored alongside the rule."""
    if rule_type == RuleType.PERCENTAGE.value:
        return f"{Decimal(str(rate)).normalize():f}% of {basis}"
    if rule_type == RuleType.FIXED.value:
        return f"{currency} {Decimal(str(rate)).quantize(Decimal('0.01'))} fixed"
    if rule_type == RuleType.TIERED.value:
        count = len(tiers or [])
        return f"Tiered ({count} bracket{'s' if count != 1 else ''}) on {basis}"
    return rule_type
