"""Commission calculator.

Pure functions, no database access. Given the winning rule (or none) and the
event amounts, produce either a ``CommissionCalculation`` or ``Ineligible``.

Rounding contract: all money is ``Decimal`` and rounded half-up to cents
exactly once, on the final total. Tier contributions are summed unrounded.
The one exception is the percentage formula, whose base contribution is
rounded to cents before adjustments are added.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Union

from commission_engine.core.exceptions import InvalidRevenueEvent
from commission_engine.models.commission import RuleType, CommissionBasis, MANUAL_COMMISSION_TYPE

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
RATE_PLACES = Decimal("0.0001")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def D(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value: Any) -> Decimal:
    """Round half-up to 2 decimal places."""
    return D(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class CommissionCalculation:
    total_amount: Decimal
    commission_percentage: Decimal
    breakdown: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Ineligible:
    """No commission: no rule matched, or the result was negative or under the rule's floor."""
    reason: str
    computed_total: Optional[Decimal] = None


CalculationResult = Union[CommissionCalculation, Ineligible]


def _adjustment_parts(adjustment: Any):
    if isinstance(adjustment, dict):
        return D(adjustment.get("amount", 0)), adjustment.get("reason")
    if hasattr(adjustment, "amount"):
        return D(adjustment.amount), getattr(adjustment, "reason", None)
    return D(adjustment), None


def normalize_adjustments(adjustments: Optional[Iterable[Any]]) -> List[Dict[str, Any]]:
    items = []
    for adjustment in adjustments or []:
        amount, reason = _adjustment_parts(adjustment)
        items.append({"amount": amount, "reason": reason})
    return items


def resolve_base_amount(basis: str, order_value: Any, margin: Any = None,
                        margin_percentage: Any = None) -> Decimal:
    """Commissionable base for a rule basis.

    Margin-based rules use the event margin, or derive it from the order value
    and margin percentage when the collaborator only sent the percentage.
    """
    if basis == CommissionBasis.MARGIN.value:
        if margin is not None:
            return D(margin)
        if margin_percentage is not None:
            return D(order_value) * D(margin_percentage) / HUNDRED
        return ZERO
    return D(order_value)


def tier_contributions(tiers: List[Dict[str, Any]], base_amount: Decimal) -> List[Dict[str, Decimal]]:
    """Progressive brackets: each tier charges the slice of the base in [lower, upper)."""
    contributions = []
    lower = ZERO
    for tier in tiers:
        upper = D(tier["upper_bound"]) if tier.get("upper_bound") is not None else None
        rate = D(tier["rate"])

        if base_amount <= lower:
            portion = ZERO
        elif upper is None:
            portion = base_amount - lower
        else:
            portion = min(base_amount, upper) - lower

        contributions.append({
            "lower_bound": lower,
            "upper_bound": upper,
            "rate": rate,
            "portion": portion,
            "contribution": portion * rate / HUNDRED,
        })

        if upper is None:
            break
        lower = upper
    return contributions


def blended_percentage(total: Decimal, base_amount: Decimal) -> Decimal:
    if base_amount <= 0:
        return ZERO
    return (total / base_amount * HUNDRED).quantize(RATE_PLACES, rounding=ROUND_HALF_UP)


def _json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_value(v) for v in value]
    return value


def calculate(
    rule: Any,
    base_amount: Any,
    adjustments: Optional[Iterable[Any]] = None,
    manual_amount: Any = None,
) -> CalculationResult:
    """Compute the commission for one event.

    ``rule`` is a stored ``CommissionRule`` (or anything exposing the same
    attributes) or None. Without a rule the result is ``Ineligible`` unless a
    manual amount is supplied, which then becomes the total as-is. A manual
    amount is final, so it cannot be combined with adjustments. A negative
    total (a loss-making margin, or adjustments larger than the commission)
    is ``Ineligible``.
    """
    base_amount = D(base_amount)
    items = normalize_adjustments(adjustments)
    if manual_amount is not None and items:
        raise InvalidRevenueEvent("Adjustments cannot be combined with a manual amount")
    adjustments_total = sum((a["amount"] for a in items), ZERO)

    if rule is None:
        if manual_amount is None:
            return Ineligible(reason="no_matching_rule")
        total = round2(manual_amount)
        breakdown = {
            "type": MANUAL_COMMISSION_TYPE,
            "base_amount": base_amount,
            "manual_amount": D(manual_amount),
            "adjustments": [],
            "total_amount": total,
        }
        return CommissionCalculation(
            total_amount=total,
            commission_percentage=blended_percentage(total, base_amount),
            breakdown=_json_value(breakdown),
        )

    rule_type = getattr(rule, "type", None)
    tiers = getattr(rule, "tiers", None) or []
    breakdown = {
        "rule_id": getattr(rule, "id", None),
        "rule_name": getattr(rule, "name", None),
        "type": rule_type,
        "basis": getattr(rule, "basis", None) or CommissionBasis.REVENUE.value,
        "rate": D(rule.rate) if getattr(rule, "rate", None) is not None else None,
        "tiers": tiers if rule_type == RuleType.TIERED.value else None,
        "base_amount": base_amount,
    }

    if rule_type == RuleType.PERCENTAGE.value:
        base_contribution = round2(base_amount * D(rule.rate) / HUNDRED)
    elif rule_type == RuleType.FIXED.value:
        base_contribution = D(rule.rate)
    elif rule_type == RuleType.TIERED.value:
        contributions = tier_contributions(tiers, base_amount)
        breakdown["tier_contributions"] = contributions
        base_contribution = sum((c["contribution"] for c in contributions), ZERO)
    else:
        # Unreachable for stored rules, validation rejects unknown types at write time
        raise ValueError(f"Unknown rule type: {rule_type!r}")

    subtotal = base_contribution + adjustments_total
    total = round2(subtotal)

    breakdown.update({
        "base_contribution": base_contribution,
        "adjustments": items,
        "adjustments_total": adjustments_total,
        "subtotal": subtotal,
        "total_amount": total,
    })

    if total < ZERO:
        logger.info(f"Negative commission {total} for rule {breakdown['rule_id']}, voiding")
        return Ineligible(reason="negative_commission", computed_total=total)

    floor = getattr(rule, "min_commission_amount", None)
    if floor is not None and total < D(floor):
        logger.info(
            f"Commission {total} below minimum {floor} for rule {breakdown['rule_id']}, voiding"
        )
        return Ineligible(reason="below_min_commission_amount", computed_total=total)

    return CommissionCalculation(
        total_amount=total,
        commission_percentage=blended_percentage(total, base_amount),
        breakdown=_json_value(breakdown),
    )
