"""Pick the single commission rule that applies to a revenue event.

Resolution is a pure function of the event and a snapshot of the employee's
rules: filter by effective window, eligibility filters and thresholds, then
rank by priority (desc), creation time (asc) and id.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Sequence

from sqlalchemy.orm import Session

from commission_engine.core.utils import as_utc
from commission_engine.models.commission import CommissionRule

logger = logging.getLogger(__name__)


def _event_value(event: Any, name: str) -> Any:
    if isinstance(event, dict):
        return event.get(name)
    return getattr(event, name, None)


def is_in_effect(rule: Any, moment: datetime) -> bool:
    """True when ``moment`` falls in [effective_from, effective_to)."""
    moment = as_utc(moment)
    effective_from = as_utc(rule.effective_from)
    effective_to = as_utc(rule.effective_to)
    if effective_from is not None and effective_from > moment:
        return False
    if effective_to is not None and moment >= effective_to:
        return False
    return True


def is_candidate(rule: Any, moment: datetime) -> bool:
    if not rule.is_active or getattr(rule, "deleted_at", None) is not None:
        return False
    return is_in_effect(rule, moment)


def _passes_set_filter(allowed: Optional[Sequence[str]], value: Optional[str]) -> bool:
    if not allowed:
        return True
    return value is not None and value in allowed


def rejection_reason(rule: Any, event: Any) -> Optional[str]:
    """Why ``rule`` cannot apply to ``event``, or None when it is eligible."""
    if not _passes_set_filter(rule.service_types, _event_value(event, "service_type")):
        return "service_type"
    if not _passes_set_filter(rule.applicable_categories, _event_value(event, "category")):
        return "category"
    if not _passes_set_filter(rule.applicable_products, _event_value(event, "product_id")):
        return "product"

    if rule.min_margin_percentage is not None:
        margin_percentage = _event_value(event, "margin_percentage")
        if margin_percentage is None or Decimal(str(rule.min_margin_percentage)) > Decimal(str(margin_percentage)):
            return "min_margin_percentage"

    if rule.min_order_value is not None:
        order_value = _event_value(event, "order_value")
        if order_value is None or Decimal(str(rule.min_order_value)) > Decimal(str(order_value)):
            return "min_order_value"

    return None


def rank_key(rule: Any):
    return (-(rule.priority or 0), as_utc(rule.created_at), str(rule.id))


def rank_rules(rules: Sequence[Any]) -> List[Any]:
    return sorted(rules, key=rank_key)


def select_rule(rules: Sequence[Any], event: Any) -> Optional[Any]:
    """Winner among ``rules`` for ``event``; None when nothing survives filtering."""
    occurred_at = _event_value(event, "occurred_at")
    survivors = []
    for rule in rules:
        if not is_candidate(rule, occurred_at):
            continue
        reason = rejection_reason(rule, event)
        if reason:
            logger.debug(f"Rule {rule.id} rejected for event: {reason}")
            continue
        survivors.append(rule)

    if not survivors:
        return None
    return rank_rules(survivors)[0]


class RuleResolver:
    """Reads the rule snapshot for an employee and applies ``select_rule``."""

    def __init__(self, db: Session):
        self.db = db

    def _employee_rules(self, employee_id: str) -> List[CommissionRule]:
        return (
            self.db.query(CommissionRule)
            .filter(
                CommissionRule.employee_id == employee_id,
                CommissionRule.is_active == True,
                CommissionRule.deleted_at == None,
            )
            .all()
        )

    def resolve_rule(self, employee_id: str, event: Any) -> Optional[CommissionRule]:
        rule = select_rule(self._employee_rules(employee_id), event)
        if rule:
            logger.info(f"Resolved rule {rule.id} (priority {rule.priority}) for employee {employee_id}")
        else:
            logger.info(f"No commission rule matched for employee {employee_id}")
        return rule

    def resolve_rule_id(self, employee_id: str, event: Any) -> Optional[str]:
        rule = self.resolve_rule(employee_id, event)
        return rule.id if rule else None

    def list_eligible_rules(self, employee_id: str, as_of: datetime) -> List[str]:
        """Rule ids in effect at ``as_of``, in resolution order (diagnostics)."""
        rules = [r for r in self._employee_rules(employee_id) if is_candidate(r, as_of)]
        return [r.id for r in rank_rules(rules)]
