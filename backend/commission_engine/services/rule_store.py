"""Commission rule store.

Data access for ``CommissionRule`` plus write-time validation. Every write is
audited. A rule that any commission references is never removed: deleting it
deactivates it instead.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from commission_engine.core.config import settings
from commission_engine.core.exceptions import EntityNotFound, InvalidRuleConfiguration
from commission_engine.core.utils import utcnow
from commission_engine.models.commission import Commission, CommissionRule
from commission_engine.models.employee import Employee
from commission_engine.schemas.commission import CommissionRuleCreate, CommissionRuleUpdate
from commission_engine.services.audit import AuditRecorder, ENTITY_RULE
from commission_engine.services.rule_resolver import is_in_effect
from commission_engine.services.rule_validation import format_rule_type, validate_rule_config

logger = logging.getLogger(__name__)

# Fields written straight from the schemas onto the model
_RULE_FIELDS = (
    "name", "description", "notes", "rate", "service_types", "applicable_categories",
    "applicable_products", "min_margin_percentage", "min_order_value", "min_commission_amount",
    "priority", "effective_from", "effective_to", "auto_approve",
)


def _rule_snapshot(rule: CommissionRule) -> Dict[str, Any]:
    return {
        "name": rule.name,
        "type": rule.type,
        "basis": rule.basis,
        "rate": str(rule.rate) if rule.rate is not None else None,
        "tiers": rule.tiers,
        "priority": rule.priority,
        "min_commission_amount": str(rule.min_commission_amount) if rule.min_commission_amount is not None else None,
        "effective_from": rule.effective_from.isoformat() if rule.effective_from else None,
        "effective_to": rule.effective_to.isoformat() if rule.effective_to else None,
        "auto_approve": rule.auto_approve,
        "is_active": rule.is_active,
    }


def _status(rule: CommissionRule) -> str:
    if rule.deleted_at is not None:
        return "deleted"
    return "active" if rule.is_active else "inactive"


class RuleStoreService:
    def __init__(self, db: Session, audit: Optional[AuditRecorder] = None):
        self.db = db
        self.audit = audit or AuditRecorder(db)

    # ── Reads ────────────────────────────────────────────────────────

    def get_rule(self, rule_id: str, include_deleted: bool = False) -> CommissionRule:
        rule = self.db.query(CommissionRule).filter(CommissionRule.id == rule_id).first()
        if not rule or (rule.deleted_at is not None and not include_deleted):
            raise EntityNotFound("CommissionRule", rule_id)
        return rule

    def list_rules(
        self,
        employee_id: Optional[str] = None,
        is_active: Optional[bool] = None,
        rule_type: Optional[str] = None,
        effective_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[CommissionRule]:
        query = self.db.query(CommissionRule).filter(CommissionRule.deleted_at == None)
        if employee_id:
            query = query.filter(CommissionRule.employee_id == employee_id)
        if is_active is not None:
            query = query.filter(CommissionRule.is_active == is_active)
        if rule_type:
            query = query.filter(CommissionRule.type == rule_type)

        rules = query.order_by(CommissionRule.priority.desc(), CommissionRule.created_at.asc()).all()
        if effective_date:
            rules = [r for r in rules if is_in_effect(r, effective_date)]
        return rules[:limit]

    def is_referenced(self, rule_id: str) -> bool:
        return (
            self.db.query(Commission.id).filter(Commission.rule_id == rule_id).first()
            is not None
        )

    # ── Writes ───────────────────────────────────────────────────────

    def create_rule(self, data: CommissionRuleCreate, actor: str) -> CommissionRule:
        employee = self.db.query(Employee).filter(Employee.id == data.employee_id).first()
        if not employee:
            raise EntityNotFound("Employee", data.employee_id)

        tiers = validate_rule_config(
            data.type.value,
            rate=data.rate,
            tiers=data.tiers,
            basis=data.basis.value,
            effective_from=data.effective_from,
            effective_to=data.effective_to,
            min_margin_percentage=data.min_margin_percentage,
            min_order_value=data.min_order_value,
            min_commission_amount=data.min_commission_amount,
        )

        now = utcnow()
        rule = CommissionRule(
            employee_id=data.employee_id,
            type=data.type.value,
            basis=data.basis.value,
            tiers=tiers,
            is_active=data.is_active,
            created_at=now,
            updated_at=now,
            created_by=actor,
            updated_by=actor,
        )
        if data.id:
            rule.id = data.id
        for field in _RULE_FIELDS:
            setattr(rule, field, getattr(data, field))
        rule.rule_type_display = format_rule_type(
            rule.type, rule.rate, rule.tiers, rule.basis, settings.DEFAULT_CURRENCY
        )

        self.db.add(rule)
        self.db.flush()
        self.audit.record(
            ENTITY_RULE, rule.id, "rule.created", actor,
            after_status=_status(rule),
            description=f"Created rule '{rule.name}' ({rule.rule_type_display}) for employee {rule.employee_id}",
            details=_rule_snapshot(rule),
        )
        self.db.commit()
        self.db.refresh(rule)
        logger.info(f"Commission rule {rule.id} created by {actor}")
        return rule

    def update_rule(self, rule_id: str, data: CommissionRuleUpdate, actor: str) -> CommissionRule:
        rule = self.get_rule(rule_id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return rule

        for field in ("name", "type", "basis", "effective_from", "priority", "auto_approve"):
            if field in changes and changes[field] is None:
                raise InvalidRuleConfiguration(f"{field} cannot be cleared")

        before = _rule_snapshot(rule)
        merged = {
            "type": changes.get("type", rule.type),
            "basis": changes.get("basis", rule.basis),
            "rate": changes["rate"] if "rate" in changes else rule.rate,
            "tiers": changes["tiers"] if "tiers" in changes else rule.tiers,
            "effective_from": changes.get("effective_from", rule.effective_from),
            "effective_to": changes["effective_to"] if "effective_to" in changes else rule.effective_to,
        }
        # Switching a rule to tiered drops its flat rate and vice versa
        if "type" in changes and "rate" not in changes and merged["type"] == "tiered":
            merged["rate"] = None
        if "type" in changes and "tiers" not in changes and merged["type"] != "tiered":
            merged["tiers"] = None

        rule_type = getattr(merged["type"], "value", merged["type"])
        basis = getattr(merged["basis"], "value", merged["basis"])
        tiers = validate_rule_config(
            rule_type,
            rate=merged["rate"],
            tiers=merged["tiers"],
            basis=basis,
            effective_from=merged["effective_from"],
            effective_to=merged["effective_to"],
            min_margin_percentage=changes.get("min_margin_percentage", rule.min_margin_percentage),
            min_order_value=changes.get("min_order_value", rule.min_order_value),
            min_commission_amount=changes.get("min_commission_amount", rule.min_commission_amount),
        )

        for field in _RULE_FIELDS:
            if field in changes:
                setattr(rule, field, changes[field])
        rule.type = rule_type
        rule.basis = basis
        rule.rate = merged["rate"]
        rule.tiers = tiers
        rule.rule_type_display = format_rule_type(
            rule.type, rule.rate, rule.tiers, rule.basis, settings.DEFAULT_CURRENCY
        )
        rule.updated_at = utcnow()
        rule.updated_by = actor

        self.db.flush()
        self.audit.record(
            ENTITY_RULE, rule.id, "rule.updated", actor,
            before_status=_status(rule), after_status=_status(rule),
            description=f"Updated rule '{rule.name}'",
            details={"before": before, "after": _rule_snapshot(rule), "fields": sorted(changes)},
        )
        self.db.commit()
        self.db.refresh(rule)
        return rule

    def set_active(self, rule_id: str, is_active: bool, actor: str) -> CommissionRule:
        rule = self.get_rule(rule_id)
        if rule.is_active == is_active:
            return rule

        before = _status(rule)
        rule.is_active = is_active
        rule.updated_at = utcnow()
        rule.updated_by = actor
        self.db.flush()
        action = "rule.activated" if is_active else "rule.deactivated"
        self.audit.record(
            ENTITY_RULE, rule.id, action, actor,
            before_status=before, after_status=_status(rule),
            description=f"{'Activated' if is_active else 'Deactivated'} rule '{rule.name}'",
        )
        self.db.commit()
        self.db.refresh(rule)
        return rule

    def delete_rule(self, rule_id: str, actor: str) -> CommissionRule:
        """Soft-delete the rule, or only deactivate it when commissions reference it."""
        rule = self.get_rule(rule_id)

        if self.is_referenced(rule.id):
            logger.info(f"Rule {rule.id} is referenced by commissions, deactivating instead of deleting")
            return self.set_active(rule.id, False, actor)

        before = _status(rule)
        now = utcnow()
        rule.deleted_at = now
        rule.deleted_by = actor
        rule.is_active = False
        rule.updated_at = now
        rule.updated_by = actor
        self.db.flush()
        self.audit.record(
            ENTITY_RULE, rule.id, "rule.deleted", actor,
            before_status=before, after_status=_status(rule),
            description=f"Deleted rule '{rule.name}'",
        )
        self.db.commit()
        self.db.refresh(rule)
        return rule

    def restore_rule(self, rule_id: str, actor: str) -> CommissionRule:
        rule = self.get_rule(rule_id, include_deleted=True)
        if rule.deleted_at is None:
            return rule

        rule.deleted_at = None
        rule.deleted_by = None
        rule.updated_at = utcnow()
        rule.updated_by = actor
        self.db.flush()
        # Restored rules come back inactive; activation is a separate, deliberate step
        self.audit.record(
            ENTITY_RULE, rule.id, "rule.restored", actor,
            before_status="deleted", after_status=_status(rule),
            description=f"Restored rule '{rule.name}'",
        )
        self.db.commit()
        self.db.refresh(rule)
        return rule
