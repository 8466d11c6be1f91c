"""Commission rule API: CRUD for managers, eligibility diagnostics."""
import logging
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from commission_engine.api.commissions import to_http
from commission_engine.core.database import get_db
from commission_engine.core.exceptions import CommissionEngineError
from commission_engine.core.security import actor_for, get_current_user, require_manager
from commission_engine.core.utils import utcnow
from commission_engine.models.employee import Employee
from commission_engine.schemas.commission import (
    AuditEntry, CommissionRule, CommissionRuleCreate, CommissionRuleUpdate, EligibleRules,
)
from commission_engine.services.audit import ENTITY_RULE
from commission_engine.services.rule_resolver import RuleResolver
from commission_engine.services.rule_store import RuleStoreService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/commission-rules", tags=["commission-rules"])


@router.get("", response_model=List[CommissionRule])
def list_rules(
    employee_id: Optional[str] = None,
    is_active: Optional[bool] = None,
    rule_type: Optional[str] = None,
    effective_date: Optional[datetime] = None,
    limit: int = 100,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List rules, highest priority first. Sales employees see their own."""
    if not current_user.is_manager:
        employee_id = current_user.id
    return RuleStoreService(db).list_rules(
        employee_id=employee_id,
        is_active=is_active,
        rule_type=rule_type,
        effective_date=effective_date,
        limit=min(limit, 500),
    )


@router.post("", response_model=CommissionRule, status_code=201)
def create_rule(
    rule_data: CommissionRuleCreate,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a commission rule (managers only)"""
    require_manager(current_user)
    try:
        return RuleStoreService(db).create_rule(rule_data, actor_for(current_user))
    except CommissionEngineError as e:
        raise to_http(e)


@router.get("/eligible/{employee_id}", response_model=EligibleRules)
def list_eligible_rules(
    employee_id: str,
    as_of: Optional[datetime] = None,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Rule ids in effect for an employee, in the order resolution would try them"""
    if not current_user.is_manager and current_user.id != employee_id:
        raise HTTPException(status_code=403, detail="Not authorized")

    as_of = as_of or utcnow()
    rule_ids = RuleResolver(db).list_eligible_rules(employee_id, as_of)
    return EligibleRules(employee_id=employee_id, as_of=as_of, rule_ids=rule_ids)


@router.get("/{rule_id}", response_model=CommissionRule)
def get_rule(
    rule_id: str,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        rule = RuleStoreService(db).get_rule(rule_id)
    except CommissionEngineError as e:
        raise to_http(e)
    if not current_user.is_manager and current_user.id != rule.employee_id:
        raise HTTPException(status_code=403, detail="Not authorized")
    return rule


@router.patch("/{rule_id}", response_model=CommissionRule)
def update_rule(
    rule_id: str,
    changes: CommissionRuleUpdate,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_manager(current_user)
    try:
        return RuleStoreService(db).update_rule(rule_id, changes, actor_for(current_user))
    except CommissionEngineError as e:
        raise to_http(e)


@router.delete("/{rule_id}", response_model=CommissionRule)
def delete_rule(
    rule_id: str,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Soft-delete a rule; rules already used by commissions are only deactivated"""
    require_manager(current_user)
    try:
        return RuleStoreService(db).delete_rule(rule_id, actor_for(current_user))
    except CommissionEngineError as e:
        raise to_http(e)


@router.post("/{rule_id}/activate", response_model=CommissionRule)
def activate_rule(
    rule_id: str,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_manager(current_user)
    try:
        return RuleStoreService(db).set_active(rule_id, True, actor_for(current_user))
    except CommissionEngineError as e:
        raise to_http(e)


@router.post("/{rule_id}/deactivate", response_model=CommissionRule)
def deactivate_rule(
    rule_id: str,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_manager(current_user)
    try:
        return RuleStoreService(db).set_active(rule_id, False, actor_for(current_user))
    except CommissionEngineError as e:
        raise to_http(e)


@router.post("/{rule_id}/restore", response_model=CommissionRule)
def restore_rule(
    rule_id: str,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_manager(current_user)
    try:
        return RuleStoreService(db).restore_rule(rule_id, actor_for(current_user))
    except CommissionEngineError as e:
        raise to_http(e)


@router.get("/{rule_id}/history", response_model=List[AuditEntry])
def get_rule_history(
    rule_id: str,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_manager(current_user)
    service = RuleStoreService(db)
    try:
        service.get_rule(rule_id, include_deleted=True)
    except CommissionEngineError as e:
        raise to_http(e)
    return service.audit.get_history(ENTITY_RULE, rule_id)
