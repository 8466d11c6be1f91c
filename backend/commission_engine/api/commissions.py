"""Commission API: revenue event intake, lifecycle transitions, queries."""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status
from sqlalchemy.orm import Session

from commission_engine.core.database import get_db
from commission_engine.core.exceptions import (
    CommissionEngineError, DuplicateCommissionId, EntityNotFound, InvalidRevenueEvent,
    InvalidRuleConfiguration, InvalidStatusTransition,
)
from commission_engine.core.security import actor_for, get_current_user, require_manager
from commission_engine.models.commission import CreateOutcome, TriggerKind
from commission_engine.models.employee import Employee
from commission_engine.schemas.commission import (
    ApproveRequest, AuditEntry, AutoApproveResult, CancelRequest, Commission,
    CommissionTotals, CreateCommissionResponse, PaymentInfo, RevenueEvent,
)
from commission_engine.services.commission import CommissionLifecycleService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/commissions", tags=["commissions"])

PERIOD_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


def to_http(exc: CommissionEngineError) -> HTTPException:
    """Map a service error onto the HTTP status the API reports for it."""
    if isinstance(exc, EntityNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidStatusTransition):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "current": exc.current, "requested": exc.requested},
        )
    if isinstance(exc, DuplicateCommissionId):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, InvalidRuleConfiguration):
        return HTTPException(
            status_code=422,
            detail={"message": str(exc), "errors": exc.errors},
        )
    if isinstance(exc, InvalidRevenueEvent):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _ensure_can_view(current_user: Employee, employee_id: str):
    # Sales employees can only view their own commissions
    if not current_user.is_manager and current_user.id != employee_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")


# ── Intake ───────────────────────────────────────────────────────────

@router.post("/events", response_model=CreateCommissionResponse)
def create_commission_from_event(
    event: RevenueEvent,
    response: Response,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Create the commission for a revenue event.
    Replaying an event returns the existing commission with outcome duplicate_event_ignored.
    """
    _ensure_can_view(current_user, event.employee_id)
    # Manual overrides and payment confirmations come from managers or collaborators
    if not current_user.is_manager and (
        event.manual_amount is not None or event.trigger_kind == TriggerKind.INVOICE_PAID
    ):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Manager access required")

    service = CommissionLifecycleService(db)
    try:
        result = service.create_commission(event.employee_id, event, actor=actor_for(current_user))
    except CommissionEngineError as e:
        raise to_http(e)

    if result.outcome == CreateOutcome.CREATED:
        response.status_code = status.HTTP_201_CREATED
    return CreateCommissionResponse(
        outcome=result.outcome,
        commission=Commission.model_validate(result.commission) if result.commission else None,
        reason=result.reason,
    )


# ── Queries ──────────────────────────────────────────────────────────

@router.get("", response_model=List[Commission])
def list_commissions(
    employee_id: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    period: Optional[str] = None,
    source_type: Optional[str] = None,
    source_id: Optional[str] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = 100,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Search commissions. Sales employees always get their own only."""
    if not current_user.is_manager:
        employee_id = current_user.id

    return CommissionLifecycleService(db).list_commissions(
        employee_id=employee_id,
        status=status_filter,
        period=period,
        source_type=source_type,
        source_id=source_id,
        min_amount=min_amount,
        max_amount=max_amount,
        start_date=start_date,
        end_date=end_date,
        limit=min(limit, 500),
    )


@router.get("/totals/period/{period}", response_model=CommissionTotals)
def get_period_totals(
    period: str = Path(..., pattern=PERIOD_PATTERN),
    employee_id: Optional[str] = None,
    currency: Optional[str] = Query(None, min_length=3, max_length=3),
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Commission totals for a period, cancelled commissions excluded
    Period format: YYYY-MM. Amounts are summed in one currency (default currency when omitted)
    """
    if not current_user.is_manager:
        employee_id = current_user.id
    return CommissionLifecycleService(db).totals_by_period(period, employee_id, currency)


@router.get("/totals/employee/{employee_id}", response_model=CommissionTotals)
def get_employee_totals(
    employee_id: str,
    currency: Optional[str] = Query(None, min_length=3, max_length=3),
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _ensure_can_view(current_user, employee_id)
    try:
        return CommissionLifecycleService(db).totals_by_employee(employee_id, currency)
    except CommissionEngineError as e:
        raise to_http(e)


@router.get("/{commission_id}", response_model=Commission)
def get_commission(
    commission_id: str,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        commission = CommissionLifecycleService(db).get_commission(commission_id)
    except CommissionEngineError as e:
        raise to_http(e)
    _ensure_can_view(current_user, commission.employee_id)
    return commission


@router.get("/{commission_id}/history", response_model=List[AuditEntry])
def get_commission_history(
    commission_id: str,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Audit trail of a commission, oldest first"""
    service = CommissionLifecycleService(db)
    try:
        commission = service.get_commission(commission_id, include_deleted=True)
        _ensure_can_view(current_user, commission.employee_id)
        return service.history(commission_id)
    except CommissionEngineError as e:
        raise to_http(e)


# ── Transitions (managers) ───────────────────────────────────────────

@router.post("/{commission_id}/approve", response_model=Commission)
def approve_commission(
    commission_id: str,
    body: Optional[ApproveRequest] = None,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_manager(current_user)
    try:
        return CommissionLifecycleService(db).approve_commission(
            commission_id, actor_for(current_user), body.notes if body else None
        )
    except CommissionEngineError as e:
        raise to_http(e)


@router.post("/{commission_id}/pay", response_model=Commission)
def pay_commission(
    commission_id: str,
    payment: PaymentInfo,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_manager(current_user)
    try:
        return CommissionLifecycleService(db).mark_paid(commission_id, payment)
    except CommissionEngineError as e:
        raise to_http(e)


@router.post("/{commission_id}/cancel", response_model=Commission)
def cancel_commission(
    commission_id: str,
    body: CancelRequest,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_manager(current_user)
    try:
        return CommissionLifecycleService(db).cancel_commission(
            commission_id, actor_for(current_user), body.reason
        )
    except CommissionEngineError as e:
        raise to_http(e)


@router.post("/invoices/{invoice_id}/auto-approve", response_model=AutoApproveResult)
def auto_approve_invoice(
    invoice_id: str,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Invoice was paid: approve its pending commissions whose rule auto-approves"""
    require_manager(current_user)
    approved = CommissionLifecycleService(db).auto_approve_for_invoice(invoice_id)
    return AutoApproveResult(
        invoice_id=invoice_id,
        approved_count=len(approved),
        commission_ids=[c.id for c in approved],
    )


@router.delete("/{commission_id}", response_model=Commission)
def delete_commission(
    commission_id: str,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_manager(current_user)
    try:
        return CommissionLifecycleService(db).delete_commission(commission_id, actor_for(current_user))
    except CommissionEngineError as e:
        raise to_http(e)


@router.post("/{commission_id}/restore", response_model=Commission)
def restore_commission(
    commission_id: str,
    current_user: Employee = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_manager(current_user)
    try:
        return CommissionLifecycleService(db).restore_commission(commission_id, actor_for(current_user))
    except CommissionEngineError as e:
        raise to_http(e)
