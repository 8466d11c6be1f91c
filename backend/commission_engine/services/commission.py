"""Commission lifecycle manager.

Owns the commission state machine:

    pending ──approve──▶ approved ──mark_paid──▶ paid
       │                    │
       └──────cancel────────┴──────▶ cancelled

``paid`` and ``cancelled`` are terminal. Creation is idempotent per
(employee, source entity): the partial unique index on ``commissions`` is the
arbiter, and the insert runs in a SAVEPOINT so a caller that loses a race
reads back the winner's record instead of failing.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from commission_engine.core.config import settings
from commission_engine.core.exceptions import (
    DuplicateCommissionId, EntityNotFound, InvalidRevenueEvent, InvalidStatusTransition,
)
from commission_engine.core.utils import as_utc, format_period, utcnow
from commission_engine.models.commission import (
    Commission, CommissionRule, CommissionStatus, CreateOutcome,
    TriggerKind, SourceType, MANUAL_COMMISSION_TYPE,
)
from commission_engine.models.employee import Employee
from commission_engine.schemas.commission import PaymentInfo, RevenueEvent
from commission_engine.services.audit import AuditRecorder, ENTITY_COMMISSION
from commission_engine.services.calculator import Ineligible, calculate, resolve_base_amount, round2
from commission_engine.services.rule_resolver import RuleResolver

logger = logging.getLogger(__name__)

PENDING = CommissionStatus.PENDING.value
APPROVED = CommissionStatus.APPROVED.value
PAID = CommissionStatus.PAID.value
CANCELLED = CommissionStatus.CANCELLED.value

# Allowed moves; anything missing here is rejected
TRANSITIONS = {
    PENDING: {APPROVED, CANCELLED},
    APPROVED: {PAID, CANCELLED},
    PAID: set(),
    CANCELLED: set(),
}


def can_transition(current: str, requested: str) -> bool:
    return requested in TRANSITIONS.get(current, set())


@dataclass
class CreateCommissionResult:
    outcome: CreateOutcome
    commission: Optional[Commission] = None
    reason: Optional[str] = None

    @property
    def created(self) -> bool:
        return self.outcome == CreateOutcome.CREATED


class CommissionLifecycleService:
    def __init__(self, db: Session, audit: Optional[AuditRecorder] = None,
                 resolver: Optional[RuleResolver] = None):
        self.db = db
        self.audit = audit or AuditRecorder(db)
        self.resolver = resolver or RuleResolver(db)

    # ── Lookups ──────────────────────────────────────────────────────

    def get_commission(self, commission_id: str, include_deleted: bool = False) -> Commission:
        commission = self.db.query(Commission).filter(Commission.id == commission_id).first()
        if not commission or (commission.deleted_at is not None and not include_deleted):
            raise EntityNotFound("Commission", commission_id)
        return commission

    def find_live_commission(self, employee_id: str, source_type: str, source_id: str) -> Optional[Commission]:
        """The non-cancelled, non-deleted commission for a source, if any."""
        return (
            self.db.query(Commission)
            .filter(
                Commission.employee_id == employee_id,
                Commission.source_type == source_type,
                Commission.source_id == source_id,
                Commission.status != CANCELLED,
                Commission.deleted_at == None,
            )
            .first()
        )

    # ── Creation ─────────────────────────────────────────────────────

    def create_commission(self, employee_id: str, event: RevenueEvent,
                          actor: Optional[str] = None) -> CreateCommissionResult:
        """Resolve, calculate and persist the commission for one revenue event.

        Returns a result whose outcome is ``created``, ``duplicate_event_ignored``
        (existing record returned unchanged) or ``no_eligible_commission``
        (nothing persisted).
        """
        if event.employee_id != employee_id:
            raise InvalidRevenueEvent(
                f"Event belongs to employee {event.employee_id}, not {employee_id}"
            )
        actor = actor or f"employee:{employee_id}"
        source_type = event.source.type.value
        source_id = event.source.id

        existing = self.find_live_commission(employee_id, source_type, source_id)
        if existing:
            logger.info(
                f"Duplicate event for {source_type}:{source_id} (employee {employee_id}), "
                f"returning commission {existing.id}"
            )
            return CreateCommissionResult(CreateOutcome.DUPLICATE_EVENT_IGNORED, existing)

        taken = event.commission_id and self.db.query(Commission.id).filter(
            Commission.id == event.commission_id
        ).first()
        if taken:
            raise DuplicateCommissionId(event.commission_id)

        employee = self.db.query(Employee).filter(Employee.id == employee_id).first()
        if not employee:
            raise EntityNotFound("Employee", employee_id)

        if event.manual_amount is not None:
            rule = None
            base_amount = event.order_value
        else:
            rule = self.resolver.resolve_rule(employee_id, event)
            basis = rule.basis if rule else "revenue"
            base_amount = resolve_base_amount(basis, event.order_value, event.margin, event.margin_percentage)

        result = calculate(rule, base_amount, event.adjustments, event.manual_amount)
        if isinstance(result, Ineligible):
            logger.info(
                f"No eligible commission for {source_type}:{source_id} "
                f"(employee {employee_id}): {result.reason}"
            )
            return CreateCommissionResult(CreateOutcome.NO_ELIGIBLE_COMMISSION, reason=result.reason)

        now = utcnow()
        occurred_at = as_utc(event.occurred_at)
        commission = Commission(
            employee_id=employee_id,
            rule_id=rule.id if rule else None,
            source_type=source_type,
            source_id=source_id,
            trigger_kind=event.trigger_kind.value,
            base_amount=round2(base_amount),
            order_value=event.order_value,
            margin=event.margin,
            margin_percentage=event.margin_percentage,
            currency=(event.currency or settings.DEFAULT_CURRENCY).upper(),
            service_type=event.service_type,
            category=event.category,
            product_id=event.product_id,
            occurred_at=occurred_at,
            period=format_period(occurred_at),
            commission_type=rule.type if rule else MANUAL_COMMISSION_TYPE,
            rule_name=rule.name if rule else None,
            commission_percentage=result.commission_percentage,
            total_amount=result.total_amount,
            calculation_breakdown=result.breakdown,
            status=PENDING,
            created_at=now,
            updated_at=now,
            created_by=actor,
            updated_by=actor,
        )
        if event.commission_id:
            commission.id = event.commission_id

        if rule and rule.auto_approve and event.trigger_kind == TriggerKind.INVOICE_PAID:
            commission.status = APPROVED
            commission.approved_by = settings.AUTO_APPROVE_ACTOR
            commission.approved_date = now
            commission.approval_notes = settings.AUTO_APPROVE_NOTES

        try:
            with self.db.begin_nested():
                self.db.add(commission)
        except IntegrityError:
            winner = self.find_live_commission(employee_id, source_type, source_id)
            if winner is None:
                if event.commission_id:
                    raise DuplicateCommissionId(event.commission_id)
                raise
            logger.info(
                f"Concurrent create for {source_type}:{source_id} lost the race, "
                f"returning commission {winner.id}"
            )
            return CreateCommissionResult(CreateOutcome.DUPLICATE_EVENT_IGNORED, winner)

        self.audit.record(
            ENTITY_COMMISSION, commission.id, "commission.created", actor,
            after_status=commission.status,
            timestamp=now,
            description=(
                f"Created commission of {commission.currency} {commission.total_amount} "
                f"for employee {employee.employee_number or employee.id}"
            ),
            details={
                "source_type": source_type,
                "source_id": source_id,
                "rule_id": commission.rule_id,
                "total_amount": str(commission.total_amount),
                "auto_approved": commission.status == APPROVED,
            },
        )
        self.db.commit()
        self.db.refresh(commission)
        logger.info(
            f"Commission {commission.id} created for employee {employee_id} "
            f"({commission.total_amount} {commission.currency}, status {commission.status})"
        )
        return CreateCommissionResult(CreateOutcome.CREATED, commission)

    # ── Transitions ──────────────────────────────────────────────────

    def _transition(self, commission_id: str, requested: str) -> Commission:
        commission = self.get_commission(commission_id)
        if not can_transition(commission.status, requested):
            raise InvalidStatusTransition(commission.status, requested)
        return commission

    def _finish(self, commission: Commission, before: str, action: str, actor: str,
                description: str, details: Optional[Dict] = None) -> Commission:
        commission.updated_at = utcnow()
        commission.updated_by = actor
        self.db.flush()
        self.audit.record(
            ENTITY_COMMISSION, commission.id, action, actor,
            before_status=before, after_status=commission.status,
            description=description, details=details,
        )
        self.db.commit()
        self.db.refresh(commission)
        return commission

    def approve_commission(self, commission_id: str, approver: str,
                           notes: Optional[str] = None) -> Commission:
        if not approver:
            raise InvalidStatusTransition(PENDING, APPROVED, "Approval requires an approver")
        commission = self._transition(commission_id, APPROVED)

        before = commission.status
        commission.status = APPROVED
        commission.approved_by = approver
        commission.approved_date = utcnow()
        commission.approval_notes = notes.strip() if notes else None
        return self._finish(
            commission, before, "commission.approved", approver,
            f"Approved commission of {commission.currency} {commission.total_amount}",
        )

    def mark_paid(self, commission_id: str, payment: PaymentInfo) -> Commission:
        commission = self._transition(commission_id, PAID)

        before = commission.status
        commission.status = PAID
        commission.paid_date = payment.paid_date or utcnow()
        commission.payment_reference = payment.payment_reference
        commission.payment_method = payment.payment_method.value
        commission.payment_notes = payment.notes
        commission.paid_by = payment.paid_by
        return self._finish(
            commission, before, "commission.paid", payment.paid_by,
            f"Paid commission of {commission.currency} {commission.total_amount}",
            details={
                "payment_method": commission.payment_method,
                "payment_reference": commission.payment_reference,
            },
        )

    def cancel_commission(self, commission_id: str, actor: str, reason: str) -> Commission:
        if not reason or not reason.strip():
            commission = self.get_commission(commission_id)
            raise InvalidStatusTransition(
                commission.status, CANCELLED, "Cancellation requires a reason"
            )
        commission = self._transition(commission_id, CANCELLED)

        before = commission.status
        commission.status = CANCELLED
        commission.cancelled_by = actor
        commission.cancelled_date = utcnow()
        commission.cancellation_reason = reason.strip()
        return self._finish(
            commission, before, "commission.cancelled", actor,
            f"Cancelled commission: {commission.cancellation_reason}",
        )

    def auto_approve_for_invoice(self, invoice_id: str) -> List[Commission]:
        """Approve pending invoice commissions whose rule has auto-approve set."""
        candidates = (
            self.db.query(Commission)
            .join(CommissionRule, Commission.rule_id == CommissionRule.id)
            .filter(
                Commission.source_type == SourceType.INVOICE.value,
                Commission.source_id == invoice_id,
                Commission.status == PENDING,
                Commission.deleted_at == None,
                CommissionRule.auto_approve == True,
            )
            .all()
        )

        approved = []
        for commission in candidates:
            approved.append(self.approve_commission(
                commission.id, settings.AUTO_APPROVE_ACTOR, settings.AUTO_APPROVE_NOTES
            ))
        if approved:
            logger.info(f"Auto-approved {len(approved)} commission(s) for invoice {invoice_id}")
        return approved

    # ── Corrections ──────────────────────────────────────────────────

    def delete_commission(self, commission_id: str, actor: str) -> Commission:
        """Soft delete; frees the source for a corrected commission."""
        commission = self.get_commission(commission_id)
        if commission.status == PAID:
            raise InvalidStatusTransition(PAID, "deleted", "Cannot delete paid commission")

        commission.deleted_at = utcnow()
        commission.deleted_by = actor
        return self._finish(
            commission, commission.status, "commission.deleted", actor,
            "Soft-deleted commission",
        )

    def restore_commission(self, commission_id: str, actor: str) -> Commission:
        commission = self.get_commission(commission_id, include_deleted=True)
        if commission.deleted_at is None:
            raise InvalidStatusTransition(commission.status, "restored", "Commission is not deleted")

        if commission.status != CANCELLED:
            other = self.find_live_commission(
                commission.employee_id, commission.source_type, commission.source_id
            )
            if other is not None:
                raise InvalidStatusTransition(
                    commission.status, commission.status,
                    f"Commission {other.id} already covers {commission.source_type}:{commission.source_id}",
                )

        commission.deleted_at = None
        commission.deleted_by = None
        return self._finish(
            commission, commission.status, "commission.restored", actor,
            "Restored soft-deleted commission",
        )

    # ── Queries ──────────────────────────────────────────────────────

    def list_commissions(
        self,
        employee_id: Optional[str] = None,
        status: Optional[str] = None,
        period: Optional[str] = None,
        source_type: Optional[str] = None,
        source_id: Optional[str] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[Commission]:
        query = self.db.query(Commission).filter(Commission.deleted_at == None)
        if employee_id:
            query = query.filter(Commission.employee_id == employee_id)
        if status:
            query = query.filter(Commission.status == status)
        if period:
            query = query.filter(Commission.period == period)
        if source_type:
            query = query.filter(Commission.source_type == source_type)
        if source_id:
            query = query.filter(Commission.source_id == source_id)
        if min_amount is not None:
            query = query.filter(Commission.total_amount >= min_amount)
        if max_amount is not None:
            query = query.filter(Commission.total_amount <= max_amount)
        if start_date:
            query = query.filter(Commission.occurred_at >= start_date)
        if end_date:
            query = query.filter(Commission.occurred_at < end_date)

        return query.order_by(Commission.created_at.desc()).limit(limit).all()

    def _totals(self, commissions: List[Commission], currency: str) -> Dict:
        """Sum one currency's commissions; callers filter the rows to that currency."""
        totals = {
            "total": Decimal("0"),
            PENDING: Decimal("0"),
            APPROVED: Decimal("0"),
            PAID: Decimal("0"),
            "count": 0,
        }
        for c in commissions:
            if c.status == CANCELLED:
                continue
            totals["total"] += c.total_amount
            totals[c.status] += c.total_amount
            totals["count"] += 1
        totals["currency"] = currency
        return totals

    def totals_by_period(self, period: str, employee_id: Optional[str] = None,
                         currency: Optional[str] = None) -> Dict:
        """Totals for a "YYYY-MM" period in one currency, cancelled commissions excluded."""
        currency = (currency or settings.DEFAULT_CURRENCY).upper()
        year, month = map(int, period.split("-"))
        start = datetime(year, month, 1)
        end = start + relativedelta(months=1)

        query = self.db.query(Commission).filter(
            Commission.deleted_at == None,
            Commission.period == period,
            Commission.currency == currency,
        )
        if employee_id:
            query = query.filter(Commission.employee_id == employee_id)

        totals = self._totals(query.all(), currency)
        totals.update({
            "period": period,
            "employee_id": employee_id,
            "period_start": start.date().isoformat(),
            "period_end": end.date().isoformat(),
        })
        return totals

    def totals_by_employee(self, employee_id: str, currency: Optional[str] = None) -> Dict:
        employee = self.db.query(Employee).filter(Employee.id == employee_id).first()
        if not employee:
            raise EntityNotFound("Employee", employee_id)

        currency = (currency or settings.DEFAULT_CURRENCY).upper()
        commissions = (
            self.db.query(Commission)
            .filter(
                Commission.employee_id == employee_id,
                Commission.deleted_at == None,
                Commission.currency == currency,
            )
            .all()
        )
        totals = self._totals(commissions, currency)
        totals.update({
            "employee_id": employee_id,
            "employee_name": employee.full_name or "Unknown",
        })
        return totals

    def history(self, commission_id: str):
        self.get_commission(commission_id, include_deleted=True)
        return self.audit.get_history(ENTITY_COMMISSION, commission_id)
