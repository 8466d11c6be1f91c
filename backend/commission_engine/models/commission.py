from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Boolean, Text, JSON, Index, text
from sqlalchemy.orm import relationship
from commission_engine.core.database import Base
from commission_engine.core.utils import utcnow
import enum
import uuid


class RuleType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    TIERED = "tiered"


class CommissionBasis(str, enum.Enum):
    REVENUE = "revenue"  # order value
    MARGIN = "margin"


class CommissionStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class SourceType(str, enum.Enum):
    SHIPMENT = "shipment"
    QUOTE = "quote"
    INVOICE = "invoice"


class TriggerKind(str, enum.Enum):
    COMPLETED = "completed"
    INVOICE_PAID = "invoice_paid"


class PaymentMethod(str, enum.Enum):
    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"
    CASH = "cash"
    CHECK = "check"
    PAYPAL = "paypal"
    WIRE_TRANSFER = "wire_transfer"
    OTHER = "other"


MANUAL_COMMISSION_TYPE = "manual"


class CommissionRule(Base):
    """How an employee earns commission on a revenue event"""
    __tablename__ = "commission_rules"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    employee_id = Column(String, ForeignKey("employees.id"), nullable=False, index=True)

    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    # percentage | fixed | tiered
    type = Column(String, nullable=False)
    basis = Column(String, default=CommissionBasis.REVENUE.value, nullable=False)
    rule_type_display = Column(String, nullable=True)  # e.g. "10% of revenue"

    # Percentage (10 = 10%) or fixed currency amount; null for tiered
    rate = Column(Numeric(12, 4), nullable=True)
    # [{"upper_bound": "1000" | null, "rate": "5"}, ...] ascending, last one unbounded
    tiers = Column(JSON, nullable=True)

    # Eligibility filters, AND-combined when present
    service_types = Column(JSON, nullable=True)
    applicable_categories = Column(JSON, nullable=True)
    applicable_products = Column(JSON, nullable=True)
    min_margin_percentage = Column(Numeric(7, 2), nullable=True)
    min_order_value = Column(Numeric(12, 2), nullable=True)

    # Post-calculation floor; results below it void the commission
    min_commission_amount = Column(Numeric(12, 2), nullable=True)

    priority = Column(Integer, default=0, nullable=False)
    effective_from = Column(DateTime(timezone=True), nullable=False)
    effective_to = Column(DateTime(timezone=True), nullable=True)  # exclusive
    auto_approve = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Audit / soft delete
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    created_by = Column(String, nullable=True)
    updated_by = Column(String, nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(String, nullable=True)

    # Relationships
    employee = relationship("Employee", back_populates="commission_rules")
    commissions = relationship("Commission", back_populates="rule")


class Commission(Base):
    """One computed outcome of a single revenue event for one employee"""
    __tablename__ = "commissions"
    __table_args__ = (
        # At most one live commission per (employee, source); losers of a concurrent insert hit this
        Index(
            "uq_commissions_live_source",
            "employee_id", "source_type", "source_id",
            unique=True,
            postgresql_where=text("status <> 'cancelled' AND deleted_at IS NULL"),
            sqlite_where=text("status <> 'cancelled' AND deleted_at IS NULL"),
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    # Relationships
    employee_id = Column(String, ForeignKey("employees.id"), nullable=False, index=True)
    rule_id = Column(String, ForeignKey("commission_rules.id"), nullable=True, index=True)  # null = manual

    # Source entity
    source_type = Column(String, nullable=False)  # shipment | quote | invoice
    source_id = Column(String, nullable=False, index=True)
    trigger_kind = Column(String, nullable=False)

    # Inputs snapshot
    base_amount = Column(Numeric(12, 2), nullable=False)
    order_value = Column(Numeric(12, 2), nullable=False)
    margin = Column(Numeric(12, 2), nullable=True)
    margin_percentage = Column(Numeric(7, 2), nullable=True)
    currency = Column(String(3), nullable=False)
    service_type = Column(String, nullable=True)
    category = Column(String, nullable=True)
    product_id = Column(String, nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    period = Column(String, nullable=False, index=True)  # Format: "2026-01"

    # Outputs
    commission_type = Column(String, nullable=False)  # rule type or "manual"
    rule_name = Column(String, nullable=True)
    commission_percentage = Column(Numeric(9, 4), nullable=True)  # blended, informational
    total_amount = Column(Numeric(12, 2), nullable=False)
    calculation_breakdown = Column(JSON, nullable=True)

    status = Column(String, default=CommissionStatus.PENDING.value, nullable=False, index=True)

    # Approval
    approved_by = Column(String, nullable=True)
    approved_date = Column(DateTime(timezone=True), nullable=True)
    approval_notes = Column(Text, nullable=True)

    # Payment
    paid_date = Column(DateTime(timezone=True), nullable=True)
    payment_reference = Column(String, nullable=True)
    payment_method = Column(String, nullable=True)
    payment_notes = Column(Text, nullable=True)
    paid_by = Column(String, nullable=True)

    # Cancellation
    cancelled_by = Column(String, nullable=True)
    cancelled_date = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Timestamps / soft delete
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    created_by = Column(String, nullable=True)
    updated_by = Column(String, nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(String, nullable=True)

    # Relationships
    employee = relationship("Employee", back_populates="commissions")
    rule = relationship("CommissionRule", back_populates="commissions")


class CreateOutcome(str, enum.Enum):
    CREATED = "created"
    DUPLICATE_EVENT_IGNORED = "duplicate_event_ignored"
    NO_ELIGIBLE_COMMISSION = "no_eligible_commission"
