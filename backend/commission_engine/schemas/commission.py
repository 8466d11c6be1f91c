from pydantic import BaseModel, Field, model_validator
from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal
from commission_engine.core.exceptions import InvalidRevenueEvent
from commission_engine.models.commission import (
    CommissionBasis, CommissionStatus, CreateOutcome, PaymentMethod,
    RuleType, SourceType, TriggerKind,
)
from commission_engine.services.rule_validation import validate_rule_config


# ── Rules ────────────────────────────────────────────────────────────

class TierSpec(BaseModel):
    upper_bound: Optional[Decimal] = None  # null = final, unbounded tier
    rate: Decimal


class CommissionRuleBase(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    notes: Optional[str] = None
    type: RuleType
    basis: CommissionBasis = CommissionBasis.REVENUE
    rate: Optional[Decimal] = None
    tiers: Optional[List[TierSpec]] = None
    service_types: Optional[List[str]] = None
    applicable_categories: Optional[List[str]] = None
    applicable_products: Optional[List[str]] = None
    min_margin_percentage: Optional[Decimal] = None
    min_order_value: Optional[Decimal] = None
    min_commission_amount: Optional[Decimal] = None
    priority: int = 0
    effective_from: datetime
    effective_to: Optional[datetime] = None
    auto_approve: bool = False
    is_active: bool = True


class CommissionRuleCreate(CommissionRuleBase):
    employee_id: str
    id: Optional[str] = None  # collaborator-issued id, generated when absent

    @model_validator(mode="after")
    def check_configuration(self):
        # InvalidRuleConfiguration is a ValueError, so pydantic reports it as a validation error
        validate_rule_config(
            self.type.value,
            rate=self.rate,
            tiers=self.tiers,
            basis=self.basis.value,
            effective_from=self.effective_from,
            effective_to=self.effective_to,
            min_margin_percentage=self.min_margin_percentage,
            min_order_value=self.min_order_value,
            min_commission_amount=self.min_commission_amount,
        )
        return self


class CommissionRuleUpdate(BaseModel):
    """Partial update; the merged rule is validated by the rule store."""
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    notes: Optional[str] = None
    type: Optional[RuleType] = None
    basis: Optional[CommissionBasis] = None
    rate: Optional[Decimal] = None
    tiers: Optional[List[TierSpec]] = None
    service_types: Optional[List[str]] = None
    applicable_categories: Optional[List[str]] = None
    applicable_products: Optional[List[str]] = None
    min_margin_percentage: Optional[Decimal] = None
    min_order_value: Optional[Decimal] = None
    min_commission_amount: Optional[Decimal] = None
    priority: Optional[int] = None
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None
    auto_approve: Optional[bool] = None


class CommissionRuleInDB(CommissionRuleBase):
    id: str
    employee_id: str
    rule_type_display: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CommissionRule(CommissionRuleInDB):
    pass


class EligibleRules(BaseModel):
    employee_id: str
    as_of: datetime
    rule_ids: List[str]


# ── Revenue events ──────────────────────────────────────────────────

class SourceRef(BaseModel):
    type: SourceType
    id: str = Field(..., min_length=1)


class Adjustment(BaseModel):
    amount: Decimal  # positive adds, negative subtracts
    reason: Optional[str] = None


class RevenueEvent(BaseModel):
    employee_id: str
    source: SourceRef
    service_type: Optional[str] = None
    category: Optional[str] = None
    product_id: Optional[str] = None
    order_value: Decimal = Field(..., ge=0)
    margin: Optional[Decimal] = None
    margin_percentage: Decimal
    occurred_at: datetime
    trigger_kind: TriggerKind = TriggerKind.COMPLETED
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    adjustments: List[Adjustment] = Field(default_factory=list)
    manual_amount: Optional[Decimal] = None
    commission_id: Optional[str] = None  # collaborator-issued id for the new record

    @model_validator(mode="after")
    def check_manual_amount(self):
        if self.manual_amount is not None and self.adjustments:
            raise InvalidRevenueEvent("Adjustments cannot be combined with a manual amount")
        return self


# ── Commissions ─────────────────────────────────────────────────────

class PaymentInfo(BaseModel):
    paid_by: str = Field(..., min_length=1)
    payment_method: PaymentMethod
    payment_reference: Optional[str] = None
    paid_date: Optional[datetime] = None
    notes: Optional[str] = None


class ApproveRequest(BaseModel):
    notes: Optional[str] = None


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class CommissionInDB(BaseModel):
    id: str
    employee_id: str
    rule_id: Optional[str] = None
    source_type: SourceType
    source_id: str
    trigger_kind: TriggerKind
    base_amount: Decimal
    order_value: Decimal
    margin: Optional[Decimal] = None
    margin_percentage: Optional[Decimal] = None
    currency: str
    service_type: Optional[str] = None
    category: Optional[str] = None
    product_id: Optional[str] = None
    occurred_at: datetime
    period: str
    commission_type: str
    rule_name: Optional[str] = None
    commission_percentage: Optional[Decimal] = None
    total_amount: Decimal
    calculation_breakdown: Optional[Dict[str, Any]] = None
    status: CommissionStatus
    approved_by: Optional[str] = None
    approved_date: Optional[datetime] = None
    approval_notes: Optional[str] = None
    paid_date: Optional[datetime] = None
    payment_reference: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    payment_notes: Optional[str] = None
    paid_by: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_date: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Commission(CommissionInDB):
    pass


class CreateCommissionResponse(BaseModel):
    outcome: CreateOutcome
    commission: Optional[Commission] = None
    reason: Optional[str] = None


class CommissionTotals(BaseModel):
    total: Decimal
    pending: Decimal
    approved: Decimal
    paid: Decimal
    count: int
    currency: str
    period: Optional[str] = None
    employee_id: Optional[str] = None
    employee_name: Optional[str] = None


class AutoApproveResult(BaseModel):
    invoice_id: str
    approved_count: int
    commission_ids: List[str]


# ── Audit ───────────────────────────────────────────────────────────

class AuditEntry(BaseModel):
    id: int
    entity_type: str
    entity_id: str
    action: str
    before_status: Optional[str] = None
    after_status: Optional[str] = None
    actor: str
    description: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True
