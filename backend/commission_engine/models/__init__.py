from commission_engine.models.employee import Employee, EmployeeRole
from commission_engine.models.commission import (
    Commission, CommissionRule, CommissionStatus, CommissionBasis,
    RuleType, SourceType, TriggerKind, PaymentMethod, CreateOutcome,
)
from commission_engine.models.audit import AuditLog

__all__ = [
    "Employee",
    "EmployeeRole",
    "Commission",
    "CommissionRule",
    "CommissionStatus",
    "CommissionBasis",
    "RuleType",
    "SourceType",
    "TriggerKind",
    "PaymentMethod",
    "CreateOutcome",
    "AuditLog",
]
