"""Typed errors raised by the commission services.

Routers translate these into HTTP responses; nothing here knows about HTTP.
"""
from typing import List, Optional


class CommissionEngineError(Exception):
    """Base class for every error the engine raises on purpose."""


class InvalidRuleConfiguration(CommissionEngineError, ValueError):
    """A commission rule failed write-time validation (tiers, rates, type fields)."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class InvalidStatusTransition(CommissionEngineError):
    """Caller asked for a lifecycle move the state machine does not allow."""

    def __init__(self, current: str, requested: str, message: Optional[str] = None):
        self.current = current
        self.requested = requested
        super().__init__(message or f"Cannot move commission from '{current}' to '{requested}'")


class EntityNotFound(CommissionEngineError, LookupError):
    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} '{entity_id}' not found")


class AuditWriteFailure(CommissionEngineError):
    """Audit entry could not be stored. Reported, never propagated to callers."""

    def __init__(self, entity_type: str, entity_id: str, action: str, cause: Exception):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.action = action
        self.cause = cause
        super().__init__(f"Audit write failed for {entity_type}:{entity_id} ({action}): {cause}")


class InvalidRevenueEvent(CommissionEngineError, ValueError):
    """Revenue event payload is inconsistent with the call it arrived on."""


class DuplicateCommissionId(CommissionEngineError):
    """A collaborator-issued commission id is already taken by another record."""

    def __init__(self, commission_id: str):
        self.commission_id = commission_id
        super().__init__(f"Commission id '{commission_id}' is already in use")
