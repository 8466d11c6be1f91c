"""Audit recorder.

Append-only history for commission transitions and rule changes. Each entry
is written inside its own SAVEPOINT: a failed write is rolled back on its own,
logged, and reported to the observability webhook, while the change it
describes stays in the caller's transaction.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from commission_engine.core.exceptions import AuditWriteFailure
from commission_engine.core.utils import utcnow
from commission_engine.models.audit import AuditLog
from commission_engine.services.alerting import ObservabilityWebhookService, get_alert_service

logger = logging.getLogger(__name__)

ENTITY_COMMISSION = "commission"
ENTITY_RULE = "commission_rule"


class AuditRecorder:
    def __init__(self, db: Session, alerts: Optional[ObservabilityWebhookService] = None):
        self.db = db
        self.alerts = alerts or get_alert_service()

    def _write(self, entry: AuditLog) -> None:
        with self.db.begin_nested():
            self.db.add(entry)

    def record(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        actor: str,
        before_status: Optional[str] = None,
        after_status: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        description: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """Append one history entry. Returns None when the write failed."""
        entry = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            before_status=before_status,
            after_status=after_status,
            actor=actor,
            description=description,
            details=details,
            created_at=timestamp or utcnow(),
        )
        # Pending primary changes must fail loudly, outside the audit savepoint
        self.db.flush()
        try:
            self._write(entry)
        except SQLAlchemyError as e:
            self._report_failure(AuditWriteFailure(entity_type, entity_id, action, e), actor)
            return None
        return entry

    def _report_failure(self, failure: AuditWriteFailure, actor: str) -> None:
        logger.error(str(failure), exc_info=failure.cause)
        self.alerts.fire_audit_write_failure(
            entity_type=failure.entity_type,
            entity_id=failure.entity_id,
            action=failure.action,
            actor=actor,
            error=str(failure.cause),
        )

    def get_history(self, entity_type: str, entity_id: str) -> List[AuditLog]:
        return (
            self.db.query(AuditLog)
            .filter(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.id.asc())
            .all()
        )
