"""Append-only history of rule changes and commission transitions."""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON
from commission_engine.core.database import Base
from commission_engine.core.utils import utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    entity_type = Column(String, nullable=False, index=True)  # commission | commission_rule
    entity_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False)  # e.g. "commission.approved"

    before_status = Column(String, nullable=True)
    after_status = Column(String, nullable=True)

    actor = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
