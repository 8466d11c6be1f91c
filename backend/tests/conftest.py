"""Shared fixtures: in-memory SQLite database, employees, rules, API client."""
import os

# Must be set before the app settings are first imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUDIT_ALERT_WEBHOOK_URL"] = ""
os.environ["SEED_DEMO_DATA"] = "false"

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from commission_engine.core.database import Base, SessionLocal, engine, get_db
from commission_engine.main import app
from commission_engine.models import Employee, EmployeeRole
from commission_engine.schemas.commission import CommissionRuleCreate, RevenueEvent
from commission_engine.services.audit import AuditRecorder
from commission_engine.services.rule_store import RuleStoreService

RULES_START = datetime(2026, 1, 1, tzinfo=timezone.utc)
EVENT_TIME = datetime(2026, 3, 15, 10, 30, tzinfo=timezone.utc)


class RecordingAlerts:
    """Stands in for the observability webhook; remembers what it was sent."""

    def __init__(self):
        self.failures = []

    def fire_audit_write_failure(self, **kwargs):
        self.failures.append(kwargs)
        return {"skipped": True}


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def alerts() -> RecordingAlerts:
    return RecordingAlerts()


@pytest.fixture
def audit(db, alerts) -> AuditRecorder:
    return AuditRecorder(db, alerts=alerts)


def _employee(db, email: str, number: str, role: str, name: str) -> Employee:
    employee = Employee(email=email, employee_number=number, role=role, full_name=name)
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return employee


@pytest.fixture
def manager(db) -> Employee:
    return _employee(db, "manager@courier.example", "MGR001", EmployeeRole.MANAGER.value, "Maria Manager")


@pytest.fixture
def seller(db) -> Employee:
    return _employee(db, "seller@courier.example", "SAL001", EmployeeRole.SALES.value, "Sam Seller")


@pytest.fixture
def other_seller(db) -> Employee:
    return _employee(db, "other@courier.example", "SAL002", EmployeeRole.SALES.value, "Olga Other")


@pytest.fixture
def rule_store(db, audit) -> RuleStoreService:
    return RuleStoreService(db, audit=audit)


@pytest.fixture
def make_rule(rule_store, seller):
    """Create a stored rule for the seller; keyword overrides go straight to the schema."""

    def _make(**overrides):
        data = {
            "employee_id": seller.id,
            "name": "Standard 10%",
            "type": "percentage",
            "rate": Decimal("10"),
            "effective_from": RULES_START,
        }
        data.update(overrides)
        return rule_store.create_rule(CommissionRuleCreate(**data), actor="test:admin")

    return _make


@pytest.fixture
def make_event(seller):
    """Build a revenue event for the seller."""

    def _make(source_id: str = "SHP-1001", **overrides) -> RevenueEvent:
        data = {
            "employee_id": seller.id,
            "source": {"type": "shipment", "id": source_id},
            "service_type": "express",
            "order_value": Decimal("1000"),
            "margin": Decimal("250"),
            "margin_percentage": Decimal("25"),
            "occurred_at": EVENT_TIME,
        }
        data.update(overrides)
        return RevenueEvent(**data)

    return _make


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()