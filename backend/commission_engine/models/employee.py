from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from commission_engine.core.database import Base
import enum
import uuid


class EmployeeRole(str, enum.Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    SALES = "sales"
    OPERATIONS = "operations"


# Roles allowed to approve, pay and cancel commissions and to edit rules
MANAGER_ROLES = (EmployeeRole.ADMIN.value, EmployeeRole.MANAGER.value)


class Employee(Base):
    """Employee record owned by the HR module; read-only for the engine."""
    __tablename__ = "employees"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    employee_number = Column(String, unique=True, nullable=True, index=True)

    role = Column(String, default=EmployeeRole.SALES.value, nullable=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    commission_rules = relationship("CommissionRule", back_populates="employee")
    commissions = relationship("Commission", back_populates="employee")

    @property
    def is_manager(self) -> bool:
        return (self.role or "").lower() in MANAGER_ROLES
