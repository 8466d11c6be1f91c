"""Caller identity.

Authentication happens upstream at the gateway, which forwards the
authenticated employee id in ``X-User-Id``. This module only resolves that id
to an active employee and enforces role checks.
"""
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from commission_engine.core.database import get_db
from commission_engine.models.employee import Employee


def get_current_user(
    x_user_id: str = Header(None),
    db: Session = Depends(get_db),
) -> Employee:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )
    if not x_user_id:
        raise credentials_exception

    user = db.query(Employee).filter(Employee.id == x_user_id).first()
    if user is None or not user.is_active:
        raise credentials_exception
    return user


def require_manager(user: Employee):
    if not user.is_manager:
        raise HTTPException(status_code=403, detail="Manager access required")


def actor_for(user: Employee) -> str:
    """Audit actor string for an employee."""
    return f"employee:{user.id}"
