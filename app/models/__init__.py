"""
Modelos SQLAlchemy: exportar todos para que Alembic los detecte.
"""

from app.models.user import User, UserRole
from app.models.patient import Patient
from app.models.audit_log import AuditLog
from app.models.payroll_entry import PayrollEntry, PayrollStatus, Weekday
from app.models.therapy_session import (
    PaymentMethod,
    SessionStatus,
    SessionType,
    TherapySession,
)
from app.models.session_counter import SessionCounter

__all__ = [
    "User",
    "UserRole",
    "Patient",
    "AuditLog",
    "PayrollEntry",
    "PayrollStatus",
    "Weekday",
    "TherapySession",
    "SessionStatus",
    "SessionType",
    "PaymentMethod",
    "SessionCounter",
]
