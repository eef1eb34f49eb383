"""
Servicio de Audit Log: registra las operaciones que modifican la planilla
y las sesiones. INSERT-only, nunca se modifica ni elimina.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


def _sanitize_for_json(data: dict | None) -> dict | None:
    """Convierte tipos no serializables (date, datetime, UUID, Decimal, Enum)."""
    if data is None:
        return None
    sanitized = {}
    for key, value in data.items():
        if isinstance(value, (date, datetime)):
            sanitized[key] = value.isoformat()
        elif isinstance(value, UUID):
            sanitized[key] = str(value)
        elif isinstance(value, Decimal):
            sanitized[key] = float(value)
        elif isinstance(value, Enum):
            sanitized[key] = value.value
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_for_json(value)
        elif isinstance(value, list):
            sanitized[key] = [
                _sanitize_for_json(item) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            sanitized[key] = value
    return sanitized


async def log_action(
    db: AsyncSession,
    *,
    user_id: UUID | None,
    entity: str,
    entity_id: str,
    action: str,
    old_data: dict | None = None,
    new_data: dict | None = None,
) -> AuditLog:
    """Inserta un registro de auditoría inmutable."""
    entry = AuditLog(
        user_id=user_id,
        entity=entity,
        entity_id=str(entity_id),
        action=action,
        old_data=_sanitize_for_json(old_data),
        new_data=_sanitize_for_json(new_data),
    )
    db.add(entry)
    await db.flush()
    return entry


async def record_event(
    db: AsyncSession,
    *,
    user_id: UUID | None,
    entity: str,
    entity_id: str,
    action: str,
    old_data: dict | None = None,
    new_data: dict | None = None,
) -> bool:
    """
    Registra el evento en su propia transacción, después de que la
    operación principal ya hizo commit. Un fallo se loguea y no se
    propaga: la escritura principal se mantiene.
    """
    try:
        await log_action(
            db,
            user_id=user_id,
            entity=entity,
            entity_id=entity_id,
            action=action,
            old_data=old_data,
            new_data=new_data,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception(
            "No se pudo registrar auditoría %s %s:%s", action, entity, entity_id
        )
        return False
    return True
