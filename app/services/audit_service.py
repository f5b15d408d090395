# app/services/audit_service.py

from typing import Optional, Dict, Any

from loguru import logger

from app.models.audit import AuditLog
from app.core.database import AsyncSessionLocal


# Manages its own session so a failed audit write never rolls back the
# caller's work.
async def log_activity(
    action: str,
    actor_id: Optional[int] = None,
    actor_role: Optional[str] = None,
    certificate_id: Optional[int] = None,
    remarks: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
):
    """
    Creates an audit log entry in a separate DB session.
    Safe for use in BackgroundTasks.
    """
    async with AsyncSessionLocal() as session:
        try:
            session.add(AuditLog(
                actor_id=actor_id,
                actor_role=actor_role,
                certificate_id=certificate_id,
                action=action,
                remarks=remarks,
                details=details or {}
            ))
            await session.commit()
        except Exception:
            logger.exception(f"Audit log write failed for action '{action}'")
            await session.rollback()
