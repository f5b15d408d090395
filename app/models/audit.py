#app/models/audit.py

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, JSON
from typing import Optional, Dict, Any
from datetime import datetime

from app.core.timeutils import utc_now


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    certificate_id: Optional[int] = Field(default=None, foreign_key="certificates.id", index=True)
    actor_id: Optional[int] = Field(default=None, foreign_key="users.id")
    actor_role: Optional[str] = None

    action: str = Field(index=True)
    remarks: Optional[str] = None

    # Stores {"certificate_number": "...", "from": "...", "to": "..."}
    details: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    timestamp: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )
