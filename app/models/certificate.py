from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy import Enum as PGEnum
from datetime import datetime
from typing import Any, Dict, Optional

from app.models.enums import CertificateStatus, enum_values


class Certificate(SQLModel, table=True):
    __tablename__ = "certificates"

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True)
    )

    # unique: at most one certificate per transaction, enforced by the database
    transaction_id: int = Field(
        sa_column=Column(Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, unique=True)
    )

    # Human readable business key, e.g. HCTS-42-20261018093000-7F3A
    certificate_number: str = Field(
        sa_column=Column(String(50), nullable=False, unique=True, index=True)
    )

    # PNG data URL of the final QR image
    qr_code_data: str = Field(sa_column=Column(Text, nullable=False))

    # Blob store key of the (encrypted) document
    encrypted_pdf_path: str = Field(sa_column=Column(Text, nullable=False))

    # SHA-256 of the plaintext PDF bytes
    pdf_hash: str = Field(sa_column=Column(String(64), nullable=False))

    # SHA-256 of the canonical certificate fields
    verification_hash: str = Field(
        sa_column=Column(String(64), nullable=False, index=True)
    )

    # Base64 HMAC-SHA256 over the canonical certificate fields
    digital_signature: str = Field(sa_column=Column(Text, nullable=False))

    status: CertificateStatus = Field(
        default=CertificateStatus.Valid,
        sa_column=Column(
            PGEnum(CertificateStatus, name="certificate_status", values_callable=enum_values),
            nullable=False,
            index=True,
        )
    )

    issued_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )
    expires_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )

    revoked_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    revocation_reason: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    # "metadata" is reserved on declarative classes, hence the attribute name
    certificate_metadata: Dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSON, nullable=True)
    )
