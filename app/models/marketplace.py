# app/models/marketplace.py

"""
Marketplace tables owned by the catalogue/checkout side of the platform.
The certificate core only reads them.
"""

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy import Enum as PGEnum
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from app.core.timeutils import utc_now
from app.models.enums import ServiceStatus, TransactionStatus, enum_values


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True)
    )

    user_id: int = Field(
        sa_column=Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    )

    organization_name: str = Field(
        sa_column=Column(Text, nullable=False)
    )

    contact_info: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    address: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))


class Service(SQLModel, table=True):
    __tablename__ = "services"

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True)
    )

    provider_id: int = Field(
        sa_column=Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    )

    name: str = Field(sa_column=Column(Text, nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    # WHO ICD-11 code, e.g. "1A01"
    icd11_code: str = Field(
        sa_column=Column(String(10), nullable=False, index=True)
    )

    base_price: Decimal = Field(
        sa_column=Column(Numeric(10, 2), nullable=False)
    )

    status: ServiceStatus = Field(
        default=ServiceStatus.Active,
        sa_column=Column(
            PGEnum(ServiceStatus, name="service_status", values_callable=enum_values),
            nullable=False,
        )
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )


class Transaction(SQLModel, table=True):
    __tablename__ = "transactions"

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True)
    )

    buyer_id: int = Field(
        sa_column=Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    seller_id: int = Field(
        sa_column=Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    service_id: int = Field(
        sa_column=Column(Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True)
    )

    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    unit_price: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))
    total_price: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))

    status: TransactionStatus = Field(
        default=TransactionStatus.Pending,
        sa_column=Column(
            PGEnum(TransactionStatus, name="transaction_status", values_callable=enum_values),
            nullable=False,
        )
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
