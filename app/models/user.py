# app/models/user.py

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import DateTime, Integer, String
from sqlalchemy import Enum as PGEnum
from datetime import datetime
from enum import Enum
from typing import Optional

from app.core.timeutils import utc_now
from app.models.enums import enum_values


class UserRole(str, Enum):
    Provider = "provider"
    Insurance = "insurance"
    Intermediary = "intermediary"
    Admin = "admin"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True)
    )

    email: str = Field(
        sa_column=Column(String(255), nullable=False, unique=True, index=True)
    )

    name: Optional[str] = Field(default=None, nullable=True)

    role: UserRole = Field(
        sa_column=Column(
            PGEnum(UserRole, name="user_role", values_callable=enum_values),
            nullable=False,
        )
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
