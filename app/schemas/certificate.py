# app/schemas/certificate.py

from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from typing import List, Literal, Optional
from datetime import datetime
from decimal import Decimal


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# ============================================================
# SUMMARIES (shared by detail, list and verification)
# ============================================================
class ServiceSummary(CamelModel):
    name: str
    icd11_code: str
    description: Optional[str] = None


class TransactionSummary(CamelModel):
    id: Optional[int] = None
    quantity: int
    unit_price: Optional[Decimal] = None
    total_price: Decimal
    created_at: datetime
    role: Optional[Literal["buyer", "seller"]] = None


class PartySummary(CamelModel):
    organization_name: str


# ============================================================
# ISSUANCE
# ============================================================
class CertificateIssueRequest(CamelModel):
    transaction_id: int


class CertificateIssued(CamelModel):
    certificate_id: int
    certificate_number: str
    verification_hash: str
    issued_at: datetime
    expires_at: datetime
    qr_code: str


# ============================================================
# READ
# ============================================================
class CertificateDetail(CamelModel):
    id: int
    certificate_number: str
    status: str
    issued_at: datetime
    expires_at: datetime
    qr_code_data: str
    verification_hash: str
    service: ServiceSummary
    transaction: TransactionSummary
    buyer: PartySummary
    seller: PartySummary


class UserCertificate(CamelModel):
    id: int
    certificate_number: str
    status: str
    issued_at: datetime
    expires_at: datetime
    verification_hash: str
    service: ServiceSummary
    transaction: TransactionSummary


class UserCertificateList(CamelModel):
    certificates: List[UserCertificate]
    total: int


# ============================================================
# STATUS (admin)
# ============================================================
class CertificateStatusChange(CamelModel):
    status: Literal["valid", "suspended", "revoked"]
    reason: Optional[str] = None


class CertificateStatusRead(CamelModel):
    id: int
    certificate_number: str
    status: str
    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[str] = None


# ============================================================
# PUBLIC VERIFICATION
# ============================================================
class VerificationBlock(CamelModel):
    hash: Optional[str] = None
    signature: Literal["present", "not_present"] = "not_present"
    qr_valid: Optional[bool] = None


class VerificationResult(CamelModel):
    certificate_number: str
    status: Literal["valid", "expired", "revoked", "suspended", "not_found"]
    is_valid: bool
    status_message: str
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    service: Optional[ServiceSummary] = None
    transaction: Optional[TransactionSummary] = None
    buyer: Optional[PartySummary] = None
    seller: Optional[PartySummary] = None
    verification: Optional[VerificationBlock] = None
