# app/services/hash_service.py

"""
Fingerprints and issuer signatures over certificate content.

The verification hash and the digital signature are both computed over
the same canonical serialisation of :class:`CertificateFields`. The
serialisation is versioned: every issued certificate records the
version it was hashed with in its metadata, and older versions stay
registered in ``_CANONICAL_SERIALIZERS`` so legacy certificates keep
verifying after the format moves on.
"""

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass, fields as dataclass_fields
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict

from app.core.exceptions import ValidationFailure
from app.core.timeutils import as_utc

CANONICAL_VERSION = "hcts-cert-v1"


@dataclass(frozen=True)
class CertificateFields:
    certificate_number: str
    transaction_id: int
    service_id: int
    icd11_code: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    buyer_id: int
    seller_id: int
    transaction_date: datetime
    issued_at: datetime
    expires_at: datetime

    @classmethod
    def from_records(cls, certificate_number, transaction, service, issued_at, expires_at):
        return cls(
            certificate_number=certificate_number,
            transaction_id=transaction.id,
            service_id=service.id,
            icd11_code=service.icd11_code,
            quantity=transaction.quantity,
            unit_price=transaction.unit_price,
            total_price=transaction.total_price,
            buyer_id=transaction.buyer_id,
            seller_id=transaction.seller_id,
            transaction_date=transaction.created_at,
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def missing(self) -> list[str]:
        return [
            f.name for f in dataclass_fields(self)
            if getattr(self, f.name) is None or getattr(self, f.name) == ""
        ]


def format_timestamp(value: datetime) -> str:
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def format_amount(value) -> str:
    try:
        return f"{Decimal(str(value)):.2f}"
    except InvalidOperation:
        raise ValidationFailure(f"Invalid amount: {value!r}")


def _serialize_v1(cert: CertificateFields) -> bytes:
    doc = {
        "v": CANONICAL_VERSION,
        "certificate_number": cert.certificate_number,
        "transaction_id": int(cert.transaction_id),
        "service_id": int(cert.service_id),
        "icd11_code": cert.icd11_code.strip().upper(),
        "quantity": int(cert.quantity),
        "unit_price": format_amount(cert.unit_price),
        "total_price": format_amount(cert.total_price),
        "buyer_id": int(cert.buyer_id),
        "seller_id": int(cert.seller_id),
        "transaction_date": format_timestamp(cert.transaction_date),
        "issued_at": format_timestamp(cert.issued_at),
        "expires_at": format_timestamp(cert.expires_at),
    }
    return json.dumps(doc, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


_CANONICAL_SERIALIZERS: Dict[str, Callable[[CertificateFields], bytes]] = {
    CANONICAL_VERSION: _serialize_v1,
}


def canonicalize(cert: CertificateFields, version: str = CANONICAL_VERSION) -> bytes:
    """Fixed-order byte serialisation; refuses partial input."""
    missing = cert.missing()
    if missing:
        raise ValidationFailure(f"Missing certificate fields: {', '.join(missing)}")

    serializer = _CANONICAL_SERIALIZERS.get(version)
    if serializer is None:
        raise ValidationFailure(f"Unknown canonical version: {version}")
    return serializer(cert)


def compute_document_hash(rendered: bytes) -> str:
    if not rendered:
        raise ValidationFailure("Cannot hash an empty document")
    return hashlib.sha256(rendered).hexdigest()


def compute_verification_hash(cert: CertificateFields, version: str = CANONICAL_VERSION) -> str:
    return hashlib.sha256(canonicalize(cert, version)).hexdigest()


class CertificateSigner:
    """HMAC-SHA256 signatures with the issuer-held signing key."""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Certificate signing key is empty")
        self._key = secret.encode("utf-8")

    def sign(self, cert: CertificateFields, version: str = CANONICAL_VERSION) -> str:
        digest = hmac.new(self._key, canonicalize(cert, version), hashlib.sha256).digest()
        return base64.b64encode(digest).decode("ascii")

    def verify(self, cert: CertificateFields, signature: str, version: str = CANONICAL_VERSION) -> bool:
        expected = self.sign(cert, version)
        return hmac.compare_digest(expected, signature or "")
