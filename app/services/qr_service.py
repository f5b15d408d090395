# app/services/qr_service.py

"""
Verification payload embedded in certificate QR codes.

A token is ``HCTS1.`` followed by the unpadded base64url encoding of a
compact JSON document. The token is not secret; the server never trusts
its contents beyond using the certificate number for lookup and comparing
the embedded verification hash against a freshly recomputed one.
"""

import base64
import binascii
import io
import json
from dataclasses import asdict, dataclass, replace
from typing import Optional

import qrcode
from qrcode.constants import ERROR_CORRECT_M

from app.services.hash_service import format_timestamp

TOKEN_PREFIX = "HCTS1."
PAYLOAD_TYPE = "certificate"
PAYLOAD_VERSION = 1
PLACEHOLDER_HASH = "0" * 64


@dataclass(frozen=True)
class QRPayload:
    certificate_number: str
    transaction_id: int
    verification_hash: str
    issued_at: str
    expires_at: str
    buyer_id: int
    seller_id: int

    @property
    def is_provisional(self) -> bool:
        return self.verification_hash == PLACEHOLDER_HASH

    def with_hash(self, verification_hash: str) -> "QRPayload":
        return replace(self, verification_hash=verification_hash)

    def to_token(self) -> str:
        doc = {"type": PAYLOAD_TYPE, "version": PAYLOAD_VERSION, **asdict(self)}
        raw = json.dumps(doc, sort_keys=True, separators=(",", ":")).encode("utf-8")
        return TOKEN_PREFIX + base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def build_payload(
    certificate_number: str,
    transaction_id: int,
    issued_at,
    expires_at,
    buyer_id: int,
    seller_id: int,
    verification_hash: Optional[str] = None,
) -> QRPayload:
    return QRPayload(
        certificate_number=certificate_number,
        transaction_id=int(transaction_id),
        verification_hash=verification_hash or PLACEHOLDER_HASH,
        issued_at=format_timestamp(issued_at),
        expires_at=format_timestamp(expires_at),
        buyer_id=int(buyer_id),
        seller_id=int(seller_id),
    )


def payload_for_certificate(certificate, transaction) -> QRPayload:
    """Re-derive the payload of an issued certificate from its stored record."""
    return build_payload(
        certificate_number=certificate.certificate_number,
        transaction_id=certificate.transaction_id,
        issued_at=certificate.issued_at,
        expires_at=certificate.expires_at,
        buyer_id=transaction.buyer_id,
        seller_id=transaction.seller_id,
        verification_hash=certificate.verification_hash,
    )


def _strip_url(value: str) -> str:
    # Scanners hand us the whole verification URL
    value = value.strip()
    if "/" in value:
        value = value.rstrip("/").rsplit("/", 1)[-1]
    return value


def looks_like_token(value: str) -> bool:
    return bool(value) and _strip_url(value).startswith(TOKEN_PREFIX)


def parse_token(value: str) -> Optional[QRPayload]:
    """Return the payload, or None for anything malformed."""
    if not looks_like_token(value):
        return None
    body = _strip_url(value)[len(TOKEN_PREFIX):]
    try:
        raw = base64.urlsafe_b64decode(body + "=" * (-len(body) % 4))
        doc = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError):
        return None

    if not isinstance(doc, dict) or doc.get("type") != PAYLOAD_TYPE or doc.get("version") != PAYLOAD_VERSION:
        return None
    try:
        return QRPayload(
            certificate_number=str(doc["certificate_number"]),
            transaction_id=int(doc["transaction_id"]),
            verification_hash=str(doc["verification_hash"]),
            issued_at=str(doc["issued_at"]),
            expires_at=str(doc["expires_at"]),
            buyer_id=int(doc["buyer_id"]),
            seller_id=int(doc["seller_id"]),
        )
    except (KeyError, TypeError, ValueError):
        return None


def verification_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/verify/{token}"


def render_image(content: str) -> bytes:
    """PNG bytes of a QR code encoding ``content``."""
    qr = qrcode.QRCode(version=None, error_correction=ERROR_CORRECT_M, box_size=8, border=2)
    qr.add_data(content)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def to_data_url(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


@dataclass(frozen=True)
class QRArtifact:
    """A payload together with the image rendered from it."""
    payload: QRPayload
    content: str
    png: bytes

    @property
    def data_url(self) -> str:
        return to_data_url(self.png)

    def finalize(self, verification_hash: str, base_url: str) -> "QRArtifact":
        if not self.payload.is_provisional:
            raise ValueError("QR artifact already carries a verification hash")
        return render_artifact(self.payload.with_hash(verification_hash), base_url)


def render_artifact(payload: QRPayload, base_url: str) -> QRArtifact:
    content = verification_url(base_url, payload.to_token())
    return QRArtifact(payload=payload, content=content, png=render_image(content))
