# app/services/verification_service.py

"""
Public certificate verification.

Nothing the client sends is trusted beyond the certificate number used
for lookup. Hashes are recomputed from the stored record and compared
server-side; every failure mode collapses into a ``not_found`` verdict so
tamper detection details never reach the caller.
"""

import hmac
from datetime import datetime
from typing import Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import CertificateError, IntegrityMismatch
from app.core.timeutils import utc_now
from app.models.enums import CertificateStatus
from app.schemas.certificate import (
    PartySummary,
    ServiceSummary,
    TransactionSummary,
    VerificationBlock,
    VerificationResult,
)
from app.services import qr_service
from app.services.certificate_service import (
    CertificateBundle,
    effective_status,
    get_certificate_by_number,
    load_certificate_bundle,
)
from app.services.hash_service import CertificateSigner, compute_verification_hash

STATUS_MESSAGES = {
    CertificateStatus.Valid: "Certificate is valid",
    CertificateStatus.Expired: "Certificate has expired",
    CertificateStatus.Revoked: "Certificate has been revoked",
    CertificateStatus.Suspended: "Certificate is suspended",
}


def not_found(certificate_number: str) -> VerificationResult:
    return VerificationResult(
        certificate_number=certificate_number,
        status="not_found",
        is_valid=False,
        status_message="Certificate not found",
    )


def _check_integrity(bundle: CertificateBundle, signer: CertificateSigner) -> str:
    """Recompute the verification hash and check the issuer signature; return the hash if both hold."""
    certificate = bundle.certificate
    fields = bundle.fields()
    version = bundle.canonical_version

    recomputed = compute_verification_hash(fields, version)
    if not hmac.compare_digest(recomputed, certificate.verification_hash or ""):
        raise IntegrityMismatch(f"verification hash mismatch for {certificate.certificate_number}")

    # A record without a valid issuer signature is a forgery, even if its hash matches
    if not certificate.digital_signature or not signer.verify(fields, certificate.digital_signature, version):
        raise IntegrityMismatch(f"signature missing or invalid for {certificate.certificate_number}")

    return recomputed


def _qr_matches(qr_token: str, certificate_number: str, recomputed_hash: str) -> bool:
    payload = qr_service.parse_token(qr_token)
    if payload is None:
        return False
    return (
        payload.certificate_number == certificate_number
        and hmac.compare_digest(payload.verification_hash, recomputed_hash)
    )


async def verify_certificate(
    session: AsyncSession,
    code: str,
    signer: CertificateSigner,
    qr_token: Optional[str] = None,
    now: Optional[datetime] = None,
) -> VerificationResult:
    """
    ``code`` is a certificate number or a QR token (or the URL encoded in
    the QR image). ``qr_token`` is checked independently and only affects
    ``verification.qrValid``.
    """
    code = (code or "").strip()

    # 1. Parse input
    if qr_service.looks_like_token(code):
        payload = qr_service.parse_token(code)
        if payload is None:
            return not_found(code)
        certificate_number = payload.certificate_number
        qr_token = qr_token or code
    else:
        certificate_number = code

    if not certificate_number:
        return not_found(code)

    # 2-3. Lookup and integrity, all failures look the same from outside
    try:
        certificate = await get_certificate_by_number(session, certificate_number)
        bundle = await load_certificate_bundle(session, certificate)
        recomputed = _check_integrity(bundle, signer)
    except IntegrityMismatch as e:
        logger.warning(f"Verification integrity mismatch: {e.message}")
        return not_found(certificate_number)
    except CertificateError as e:
        logger.info(f"Verification of '{certificate_number}' failed [{e.kind}]")
        return not_found(certificate_number)

    # 4-5. Record state; expired certificates stay viewable
    status = effective_status(certificate, now or utc_now())
    transaction = bundle.transaction

    # 6. QR token, independent of overall validity
    qr_valid = _qr_matches(qr_token, certificate.certificate_number, recomputed) if qr_token else None

    return VerificationResult(
        certificate_number=certificate.certificate_number,
        status=status.value,
        is_valid=status == CertificateStatus.Valid,
        status_message=STATUS_MESSAGES[status],
        issued_at=certificate.issued_at,
        expires_at=certificate.expires_at,
        service=ServiceSummary(
            name=bundle.service.name,
            icd11_code=bundle.service.icd11_code,
        ),
        transaction=TransactionSummary(
            quantity=transaction.quantity,
            total_price=transaction.total_price,
            created_at=transaction.created_at,
        ),
        buyer=PartySummary(organization_name=bundle.buyer.organization_name),
        seller=PartySummary(organization_name=bundle.seller.organization_name),
        verification=VerificationBlock(
            hash=certificate.verification_hash,
            signature="present" if certificate.digital_signature else "not_present",
            qr_valid=qr_valid,
        ),
    )
