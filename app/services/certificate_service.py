# app/services/certificate_service.py

"""
Certificate issuance, retrieval, download and status changes.

Issuance turns one completed transaction into exactly one certificate:

    no-certificate -> issuing -> issued (valid)

The database insert is the last step. Every artifact written before it
(the stored document) is removed again if the insert fails, so an
interrupted issuance never leaves a record without a document or a
document without a record.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from loguru import logger
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.exceptions import (
    CertificateError,
    CertificateNumberCollision,
    ConflictError,
    EncryptionFailure,
    IntegrityMismatch,
    NotFoundError,
    PermissionDenied,
    StorageFailure,
    ValidationFailure,
)
from app.core.storage import BlobStore
from app.core.timeutils import add_years, as_utc, utc_now
from app.models.certificate import Certificate
from app.models.enums import CertificateStatus, TransactionStatus
from app.models.marketplace import Profile, Service, Transaction
from app.services import qr_service
from app.services.encryption_service import DocumentCipher, scoped_plaintext_file
from app.services.hash_service import (
    CANONICAL_VERSION,
    CertificateFields,
    CertificateSigner,
    compute_document_hash,
    compute_verification_hash,
)
from app.services.pdf_service import RENDERER_VERSION, CertificateDocument, render_certificate_pdf
from app.services.transaction_service import get_profile, get_service, get_transaction

MAX_ISSUE_ATTEMPTS = 3


# ============================================================================
# CERTIFICATE STORE
# ============================================================================
async def certificate_exists_for_transaction(session: AsyncSession, transaction_id: int) -> bool:
    result = await session.execute(
        select(Certificate.id).where(Certificate.transaction_id == transaction_id)
    )
    return result.first() is not None


async def get_certificate_by_id(session: AsyncSession, certificate_id: int) -> Certificate:
    certificate = await session.get(Certificate, certificate_id)
    if not certificate:
        raise NotFoundError(f"Certificate {certificate_id} not found")
    return certificate


async def get_certificate_by_number(session: AsyncSession, number: str) -> Certificate:
    result = await session.execute(
        select(Certificate).where(Certificate.certificate_number == number)
    )
    certificate = result.scalar_one_or_none()
    if not certificate:
        raise NotFoundError(f"Certificate {number} not found")
    return certificate


@dataclass
class CertificateBundle:
    certificate: Certificate
    transaction: Transaction
    service: Service
    buyer: Profile
    seller: Profile

    def fields(self) -> CertificateFields:
        return CertificateFields.from_records(
            self.certificate.certificate_number,
            self.transaction,
            self.service,
            self.certificate.issued_at,
            self.certificate.expires_at,
        )

    @property
    def canonical_version(self) -> str:
        return (self.certificate.certificate_metadata or {}).get("canonicalVersion", CANONICAL_VERSION)


async def load_certificate_bundle(session: AsyncSession, certificate: Certificate) -> CertificateBundle:
    transaction = await get_transaction(session, certificate.transaction_id)
    service = await get_service(session, transaction.service_id)
    buyer = await get_profile(session, transaction.buyer_id)
    seller = await get_profile(session, transaction.seller_id)
    return CertificateBundle(certificate, transaction, service, buyer, seller)


async def list_certificates_for_user(session: AsyncSession, user_id: int):
    result = await session.execute(
        select(Certificate, Transaction, Service)
        .join(Transaction, Certificate.transaction_id == Transaction.id)
        .join(Service, Transaction.service_id == Service.id)
        .where(or_(Transaction.buyer_id == user_id, Transaction.seller_id == user_id))
        .order_by(Certificate.issued_at)
    )
    return result.all()


# ============================================================================
# ISSUANCE
# ============================================================================
def generate_certificate_number(transaction_id: int, issued_at: datetime) -> str:
    """e.g. HCTS-42-20261018093000-7F3A; a fresh suffix on every attempt."""
    suffix = secrets.token_hex(2).upper()
    return f"HCTS-{transaction_id}-{as_utc(issued_at):%Y%m%d%H%M%S}-{suffix}"


class CertificateIssuer:
    def __init__(
        self,
        signer: CertificateSigner,
        cipher: DocumentCipher,
        blob_store: BlobStore,
        *,
        verification_base_url: str,
        validity_years: int = 1,
        allow_plaintext_fallback: bool = False,
        scratch_dir: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.signer = signer
        self.cipher = cipher
        self.blob_store = blob_store
        self.verification_base_url = verification_base_url
        self.validity_years = validity_years
        self.allow_plaintext_fallback = allow_plaintext_fallback
        self.scratch_dir = scratch_dir
        self.clock = clock

    async def issue(self, session: AsyncSession, transaction_id: int) -> Certificate:
        for attempt in range(1, MAX_ISSUE_ATTEMPTS + 1):
            try:
                return await self._issue_once(session, transaction_id)
            except CertificateNumberCollision:
                logger.warning(
                    f"Certificate number collision for transaction {transaction_id} "
                    f"(attempt {attempt}/{MAX_ISSUE_ATTEMPTS}), retrying with a fresh number"
                )
        raise ConflictError(f"Could not allocate a unique certificate number for transaction {transaction_id}")

    async def _issue_once(self, session: AsyncSession, transaction_id: int) -> Certificate:
        # 1-3. Provenance: everything must exist before anything is produced
        transaction = await get_transaction(session, transaction_id)
        if await certificate_exists_for_transaction(session, transaction.id):
            raise ConflictError(f"Certificate already exists for transaction {transaction.id}")
        if transaction.status != TransactionStatus.Completed:
            raise ValidationFailure(
                f"Certificates are issued only for completed transactions (transaction {transaction.id} is "
                f"'{getattr(transaction.status, 'value', transaction.status)}')"
            )
        service = await get_service(session, transaction.service_id)
        buyer = await get_profile(session, transaction.buyer_id)
        seller = await get_profile(session, transaction.seller_id)

        # 4. Identity
        issued_at = self.clock().replace(microsecond=0)
        expires_at = add_years(issued_at, self.validity_years)
        number = generate_certificate_number(transaction.id, issued_at)
        fields = CertificateFields.from_records(number, transaction, service, issued_at, expires_at)

        # 5. QR, first pass with the placeholder hash, second pass with the real one
        provisional = qr_service.render_artifact(
            qr_service.build_payload(
                number, transaction.id, issued_at, expires_at, transaction.buyer_id, transaction.seller_id
            ),
            self.verification_base_url,
        )
        verification_hash = compute_verification_hash(fields)
        qr = provisional.finalize(verification_hash, self.verification_base_url)

        # 6. Document
        pdf_bytes = render_certificate_pdf(CertificateDocument(
            certificate_number=number,
            service_name=service.name,
            service_description=service.description,
            icd11_code=service.icd11_code,
            quantity=transaction.quantity,
            unit_price=transaction.unit_price,
            total_price=transaction.total_price,
            buyer_name=buyer.organization_name,
            seller_name=seller.organization_name,
            transaction_date=transaction.created_at,
            issued_at=issued_at,
            expires_at=expires_at,
            qr_png=qr.png,
        ))

        # 7. Fingerprints
        pdf_hash = compute_document_hash(pdf_bytes)
        signature = self.signer.sign(fields)

        # 8. Encrypted document
        blob_key, encrypted = self._store_document(number, pdf_bytes)

        # 9. Record
        certificate = Certificate(
            transaction_id=transaction.id,
            certificate_number=number,
            qr_code_data=qr.data_url,
            encrypted_pdf_path=blob_key,
            pdf_hash=pdf_hash,
            verification_hash=verification_hash,
            digital_signature=signature,
            status=CertificateStatus.Valid,
            issued_at=issued_at,
            expires_at=expires_at,
            certificate_metadata={
                "serviceId": service.id,
                "buyerId": transaction.buyer_id,
                "sellerId": transaction.seller_id,
                "generatedAt": issued_at.isoformat(),
                "canonicalVersion": CANONICAL_VERSION,
                "rendererVersion": RENDERER_VERSION,
                "documentEncrypted": encrypted,
                "keyVersion": self.cipher.active_version if encrypted else None,
            },
        )
        return await self._insert(session, certificate, blob_key)

    def _store_document(self, number: str, pdf_bytes: bytes) -> tuple[str, bool]:
        with scoped_plaintext_file(pdf_bytes, self.scratch_dir) as plain_path:
            try:
                blob = self.cipher.encrypt(plain_path.read_bytes())
                blob_key, encrypted = f"certificates/{number}.enc", True
            except EncryptionFailure:
                if not self.allow_plaintext_fallback:
                    raise
                logger.warning(
                    f"Document encryption failed for {number}; storing PLAINTEXT because "
                    f"ALLOW_PLAINTEXT_FALLBACK is enabled"
                )
                blob = plain_path.read_bytes()
                blob_key, encrypted = f"certificates/{number}.pdf", False

            self.blob_store.write(blob_key, blob)
        return blob_key, encrypted

    async def _insert(self, session: AsyncSession, certificate: Certificate, blob_key: str) -> Certificate:
        transaction_id = certificate.transaction_id
        number = certificate.certificate_number
        try:
            session.add(certificate)
            await session.commit()
        except IntegrityError:
            await session.rollback()
            self._discard_blob(blob_key)
            if await certificate_exists_for_transaction(session, transaction_id):
                raise ConflictError(f"Certificate already exists for transaction {transaction_id}")
            raise CertificateNumberCollision(number)
        except Exception:
            await session.rollback()
            self._discard_blob(blob_key)
            raise

        await session.refresh(certificate)
        logger.info(f"Issued certificate {certificate.certificate_number} for transaction {transaction_id}")
        return certificate

    def _discard_blob(self, blob_key: str):
        try:
            self.blob_store.delete(blob_key)
        except StorageFailure:
            logger.exception(f"Could not remove orphaned certificate document {blob_key}")


@dataclass
class IssueOutcome:
    transaction_id: int
    certificate: Optional[Certificate] = None
    error_kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.certificate is not None


async def issue_for_transactions(
    issuer: CertificateIssuer,
    session: AsyncSession,
    transaction_ids: List[int],
) -> List[IssueOutcome]:
    """Checkout completion hook: one failure does not stop the rest."""
    outcomes = []
    for transaction_id in transaction_ids:
        try:
            outcomes.append(IssueOutcome(transaction_id, certificate=await issuer.issue(session, transaction_id)))
        except CertificateError as e:
            logger.error(f"Certificate issuance failed for transaction {transaction_id} [{e.kind}]: {e.message}")
            outcomes.append(IssueOutcome(transaction_id, error_kind=e.kind))
    return outcomes


# ============================================================================
# STATUS
# ============================================================================
def effective_status(certificate: Certificate, now: Optional[datetime] = None) -> CertificateStatus:
    """Expiry is derived at read time, never written."""
    status = CertificateStatus(certificate.status)
    if status == CertificateStatus.Valid and as_utc(now or utc_now()) > as_utc(certificate.expires_at):
        return CertificateStatus.Expired
    return status


def is_downloadable(certificate: Certificate, now: Optional[datetime] = None) -> bool:
    return effective_status(certificate, now) == CertificateStatus.Valid


@dataclass(frozen=True)
class CertificateAuthority:
    """What the caller may do, decided at the API boundary."""
    actor_id: Optional[int]
    can_change_status: bool = False


ALLOWED_TRANSITIONS = {
    CertificateStatus.Valid: {CertificateStatus.Suspended, CertificateStatus.Revoked},
    CertificateStatus.Suspended: {CertificateStatus.Revoked, CertificateStatus.Valid},
}


async def change_certificate_status(
    session: AsyncSession,
    certificate_id: int,
    new_status: CertificateStatus,
    authority: CertificateAuthority,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[Certificate, CertificateStatus]:
    """Returns the updated certificate and the status it moved from."""
    if not authority.can_change_status:
        raise PermissionDenied("Caller may not change certificate status")

    certificate = await get_certificate_by_id(session, certificate_id)
    now = now or utc_now()
    current = effective_status(certificate, now)
    new_status = CertificateStatus(new_status)

    if new_status not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ConflictError(f"Cannot change certificate status from '{current.value}' to '{new_status.value}'")

    certificate.status = new_status
    if new_status == CertificateStatus.Revoked:
        certificate.revoked_at = now
        certificate.revocation_reason = reason
    session.add(certificate)
    await session.commit()
    await session.refresh(certificate)

    logger.info(
        f"Certificate {certificate.certificate_number}: {current.value} -> {new_status.value} "
        f"by user {authority.actor_id}"
    )
    return certificate, current


# ============================================================================
# DOWNLOAD
# ============================================================================
def load_certificate_document(
    certificate: Certificate,
    cipher: DocumentCipher,
    blob_store: BlobStore,
) -> bytes:
    """
    Decrypted PDF bytes, held in memory only for the current response.

    Raises BlobNotFoundError for a missing document, DecryptionFailure for
    a key or ciphertext problem, and IntegrityMismatch when the plaintext
    does not hash to the stored pdf_hash.
    """
    blob = blob_store.read(certificate.encrypted_pdf_path)

    if cipher.is_encrypted(blob):
        pdf_bytes = cipher.decrypt(blob)
    else:
        logger.warning(f"Serving legacy plaintext document for certificate {certificate.certificate_number}")
        pdf_bytes = blob

    if compute_document_hash(pdf_bytes) != certificate.pdf_hash:
        raise IntegrityMismatch(f"Stored document for {certificate.certificate_number} does not match pdf_hash")
    return pdf_bytes
