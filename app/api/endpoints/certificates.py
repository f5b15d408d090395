from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    get_certificate_issuer,
    get_current_user,
    get_db_session,
    get_document_cipher,
)
from app.core.exceptions import (
    BlobNotFoundError,
    CertificateError,
    ConflictError,
    DecryptionFailure,
    NotFoundError,
    PermissionDenied,
    ValidationFailure,
)
from app.core.rbac import AllowRoles, ensure_party_or_admin, is_admin
from app.core.storage import BlobStore, get_blob_store
from app.models.enums import CertificateStatus
from app.models.user import User, UserRole
from app.schemas.certificate import (
    CertificateDetail,
    CertificateIssued,
    CertificateIssueRequest,
    CertificateStatusChange,
    CertificateStatusRead,
    PartySummary,
    ServiceSummary,
    TransactionSummary,
    UserCertificate,
    UserCertificateList,
)
from app.services.audit_service import log_activity
from app.services.certificate_service import (
    CertificateAuthority,
    CertificateIssuer,
    change_certificate_status,
    get_certificate_by_id,
    is_downloadable,
    list_certificates_for_user,
    load_certificate_bundle,
    load_certificate_document,
)
from app.services.encryption_service import DocumentCipher
from app.services.transaction_service import get_transaction

router = APIRouter(
    prefix="/api/certificates",
    tags=["Certificates"]
)


# ------------------------------------------------------------
# GENERATE CERTIFICATE
# ------------------------------------------------------------
@router.post("/generate", response_model=CertificateIssued)
async def generate_certificate(
    payload: CertificateIssueRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    issuer: CertificateIssuer = Depends(get_certificate_issuer),
):
    try:
        transaction = await get_transaction(session, payload.transaction_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Transaction not found")
    ensure_party_or_admin(current_user, transaction)

    # A failed issuance rolls the session back and expires loaded rows
    actor_id, actor_role = current_user.id, str(current_user.role.value)

    try:
        certificate = await issuer.issue(session, payload.transaction_id)
    except CertificateError as e:
        logger.error(f"Certificate generation failed for transaction {payload.transaction_id} [{e.kind}]: {e.message}")
        if isinstance(e, NotFoundError):
            raise HTTPException(status_code=404, detail=e.message)
        if isinstance(e, ConflictError):
            raise HTTPException(status_code=409, detail="Certificate already exists for this transaction")
        if isinstance(e, ValidationFailure):
            raise HTTPException(status_code=400, detail=e.message)
        raise HTTPException(status_code=500, detail="Failed to generate certificate")

    background_tasks.add_task(
        log_activity,
        action="certificate.issued",
        actor_id=actor_id,
        actor_role=actor_role,
        certificate_id=certificate.id,
        details={
            "certificate_number": certificate.certificate_number,
            "transaction_id": certificate.transaction_id,
        },
    )

    return CertificateIssued(
        certificate_id=certificate.id,
        certificate_number=certificate.certificate_number,
        verification_hash=certificate.verification_hash,
        issued_at=certificate.issued_at,
        expires_at=certificate.expires_at,
        qr_code=certificate.qr_code_data,
    )


# ------------------------------------------------------------
# CERTIFICATES OF A USER (buyer or seller side)
# ------------------------------------------------------------
@router.get("/user/{user_id}", response_model=UserCertificateList)
async def get_user_certificates(
    user_id: int,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    if current_user.id != user_id and not is_admin(current_user):
        raise HTTPException(status_code=403, detail="Not authorized to view these certificates")

    rows = await list_certificates_for_user(session, user_id)
    certificates = [
        UserCertificate(
            id=cert.id,
            certificate_number=cert.certificate_number,
            status=cert.status.value,
            issued_at=cert.issued_at,
            expires_at=cert.expires_at,
            verification_hash=cert.verification_hash,
            service=ServiceSummary(name=service.name, icd11_code=service.icd11_code),
            transaction=TransactionSummary(
                id=tx.id,
                quantity=tx.quantity,
                total_price=tx.total_price,
                created_at=tx.created_at,
                role="buyer" if tx.buyer_id == user_id else "seller",
            ),
        )
        for cert, tx, service in rows
    ]
    return UserCertificateList(certificates=certificates, total=len(certificates))


# ------------------------------------------------------------
# DOWNLOAD CERTIFICATE
# ------------------------------------------------------------
@router.get("/download/{certificate_id}", response_class=Response)
async def download_certificate(
    certificate_id: int,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    cipher: DocumentCipher = Depends(get_document_cipher),
    blob_store: BlobStore = Depends(get_blob_store),
):
    try:
        certificate = await get_certificate_by_id(session, certificate_id)
        transaction = await get_transaction(session, certificate.transaction_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Certificate not found")
    ensure_party_or_admin(current_user, transaction)

    if not is_downloadable(certificate):
        raise HTTPException(status_code=403, detail="Certificate is not available for download")

    try:
        pdf_bytes = load_certificate_document(certificate, cipher, blob_store)
    except BlobNotFoundError:
        logger.error(f"Document missing for certificate {certificate.certificate_number}")
        raise HTTPException(status_code=404, detail="Certificate document not found")
    except DecryptionFailure as e:
        logger.error(f"Document decryption failed for {certificate.certificate_number}: {e.message}")
        raise HTTPException(status_code=500, detail="Failed to read certificate document")
    except CertificateError as e:
        logger.error(f"Document read failed for {certificate.certificate_number} [{e.kind}]: {e.message}")
        raise HTTPException(status_code=500, detail="Failed to read certificate document")

    filename = f"certificate-{certificate.certificate_number}.pdf"
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "private, no-cache",
        },
    )


# ------------------------------------------------------------
# CERTIFICATE DETAIL
# ------------------------------------------------------------
@router.get("/{certificate_id}", response_model=CertificateDetail)
async def get_certificate(
    certificate_id: int,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        certificate = await get_certificate_by_id(session, certificate_id)
        bundle = await load_certificate_bundle(session, certificate)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Certificate not found")
    ensure_party_or_admin(current_user, bundle.transaction)

    tx = bundle.transaction
    return CertificateDetail(
        id=certificate.id,
        certificate_number=certificate.certificate_number,
        status=certificate.status.value,
        issued_at=certificate.issued_at,
        expires_at=certificate.expires_at,
        qr_code_data=certificate.qr_code_data,
        verification_hash=certificate.verification_hash,
        service=ServiceSummary(
            name=bundle.service.name,
            description=bundle.service.description,
            icd11_code=bundle.service.icd11_code,
        ),
        transaction=TransactionSummary(
            id=tx.id,
            quantity=tx.quantity,
            unit_price=tx.unit_price,
            total_price=tx.total_price,
            created_at=tx.created_at,
        ),
        buyer=PartySummary(organization_name=bundle.buyer.organization_name),
        seller=PartySummary(organization_name=bundle.seller.organization_name),
    )


# ------------------------------------------------------------
# CHANGE STATUS (suspend / revoke / reinstate)
# ------------------------------------------------------------
@router.patch("/{certificate_id}/status", response_model=CertificateStatusRead)
async def update_certificate_status(
    certificate_id: int,
    payload: CertificateStatusChange,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(AllowRoles(UserRole.Admin)),
    session: AsyncSession = Depends(get_db_session),
):
    authority = CertificateAuthority(actor_id=current_user.id, can_change_status=is_admin(current_user))
    actor_role = str(current_user.role.value)

    try:
        certificate, previous = await change_certificate_status(
            session,
            certificate_id,
            CertificateStatus(payload.status),
            authority,
            reason=payload.reason,
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Certificate not found")
    except PermissionDenied:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized to change certificate status")
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=e.message)

    background_tasks.add_task(
        log_activity,
        action=f"certificate.{certificate.status.value}",
        actor_id=authority.actor_id,
        actor_role=actor_role,
        certificate_id=certificate.id,
        remarks=payload.reason,
        details={
            "certificate_number": certificate.certificate_number,
            "from": previous.value,
            "to": certificate.status.value,
        },
    )

    return CertificateStatusRead(
        id=certificate.id,
        certificate_number=certificate.certificate_number,
        status=certificate.status.value,
        revoked_at=certificate.revoked_at,
        revocation_reason=certificate.revocation_reason,
    )
