from datetime import timedelta

import pytest
import pytest_asyncio

from app.core.exceptions import IntegrityMismatch
from app.models.enums import CertificateStatus
from app.services import qr_service
from app.services.certificate_service import CertificateAuthority, change_certificate_status, load_certificate_bundle
from app.services.hash_service import compute_verification_hash
from app.services.verification_service import _check_integrity, verify_certificate

from conftest import ISSUE_TIME

SOON = ISSUE_TIME + timedelta(days=30)


@pytest_asyncio.fixture
async def issued(db_session, marketplace_data, issuer):
    return await issuer.issue(db_session, marketplace_data.transaction_id)


def token_for(certificate, transaction, verification_hash=None):
    payload = qr_service.payload_for_certificate(certificate, transaction)
    if verification_hash:
        payload = payload.with_hash(verification_hash)
    return payload.to_token()


@pytest.mark.asyncio
async def test_valid_certificate_by_number(db_session, marketplace_data, issued, signer):
    token = token_for(issued, marketplace_data.transaction)
    result = await verify_certificate(db_session, issued.certificate_number, signer, qr_token=token, now=SOON)

    assert result.status == "valid"
    assert result.is_valid is True
    assert result.status_message == "Certificate is valid"
    assert result.service.name == "Tuberculosis Screening"
    assert result.service.icd11_code == "1A01"
    assert result.transaction.quantity == 3
    assert result.buyer.organization_name == "Acme Insurance"
    assert result.seller.organization_name == "City Clinic"
    assert result.verification.hash == issued.verification_hash
    assert result.verification.signature == "present"
    assert result.verification.qr_valid is True


@pytest.mark.asyncio
async def test_valid_certificate_by_scanned_url(db_session, marketplace_data, issued, signer):
    url = qr_service.verification_url("https://hcts.test", token_for(issued, marketplace_data.transaction))
    result = await verify_certificate(db_session, url, signer, now=SOON)

    assert result.certificate_number == issued.certificate_number
    assert result.is_valid is True
    assert result.verification.qr_valid is True


@pytest.mark.asyncio
async def test_qr_not_checked_without_token(db_session, issued, signer):
    result = await verify_certificate(db_session, issued.certificate_number, signer, now=SOON)
    assert result.is_valid is True
    assert result.verification.qr_valid is None


@pytest.mark.asyncio
async def test_forged_qr_hash(db_session, marketplace_data, issued, signer):
    forged = token_for(issued, marketplace_data.transaction, verification_hash="f" * 64)
    result = await verify_certificate(db_session, issued.certificate_number, signer, qr_token=forged, now=SOON)

    # The record itself is still valid; only the QR check fails
    assert result.status == "valid"
    assert result.verification.qr_valid is False


@pytest.mark.asyncio
async def test_tampered_record_is_not_found(db_session, marketplace_data, issued, signer):
    marketplace_data.transaction.quantity = 4
    await db_session.commit()

    result = await verify_certificate(db_session, issued.certificate_number, signer, now=SOON)

    assert result.status == "not_found"
    assert result.is_valid is False
    assert result.service is None
    assert result.verification is None


@pytest.mark.asyncio
async def test_tampered_signature_is_not_found(db_session, issued, signer):
    issued.digital_signature = "AAAA" + issued.digital_signature[4:]
    await db_session.commit()

    result = await verify_certificate(db_session, issued.certificate_number, signer, now=SOON)
    assert result.status == "not_found"


async def _rehash_after_tampering(session, marketplace_data, certificate):
    # Tampered record whose stored hash is recomputed to match
    marketplace_data.transaction.quantity = 300
    bundle = await load_certificate_bundle(session, certificate)
    certificate.verification_hash = compute_verification_hash(bundle.fields(), bundle.canonical_version)
    return bundle


@pytest.mark.asyncio
async def test_rehashed_record_without_signature_is_not_found(db_session, marketplace_data, issued, signer):
    number = issued.certificate_number
    await _rehash_after_tampering(db_session, marketplace_data, issued)
    issued.digital_signature = ""
    await db_session.commit()

    result = await verify_certificate(db_session, number, signer, now=SOON)
    assert result.status == "not_found"
    assert result.verification is None


@pytest.mark.asyncio
async def test_missing_signature_fails_integrity_check(db_session, marketplace_data, issued, signer):
    bundle = await _rehash_after_tampering(db_session, marketplace_data, issued)
    issued.digital_signature = None

    with pytest.raises(IntegrityMismatch):
        _check_integrity(bundle, signer)


@pytest.mark.asyncio
async def test_unknown_number_is_not_found(db_session, issued, signer):
    result = await verify_certificate(db_session, "HCTS-0-20260101000000-0000", signer)
    assert result.status == "not_found"
    assert result.status_message == "Certificate not found"


@pytest.mark.asyncio
async def test_malformed_token_is_not_found(db_session, issued, signer):
    result = await verify_certificate(db_session, "HCTS1.%%%garbage", signer)
    assert result.status == "not_found"


@pytest.mark.asyncio
async def test_expired_certificate_keeps_details(db_session, issued, signer):
    later = ISSUE_TIME + timedelta(days=366)
    result = await verify_certificate(db_session, issued.certificate_number, signer, now=later)

    assert result.status == "expired"
    assert result.is_valid is False
    assert result.status_message == "Certificate has expired"
    assert result.service.icd11_code == "1A01"
    assert result.transaction.quantity == 3


@pytest.mark.asyncio
async def test_revoked_certificate(db_session, marketplace_data, issued, signer):
    authority = CertificateAuthority(actor_id=marketplace_data.admin_id, can_change_status=True)
    await change_certificate_status(
        db_session, issued.id, CertificateStatus.Revoked, authority, reason="Duplicate billing", now=SOON
    )

    result = await verify_certificate(db_session, issued.certificate_number, signer, now=SOON)
    assert result.status == "revoked"
    assert result.is_valid is False
    assert result.status_message == "Certificate has been revoked"
    assert result.service.name == "Tuberculosis Screening"


@pytest.mark.asyncio
async def test_suspended_certificate(db_session, marketplace_data, issued, signer):
    authority = CertificateAuthority(actor_id=marketplace_data.admin_id, can_change_status=True)
    await change_certificate_status(db_session, issued.id, CertificateStatus.Suspended, authority, now=SOON)

    result = await verify_certificate(db_session, issued.certificate_number, signer, now=SOON)
    assert result.status == "suspended"
    assert result.is_valid is False
