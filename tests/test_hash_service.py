import json
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.core.exceptions import ValidationFailure
from app.core.timeutils import add_years
from app.services.hash_service import (
    CANONICAL_VERSION,
    CertificateFields,
    CertificateSigner,
    canonicalize,
    compute_document_hash,
    compute_verification_hash,
)


def make_fields(**overrides):
    issued = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
    values = dict(
        certificate_number="HCTS-42-20260301093000-7F3A",
        transaction_id=42,
        service_id=7,
        icd11_code="1A01",
        quantity=3,
        unit_price=Decimal("50.00"),
        total_price=Decimal("150.00"),
        buyer_id=1,
        seller_id=2,
        transaction_date=datetime(2026, 2, 28, 14, 0, tzinfo=timezone.utc),
        issued_at=issued,
        expires_at=add_years(issued, 1),
    )
    values.update(overrides)
    return CertificateFields(**values)


def test_verification_hash_is_deterministic():
    assert compute_verification_hash(make_fields()) == compute_verification_hash(make_fields())
    assert len(compute_verification_hash(make_fields())) == 64


def test_canonical_form_is_sorted_compact_json():
    raw = canonicalize(make_fields())
    doc = json.loads(raw)

    assert doc["v"] == CANONICAL_VERSION
    assert doc["unit_price"] == "50.00"
    assert doc["issued_at"] == "2026-03-01T09:30:00Z"
    assert list(doc) == sorted(doc)
    assert b" " not in raw


def test_naive_and_aware_utc_timestamps_hash_the_same():
    naive = make_fields(transaction_date=datetime(2026, 2, 28, 14, 0))
    assert compute_verification_hash(naive) == compute_verification_hash(make_fields())


def test_amount_representation_does_not_change_hash():
    assert compute_verification_hash(make_fields(unit_price=50)) == compute_verification_hash(make_fields())


def test_any_field_change_changes_hash():
    original = compute_verification_hash(make_fields())
    assert compute_verification_hash(make_fields(quantity=4)) != original
    assert compute_verification_hash(make_fields(icd11_code="1B10")) != original
    assert compute_verification_hash(make_fields(seller_id=3)) != original


def test_missing_field_fails_closed():
    with pytest.raises(ValidationFailure):
        compute_verification_hash(make_fields(icd11_code=""))
    with pytest.raises(ValidationFailure):
        compute_verification_hash(make_fields(expires_at=None))


def test_unknown_canonical_version_is_rejected():
    with pytest.raises(ValidationFailure):
        canonicalize(make_fields(), version="hcts-cert-v0")


def test_document_hash():
    assert compute_document_hash(b"%PDF-1.4 test") == compute_document_hash(b"%PDF-1.4 test")
    assert compute_document_hash(b"%PDF-1.4 test") != compute_document_hash(b"%PDF-1.4 tesT")
    with pytest.raises(ValidationFailure):
        compute_document_hash(b"")


def test_signature_round_trip():
    signer = CertificateSigner("signing-key")
    fields = make_fields()
    signature = signer.sign(fields)

    assert signer.verify(fields, signature)
    assert not signer.verify(replace(fields, quantity=30), signature)
    assert not CertificateSigner("other-key").verify(fields, signature)
    assert not signer.verify(fields, "")


def test_signer_requires_key():
    with pytest.raises(ValueError):
        CertificateSigner("")


def test_add_years_handles_leap_day():
    leap = datetime(2028, 2, 29, 12, 0, tzinfo=timezone.utc)
    assert add_years(leap, 1) == datetime(2029, 2, 28, 12, 0, tzinfo=timezone.utc)
