import io
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from pypdf import PdfReader

from app.core.exceptions import ValidationFailure
from app.services import qr_service
from app.services.pdf_service import CertificateDocument, render_certificate_pdf


@pytest.fixture(scope="module")
def document():
    return CertificateDocument(
        certificate_number="HCTS-42-20260301093000-7F3A",
        service_name="Tuberculosis Screening",
        service_description="Chest X-ray and sputum test",
        icd11_code="1A01",
        quantity=3,
        unit_price=Decimal("50.00"),
        total_price=Decimal("150.00"),
        buyer_name="Acme Insurance",
        seller_name="City Clinic",
        transaction_date=datetime(2026, 2, 28, 14, 0, tzinfo=timezone.utc),
        issued_at=datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc),
        expires_at=datetime(2027, 3, 1, 9, 30, tzinfo=timezone.utc),
        qr_png=qr_service.render_image("https://hcts.test/verify/HCTS1.test"),
    )


def test_render_produces_pdf(document):
    pdf = render_certificate_pdf(document)
    assert pdf.startswith(b"%PDF")

    reader = PdfReader(io.BytesIO(pdf))
    assert len(reader.pages) == 1

    text = reader.pages[0].extract_text()
    assert "HCTS-42-20260301093000-7F3A" in text
    assert "Tuberculosis Screening" in text
    assert "1A01" in text
    assert "Acme Insurance" in text
    assert "City Clinic" in text
    assert "150.00" in text


def test_render_is_byte_identical_for_same_input(document):
    assert render_certificate_pdf(document) == render_certificate_pdf(document)


def test_render_depends_on_content(document):
    changed = replace(document, quantity=4, total_price=Decimal("200.00"))
    assert render_certificate_pdf(changed) != render_certificate_pdf(document)


@pytest.mark.parametrize("field, value", [
    ("certificate_number", ""),
    ("service_name", "  "),
    ("buyer_name", None),
    ("qr_png", b""),
    ("issued_at", None),
])
def test_missing_mandatory_field_is_rejected(document, field, value):
    with pytest.raises(ValidationFailure):
        render_certificate_pdf(replace(document, **{field: value}))


def test_optional_description(document):
    pdf = render_certificate_pdf(replace(document, service_description=None))
    assert pdf.startswith(b"%PDF")
