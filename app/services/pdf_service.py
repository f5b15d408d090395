# app/services/pdf_service.py

"""
Certificate PDF rendering.

reportlab runs in invariant mode, so the output depends only on the
:class:`CertificateDocument` and ``RENDERER_VERSION``. Re-rendering the
same certificate yields the same bytes and the same ``pdf_hash``.
"""

import io
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from app.core.exceptions import ValidationFailure
from app.services.hash_service import format_amount

RENDERER_VERSION = "1"

# -----------------------------
# Page Layout
# -----------------------------
PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 20 * mm
QR_SIZE = 40 * mm
HEADER_BLUE = (41 / 255, 128 / 255, 185 / 255)
FOOTER_GREY = (240 / 255, 240 / 255, 240 / 255)


@dataclass(frozen=True)
class CertificateDocument:
    certificate_number: str
    service_name: str
    service_description: Optional[str]
    icd11_code: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    buyer_name: str
    seller_name: str
    transaction_date: datetime
    issued_at: datetime
    expires_at: datetime
    qr_png: bytes


def _fmt_date(value: datetime) -> str:
    return value.strftime("%d %b %Y")


def _validate(doc: CertificateDocument):
    required = {
        "certificate_number": doc.certificate_number,
        "service_name": doc.service_name,
        "icd11_code": doc.icd11_code,
        "buyer_name": doc.buyer_name,
        "seller_name": doc.seller_name,
        "qr_png": doc.qr_png,
    }
    missing = [name for name, value in required.items() if not value or not str(value).strip()]
    if missing:
        raise ValidationFailure(f"Cannot render certificate, missing: {', '.join(missing)}")
    for name in ("transaction_date", "issued_at", "expires_at"):
        if getattr(doc, name) is None:
            raise ValidationFailure(f"Cannot render certificate, missing: {name}")


# -----------------------------
# PDF Generation Function
# -----------------------------
def render_certificate_pdf(doc: CertificateDocument) -> bytes:
    """
    Lays out the certificate on a single A4 page and returns the PDF bytes.

    Output depends only on ``doc`` and RENDERER_VERSION: the canvas runs in
    invariant mode so creation date and document ID are fixed, which makes
    re-rendering for audit byte-identical.
    """
    _validate(doc)

    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4, invariant=1)
    c.setTitle("Healthcare Service Certificate")
    c.setSubject("Digital Certificate of Service")
    c.setAuthor("HCTS Platform")
    c.setCreator(f"HCTS Certificate Renderer v{RENDERER_VERSION}")
    c.setKeywords(["certificate", "healthcare", "digital"])

    _draw_watermark(c)
    _draw_header(c)
    _draw_title(c)
    _draw_details(c, doc)
    _draw_qr(c, doc.qr_png)
    _draw_footer(c)

    c.showPage()
    c.save()
    return buf.getvalue()


def _draw_header(c: canvas.Canvas):
    c.setFillColorRGB(*HEADER_BLUE)
    c.rect(0, PAGE_HEIGHT - 30 * mm, PAGE_WIDTH, 30 * mm, fill=1, stroke=0)

    c.setFillColorRGB(1, 1, 1)
    c.setFont("Helvetica-Bold", 24)
    c.drawString(MARGIN, PAGE_HEIGHT - 20 * mm, "HCTS")
    c.setFont("Helvetica", 12)
    c.drawString(MARGIN, PAGE_HEIGHT - 27 * mm, "Healthcare Trading Certificate System")
    c.setFont("Helvetica", 10)
    c.drawRightString(PAGE_WIDTH - MARGIN, PAGE_HEIGHT - 20 * mm, "DIGITAL CERTIFICATE OF SERVICE")


def _draw_title(c: canvas.Canvas):
    c.setFillColorRGB(0, 0, 0)
    c.setFont("Helvetica-Bold", 18)
    c.drawCentredString(PAGE_WIDTH / 2, PAGE_HEIGHT - 50 * mm, "CERTIFICATE OF HEALTHCARE SERVICE")
    c.setLineWidth(0.5)
    c.line(30 * mm, PAGE_HEIGHT - 55 * mm, PAGE_WIDTH - 30 * mm, PAGE_HEIGHT - 55 * mm)


def _draw_details(c: canvas.Canvas, doc: CertificateDocument):
    x_label = MARGIN
    x_value = MARGIN + 5 * mm
    y = PAGE_HEIGHT - 70 * mm

    c.setFont("Helvetica-Bold", 12)
    c.drawString(x_label, y, f"Certificate Number: {doc.certificate_number}")
    y -= 10 * mm

    def section(title, rows):
        nonlocal y
        c.setFont("Helvetica-Bold", 11)
        c.drawString(x_label, y, title)
        y -= 8 * mm
        c.setFont("Helvetica", 10)
        for row in rows:
            for line in simpleSplit(row, "Helvetica", 10, PAGE_WIDTH - x_value - MARGIN - QR_SIZE):
                c.drawString(x_value, y, line)
                y -= 6 * mm
        y -= 7 * mm

    section("SERVICE INFORMATION", [
        f"Service: {doc.service_name}",
        f"Description: {doc.service_description or '-'}",
        f"ICD-11 Code: {doc.icd11_code}",
        f"Quantity: {doc.quantity}",
        f"Unit Price: {format_amount(doc.unit_price)}",
        f"Total Price: {format_amount(doc.total_price)}",
    ])
    section("TRANSACTION INFORMATION", [
        f"Transaction Date: {_fmt_date(doc.transaction_date)}",
        f"Issued Date: {_fmt_date(doc.issued_at)}",
        f"Expiry Date: {_fmt_date(doc.expires_at)}",
    ])
    section("PARTIES", [
        f"Buyer: {doc.buyer_name}",
        f"Seller: {doc.seller_name}",
    ])


def _draw_qr(c: canvas.Canvas, qr_png: bytes):
    x = PAGE_WIDTH - QR_SIZE - MARGIN
    y = 60 * mm
    c.drawImage(ImageReader(io.BytesIO(qr_png)), x, y, QR_SIZE, QR_SIZE)
    c.setLineWidth(0.5)
    c.rect(x, y, QR_SIZE, QR_SIZE)
    c.setFont("Helvetica", 8)
    c.drawCentredString(x + QR_SIZE / 2, y - 5 * mm, "Scan for Verification")


def _draw_footer(c: canvas.Canvas):
    c.setFillColorRGB(*FOOTER_GREY)
    c.rect(0, 0, PAGE_WIDTH, 30 * mm, fill=1, stroke=0)

    c.setFillColorRGB(100 / 255, 100 / 255, 100 / 255)
    c.setFont("Helvetica", 8)
    c.drawString(MARGIN, 22 * mm, "This certificate is electronically generated and digitally signed.")
    c.drawString(MARGIN, 16 * mm, "It serves as proof of healthcare service transaction completion.")
    c.drawString(MARGIN, 10 * mm, "For verification, scan the QR code or visit the HCTS verification portal.")
    c.drawRightString(PAGE_WIDTH - MARGIN, 10 * mm, "Page 1 of 1")


def _draw_watermark(c: canvas.Canvas):
    c.saveState()
    c.setFillColorRGB(0.9, 0.9, 0.9)
    c.setFont("Helvetica-Bold", 60)
    c.translate(PAGE_WIDTH / 2, PAGE_HEIGHT / 2)
    c.rotate(45)
    c.drawCentredString(0, 0, "HCTS")
    c.restoreState()
