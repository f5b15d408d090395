import os
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_certificate_signer, get_db_session
from app.core.config import settings
from app.core.rate_limiter import limiter
from app.schemas.certificate import VerificationResult
from app.services.hash_service import CertificateSigner
from app.services.verification_service import verify_certificate

router = APIRouter(tags=["Verification"])

BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
templates = Jinja2Templates(directory=os.path.join(BASE_DIR, "templates"))


# ------------------------------------------------------------
# PUBLIC JSON VERIFICATION (no auth)
# ------------------------------------------------------------
@router.get("/api/certificates/verify/{code}", response_model=VerificationResult)
@limiter.limit(settings.VERIFY_RATE_LIMIT)
async def verify_certificate_api(
    request: Request,
    response: Response,
    code: str,
    qr: Optional[str] = Query(default=None, description="QR token to cross-check"),
    session: AsyncSession = Depends(get_db_session),
    signer: CertificateSigner = Depends(get_certificate_signer),
):
    result = await verify_certificate(session, code, signer, qr_token=qr)
    if result.status == "not_found":
        response.status_code = 404
    return result


# ------------------------------------------------------------
# PUBLIC HTML VERIFICATION PAGE (QR scan target)
# ------------------------------------------------------------
@router.get("/verify/{code}", response_class=HTMLResponse)
@limiter.limit(settings.VERIFY_RATE_LIMIT)
async def verify_certificate_page(
    request: Request,
    code: str,
    session: AsyncSession = Depends(get_db_session),
    signer: CertificateSigner = Depends(get_certificate_signer),
):
    result = await verify_certificate(session, code, signer)
    return templates.TemplateResponse(
        request,
        "verification.html",
        {
            "verified": result.is_valid,
            "result": result,
        },
        status_code=404 if result.status == "not_found" else 200,
    )
