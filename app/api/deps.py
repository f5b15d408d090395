# app/api/deps.py

from functools import lru_cache
from typing import AsyncGenerator
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.security import decode_token
from app.core.database import get_session
from app.core.storage import BlobStore, get_blob_store
from app.models.user import User
from app.services.certificate_service import CertificateIssuer
from app.services.encryption_service import DocumentCipher, parse_key_ring
from app.services.hash_service import CertificateSigner


# ------------------------------------------------------------
# HTTP Bearer Authentication
# ------------------------------------------------------------
bearer_scheme = HTTPBearer(auto_error=True)


# ------------------------------------------------------------
# DB Session
# ------------------------------------------------------------
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


# ------------------------------------------------------------
# Get current logged-in user from JWT
# ------------------------------------------------------------
async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_db_session),
) -> User:

    try:
        payload = decode_token(credentials.credentials)
        user_id = int(payload.get("sub"))
    except (jwt.InvalidTokenError, TypeError, ValueError):
        raise HTTPException(401, "Could not validate credentials")

    user = await session.get(User, user_id)

    if not user:
        raise HTTPException(401, "User not found")

    return user


# ------------------------------------------------------------
# Certificate core collaborators (built once from settings)
# ------------------------------------------------------------
@lru_cache
def get_certificate_signer() -> CertificateSigner:
    return CertificateSigner(settings.CERTIFICATE_SIGNING_KEY)


@lru_cache
def get_document_cipher() -> DocumentCipher:
    return DocumentCipher(
        parse_key_ring(settings.DOCUMENT_ENCRYPTION_KEYS),
        settings.DOCUMENT_ENCRYPTION_KEY_VERSION,
    )


def get_certificate_issuer(
    signer: CertificateSigner = Depends(get_certificate_signer),
    cipher: DocumentCipher = Depends(get_document_cipher),
    blob_store: BlobStore = Depends(get_blob_store),
) -> CertificateIssuer:
    return CertificateIssuer(
        signer,
        cipher,
        blob_store,
        verification_base_url=settings.FRONTEND_URL,
        validity_years=settings.CERTIFICATE_VALIDITY_YEARS,
        allow_plaintext_fallback=settings.ALLOW_PLAINTEXT_FALLBACK,
        scratch_dir=settings.CERTIFICATE_SCRATCH_DIR,
    )
