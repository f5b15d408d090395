import os
import shutil
import tempfile
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# ------------------------------------------------------------------
# FORCE TESTING MODE
# Settings are read when app.core.config is first imported, so the
# environment must be complete BEFORE importing app.main.
# ------------------------------------------------------------------
TEST_DIR = Path(tempfile.mkdtemp(prefix="hcts-tests-"))

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DIR / 'test.db'}"
os.environ["SECRET_KEY"] = "test-jwt-secret"
os.environ["CERTIFICATE_SIGNING_KEY"] = "test-signing-key"
os.environ["DOCUMENT_ENCRYPTION_KEYS"] = "1:test-document-key"
os.environ["CERTIFICATE_STORAGE_BACKEND"] = "local"
os.environ["CERTIFICATE_STORAGE_DIR"] = str(TEST_DIR / "blobs")
os.environ["VERIFY_RATE_LIMIT"] = "1000/minute"
os.environ.pop("REDIS_URL", None)

from sqlmodel import SQLModel

from app.main import app
from app.core.database import AsyncSessionLocal, engine
from app.core.storage import LocalBlobStore
from app.models import audit, certificate, marketplace  # noqa: F401
from app.models.enums import TransactionStatus
from app.models.marketplace import Profile, Service, Transaction
from app.models.user import User, UserRole
from app.services.certificate_service import CertificateIssuer
from app.services.encryption_service import DocumentCipher
from app.services.hash_service import CertificateSigner

ISSUE_TIME = datetime(2026, 3, 1, 9, 30, 0, 456789, tzinfo=timezone.utc)
BASE_URL = "https://hcts.test"


@pytest_asyncio.fixture
async def prepare_db():
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session(prepare_db):
    async with AsyncSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def client(prepare_db):
    """
    Correct fixture for httpx >= 0.27
    Uses ASGITransport() instead of app=...
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac
    shutil.rmtree(TEST_DIR / "blobs", ignore_errors=True)


@pytest_asyncio.fixture
async def marketplace_data(db_session):
    """
    Completed transaction #42: 3 x Tuberculosis Screening (ICD-11 1A01)
    at 50.00, bought by Acme Insurance from City Clinic.
    """
    buyer = User(email="claims@acme.test", name="Acme Claims", role=UserRole.Insurance)
    seller = User(email="admin@cityclinic.test", name="City Clinic", role=UserRole.Provider)
    admin = User(email="ops@hcts.test", name="HCTS Ops", role=UserRole.Admin)
    outsider = User(email="someone@else.test", name="Outsider", role=UserRole.Intermediary)
    db_session.add_all([buyer, seller, admin, outsider])
    await db_session.commit()

    db_session.add_all([
        Profile(user_id=buyer.id, organization_name="Acme Insurance"),
        Profile(user_id=seller.id, organization_name="City Clinic"),
    ])
    service = Service(
        provider_id=seller.id,
        name="Tuberculosis Screening",
        description="Chest X-ray and sputum test",
        icd11_code="1A01",
        base_price=Decimal("50.00"),
    )
    db_session.add(service)
    await db_session.commit()

    transaction = Transaction(
        id=42,
        buyer_id=buyer.id,
        seller_id=seller.id,
        service_id=service.id,
        quantity=3,
        unit_price=Decimal("50.00"),
        total_price=Decimal("150.00"),
        status=TransactionStatus.Completed,
        created_at=datetime(2026, 2, 28, 14, 0, 0, tzinfo=timezone.utc),
    )
    db_session.add(transaction)
    await db_session.commit()

    # Plain ids stay readable after a failed issuance rolls the session back
    return SimpleNamespace(
        transaction_id=transaction.id,
        buyer_id=buyer.id,
        seller_id=seller.id,
        admin_id=admin.id,
        outsider_id=outsider.id,
        service_id=service.id,
        buyer=buyer,
        seller=seller,
        admin=admin,
        outsider=outsider,
        service=service,
        transaction=transaction,
    )


@pytest.fixture
def signer():
    return CertificateSigner("test-signing-key")


@pytest.fixture
def cipher():
    return DocumentCipher({1: "test-document-key"})


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def scratch_dir(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def issuer(signer, cipher, blob_store, scratch_dir):
    return CertificateIssuer(
        signer,
        cipher,
        blob_store,
        verification_base_url=BASE_URL,
        scratch_dir=str(scratch_dir),
        clock=lambda: ISSUE_TIME,
    )


def stored_blobs(blob_store: LocalBlobStore):
    if not blob_store.root.exists():
        return []
    return [p for p in blob_store.root.rglob("*") if p.is_file()]
