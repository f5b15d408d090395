# app/core/storage.py

from abc import ABC, abstractmethod
from functools import lru_cache
from pathlib import Path

from loguru import logger
from supabase import Client, create_client

from app.core.config import settings
from app.core.exceptions import BlobNotFoundError, StorageFailure


class BlobStore(ABC):
    """Durable storage for certificate documents, addressed by relative key."""

    @abstractmethod
    def write(self, path: str, data: bytes) -> None:
        ...

    @abstractmethod
    def read(self, path: str) -> bytes:
        ...

    @abstractmethod
    def delete(self, path: str) -> None:
        ...


class LocalBlobStore(BlobStore):
    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        # Keys never escape the storage root
        if self.root not in target.parents:
            raise StorageFailure(f"Invalid storage key: {path}")
        return target

    def write(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            # "xb": never overwrite an issued document
            with open(target, "xb") as fh:
                fh.write(data)
        except FileExistsError as e:
            raise StorageFailure(f"Blob already exists: {path}") from e
        except OSError as e:
            raise StorageFailure(f"Failed to write blob {path}: {e}") from e

    def read(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"Blob not found: {path}") from e
        except OSError as e:
            raise StorageFailure(f"Failed to read blob {path}: {e}") from e

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            raise StorageFailure(f"Failed to delete blob {path}: {e}") from e


class SupabaseBlobStore(BlobStore):
    def __init__(self, client: Client, bucket: str):
        self.client = client
        self.bucket = bucket

    def write(self, path: str, data: bytes) -> None:
        try:
            self.client.storage.from_(self.bucket).upload(
                path=path,
                file=data,
                file_options={"content-type": "application/octet-stream", "upsert": "false"}
            )
        except Exception as e:
            raise StorageFailure(f"Storage upload failed for {path}: {e}") from e

    def read(self, path: str) -> bytes:
        try:
            return self.client.storage.from_(self.bucket).download(path)
        except Exception as e:
            # storage3 reports a missing object as a 404-status error
            status = str(getattr(e, "status", "") or getattr(e, "code", ""))
            if status == "404" or "not found" in str(e).lower():
                raise BlobNotFoundError(f"Blob not found: {path}") from e
            raise StorageFailure(f"Storage download failed for {path}: {e}") from e

    def delete(self, path: str) -> None:
        try:
            self.client.storage.from_(self.bucket).remove([path])
        except Exception as e:
            raise StorageFailure(f"Storage delete failed for {path}: {e}") from e


@lru_cache
def get_blob_store() -> BlobStore:
    backend = settings.CERTIFICATE_STORAGE_BACKEND.lower()

    if backend == "supabase":
        if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
            raise RuntimeError("Supabase storage selected but SUPABASE_URL / SUPABASE_KEY are missing")
        logger.info(f"Certificate storage: Supabase bucket '{settings.CERTIFICATE_BUCKET}'")
        return SupabaseBlobStore(create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY), settings.CERTIFICATE_BUCKET)

    if backend != "local":
        raise RuntimeError(f"Unknown CERTIFICATE_STORAGE_BACKEND: {settings.CERTIFICATE_STORAGE_BACKEND}")

    logger.info(f"Certificate storage: local directory '{settings.CERTIFICATE_STORAGE_DIR}'")
    return LocalBlobStore(settings.CERTIFICATE_STORAGE_DIR)
