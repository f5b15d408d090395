# app/services/encryption_service.py

"""
At-rest encryption for certificate documents.

Ciphertext layout::

    b"HCTSENC" | key version (1 byte) | nonce (12 bytes) | AES-256-GCM ciphertext + tag

The magic and version byte are bound as associated data, so a blob whose
header was edited fails authentication. Every key version listed in the
key ring stays decryptable; only the active version is used to encrypt.
"""

import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from app.core.exceptions import DecryptionFailure, EncryptionFailure

MAGIC = b"HCTSENC"
NONCE_SIZE = 12
TAG_SIZE = 16
HEADER_SIZE = len(MAGIC) + 1 + NONCE_SIZE


def parse_key_ring(value: str) -> Dict[int, str]:
    """Parse ``"1:secret-a,2:secret-b"`` into ``{1: "secret-a", 2: "secret-b"}``."""
    ring: Dict[int, str] = {}
    for item in (value or "").split(","):
        item = item.strip()
        if not item:
            continue
        version, sep, secret = item.partition(":")
        if not sep or not secret:
            raise ValueError(f"Malformed key ring entry: {item!r}")
        version_num = int(version)
        if not 1 <= version_num <= 255:
            raise ValueError(f"Key version out of range: {version_num}")
        ring[version_num] = secret
    if not ring:
        raise ValueError("Document encryption key ring is empty")
    return ring


def _derive_key(secret: str, version: int) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=b"hcts-document-key-v%d" % version,
    ).derive(secret.encode("utf-8"))


class DocumentCipher:
    def __init__(self, keys: Dict[int, str], active_version: Optional[int] = None):
        if not keys:
            raise ValueError("At least one document key is required")
        self._keys = {version: _derive_key(secret, version) for version, secret in keys.items()}
        self.active_version = active_version if active_version is not None else max(keys)
        if self.active_version not in self._keys:
            raise ValueError(f"Active key version {self.active_version} is not in the key ring")

    @staticmethod
    def is_encrypted(blob: bytes) -> bool:
        return (
            blob is not None
            and len(blob) >= HEADER_SIZE + TAG_SIZE
            and blob.startswith(MAGIC)
        )

    @staticmethod
    def key_version(blob: bytes) -> int:
        return blob[len(MAGIC)]

    def encrypt(self, plain: bytes) -> bytes:
        try:
            header = MAGIC + bytes([self.active_version])
            nonce = os.urandom(NONCE_SIZE)
            sealed = AESGCM(self._keys[self.active_version]).encrypt(nonce, plain, header)
        except Exception as e:
            raise EncryptionFailure(f"Document encryption failed: {e}") from e
        return header + nonce + sealed

    def decrypt(self, blob: bytes) -> bytes:
        if not self.is_encrypted(blob):
            raise DecryptionFailure("Blob is not an encrypted document")

        version = self.key_version(blob)
        key = self._keys.get(version)
        if key is None:
            raise DecryptionFailure(f"No key for document key version {version}")

        header = blob[:len(MAGIC) + 1]
        nonce = blob[len(header):HEADER_SIZE]
        try:
            return AESGCM(key).decrypt(nonce, blob[HEADER_SIZE:], header)
        except InvalidTag as e:
            raise DecryptionFailure(
                f"Document failed authentication under key version {version}"
            ) from e


@contextmanager
def scoped_plaintext_file(data: bytes, directory: Optional[str] = None) -> Iterator[Path]:
    """
    Write ``data`` to a private temporary file and remove it on every exit
    path, including exceptions raised inside the ``with`` block.
    """
    fd, name = tempfile.mkstemp(suffix=".pdf", prefix="hcts-", dir=directory)
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        yield path
    finally:
        path.unlink(missing_ok=True)
