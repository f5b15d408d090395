# app/core/exceptions.py

"""
Failure taxonomy for certificate issuance, storage and verification.

Every error carries a short ``kind`` string. Issuance logs the kind and
returns a generic message to the caller; verification collapses every
kind into a not_found / invalid verdict.
"""


class CertificateError(Exception):
    kind = "certificate_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class NotFoundError(CertificateError):
    """Transaction, service, profile or certificate is missing."""
    kind = "not_found"


class ConflictError(CertificateError):
    """A certificate already exists, or a status change is not allowed."""
    kind = "conflict"


class ValidationFailure(CertificateError):
    """Mandatory certificate or render fields are missing."""
    kind = "validation_failure"


class PermissionDenied(CertificateError):
    kind = "permission_denied"


class EncryptionFailure(CertificateError):
    """Key or cipher error, as opposed to a storage error."""
    kind = "encryption_failure"


class DecryptionFailure(EncryptionFailure):
    """Unknown key version or corrupted ciphertext."""
    kind = "decryption_failure"


class StorageFailure(CertificateError):
    kind = "storage_failure"


class BlobNotFoundError(StorageFailure):
    kind = "blob_not_found"


class IntegrityMismatch(CertificateError):
    """A recomputed hash or signature disagrees with the stored value."""
    kind = "integrity_mismatch"


class CertificateNumberCollision(CertificateError):
    kind = "number_collision"
