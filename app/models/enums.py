from enum import Enum


class TransactionStatus(str, Enum):
    Pending = "pending"
    Completed = "completed"
    Cancelled = "cancelled"
    Refunded = "refunded"


class ServiceStatus(str, Enum):
    Active = "active"
    Inactive = "inactive"
    Suspended = "suspended"


class CertificateStatus(str, Enum):
    Valid = "valid"
    Expired = "expired"
    Revoked = "revoked"
    Suspended = "suspended"


def enum_values(enum_cls):
    # Persist the lowercase values, not the member names
    return [member.value for member in enum_cls]
