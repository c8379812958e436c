"""
Error Taxonomy Module

Every failure a core operation can report is a BankingError carrying a
machine-readable kind and a caller-safe message. The API layer maps kinds
to HTTP status codes; nothing else about the failure reaches the caller.
"""

from typing import Any, Dict


class BankingError(Exception):
    """Base class for all domain errors"""

    kind = "internal"
    default_message = "Internal server error"

    def __init__(self, message: str = ""):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message}


class Unauthenticated(BankingError):
    """No credential, or a credential that cannot be parsed"""
    kind = "unauthenticated"
    default_message = "Access denied. No token provided."


class Forbidden(BankingError):
    """Valid credential without the required role or ownership"""
    kind = "forbidden"
    default_message = "Access denied"


class NotFound(BankingError):
    kind = "not_found"
    default_message = "Resource not found"


class InvalidArgument(BankingError):
    kind = "invalid_argument"
    default_message = "Invalid argument"


class InsufficientFunds(BankingError):
    kind = "insufficient_funds"
    default_message = "Insufficient funds"


class InternalError(BankingError):
    """Store or signing failure. The message is always the generic one."""
    kind = "internal"

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.default_message}


class StorageError(InternalError):
    """Storage backend failure"""


class DuplicateRecordError(InternalError):
    """Create-only write hit an existing id or unique field value"""

    def __init__(self, table: str, field: str, value: Any):
        self.table = table
        self.field = field
        self.value = value
        super().__init__(f"Duplicate {field} in {table}: {value}")


class ConcurrentUpdateError(InternalError):
    """Compare-and-set precondition no longer held"""


HTTP_STATUS_BY_KIND = {
    Unauthenticated.kind: 401,
    Forbidden.kind: 403,
    NotFound.kind: 404,
    InvalidArgument.kind: 400,
    InsufficientFunds.kind: 400,
    InternalError.kind: 500,
}


def http_status_for(error: BankingError) -> int:
    """HTTP status code for a domain error"""
    return HTTP_STATUS_BY_KIND.get(error.kind, 500)
