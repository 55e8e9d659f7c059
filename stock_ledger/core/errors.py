from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for every failure the stock ledger reports to its callers.

    ``kind`` is stable and machine readable, ``message`` is for humans and
    ``details`` names the entity that failed (product id, item index...).
    """

    kind = "ledger_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


class NotFound(LedgerError):
    kind = "not_found"


class InsufficientStock(LedgerError):
    kind = "insufficient_stock"


class InvalidArgument(LedgerError):
    kind = "invalid_argument"


class Inconsistent(LedgerError):
    """The ledger and the product table disagree and stock cannot be corrected."""

    kind = "inconsistent"


class Unavailable(LedgerError):
    """Infrastructure failure (database, lock store). Safe for the caller to retry."""

    kind = "unavailable"


# HTTP status used by the API layer for each error kind
STATUS_CODES = {
    NotFound.kind: 404,
    InsufficientStock.kind: 400,
    InvalidArgument.kind: 400,
    Inconsistent.kind: 409,
    Unavailable.kind: 503,
}


def status_code_for(error: LedgerError, default: Optional[int] = 500) -> int:
    return STATUS_CODES.get(error.kind, default)
