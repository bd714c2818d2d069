"""Error taxonomy and decision enforcement for ledger-backed endpoints."""
from .exceptions import (
    ConflictError,
    EntitlementRequired,
    ForbiddenError,
    LedgerError,
    NotFoundError,
    RequestInProgress,
    ValidationError,
)

__all__ = [
    "ConflictError",
    "EntitlementRequired",
    "ForbiddenError",
    "LedgerError",
    "NotFoundError",
    "RequestInProgress",
    "ValidationError",
]
