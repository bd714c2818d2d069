"""Error taxonomy shared by the ledger services and API routers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class LedgerError(Exception):
    """Represents a per-request failure surfaced to API callers."""

    message: str
    detail: Optional[Mapping[str, Any]] = None
    code: str = field(default="INTERNAL_ERROR", init=False)
    status_code: int = field(default=status.HTTP_500_INTERNAL_SERVER_ERROR, init=False)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        return base_detail

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


@dataclass
class ValidationError(LedgerError):
    """Malformed input rejected before any write."""

    code: str = field(default="VALIDATION_ERROR", init=False)
    status_code: int = field(default=status.HTTP_400_BAD_REQUEST, init=False)


@dataclass
class ForbiddenError(LedgerError):
    """The caller is not allowed to perform the operation in this deployment."""

    code: str = field(default="FORBIDDEN", init=False)
    status_code: int = field(default=status.HTTP_403_FORBIDDEN, init=False)


@dataclass
class NotFoundError(LedgerError):
    """A referenced transaction, credit or subscription does not exist."""

    code: str = field(default="NOT_FOUND", init=False)
    status_code: int = field(default=status.HTTP_404_NOT_FOUND, init=False)


@dataclass
class ConflictError(LedgerError):
    """The stored state does not allow the requested transition."""

    code: str = field(default="CONFLICT", init=False)
    status_code: int = field(default=status.HTTP_409_CONFLICT, init=False)


@dataclass
class RequestInProgress(ConflictError):
    """A concurrent duplicate of a mutating request is still running."""

    code: str = field(default="REQUEST_IN_PROGRESS", init=False)


@dataclass
class EntitlementRequired(LedgerError):
    """An entitlement check did not allow the action; code and status follow the decision."""

    code: str = field(default="ENTITLEMENT_REQUIRED", init=False)
    status_code: int = field(default=status.HTTP_402_PAYMENT_REQUIRED, init=False)


__all__ = [
    "ConflictError",
    "EntitlementRequired",
    "ForbiddenError",
    "LedgerError",
    "NotFoundError",
    "RequestInProgress",
    "ValidationError",
]
