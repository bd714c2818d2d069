"""Domain models for the billing ledger."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..catalog.models import CreditCode, ProductCode
from ..subscriptions.models import Subscription


class TransactionStatus(str, Enum):
    """Settlement status of a money-bearing transaction."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self != TransactionStatus.PENDING


class SettlementOutcome(str, Enum):
    """Outcome reported by a payment provider for a pending transaction."""

    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

    def to_status(self) -> TransactionStatus:
        return TransactionStatus(self.value)


class CreditStatus(str, Enum):
    """Lifecycle status of a one-off credit."""

    AVAILABLE = "available"
    CONSUMED = "consumed"


class Transaction(BaseModel):
    """Purchase intent and its settlement status."""

    id: str
    user_id: str
    club_id: Optional[str] = None
    product_code: ProductCode
    provider: str
    provider_payment_id: Optional[str] = None
    amount_minor_units: int = Field(ge=0)
    currency_code: str = Field(min_length=3, max_length=3)
    quantity: int = Field(default=1, ge=1)
    status: TransactionStatus = TransactionStatus.PENDING
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency_code")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class Credit(BaseModel):
    """Single-use entitlement grant backed by a completed transaction."""

    id: str
    user_id: str
    credit_code: CreditCode
    status: CreditStatus = CreditStatus.AVAILABLE
    source_transaction_id: str
    consumed_event_id: Optional[str] = None
    consumed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def is_available_at(self, now: datetime) -> bool:
        """Return ``True`` when the credit can still be consumed at ``now``."""

        if self.status != CreditStatus.AVAILABLE:
            return False
        return self.expires_at is None or self.expires_at > now


class SettlementEvent(BaseModel):
    """Normalized settlement notification produced by a provider adapter."""

    provider_payment_id: str = Field(min_length=1)
    outcome: SettlementOutcome

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SettlementResult(BaseModel):
    """Outcome of a settle call and the downstream effects it applied."""

    transaction: Transaction
    was_no_op: bool
    credits: List[Credit] = Field(default_factory=list)
    subscription: Optional[Subscription] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


__all__ = [
    "Credit",
    "CreditCode",
    "CreditStatus",
    "ProductCode",
    "SettlementEvent",
    "SettlementOutcome",
    "SettlementResult",
    "Transaction",
    "TransactionStatus",
]
