"""API schemas for billing and admin endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import (
    Credit,
    CreditCode,
    CreditStatus,
    ProductCode,
    PurchaseIntent,
    SettlementOutcome,
    SettlementResult,
    Transaction,
    TransactionStatus,
)
from ..subscriptions import Subscription, SubscriptionStatus


class PurchaseIntentRequest(BaseModel):
    product_code: ProductCode = Field(alias="productCode")
    quantity: int = Field(default=1, ge=1)
    club_id: Optional[str] = Field(alias="clubId", default=None)

    model_config = ConfigDict(populate_by_name=True)


class WebhookPayload(BaseModel):
    provider_payment_id: str = Field(alias="providerPaymentId", min_length=1)
    outcome: SettlementOutcome

    model_config = ConfigDict(populate_by_name=True)


class DevSettleRequest(BaseModel):
    transaction_id: str = Field(alias="transactionId", min_length=1)
    outcome: SettlementOutcome

    model_config = ConfigDict(populate_by_name=True)


class ConsumeCreditRequest(BaseModel):
    credit_code: CreditCode = Field(alias="creditCode")
    event_id: str = Field(alias="eventId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class AdminGrantRequest(BaseModel):
    credit_code: CreditCode = Field(alias="creditCode", default=CreditCode.EVENT_UPGRADE_500)
    reason: str = ""

    model_config = ConfigDict(populate_by_name=True)


class ExtendSubscriptionRequest(BaseModel):
    # Range checks happen in SubscriptionStore.extend so the error shape matches.
    days: int
    reason: str = ""

    model_config = ConfigDict(populate_by_name=True)


class TransactionResponse(BaseModel):
    id: str
    user_id: str = Field(alias="userId")
    club_id: Optional[str] = Field(alias="clubId", default=None)
    product_code: ProductCode = Field(alias="productCode")
    provider: str
    provider_payment_id: Optional[str] = Field(alias="providerPaymentId", default=None)
    amount_minor_units: int = Field(alias="amountMinorUnits")
    currency_code: str = Field(alias="currencyCode")
    quantity: int
    status: TransactionStatus
    period_start: Optional[datetime] = Field(alias="periodStart", default=None)
    period_end: Optional[datetime] = Field(alias="periodEnd", default=None)
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> "TransactionResponse":
        return cls(**transaction.model_dump())


class CreditResponse(BaseModel):
    id: str
    user_id: str = Field(alias="userId")
    credit_code: CreditCode = Field(alias="creditCode")
    status: CreditStatus
    source_transaction_id: str = Field(alias="sourceTransactionId")
    consumed_event_id: Optional[str] = Field(alias="consumedEventId", default=None)
    consumed_at: Optional[datetime] = Field(alias="consumedAt", default=None)
    expires_at: Optional[datetime] = Field(alias="expiresAt", default=None)
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_credit(cls, credit: Credit) -> "CreditResponse":
        data = credit.model_dump()
        data.pop("updated_at", None)
        return cls(**data)


class SubscriptionResponse(BaseModel):
    club_id: str = Field(alias="clubId")
    plan_id: str = Field(alias="planId")
    status: SubscriptionStatus
    current_period_start: Optional[datetime] = Field(alias="currentPeriodStart", default=None)
    current_period_end: Optional[datetime] = Field(alias="currentPeriodEnd", default=None)
    grace_until: Optional[datetime] = Field(alias="graceUntil", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "SubscriptionResponse":
        return cls(
            club_id=subscription.club_id,
            plan_id=subscription.plan_id.value,
            status=subscription.status,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            grace_until=subscription.grace_until,
        )


class PurchaseIntentResponse(BaseModel):
    transaction: TransactionResponse
    payment: Dict[str, object] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_intent(cls, intent: PurchaseIntent) -> "PurchaseIntentResponse":
        return cls(
            transaction=TransactionResponse.from_transaction(intent.transaction),
            payment=dict(intent.payment),
        )


class SettlementResponse(BaseModel):
    transaction: TransactionResponse
    was_no_op: bool = Field(alias="wasNoOp")
    credits: List[CreditResponse] = Field(default_factory=list)
    subscription: Optional[SubscriptionResponse] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: SettlementResult) -> "SettlementResponse":
        return cls(
            transaction=TransactionResponse.from_transaction(result.transaction),
            was_no_op=result.was_no_op,
            credits=[CreditResponse.from_credit(credit) for credit in result.credits],
            subscription=(
                SubscriptionResponse.from_subscription(result.subscription) if result.subscription else None
            ),
        )


class CreditListResponse(BaseModel):
    credits: List[CreditResponse]

    model_config = ConfigDict(populate_by_name=True)


def dump(model: BaseModel) -> Dict[str, object]:
    """JSON-ready camelCase representation stored as an idempotent response body."""

    return model.model_dump(mode="json", by_alias=True)


__all__ = [
    "AdminGrantRequest",
    "ConsumeCreditRequest",
    "CreditListResponse",
    "CreditResponse",
    "DevSettleRequest",
    "ExtendSubscriptionRequest",
    "PurchaseIntentRequest",
    "PurchaseIntentResponse",
    "SettlementResponse",
    "SubscriptionResponse",
    "TransactionResponse",
    "WebhookPayload",
    "dump",
]
