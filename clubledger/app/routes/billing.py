"""API routes for purchases, settlement and credits."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse

from ..billing import SettlementEvent
from ..catalog import PlanId
from ..entitlements import Deny, DenyReason, UpsellOption, UpsellOptionType
from ..feature_gates.enforcement import require_allowed
from ..feature_gates.exceptions import ForbiddenError, LedgerError, NotFoundError
from ..idempotency import MutationResult
from ..schemas.billing import (
    ConsumeCreditRequest,
    CreditListResponse,
    CreditResponse,
    DevSettleRequest,
    PurchaseIntentRequest,
    PurchaseIntentResponse,
    SettlementResponse,
    TransactionResponse,
    WebhookPayload,
    dump,
)
from ..services.billing import LedgerServices
from ..storage.session import LedgerSession
from .dependencies import get_current_user, get_services, run_mutation, user_id_of

logger = logging.getLogger("billing")

PROVIDER_ACTOR = "provider"

router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.post("/purchase-intent", status_code=status.HTTP_201_CREATED)
def create_purchase_intent(
    payload: PurchaseIntentRequest,
    *,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user=Depends(get_current_user),
    services: LedgerServices = Depends(get_services),
) -> JSONResponse:
    """Record a pending transaction priced from the catalog."""

    user_id = user_id_of(current_user)

    def unit_of_work(session: LedgerSession) -> MutationResult:
        intent = services.billing.create_purchase_intent(
            user_id=user_id,
            product_code=payload.product_code,
            quantity=payload.quantity,
            club_id=payload.club_id,
            session=session,
        )
        return MutationResult(status.HTTP_201_CREATED, dump(PurchaseIntentResponse.from_intent(intent)))

    return run_mutation(
        services,
        actor_id=user_id,
        route_name="purchase_intent",
        idempotency_key=idempotency_key,
        unit_of_work=unit_of_work,
    )


@router.post("/webhook")
def receive_webhook(
    payload: WebhookPayload,
    *,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    services: LedgerServices = Depends(get_services),
) -> JSONResponse:
    """Settle a transaction from a provider notification.

    Providers redeliver notifications; without an explicit key the payment id
    and outcome identify the delivery.
    """

    event = SettlementEvent(provider_payment_id=payload.provider_payment_id, outcome=payload.outcome)
    key = idempotency_key or f"{event.provider_payment_id}:{event.outcome.value}"

    def unit_of_work(session: LedgerSession) -> MutationResult:
        result = services.billing.settle(event, session=session)
        return MutationResult(status.HTTP_200_OK, dump(SettlementResponse.from_result(result)))

    return run_mutation(
        services,
        actor_id=PROVIDER_ACTOR,
        route_name="settlement_webhook",
        idempotency_key=key,
        unit_of_work=unit_of_work,
    )


@router.post("/dev/settle")
def dev_settle(
    payload: DevSettleRequest,
    *,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user=Depends(get_current_user),
    services: LedgerServices = Depends(get_services),
) -> JSONResponse:
    """Settle a transaction by id; unavailable in production."""

    if services.config.is_production:
        raise ForbiddenError("Manual settlement is disabled in production").to_http_exception()
    user_id = user_id_of(current_user)

    def unit_of_work(session: LedgerSession) -> MutationResult:
        result = services.transactions.settle(
            outcome=payload.outcome,
            transaction_id=payload.transaction_id,
            session=session,
        )
        return MutationResult(status.HTTP_200_OK, dump(SettlementResponse.from_result(result)))

    return run_mutation(
        services,
        actor_id=user_id,
        route_name="dev_settle",
        idempotency_key=idempotency_key,
        unit_of_work=unit_of_work,
    )


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: str,
    *,
    current_user=Depends(get_current_user),
    services: LedgerServices = Depends(get_services),
) -> TransactionResponse:
    user_id = user_id_of(current_user)
    try:
        transaction = services.transactions.get(transaction_id)
    except LedgerError as exc:
        raise exc.to_http_exception() from exc
    if transaction.user_id != user_id:
        # Other users' transactions are indistinguishable from missing ones.
        raise NotFoundError(f"Transaction {transaction_id} not found").to_http_exception()
    return TransactionResponse.from_transaction(transaction)


@router.get("/credits", response_model=CreditListResponse)
def list_credits(
    *,
    current_user=Depends(get_current_user),
    services: LedgerServices = Depends(get_services),
) -> CreditListResponse:
    user_id = user_id_of(current_user)
    credits = services.credits.list_available(user_id)
    return CreditListResponse(credits=[CreditResponse.from_credit(credit) for credit in credits])


@router.post("/credits/consume")
def consume_credit(
    payload: ConsumeCreditRequest,
    *,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user=Depends(get_current_user),
    services: LedgerServices = Depends(get_services),
) -> JSONResponse:
    """Spend the caller's oldest available credit on an event."""

    user_id = user_id_of(current_user)

    def unit_of_work(session: LedgerSession) -> MutationResult:
        credit = services.credits.consume_one_for(
            user_id=user_id,
            credit_code=payload.credit_code,
            event_id=payload.event_id,
            session=session,
        )
        if credit is None:
            require_allowed(_payment_required(services, payload))
        return MutationResult(status.HTTP_200_OK, {"credit": dump(CreditResponse.from_credit(credit))})

    return run_mutation(
        services,
        actor_id=user_id,
        route_name="consume_credit",
        idempotency_key=idempotency_key,
        unit_of_work=unit_of_work,
    )


@router.post("/beta-grant", status_code=status.HTTP_201_CREATED)
def beta_grant(
    *,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user=Depends(get_current_user),
    services: LedgerServices = Depends(get_services),
) -> JSONResponse:
    """Grant a free event upgrade while the paywall runs in soft beta mode."""

    if not services.config.beta_grants_enabled:
        raise ForbiddenError("System auto-grant is only available in soft beta mode").to_http_exception()
    user_id = user_id_of(current_user)

    def unit_of_work(session: LedgerSession) -> MutationResult:
        credit = services.billing.grant_beta_credit(user_id=user_id, session=session)
        return MutationResult(status.HTTP_201_CREATED, {"credit": dump(CreditResponse.from_credit(credit))})

    return run_mutation(
        services,
        actor_id=user_id,
        route_name="beta_grant",
        idempotency_key=idempotency_key,
        unit_of_work=unit_of_work,
    )


def _payment_required(services: LedgerServices, payload: ConsumeCreditRequest) -> Deny:
    product = services.catalog.get().product_for_credit(payload.credit_code)
    return Deny(
        reason=DenyReason.PUBLISH_REQUIRES_PAYMENT,
        message=f"No available {payload.credit_code.value} credit",
        current_plan_id=PlanId.FREE,
        options=(
            UpsellOption(
                option_type=UpsellOptionType.ONE_OFF_CREDIT,
                price_minor_units=product.price_minor_units,
                currency_code=product.currency_code,
                product_code=product.code,
            ),
        ),
        meta={"eventId": payload.event_id},
    )


__all__ = ["router"]
