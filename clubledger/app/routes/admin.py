"""Administrative routes for manual credit grants and subscription changes."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse

from ..feature_gates.exceptions import ValidationError
from ..idempotency import MutationResult
from ..schemas.billing import (
    AdminGrantRequest,
    CreditResponse,
    ExtendSubscriptionRequest,
    SubscriptionResponse,
    dump,
)
from ..services.billing import LedgerServices
from ..storage.session import LedgerSession
from .dependencies import get_services, require_admin, run_mutation

logger = logging.getLogger("billing")

ADMIN_ACTOR = "admin"

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/users/{user_id}/grant-credit", status_code=status.HTTP_201_CREATED)
def grant_credit(
    user_id: str,
    payload: AdminGrantRequest,
    *,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
    services: LedgerServices = Depends(get_services),
) -> JSONResponse:
    require_admin(services, admin_token)

    def unit_of_work(session: LedgerSession) -> MutationResult:
        credit = services.billing.admin_grant_credit(
            admin_id=ADMIN_ACTOR,
            user_id=user_id,
            credit_code=payload.credit_code,
            reason=payload.reason,
            session=session,
        )
        return MutationResult(status.HTTP_201_CREATED, {"credit": dump(CreditResponse.from_credit(credit))})

    return run_mutation(
        services,
        actor_id=ADMIN_ACTOR,
        route_name="admin_grant_credit",
        idempotency_key=idempotency_key,
        unit_of_work=unit_of_work,
    )


@router.post("/clubs/{club_id}/extend-subscription")
def extend_subscription(
    club_id: str,
    payload: ExtendSubscriptionRequest,
    *,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
    services: LedgerServices = Depends(get_services),
) -> JSONResponse:
    require_admin(services, admin_token)

    def unit_of_work(session: LedgerSession) -> MutationResult:
        if not payload.reason.strip():
            raise ValidationError("Reason is mandatory for subscription extension")
        subscription = services.subscriptions.extend(club_id, payload.days, session=session)
        logger.info(
            "Admin extended subscription club=%s days=%s reason=%s",
            club_id,
            payload.days,
            payload.reason.strip(),
        )
        return MutationResult(
            status.HTTP_200_OK,
            {"subscription": dump(SubscriptionResponse.from_subscription(subscription))},
        )

    return run_mutation(
        services,
        actor_id=ADMIN_ACTOR,
        route_name="admin_extend_subscription",
        idempotency_key=idempotency_key,
        unit_of_work=unit_of_work,
    )


__all__ = ["router"]
