"""API routes exposing entitlement resolution."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse

from ..entitlements import Allow
from ..feature_gates.enforcement import decision_payload, decision_status_code, require_allowed
from ..feature_gates.exceptions import LedgerError
from ..idempotency import MutationResult
from ..schemas.entitlements import CheckActionRequest
from ..services.billing import LedgerServices
from ..storage.session import LedgerSession
from .dependencies import get_current_user, get_services, run_mutation, user_id_of

router = APIRouter(prefix="/api/entitlements", tags=["entitlements"])


@router.get("/effective")
def get_effective_entitlement(
    *,
    club_id: Optional[str] = Query(default=None, alias="clubId"),
    event_id: Optional[str] = Query(default=None, alias="eventId"),
    participants: Optional[int] = Query(default=None, ge=0),
    current_user=Depends(get_current_user),
    services: LedgerServices = Depends(get_services),
) -> Dict[str, Any]:
    """Return the limits in force for a club and event."""

    user_id = user_id_of(current_user)
    try:
        entitlement = services.resolver.resolve(
            user_id,
            club_id=club_id,
            event_id=event_id,
            event_participants_requested=participants,
        )
    except LedgerError as exc:
        raise exc.to_http_exception() from exc
    return entitlement.to_dict()


@router.post("/check")
def check_action(
    payload: CheckActionRequest,
    *,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user=Depends(get_current_user),
    services: LedgerServices = Depends(get_services),
) -> JSONResponse:
    """Evaluate an action; with ``confirmCredit`` spend a credit when one is needed."""

    user_id = user_id_of(current_user)
    context = payload.to_context(user_id)

    if payload.confirm_credit:

        def unit_of_work(session: LedgerSession) -> MutationResult:
            decision = services.resolver.confirm_and_consume(payload.action, context, session=session)
            allowed: Allow = require_allowed(decision)
            return MutationResult(decision_status_code(allowed), decision_payload(allowed))

        return run_mutation(
            services,
            actor_id=user_id,
            route_name="confirm_credit",
            idempotency_key=idempotency_key,
            unit_of_work=unit_of_work,
        )

    try:
        decision = services.resolver.check_action(payload.action, context)
    except LedgerError as exc:
        raise exc.to_http_exception() from exc
    return JSONResponse(status_code=decision_status_code(decision), content=decision_payload(decision))


__all__ = ["router"]
