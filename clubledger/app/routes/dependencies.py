"""Shared dependencies for the ledger routers."""
from __future__ import annotations

import hmac
import logging
from typing import Any, Optional

from fastapi import Header, HTTPException, status
from fastapi.responses import JSONResponse

from ... import app_context
from ..feature_gates.exceptions import ForbiddenError, LedgerError
from ..idempotency import MutationResult, UnitOfWork
from ..services.billing import LedgerServices, get_ledger_services

logger = logging.getLogger("billing")

REPLAYED_HEADER = "Idempotent-Replayed"


def get_current_user(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> Any:
    return app_context.get_current_user(user_id=x_user_id)


def get_services() -> LedgerServices:
    return get_ledger_services()


def run_mutation(
    services: LedgerServices,
    *,
    actor_id: str,
    route_name: str,
    idempotency_key: Optional[str],
    unit_of_work: UnitOfWork,
) -> JSONResponse:
    """Run ``unit_of_work`` through the orchestrator and render its stored response."""

    try:
        result = services.orchestrator.run(actor_id, route_name, idempotency_key, unit_of_work)
    except LedgerError as exc:
        raise exc.to_http_exception() from exc
    return render(result)


def render(result: MutationResult) -> JSONResponse:
    headers = {REPLAYED_HEADER: "true"} if result.replayed else None
    return JSONResponse(status_code=result.status_code, content=result.body, headers=headers)


def require_admin(services: LedgerServices, token: Optional[str]) -> None:
    expected = services.config.admin_api_token
    if not expected:
        raise ForbiddenError("Admin API is disabled").to_http_exception()
    if not token or not hmac.compare_digest(token, expected):
        logger.warning("Rejected admin request with invalid token")
        raise ForbiddenError("Invalid admin token").to_http_exception()


def user_id_of(current_user: Any) -> str:
    user_id = getattr(current_user, "id", None)
    if user_id is None or str(user_id) == "":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return str(user_id)


__all__ = [
    "REPLAYED_HEADER",
    "get_current_user",
    "get_services",
    "render",
    "require_admin",
    "run_mutation",
    "user_id_of",
]
