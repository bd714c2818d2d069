"""Helpers turning entitlement decisions into HTTP outcomes."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import status

from ..entitlements.models import ActionDecision, Allow, Deny, RequireConfirmation
from .exceptions import EntitlementRequired


def decision_status_code(decision: ActionDecision) -> int:
    """HTTP status carried by a decision: 200 allow, 402 deny, 409 confirmation."""

    if isinstance(decision, Allow):
        return status.HTTP_200_OK
    if isinstance(decision, Deny):
        return status.HTTP_402_PAYMENT_REQUIRED
    if isinstance(decision, RequireConfirmation):
        return status.HTTP_409_CONFLICT
    raise TypeError(f"Unknown decision type: {type(decision).__name__}")


def decision_payload(decision: ActionDecision) -> Dict[str, Any]:
    """JSON body for a decision; non-allow decisions carry an ``error`` code."""

    body = decision.to_dict()
    if isinstance(decision, Deny):
        body["error"] = decision.reason.value
    elif isinstance(decision, RequireConfirmation):
        body["error"] = decision.reason
    return body


def require_allowed(decision: ActionDecision) -> Allow:
    """Return the decision when it allows the action, otherwise raise.

    Parameters
    ----------
    decision:
        Result of :meth:`EntitlementResolver.check_action`.

    Raises
    ------
    EntitlementRequired
        With status 402 for a deny and 409 when a credit must be confirmed.
        The error code is the deny reason or ``CREDIT_CONFIRMATION_REQUIRED``.
    """

    if isinstance(decision, Allow):
        return decision

    body = decision_payload(decision)
    message = body.pop("message")
    code = body.pop("error")
    error = EntitlementRequired(message, detail=body)
    error.code = code
    error.status_code = decision_status_code(decision)
    raise error


__all__ = ["decision_payload", "decision_status_code", "require_allowed"]
