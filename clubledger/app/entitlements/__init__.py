"""Entitlement resolution for clubs, events and one-off credits."""

from .models import (
    CREDIT_CONFIRMATION_REQUIRED,
    ActionCode,
    ActionContext,
    ActionDecision,
    Allow,
    Deny,
    DenyReason,
    EffectiveEntitlement,
    RequireConfirmation,
    UpsellOption,
    UpsellOptionType,
)
from .service import DEFAULT_STATUS_POLICY, EVENT_UPGRADE_CREDIT, EntitlementResolver

__all__ = [
    "ActionCode",
    "ActionContext",
    "ActionDecision",
    "Allow",
    "CREDIT_CONFIRMATION_REQUIRED",
    "DEFAULT_STATUS_POLICY",
    "Deny",
    "DenyReason",
    "EVENT_UPGRADE_CREDIT",
    "EffectiveEntitlement",
    "EntitlementResolver",
    "RequireConfirmation",
    "UpsellOption",
    "UpsellOptionType",
]
