"""Decision and entitlement types produced by the entitlement resolver."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from ..catalog.models import CreditCode, PlanId, ProductCode
from ..subscriptions.models import SubscriptionStatus

CREDIT_CONFIRMATION_REQUIRED = "CREDIT_CONFIRMATION_REQUIRED"


class ActionCode(str, Enum):
    """Gated actions checked against the caller's entitlements."""

    PUBLISH_EVENT = "PUBLISH_EVENT"
    CLUB_CREATE_EVENT = "CLUB_CREATE_EVENT"
    CLUB_UPDATE_EVENT = "CLUB_UPDATE_EVENT"
    CLUB_CREATE_PAID_EVENT = "CLUB_CREATE_PAID_EVENT"
    CLUB_EXPORT_PARTICIPANTS_CSV = "CLUB_EXPORT_PARTICIPANTS_CSV"
    CLUB_INVITE_MEMBER = "CLUB_INVITE_MEMBER"
    CLUB_REMOVE_MEMBER = "CLUB_REMOVE_MEMBER"
    CLUB_UPDATE = "CLUB_UPDATE"

    @property
    def requires_club(self) -> bool:
        return self != ActionCode.PUBLISH_EVENT

    @property
    def affects_event_size(self) -> bool:
        return self in _EVENT_SIZE_ACTIONS


_EVENT_SIZE_ACTIONS = frozenset(
    {
        ActionCode.PUBLISH_EVENT,
        ActionCode.CLUB_CREATE_EVENT,
        ActionCode.CLUB_UPDATE_EVENT,
        ActionCode.CLUB_CREATE_PAID_EVENT,
    }
)


class DenyReason(str, Enum):
    """Why an action was denied."""

    PAID_EVENTS_NOT_ALLOWED = "PAID_EVENTS_NOT_ALLOWED"
    CSV_EXPORT_NOT_ALLOWED = "CSV_EXPORT_NOT_ALLOWED"
    MAX_EVENT_PARTICIPANTS_EXCEEDED = "MAX_EVENT_PARTICIPANTS_EXCEEDED"
    MAX_CLUB_MEMBERS_EXCEEDED = "MAX_CLUB_MEMBERS_EXCEEDED"
    SUBSCRIPTION_NOT_ACTIVE = "SUBSCRIPTION_NOT_ACTIVE"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    CLUB_REQUIRED_FOR_LARGE_EVENT = "CLUB_REQUIRED_FOR_LARGE_EVENT"
    PUBLISH_REQUIRES_PAYMENT = "PUBLISH_REQUIRES_PAYMENT"


class UpsellOptionType(str, Enum):
    ONE_OFF_CREDIT = "ONE_OFF_CREDIT"
    CLUB_ACCESS = "CLUB_ACCESS"


@dataclass(frozen=True)
class UpsellOption:
    """A purchase that would satisfy a denied request."""

    option_type: UpsellOptionType
    price_minor_units: int
    currency_code: str
    product_code: Optional[ProductCode] = None
    plan_id: Optional[PlanId] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.option_type.value,
            "productCode": self.product_code.value if self.product_code else None,
            "planId": self.plan_id.value if self.plan_id else None,
            "priceMinorUnits": self.price_minor_units,
            "currencyCode": self.currency_code,
        }


@dataclass(frozen=True)
class EffectiveEntitlement:
    """Limits in force for a club/event at evaluation time. ``None`` means unlimited."""

    plan_id: PlanId
    max_participants: Optional[int]
    max_members: Optional[int]
    allow_paid_events: bool
    allow_csv_export: bool
    subscription_status: Optional[SubscriptionStatus] = None
    applied_credit_id: Optional[str] = None
    participants_within_limit: Optional[bool] = None

    def admits_participants(self, participants: int) -> bool:
        return self.max_participants is None or participants <= self.max_participants

    def to_dict(self) -> Dict[str, Any]:
        return {
            "planId": self.plan_id.value,
            "maxParticipants": self.max_participants,
            "maxMembers": self.max_members,
            "allowPaidEvents": self.allow_paid_events,
            "allowCsvExport": self.allow_csv_export,
            "subscriptionStatus": self.subscription_status.value if self.subscription_status else None,
            "appliedCreditId": self.applied_credit_id,
            "participantsWithinLimit": self.participants_within_limit,
        }


@dataclass(frozen=True)
class ActionContext:
    """Inputs of an entitlement check."""

    user_id: str
    club_id: Optional[str] = None
    event_id: Optional[str] = None
    participants: Optional[int] = None
    members: Optional[int] = None
    is_paid: bool = False


@dataclass(frozen=True)
class Allow:
    entitlement: EffectiveEntitlement
    consumed_credit_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision": "allow",
            "entitlement": self.entitlement.to_dict(),
            "consumedCreditId": self.consumed_credit_id,
        }


@dataclass(frozen=True)
class Deny:
    reason: DenyReason
    message: str
    current_plan_id: PlanId
    required_plan_id: Optional[PlanId] = None
    options: Tuple[UpsellOption, ...] = ()
    meta: Mapping[str, Any] = field(default_factory=dict)

    @property
    def recommended(self) -> Optional[UpsellOption]:
        """Cheapest purchase that satisfies the request."""

        return self.options[0] if self.options else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision": "deny",
            "reason": self.reason.value,
            "message": self.message,
            "currentPlanId": self.current_plan_id.value,
            "requiredPlanId": self.required_plan_id.value if self.required_plan_id else None,
            "options": [option.to_dict() for option in self.options],
            "meta": dict(self.meta),
        }


@dataclass(frozen=True)
class RequireConfirmation:
    credit_code: CreditCode
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)
    reason: str = CREDIT_CONFIRMATION_REQUIRED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision": "require_confirmation",
            "reason": self.reason,
            "message": self.message,
            "creditCode": self.credit_code.value,
            "details": dict(self.details),
        }


ActionDecision = Union[Allow, Deny, RequireConfirmation]


__all__ = [
    "ActionCode",
    "ActionContext",
    "ActionDecision",
    "Allow",
    "CREDIT_CONFIRMATION_REQUIRED",
    "Deny",
    "DenyReason",
    "EffectiveEntitlement",
    "RequireConfirmation",
    "UpsellOption",
    "UpsellOptionType",
]
