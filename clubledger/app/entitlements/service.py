"""Entitlement resolver combining plan limits with consumed one-off credits."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, FrozenSet, List, Mapping, Optional, Tuple

from ..billing.ledger import CreditLedger
from ..billing.models import Credit
from ..catalog.cache import CachedPlanCatalog
from ..catalog.models import CatalogSnapshot, CreditCode, PlanDefinition, PlanId
from ..catalog.static import required_plan_for_members, required_plan_for_participants
from ..feature_gates.exceptions import ValidationError
from ..storage.session import LedgerSession, LedgerStore, managed_session
from ..subscriptions.models import Subscription, SubscriptionStatus
from ..subscriptions.service import SubscriptionStore
from .models import (
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

logger = logging.getLogger("billing.entitlements")

EVENT_UPGRADE_CREDIT = CreditCode.EVENT_UPGRADE_500

# Actions still permitted while a paid subscription is not active.
DEFAULT_STATUS_POLICY: Mapping[SubscriptionStatus, FrozenSet[ActionCode]] = {
    SubscriptionStatus.GRACE: frozenset(
        {
            ActionCode.CLUB_UPDATE,
            ActionCode.CLUB_UPDATE_EVENT,
            ActionCode.CLUB_REMOVE_MEMBER,
            ActionCode.CLUB_EXPORT_PARTICIPANTS_CSV,
        }
    ),
    SubscriptionStatus.EXPIRED: frozenset(),
}


class EntitlementResolver:
    """Computes effective limits and allow/deny/confirm decisions per request."""

    def __init__(
        self,
        store: LedgerStore,
        subscriptions: SubscriptionStore,
        credits: CreditLedger,
        catalog: CachedPlanCatalog,
        *,
        status_policy: Optional[Mapping[SubscriptionStatus, FrozenSet[ActionCode]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._subscriptions = subscriptions
        self._credits = credits
        self._catalog = catalog
        self._status_policy = status_policy or DEFAULT_STATUS_POLICY
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def resolve(
        self,
        user_id: str,
        *,
        club_id: Optional[str] = None,
        event_id: Optional[str] = None,
        event_participants_requested: Optional[int] = None,
        session: Optional[LedgerSession] = None,
    ) -> EffectiveEntitlement:
        """Return the limits in force for ``club_id`` and ``event_id`` right now."""

        catalog = self._catalog.get()
        with managed_session(self._store, session) as active:
            subscription = self._subscriptions.get_active(club_id, session=active) if club_id else None
            consumed = self._credits.consumed_for_event(event_id, session=active) if event_id else []

        plan = catalog.plan(_plan_in_force(subscription))
        max_participants, applied_credit = _apply_event_credits(plan, consumed, catalog)

        within_limit: Optional[bool] = None
        if event_participants_requested is not None:
            within_limit = max_participants is None or event_participants_requested <= max_participants

        entitlement = EffectiveEntitlement(
            plan_id=plan.code,
            max_participants=max_participants,
            max_members=plan.max_members,
            allow_paid_events=plan.allow_paid_events,
            allow_csv_export=plan.allow_csv_export,
            subscription_status=subscription.status if subscription else None,
            applied_credit_id=applied_credit.id if applied_credit else None,
            participants_within_limit=within_limit,
        )
        logger.debug(
            "Resolved entitlement user=%s club=%s event=%s plan=%s max_participants=%s",
            user_id,
            club_id,
            event_id,
            entitlement.plan_id.value,
            entitlement.max_participants,
        )
        return entitlement

    def check_action(
        self,
        action: ActionCode,
        context: ActionContext,
        *,
        session: Optional[LedgerSession] = None,
    ) -> ActionDecision:
        """Decide whether ``action`` may proceed for ``context``."""

        action = _action_code(action)
        if action.requires_club and not context.club_id:
            raise ValidationError(f"Action {action.value} requires a clubId")
        _validate_counts(context)

        catalog = self._catalog.get()
        with managed_session(self._store, session) as active:
            entitlement = self.resolve(
                context.user_id,
                club_id=context.club_id,
                event_id=context.event_id,
                event_participants_requested=context.participants,
                session=active,
            )
            decision = self._decide(action, context, entitlement, catalog, active)

        _log_decision(action, context, decision)
        return decision

    def confirm_and_consume(
        self,
        action: ActionCode,
        context: ActionContext,
        *,
        session: Optional[LedgerSession] = None,
    ) -> ActionDecision:
        """Spend one credit when the action needs confirmation, then re-check.

        Returns the decision after consumption, or the original decision when
        no confirmation was required.
        """

        if not context.event_id:
            raise ValidationError("eventId is required to confirm credit consumption")

        with managed_session(self._store, session) as active:
            decision = self.check_action(action, context, session=active)
            if not isinstance(decision, RequireConfirmation):
                return decision

            credit = self._credits.consume_one_for(
                user_id=context.user_id,
                credit_code=decision.credit_code,
                event_id=context.event_id,
                session=active,
            )
            if credit is None:
                return self.check_action(action, context, session=active)

            after = self.check_action(action, context, session=active)
            if isinstance(after, Allow):
                return Allow(entitlement=after.entitlement, consumed_credit_id=credit.id)
            return after

    def _decide(
        self,
        action: ActionCode,
        context: ActionContext,
        entitlement: EffectiveEntitlement,
        catalog: CatalogSnapshot,
        session: LedgerSession,
    ) -> ActionDecision:
        status = entitlement.subscription_status
        if context.club_id and status in self._status_policy:
            if action not in self._status_policy[status]:
                reason = (
                    DenyReason.SUBSCRIPTION_EXPIRED
                    if status == SubscriptionStatus.EXPIRED
                    else DenyReason.SUBSCRIPTION_NOT_ACTIVE
                )
                return Deny(
                    reason=reason,
                    message=f'Action "{action.value}" not allowed for subscription status "{status.value}"',
                    current_plan_id=entitlement.plan_id,
                    meta={"status": status.value},
                )

        if action == ActionCode.CLUB_CREATE_PAID_EVENT or context.is_paid:
            if not entitlement.allow_paid_events:
                required = _cheapest_plan_with(catalog, lambda plan: plan.allow_paid_events)
                return Deny(
                    reason=DenyReason.PAID_EVENTS_NOT_ALLOWED,
                    message="Paid events require a paid club plan",
                    current_plan_id=entitlement.plan_id,
                    required_plan_id=required,
                    options=_club_options(catalog, required),
                )

        if action == ActionCode.CLUB_EXPORT_PARTICIPANTS_CSV and not entitlement.allow_csv_export:
            required = _cheapest_plan_with(catalog, lambda plan: plan.allow_csv_export)
            return Deny(
                reason=DenyReason.CSV_EXPORT_NOT_ALLOWED,
                message="CSV export requires a paid club plan",
                current_plan_id=entitlement.plan_id,
                required_plan_id=required,
                options=_club_options(catalog, required),
            )

        if action == ActionCode.CLUB_INVITE_MEMBER and context.members is not None:
            limit = entitlement.max_members
            if limit is not None and context.members >= limit:
                required = required_plan_for_members(catalog, context.members + 1)
                return Deny(
                    reason=DenyReason.MAX_CLUB_MEMBERS_EXCEEDED,
                    message=f"Club has reached maximum members limit ({limit})",
                    current_plan_id=entitlement.plan_id,
                    required_plan_id=required,
                    options=_club_options(catalog, required),
                    meta={"current": context.members, "limit": limit},
                )

        if action.affects_event_size and context.participants is not None:
            if not entitlement.admits_participants(context.participants):
                return self._over_participant_limit(context, entitlement, catalog, session)

        return Allow(entitlement=entitlement)

    def _over_participant_limit(
        self,
        context: ActionContext,
        entitlement: EffectiveEntitlement,
        catalog: CatalogSnapshot,
        session: LedgerSession,
    ) -> ActionDecision:
        participants = context.participants or 0
        one_off = catalog.product_for_credit(EVENT_UPGRADE_CREDIT)
        credit_limit = one_off.max_participants
        credit_would_fit = entitlement.applied_credit_id is None and (
            credit_limit is None or participants <= credit_limit
        )

        if credit_would_fit:
            available = self._credits.list_available(
                context.user_id, credit_code=EVENT_UPGRADE_CREDIT, session=session
            )
            if available:
                return RequireConfirmation(
                    credit_code=EVENT_UPGRADE_CREDIT,
                    message=(
                        f"Event with {participants} participants will use one "
                        f"{EVENT_UPGRADE_CREDIT.value} credit"
                    ),
                    details={
                        "requestedParticipants": participants,
                        "currentLimit": entitlement.max_participants,
                        "creditLimit": credit_limit,
                        "availableCredits": len(available),
                        "eventId": context.event_id,
                    },
                )

        required = required_plan_for_participants(catalog, participants)
        options = list(_club_options(catalog, required))
        if credit_would_fit:
            options.append(
                UpsellOption(
                    option_type=UpsellOptionType.ONE_OFF_CREDIT,
                    price_minor_units=one_off.price_minor_units,
                    currency_code=one_off.currency_code,
                    product_code=one_off.code,
                )
            )
        options.sort(key=lambda option: option.price_minor_units)

        if entitlement.plan_id != PlanId.FREE:
            reason = DenyReason.MAX_EVENT_PARTICIPANTS_EXCEEDED
            message = (
                f"Event with {participants} participants exceeds your plan limit of "
                f"{entitlement.max_participants}"
            )
        elif credit_would_fit:
            reason = DenyReason.PUBLISH_REQUIRES_PAYMENT
            message = f"Event with {participants} participants requires payment"
        else:
            reason = DenyReason.CLUB_REQUIRED_FOR_LARGE_EVENT
            message = f"Events above {credit_limit} participants require a club subscription"

        return Deny(
            reason=reason,
            message=message,
            current_plan_id=entitlement.plan_id,
            required_plan_id=required,
            options=tuple(options),
            meta={"requested": participants, "limit": entitlement.max_participants},
        )


def _plan_in_force(subscription: Optional[Subscription]) -> PlanId:
    if subscription is None:
        return PlanId.FREE
    if subscription.status in {SubscriptionStatus.ACTIVE, SubscriptionStatus.GRACE}:
        return subscription.plan_id
    return PlanId.FREE


def _apply_event_credits(
    plan: PlanDefinition, consumed: List[Credit], catalog: CatalogSnapshot
) -> Tuple[Optional[int], Optional[Credit]]:
    limit = plan.max_event_participants
    applied: Optional[Credit] = None
    if limit is None:
        return None, None
    for credit in consumed:
        bonus = catalog.product_for_credit(credit.credit_code).max_participants
        if bonus is None:
            return None, credit
        if bonus > limit:
            limit = bonus
            applied = credit
    return limit, applied


def _cheapest_plan_with(catalog: CatalogSnapshot, predicate: Callable[[PlanDefinition], bool]) -> PlanId:
    for plan in catalog.plans_by_price():
        if predicate(plan):
            return plan.code
    return PlanId.CLUB_UNLIMITED


def _club_options(catalog: CatalogSnapshot, plan_id: PlanId) -> Tuple[UpsellOption, ...]:
    plan = catalog.plan(plan_id)
    product = catalog.product_for_plan(plan_id)
    return (
        UpsellOption(
            option_type=UpsellOptionType.CLUB_ACCESS,
            price_minor_units=plan.price_minor_units,
            currency_code=product.currency_code if product else "KZT",
            product_code=product.code if product else None,
            plan_id=plan_id,
        ),
    )


def _action_code(value: ActionCode) -> ActionCode:
    try:
        return ActionCode(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown action code: {value}") from exc


def _validate_counts(context: ActionContext) -> None:
    for name, value in (("participants", context.participants), ("members", context.members)):
        if value is not None and value < 0:
            raise ValidationError(f"{name} must be >= 0")


def _log_decision(action: ActionCode, context: ActionContext, decision: ActionDecision) -> None:
    if isinstance(decision, Allow):
        logger.debug("Action allowed action=%s user=%s club=%s", action.value, context.user_id, context.club_id)
    elif isinstance(decision, RequireConfirmation):
        logger.info(
            "Action requires credit confirmation action=%s user=%s event=%s",
            action.value,
            context.user_id,
            context.event_id,
        )
    elif isinstance(decision, Deny):
        logger.info(
            "Action denied action=%s user=%s club=%s reason=%s",
            action.value,
            context.user_id,
            context.club_id,
            decision.reason.value,
        )
    else:  # pragma: no cover - closed union
        raise TypeError(f"Unhandled decision {decision!r}")


__all__ = ["DEFAULT_STATUS_POLICY", "EVENT_UPGRADE_CREDIT", "EntitlementResolver"]
