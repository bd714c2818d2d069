from __future__ import annotations

import pytest

from clubledger.app.billing import CreditCode, ProductCode
from clubledger.app.entitlements import (
    ActionCode,
    ActionContext,
    Allow,
    Deny,
    DenyReason,
    RequireConfirmation,
    UpsellOptionType,
)
from clubledger.app.feature_gates import ValidationError
from clubledger.app.subscriptions import PlanId, SubscriptionStatus


def _publish(participants, *, user_id="user-1", event_id="event-1"):
    return ActionContext(user_id=user_id, event_id=event_id, participants=participants)


def _club(action_participants=None, *, members=None, is_paid=False, club_id="club-1", event_id="event-1"):
    return ActionContext(
        user_id="owner-1",
        club_id=club_id,
        event_id=event_id,
        participants=action_participants,
        members=members,
        is_paid=is_paid,
    )


def test_free_user_small_event_is_allowed(services):
    decision = services.resolver.check_action(ActionCode.PUBLISH_EVENT, _publish(10))

    assert isinstance(decision, Allow)
    assert decision.entitlement.plan_id == PlanId.FREE
    assert decision.entitlement.max_participants == 15


def test_large_event_with_credit_requires_confirmation_then_consumes(services, buy, store):
    credit = buy("user-1").credits[0]

    decision = services.resolver.check_action(ActionCode.PUBLISH_EVENT, _publish(400))

    assert isinstance(decision, RequireConfirmation)
    assert decision.credit_code == CreditCode.EVENT_UPGRADE_500
    assert decision.details["availableCredits"] == 1
    assert decision.details["currentLimit"] == 15
    assert decision.details["creditLimit"] == 500
    assert services.credits.has_available("user-1", CreditCode.EVENT_UPGRADE_500)

    confirmed = services.resolver.confirm_and_consume(ActionCode.PUBLISH_EVENT, _publish(400))

    assert isinstance(confirmed, Allow)
    assert confirmed.consumed_credit_id == credit.id
    assert confirmed.entitlement.max_participants == 500
    assert confirmed.entitlement.applied_credit_id == credit.id

    again = services.resolver.check_action(ActionCode.PUBLISH_EVENT, _publish(400))
    assert isinstance(again, Allow)
    assert again.consumed_credit_id is None
    assert store.count_credits("user-1") == 1
    assert services.credits.list_available("user-1") == []


def test_large_event_without_credit_is_denied_with_cheapest_option_first(services):
    decision = services.resolver.check_action(ActionCode.PUBLISH_EVENT, _publish(400))

    assert isinstance(decision, Deny)
    assert decision.reason == DenyReason.PUBLISH_REQUIRES_PAYMENT
    assert decision.required_plan_id == PlanId.CLUB_500
    assert [option.option_type for option in decision.options] == [
        UpsellOptionType.ONE_OFF_CREDIT,
        UpsellOptionType.CLUB_ACCESS,
    ]
    prices = [option.price_minor_units for option in decision.options]
    assert prices == sorted(prices)
    assert decision.recommended.product_code == ProductCode.EVENT_UPGRADE_500


def test_event_beyond_credit_limit_requires_club(services, buy):
    buy("user-1")

    decision = services.resolver.check_action(ActionCode.PUBLISH_EVENT, _publish(600))

    assert isinstance(decision, Deny)
    assert decision.reason == DenyReason.CLUB_REQUIRED_FOR_LARGE_EVENT
    assert decision.required_plan_id == PlanId.CLUB_UNLIMITED
    assert [option.option_type for option in decision.options] == [UpsellOptionType.CLUB_ACCESS]
    assert len(services.credits.list_available("user-1")) == 1


def test_confirm_without_credit_returns_deny_and_consumes_nothing(services, store):
    decision = services.resolver.confirm_and_consume(ActionCode.PUBLISH_EVENT, _publish(400))

    assert isinstance(decision, Deny)
    assert store.count_credits() == 0


def test_confirm_requires_event_id(services):
    with pytest.raises(ValidationError):
        services.resolver.confirm_and_consume(ActionCode.PUBLISH_EVENT, _publish(400, event_id=None))


def test_consumed_credit_never_lowers_a_larger_plan_limit(services, buy):
    buy("owner-1", ProductCode.CLUB_UNLIMITED, club_id="club-1")
    buy("owner-1")
    services.credits.consume_one_for(
        user_id="owner-1", credit_code=CreditCode.EVENT_UPGRADE_500, event_id="event-1"
    )

    entitlement = services.resolver.resolve("owner-1", club_id="club-1", event_id="event-1")

    assert entitlement.plan_id == PlanId.CLUB_UNLIMITED
    assert entitlement.max_participants is None


def test_resolve_reports_participants_within_limit(services, buy):
    buy("owner-1", ProductCode.CLUB_50, club_id="club-1")

    entitlement = services.resolver.resolve(
        "owner-1", club_id="club-1", event_participants_requested=51
    )

    assert entitlement.max_participants == 50
    assert entitlement.max_members == 50
    assert entitlement.subscription_status == SubscriptionStatus.ACTIVE
    assert entitlement.participants_within_limit is False


def test_paid_plan_over_limit_reports_plan_limit(services, buy):
    buy("owner-1", ProductCode.CLUB_50, club_id="club-1")

    decision = services.resolver.check_action(ActionCode.CLUB_CREATE_EVENT, _club(120))

    assert isinstance(decision, Deny)
    assert decision.reason == DenyReason.MAX_EVENT_PARTICIPANTS_EXCEEDED
    assert decision.current_plan_id == PlanId.CLUB_50
    assert decision.required_plan_id == PlanId.CLUB_500


def test_paid_plan_over_limit_with_credit_requires_confirmation(services, buy):
    buy("owner-1", ProductCode.CLUB_50, club_id="club-1")
    buy("owner-1")

    decision = services.resolver.check_action(ActionCode.CLUB_CREATE_EVENT, _club(120))

    assert isinstance(decision, RequireConfirmation)


def test_paid_events_need_paid_plan(services, buy):
    denied = services.resolver.check_action(ActionCode.CLUB_CREATE_PAID_EVENT, _club(10))
    flagged = services.resolver.check_action(ActionCode.CLUB_CREATE_EVENT, _club(10, is_paid=True))

    assert isinstance(denied, Deny)
    assert denied.reason == DenyReason.PAID_EVENTS_NOT_ALLOWED
    assert denied.required_plan_id == PlanId.CLUB_50
    assert isinstance(flagged, Deny)
    assert flagged.reason == DenyReason.PAID_EVENTS_NOT_ALLOWED

    buy("owner-1", ProductCode.CLUB_50, club_id="club-1")
    assert isinstance(services.resolver.check_action(ActionCode.CLUB_CREATE_PAID_EVENT, _club(10)), Allow)


def test_csv_export_needs_paid_plan(services, buy):
    denied = services.resolver.check_action(ActionCode.CLUB_EXPORT_PARTICIPANTS_CSV, _club())

    assert isinstance(denied, Deny)
    assert denied.reason == DenyReason.CSV_EXPORT_NOT_ALLOWED

    buy("owner-1", ProductCode.CLUB_50, club_id="club-1")
    assert isinstance(services.resolver.check_action(ActionCode.CLUB_EXPORT_PARTICIPANTS_CSV, _club()), Allow)


def test_member_limit(services, buy):
    buy("owner-1", ProductCode.CLUB_50, club_id="club-1")

    allowed = services.resolver.check_action(ActionCode.CLUB_INVITE_MEMBER, _club(members=49))
    denied = services.resolver.check_action(ActionCode.CLUB_INVITE_MEMBER, _club(members=50))

    assert isinstance(allowed, Allow)
    assert isinstance(denied, Deny)
    assert denied.reason == DenyReason.MAX_CLUB_MEMBERS_EXCEEDED
    assert denied.required_plan_id == PlanId.CLUB_500
    assert denied.meta == {"current": 50, "limit": 50}


def test_grace_period_allows_maintenance_only(services, buy, clock):
    buy("owner-1", ProductCode.CLUB_50, club_id="club-1")
    clock.advance(days=31)

    create = services.resolver.check_action(ActionCode.CLUB_CREATE_EVENT, _club(10))
    update = services.resolver.check_action(ActionCode.CLUB_UPDATE, _club())

    assert isinstance(create, Deny)
    assert create.reason == DenyReason.SUBSCRIPTION_NOT_ACTIVE
    assert isinstance(update, Allow)
    assert update.entitlement.plan_id == PlanId.CLUB_50
    assert update.entitlement.subscription_status == SubscriptionStatus.GRACE


def test_expired_subscription_denies_club_actions(services, buy, clock):
    buy("owner-1", ProductCode.CLUB_50, club_id="club-1")
    clock.advance(days=40)

    decision = services.resolver.check_action(ActionCode.CLUB_UPDATE, _club())

    assert isinstance(decision, Deny)
    assert decision.reason == DenyReason.SUBSCRIPTION_EXPIRED
    assert decision.current_plan_id == PlanId.FREE


def test_club_actions_require_club_id(services):
    with pytest.raises(ValidationError):
        services.resolver.check_action(ActionCode.CLUB_CREATE_EVENT, _club(10, club_id=None))


def test_unknown_action_is_rejected(services):
    with pytest.raises(ValidationError):
        services.resolver.check_action("CLUB_DELETE_EVERYTHING", _publish(1))


def test_decision_dicts_carry_decision_kind(services, buy):
    buy("user-1")

    assert services.resolver.check_action(ActionCode.PUBLISH_EVENT, _publish(1)).to_dict()["decision"] == "allow"
    confirm = services.resolver.check_action(ActionCode.PUBLISH_EVENT, _publish(400)).to_dict()
    assert confirm["decision"] == "require_confirmation"
    assert confirm["reason"] == "CREDIT_CONFIRMATION_REQUIRED"
