from __future__ import annotations

from datetime import timedelta

import pytest

from clubledger.app.feature_gates import NotFoundError, ValidationError
from clubledger.app.subscriptions import PlanId, Subscription, SubscriptionStatus, SubscriptionStore


@pytest.fixture
def subscriptions(store, clock):
    return SubscriptionStore(store, grace_period_days=7, clock=clock)


def _activate(subscriptions, clock, club_id="club-1", plan_id=PlanId.CLUB_50, days=30):
    return subscriptions.activate(club_id, plan_id, clock(), clock() + timedelta(days=days))


def test_missing_club_has_no_subscription(subscriptions):
    assert subscriptions.get_active("club-unknown") is None


def test_status_moves_from_active_to_grace_to_expired(subscriptions, clock):
    activated = _activate(subscriptions, clock)
    period_end = activated.current_period_end

    assert subscriptions.get_active("club-1").status == SubscriptionStatus.ACTIVE

    clock.advance(days=31)
    in_grace = subscriptions.get_active("club-1")
    assert in_grace.status == SubscriptionStatus.GRACE
    assert in_grace.grace_until == period_end + timedelta(days=7)

    clock.advance(days=7)
    assert subscriptions.get_active("club-1").status == SubscriptionStatus.EXPIRED


def test_activate_replaces_existing_row_and_clears_grace(subscriptions, clock):
    _activate(subscriptions, clock)
    clock.advance(days=32)

    renewed = _activate(subscriptions, clock, plan_id=PlanId.CLUB_500)

    current = subscriptions.get_active("club-1")
    assert renewed.grace_until is None
    assert current.plan_id == PlanId.CLUB_500
    assert current.status == SubscriptionStatus.ACTIVE


def test_activate_rejects_empty_period(subscriptions, clock):
    with pytest.raises(ValidationError):
        subscriptions.activate("club-1", PlanId.CLUB_50, clock(), clock())


def test_downgrade_to_free(subscriptions, clock):
    _activate(subscriptions, clock)

    downgraded = subscriptions.downgrade_to_free("club-1")

    assert downgraded.plan_id == PlanId.FREE
    assert downgraded.current_period_end is None
    assert subscriptions.get_active("club-1").is_free


def test_downgrade_unknown_club_is_not_found_and_writes_nothing(subscriptions):
    with pytest.raises(NotFoundError):
        subscriptions.downgrade_to_free("club-unknown")

    assert subscriptions.get_active("club-unknown") is None


def test_extend_starts_from_current_end_while_active(subscriptions, clock):
    activated = _activate(subscriptions, clock)

    extended = subscriptions.extend("club-1", 10)

    assert extended.current_period_end == activated.current_period_end + timedelta(days=10)
    assert extended.status == activated.status


def test_extend_after_lapse_starts_from_now(subscriptions, clock):
    _activate(subscriptions, clock)
    now = clock.advance(days=40)

    extended = subscriptions.extend("club-1", 5)

    assert extended.current_period_end == now + timedelta(days=5)
    assert subscriptions.get_active("club-1").status == SubscriptionStatus.ACTIVE


@pytest.mark.parametrize("days", [0, -3, True])
def test_extend_rejects_non_positive_days(subscriptions, clock, days):
    _activate(subscriptions, clock)

    with pytest.raises(ValidationError):
        subscriptions.extend("club-1", days)


def test_extend_unknown_club_is_not_found(subscriptions):
    with pytest.raises(NotFoundError):
        subscriptions.extend("club-unknown", 5)


def test_extend_free_club_is_rejected(subscriptions, clock):
    _activate(subscriptions, clock)
    subscriptions.downgrade_to_free("club-1")

    with pytest.raises(ValidationError):
        subscriptions.extend("club-1", 5)


def test_status_at_keeps_pending(clock):
    pending = Subscription(club_id="club-1", plan_id=PlanId.CLUB_50, status=SubscriptionStatus.PENDING)

    assert pending.status_at(clock(), grace_period_days=7) == SubscriptionStatus.PENDING
