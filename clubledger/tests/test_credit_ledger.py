from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from clubledger.app.billing import (
    ADMIN_GRANT_PROVIDER,
    SYSTEM_GRANT_PROVIDER,
    CreditCode,
    CreditStatus,
    ProductCode,
    TransactionStatus,
)
from clubledger.app.feature_gates import ConflictError, ForbiddenError, NotFoundError, ValidationError


def test_consumes_oldest_credit_first(services, buy):
    older = buy("user-1").credits[0]
    newer = buy("user-1").credits[0]

    consumed = services.credits.consume_one_for(
        user_id="user-1", credit_code=CreditCode.EVENT_UPGRADE_500, event_id="event-1"
    )

    assert consumed.id == older.id
    assert consumed.status == CreditStatus.CONSUMED
    assert consumed.consumed_event_id == "event-1"
    assert [c.id for c in services.credits.list_available("user-1")] == [newer.id]
    assert [c.id for c in services.credits.consumed_for_event("event-1")] == [older.id]


def test_consume_returns_none_when_nothing_available(services, buy):
    buy("someone-else")

    assert (
        services.credits.consume_one_for(
            user_id="user-1", credit_code=CreditCode.EVENT_UPGRADE_500, event_id="event-1"
        )
        is None
    )


def test_consume_requires_event_id(services, buy):
    buy("user-1")

    with pytest.raises(ValidationError):
        services.credits.consume_one_for(user_id="user-1", credit_code=CreditCode.EVENT_UPGRADE_500, event_id="")


def test_second_credit_for_same_event_is_a_conflict(services, buy):
    buy("user-1", quantity=2)
    first = services.credits.consume_one_for(
        user_id="user-1", credit_code=CreditCode.EVENT_UPGRADE_500, event_id="event-1"
    )

    with pytest.raises(ConflictError):
        services.credits.consume_one_for(
            user_id="user-1", credit_code=CreditCode.EVENT_UPGRADE_500, event_id="event-1"
        )

    assert [c.id for c in services.credits.consumed_for_event("event-1")] == [first.id]
    assert len(services.credits.list_available("user-1")) == 1


def test_concurrent_consumers_for_one_event_spend_one_credit(services, buy):
    buy("user-1", quantity=3)

    def consume(_):
        try:
            return services.credits.consume_one_for(
                user_id="user-1", credit_code=CreditCode.EVENT_UPGRADE_500, event_id="event-1"
            )
        except ConflictError:
            return None

    with ThreadPoolExecutor(max_workers=5) as pool:
        results = list(pool.map(consume, range(5)))

    assert len([credit for credit in results if credit is not None]) == 1
    assert len(services.credits.list_available("user-1")) == 2


def test_concurrent_consumers_never_share_a_credit(services, buy):
    buy("user-1", quantity=3)

    def consume(index):
        return services.credits.consume_one_for(
            user_id="user-1",
            credit_code=CreditCode.EVENT_UPGRADE_500,
            event_id=f"event-{index}",
        )

    with ThreadPoolExecutor(max_workers=10) as pool:
        results = list(pool.map(consume, range(10)))

    consumed = [credit for credit in results if credit is not None]
    assert len(consumed) == 3
    assert len({credit.id for credit in consumed}) == 3
    assert services.credits.list_available("user-1") == []


def test_expired_credits_are_neither_listed_nor_consumed(services, buy, clock):
    source = buy("user-1").transaction
    services.credits.issue(
        user_id="user-1",
        credit_code=CreditCode.EVENT_UPGRADE_500,
        source_transaction_id=source.id,
        expires_at=clock() + timedelta(days=1),
    )
    services.credits.consume_one_for(
        user_id="user-1", credit_code=CreditCode.EVENT_UPGRADE_500, event_id="event-1"
    )
    clock.advance(days=2)

    assert services.credits.list_available("user-1") == []
    assert not services.credits.has_available("user-1", CreditCode.EVENT_UPGRADE_500)
    assert (
        services.credits.consume_one_for(
            user_id="user-1", credit_code=CreditCode.EVENT_UPGRADE_500, event_id="event-2"
        )
        is None
    )


def test_issue_requires_completed_source_owned_by_user(services, buy):
    pending = services.billing.create_purchase_intent(
        user_id="user-1", product_code=ProductCode.EVENT_UPGRADE_500
    ).transaction
    completed = buy("user-1").transaction

    with pytest.raises(NotFoundError):
        services.credits.issue(
            user_id="user-1", credit_code=CreditCode.EVENT_UPGRADE_500, source_transaction_id="missing"
        )
    with pytest.raises(ConflictError):
        services.credits.issue(
            user_id="user-1", credit_code=CreditCode.EVENT_UPGRADE_500, source_transaction_id=pending.id
        )
    with pytest.raises(ConflictError):
        services.credits.issue(
            user_id="user-2", credit_code=CreditCode.EVENT_UPGRADE_500, source_transaction_id=completed.id
        )


def test_system_grant_is_backed_by_zero_amount_transaction(services):
    credit = services.credits.grant_system(
        user_id="user-1", credit_code=CreditCode.EVENT_UPGRADE_500, reason="support ticket 42"
    )

    source = services.transactions.get(credit.source_transaction_id)
    assert source.status == TransactionStatus.COMPLETED
    assert source.amount_minor_units == 0
    assert source.provider == SYSTEM_GRANT_PROVIDER
    assert source.user_id == "user-1"


def test_system_grant_requires_reason(services, store):
    with pytest.raises(ValidationError):
        services.credits.grant_system(user_id="user-1", credit_code=CreditCode.EVENT_UPGRADE_500, reason="  ")

    assert store.count_transactions() == 0


def test_beta_grant_is_forbidden_under_hard_paywall(services, store):
    with pytest.raises(ForbiddenError):
        services.billing.grant_beta_credit(user_id="user-1")

    assert store.count_credits() == 0


def test_admin_grant_records_admin_provider(services):
    credit = services.billing.admin_grant_credit(
        admin_id="admin",
        user_id="user-1",
        credit_code=CreditCode.EVENT_UPGRADE_500,
        reason="compensation for outage",
    )

    assert services.transactions.get(credit.source_transaction_id).provider == ADMIN_GRANT_PROVIDER


def test_unknown_credit_code_is_rejected(services):
    with pytest.raises(ValidationError):
        services.credits.list_available("user-1", credit_code="EVENT_UPGRADE_9000")
