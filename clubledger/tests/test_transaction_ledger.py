from __future__ import annotations

from datetime import timedelta

import pytest

from clubledger.app.billing import (
    CreditStatus,
    ProductCode,
    SettlementEvent,
    SettlementOutcome,
    TransactionLedger,
    TransactionStatus,
)
from clubledger.app.feature_gates import ConflictError, NotFoundError, ValidationError
from clubledger.app.subscriptions import PlanId, SubscriptionStatus


def test_purchase_intent_prices_from_catalog(services):
    intent = services.billing.create_purchase_intent(
        user_id="user-1",
        product_code=ProductCode.EVENT_UPGRADE_500,
        quantity=2,
    )

    transaction = intent.transaction
    assert transaction.status == TransactionStatus.PENDING
    assert transaction.amount_minor_units == 2000
    assert transaction.currency_code == "KZT"
    assert transaction.provider == "kaspi"
    assert transaction.provider_payment_id.startswith("KASPI_")
    assert intent.payment["invoiceUrl"].endswith(transaction.provider_payment_id)


def test_completed_settlement_issues_one_credit(services, buy):
    result = buy("user-1")

    assert result.was_no_op is False
    assert result.transaction.status == TransactionStatus.COMPLETED
    assert len(result.credits) == 1
    credit = result.credits[0]
    assert credit.status == CreditStatus.AVAILABLE
    assert credit.source_transaction_id == result.transaction.id
    assert [c.id for c in services.credits.list_available("user-1")] == [credit.id]


def test_settling_twice_is_a_no_op(services, store, buy):
    first = buy("user-1")

    again = services.transactions.settle(
        outcome=SettlementOutcome.COMPLETED, transaction_id=first.transaction.id
    )
    refund_after = services.transactions.settle(
        outcome=SettlementOutcome.REFUNDED, transaction_id=first.transaction.id
    )

    assert again.was_no_op is True
    assert again.credits == []
    assert refund_after.was_no_op is True
    assert refund_after.transaction.status == TransactionStatus.COMPLETED
    assert store.count_credits("user-1") == 1


def test_quantity_issues_one_credit_per_unit(services, buy):
    result = buy("user-1", quantity=3)

    assert len(result.credits) == 3
    assert len(services.credits.list_available("user-1")) == 3


@pytest.mark.parametrize("outcome", [SettlementOutcome.FAILED, SettlementOutcome.REFUNDED])
def test_unsuccessful_outcomes_issue_nothing(services, store, buy, outcome):
    result = buy("user-1", outcome=outcome)

    assert result.transaction.status == outcome.to_status()
    assert result.credits == []
    assert store.count_credits() == 0


def test_settle_by_provider_payment_id(services):
    intent = services.billing.create_purchase_intent(
        user_id="user-1", product_code=ProductCode.EVENT_UPGRADE_500
    )
    event = SettlementEvent(
        provider_payment_id=intent.transaction.provider_payment_id,
        outcome=SettlementOutcome.COMPLETED,
    )

    result = services.billing.settle(event)

    assert result.transaction.id == intent.transaction.id
    assert len(result.credits) == 1


def test_unknown_transaction_raises_not_found(services):
    with pytest.raises(NotFoundError):
        services.transactions.settle(outcome=SettlementOutcome.COMPLETED, transaction_id="missing")
    with pytest.raises(NotFoundError):
        services.transactions.settle(outcome=SettlementOutcome.COMPLETED, provider_payment_id="KASPI_missing")
    with pytest.raises(NotFoundError):
        services.transactions.get("missing")


def test_settle_requires_exactly_one_identifier(services):
    with pytest.raises(ValidationError):
        services.transactions.settle(outcome=SettlementOutcome.COMPLETED)
    with pytest.raises(ValidationError):
        services.transactions.settle(
            outcome=SettlementOutcome.COMPLETED, transaction_id="a", provider_payment_id="b"
        )


def test_create_pending_validates_input(services):
    base = dict(user_id="user-1", product_code=ProductCode.EVENT_UPGRADE_500, provider="kaspi")
    with pytest.raises(ValidationError):
        services.transactions.create_pending(amount_minor_units=-1, currency_code="KZT", **base)
    with pytest.raises(ValidationError):
        services.transactions.create_pending(amount_minor_units=1000, currency_code="KZ", **base)
    with pytest.raises(ValidationError):
        services.transactions.create_pending(amount_minor_units=1000, currency_code="KZT", quantity=0, **base)


def test_duplicate_provider_payment_id_is_rejected(services):
    kwargs = dict(
        user_id="user-1",
        product_code=ProductCode.EVENT_UPGRADE_500,
        provider="kaspi",
        amount_minor_units=1000,
        currency_code="KZT",
        provider_payment_id="KASPI_1_ABCDEFG",
    )
    services.transactions.create_pending(**kwargs)

    with pytest.raises(ConflictError):
        services.transactions.create_pending(**kwargs)


def test_interrupted_store_transaction_keeps_no_partial_writes(services, store):
    with pytest.raises(KeyboardInterrupt):
        with store.transaction() as session:
            services.transactions.create_pending(
                user_id="user-1",
                product_code=ProductCode.EVENT_UPGRADE_500,
                provider="kaspi",
                amount_minor_units=1000,
                currency_code="KZT",
                session=session,
            )
            raise KeyboardInterrupt

    assert store.count_transactions() == 0


def test_club_plan_settlement_activates_subscription(services, buy, clock):
    result = buy("owner-1", ProductCode.CLUB_50, club_id="club-1")

    subscription = result.subscription
    assert subscription is not None
    assert subscription.plan_id == PlanId.CLUB_50
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.grace_until is None
    assert subscription.current_period_end - subscription.current_period_start == timedelta(days=30)
    assert services.subscriptions.get_active("club-1").plan_id == PlanId.CLUB_50


def test_club_plan_intent_requires_club_and_single_quantity(services):
    with pytest.raises(ValidationError):
        services.billing.create_purchase_intent(user_id="owner-1", product_code=ProductCode.CLUB_500)
    with pytest.raises(ValidationError):
        services.billing.create_purchase_intent(
            user_id="owner-1", product_code=ProductCode.CLUB_500, club_id="club-1", quantity=2
        )


def test_notifier_runs_once_after_commit(services, buy, notifier):
    result = buy("user-1")
    services.transactions.settle(outcome=SettlementOutcome.COMPLETED, transaction_id=result.transaction.id)

    assert [r.transaction.id for r in notifier.results] == [result.transaction.id]


def test_notifier_failure_does_not_undo_settlement(store, clock, caplog):
    class ExplodingNotifier:
        def notify_settled(self, result):
            raise RuntimeError("smtp down")

    ledger = TransactionLedger(store, notifier=ExplodingNotifier(), clock=clock)
    pending = ledger.create_pending(
        user_id="user-1",
        product_code=ProductCode.EVENT_UPGRADE_500,
        provider="kaspi",
        amount_minor_units=1000,
        currency_code="KZT",
    )

    with caplog.at_level("WARNING", logger="billing"):
        result = ledger.settle(outcome=SettlementOutcome.FAILED, transaction_id=pending.id)

    assert result.transaction.status == TransactionStatus.FAILED
    assert ledger.get(pending.id).status == TransactionStatus.FAILED
    assert "Settlement notification failed" in caplog.text


def test_failing_effects_leave_transaction_pending(store, clock, notifier):
    class BrokenEffects:
        def apply(self, transaction, session):
            raise RuntimeError("credit table unavailable")

    ledger = TransactionLedger(store, effects=BrokenEffects(), notifier=notifier, clock=clock)
    pending = ledger.create_pending(
        user_id="user-1",
        product_code=ProductCode.EVENT_UPGRADE_500,
        provider="kaspi",
        amount_minor_units=1000,
        currency_code="KZT",
    )

    with pytest.raises(RuntimeError):
        ledger.settle(outcome=SettlementOutcome.COMPLETED, transaction_id=pending.id)

    assert ledger.get(pending.id).status == TransactionStatus.PENDING
    assert notifier.results == []
