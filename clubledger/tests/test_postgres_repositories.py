from __future__ import annotations

from datetime import datetime, timezone

import psycopg2
import pytest

from clubledger.app.billing import CreditCode, CreditStatus, ProductCode, Transaction, TransactionStatus
from clubledger.app.billing.repository import PostgresCreditRepository, PostgresTransactionRepository
from clubledger.app.feature_gates import ConflictError
from clubledger.app.idempotency import IdempotencyStatus, PostgresIdempotencyRepository
from clubledger.app.storage.schema import LEDGER_SCHEMA

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeCursor:
    def __init__(self, *fetchone_results, error=None):
        self.fetchone_results = list(fetchone_results)
        self.error = error
        self.execute_calls = []
        self.closed = False

    def execute(self, query, params=None):
        self.execute_calls.append((" ".join(query.split()), params))
        if self.error is not None:
            raise self.error

    def fetchone(self):
        return self.fetchone_results.pop(0) if self.fetchone_results else None

    def close(self):
        self.closed = True


class FakeConnection:
    def __init__(self, cursor):
        self._cursor = cursor
        self.cursor_calls = []

    def cursor(self, *args, **kwargs):
        self.cursor_calls.append((args, kwargs))
        return self._cursor


def _key_row(status):
    return {
        "actor_id": "user-1",
        "route_name": "purchase_intent",
        "key": "key-1",
        "status": status,
        "response_status": 201 if status == "completed" else None,
        "response_body": {"id": "tx-1"} if status == "completed" else None,
        "created_at": NOW,
        "updated_at": NOW,
    }


def test_begin_claims_new_key_in_one_statement():
    cursor = FakeCursor(_key_row("in_progress"))
    repository = PostgresIdempotencyRepository(conn=FakeConnection(cursor))

    claim = repository.begin("user-1", "purchase_intent", "key-1", now=NOW)

    assert claim.fresh is True
    assert len(cursor.execute_calls) == 1
    assert "ON CONFLICT (actor_id, route_name, key) DO UPDATE" in cursor.execute_calls[0][0]
    assert "WHERE idempotency_keys.status = 'failed'" in cursor.execute_calls[0][0]
    assert cursor.closed


def test_begin_returns_existing_record_when_key_is_taken():
    cursor = FakeCursor(None, _key_row("completed"))
    repository = PostgresIdempotencyRepository(conn=FakeConnection(cursor))

    claim = repository.begin("user-1", "purchase_intent", "key-1", now=NOW)

    assert claim.fresh is False
    assert claim.existing.status == IdempotencyStatus.COMPLETED
    assert claim.existing.response_body == {"id": "tx-1"}
    assert len(cursor.execute_calls) == 2


def test_consume_claims_oldest_row_with_skip_locked():
    row = {
        "id": "credit-1",
        "user_id": "user-1",
        "credit_code": "EVENT_UPGRADE_500",
        "status": "consumed",
        "source_transaction_id": "tx-1",
        "consumed_event_id": "event-1",
        "consumed_at": NOW,
        "expires_at": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    cursor = FakeCursor(row)
    repository = PostgresCreditRepository(conn=FakeConnection(cursor))

    credit = repository.consume_one_for("user-1", CreditCode.EVENT_UPGRADE_500, "event-1", now=NOW)

    query, params = cursor.execute_calls[0]
    assert "ORDER BY created_at ASC, id ASC LIMIT 1 FOR UPDATE SKIP LOCKED" in query
    assert params["credit_code"] == "EVENT_UPGRADE_500"
    assert credit.status == CreditStatus.CONSUMED
    assert credit.consumed_event_id == "event-1"


def test_consume_returns_none_without_candidates():
    repository = PostgresCreditRepository(conn=FakeConnection(FakeCursor()))

    assert repository.consume_one_for("user-1", CreditCode.EVENT_UPGRADE_500, "event-1", now=NOW) is None


def test_consume_for_event_with_applied_credit_is_a_conflict():
    cursor = FakeCursor(error=psycopg2.IntegrityError("billing_credits_event_once_idx"))
    repository = PostgresCreditRepository(conn=FakeConnection(cursor))

    with pytest.raises(ConflictError):
        repository.consume_one_for("user-1", CreditCode.EVENT_UPGRADE_500, "event-1", now=NOW)

    assert cursor.closed


def test_schema_allows_one_consumed_credit_per_event():
    query = " ".join(LEDGER_SCHEMA.split())

    assert (
        "CREATE UNIQUE INDEX IF NOT EXISTS billing_credits_event_once_idx "
        "ON billing_credits (consumed_event_id, credit_code) WHERE status = 'consumed';"
    ) in query


def test_mark_settled_only_updates_pending_rows():
    cursor = FakeCursor()
    repository = PostgresTransactionRepository(conn=FakeConnection(cursor))

    assert repository.mark_settled("tx-1", TransactionStatus.COMPLETED, now=NOW) is None
    assert "WHERE id = %(id)s AND status = 'pending'" in cursor.execute_calls[0][0]


def test_duplicate_insert_is_a_conflict():
    cursor = FakeCursor(error=psycopg2.IntegrityError("duplicate key value"))
    repository = PostgresTransactionRepository(conn=FakeConnection(cursor))
    transaction = Transaction(
        id="tx-1",
        user_id="user-1",
        product_code=ProductCode.EVENT_UPGRADE_500,
        provider="kaspi",
        provider_payment_id="KASPI_1_ABCDEFG",
        amount_minor_units=1000,
        currency_code="KZT",
    )

    with pytest.raises(ConflictError):
        repository.insert(transaction)
