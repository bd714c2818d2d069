"""DDL for the ledger tables."""
from __future__ import annotations

from psycopg2.extensions import connection as PgConnection

LEDGER_SCHEMA = """
CREATE TABLE IF NOT EXISTS idempotency_keys (
    actor_id TEXT NOT NULL,
    route_name TEXT NOT NULL,
    key TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('in_progress', 'completed', 'failed')),
    response_status INTEGER,
    response_body JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (actor_id, route_name, key)
);

CREATE TABLE IF NOT EXISTS billing_transactions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    club_id TEXT,
    product_code TEXT NOT NULL,
    provider TEXT NOT NULL,
    provider_payment_id TEXT UNIQUE,
    amount_minor_units BIGINT NOT NULL CHECK (amount_minor_units >= 0),
    currency_code CHAR(3) NOT NULL,
    quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity >= 1),
    status TEXT NOT NULL CHECK (status IN ('pending', 'completed', 'failed', 'refunded')),
    period_start TIMESTAMPTZ,
    period_end TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS billing_transactions_user_idx
    ON billing_transactions (user_id, created_at DESC);

CREATE TABLE IF NOT EXISTS billing_credits (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    credit_code TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('available', 'consumed')),
    source_transaction_id TEXT NOT NULL REFERENCES billing_transactions (id),
    consumed_event_id TEXT,
    consumed_at TIMESTAMPTZ,
    expires_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK ((consumed_event_id IS NULL) = (consumed_at IS NULL)),
    CHECK ((status = 'consumed') = (consumed_at IS NOT NULL))
);

CREATE INDEX IF NOT EXISTS billing_credits_fifo_idx
    ON billing_credits (user_id, credit_code, status, created_at, id);

CREATE INDEX IF NOT EXISTS billing_credits_event_idx
    ON billing_credits (consumed_event_id)
    WHERE consumed_event_id IS NOT NULL;

CREATE UNIQUE INDEX IF NOT EXISTS billing_credits_event_once_idx
    ON billing_credits (consumed_event_id, credit_code)
    WHERE status = 'consumed';

CREATE TABLE IF NOT EXISTS club_subscriptions (
    club_id TEXT PRIMARY KEY,
    plan_id TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('pending', 'active', 'grace', 'expired')),
    current_period_start TIMESTAMPTZ,
    current_period_end TIMESTAMPTZ,
    grace_until TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


def apply_schema(conn: PgConnection) -> None:
    """Create the ledger tables on ``conn`` and commit."""

    with conn.cursor() as cursor:
        cursor.execute(LEDGER_SCHEMA)
    conn.commit()


__all__ = ["LEDGER_SCHEMA", "apply_schema"]
