"""Persistence layer for billing transactions and credits."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, Sequence

import psycopg2

from ..feature_gates.exceptions import ConflictError
from ..storage.connection import PostgresRepository
from .models import (
    Credit,
    CreditCode,
    CreditStatus,
    ProductCode,
    Transaction,
    TransactionStatus,
)


class TransactionRepository(Protocol):
    """Persistence operations for ``billing_transactions``."""

    def insert(self, transaction: Transaction) -> Transaction:
        ...

    def get(self, transaction_id: str, *, for_update: bool = False) -> Optional[Transaction]:
        ...

    def get_by_provider_payment_id(
        self, provider_payment_id: str, *, for_update: bool = False
    ) -> Optional[Transaction]:
        ...

    def mark_settled(
        self, transaction_id: str, status: TransactionStatus, *, now: datetime
    ) -> Optional[Transaction]:
        """Move a pending transaction to ``status``; ``None`` when it was not pending."""


class CreditRepository(Protocol):
    """Persistence operations for ``billing_credits``."""

    def insert(self, credit: Credit) -> Credit:
        ...

    def consume_one_for(
        self, user_id: str, credit_code: CreditCode, event_id: str, *, now: datetime
    ) -> Optional[Credit]:
        """Atomically claim the oldest available credit, or return ``None``."""

    def list_available(
        self, user_id: str, *, now: datetime, credit_code: Optional[CreditCode] = None
    ) -> Sequence[Credit]:
        ...

    def list_consumed_for_event(self, event_id: str) -> Sequence[Credit]:
        ...


def _row_to_transaction(row: dict) -> Transaction:
    return Transaction(
        id=str(row["id"]),
        user_id=row["user_id"],
        club_id=row.get("club_id"),
        product_code=ProductCode(row["product_code"]),
        provider=row["provider"],
        provider_payment_id=row.get("provider_payment_id"),
        amount_minor_units=int(row["amount_minor_units"]),
        currency_code=row["currency_code"],
        quantity=int(row.get("quantity") or 1),
        status=TransactionStatus(row["status"]),
        period_start=row.get("period_start"),
        period_end=row.get("period_end"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_credit(row: dict) -> Credit:
    return Credit(
        id=str(row["id"]),
        user_id=row["user_id"],
        credit_code=CreditCode(row["credit_code"]),
        status=CreditStatus(row["status"]),
        source_transaction_id=str(row["source_transaction_id"]),
        consumed_event_id=row.get("consumed_event_id"),
        consumed_at=row.get("consumed_at"),
        expires_at=row.get("expires_at"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresTransactionRepository(PostgresRepository):
    """Transactions stored in PostgreSQL."""

    def insert(self, transaction: Transaction) -> Transaction:
        with self._cursor() as cursor:
            try:
                cursor.execute(
                    """
                    INSERT INTO billing_transactions (
                        id,
                        user_id,
                        club_id,
                        product_code,
                        provider,
                        provider_payment_id,
                        amount_minor_units,
                        currency_code,
                        quantity,
                        status,
                        period_start,
                        period_end,
                        created_at,
                        updated_at
                    )
                    VALUES (%(id)s, %(user_id)s, %(club_id)s, %(product_code)s, %(provider)s,
                            %(provider_payment_id)s, %(amount_minor_units)s, %(currency_code)s,
                            %(quantity)s, %(status)s, %(period_start)s, %(period_end)s,
                            %(created_at)s, %(updated_at)s)
                    RETURNING *
                    """,
                    {
                        "id": transaction.id,
                        "user_id": transaction.user_id,
                        "club_id": transaction.club_id,
                        "product_code": transaction.product_code.value,
                        "provider": transaction.provider,
                        "provider_payment_id": transaction.provider_payment_id,
                        "amount_minor_units": transaction.amount_minor_units,
                        "currency_code": transaction.currency_code,
                        "quantity": transaction.quantity,
                        "status": transaction.status.value,
                        "period_start": transaction.period_start,
                        "period_end": transaction.period_end,
                        "created_at": transaction.created_at,
                        "updated_at": transaction.updated_at,
                    },
                )
            except psycopg2.IntegrityError as exc:
                raise ConflictError(
                    f"Transaction {transaction.id} or its provider payment id is already recorded"
                ) from exc
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist billing transaction")
            return _row_to_transaction(row)

    def get(self, transaction_id: str, *, for_update: bool = False) -> Optional[Transaction]:
        lock_clause = "FOR UPDATE" if for_update else ""
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT *
                FROM billing_transactions
                WHERE id = %s
                LIMIT 1
                {lock_clause}
                """,
                (transaction_id,),
            )
            row = cursor.fetchone()
            return _row_to_transaction(row) if row else None

    def get_by_provider_payment_id(
        self, provider_payment_id: str, *, for_update: bool = False
    ) -> Optional[Transaction]:
        lock_clause = "FOR UPDATE" if for_update else ""
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT *
                FROM billing_transactions
                WHERE provider_payment_id = %s
                LIMIT 1
                {lock_clause}
                """,
                (provider_payment_id,),
            )
            row = cursor.fetchone()
            return _row_to_transaction(row) if row else None

    def mark_settled(
        self, transaction_id: str, status: TransactionStatus, *, now: datetime
    ) -> Optional[Transaction]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE billing_transactions
                SET status = %(status)s, updated_at = %(now)s
                WHERE id = %(id)s AND status = 'pending'
                RETURNING *
                """,
                {"id": transaction_id, "status": status.value, "now": now},
            )
            row = cursor.fetchone()
            return _row_to_transaction(row) if row else None


class PostgresCreditRepository(PostgresRepository):
    """Credits stored in PostgreSQL."""

    def insert(self, credit: Credit) -> Credit:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO billing_credits (
                    id,
                    user_id,
                    credit_code,
                    status,
                    source_transaction_id,
                    consumed_event_id,
                    consumed_at,
                    expires_at,
                    created_at,
                    updated_at
                )
                VALUES (%(id)s, %(user_id)s, %(credit_code)s, %(status)s, %(source_transaction_id)s,
                        %(consumed_event_id)s, %(consumed_at)s, %(expires_at)s,
                        %(created_at)s, %(updated_at)s)
                RETURNING *
                """,
                {
                    "id": credit.id,
                    "user_id": credit.user_id,
                    "credit_code": credit.credit_code.value,
                    "status": credit.status.value,
                    "source_transaction_id": credit.source_transaction_id,
                    "consumed_event_id": credit.consumed_event_id,
                    "consumed_at": credit.consumed_at,
                    "expires_at": credit.expires_at,
                    "created_at": credit.created_at,
                    "updated_at": credit.updated_at,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist billing credit")
            return _row_to_credit(row)

    def consume_one_for(
        self, user_id: str, credit_code: CreditCode, event_id: str, *, now: datetime
    ) -> Optional[Credit]:
        with self._cursor() as cursor:
            # Concurrent claimers skip the locked row instead of waiting on it.
            # A second credit for the same event trips billing_credits_event_once_idx.
            try:
                cursor.execute(
                    """
                    UPDATE billing_credits
                    SET status = 'consumed',
                        consumed_event_id = %(event_id)s,
                        consumed_at = %(now)s,
                        updated_at = %(now)s
                    WHERE id = (
                        SELECT id
                        FROM billing_credits
                        WHERE user_id = %(user_id)s
                          AND credit_code = %(credit_code)s
                          AND status = 'available'
                          AND (expires_at IS NULL OR expires_at > %(now)s)
                        ORDER BY created_at ASC, id ASC
                        LIMIT 1
                        FOR UPDATE SKIP LOCKED
                    )
                    AND status = 'available'
                    RETURNING *
                    """,
                    {
                        "user_id": user_id,
                        "credit_code": credit_code.value,
                        "event_id": event_id,
                        "now": now,
                    },
                )
            except psycopg2.IntegrityError as exc:
                raise ConflictError(
                    f"A {credit_code.value} credit is already applied to event {event_id}"
                ) from exc
            row = cursor.fetchone()
            return _row_to_credit(row) if row else None

    def list_available(
        self, user_id: str, *, now: datetime, credit_code: Optional[CreditCode] = None
    ) -> List[Credit]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM billing_credits
                WHERE user_id = %(user_id)s
                  AND status = 'available'
                  AND (expires_at IS NULL OR expires_at > %(now)s)
                  AND (%(credit_code)s::text IS NULL OR credit_code = %(credit_code)s)
                ORDER BY created_at ASC, id ASC
                """,
                {
                    "user_id": user_id,
                    "now": now,
                    "credit_code": credit_code.value if credit_code else None,
                },
            )
            return [_row_to_credit(row) for row in cursor.fetchall()]

    def list_consumed_for_event(self, event_id: str) -> List[Credit]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM billing_credits
                WHERE consumed_event_id = %s AND status = 'consumed'
                ORDER BY consumed_at ASC, id ASC
                """,
                (event_id,),
            )
            return [_row_to_credit(row) for row in cursor.fetchall()]


__all__ = [
    "CreditRepository",
    "PostgresCreditRepository",
    "PostgresTransactionRepository",
    "TransactionRepository",
]
