"""In-memory ledger store for local development and tests."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..billing.models import Credit, CreditCode, CreditStatus, Transaction, TransactionStatus
from ..feature_gates.exceptions import ConflictError
from ..idempotency.models import IdempotencyClaim, IdempotencyRecord, IdempotencyStatus
from ..subscriptions.models import Subscription
from .session import CommitHooks

_IdempotencyKey = Tuple[str, str, str]


@dataclass
class _Tables:
    idempotency: Dict[_IdempotencyKey, IdempotencyRecord] = field(default_factory=dict)
    transactions: Dict[str, Transaction] = field(default_factory=dict)
    credits: Dict[str, Credit] = field(default_factory=dict)
    subscriptions: Dict[str, Subscription] = field(default_factory=dict)

    def snapshot(self) -> "_Tables":
        # Rows are frozen models, so copying the mappings is enough.
        return _Tables(
            idempotency=dict(self.idempotency),
            transactions=dict(self.transactions),
            credits=dict(self.credits),
            subscriptions=dict(self.subscriptions),
        )

    def restore(self, snapshot: "_Tables") -> None:
        self.idempotency = snapshot.idempotency
        self.transactions = snapshot.transactions
        self.credits = snapshot.credits
        self.subscriptions = snapshot.subscriptions


class InMemoryIdempotencyRepository:
    def __init__(self, tables: _Tables) -> None:
        self._tables = tables

    def begin(self, actor_id: str, route_name: str, key: str, *, now: datetime) -> IdempotencyClaim:
        triple = (actor_id, route_name, key)
        existing = self._tables.idempotency.get(triple)
        if existing is None or existing.status == IdempotencyStatus.FAILED:
            record = IdempotencyRecord(
                actor_id=actor_id,
                route_name=route_name,
                key=key,
                status=IdempotencyStatus.IN_PROGRESS,
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
            self._tables.idempotency[triple] = record
            return IdempotencyClaim(fresh=True, record=record)
        return IdempotencyClaim(fresh=False, record=existing)

    def complete(
        self,
        actor_id: str,
        route_name: str,
        key: str,
        *,
        response_status: int,
        response_body: Dict[str, Any],
        now: datetime,
    ) -> IdempotencyRecord:
        triple = (actor_id, route_name, key)
        existing = self._tables.idempotency.get(triple)
        if existing is None or existing.status != IdempotencyStatus.IN_PROGRESS:
            raise RuntimeError(f"Idempotency key {route_name}/{key} is not in progress")
        record = existing.model_copy(
            update={
                "status": IdempotencyStatus.COMPLETED,
                "response_status": response_status,
                "response_body": dict(response_body),
                "updated_at": now,
            }
        )
        self._tables.idempotency[triple] = record
        return record

    def fail(self, actor_id: str, route_name: str, key: str, *, now: datetime) -> Optional[IdempotencyRecord]:
        triple = (actor_id, route_name, key)
        existing = self._tables.idempotency.get(triple)
        if existing is None or existing.status != IdempotencyStatus.IN_PROGRESS:
            return None
        record = existing.model_copy(update={"status": IdempotencyStatus.FAILED, "updated_at": now})
        self._tables.idempotency[triple] = record
        return record

    def get(self, actor_id: str, route_name: str, key: str) -> Optional[IdempotencyRecord]:
        return self._tables.idempotency.get((actor_id, route_name, key))


class InMemoryTransactionRepository:
    def __init__(self, tables: _Tables) -> None:
        self._tables = tables

    def insert(self, transaction: Transaction) -> Transaction:
        if transaction.id in self._tables.transactions:
            raise ConflictError(f"Transaction {transaction.id} already exists")
        if transaction.provider_payment_id and self.get_by_provider_payment_id(transaction.provider_payment_id):
            raise ConflictError(
                f"Provider payment id {transaction.provider_payment_id} is already recorded"
            )
        self._tables.transactions[transaction.id] = transaction
        return transaction

    def get(self, transaction_id: str, *, for_update: bool = False) -> Optional[Transaction]:
        return self._tables.transactions.get(transaction_id)

    def get_by_provider_payment_id(
        self, provider_payment_id: str, *, for_update: bool = False
    ) -> Optional[Transaction]:
        for transaction in self._tables.transactions.values():
            if transaction.provider_payment_id == provider_payment_id:
                return transaction
        return None

    def mark_settled(
        self, transaction_id: str, status: TransactionStatus, *, now: datetime
    ) -> Optional[Transaction]:
        transaction = self._tables.transactions.get(transaction_id)
        if transaction is None or transaction.status != TransactionStatus.PENDING:
            return None
        updated = transaction.model_copy(update={"status": status, "updated_at": now})
        self._tables.transactions[transaction_id] = updated
        return updated


class InMemoryCreditRepository:
    def __init__(self, tables: _Tables) -> None:
        self._tables = tables

    def insert(self, credit: Credit) -> Credit:
        if credit.id in self._tables.credits:
            raise ConflictError(f"Credit {credit.id} already exists")
        self._tables.credits[credit.id] = credit
        return credit

    def consume_one_for(
        self, user_id: str, credit_code: CreditCode, event_id: str, *, now: datetime
    ) -> Optional[Credit]:
        # Same rule as billing_credits_event_once_idx.
        if any(credit.credit_code == credit_code for credit in self.list_consumed_for_event(event_id)):
            raise ConflictError(f"A {credit_code.value} credit is already applied to event {event_id}")
        candidates = self.list_available(user_id, now=now, credit_code=credit_code)
        if not candidates:
            return None
        oldest = candidates[0]
        consumed = oldest.model_copy(
            update={
                "status": CreditStatus.CONSUMED,
                "consumed_event_id": event_id,
                "consumed_at": now,
                "updated_at": now,
            }
        )
        self._tables.credits[oldest.id] = consumed
        return consumed

    def list_available(
        self, user_id: str, *, now: datetime, credit_code: Optional[CreditCode] = None
    ) -> List[Credit]:
        matching = [
            credit
            for credit in self._tables.credits.values()
            if credit.user_id == user_id
            and (credit_code is None or credit.credit_code == credit_code)
            and credit.is_available_at(now)
        ]
        return sorted(matching, key=lambda credit: (credit.created_at, credit.id))

    def list_consumed_for_event(self, event_id: str) -> List[Credit]:
        matching = [
            credit
            for credit in self._tables.credits.values()
            if credit.status == CreditStatus.CONSUMED and credit.consumed_event_id == event_id
        ]
        return sorted(matching, key=lambda credit: (credit.consumed_at, credit.id))


class InMemorySubscriptionRepository:
    def __init__(self, tables: _Tables) -> None:
        self._tables = tables

    def get(self, club_id: str, *, for_update: bool = False) -> Optional[Subscription]:
        return self._tables.subscriptions.get(club_id)

    def upsert(self, subscription: Subscription) -> Subscription:
        existing = self._tables.subscriptions.get(subscription.club_id)
        if existing is not None:
            subscription = subscription.model_copy(update={"created_at": existing.created_at})
        self._tables.subscriptions[subscription.club_id] = subscription
        return subscription

    def update_period_end(
        self, club_id: str, period_end: datetime, *, now: datetime
    ) -> Optional[Subscription]:
        existing = self._tables.subscriptions.get(club_id)
        if existing is None:
            return None
        updated = existing.model_copy(update={"current_period_end": period_end, "updated_at": now})
        self._tables.subscriptions[club_id] = updated
        return updated


class InMemoryLedgerSession(CommitHooks):
    def __init__(self, tables: _Tables) -> None:
        super().__init__()
        self.idempotency = InMemoryIdempotencyRepository(tables)
        self.transactions = InMemoryTransactionRepository(tables)
        self.credits = InMemoryCreditRepository(tables)
        self.subscriptions = InMemorySubscriptionRepository(tables)


class InMemoryLedgerStore:
    """Ledger store keeping every table in process memory.

    Transactions are serialized with a re-entrant lock, which makes every
    conditional update trivially atomic. A failed transaction restores the
    snapshot taken when it started.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tables = _Tables()

    @contextmanager
    def transaction(self) -> Iterator[InMemoryLedgerSession]:
        with self._lock:
            snapshot = self._tables.snapshot()
            session = InMemoryLedgerSession(self._tables)
            try:
                yield session
            except BaseException:
                self._tables.restore(snapshot)
                raise
        session.run_after_commit()

    def count_transactions(self) -> int:
        with self._lock:
            return len(self._tables.transactions)

    def count_credits(self, user_id: Optional[str] = None) -> int:
        with self._lock:
            return sum(
                1 for credit in self._tables.credits.values() if user_id is None or credit.user_id == user_id
            )


__all__ = ["InMemoryLedgerSession", "InMemoryLedgerStore"]
