"""Unit-of-work abstractions binding the ledger repositories to one storage transaction."""
from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable, ContextManager, Iterator, List, Optional, Protocol

if TYPE_CHECKING:  # pragma: no cover
    from ..billing.repository import CreditRepository, TransactionRepository
    from ..idempotency.repository import IdempotencyRepository
    from ..subscriptions.repository import SubscriptionRepository


class LedgerSession(Protocol):
    """Repositories sharing a single atomic storage transaction."""

    idempotency: IdempotencyRepository
    transactions: TransactionRepository
    credits: CreditRepository
    subscriptions: SubscriptionRepository

    def on_commit(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the enclosing transaction has committed."""


class LedgerStore(Protocol):
    """Storage handle owned by the process entry point."""

    def transaction(self) -> ContextManager[LedgerSession]:
        ...


class CommitHooks:
    """Collects callbacks that must only run after a successful commit."""

    def __init__(self) -> None:
        self._after_commit: List[Callable[[], None]] = []

    def on_commit(self, callback: Callable[[], None]) -> None:
        self._after_commit.append(callback)

    def run_after_commit(self) -> None:
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            callback()


@contextmanager
def managed_session(store: LedgerStore, session: Optional[LedgerSession] = None) -> Iterator[LedgerSession]:
    """Join ``session`` when supplied, otherwise open and commit a new one."""

    if session is not None:
        yield session
        return

    with store.transaction() as opened:
        yield opened


__all__ = ["CommitHooks", "LedgerSession", "LedgerStore", "managed_session"]
