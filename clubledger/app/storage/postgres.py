"""PostgreSQL-backed ledger store."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

import psycopg2
from psycopg2.extensions import connection as PgConnection

from ... import app_context
from ..billing.repository import PostgresCreditRepository, PostgresTransactionRepository
from ..idempotency.repository import PostgresIdempotencyRepository
from ..subscriptions.repository import PostgresSubscriptionRepository
from .schema import apply_schema
from .session import CommitHooks

logger = logging.getLogger("billing.storage")


def connection_factory(dsn: str, *, connect_timeout: int = 5) -> Callable[[], PgConnection]:
    """Return a callable opening a new connection to ``dsn``."""

    def _connect() -> PgConnection:
        return psycopg2.connect(dsn, connect_timeout=connect_timeout)

    return _connect


class PostgresLedgerSession(CommitHooks):
    """Repositories bound to one open PostgreSQL connection."""

    def __init__(self, conn: PgConnection) -> None:
        super().__init__()
        self.connection = conn
        self.idempotency = PostgresIdempotencyRepository(conn=conn)
        self.transactions = PostgresTransactionRepository(conn=conn)
        self.credits = PostgresCreditRepository(conn=conn)
        self.subscriptions = PostgresSubscriptionRepository(conn=conn)


class PostgresLedgerStore:
    """Opens one connection per storage transaction and commits it atomically."""

    def __init__(self, connection_factory: Optional[Callable[[], PgConnection]] = None) -> None:
        self._connection_factory = connection_factory or app_context.get_conn

    @contextmanager
    def transaction(self) -> Iterator[PostgresLedgerSession]:
        connection = self._connection_factory()
        try:
            session = PostgresLedgerSession(connection)
            yield session
            connection.commit()
        except Exception:
            connection.rollback()
            raise
        finally:
            connection.close()
        session.run_after_commit()

    def ensure_schema(self) -> None:
        connection = self._connection_factory()
        try:
            apply_schema(connection)
        finally:
            connection.close()
        logger.info("Ledger schema is up to date")


__all__ = ["PostgresLedgerSession", "PostgresLedgerStore", "connection_factory"]
