"""Persistence layer for idempotency keys."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Protocol

import psycopg2.extras

from ..storage.connection import PostgresRepository
from .models import IdempotencyClaim, IdempotencyRecord, IdempotencyStatus


class IdempotencyRepository(Protocol):
    """Atomic operations keyed by ``(actor_id, route_name, key)``."""

    def begin(self, actor_id: str, route_name: str, key: str, *, now: datetime) -> IdempotencyClaim:
        ...

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
        ...

    def fail(self, actor_id: str, route_name: str, key: str, *, now: datetime) -> Optional[IdempotencyRecord]:
        ...

    def get(self, actor_id: str, route_name: str, key: str) -> Optional[IdempotencyRecord]:
        ...


def _row_to_record(row: dict) -> IdempotencyRecord:
    return IdempotencyRecord(
        actor_id=row["actor_id"],
        route_name=row["route_name"],
        key=row["key"],
        status=IdempotencyStatus(row["status"]),
        response_status=row.get("response_status"),
        response_body=row.get("response_body"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresIdempotencyRepository(PostgresRepository):
    """Idempotency keys stored in the ``idempotency_keys`` table."""

    def begin(self, actor_id: str, route_name: str, key: str, *, now: datetime) -> IdempotencyClaim:
        with self._cursor() as cursor:
            # Claims a new key or a failed one in a single statement.
            cursor.execute(
                """
                INSERT INTO idempotency_keys (actor_id, route_name, key, status, created_at, updated_at)
                VALUES (%(actor_id)s, %(route_name)s, %(key)s, 'in_progress', %(now)s, %(now)s)
                ON CONFLICT (actor_id, route_name, key) DO UPDATE SET
                    status = 'in_progress',
                    response_status = NULL,
                    response_body = NULL,
                    updated_at = EXCLUDED.updated_at
                WHERE idempotency_keys.status = 'failed'
                RETURNING *
                """,
                {"actor_id": actor_id, "route_name": route_name, "key": key, "now": now},
            )
            row = cursor.fetchone()
            if row:
                record = _row_to_record(row)
                return IdempotencyClaim(fresh=True, record=record)

            cursor.execute(
                """
                SELECT *
                FROM idempotency_keys
                WHERE actor_id = %s AND route_name = %s AND key = %s
                LIMIT 1
                """,
                (actor_id, route_name, key),
            )
            existing_row = cursor.fetchone()
            if not existing_row:  # pragma: no cover - row was deleted between statements
                raise RuntimeError("Idempotency key vanished while claiming it")
            existing = _row_to_record(existing_row)
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
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE idempotency_keys
                SET status = 'completed',
                    response_status = %(response_status)s,
                    response_body = %(response_body)s,
                    updated_at = %(now)s
                WHERE actor_id = %(actor_id)s
                  AND route_name = %(route_name)s
                  AND key = %(key)s
                  AND status = 'in_progress'
                RETURNING *
                """,
                {
                    "actor_id": actor_id,
                    "route_name": route_name,
                    "key": key,
                    "response_status": response_status,
                    "response_body": psycopg2.extras.Json(response_body),
                    "now": now,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError(f"Idempotency key {route_name}/{key} is not in progress")
            return _row_to_record(row)

    def fail(self, actor_id: str, route_name: str, key: str, *, now: datetime) -> Optional[IdempotencyRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE idempotency_keys
                SET status = 'failed', updated_at = %(now)s
                WHERE actor_id = %(actor_id)s
                  AND route_name = %(route_name)s
                  AND key = %(key)s
                  AND status = 'in_progress'
                RETURNING *
                """,
                {"actor_id": actor_id, "route_name": route_name, "key": key, "now": now},
            )
            row = cursor.fetchone()
            return _row_to_record(row) if row else None

    def get(self, actor_id: str, route_name: str, key: str) -> Optional[IdempotencyRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM idempotency_keys
                WHERE actor_id = %s AND route_name = %s AND key = %s
                LIMIT 1
                """,
                (actor_id, route_name, key),
            )
            row = cursor.fetchone()
            return _row_to_record(row) if row else None


__all__ = ["IdempotencyRepository", "PostgresIdempotencyRepository"]
