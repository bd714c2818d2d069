"""Persistence layer for club subscriptions."""
from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from ..storage.connection import PostgresRepository
from .models import PlanId, Subscription, SubscriptionStatus


class SubscriptionRepository(Protocol):
    """Persistence operations for ``club_subscriptions``."""

    def get(self, club_id: str, *, for_update: bool = False) -> Optional[Subscription]:
        ...

    def upsert(self, subscription: Subscription) -> Subscription:
        ...

    def update_period_end(
        self, club_id: str, period_end: datetime, *, now: datetime
    ) -> Optional[Subscription]:
        ...


def _row_to_subscription(row: dict) -> Subscription:
    return Subscription(
        club_id=row["club_id"],
        plan_id=PlanId(row["plan_id"]),
        status=SubscriptionStatus(row["status"]),
        current_period_start=row.get("current_period_start"),
        current_period_end=row.get("current_period_end"),
        grace_until=row.get("grace_until"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresSubscriptionRepository(PostgresRepository):
    """Subscriptions stored in PostgreSQL, one row per club."""

    def get(self, club_id: str, *, for_update: bool = False) -> Optional[Subscription]:
        lock_clause = "FOR UPDATE" if for_update else ""
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT *
                FROM club_subscriptions
                WHERE club_id = %s
                LIMIT 1
                {lock_clause}
                """,
                (club_id,),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def upsert(self, subscription: Subscription) -> Subscription:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO club_subscriptions (
                    club_id,
                    plan_id,
                    status,
                    current_period_start,
                    current_period_end,
                    grace_until,
                    created_at,
                    updated_at
                )
                VALUES (%(club_id)s, %(plan_id)s, %(status)s, %(current_period_start)s,
                        %(current_period_end)s, %(grace_until)s, %(created_at)s, %(updated_at)s)
                ON CONFLICT (club_id) DO UPDATE SET
                    plan_id = EXCLUDED.plan_id,
                    status = EXCLUDED.status,
                    current_period_start = EXCLUDED.current_period_start,
                    current_period_end = EXCLUDED.current_period_end,
                    grace_until = EXCLUDED.grace_until,
                    updated_at = EXCLUDED.updated_at
                RETURNING *
                """,
                {
                    "club_id": subscription.club_id,
                    "plan_id": subscription.plan_id.value,
                    "status": subscription.status.value,
                    "current_period_start": subscription.current_period_start,
                    "current_period_end": subscription.current_period_end,
                    "grace_until": subscription.grace_until,
                    "created_at": subscription.created_at,
                    "updated_at": subscription.updated_at,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist club subscription")
            return _row_to_subscription(row)

    def update_period_end(
        self, club_id: str, period_end: datetime, *, now: datetime
    ) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE club_subscriptions
                SET current_period_end = %(period_end)s, updated_at = %(now)s
                WHERE club_id = %(club_id)s
                RETURNING *
                """,
                {"club_id": club_id, "period_end": period_end, "now": now},
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None


__all__ = ["PostgresSubscriptionRepository", "SubscriptionRepository"]
