"""Club subscription store."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..catalog.models import PlanId
from ..feature_gates.exceptions import NotFoundError, ValidationError
from ..storage.session import LedgerSession, LedgerStore, managed_session
from .models import Subscription, SubscriptionStatus

logger = logging.getLogger("billing")


class SubscriptionStore:
    """Current plan and period per club. Only the latest state is kept."""

    def __init__(
        self,
        store: LedgerStore,
        *,
        grace_period_days: int = 7,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._grace_period_days = max(grace_period_days, 0)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get_active(self, club_id: str, *, session: Optional[LedgerSession] = None) -> Optional[Subscription]:
        """Return the club's subscription with its status evaluated at the current time."""

        with managed_session(self._store, session) as active:
            subscription = active.subscriptions.get(club_id)
        if subscription is None:
            return None

        status = subscription.status_at(self._clock(), grace_period_days=self._grace_period_days)
        grace_until = subscription.grace_until
        if status in {SubscriptionStatus.GRACE, SubscriptionStatus.EXPIRED} and grace_until is None:
            grace_until = subscription.current_period_end + timedelta(days=self._grace_period_days)
        if status == subscription.status and grace_until == subscription.grace_until:
            return subscription
        return subscription.model_copy(update={"status": status, "grace_until": grace_until})

    def activate(
        self,
        club_id: str,
        plan_id: PlanId,
        period_start: datetime,
        period_end: datetime,
        *,
        session: Optional[LedgerSession] = None,
    ) -> Subscription:
        """Replace the club's subscription with an active ``plan_id`` period."""

        if not club_id:
            raise ValidationError("club_id is required to activate a subscription")
        if period_end <= period_start:
            raise ValidationError("Subscription period must end after it starts")

        now = self._clock()
        subscription = Subscription(
            club_id=club_id,
            plan_id=PlanId(plan_id),
            status=SubscriptionStatus.ACTIVE,
            current_period_start=period_start,
            current_period_end=period_end,
            grace_until=None,
            created_at=now,
            updated_at=now,
        )
        with managed_session(self._store, session) as active:
            stored = active.subscriptions.upsert(subscription)
        logger.info(
            "Subscription activated club=%s plan=%s period_end=%s",
            club_id,
            stored.plan_id.value,
            stored.current_period_end.isoformat(),
        )
        return stored

    def downgrade_to_free(self, club_id: str, *, session: Optional[LedgerSession] = None) -> Subscription:
        """Move the club to the free tier and clear its billing period."""

        now = self._clock()
        with managed_session(self._store, session) as active:
            existing = active.subscriptions.get(club_id, for_update=True)
            if existing is None:
                raise NotFoundError(f"No subscription found for club: {club_id}")
            subscription = Subscription(
                club_id=club_id,
                plan_id=PlanId.FREE,
                status=SubscriptionStatus.ACTIVE,
                created_at=existing.created_at,
                updated_at=now,
            )
            stored = active.subscriptions.upsert(subscription)
        logger.info("Subscription downgraded to free club=%s", club_id)
        return stored

    def extend(self, club_id: str, days: int, *, session: Optional[LedgerSession] = None) -> Subscription:
        """Push ``current_period_end`` forward by ``days`` without touching the stored status.

        Extension starts from the later of now and the current period end.
        """

        if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
            raise ValidationError(f"Days must be a positive integer, got: {days!r}")

        now = self._clock()
        with managed_session(self._store, session) as active:
            existing = active.subscriptions.get(club_id, for_update=True)
            if existing is None:
                raise NotFoundError(f"No subscription found for club: {club_id}")
            if existing.status == SubscriptionStatus.PENDING or existing.is_free:
                raise ValidationError(
                    f"Subscription for club {club_id} is not eligible for extension",
                    detail={"status": existing.status.value, "planId": existing.plan_id.value},
                )
            base = existing.current_period_end if existing.current_period_end and existing.current_period_end > now else now
            updated = active.subscriptions.update_period_end(club_id, base + timedelta(days=days), now=now)
            if updated is None:  # pragma: no cover - row locked above
                raise NotFoundError(f"No subscription found for club: {club_id}")
        logger.info(
            "Subscription extended club=%s days=%s period_end=%s",
            club_id,
            days,
            updated.current_period_end.isoformat() if updated.current_period_end else None,
        )
        return updated


__all__ = ["SubscriptionStore"]
