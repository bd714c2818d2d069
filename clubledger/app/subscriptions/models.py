"""Domain models for club subscriptions."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..catalog.models import PlanId


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states."""

    PENDING = "pending"
    ACTIVE = "active"
    GRACE = "grace"
    EXPIRED = "expired"


class Subscription(BaseModel):
    """Current plan and billing period of a club."""

    club_id: str
    plan_id: PlanId
    status: SubscriptionStatus
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    grace_until: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_free(self) -> bool:
        return self.plan_id == PlanId.FREE

    def status_at(self, now: datetime, *, grace_period_days: int) -> SubscriptionStatus:
        """Return the status implied by the billing period at ``now``."""

        if self.status == SubscriptionStatus.PENDING or self.current_period_end is None:
            return self.status
        if now < self.current_period_end:
            return SubscriptionStatus.ACTIVE
        grace_until = self.grace_until or self.current_period_end + timedelta(days=grace_period_days)
        if now < grace_until:
            return SubscriptionStatus.GRACE
        return SubscriptionStatus.EXPIRED


__all__ = ["PlanId", "Subscription", "SubscriptionStatus"]
