"""Club subscription models and store."""

from .models import PlanId, Subscription, SubscriptionStatus
from .repository import PostgresSubscriptionRepository, SubscriptionRepository
from .service import SubscriptionStore

__all__ = [
    "PlanId",
    "PostgresSubscriptionRepository",
    "Subscription",
    "SubscriptionRepository",
    "SubscriptionStatus",
    "SubscriptionStore",
]
