"""Static catalog definitions for club plans and products."""
from __future__ import annotations

from typing import Dict

from .models import (
    CatalogSnapshot,
    CreditCode,
    PlanDefinition,
    PlanId,
    ProductCode,
    ProductDefinition,
    ProductKind,
)

DEFAULT_CURRENCY = "KZT"
FREE_EVENT_PARTICIPANTS = 15
ONE_OFF_EVENT_PARTICIPANTS = 500

PLAN_CATALOG: Dict[PlanId, PlanDefinition] = {
    PlanId.FREE: PlanDefinition(
        code=PlanId.FREE,
        display_name="Free",
        max_members=None,
        max_event_participants=FREE_EVENT_PARTICIPANTS,
        allow_paid_events=False,
        allow_csv_export=False,
        price_minor_units=0,
    ),
    PlanId.CLUB_50: PlanDefinition(
        code=PlanId.CLUB_50,
        display_name="Club 50",
        max_members=50,
        max_event_participants=50,
        allow_paid_events=True,
        allow_csv_export=True,
        price_minor_units=4990,
    ),
    PlanId.CLUB_500: PlanDefinition(
        code=PlanId.CLUB_500,
        display_name="Club 500",
        max_members=500,
        max_event_participants=500,
        allow_paid_events=True,
        allow_csv_export=True,
        price_minor_units=14990,
    ),
    PlanId.CLUB_UNLIMITED: PlanDefinition(
        code=PlanId.CLUB_UNLIMITED,
        display_name="Club Unlimited",
        max_members=None,
        max_event_participants=None,
        allow_paid_events=True,
        allow_csv_export=True,
        price_minor_units=29990,
    ),
}

PRODUCT_CATALOG: Dict[ProductCode, ProductDefinition] = {
    ProductCode.EVENT_UPGRADE_500: ProductDefinition(
        code=ProductCode.EVENT_UPGRADE_500,
        kind=ProductKind.ONE_OFF,
        price_minor_units=1000,
        currency_code=DEFAULT_CURRENCY,
        credit_code=CreditCode.EVENT_UPGRADE_500,
        max_participants=ONE_OFF_EVENT_PARTICIPANTS,
    ),
    ProductCode.CLUB_50: ProductDefinition(
        code=ProductCode.CLUB_50,
        kind=ProductKind.CLUB_PLAN,
        price_minor_units=PLAN_CATALOG[PlanId.CLUB_50].price_minor_units,
        currency_code=DEFAULT_CURRENCY,
        plan_id=PlanId.CLUB_50,
    ),
    ProductCode.CLUB_500: ProductDefinition(
        code=ProductCode.CLUB_500,
        kind=ProductKind.CLUB_PLAN,
        price_minor_units=PLAN_CATALOG[PlanId.CLUB_500].price_minor_units,
        currency_code=DEFAULT_CURRENCY,
        plan_id=PlanId.CLUB_500,
    ),
    ProductCode.CLUB_UNLIMITED: ProductDefinition(
        code=ProductCode.CLUB_UNLIMITED,
        kind=ProductKind.CLUB_PLAN,
        price_minor_units=PLAN_CATALOG[PlanId.CLUB_UNLIMITED].price_minor_units,
        currency_code=DEFAULT_CURRENCY,
        plan_id=PlanId.CLUB_UNLIMITED,
    ),
}

STATIC_CATALOG = CatalogSnapshot(plans=PLAN_CATALOG, products=PRODUCT_CATALOG, loaded_from="static")


def load_static_catalog() -> CatalogSnapshot:
    """Catalog loader returning the built-in plan and product rows."""

    return STATIC_CATALOG


def required_plan_for_participants(catalog: CatalogSnapshot, participants: int) -> PlanId:
    """Cheapest plan whose event limit admits ``participants``."""

    return _cheapest_plan(catalog, participants, attribute="max_event_participants", paid_only=False)


def required_plan_for_members(catalog: CatalogSnapshot, members: int) -> PlanId:
    """Cheapest paid plan whose member limit admits ``members``."""

    return _cheapest_plan(catalog, members, attribute="max_members", paid_only=True)


def _cheapest_plan(catalog: CatalogSnapshot, quantity: int, *, attribute: str, paid_only: bool) -> PlanId:
    for plan in catalog.plans_by_price():
        if paid_only and not plan.is_paid:
            continue
        limit = getattr(plan, attribute)
        if limit is None or quantity <= limit:
            return plan.code
    return PlanId.CLUB_UNLIMITED


__all__ = [
    "DEFAULT_CURRENCY",
    "FREE_EVENT_PARTICIPANTS",
    "ONE_OFF_EVENT_PARTICIPANTS",
    "PLAN_CATALOG",
    "PRODUCT_CATALOG",
    "STATIC_CATALOG",
    "load_static_catalog",
    "required_plan_for_members",
    "required_plan_for_participants",
]
