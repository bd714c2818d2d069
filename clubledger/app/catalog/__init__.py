"""Plan and product catalog consumed by the ledger and the entitlement resolver."""

from .cache import CachedPlanCatalog, CatalogLoader
from .models import (
    CatalogSnapshot,
    CreditCode,
    PlanDefinition,
    PlanId,
    ProductCode,
    ProductDefinition,
    ProductKind,
)
from .static import (
    PLAN_CATALOG,
    PRODUCT_CATALOG,
    STATIC_CATALOG,
    load_static_catalog,
    required_plan_for_members,
    required_plan_for_participants,
)

__all__ = [
    "CachedPlanCatalog",
    "CatalogLoader",
    "CatalogSnapshot",
    "CreditCode",
    "PLAN_CATALOG",
    "PRODUCT_CATALOG",
    "PlanDefinition",
    "PlanId",
    "ProductCode",
    "ProductDefinition",
    "ProductKind",
    "STATIC_CATALOG",
    "load_static_catalog",
    "required_plan_for_members",
    "required_plan_for_participants",
]
