"""Reference data types for plans and purchasable products."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from ..feature_gates.exceptions import ValidationError


class PlanId(str, Enum):
    """Canonical identifiers for club plans."""

    FREE = "free"
    CLUB_50 = "club_50"
    CLUB_500 = "club_500"
    CLUB_UNLIMITED = "club_unlimited"


class ProductCode(str, Enum):
    """Purchasable products."""

    EVENT_UPGRADE_500 = "EVENT_UPGRADE_500"
    CLUB_50 = "CLUB_50"
    CLUB_500 = "CLUB_500"
    CLUB_UNLIMITED = "CLUB_UNLIMITED"


class CreditCode(str, Enum):
    """Codes of one-off credits that a product or grant can produce."""

    EVENT_UPGRADE_500 = "EVENT_UPGRADE_500"


class ProductKind(str, Enum):
    """How settling a product affects the ledger."""

    ONE_OFF = "one_off"
    CLUB_PLAN = "club_plan"


@dataclass(frozen=True)
class PlanDefinition:
    """Limits and features of a club plan. ``None`` limits mean unlimited."""

    code: PlanId
    display_name: str
    max_members: Optional[int]
    max_event_participants: Optional[int]
    allow_paid_events: bool
    allow_csv_export: bool
    price_minor_units: int

    @property
    def is_paid(self) -> bool:
        return self.price_minor_units > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "displayName": self.display_name,
            "maxMembers": self.max_members,
            "maxEventParticipants": self.max_event_participants,
            "allowPaidEvents": self.allow_paid_events,
            "allowCsvExport": self.allow_csv_export,
            "priceMinorUnits": self.price_minor_units,
        }


@dataclass(frozen=True)
class ProductDefinition:
    """A purchasable product and the ledger effect of settling it."""

    code: ProductCode
    kind: ProductKind
    price_minor_units: int
    currency_code: str
    credit_code: Optional[CreditCode] = None
    plan_id: Optional[PlanId] = None
    max_participants: Optional[int] = None

    @property
    def is_club_plan(self) -> bool:
        return self.kind == ProductKind.CLUB_PLAN


@dataclass(frozen=True)
class CatalogSnapshot:
    """Immutable view of the plan and product catalog."""

    plans: Mapping[PlanId, PlanDefinition]
    products: Mapping[ProductCode, ProductDefinition]
    loaded_from: str = field(default="static", compare=False)

    def plan(self, plan_id: PlanId) -> PlanDefinition:
        try:
            return self.plans[PlanId(plan_id)]
        except (KeyError, ValueError) as exc:
            raise ValidationError(f"Unknown plan: {plan_id}") from exc

    def product(self, code: ProductCode) -> ProductDefinition:
        try:
            return self.products[ProductCode(code)]
        except (KeyError, ValueError) as exc:
            raise ValidationError(f"Unknown product code: {code}") from exc

    def product_for_credit(self, credit_code: CreditCode) -> ProductDefinition:
        for product in self.products.values():
            if product.credit_code == credit_code:
                return product
        raise ValidationError(f"Unknown credit code: {credit_code}")

    def product_for_plan(self, plan_id: PlanId) -> Optional[ProductDefinition]:
        for product in self.products.values():
            if product.plan_id == plan_id:
                return product
        return None

    def plans_by_price(self):
        return sorted(self.plans.values(), key=lambda plan: (plan.price_minor_units, plan.code.value))


__all__ = [
    "CatalogSnapshot",
    "CreditCode",
    "PlanDefinition",
    "PlanId",
    "ProductCode",
    "ProductDefinition",
    "ProductKind",
]
