"""Billing service coordinating purchase intents, settlement effects and grants."""
from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from ..catalog.cache import CachedPlanCatalog
from ..catalog.models import CreditCode, ProductCode, ProductKind
from ..feature_gates.exceptions import ConflictError, ForbiddenError, ValidationError
from ..storage.session import LedgerSession
from ..subscriptions.models import Subscription
from ..subscriptions.service import SubscriptionStore
from .ledger import ADMIN_GRANT_PROVIDER, SYSTEM_GRANT_PROVIDER, CreditLedger, TransactionLedger
from .models import Credit, SettlementEvent, SettlementResult, Transaction

logger = logging.getLogger("billing")

BETA_GRANT_REASON = "soft beta access"


class PaymentProvider(Protocol):
    """External payment processor integration."""

    name: str

    def new_payment_reference(self) -> str:
        """Return a fresh provider payment id for a purchase intent."""

    def payment_instructions(self, *, transaction: Transaction, title: str) -> Dict[str, object]:
        """Describe how the customer completes the payment."""


class ProductSettlementEffects:
    """Issues credits or activates subscriptions for completed transactions."""

    def __init__(
        self,
        catalog: CachedPlanCatalog,
        credits: CreditLedger,
        subscriptions: SubscriptionStore,
        *,
        period_days: int = 30,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._catalog = catalog
        self._credits = credits
        self._subscriptions = subscriptions
        self._period_days = period_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def apply(
        self, transaction: Transaction, session: LedgerSession
    ) -> Tuple[List[Credit], Optional[Subscription]]:
        product = self._catalog.get().product(transaction.product_code)

        if product.kind == ProductKind.ONE_OFF:
            if product.credit_code is None:  # pragma: no cover - catalog invariant
                raise ConflictError(f"Product {product.code.value} does not define a credit code")
            credits = [
                self._credits.issue(
                    user_id=transaction.user_id,
                    credit_code=product.credit_code,
                    source_transaction_id=transaction.id,
                    session=session,
                )
                for _ in range(transaction.quantity)
            ]
            return credits, None

        if product.kind == ProductKind.CLUB_PLAN:
            if not transaction.club_id or product.plan_id is None:
                raise ConflictError(f"Transaction {transaction.id} has no club to activate")
            period_start = transaction.period_start or self._clock()
            period_end = transaction.period_end or period_start + timedelta(days=self._period_days)
            subscription = self._subscriptions.activate(
                transaction.club_id,
                product.plan_id,
                period_start,
                period_end,
                session=session,
            )
            return [], subscription

        raise TypeError(f"Unhandled product kind {product.kind!r}")


@dataclass(frozen=True)
class PurchaseIntent:
    """Pending transaction plus the provider instructions to pay for it."""

    transaction: Transaction
    payment: Dict[str, object] = field(default_factory=dict)


# ``slots`` support for ``dataclass`` was added in Python 3.10.
_dataclass_kwargs = {"slots": True} if sys.version_info >= (3, 10) else {}


@dataclass(**_dataclass_kwargs)
class BillingService:
    """Entry points for purchases, settlement and credit grants."""

    transactions: TransactionLedger
    credits: CreditLedger
    catalog: CachedPlanCatalog
    provider: PaymentProvider
    beta_grants_enabled: bool = False

    def create_purchase_intent(
        self,
        *,
        user_id: str,
        product_code: ProductCode,
        quantity: int = 1,
        club_id: Optional[str] = None,
        session: Optional[LedgerSession] = None,
    ) -> PurchaseIntent:
        """Price the product from the catalog and record a pending transaction."""

        product = self.catalog.get().product(product_code)
        if quantity < 1:
            raise ValidationError("quantity must be >= 1")
        if product.is_club_plan:
            if quantity != 1:
                raise ValidationError("Club subscriptions must have quantity=1")
            if not club_id:
                raise ValidationError("clubId is required for club subscriptions")

        transaction = self.transactions.create_pending(
            user_id=user_id,
            club_id=club_id,
            product_code=product.code,
            provider=self.provider.name,
            provider_payment_id=self.provider.new_payment_reference(),
            amount_minor_units=product.price_minor_units * quantity,
            currency_code=product.currency_code,
            quantity=quantity,
            session=session,
        )
        title = product.plan_id.value if product.plan_id else product.code.value
        payment = self.provider.payment_instructions(transaction=transaction, title=title)
        return PurchaseIntent(transaction=transaction, payment=payment)

    def settle(self, event: SettlementEvent, *, session: Optional[LedgerSession] = None) -> SettlementResult:
        return self.transactions.settle_event(event, session=session)

    def grant_beta_credit(
        self,
        *,
        user_id: str,
        credit_code: CreditCode = CreditCode.EVENT_UPGRADE_500,
        session: Optional[LedgerSession] = None,
    ) -> Credit:
        """Grant a free credit while the deployment runs in soft beta mode."""

        if not self.beta_grants_enabled:
            logger.warning("Beta grant attempted outside soft beta mode user=%s", user_id)
            raise ForbiddenError("System auto-grant is only available in soft beta mode")
        return self.credits.grant_system(
            user_id=user_id,
            credit_code=credit_code,
            reason=BETA_GRANT_REASON,
            provider=SYSTEM_GRANT_PROVIDER,
            session=session,
        )

    def admin_grant_credit(
        self,
        *,
        admin_id: str,
        user_id: str,
        credit_code: CreditCode,
        reason: str,
        session: Optional[LedgerSession] = None,
    ) -> Credit:
        """Grant a credit on behalf of an administrator; ``reason`` is mandatory."""

        if not reason or not reason.strip():
            raise ValidationError("Reason is mandatory for admin credit grant")
        credit = self.credits.grant_system(
            user_id=user_id,
            credit_code=credit_code,
            reason=reason,
            provider=ADMIN_GRANT_PROVIDER,
            session=session,
        )
        logger.info("Admin %s granted credit %s to user %s", admin_id, credit.id, user_id)
        return credit


__all__ = [
    "BETA_GRANT_REASON",
    "BillingService",
    "PaymentProvider",
    "ProductSettlementEffects",
    "PurchaseIntent",
]
