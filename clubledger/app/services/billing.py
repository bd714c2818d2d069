"""Application wiring for the billing ledger services."""
from __future__ import annotations

import logging
import random
import string
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Callable, Dict, Optional

from ...config import LedgerConfig, load_ledger_config
from ..billing import (
    BillingService,
    CreditLedger,
    PaymentProvider,
    ProductSettlementEffects,
    SettlementNotifier,
    SettlementResult,
    Transaction,
    TransactionLedger,
)
from ..catalog import CachedPlanCatalog
from ..entitlements import EntitlementResolver
from ..idempotency import MutationOrchestrator
from ..storage.memory import InMemoryLedgerStore
from ..storage.postgres import PostgresLedgerStore, connection_factory
from ..storage.session import LedgerStore
from ..subscriptions import SubscriptionStore

logger = logging.getLogger("billing")

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


class LoggingSettlementNotifier(SettlementNotifier):
    """Notifier that records settlements to the application logger."""

    def notify_settled(self, result: SettlementResult) -> None:
        transaction = result.transaction
        logger.info(
            "Settlement notification user=%s transaction=%s status=%s credits=%s",
            transaction.user_id,
            transaction.id,
            transaction.status.value,
            len(result.credits),
        )


class KaspiStubPaymentProvider:
    """Payment instructions for Kaspi transfers until the real integration lands."""

    def __init__(self, *, name: str = "kaspi", rng: Optional[random.Random] = None) -> None:
        self.name = name
        self._rng = rng or random.SystemRandom()

    def new_payment_reference(self) -> str:
        suffix = "".join(self._rng.choice(_REFERENCE_ALPHABET) for _ in range(7))
        return f"{self.name.upper()}_{int(time.time() * 1000)}_{suffix}"

    def payment_instructions(self, *, transaction: Transaction, title: str) -> Dict[str, object]:
        reference = transaction.provider_payment_id or transaction.id
        return {
            "provider": self.name,
            "providerPaymentId": reference,
            "invoiceUrl": f"https://kaspi.kz/pay/{reference}",
            "qrPayload": f"kaspi://pay?ref={reference}&amount={transaction.amount_minor_units}",
            "title": title,
            "amountMinorUnits": transaction.amount_minor_units,
            "currencyCode": transaction.currency_code,
            "devNote": "Stub provider: settle through /api/billing/dev/settle or the webhook",
        }


# ``slots`` support for ``dataclass`` was added in Python 3.10.
_dataclass_kwargs = {"slots": True} if sys.version_info >= (3, 10) else {}


@dataclass(frozen=True, **_dataclass_kwargs)
class LedgerServices:
    """Everything the routers need, built over one shared store."""

    config: LedgerConfig
    store: LedgerStore
    catalog: CachedPlanCatalog
    orchestrator: MutationOrchestrator
    transactions: TransactionLedger
    credits: CreditLedger
    subscriptions: SubscriptionStore
    billing: BillingService
    resolver: EntitlementResolver


def build_store(config: LedgerConfig) -> LedgerStore:
    if config.storage_backend == "memory":
        logger.info("Using in-memory ledger storage")
        return InMemoryLedgerStore()
    if config.database_url:
        return PostgresLedgerStore(connection_factory(config.database_url))
    return PostgresLedgerStore()


def build_ledger_services(
    config: LedgerConfig,
    *,
    store: Optional[LedgerStore] = None,
    provider: Optional[PaymentProvider] = None,
    notifier: Optional[SettlementNotifier] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> LedgerServices:
    """Assemble the ledger services for ``config``."""

    store = store if store is not None else build_store(config)
    catalog = CachedPlanCatalog(ttl_seconds=config.catalog_cache_ttl_seconds, clock=clock)
    transactions = TransactionLedger(
        store,
        notifier=notifier if notifier is not None else LoggingSettlementNotifier(),
        clock=clock,
    )
    credits = CreditLedger(store, transactions, currency_code=config.default_currency, clock=clock)
    subscriptions = SubscriptionStore(store, grace_period_days=config.grace_period_days, clock=clock)
    transactions.bind_effects(
        ProductSettlementEffects(
            catalog,
            credits,
            subscriptions,
            period_days=config.subscription_period_days,
            clock=clock,
        )
    )
    billing = BillingService(
        transactions=transactions,
        credits=credits,
        catalog=catalog,
        provider=provider if provider is not None else KaspiStubPaymentProvider(name=config.payment_provider),
        beta_grants_enabled=config.beta_grants_enabled,
    )
    resolver = EntitlementResolver(store, subscriptions, credits, catalog, clock=clock)
    return LedgerServices(
        config=config,
        store=store,
        catalog=catalog,
        orchestrator=MutationOrchestrator(store, clock=clock),
        transactions=transactions,
        credits=credits,
        subscriptions=subscriptions,
        billing=billing,
        resolver=resolver,
    )


@lru_cache(maxsize=1)
def get_ledger_services() -> LedgerServices:
    return build_ledger_services(load_ledger_config())


__all__ = [
    "KaspiStubPaymentProvider",
    "LedgerServices",
    "LoggingSettlementNotifier",
    "build_ledger_services",
    "build_store",
    "get_ledger_services",
]
