"""Billing ledger package: transactions, credits and settlement."""

from .models import (
    Credit,
    CreditCode,
    CreditStatus,
    ProductCode,
    SettlementEvent,
    SettlementOutcome,
    SettlementResult,
    Transaction,
    TransactionStatus,
)
from .repository import (
    CreditRepository,
    PostgresCreditRepository,
    PostgresTransactionRepository,
    TransactionRepository,
)
from .ledger import (
    ADMIN_GRANT_PROVIDER,
    SYSTEM_GRANT_PROVIDER,
    CreditLedger,
    SettlementEffects,
    SettlementNotifier,
    TransactionLedger,
)
from .service import BillingService, PaymentProvider, ProductSettlementEffects, PurchaseIntent

__all__ = [
    "ADMIN_GRANT_PROVIDER",
    "BillingService",
    "Credit",
    "CreditCode",
    "CreditLedger",
    "CreditRepository",
    "CreditStatus",
    "PaymentProvider",
    "PostgresCreditRepository",
    "PostgresTransactionRepository",
    "ProductCode",
    "ProductSettlementEffects",
    "PurchaseIntent",
    "SYSTEM_GRANT_PROVIDER",
    "SettlementEffects",
    "SettlementEvent",
    "SettlementNotifier",
    "SettlementOutcome",
    "SettlementResult",
    "Transaction",
    "TransactionLedger",
    "TransactionRepository",
    "TransactionStatus",
]
