"""Transaction and credit ledgers."""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol, Sequence, Tuple
from uuid import uuid4

from ..catalog.models import CreditCode, ProductCode
from ..feature_gates.exceptions import ConflictError, NotFoundError, ValidationError
from ..storage.session import LedgerSession, LedgerStore, managed_session
from ..subscriptions.models import Subscription
from .models import (
    Credit,
    CreditStatus,
    SettlementEvent,
    SettlementOutcome,
    SettlementResult,
    Transaction,
    TransactionStatus,
)

logger = logging.getLogger("billing")

SYSTEM_GRANT_PROVIDER = "system-beta-grant"
ADMIN_GRANT_PROVIDER = "admin-grant"

_CURRENCY_PATTERN = re.compile(r"^[A-Za-z]{3}$")


class SettlementEffects(Protocol):
    """Downstream effects applied when a transaction settles as completed."""

    def apply(
        self, transaction: Transaction, session: LedgerSession
    ) -> Tuple[List[Credit], Optional[Subscription]]:
        ...


class SettlementNotifier(Protocol):
    """Fire-and-forget trigger for the notification collaborator."""

    def notify_settled(self, result: SettlementResult) -> None:
        ...


class TransactionLedger:
    """Records purchase intents and their settlement status."""

    def __init__(
        self,
        store: LedgerStore,
        *,
        effects: Optional[SettlementEffects] = None,
        notifier: Optional[SettlementNotifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._effects = effects
        self._notifier = notifier
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def bind_effects(self, effects: SettlementEffects) -> None:
        self._effects = effects

    def create_pending(
        self,
        *,
        user_id: str,
        product_code: ProductCode,
        provider: str,
        amount_minor_units: int,
        currency_code: str,
        club_id: Optional[str] = None,
        provider_payment_id: Optional[str] = None,
        quantity: int = 1,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
        session: Optional[LedgerSession] = None,
    ) -> Transaction:
        """Insert a new ``pending`` transaction."""

        transaction = self._build(
            user_id=user_id,
            product_code=product_code,
            provider=provider,
            amount_minor_units=amount_minor_units,
            currency_code=currency_code,
            club_id=club_id,
            provider_payment_id=provider_payment_id,
            quantity=quantity,
            period_start=period_start,
            period_end=period_end,
            status=TransactionStatus.PENDING,
        )
        with managed_session(self._store, session) as active:
            stored = active.transactions.insert(transaction)
        logger.info(
            "Transaction created id=%s user=%s product=%s amount=%s %s provider=%s",
            stored.id,
            stored.user_id,
            stored.product_code.value,
            stored.amount_minor_units,
            stored.currency_code,
            stored.provider,
        )
        return stored

    def record_synthetic(
        self,
        *,
        user_id: str,
        product_code: ProductCode,
        provider: str,
        currency_code: str,
        session: Optional[LedgerSession] = None,
    ) -> Transaction:
        """Insert a zero-amount transaction that is already ``completed``."""

        transaction = self._build(
            user_id=user_id,
            product_code=product_code,
            provider=provider,
            amount_minor_units=0,
            currency_code=currency_code,
            status=TransactionStatus.COMPLETED,
        )
        with managed_session(self._store, session) as active:
            return active.transactions.insert(transaction)

    def get(self, transaction_id: str, *, session: Optional[LedgerSession] = None) -> Transaction:
        with managed_session(self._store, session) as active:
            transaction = active.transactions.get(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    def settle(
        self,
        *,
        outcome: SettlementOutcome,
        transaction_id: Optional[str] = None,
        provider_payment_id: Optional[str] = None,
        session: Optional[LedgerSession] = None,
    ) -> SettlementResult:
        """Finalize a pending transaction; terminal transactions are a no-op."""

        if (transaction_id is None) == (provider_payment_id is None):
            raise ValidationError("Exactly one of transaction_id or provider_payment_id is required")
        try:
            outcome = SettlementOutcome(outcome)
        except ValueError as exc:
            raise ValidationError(f"Unknown settlement outcome: {outcome}") from exc

        with managed_session(self._store, session) as active:
            if transaction_id is not None:
                transaction = active.transactions.get(transaction_id, for_update=True)
                identifier = f"id={transaction_id}"
            else:
                transaction = active.transactions.get_by_provider_payment_id(
                    provider_payment_id, for_update=True
                )
                identifier = f"provider_payment_id={provider_payment_id}"
            if transaction is None:
                raise NotFoundError(f"No transaction matches {identifier}")

            if transaction.status.is_terminal:
                logger.info(
                    "Settlement no-op id=%s status=%s requested=%s",
                    transaction.id,
                    transaction.status.value,
                    outcome.value,
                )
                return SettlementResult(transaction=transaction, was_no_op=True)

            settled = active.transactions.mark_settled(
                transaction.id, outcome.to_status(), now=self._clock()
            )
            if settled is None:
                current = active.transactions.get(transaction.id)
                if current is None or not current.status.is_terminal:
                    raise ConflictError(f"Transaction {transaction.id} could not be settled")
                return SettlementResult(transaction=current, was_no_op=True)

            credits: List[Credit] = []
            subscription: Optional[Subscription] = None
            if settled.status == TransactionStatus.COMPLETED and self._effects is not None:
                credits, subscription = self._effects.apply(settled, active)

            result = SettlementResult(
                transaction=settled,
                was_no_op=False,
                credits=credits,
                subscription=subscription,
            )
            active.on_commit(lambda: self._notify(result))

        logger.info(
            "Transaction settled id=%s status=%s credits=%s subscription_club=%s",
            settled.id,
            settled.status.value,
            len(credits),
            subscription.club_id if subscription else None,
        )
        return result

    def settle_event(
        self, event: SettlementEvent, *, session: Optional[LedgerSession] = None
    ) -> SettlementResult:
        return self.settle(
            outcome=event.outcome,
            provider_payment_id=event.provider_payment_id,
            session=session,
        )

    def _notify(self, result: SettlementResult) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify_settled(result)
        except Exception:
            logger.warning(
                "Settlement notification failed for transaction %s",
                result.transaction.id,
                exc_info=True,
            )

    def _build(
        self,
        *,
        user_id: str,
        product_code: ProductCode,
        provider: str,
        amount_minor_units: int,
        currency_code: str,
        status: TransactionStatus,
        club_id: Optional[str] = None,
        provider_payment_id: Optional[str] = None,
        quantity: int = 1,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
    ) -> Transaction:
        if not user_id:
            raise ValidationError("user_id is required")
        try:
            product = ProductCode(product_code)
        except ValueError as exc:
            raise ValidationError(f"Unknown product code: {product_code}") from exc
        if not provider:
            raise ValidationError("provider is required")
        if isinstance(amount_minor_units, bool) or not isinstance(amount_minor_units, int) or amount_minor_units < 0:
            raise ValidationError(f"Invalid amount: {amount_minor_units!r}")
        if not currency_code or not _CURRENCY_PATTERN.match(currency_code):
            raise ValidationError(f"Invalid currency code: {currency_code!r}")
        if quantity < 1:
            raise ValidationError("quantity must be >= 1")
        if (period_start is None) != (period_end is None):
            raise ValidationError("period_start and period_end must be provided together")
        if period_start is not None and period_end is not None and period_end <= period_start:
            raise ValidationError("period_end must be after period_start")

        now = self._clock()
        return Transaction(
            id=str(uuid4()),
            user_id=user_id,
            club_id=club_id,
            product_code=product,
            provider=provider,
            provider_payment_id=provider_payment_id,
            amount_minor_units=amount_minor_units,
            currency_code=currency_code,
            quantity=quantity,
            status=status,
            period_start=period_start,
            period_end=period_end,
            created_at=now,
            updated_at=now,
        )


class CreditLedger:
    """One-off entitlement grants, each backed by a completed transaction."""

    def __init__(
        self,
        store: LedgerStore,
        transactions: TransactionLedger,
        *,
        currency_code: str = "KZT",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._transactions = transactions
        self._currency_code = currency_code
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def issue(
        self,
        *,
        user_id: str,
        credit_code: CreditCode,
        source_transaction_id: str,
        expires_at: Optional[datetime] = None,
        session: Optional[LedgerSession] = None,
    ) -> Credit:
        """Create exactly one available credit from a completed transaction."""

        code = _credit_code(credit_code)
        now = self._clock()
        with managed_session(self._store, session) as active:
            source = active.transactions.get(source_transaction_id)
            if source is None:
                raise NotFoundError(f"Source transaction {source_transaction_id} not found")
            if source.status != TransactionStatus.COMPLETED:
                raise ConflictError(
                    f"Source transaction {source_transaction_id} is {source.status.value}, not completed"
                )
            if source.user_id != user_id:
                raise ConflictError(f"Source transaction {source_transaction_id} belongs to another user")
            credit = Credit(
                id=str(uuid4()),
                user_id=user_id,
                credit_code=code,
                status=CreditStatus.AVAILABLE,
                source_transaction_id=source.id,
                expires_at=expires_at,
                created_at=now,
                updated_at=now,
            )
            stored = active.credits.insert(credit)
        logger.info(
            "Credit issued id=%s user=%s code=%s source=%s",
            stored.id,
            user_id,
            code.value,
            source_transaction_id,
        )
        return stored

    def consume_one_for(
        self,
        *,
        user_id: str,
        credit_code: CreditCode,
        event_id: str,
        session: Optional[LedgerSession] = None,
    ) -> Optional[Credit]:
        """Consume the oldest available credit for ``event_id``; ``None`` when there is none."""

        code = _credit_code(credit_code)
        if not event_id:
            raise ValidationError("event_id is required to consume a credit")
        with managed_session(self._store, session) as active:
            consumed = active.credits.consume_one_for(user_id, code, event_id, now=self._clock())
        if consumed is None:
            logger.info("No available credit user=%s code=%s event=%s", user_id, code.value, event_id)
            return None
        logger.info(
            "Credit consumed id=%s user=%s code=%s event=%s",
            consumed.id,
            user_id,
            code.value,
            event_id,
        )
        return consumed

    def grant_system(
        self,
        *,
        user_id: str,
        credit_code: CreditCode,
        reason: str,
        provider: str = SYSTEM_GRANT_PROVIDER,
        session: Optional[LedgerSession] = None,
    ) -> Credit:
        """Issue a credit backed by a synthetic zero-amount completed transaction.

        Whether the deployment allows the grant is decided by the caller.
        """

        code = _credit_code(credit_code)
        if not reason or not reason.strip():
            raise ValidationError("A reason is mandatory for credit grants")
        with managed_session(self._store, session) as active:
            source = self._transactions.record_synthetic(
                user_id=user_id,
                product_code=ProductCode(code.value),
                provider=provider,
                currency_code=self._currency_code,
                session=active,
            )
            credit = self.issue(
                user_id=user_id,
                credit_code=code,
                source_transaction_id=source.id,
                session=active,
            )
        logger.info(
            "Credit granted id=%s user=%s code=%s provider=%s reason=%s",
            credit.id,
            user_id,
            code.value,
            provider,
            reason.strip(),
        )
        return credit

    def list_available(
        self,
        user_id: str,
        *,
        credit_code: Optional[CreditCode] = None,
        session: Optional[LedgerSession] = None,
    ) -> Sequence[Credit]:
        code = _credit_code(credit_code) if credit_code is not None else None
        with managed_session(self._store, session) as active:
            return list(active.credits.list_available(user_id, now=self._clock(), credit_code=code))

    def has_available(
        self,
        user_id: str,
        credit_code: CreditCode,
        *,
        session: Optional[LedgerSession] = None,
    ) -> bool:
        return bool(self.list_available(user_id, credit_code=credit_code, session=session))

    def consumed_for_event(
        self, event_id: str, *, session: Optional[LedgerSession] = None
    ) -> Sequence[Credit]:
        with managed_session(self._store, session) as active:
            return list(active.credits.list_consumed_for_event(event_id))


def _credit_code(value: CreditCode) -> CreditCode:
    try:
        return CreditCode(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown credit code: {value}") from exc


__all__ = [
    "ADMIN_GRANT_PROVIDER",
    "CreditLedger",
    "SYSTEM_GRANT_PROVIDER",
    "SettlementEffects",
    "SettlementNotifier",
    "TransactionLedger",
]
