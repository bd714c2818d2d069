"""Shared fixtures: a controllable clock and ledger services over the in-memory store."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from clubledger.app.billing import ProductCode, SettlementOutcome, SettlementResult
from clubledger.app.services.billing import LedgerServices, build_ledger_services
from clubledger.app.storage.memory import InMemoryLedgerStore
from clubledger.config import LedgerConfig, load_ledger_config

START = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self) -> None:
        self.results: List[SettlementResult] = []

    def notify_settled(self, result: SettlementResult) -> None:
        self.results.append(result)


def make_config(**overrides: str) -> LedgerConfig:
    env = {"LEDGER_STORAGE": "memory", "ADMIN_API_TOKEN": "admin-secret"}
    env.update(overrides)
    return load_ledger_config(env)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def config() -> LedgerConfig:
    return make_config()


@pytest.fixture
def services(config, store, clock, notifier) -> LedgerServices:
    return build_ledger_services(config, store=store, clock=clock, notifier=notifier)


@pytest.fixture
def buy(services: LedgerServices, clock: FakeClock):
    """Create and settle a purchase; advances the clock so rows get distinct timestamps."""

    def _buy(
        user_id: str,
        product_code: ProductCode = ProductCode.EVENT_UPGRADE_500,
        *,
        quantity: int = 1,
        club_id: Optional[str] = None,
        outcome: SettlementOutcome = SettlementOutcome.COMPLETED,
    ) -> SettlementResult:
        intent = services.billing.create_purchase_intent(
            user_id=user_id,
            product_code=product_code,
            quantity=quantity,
            club_id=club_id,
        )
        clock.advance(seconds=1)
        result = services.transactions.settle(outcome=outcome, transaction_id=intent.transaction.id)
        clock.advance(seconds=1)
        return result

    return _buy
