from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from tokenledger.common.config import WRAPPED_SOL_MINT, LedgerConfig
from tokenledger.custody.wallets import InMemoryWalletCustody
from tokenledger.marketdata.providers import TokenMetadata
from tokenledger.marketdata.rates import FixedRateModel
from tokenledger.persistence.store import InMemoryRecordStore
from tokenledger.service.bootstrap import build_ledger_facade
from tokenledger.service.facade import LedgerFacade

TOKEN_A = "TokA1111111111111111111111111111111111111111"
TOKEN_B = "TokB2222222222222222222222222222222222222222"
SOL = WRAPPED_SOL_MINT


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 2, 15, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakePriceProvider:
    """Serves prices from a dict; `None` (or a missing ref) means no price."""

    def __init__(self, provider_id: str, prices: Optional[Dict[str, Any]] = None) -> None:
        self.provider_id = provider_id
        self.prices: Dict[str, Any] = dict(prices or {})
        self.calls: List[str] = []

    def try_fetch(self, token_ref: str) -> Optional[Decimal]:
        self.calls.append(token_ref)
        v = self.prices.get(token_ref)
        return None if v is None else Decimal(str(v))


class FakeMetadataProvider:
    def __init__(self, by_ref: Optional[Dict[str, TokenMetadata]] = None) -> None:
        self.by_ref = dict(by_ref or {})

    def fetch_metadata(self, token_ref: str) -> Optional[TokenMetadata]:
        return self.by_ref.get(token_ref)


class FailingCommitStore(InMemoryRecordStore):
    """In-memory store whose batch commit can be switched to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_commits = False

    def commit(self, writes) -> None:
        if self.fail_commits:
            raise RuntimeError("disk full")
        super().commit(writes)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def custody() -> InMemoryWalletCustody:
    c = InMemoryWalletCustody()
    c.add_wallet("w1", Decimal("10"), active=True)
    c.add_wallet("w2", Decimal("10"))
    return c


@pytest.fixture
def store() -> InMemoryRecordStore:
    return FailingCommitStore()


@pytest.fixture
def primary() -> FakePriceProvider:
    return FakePriceProvider("primary")


@pytest.fixture
def secondary() -> FakePriceProvider:
    return FakePriceProvider("secondary")


@pytest.fixture
def rate_model() -> FixedRateModel:
    # 0.001 SOL per token, SOL at $100.
    return FixedRateModel(Decimal("0.001"), sol_usd=Decimal("100"))


@pytest.fixture
def facade(custody, store, primary, secondary, rate_model, clock) -> LedgerFacade:
    return build_ledger_facade(
        custody=custody,
        config=LedgerConfig(),
        store=store,
        price_providers=[primary, secondary],
        metadata_provider=FakeMetadataProvider(),
        rate_model=rate_model,
        clock=clock,
    )
