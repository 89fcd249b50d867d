from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from itertools import permutations

import pytest

from tokenledger.common.errors import InsufficientQuantity
from tokenledger.ledger.pnl import weighted_average_cost
from tokenledger.ledger.positions import accumulate_buy, reduce_for_sell

NOW = datetime(2025, 1, 2, tzinfo=timezone.utc)


def _buy_all(lots):
    h = None
    for qty, price in lots:
        h = accumulate_buy(
            holding=h,
            wallet_id="w1",
            token_id="t1",
            token_quantity=qty,
            price_per_token_sol=price,
            value_usd=qty * price * Decimal("100"),
            now=NOW,
        )
    return h


def test_first_buy_creates_holding_at_buy_price() -> None:
    h = _buy_all([(Decimal("1000"), Decimal("0.001"))])
    assert h.quantity == Decimal("1000")
    assert h.avg_cost_sol == Decimal("0.001")
    assert h.cost_basis_usd == Decimal("100")


def test_avg_cost_matches_weighted_average_for_every_buy_order() -> None:
    lots = [
        (Decimal("100"), Decimal("0.001")),
        (Decimal("300"), Decimal("0.002")),
        (Decimal("600"), Decimal("0.005")),
    ]
    expected = weighted_average_cost(lots)
    assert expected == Decimal("0.0037")

    q = Decimal("1e-20")
    for order in permutations(lots):
        h = _buy_all(order)
        assert h.quantity == Decimal("1000")
        assert h.avg_cost_sol.quantize(q) == expected.quantize(q)


def test_buy_with_unknown_usd_value_makes_cost_basis_unknown() -> None:
    h = _buy_all([(Decimal("10"), Decimal("1"))])
    h2 = accumulate_buy(
        holding=h,
        wallet_id="w1",
        token_id="t1",
        token_quantity=Decimal("10"),
        price_per_token_sol=Decimal("1"),
        value_usd=None,
        now=NOW,
    )
    assert h2.cost_basis_usd is None
    assert h2.quantity == Decimal("20")


def test_accumulate_rejects_foreign_holding() -> None:
    h = _buy_all([(Decimal("10"), Decimal("1"))])
    with pytest.raises(ValueError):
        accumulate_buy(
            holding=h,
            wallet_id="w2",
            token_id="t1",
            token_quantity=Decimal("1"),
            price_per_token_sol=Decimal("1"),
            value_usd=None,
            now=NOW,
        )


def test_sell_keeps_avg_cost_and_scales_cost_basis() -> None:
    h = _buy_all([(Decimal("1000"), Decimal("0.001")), (Decimal("500"), Decimal("0.002"))])
    remaining, proceeds = reduce_for_sell(holding=h, quantity=Decimal("500"), now=NOW)

    assert remaining is not None
    assert remaining.quantity == Decimal("1000")
    assert remaining.avg_cost_sol == h.avg_cost_sol
    assert proceeds == Decimal("500") * h.avg_cost_sol
    assert remaining.cost_basis_usd == h.cost_basis_usd * Decimal("1000") / Decimal("1500")


def test_sell_then_sell_remaining_leaves_no_holding() -> None:
    h = _buy_all([(Decimal("1000"), Decimal("0.001"))])
    remaining, _ = reduce_for_sell(holding=h, quantity=Decimal("400"), now=NOW)
    assert remaining is not None
    gone, proceeds = reduce_for_sell(holding=remaining, quantity=remaining.quantity, now=NOW)
    assert gone is None
    assert proceeds == Decimal("0.6")


def test_oversell_raises_and_leaves_holding_unchanged() -> None:
    h = _buy_all([(Decimal("10"), Decimal("1"))])
    with pytest.raises(InsufficientQuantity) as ei:
        reduce_for_sell(holding=h, quantity=Decimal("10.000001"), now=NOW)
    assert ei.value.kind == "insufficient_quantity"
    assert h.quantity == Decimal("10")


def test_position_ledger_creates_token_lazily_on_buy() -> None:
    from tokenledger.custody.wallets import InMemoryWalletCustody
    from tokenledger.ledger.positions import PositionLedger
    from tokenledger.ledger.tokens import TokenRegistry
    from tokenledger.marketdata.rates import FixedRateModel
    from tokenledger.persistence.store import InMemoryRecordStore

    store = InMemoryRecordStore()
    custody = InMemoryWalletCustody()
    custody.add_wallet("w1", Decimal("3"))
    registry = TokenRegistry(store=store, clock=lambda: NOW)
    ledger = PositionLedger(
        store=store,
        custody=custody,
        registry=registry,
        rate_model=FixedRateModel(Decimal("0.5")),
        clock=lambda: NOW,
    )

    txn = ledger.apply_buy(wallet_id="w1", token_ref="mintX", amount_sol=Decimal("2"))
    token = registry.find_by_ref("mintX")
    assert token is not None
    assert token.decimals == 9
    assert txn.token_id == token.id
    assert txn.token_quantity == Decimal("4")

    holding = ledger.find_holding("w1", token.id)
    assert holding.quantity == Decimal("4")
    assert holding.cost_basis_usd is None
    assert custody.get_balance("w1") == Decimal("1")
