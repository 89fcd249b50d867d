from __future__ import annotations

import logging
import threading
from decimal import Decimal

import pytest

from tokenledger.common.errors import (
    HoldingNotFound,
    InsufficientBalance,
    InsufficientQuantity,
    InvalidRequest,
    PersistenceFailure,
    WalletNotFound,
)
from tokenledger.ledger.pnl import weighted_average_cost
from tests.conftest import TOKEN_A, TOKEN_B


def _only_holding(facade, wallet_id: str = "w1"):
    views = facade.get_holdings_view(wallet_id, refresh_prices=False)
    assert len(views) == 1
    return views[0].holding


def test_two_buys_at_different_prices_average_cost_and_debit_exactly(facade, custody, rate_model) -> None:
    t1 = facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol="1")
    assert t1.token_quantity == Decimal("1000")
    assert t1.price_per_token_sol == Decimal("0.001")
    h = _only_holding(facade)
    assert h.quantity == Decimal("1000")
    assert h.avg_cost_sol == Decimal("0.001")
    assert custody.get_balance("w1") == Decimal("9")

    rate_model.price_per_token_sol = Decimal("0.002")
    t2 = facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol="1")
    assert t2.token_quantity == Decimal("500")

    h = _only_holding(facade)
    assert h.quantity == Decimal("1500")
    assert h.avg_cost_sol == weighted_average_cost(
        [(Decimal("1000"), Decimal("0.001")), (Decimal("500"), Decimal("0.002"))]
    )
    assert str(h.avg_cost_sol).startswith("0.0013333")
    assert custody.get_balance("w1") == Decimal("8")


def test_buy_debits_exact_unrounded_amount(facade, custody) -> None:
    facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol="0.123456789")
    assert custody.get_balance("w1") == Decimal("9.876543211")


def test_buy_records_tp_sl_on_transaction(facade) -> None:
    txn = facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol=1, take_profit_pct=50, stop_loss_pct="10")
    assert txn.kind == "buy"
    assert txn.status == "completed"
    assert txn.take_profit_pct == Decimal("50")
    assert txn.stop_loss_pct == Decimal("10")


def test_insufficient_balance_leaves_no_state(facade, custody, store) -> None:
    with pytest.raises(InsufficientBalance) as ei:
        facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol="10.5")
    assert ei.value.to_dict()["error"] == "insufficient_balance"
    assert custody.get_balance("w1") == Decimal("10")
    assert facade.get_holdings_view("w1", refresh_prices=False) == []
    assert facade.get_transactions("w1") == []


@pytest.mark.parametrize("amount", [0, "-1", "abc", True, None])
def test_buy_rejects_bad_amounts(facade, custody, amount) -> None:
    with pytest.raises(InvalidRequest):
        facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol=amount)
    assert custody.get_balance("w1") == Decimal("10")


def test_buy_rejects_blank_token_and_out_of_range_stop_loss(facade) -> None:
    with pytest.raises(InvalidRequest):
        facade.buy(wallet_id="w1", contract_ref="   ", amount_sol=1)
    with pytest.raises(InvalidRequest):
        facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol=1, stop_loss_pct=150)


def test_buy_for_unknown_wallet(facade) -> None:
    with pytest.raises(WalletNotFound):
        facade.buy(wallet_id="ghost", contract_ref=TOKEN_A, amount_sol=1)


def test_failed_commit_reverses_debit(facade, custody, store) -> None:
    store.fail_commits = True
    with pytest.raises(PersistenceFailure):
        facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol="2")
    assert custody.get_balance("w1") == Decimal("10")
    assert facade.get_holdings_view("w1", refresh_prices=False) == []
    assert facade.get_transactions("w1") == []

    store.fail_commits = False
    facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol="2")
    assert custody.get_balance("w1") == Decimal("8")


def test_sell_values_proceeds_at_cost_and_credits_wallet(facade, custody, clock) -> None:
    facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol="1")
    h = _only_holding(facade)

    clock.advance(5)
    txn = facade.sell(wallet_id="w1", holding_id=h.id, quantity="400")
    assert txn.kind == "sell"
    assert txn.status == "pending"
    assert txn.amount_sol == Decimal("0.4")
    assert txn.price_per_token_sol == h.avg_cost_sol
    assert custody.get_balance("w1") == Decimal("9.4")

    left = _only_holding(facade)
    assert left.quantity == Decimal("600")
    assert left.avg_cost_sol == h.avg_cost_sol

    clock.advance(5)
    facade.sell(wallet_id="w1", holding_id=h.id, quantity="600")
    assert facade.get_holdings_view("w1", refresh_prices=False) == []
    assert custody.get_balance("w1") == Decimal("10")

    kinds = [t.kind for t in facade.get_transactions("w1")]
    assert kinds == ["sell", "sell", "buy"]


def test_oversell_fails_without_state_change(facade, custody) -> None:
    facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol="1")
    h = _only_holding(facade)
    with pytest.raises(InsufficientQuantity):
        facade.sell(wallet_id="w1", holding_id=h.id, quantity="1000.5")
    assert _only_holding(facade).quantity == Decimal("1000")
    assert custody.get_balance("w1") == Decimal("9")
    assert len(facade.get_transactions("w1")) == 1


def test_sell_of_another_wallets_holding_is_not_found(facade) -> None:
    facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol="1")
    h = _only_holding(facade)
    with pytest.raises(HoldingNotFound):
        facade.sell(wallet_id="w2", holding_id=h.id, quantity="1")
    with pytest.raises(HoldingNotFound):
        facade.sell(wallet_id="w1", holding_id="missing", quantity="1")


def test_failed_sell_commit_reverses_credit(facade, custody, store) -> None:
    facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol="1")
    h = _only_holding(facade)

    store.fail_commits = True
    with pytest.raises(PersistenceFailure):
        facade.sell(wallet_id="w1", holding_id=h.id, quantity="1000")
    assert custody.get_balance("w1") == Decimal("9")
    assert _only_holding(facade).quantity == Decimal("1000")


def test_concurrent_buys_on_one_wallet_never_overspend(facade, custody) -> None:
    n = 8
    barrier = threading.Barrier(n)
    outcomes: list[str] = []
    guard = threading.Lock()

    def _worker() -> None:
        barrier.wait()
        try:
            facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol="3")
            r = "ok"
        except InsufficientBalance:
            r = "insufficient"
        with guard:
            outcomes.append(r)

    threads = [threading.Thread(target=_worker) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert outcomes.count("ok") == 3
    assert outcomes.count("insufficient") == n - 3
    assert custody.get_balance("w1") == Decimal("1")
    assert _only_holding(facade).quantity == Decimal("9000")


def test_holdings_view_refreshes_prices_and_reports_pnl(facade, primary) -> None:
    primary.prices[TOKEN_A] = "0.5"
    facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol="1")

    views = facade.get_holdings_view("w1")
    assert len(views) == 1
    v = views[0]
    # 1000 tokens at $0.50, bought for 1 SOL at $100/SOL.
    assert v.current_value_usd == Decimal("500")
    assert v.holding.cost_basis_usd == Decimal("100")
    assert v.pnl_pct == Decimal("400")


def test_holdings_view_without_price_reports_zero(facade) -> None:
    facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol="1")
    v = facade.get_holdings_view("w1")[0]
    assert v.current_value_usd == Decimal("0")
    assert v.pnl_pct == Decimal("0")


def test_dashboard_without_active_wallet(facade) -> None:
    assert facade.get_dashboard(None).to_dict() == {
        "active_wallet_id": None,
        "sol_balance": None,
        "total_holdings_usd": "0",
        "holdings": [],
    }


def test_dashboard_for_active_wallet(facade, custody, primary) -> None:
    primary.prices[TOKEN_A] = "0.5"
    facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol="1")

    dash = facade.get_dashboard(custody.active())
    assert dash.active_wallet_id == "w1"
    assert dash.sol_balance == Decimal("9")
    assert dash.total_holdings_usd == Decimal("500")
    assert len(dash.holdings) == 1


def test_get_token_data_creates_token_with_default_decimals_and_price(facade, secondary, clock) -> None:
    secondary.prices[TOKEN_B] = "1.25"
    token = facade.get_token_data(TOKEN_B)
    assert token.contract_ref == TOKEN_B
    assert token.decimals == 9
    assert token.last_price_usd == Decimal("1.25")
    assert token.price_updated_at == clock.now

    again = facade.get_token_data(TOKEN_B)
    assert again.id == token.id


def test_rejected_buy_is_logged_with_error_kind(facade, caplog) -> None:
    caplog.set_level(logging.INFO)
    with pytest.raises(InsufficientBalance):
        facade.buy(wallet_id="w1", contract_ref=TOKEN_A, amount_sol="100")

    rejected = [r for r in caplog.records if getattr(r, "event_type", None) == "ledger.buy.rejected"]
    assert len(rejected) == 1
    assert rejected[0].error == "insufficient_balance"
    assert rejected[0].wallet_id == "w1"
