from __future__ import annotations

"""
Single entry point for external callers (RPC handlers, CLIs, schedulers).

The facade owns no state. It:
- validates inputs (pydantic request models -> `InvalidRequest`)
- defines the unit-of-work boundary: the per-wallet lock is held for
  balance check + holding mutation + balance movement
- sequences price refresh -> order evaluation -> auto-executed buys
- surfaces every failure as a typed `LedgerError` (never a silent default)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, TypeVar, cast

from tokenledger.common.errors import InvalidRequest, LedgerError, PersistenceFailure, PriceUnavailable
from tokenledger.common.logging import log_event
from tokenledger.common.schemas import BuyRequest, LimitOrderRequest, SellRequest, SettingsPatch, parse_request
from tokenledger.custody.wallets import ActiveWalletRef, WalletCustody
from tokenledger.execution.limit_orders import CancelOutcome, ExecutionFailure, OrderBook, OrderView
from tokenledger.execution.locks import KeyedLocks
from tokenledger.ledger.models import SETTINGS, LimitOrder, Settings, Token, Transaction, utc_now
from tokenledger.ledger.pnl import HoldingView, total_value_usd
from tokenledger.ledger.positions import PositionLedger
from tokenledger.ledger.tokens import TokenRegistry
from tokenledger.marketdata.prices import PriceResolver
from tokenledger.persistence.store import RecordStore

T = TypeVar("T")
logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RefreshOutcome:
    token_id: str
    token_ref: str
    price_usd: Decimal
    source: str
    triggered_order_ids: List[str] = field(default_factory=list)
    reached_order_ids: List[str] = field(default_factory=list)
    failures: List[ExecutionFailure] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token_id": self.token_id,
            "token_ref": self.token_ref,
            "price_usd": str(self.price_usd),
            "source": self.source,
            "triggered_orders": list(self.triggered_order_ids),
            "reached_orders": list(self.reached_order_ids),
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass(frozen=True, slots=True)
class Dashboard:
    active_wallet_id: Optional[str]
    sol_balance: Optional[Decimal]
    total_holdings_usd: Decimal
    holdings: List[HoldingView] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_wallet_id": self.active_wallet_id,
            "sol_balance": None if self.sol_balance is None else str(self.sol_balance),
            "total_holdings_usd": str(self.total_holdings_usd),
            "holdings": [h.to_dict() for h in self.holdings],
        }


class LedgerFacade:
    def __init__(
        self,
        *,
        store: RecordStore,
        custody: WalletCustody,
        registry: TokenRegistry,
        resolver: PriceResolver,
        positions: PositionLedger,
        orders: OrderBook,
        wallet_locks: KeyedLocks | None = None,
        display_max_staleness_s: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._custody = custody
        self._registry = registry
        self._resolver = resolver
        self._positions = positions
        self._orders = orders
        self._wallet_locks = wallet_locks or KeyedLocks(name="wallet")
        self._display_max_staleness_s = float(display_max_staleness_s)
        self._clock = clock

    # --- trading ---

    def buy(
        self,
        *,
        wallet_id: str,
        contract_ref: str,
        amount_sol: Any,
        take_profit_pct: Any = None,
        stop_loss_pct: Any = None,
    ) -> Transaction:
        req = parse_request(
            BuyRequest,
            wallet_id=wallet_id,
            contract_ref=contract_ref,
            amount_sol=amount_sol,
            take_profit_pct=take_profit_pct,
            stop_loss_pct=stop_loss_pct,
        )

        def _run() -> Transaction:
            token = self._registry.ensure(req.contract_ref)
            with self._wallet_locks.hold(req.wallet_id):
                return self._positions.apply_buy_for_token(
                    wallet_id=req.wallet_id,
                    token=token,
                    amount_sol=req.amount_sol,
                    take_profit_pct=req.take_profit_pct,
                    stop_loss_pct=req.stop_loss_pct,
                )

        return self._guarded("buy", _run, wallet_id=req.wallet_id, token_ref=req.contract_ref)

    def sell(self, *, wallet_id: str, holding_id: str, quantity: Any) -> Transaction:
        req = parse_request(SellRequest, wallet_id=wallet_id, holding_id=holding_id, quantity=quantity)

        def _run() -> Transaction:
            with self._wallet_locks.hold(req.wallet_id):
                return self._positions.apply_sell(
                    wallet_id=req.wallet_id,
                    holding_id=req.holding_id,
                    quantity=req.quantity,
                )

        return self._guarded("sell", _run, wallet_id=req.wallet_id, holding_id=req.holding_id)

    # --- limit orders ---

    def create_limit_order(
        self,
        *,
        wallet_id: str,
        contract_ref: str,
        target_price_usd: Any,
        amount_sol: Any,
        auto_execute: bool,
    ) -> LimitOrder:
        req = parse_request(
            LimitOrderRequest,
            wallet_id=wallet_id,
            contract_ref=contract_ref,
            target_price_usd=target_price_usd,
            amount_sol=amount_sol,
            auto_execute=auto_execute,
        )

        def _run() -> LimitOrder:
            # Unknown wallets are rejected up front rather than at trigger time.
            self._custody.get_balance(req.wallet_id)
            token = self._registry.ensure(req.contract_ref)
            return self._orders.create(
                wallet_id=req.wallet_id,
                token_id=token.id,
                target_price_usd=req.target_price_usd,
                amount_sol=req.amount_sol,
                auto_execute=req.auto_execute,
            )

        return self._guarded("create_limit_order", _run, wallet_id=req.wallet_id, token_ref=req.contract_ref)

    def cancel_limit_order(self, order_id: str) -> CancelOutcome:
        return self._guarded("cancel_limit_order", lambda: self._orders.cancel(str(order_id)), order_id=order_id)

    def list_limit_orders(self, wallet_id: str) -> List[OrderView]:
        def _price_of(token_id: str) -> Optional[Decimal]:
            token = self._registry.get(token_id)
            return token.last_price_usd if token is not None else None

        return self._orders.list_for_wallet(wallet_id, price_of=_price_of)

    # --- prices + evaluation ---

    def refresh_and_evaluate(self, contract_ref: str) -> RefreshOutcome:
        """
        Fetch the freshest price (cache bypassed), then evaluate active orders.

        Raises `PriceUnavailable` when every provider fails; no order is evaluated
        on that tick.
        """
        token = self._guarded("refresh", lambda: self._registry.ensure(contract_ref), token_ref=contract_ref)
        quote = self._guarded(
            "refresh",
            lambda: self._resolver.resolve_or_raise(token.contract_ref),
            token_ref=token.contract_ref,
        )
        price = cast(Decimal, quote.price_usd)

        result = self._orders.evaluate(token.id, price, execute=self._execute_order)
        return RefreshOutcome(
            token_id=token.id,
            token_ref=token.contract_ref,
            price_usd=price,
            source=quote.source,
            triggered_order_ids=list(result.triggered),
            reached_order_ids=list(result.reached),
            failures=list(result.failures),
        )

    def refresh_active_orders(self) -> List[RefreshOutcome]:
        """
        One price tick over every token that has active orders.

        A token whose price is unavailable is skipped for this tick only.
        """
        out: List[RefreshOutcome] = []
        for token_id in self._orders.active_token_ids():
            token = self._registry.get(token_id)
            if token is None:
                logger.error("orders.orphaned token_id=%s", token_id)
                continue
            try:
                out.append(self.refresh_and_evaluate(token.contract_ref))
            except PriceUnavailable:
                continue
        return out

    def _execute_order(self, order: LimitOrder) -> Transaction:
        token = self._registry.get(order.token_id)
        if token is None:
            raise PersistenceFailure(f"token {order.token_id} for order {order.id} is missing")
        with self._wallet_locks.hold(order.wallet_id):
            return self._positions.apply_buy_for_token(
                wallet_id=order.wallet_id,
                token=token,
                amount_sol=order.amount_sol,
                limit_order_id=order.id,
            )

    def get_token_data(self, contract_ref: str) -> Token:
        """
        Token record with a refreshed price when one is available.

        A failed refresh is not an error here: the token is returned with its last
        known price (possibly None).
        """
        token = self._guarded("get_token_data", lambda: self._registry.ensure(contract_ref), token_ref=contract_ref)
        self._resolver.resolve(token.contract_ref)
        return self._registry.get(token.id) or token

    # --- reads ---

    def get_holdings_view(self, wallet_id: str, *, refresh_prices: bool = True) -> List[HoldingView]:
        if refresh_prices:
            self._refresh_display_prices(wallet_id)
        return self._positions.compute_view(wallet_id)

    def get_transactions(self, wallet_id: str) -> List[Transaction]:
        return self._positions.transactions_for(wallet_id)

    def get_dashboard(self, active: Optional[ActiveWalletRef], *, refresh_prices: bool = True) -> Dashboard:
        if active is None:
            return Dashboard(active_wallet_id=None, sol_balance=None, total_holdings_usd=Decimal("0"), holdings=[])
        views = self.get_holdings_view(active.wallet_id, refresh_prices=refresh_prices)
        return Dashboard(
            active_wallet_id=active.wallet_id,
            sol_balance=self._custody.get_balance(active.wallet_id),
            total_holdings_usd=total_value_usd(views),
            holdings=views,
        )

    def _refresh_display_prices(self, wallet_id: str) -> None:
        for holding in self._positions.holdings_for(wallet_id):
            token = self._registry.get(holding.token_id)
            if token is None:
                continue
            # Display-grade: cached prices within the staleness window are fine.
            self._resolver.resolve(token.contract_ref, max_staleness_s=self._display_max_staleness_s)

    # --- settings ---

    def get_settings(self, wallet_id: str) -> Settings:
        rec = self._store.get(SETTINGS, str(wallet_id))
        if rec is None:
            return Settings(wallet_id=str(wallet_id))
        return Settings.from_record(rec)

    def update_settings(self, wallet_id: str, **patch: Any) -> Settings:
        req = parse_request(SettingsPatch, **patch)

        def _run() -> Settings:
            with self._wallet_locks.hold(str(wallet_id)):
                current = self.get_settings(wallet_id)
                updated = req.apply_to(current, now=self._clock())
                self._store.put(SETTINGS, updated.wallet_id, updated.to_record())
                return updated

        settings = self._guarded("update_settings", _run, wallet_id=wallet_id)
        log_event(
            logger,
            "settings.updated",
            wallet_id=settings.wallet_id,
            slippage_pct=settings.slippage_pct,
            mev_protection=settings.mev_protection,
            alert_mode=settings.alert_mode,
        )
        return settings

    # --- helpers ---

    def _guarded(self, op: str, fn: Callable[[], T], **ctx: Any) -> T:
        try:
            return fn()
        except LedgerError as e:
            log_event(
                logger,
                f"ledger.{op}.rejected",
                severity="WARNING",
                error=e.kind,
                error_message=e.message,
                **{k: v for k, v in ctx.items() if v is not None},
            )
            raise
        except ValueError as e:
            # Model-level assertion reached through an unvalidated path.
            log_event(logger, f"ledger.{op}.rejected", severity="WARNING", error="invalid_request", error_message=str(e))
            raise InvalidRequest(str(e)) from e
