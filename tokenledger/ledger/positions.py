from __future__ import annotations

"""
Per-wallet token positions with weighted-average cost accounting.

This module provides:
- Pure state transition helpers (`accumulate_buy`, `reduce_for_sell`) with strict assertions:
  - a buy recomputes avg_cost_sol as a quantity-weighted average
  - a sell never changes avg_cost_sol and can never overdraw a holding
  - a holding that reaches exactly zero is removed (None), never stored at zero
- `PositionLedger`, which applies those transitions against the record store and
  the wallet custody collaborator as one unit of work.

Concurrency: callers must hold the per-wallet lock for the duration of
`apply_buy*` / `apply_sell` (see `tokenledger.execution.locks`).

Atomicity: mutations are staged in a `WriteBatch`. The balance movement happens
first; the batch commits only after it succeeds, and a failed commit reverses the
balance movement before the error propagates.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from tokenledger.common.errors import (
    HoldingNotFound,
    InsufficientBalance,
    InsufficientQuantity,
    InvalidRequest,
    PersistenceFailure,
)
from tokenledger.common.logging import log_event
from tokenledger.custody.wallets import WalletCustody
from tokenledger.ledger.models import HOLDINGS, TOKENS, TRANSACTIONS, Holding, Token, Transaction, utc_now
from tokenledger.ledger.pnl import HoldingView, build_holding_view
from tokenledger.ledger.tokens import TokenRegistry
from tokenledger.marketdata.rates import BuyQuote, RateModel
from tokenledger.persistence.store import RecordStore, WriteBatch

logger = logging.getLogger(__name__)


def accumulate_buy(
    *,
    holding: Optional[Holding],
    wallet_id: str,
    token_id: str,
    token_quantity: Decimal,
    price_per_token_sol: Decimal,
    value_usd: Optional[Decimal],
    now: datetime,
    holding_id: Optional[str] = None,
) -> Holding:
    """
    Pure transition: add `token_quantity` bought at `price_per_token_sol`.

      avg' = (q·avg + tq·p) / (q + tq)
      q'   = q + tq

    cost_basis_usd accumulates the USD value of each buy; once any contributing
    buy has no USD valuation the basis becomes unknown (None) for good.
    """
    if token_quantity <= 0:
        raise ValueError("token_quantity must be > 0")
    if price_per_token_sol < 0:
        raise ValueError("price_per_token_sol must be >= 0")

    if holding is None:
        return Holding(
            id=holding_id or uuid.uuid4().hex,
            wallet_id=wallet_id,
            token_id=token_id,
            quantity=token_quantity,
            avg_cost_sol=price_per_token_sol,
            cost_basis_usd=value_usd,
            created_at=now,
            updated_at=now,
        )

    if holding.wallet_id != wallet_id or holding.token_id != token_id:
        raise ValueError("holding does not belong to (wallet_id, token_id)")

    new_qty = holding.quantity + token_quantity
    new_avg = (holding.quantity * holding.avg_cost_sol + token_quantity * price_per_token_sol) / new_qty
    if holding.cost_basis_usd is None or value_usd is None:
        new_basis = None
    else:
        new_basis = holding.cost_basis_usd + value_usd
    return replace(holding, quantity=new_qty, avg_cost_sol=new_avg, cost_basis_usd=new_basis, updated_at=now)


def reduce_for_sell(*, holding: Holding, quantity: Decimal, now: datetime) -> Tuple[Optional[Holding], Decimal]:
    """
    Pure transition: remove `quantity` from `holding`.

    Returns (remaining holding or None when exactly zero, proceeds_sol). Proceeds are
    valued at the holding's average cost.
    """
    if quantity <= 0:
        raise ValueError("quantity must be > 0")
    if quantity > holding.quantity:
        raise InsufficientQuantity(
            f"cannot sell {quantity}: holding {holding.id} has {holding.quantity}",
            details={"holding_id": holding.id, "held": holding.quantity, "requested": quantity},
        )

    proceeds = quantity * holding.avg_cost_sol
    remaining = holding.quantity - quantity
    if remaining == 0:
        return None, proceeds

    basis = None
    if holding.cost_basis_usd is not None:
        basis = holding.cost_basis_usd * remaining / holding.quantity
    return replace(holding, quantity=remaining, cost_basis_usd=basis, updated_at=now), proceeds


class PositionLedger:
    def __init__(
        self,
        *,
        store: RecordStore,
        custody: WalletCustody,
        registry: TokenRegistry,
        rate_model: RateModel,
        credit_sell_proceeds: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._custody = custody
        self._registry = registry
        self._rate_model = rate_model
        self._credit_sell_proceeds = bool(credit_sell_proceeds)
        self._clock = clock

    # --- reads ---

    def get_holding(self, holding_id: str) -> Optional[Holding]:
        rec = self._store.get(HOLDINGS, str(holding_id))
        return Holding.from_record(rec) if rec else None

    def find_holding(self, wallet_id: str, token_id: str) -> Optional[Holding]:
        rows = self._store.query(HOLDINGS, wallet_id=wallet_id, token_id=token_id)
        if not rows:
            return None
        if len(rows) > 1:
            logger.error("ledger.duplicate_holdings wallet_id=%s token_id=%s count=%d", wallet_id, token_id, len(rows))
        return Holding.from_record(rows[0])

    def holdings_for(self, wallet_id: str) -> List[Holding]:
        out = [Holding.from_record(r) for r in self._store.query(HOLDINGS, wallet_id=wallet_id)]
        out.sort(key=lambda h: (h.created_at, h.id))
        return out

    def transactions_for(self, wallet_id: str) -> List[Transaction]:
        out = [Transaction.from_record(r) for r in self._store.query(TRANSACTIONS, wallet_id=wallet_id)]
        out.sort(key=lambda t: (t.created_at, t.id), reverse=True)
        return out

    def compute_view(self, wallet_id: str) -> List[HoldingView]:
        views: List[HoldingView] = []
        for h in self.holdings_for(wallet_id):
            token = self._registry.get(h.token_id)
            if token is None:
                # Referential break in storage; surface it rather than valuing at zero.
                raise PersistenceFailure(
                    f"token {h.token_id} referenced by holding {h.id} is missing",
                    details={"kind": TOKENS, "holding_id": h.id},
                )
            views.append(build_holding_view(h, token))
        return views

    # --- mutations (caller holds the wallet lock) ---

    def apply_buy(
        self,
        *,
        wallet_id: str,
        token_ref: str,
        amount_sol: Decimal,
        take_profit_pct: Optional[Decimal] = None,
        stop_loss_pct: Optional[Decimal] = None,
    ) -> Transaction:
        token = self._registry.ensure(token_ref)
        return self.apply_buy_for_token(
            wallet_id=wallet_id,
            token=token,
            amount_sol=amount_sol,
            take_profit_pct=take_profit_pct,
            stop_loss_pct=stop_loss_pct,
        )

    def apply_buy_for_token(
        self,
        *,
        wallet_id: str,
        token: Token,
        amount_sol: Decimal,
        take_profit_pct: Optional[Decimal] = None,
        stop_loss_pct: Optional[Decimal] = None,
        limit_order_id: Optional[str] = None,
    ) -> Transaction:
        if amount_sol <= 0:
            raise InvalidRequest("amount_sol must be > 0")

        balance = self._custody.get_balance(wallet_id)
        if balance < amount_sol:
            raise InsufficientBalance(
                f"insufficient SOL balance: balance {balance} < amount {amount_sol}",
                details={"wallet_id": wallet_id, "balance_sol": balance, "amount_sol": amount_sol},
            )

        quote: BuyQuote = self._rate_model.quote_buy(token.contract_ref, amount_sol)
        now = self._clock()
        holding = accumulate_buy(
            holding=self.find_holding(wallet_id, token.id),
            wallet_id=wallet_id,
            token_id=token.id,
            token_quantity=quote.token_quantity,
            price_per_token_sol=quote.price_per_token_sol,
            value_usd=quote.value_usd,
            now=now,
        )
        txn = Transaction(
            id=uuid.uuid4().hex,
            wallet_id=wallet_id,
            token_id=token.id,
            kind="buy",
            amount_sol=amount_sol,
            token_quantity=quote.token_quantity,
            price_per_token_sol=quote.price_per_token_sol,
            take_profit_pct=take_profit_pct,
            stop_loss_pct=stop_loss_pct,
            limit_order_id=limit_order_id,
            status="completed",
            created_at=now,
        )

        batch = WriteBatch()
        batch.put(HOLDINGS, holding.id, holding.to_record())
        batch.put(TRANSACTIONS, txn.id, txn.to_record())

        # Debit first: a rejected debit leaves nothing staged behind.
        self._custody.debit(wallet_id, amount_sol)
        self._commit_or_reverse(
            batch,
            reverse=lambda: self._custody.credit(wallet_id, amount_sol),
            op="buy",
            wallet_id=wallet_id,
        )

        log_event(
            logger,
            "ledger.buy.completed",
            wallet_id=wallet_id,
            token_id=token.id,
            transaction_id=txn.id,
            amount_sol=amount_sol,
            token_quantity=quote.token_quantity,
            price_per_token_sol=quote.price_per_token_sol,
            avg_cost_sol=holding.avg_cost_sol,
            quote_source=quote.source,
            limit_order_id=limit_order_id,
        )
        return txn

    def apply_sell(self, *, wallet_id: str, holding_id: str, quantity: Decimal) -> Transaction:
        if quantity <= 0:
            raise InvalidRequest("quantity must be > 0")

        holding = self.get_holding(holding_id)
        if holding is None or holding.wallet_id != wallet_id:
            raise HoldingNotFound(
                f"holding {holding_id} not found for wallet {wallet_id}",
                details={"holding_id": holding_id, "wallet_id": wallet_id},
            )

        now = self._clock()
        remaining, proceeds = reduce_for_sell(holding=holding, quantity=quantity, now=now)
        txn = Transaction(
            id=uuid.uuid4().hex,
            wallet_id=wallet_id,
            token_id=holding.token_id,
            kind="sell",
            amount_sol=proceeds,
            token_quantity=quantity,
            price_per_token_sol=holding.avg_cost_sol,
            status="pending",
            created_at=now,
        )

        batch = WriteBatch()
        if remaining is None:
            batch.delete(HOLDINGS, holding.id)
        else:
            batch.put(HOLDINGS, holding.id, remaining.to_record())
        batch.put(TRANSACTIONS, txn.id, txn.to_record())

        reverse: Callable[[], None] = lambda: None  # noqa: E731
        if self._credit_sell_proceeds and proceeds > 0:
            self._custody.credit(wallet_id, proceeds)
            reverse = lambda: self._custody.debit(wallet_id, proceeds)  # noqa: E731
        self._commit_or_reverse(batch, reverse=reverse, op="sell", wallet_id=wallet_id)

        log_event(
            logger,
            "ledger.sell.completed",
            wallet_id=wallet_id,
            token_id=holding.token_id,
            holding_id=holding.id,
            transaction_id=txn.id,
            quantity=quantity,
            proceeds_sol=proceeds,
            remaining_quantity=remaining.quantity if remaining is not None else Decimal("0"),
            holding_closed=remaining is None,
        )
        return txn

    def _commit_or_reverse(self, batch: WriteBatch, *, reverse: Callable[[], None], op: str, wallet_id: str) -> None:
        try:
            batch.commit(self._store)
        except Exception as e:
            try:
                reverse()
            except Exception as rev_err:  # noqa: BLE001
                logger.error(
                    "ledger.%s.reverse_failed wallet_id=%s error=%s",
                    op,
                    wallet_id,
                    f"{type(rev_err).__name__}: {rev_err}",
                )
            if isinstance(e, PersistenceFailure):
                raise
            raise PersistenceFailure(f"{op} commit failed: {type(e).__name__}: {e}") from e
