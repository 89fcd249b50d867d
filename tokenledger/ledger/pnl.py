from __future__ import annotations

"""
Valuation + unrealized P&L over current holdings.

Policy:
- current_value_usd = quantity * token.last_price_usd (0 when the price is unknown)
- pnl_pct = (current_value_usd - cost_basis_usd) / cost_basis_usd * 100, only when
  cost_basis_usd > 0 AND current_value_usd > 0; otherwise 0. There is no
  meaningful P&L without both a cost basis and a live valuation.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from tokenledger.ledger.models import Holding, Token

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def current_value_usd(quantity: Decimal, last_price_usd: Optional[Decimal]) -> Decimal:
    if last_price_usd is None:
        return ZERO
    return quantity * last_price_usd


def pnl_pct(cost_basis_usd: Optional[Decimal], value_usd: Decimal) -> Decimal:
    if cost_basis_usd is None or cost_basis_usd <= 0 or value_usd <= 0:
        return ZERO
    return (value_usd - cost_basis_usd) / cost_basis_usd * HUNDRED


def weighted_average_cost(lots: Iterable[Tuple[Decimal, Decimal]]) -> Decimal:
    """
    Σ(quantity_i · price_i) / Σ(quantity_i) over (quantity, price) lots.

    Reference formula for the incremental update done on every buy.
    """
    total_qty = ZERO
    total_cost = ZERO
    for qty, price in lots:
        if qty <= 0:
            raise ValueError("lot quantity must be > 0")
        total_qty += qty
        total_cost += qty * price
    if total_qty == 0:
        raise ValueError("at least one lot is required")
    return total_cost / total_qty


@dataclass(frozen=True, slots=True)
class HoldingView:
    holding: Holding
    token: Token
    current_value_usd: Decimal
    pnl_pct: Decimal

    def to_dict(self) -> Dict[str, Any]:
        h = self.holding
        t = self.token
        return {
            "id": h.id,
            "wallet_id": h.wallet_id,
            "token_id": h.token_id,
            "quantity": str(h.quantity),
            "avg_cost_sol": str(h.avg_cost_sol),
            "cost_basis_usd": None if h.cost_basis_usd is None else str(h.cost_basis_usd),
            "token": {
                "id": t.id,
                "contract_ref": t.contract_ref,
                "name": t.name,
                "symbol": t.symbol,
                "decimals": t.decimals,
                "last_price_usd": None if t.last_price_usd is None else str(t.last_price_usd),
            },
            "current_value_usd": str(self.current_value_usd),
            "pnl_pct": str(self.pnl_pct),
        }


def build_holding_view(holding: Holding, token: Token) -> HoldingView:
    value = current_value_usd(holding.quantity, token.last_price_usd)
    return HoldingView(
        holding=holding,
        token=token,
        current_value_usd=value,
        pnl_pct=pnl_pct(holding.cost_basis_usd, value),
    )


def total_value_usd(views: Sequence[HoldingView]) -> Decimal:
    return sum((v.current_value_usd for v in views), ZERO)
