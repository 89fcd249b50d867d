from __future__ import annotations

"""
Immutable record shapes for the ledger.

Each model round-trips through a plain dict (`to_record` / `from_record`) so the
persistence layer never needs to know about these classes. Decimals are stored as
strings to keep full precision on any backend.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Literal, Mapping, Optional

TransactionKind = Literal["buy", "sell"]
TransactionStatus = Literal["pending", "completed", "failed"]
AlertMode = Literal["popup", "silent"]

TRANSACTION_KINDS = frozenset({"buy", "sell"})
TRANSACTION_STATUSES = frozenset({"pending", "completed", "failed"})
ALERT_MODES = frozenset({"popup", "silent"})

# Record-store collection names.
TOKENS = "tokens"
HOLDINGS = "holdings"
TRANSACTIONS = "transactions"
LIMIT_ORDERS = "limit_orders"
SETTINGS = "settings"

DEFAULT_SLIPPAGE_PCT = Decimal("0.5")
DEFAULT_MEV_PROTECTION = True
DEFAULT_ALERT_MODE: AlertMode = "popup"


def to_decimal(v: Any) -> Decimal:
    """
    Convert a numeric-ish value to Decimal safely.

    IMPORTANT:
    - Never call Decimal(float) directly (binary float artifacts).
    - Use Decimal(str(x)) for int/float inputs.
    """
    if isinstance(v, bool):
        raise TypeError("Expected number-like value, got bool")
    if isinstance(v, Decimal):
        return v
    if isinstance(v, (int, float)):
        return Decimal(str(v))
    if isinstance(v, str):
        s = v.strip()
        try:
            return Decimal(s)
        except InvalidOperation as e:
            raise TypeError(f"Expected number-like value, got {v!r}") from e
    raise TypeError(f"Expected number-like value, got {type(v).__name__}")


def _opt_decimal(v: Any) -> Optional[Decimal]:
    if v is None or v == "":
        return None
    return to_decimal(v)


def _opt_str(v: Optional[Decimal]) -> Optional[str]:
    return None if v is None else str(v)


def _as_utc(v: Any) -> Optional[datetime]:
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        dt = v
    elif isinstance(v, str):
        dt = datetime.fromisoformat(v.replace("Z", "+00:00"))
    else:
        raise TypeError(f"Expected datetime, got {type(v).__name__}")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Token:
    id: str
    contract_ref: str
    decimals: int
    created_at: datetime
    name: Optional[str] = None
    symbol: Optional[str] = None
    last_price_usd: Optional[Decimal] = None
    price_updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.contract_ref:
            raise ValueError("contract_ref is required")
        if self.decimals < 0:
            raise ValueError("decimals must be >= 0")

    def with_price(self, price_usd: Decimal, at: datetime) -> "Token":
        return replace(self, last_price_usd=price_usd, price_updated_at=at)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "contract_ref": self.contract_ref,
            "decimals": int(self.decimals),
            "name": self.name,
            "symbol": self.symbol,
            "last_price_usd": _opt_str(self.last_price_usd),
            "price_updated_at": self.price_updated_at,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_record(d: Mapping[str, Any]) -> "Token":
        return Token(
            id=str(d["id"]),
            contract_ref=str(d["contract_ref"]),
            decimals=int(d.get("decimals") or 0),
            name=d.get("name"),
            symbol=d.get("symbol"),
            last_price_usd=_opt_decimal(d.get("last_price_usd")),
            price_updated_at=_as_utc(d.get("price_updated_at")),
            created_at=_as_utc(d.get("created_at")) or utc_now(),
        )


@dataclass(frozen=True, slots=True)
class Holding:
    """
    A wallet's current position in one token (unique per (wallet_id, token_id)).

    - `avg_cost_sol` is the quantity-weighted average purchase price per unit.
    - `cost_basis_usd` is the USD paid for the quantity currently held; None when
      any contributing buy had no USD valuation.
    """

    id: str
    wallet_id: str
    token_id: str
    quantity: Decimal
    avg_cost_sol: Decimal
    created_at: datetime
    updated_at: datetime
    cost_basis_usd: Optional[Decimal] = None

    def __post_init__(self) -> None:
        if self.quantity < 0:
            raise ValueError("quantity must be >= 0")
        if self.avg_cost_sol < 0:
            raise ValueError("avg_cost_sol must be >= 0")

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "wallet_id": self.wallet_id,
            "token_id": self.token_id,
            "quantity": str(self.quantity),
            "avg_cost_sol": str(self.avg_cost_sol),
            "cost_basis_usd": _opt_str(self.cost_basis_usd),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_record(d: Mapping[str, Any]) -> "Holding":
        return Holding(
            id=str(d["id"]),
            wallet_id=str(d["wallet_id"]),
            token_id=str(d["token_id"]),
            quantity=to_decimal(d["quantity"]),
            avg_cost_sol=to_decimal(d["avg_cost_sol"]),
            cost_basis_usd=_opt_decimal(d.get("cost_basis_usd")),
            created_at=_as_utc(d.get("created_at")) or utc_now(),
            updated_at=_as_utc(d.get("updated_at")) or utc_now(),
        )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    Immutable, append-only record of a buy or sell.

    Only `status` may transition after creation.
    """

    id: str
    wallet_id: str
    token_id: str
    kind: TransactionKind
    amount_sol: Decimal
    token_quantity: Decimal
    price_per_token_sol: Decimal
    status: TransactionStatus
    created_at: datetime
    take_profit_pct: Optional[Decimal] = None
    stop_loss_pct: Optional[Decimal] = None
    transaction_hash: Optional[str] = None
    limit_order_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind not in TRANSACTION_KINDS:
            raise ValueError("kind must be 'buy' or 'sell'")
        if self.status not in TRANSACTION_STATUSES:
            raise ValueError(f"status must be one of {sorted(TRANSACTION_STATUSES)}")

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "wallet_id": self.wallet_id,
            "token_id": self.token_id,
            "kind": self.kind,
            "amount_sol": str(self.amount_sol),
            "token_quantity": str(self.token_quantity),
            "price_per_token_sol": str(self.price_per_token_sol),
            "take_profit_pct": _opt_str(self.take_profit_pct),
            "stop_loss_pct": _opt_str(self.stop_loss_pct),
            "transaction_hash": self.transaction_hash,
            "limit_order_id": self.limit_order_id,
            "status": self.status,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_record(d: Mapping[str, Any]) -> "Transaction":
        return Transaction(
            id=str(d["id"]),
            wallet_id=str(d["wallet_id"]),
            token_id=str(d["token_id"]),
            kind=d["kind"],
            amount_sol=to_decimal(d["amount_sol"]),
            token_quantity=to_decimal(d["token_quantity"]),
            price_per_token_sol=to_decimal(d["price_per_token_sol"]),
            take_profit_pct=_opt_decimal(d.get("take_profit_pct")),
            stop_loss_pct=_opt_decimal(d.get("stop_loss_pct")),
            transaction_hash=d.get("transaction_hash"),
            limit_order_id=d.get("limit_order_id"),
            status=d["status"],
            created_at=_as_utc(d.get("created_at")) or utc_now(),
        )


@dataclass(frozen=True, slots=True)
class LimitOrder:
    """
    Standing buy instruction: spend `amount_sol` once the price reaches `target_price_usd`.

    Inactive is terminal (cancelled, or executed with `executed_at` set).
    """

    id: str
    wallet_id: str
    token_id: str
    target_price_usd: Decimal
    amount_sol: Decimal
    auto_execute: bool
    is_active: bool
    created_at: datetime
    executed_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.target_price_usd <= 0:
            raise ValueError("target_price_usd must be > 0")
        if self.amount_sol <= 0:
            raise ValueError("amount_sol must be > 0")

    def is_reached(self, price_usd: Optional[Decimal]) -> bool:
        return price_usd is not None and price_usd >= self.target_price_usd

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "wallet_id": self.wallet_id,
            "token_id": self.token_id,
            "target_price_usd": str(self.target_price_usd),
            "amount_sol": str(self.amount_sol),
            "auto_execute": bool(self.auto_execute),
            "is_active": bool(self.is_active),
            "created_at": self.created_at,
            "executed_at": self.executed_at,
        }

    @staticmethod
    def from_record(d: Mapping[str, Any]) -> "LimitOrder":
        return LimitOrder(
            id=str(d["id"]),
            wallet_id=str(d["wallet_id"]),
            token_id=str(d["token_id"]),
            target_price_usd=to_decimal(d["target_price_usd"]),
            amount_sol=to_decimal(d["amount_sol"]),
            auto_execute=bool(d.get("auto_execute")),
            is_active=bool(d.get("is_active")),
            created_at=_as_utc(d.get("created_at")) or utc_now(),
            executed_at=_as_utc(d.get("executed_at")),
        )


@dataclass(frozen=True, slots=True)
class Settings:
    wallet_id: str
    slippage_pct: Decimal = DEFAULT_SLIPPAGE_PCT
    mev_protection: bool = DEFAULT_MEV_PROTECTION
    alert_mode: AlertMode = DEFAULT_ALERT_MODE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not (Decimal("0") <= self.slippage_pct <= Decimal("100")):
            raise ValueError("slippage_pct must be within [0, 100]")
        if self.alert_mode not in ALERT_MODES:
            raise ValueError("alert_mode must be 'popup' or 'silent'")

    @property
    def is_default(self) -> bool:
        """True when read from defaults (never written for this wallet)."""
        return self.created_at is None

    def to_record(self) -> dict[str, Any]:
        return {
            "wallet_id": self.wallet_id,
            "slippage_pct": str(self.slippage_pct),
            "mev_protection": bool(self.mev_protection),
            "alert_mode": self.alert_mode,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_record(d: Mapping[str, Any]) -> "Settings":
        return Settings(
            wallet_id=str(d["wallet_id"]),
            slippage_pct=to_decimal(d.get("slippage_pct", DEFAULT_SLIPPAGE_PCT)),
            mev_protection=bool(d.get("mev_protection", DEFAULT_MEV_PROTECTION)),
            alert_mode=d.get("alert_mode") or DEFAULT_ALERT_MODE,
            created_at=_as_utc(d.get("created_at")),
            updated_at=_as_utc(d.get("updated_at")),
        )
