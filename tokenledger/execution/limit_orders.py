from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from tokenledger.common.errors import InvalidRequest, LedgerError, OrderNotFound
from tokenledger.common.logging import log_event
from tokenledger.execution.locks import KeyedLocks
from tokenledger.ledger.models import LIMIT_ORDERS, LimitOrder, Transaction, utc_now
from tokenledger.persistence.store import RecordStore

logger = logging.getLogger(__name__)

ExecuteFn = Callable[[LimitOrder], Transaction]


@dataclass(frozen=True, slots=True)
class CancelOutcome:
    order_id: str
    cancelled: bool
    changed: bool


@dataclass(frozen=True, slots=True)
class OrderView:
    """
    An order plus its derived `reached` flag.

    `reached` is computed at read time from the token's last known price and is never
    persisted, so a price reversal can't leave a stale flag behind.
    """

    order: LimitOrder
    reached: bool

    def to_dict(self) -> Dict[str, Any]:
        o = self.order
        return {
            "id": o.id,
            "wallet_id": o.wallet_id,
            "token_id": o.token_id,
            "target_price_usd": str(o.target_price_usd),
            "amount_sol": str(o.amount_sol),
            "auto_execute": o.auto_execute,
            "is_active": o.is_active,
            "created_at": o.created_at.isoformat(),
            "executed_at": o.executed_at.isoformat() if o.executed_at else None,
            "reached": self.reached,
        }


@dataclass(frozen=True, slots=True)
class ExecutionFailure:
    order_id: str
    error: LedgerError

    def to_dict(self) -> Dict[str, Any]:
        return {"order_id": self.order_id, **self.error.to_dict()}


@dataclass(frozen=True, slots=True)
class EvaluationResult:
    token_id: str
    price_usd: Decimal
    triggered: List[str] = field(default_factory=list)
    reached: List[str] = field(default_factory=list)
    failures: List[ExecutionFailure] = field(default_factory=list)


class OrderBook:
    """
    Standing limit orders (buy-side) and their evaluation against price ticks.

    - `evaluate` is serialized per token so two concurrent ticks can't double-trigger.
    - Auto-execution re-reads `is_active` first; a cancel that lands mid-execution
      still applies to every later tick.
    - A failed execution leaves the order active for the next tick.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        token_locks: KeyedLocks | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._token_locks = token_locks or KeyedLocks(name="token")
        self._clock = clock

    def get(self, order_id: str) -> Optional[LimitOrder]:
        rec = self._store.get(LIMIT_ORDERS, str(order_id))
        return LimitOrder.from_record(rec) if rec else None

    def active_for_token(self, token_id: str) -> List[LimitOrder]:
        rows = self._store.query(LIMIT_ORDERS, token_id=token_id, is_active=True)
        out = [LimitOrder.from_record(r) for r in rows]
        out.sort(key=lambda o: (o.created_at, o.id))
        return out

    def active_token_ids(self) -> List[str]:
        rows = self._store.query(LIMIT_ORDERS, is_active=True)
        return sorted({str(r["token_id"]) for r in rows})

    def list_for_wallet(
        self, wallet_id: str, *, price_of: Callable[[str], Optional[Decimal]]
    ) -> List[OrderView]:
        orders = [LimitOrder.from_record(r) for r in self._store.query(LIMIT_ORDERS, wallet_id=wallet_id)]
        orders.sort(key=lambda o: (o.created_at, o.id))
        return [OrderView(order=o, reached=o.is_active and o.is_reached(price_of(o.token_id))) for o in orders]

    def create(
        self,
        *,
        wallet_id: str,
        token_id: str,
        target_price_usd: Decimal,
        amount_sol: Decimal,
        auto_execute: bool,
    ) -> LimitOrder:
        if target_price_usd <= 0:
            raise InvalidRequest("target_price_usd must be > 0")
        if amount_sol <= 0:
            raise InvalidRequest("amount_sol must be > 0")
        order = LimitOrder(
            id=uuid.uuid4().hex,
            wallet_id=wallet_id,
            token_id=token_id,
            target_price_usd=target_price_usd,
            amount_sol=amount_sol,
            auto_execute=bool(auto_execute),
            is_active=True,
            created_at=self._clock(),
            executed_at=None,
        )
        self._store.put(LIMIT_ORDERS, order.id, order.to_record())
        log_event(
            logger,
            "orders.created",
            order_id=order.id,
            wallet_id=wallet_id,
            token_id=token_id,
            target_price_usd=target_price_usd,
            amount_sol=amount_sol,
            auto_execute=order.auto_execute,
        )
        return order

    def cancel(self, order_id: str) -> CancelOutcome:
        order = self.get(order_id)
        if order is None:
            raise OrderNotFound(f"limit order {order_id} not found", details={"order_id": order_id})
        if not order.is_active:
            # Idempotent: already terminal, nothing to change.
            return CancelOutcome(order_id=order.id, cancelled=True, changed=False)

        self._store.put(LIMIT_ORDERS, order.id, replace(order, is_active=False).to_record())
        log_event(logger, "orders.cancelled", order_id=order.id, wallet_id=order.wallet_id, token_id=order.token_id)
        return CancelOutcome(order_id=order.id, cancelled=True, changed=True)

    def evaluate(self, token_id: str, current_price_usd: Decimal, *, execute: ExecuteFn) -> EvaluationResult:
        result = EvaluationResult(token_id=token_id, price_usd=current_price_usd)
        with self._token_locks.hold(token_id):
            for order in self.active_for_token(token_id):
                if not order.is_reached(current_price_usd):
                    continue
                if not order.auto_execute:
                    result.reached.append(order.id)
                    continue
                if self._execute_one(order.id, execute=execute, result=result):
                    result.triggered.append(order.id)
        return result

    def _execute_one(self, order_id: str, *, execute: ExecuteFn, result: EvaluationResult) -> bool:
        # Re-read: a cancel may have landed after the active scan.
        order = self.get(order_id)
        if order is None or not order.is_active:
            return False

        try:
            txn = execute(order)
        except LedgerError as e:
            log_event(
                logger,
                "orders.execution_failed",
                severity="WARNING",
                order_id=order.id,
                wallet_id=order.wallet_id,
                token_id=order.token_id,
                error=e.kind,
                error_message=e.message,
            )
            result.failures.append(ExecutionFailure(order_id=order.id, error=e))
            return False

        executed = replace(order, is_active=False, executed_at=self._clock())
        self._store.put(LIMIT_ORDERS, executed.id, executed.to_record())
        log_event(
            logger,
            "orders.executed",
            order_id=order.id,
            wallet_id=order.wallet_id,
            token_id=order.token_id,
            transaction_id=txn.id,
            price_usd=result.price_usd,
        )
        return True
