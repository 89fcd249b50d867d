from __future__ import annotations

"""
Wallet custody collaborator.

The ledger never owns SOL balances; it asks custody to check, debit and credit them.
Key storage and address derivation live outside this package. `InMemoryWalletCustody`
is the local/test implementation.
"""

import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, runtime_checkable

from tokenledger.common.errors import InsufficientBalance, InvalidRequest, WalletNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Wallet:
    id: str
    sol_balance: Decimal

    def __post_init__(self) -> None:
        if self.sol_balance < 0:
            raise ValueError("sol_balance must be >= 0")


@dataclass(frozen=True, slots=True)
class ActiveWalletRef:
    """Explicit handle to the single active wallet (owned by custody, passed in by callers)."""

    wallet_id: str


@runtime_checkable
class WalletCustody(Protocol):
    def get_balance(self, wallet_id: str) -> Decimal: ...

    def debit(self, wallet_id: str, amount_sol: Decimal) -> None: ...

    def credit(self, wallet_id: str, amount_sol: Decimal) -> None: ...


class InMemoryWalletCustody:
    """
    Thread-safe in-process custody.

    - `debit` is check-and-subtract under one lock; it raises `InsufficientBalance`
      rather than letting a balance go negative.
    - At most one wallet is active at a time; "no active wallet" is valid.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._balances: Dict[str, Decimal] = {}
        self._active_id: Optional[str] = None

    def add_wallet(self, wallet_id: str, sol_balance: Decimal = Decimal("0"), *, active: bool = False) -> Wallet:
        wid = str(wallet_id or "").strip()
        if not wid:
            raise InvalidRequest("wallet_id is required")
        wallet = Wallet(id=wid, sol_balance=sol_balance)
        with self._lock:
            self._balances[wid] = wallet.sol_balance
            if active:
                self._active_id = wid
        return wallet

    def remove_wallet(self, wallet_id: str) -> None:
        with self._lock:
            if wallet_id not in self._balances:
                raise WalletNotFound(f"wallet {wallet_id} not found")
            del self._balances[wallet_id]
            if self._active_id == wallet_id:
                self._active_id = None

    def wallets(self) -> List[Wallet]:
        with self._lock:
            return [Wallet(id=k, sol_balance=v) for k, v in self._balances.items()]

    def get_wallet(self, wallet_id: str) -> Wallet:
        with self._lock:
            bal = self._balances.get(wallet_id)
        if bal is None:
            raise WalletNotFound(f"wallet {wallet_id} not found")
        return Wallet(id=wallet_id, sol_balance=bal)

    def set_active(self, wallet_id: Optional[str]) -> Optional[ActiveWalletRef]:
        with self._lock:
            if wallet_id is not None and wallet_id not in self._balances:
                raise WalletNotFound(f"wallet {wallet_id} not found")
            self._active_id = wallet_id
        return ActiveWalletRef(wallet_id=wallet_id) if wallet_id is not None else None

    def active(self) -> Optional[ActiveWalletRef]:
        with self._lock:
            return ActiveWalletRef(wallet_id=self._active_id) if self._active_id is not None else None

    def get_balance(self, wallet_id: str) -> Decimal:
        return self.get_wallet(wallet_id).sol_balance

    def debit(self, wallet_id: str, amount_sol: Decimal) -> None:
        if amount_sol <= 0:
            raise InvalidRequest("debit amount must be > 0")
        with self._lock:
            bal = self._balances.get(wallet_id)
            if bal is None:
                raise WalletNotFound(f"wallet {wallet_id} not found")
            if bal < amount_sol:
                raise InsufficientBalance(
                    f"insufficient SOL balance: balance {bal} < amount {amount_sol}",
                    details={"wallet_id": wallet_id, "balance_sol": bal, "amount_sol": amount_sol},
                )
            self._balances[wallet_id] = bal - amount_sol

    def credit(self, wallet_id: str, amount_sol: Decimal) -> None:
        if amount_sol < 0:
            raise InvalidRequest("credit amount must be >= 0")
        with self._lock:
            bal = self._balances.get(wallet_id)
            if bal is None:
                raise WalletNotFound(f"wallet {wallet_id} not found")
            self._balances[wallet_id] = bal + amount_sol
