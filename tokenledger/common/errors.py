from __future__ import annotations

"""
Error taxonomy surfaced to ledger callers.

Every error carries a stable `kind` string (safe to branch on / serialize) plus a
human-readable message. Callers that speak a wire protocol should use `to_dict()`.
"""

from typing import Any, Dict, Optional


class LedgerError(RuntimeError):
    """Base error for all ledger operations."""

    kind: str = "ledger_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = str(message)
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.details:
            out["details"] = {k: str(v) for k, v in self.details.items()}
        return out


class InvalidRequest(LedgerError):
    """Raised for malformed inputs (non-positive amounts, out-of-range fields)."""

    kind = "invalid_request"


class WalletNotFound(LedgerError):
    kind = "wallet_not_found"


class InsufficientBalance(LedgerError):
    """Raised when a wallet's SOL balance cannot cover a debit."""

    kind = "insufficient_balance"


class InsufficientQuantity(LedgerError):
    """Raised when a sell would overdraw a holding."""

    kind = "insufficient_quantity"


class HoldingNotFound(LedgerError):
    kind = "holding_not_found"


class OrderNotFound(LedgerError):
    """Raised for a limit order id that never existed (not for an inactive one)."""

    kind = "order_not_found"


class PriceUnavailable(LedgerError):
    """All price providers failed. Recoverable: callers may retry or defer."""

    kind = "price_unavailable"


class PersistenceFailure(LedgerError):
    """Opaque passthrough from the storage collaborator."""

    kind = "persistence_failure"


__all__ = [
    "HoldingNotFound",
    "InsufficientBalance",
    "InsufficientQuantity",
    "InvalidRequest",
    "LedgerError",
    "OrderNotFound",
    "PersistenceFailure",
    "PriceUnavailable",
    "WalletNotFound",
]
