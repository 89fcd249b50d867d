"""
Token positions + P&L (record-store backed).

This package is intentionally split into:
- models: immutable record shapes (Token, Holding, Transaction, LimitOrder, Settings)
- positions: pure buy/sell transitions + `PositionLedger` unit of work
- pnl: pure valuation functions (no storage dependency) for deterministic testing
- tokens: lazy Token creation and forward-only price write-through
"""
