"""Position & order ledger for per-wallet token holdings."""

__version__ = "0.1.0"
