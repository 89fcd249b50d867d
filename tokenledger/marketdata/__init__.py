"""
Market data for the ledger.

- providers: HTTP price/metadata providers (Jupiter, CoinGecko, Solana RPC)
- prices: ordered-fallback `PriceResolver` with a per-token cache
- rates: SOL -> token conversion used by the buy path
"""
