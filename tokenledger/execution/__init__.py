"""
Limit orders and the mutual-exclusion scopes that serialize ledger mutations.
"""
