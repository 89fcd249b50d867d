"""
Persistence collaborators for the ledger.

- store: `RecordStore` contract, `WriteBatch` staging, in-memory backend
- firestore_store: Firestore backend (tenants/{tenant_id}/{kind}/{key})
"""

from tokenledger.persistence.store import InMemoryRecordStore, RecordStore, Write, WriteBatch

__all__ = ["InMemoryRecordStore", "RecordStore", "Write", "WriteBatch"]
