from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar

from tokenledger.common.errors import PersistenceFailure
from tokenledger.persistence.firestore_retry import with_firestore_retry
from tokenledger.persistence.store import Write

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Firestore rejects batches above this size.
MAX_BATCH_WRITES = 500


class FirestoreRecordStore:
    """
    Firestore-backed record store.

    Storage:
      tenants/{tenant_id}/{kind}/{key}

    Semantics:
    - `commit(...)` uses a single Firestore write batch (atomic).
    - Transient API errors are retried; anything left over surfaces as `PersistenceFailure`.
    """

    def __init__(self, *, tenant_id: str, db: Any | None = None, project_id: str | None = None) -> None:
        tenant_id = str(tenant_id or "").strip()
        if not tenant_id:
            raise ValueError("tenant_id is required")
        self._tenant_id = tenant_id
        self._project_id = project_id
        self._db = db

    def _client(self):
        if self._db is None:
            from tokenledger.persistence.firebase_client import get_firestore_client

            self._db = get_firestore_client(project_id=self._project_id)
        return self._db

    def _collection(self, kind: str):
        return self._client().collection("tenants").document(self._tenant_id).collection(str(kind))

    def _call(self, op: str, fn: Callable[[], T]) -> T:
        try:
            return with_firestore_retry(fn)
        except PersistenceFailure:
            raise
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "store.firestore.failed op=%s tenant_id=%s error=%s",
                op,
                self._tenant_id,
                f"{type(e).__name__}: {e}",
            )
            raise PersistenceFailure(f"firestore {op} failed: {type(e).__name__}: {e}") from e

    def get(self, kind: str, key: str) -> Optional[Dict[str, Any]]:
        ref = self._collection(kind).document(str(key))
        snap = self._call("get", lambda: ref.get())
        if not getattr(snap, "exists", False):
            return None
        return dict(snap.to_dict() or {})

    def put(self, kind: str, key: str, record: Mapping[str, Any]) -> None:
        ref = self._collection(kind).document(str(key))
        payload = dict(record)
        self._call("put", lambda: ref.set(payload))

    def delete(self, kind: str, key: str) -> None:
        ref = self._collection(kind).document(str(key))
        self._call("delete", lambda: ref.delete())

    def query(self, kind: str, **equals: Any) -> List[Dict[str, Any]]:
        q = self._collection(kind)
        for field_name, value in equals.items():
            q = q.where(str(field_name), "==", value)
        snaps = self._call("query", lambda: list(q.stream()))
        return [dict(s.to_dict() or {}) for s in snaps]

    def commit(self, writes: Sequence[Write]) -> None:
        writes = list(writes)
        if not writes:
            return
        if len(writes) > MAX_BATCH_WRITES:
            raise PersistenceFailure(f"batch too large: {len(writes)} > {MAX_BATCH_WRITES}")

        def _commit() -> None:
            batch = self._client().batch()
            for w in writes:
                ref = self._collection(w.kind).document(w.key)
                if w.record is None:
                    batch.delete(ref)
                else:
                    batch.set(ref, dict(w.record))
            batch.commit()

        self._call("commit", _commit)
