from __future__ import annotations

"""
Keyed record storage used by the ledger.

The ledger only needs get/put/delete/query per collection ("kind") plus an atomic
multi-write `commit`. Anything that can provide those (in-memory dicts, Firestore)
is a valid backend; no ledger logic depends on a specific engine.

Mutations that must land together are staged in a `WriteBatch` and committed in
one call, so a failure at commit time leaves no partial state.
"""

import copy
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable


@dataclass(frozen=True, slots=True)
class Write:
    """A single staged mutation. `record=None` means delete."""

    kind: str
    key: str
    record: Optional[Dict[str, Any]]

    @property
    def is_delete(self) -> bool:
        return self.record is None


@runtime_checkable
class RecordStore(Protocol):
    """
    Storage collaborator contract.

    - `get` returns a copy of the stored record or None.
    - `query` returns all records of `kind` whose fields equal every `equals` item.
    - `commit` applies all writes atomically (all or nothing).
    - Implementations raise `PersistenceFailure` for backend errors.
    """

    def get(self, kind: str, key: str) -> Optional[Dict[str, Any]]: ...

    def put(self, kind: str, key: str, record: Mapping[str, Any]) -> None: ...

    def delete(self, kind: str, key: str) -> None: ...

    def query(self, kind: str, **equals: Any) -> List[Dict[str, Any]]: ...

    def commit(self, writes: Sequence[Write]) -> None: ...


class WriteBatch:
    """
    Stage puts/deletes, then commit them together.

    Later writes to the same (kind, key) replace earlier ones in the batch.
    """

    def __init__(self) -> None:
        self._writes: Dict[tuple[str, str], Write] = {}

    def put(self, kind: str, key: str, record: Mapping[str, Any]) -> "WriteBatch":
        self._writes[(kind, key)] = Write(kind=kind, key=str(key), record=dict(record))
        return self

    def delete(self, kind: str, key: str) -> "WriteBatch":
        self._writes[(kind, key)] = Write(kind=kind, key=str(key), record=None)
        return self

    def writes(self) -> List[Write]:
        return list(self._writes.values())

    def __len__(self) -> int:
        return len(self._writes)

    def commit(self, store: RecordStore) -> None:
        if not self._writes:
            return
        store.commit(self.writes())


class InMemoryRecordStore:
    """
    Thread-safe in-process record store.

    Records are deep-copied on the way in and out so callers can never mutate
    stored state by accident.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def get(self, kind: str, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            rec = self._data.get(kind, {}).get(str(key))
            return copy.deepcopy(rec) if rec is not None else None

    def put(self, kind: str, key: str, record: Mapping[str, Any]) -> None:
        with self._lock:
            self._data.setdefault(kind, {})[str(key)] = copy.deepcopy(dict(record))

    def delete(self, kind: str, key: str) -> None:
        with self._lock:
            self._data.get(kind, {}).pop(str(key), None)

    def query(self, kind: str, **equals: Any) -> List[Dict[str, Any]]:
        with self._lock:
            rows = list(self._data.get(kind, {}).values())
            out = [r for r in rows if all(r.get(k) == v for k, v in equals.items())]
            return copy.deepcopy(out)

    def commit(self, writes: Sequence[Write]) -> None:
        staged = [(w.kind, w.key, copy.deepcopy(w.record)) for w in writes]
        with self._lock:
            for kind, key, record in staged:
                if record is None:
                    self._data.get(kind, {}).pop(key, None)
                else:
                    self._data.setdefault(kind, {})[key] = record

    def count(self, kind: str) -> int:
        with self._lock:
            return len(self._data.get(kind, {}))


__all__ = ["InMemoryRecordStore", "RecordStore", "Write", "WriteBatch"]
