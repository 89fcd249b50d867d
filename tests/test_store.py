from __future__ import annotations

from tokenledger.persistence.store import InMemoryRecordStore, WriteBatch


def test_put_get_query_delete() -> None:
    s = InMemoryRecordStore()
    s.put("holdings", "h1", {"id": "h1", "wallet_id": "w1", "token_id": "t1"})
    s.put("holdings", "h2", {"id": "h2", "wallet_id": "w1", "token_id": "t2"})
    s.put("holdings", "h3", {"id": "h3", "wallet_id": "w2", "token_id": "t1"})

    assert s.get("holdings", "h1")["token_id"] == "t1"
    assert {r["id"] for r in s.query("holdings", wallet_id="w1")} == {"h1", "h2"}
    assert [r["id"] for r in s.query("holdings", wallet_id="w1", token_id="t1")] == ["h1"]
    assert len(s.query("holdings")) == 3

    s.delete("holdings", "h1")
    s.delete("holdings", "h1")
    assert s.get("holdings", "h1") is None
    assert s.count("holdings") == 2


def test_records_are_copied_in_and_out() -> None:
    s = InMemoryRecordStore()
    rec = {"id": "t1", "tags": ["a"]}
    s.put("tokens", "t1", rec)
    rec["tags"].append("b")

    got = s.get("tokens", "t1")
    assert got["tags"] == ["a"]
    got["tags"].append("c")
    assert s.get("tokens", "t1")["tags"] == ["a"]


def test_write_batch_applies_puts_and_deletes_together() -> None:
    s = InMemoryRecordStore()
    s.put("holdings", "h1", {"id": "h1"})

    batch = WriteBatch()
    batch.delete("holdings", "h1").put("transactions", "x1", {"id": "x1"})
    assert len(batch) == 2
    batch.commit(s)

    assert s.get("holdings", "h1") is None
    assert s.get("transactions", "x1") == {"id": "x1"}


def test_empty_batch_does_not_touch_store() -> None:
    class _Recording(InMemoryRecordStore):
        def __init__(self) -> None:
            super().__init__()
            self.commits = 0

        def commit(self, writes) -> None:
            self.commits += 1
            super().commit(writes)

    s = _Recording()
    WriteBatch().commit(s)
    assert s.commits == 0
