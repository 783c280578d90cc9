"""Unit tests for the canonical contact store."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta

import pytest

from contactsync.exceptions import ContactNotFoundError, ErrorKind
from contactsync.models import HistoryEvent
from contactsync.store import ContactStore, MemoryStorage

from .conftest import FIXED_NOW

pytestmark = pytest.mark.unit


class _BrokenStorage:
    def __init__(self) -> None:
        self.saves = 0

    async def load(self, key: str) -> bytes | None:
        raise OSError("disk gone")

    async def save(self, key: str, data: bytes) -> None:
        self.saves += 1
        raise OSError("disk full")


def _event(minutes: int) -> HistoryEvent:
    return HistoryEvent(kind="call", timestamp=FIXED_NOW - timedelta(minutes=minutes))


class TestMutations:
    async def test_add_then_delete_leaves_no_trace(self, store, make_draft):
        before = store.snapshot()

        record = store.add(make_draft("Temp", phones=("555",)))
        store.delete(record.id)

        assert store.snapshot() == before
        assert store.get(record.id) is None

    async def test_add_accepts_a_plain_dict(self, store):
        record = store.add({"first_name": "Ann", "email_addresses": [{"email": "a@x.com"}]})

        assert record.name == "Ann"
        assert store.get(record.id) == record

    async def test_add_returns_the_record_it_stored(self, store, make_draft):
        changes = []
        store.subscribe(changes.append)

        record = store.add(make_draft("Ann"), origin="sync")

        assert [c.record for c in changes] == [record]
        assert store.snapshot() == (record,)

    async def test_update_unknown_id_is_a_noop(self, store, make_draft):
        store.add(make_draft("Ann"))
        before = store.snapshot()

        result = store.update("missing", company="Acme")

        assert result.ok
        assert result.records == ()
        assert store.snapshot() == before

    async def test_merge_into_missing_reports_not_found(self, store, make_draft):
        record = store.add(make_draft("Ann"))

        assert store.merge_into(record.id, "missing").error == ErrorKind.NOT_FOUND
        assert store.merge_into(record.id, record.id).error == ErrorKind.NOT_FOUND
        assert len(store) == 1

    async def test_import_puts_new_records_first(self, store, make_draft):
        store.add(make_draft("Existing"))

        store.import_contacts([make_draft("New 1"), make_draft("New 2")])

        assert [r.name for r in store.snapshot()] == ["New 1", "New 2", "Existing"]

    async def test_listeners_get_changes_with_origin(self, store, make_draft):
        seen = []
        unsubscribe = store.subscribe(lambda change: seen.append((change.action, change.origin)))

        record = store.add(make_draft("Ann"))
        store.update(record.id, origin="sync", company="Acme")
        unsubscribe()
        store.delete(record.id)

        assert seen == [("add", "local"), ("update", "sync")]

    async def test_failing_listener_does_not_break_dispatch(self, store, make_draft):
        def boom(change):
            raise RuntimeError("listener bug")

        store.subscribe(boom)

        record = store.add(make_draft("Ann"))

        assert store.get(record.id) is not None

    async def test_require_raises_for_unknown_id(self, store):
        with pytest.raises(ContactNotFoundError) as exc_info:
            store.require("nope")

        assert exc_info.value.kind == ErrorKind.NOT_FOUND


class TestPersistence:
    async def test_burst_of_edits_is_written_once(self, store, storage, make_draft):
        record = store.add(make_draft("Ann"))
        for i in range(5):
            store.update(record.id, notes=f"note {i}")

        assert store.flush_pending
        await asyncio.sleep(0.05)

        assert storage.writes == ["contacts"]
        assert not store.dirty
        saved = json.loads(storage.data["contacts"])
        assert saved[0]["notes"] == "note 4"

    async def test_flush_writes_immediately(self, store, storage, make_draft):
        store.add(make_draft("Ann"))

        await store.flush()

        assert storage.writes == ["contacts"]
        assert not store.flush_pending

    async def test_round_trip_through_storage(self, store, storage, make_draft):
        record = store.add(make_draft("Ann", phones=("555",), labels=frozenset({"friends"})))
        store.toggle_favorite(record.id)
        await store.close()

        reloaded = ContactStore(storage)
        await reloaded.load()

        assert reloaded.snapshot() == store.snapshot()

    async def test_unreadable_snapshot_starts_empty(self):
        store = ContactStore(MemoryStorage({"contacts": b"{not json"}))

        await store.load()

        assert len(store) == 0

    async def test_storage_failure_keeps_store_dirty(self, make_draft):
        storage = _BrokenStorage()
        store = ContactStore(storage, debounce_seconds=0.01)
        await store.load()

        store.add(make_draft("Ann"))
        await store.flush()

        assert storage.saves == 1
        assert store.dirty
        assert len(store) == 1

    async def test_history_retention_trims_memory_but_not_disk(self, make_record):
        history = tuple(_event(m) for m in range(10, 0, -1))
        record = make_record("Ann", history=history)
        storage = MemoryStorage({"contacts": f"[{record.model_dump_json()}]".encode()})
        store = ContactStore(storage, history_retention=5, debounce_seconds=0.01)

        await store.load()
        assert store.get(record.id).history == history[-5:]

        store.append_history(record.id, _event(0))
        await store.flush()

        saved = json.loads(storage.data["contacts"])[0]["history"]
        assert len(saved) == 11

    async def test_merge_carries_trimmed_history_of_secondary(self, make_record):
        primary = make_record("Jane", history=(_event(30),))
        secondary = make_record("Janie", history=tuple(_event(m) for m in (20, 15, 10)))
        storage = MemoryStorage(
            {
                "contacts": json.dumps(
                    [json.loads(primary.model_dump_json()), json.loads(secondary.model_dump_json())]
                ).encode()
            }
        )
        store = ContactStore(storage, history_retention=1, debounce_seconds=0.01)
        await store.load()

        store.merge_into(primary.id, secondary.id)
        await store.flush()

        saved = json.loads(storage.data["contacts"])
        assert len(saved) == 1
        # 1 primary + 3 secondary + the merge event
        assert len(saved[0]["history"]) == 5


class TestViews:
    async def test_favorites_vip_and_emergency(self, store, make_draft):
        a = store.add(make_draft("A", is_emergency_contact=True))
        b = store.add(make_draft("B"))
        store.toggle_favorite(a.id)
        store.toggle_vip(b.id)

        assert [r.id for r in store.favorites()] == [a.id]
        assert [r.id for r in store.vip()] == [b.id]
        assert [r.id for r in store.emergency_contacts()] == [a.id]

    async def test_by_group_defaults_to_other(self, store, make_draft):
        store.add(make_draft("A", group="Family"))
        store.add(make_draft("B"))

        groups = store.by_group()

        assert set(groups) == {"Family", "Other"}

    async def test_search_covers_phones_emails_and_notes(self, store, make_draft):
        store.add(make_draft("Ann", phones=("555-1234",)))
        store.add(make_draft("Bob", emails=("bob@acme.com",)))
        store.add(make_draft("Cy", notes="met at PyCon"))

        assert [r.name for r in store.search("555-12")] == ["Ann"]
        assert [r.name for r in store.search("ACME")] == ["Bob"]
        assert [r.name for r in store.search("pycon")] == ["Cy"]
        assert len(store.search("  ")) == 3

    async def test_recent_and_stats(self, store, make_draft):
        old = store.add(make_draft("Old"))
        fresh = store.add(make_draft("Fresh"))
        store.append_history(old.id, HistoryEvent(timestamp=FIXED_NOW - timedelta(days=20)))
        store.append_history(fresh.id, HistoryEvent(timestamp=FIXED_NOW - timedelta(days=1)))

        assert [r.name for r in store.recent(now=FIXED_NOW)] == ["Fresh", "Old"]
        stats = store.stats()
        assert stats.total == 2
        assert stats.recent == 1
        assert stats.groups == {"Other": 2}

    async def test_naive_history_timestamps_count_as_utc(self, store, make_draft):
        record = store.add(make_draft("Jane"))
        naive = datetime(2024, 6, 1, 11)
        store.append_history(record.id, HistoryEvent(kind="call", timestamp=naive))

        assert [r.id for r in store.recent(timedelta(days=1), now=FIXED_NOW)] == [record.id]
        assert store.stats().recent == 1
