"""The canonical contact store."""

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Literal

from pydantic import TypeAdapter

from contactsync.duplicates import find_duplicates
from contactsync.exceptions import ContactNotFoundError, ErrorKind
from contactsync.models import ContactDraft, ContactRecord, DuplicateCandidate, HistoryEvent, utcnow
from contactsync.store import views
from contactsync.store.intents import (
    Add,
    AppendHistory,
    ChangeAction,
    Delete,
    Import,
    Intent,
    MergeInto,
    ReplaceAll,
    State,
    ToggleFavorite,
    ToggleVIP,
    Update,
    apply_intent,
)
from contactsync.store.persistence import KeyValueStorage

logger = logging.getLogger(__name__)

STORAGE_KEY = "contacts"
DEFAULT_DEBOUNCE_SECONDS = 2.0
DEFAULT_HISTORY_RETENTION = 5

# "local" for user edits, "sync" for writes made by the synchronizer itself
Origin = Literal["local", "sync"]

_snapshot_adapter = TypeAdapter(list[ContactRecord])


@dataclass(frozen=True)
class StoreChange:
    """Delivered to listeners after a mutation has been applied."""

    action: ChangeAction
    record: ContactRecord
    previous: ContactRecord | None
    origin: Origin


@dataclass(frozen=True)
class MutationResult:
    error: ErrorKind | None = None
    records: tuple[ContactRecord, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def record(self) -> ContactRecord | None:
        return self.records[0] if self.records else None


Listener = Callable[[StoreChange], None]


class ContactStore:
    """Single owner of the contact records.

    All mutations go through ``dispatch``; reads get immutable snapshots.
    Every mutation marks the store dirty and re-arms one delayed flush, so a
    burst of edits ends in a single durable write of the whole snapshot.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        storage_key: str = STORAGE_KEY,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        history_retention: int = DEFAULT_HISTORY_RETENTION,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.storage = storage
        self.storage_key = storage_key
        self.debounce_seconds = debounce_seconds
        self.history_retention = history_retention
        self._clock = clock
        self._id_factory = id_factory

        self._state: State = ()
        # Events trimmed at load time, re-joined when the snapshot is written
        self._archived_history: dict[str, tuple[HistoryEvent, ...]] = {}
        self._listeners: list[Listener] = []
        self._dirty = False
        self._flush_task: asyncio.Task | None = None

    # --- persistence -------------------------------------------------------

    async def load(self) -> None:
        """Load the durable snapshot; start empty if it is missing or unreadable."""
        try:
            raw = await self.storage.load(self.storage_key)
            records = _snapshot_adapter.validate_json(raw) if raw else []
        except Exception as e:
            logger.error(f"Error loading contacts, starting empty: {e}")
            records = []

        self._archived_history = {}
        trimmed = []
        for record in records:
            keep = self.history_retention
            if keep >= 0 and len(record.history) > keep:
                cut = len(record.history) - keep
                self._archived_history[record.id] = record.history[:cut]
                record = record.model_copy(update={"history": record.history[cut:]})
            trimmed.append(record)

        self._state = tuple(trimmed)
        self._dirty = False
        logger.info(f"Loaded {len(self._state)} contacts")

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def flush_pending(self) -> bool:
        return self._flush_task is not None and not self._flush_task.done()

    def _serialize(self) -> bytes:
        records = [
            record.model_copy(
                update={"history": self._archived_history.get(record.id, ()) + record.history}
            )
            if record.id in self._archived_history
            else record
            for record in self._state
        ]
        return _snapshot_adapter.dump_json(records)

    def _mark_dirty(self) -> None:
        self._dirty = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop: nothing to schedule, the owner calls flush()
            return
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
        self._flush_task = loop.create_task(self._flush_later())

    async def _flush_later(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        # Detach first so a mutation during the write schedules a new flush
        # instead of cancelling this one.
        self._flush_task = None
        await self._write()

    async def _write(self) -> None:
        self._dirty = False
        data = self._serialize()
        try:
            await self.storage.save(self.storage_key, data)
        except Exception as e:
            self._dirty = True
            logger.error(f"Error saving contacts: {e}")
            return
        logger.debug(f"Saved {len(self._state)} contacts")

    async def flush(self) -> None:
        """Write now if there are unsaved changes, cancelling any pending flush."""
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
        self._flush_task = None
        if self._dirty:
            await self._write()

    async def close(self) -> None:
        await self.flush()

    # --- mutations ---------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _rehydrate_history(self, contact_id: str) -> None:
        archived = self._archived_history.pop(contact_id, None)
        if not archived:
            return
        self._state = tuple(
            r.model_copy(update={"history": archived + r.history}) if r.id == contact_id else r
            for r in self._state
        )

    def dispatch(self, intent: Intent, *, origin: Origin = "local") -> MutationResult:
        """Apply one intent atomically and notify listeners."""
        if isinstance(intent, MergeInto) and intent.primary_id != intent.secondary_id:
            # The absorbed record disappears, so its trimmed events have to
            # travel with it into the merged history.
            if any(r.id == intent.primary_id for r in self._state):
                self._rehydrate_history(intent.secondary_id)

        transition = apply_intent(self._state, intent, now=self._clock(), new_id=self._id_factory)
        if not transition.ok:
            logger.warning(f"{type(intent).__name__} rejected: {transition.error.value}")
            return MutationResult(error=transition.error)

        self._state = transition.state
        if isinstance(intent, ReplaceAll):
            self._archived_history = {}
        for change in transition.changes:
            if change.action == "delete":
                self._archived_history.pop(change.record.id, None)

        if transition.changes or isinstance(intent, ReplaceAll):
            self._mark_dirty()

        for change in transition.changes:
            self._notify(StoreChange(change.action, change.record, change.previous, origin))

        return MutationResult(records=tuple(change.record for change in transition.changes))

    def _notify(self, change: StoreChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                logger.error(f"Store listener failed on {change.action} {change.record.id}: {e}")

    def replace_all(self, records: Iterable[ContactRecord]) -> MutationResult:
        return self.dispatch(ReplaceAll(tuple(records)))

    def add(self, draft: ContactDraft | dict[str, Any], *, origin: Origin = "local") -> ContactRecord:
        if isinstance(draft, dict):
            draft = ContactDraft.model_validate(draft)
        return self.dispatch(Add(draft), origin=origin).records[0]

    def import_contacts(
        self, drafts: Iterable[ContactDraft], *, origin: Origin = "local"
    ) -> list[ContactRecord]:
        return list(self.dispatch(Import(tuple(drafts)), origin=origin).records)

    def update(self, contact_id: str, *, origin: Origin = "local", **fields: Any) -> MutationResult:
        return self.dispatch(Update(contact_id, fields), origin=origin)

    def delete(self, contact_id: str) -> MutationResult:
        return self.dispatch(Delete(contact_id))

    def toggle_favorite(self, contact_id: str) -> MutationResult:
        return self.dispatch(ToggleFavorite(contact_id))

    def toggle_vip(self, contact_id: str) -> MutationResult:
        return self.dispatch(ToggleVIP(contact_id))

    def append_history(self, contact_id: str, event: HistoryEvent) -> MutationResult:
        return self.dispatch(AppendHistory(contact_id, event))

    def merge_into(self, primary_id: str, secondary_id: str) -> MutationResult:
        return self.dispatch(MergeInto(primary_id, secondary_id))

    # --- reads -------------------------------------------------------------

    def snapshot(self) -> tuple[ContactRecord, ...]:
        return self._state

    def __len__(self) -> int:
        return len(self._state)

    def get(self, contact_id: str) -> ContactRecord | None:
        for record in self._state:
            if record.id == contact_id:
                return record
        return None

    def require(self, contact_id: str) -> ContactRecord:
        """Like ``get`` but raises ``ContactNotFoundError`` for an unknown id."""
        record = self.get(contact_id)
        if record is None:
            raise ContactNotFoundError(contact_id)
        return record

    def favorites(self) -> list[ContactRecord]:
        return views.favorites(self._state)

    def vip(self) -> list[ContactRecord]:
        return views.vip(self._state)

    def emergency_contacts(self) -> list[ContactRecord]:
        return views.emergency_contacts(self._state)

    def by_group(self) -> dict[str, list[ContactRecord]]:
        return views.by_group(self._state)

    def by_label(self, label: str) -> list[ContactRecord]:
        return views.by_label(self._state, label)

    def recent(
        self, window: timedelta = timedelta(days=30), now: datetime | None = None
    ) -> list[ContactRecord]:
        return views.recent(self._state, window, now)

    def search(self, query: str) -> list[ContactRecord]:
        return views.search(self._state, query)

    def stats(self) -> views.ContactStats:
        return views.stats(self._state, now=self._clock())

    def find_duplicates(self) -> list[DuplicateCandidate]:
        return find_duplicates(self._state)

