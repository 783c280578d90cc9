"""Two-way sync between the canonical store and external sources."""

import asyncio
import logging
import time
import weakref
from collections.abc import Iterable, Sequence
from contextlib import asynccontextmanager

from pydantic import ValidationError

from contactsync.exceptions import (
    ErrorKind,
    PermissionDeniedError,
    PersistenceError,
    SyncError,
    SyncInProgressError,
)
from contactsync.duplicates import find_cross_source
from contactsync.models import (
    UNNAMED_CONTACT,
    ContactDraft,
    ContactRecord,
    SourceDuplicate,
    utcnow,
)
from contactsync.similarity import emails_overlap
from contactsync.sources.base import ExternalSource
from contactsync.store.persistence import KeyValueStorage
from contactsync.store.store import ContactStore
from contactsync.sync.state import (
    PushIntent,
    PushOutcome,
    SyncResult,
    SyncSettings,
    SyncState,
    SyncStats,
    SyncStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 20

# Fields an external source is authoritative for on inbound sync. Favorite,
# VIP, history, group, labels and emergency data stay local.
INBOUND_FIELDS = (
    "first_name",
    "last_name",
    "phone_numbers",
    "email_addresses",
    "company",
    "job_title",
    "address",
    "website",
    "birthday",
    "notes",
    "image_uri",
)


def _has_real_name(draft: ContactDraft) -> bool:
    """False when the draft's name was only derived from an email or phone."""
    derived = {UNNAMED_CONTACT}
    derived.update(e.email for e in draft.email_addresses)
    derived.update(p.number for p in draft.phone_numbers)
    return draft.name not in derived


class SourceSynchronizer:
    """Keeps the store and one external source eventually consistent."""

    def __init__(
        self,
        store: ContactStore,
        source: ExternalSource,
        storage: KeyValueStorage,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.store = store
        self.source = source
        self.storage = storage
        self.batch_size = max(1, batch_size)

        self.settings = SyncSettings()
        self.stats = SyncStats()
        self.status = SyncStatus.UNCONFIGURED
        self.authorized = False
        self._in_progress = False
        # Dropped once no push holds or waits on them
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def _settings_key(self) -> str:
        return f"sync::{self.name}::settings"

    @property
    def _stats_key(self) -> str:
        return f"sync::{self.name}::stats"

    # --- state -------------------------------------------------------------

    async def load_state(self) -> None:
        """Load persisted settings and stats; keep defaults on failure."""
        try:
            raw = await self.storage.load(self._settings_key)
            if raw:
                self.settings = SyncSettings.model_validate_json(raw)
            raw = await self.storage.load(self._stats_key)
            if raw:
                self.stats = SyncStats.model_validate_json(raw)
        except (PersistenceError, ValidationError) as e:
            logger.error(f"Error loading sync settings for {self.name}: {e}")
        self.status = self._resting_status()

    async def _save_state(self) -> None:
        try:
            await self.storage.save(self._settings_key, self.settings.model_dump_json().encode())
            await self.storage.save(self._stats_key, self.stats.model_dump_json().encode())
        except Exception as e:
            logger.error(f"Error saving sync settings for {self.name}: {e}")

    def _resting_status(self) -> SyncStatus:
        if not self.authorized:
            return SyncStatus.UNCONFIGURED
        return SyncStatus.IDLE if self.settings.auto_sync else SyncStatus.DISABLED

    async def refresh_access(self) -> bool:
        self.authorized = await self.source.check_access()
        if not self._in_progress:
            self.status = self._resting_status()
        return self.authorized

    async def request_access(self) -> bool:
        self.authorized = await self.source.request_access()
        if not self._in_progress:
            self.status = self._resting_status()
        return self.authorized

    async def update_settings(self, **changes) -> SyncSettings:
        self.settings = SyncSettings.model_validate({**self.settings.model_dump(), **changes})
        if not self._in_progress:
            self.status = self._resting_status()
        await self._save_state()
        return self.settings

    async def reset_stats(self) -> None:
        self.stats = SyncStats()
        await self._save_state()

    def state(self) -> SyncState:
        return SyncState(
            source=self.name,
            status=self.status,
            authorized=self.authorized,
            in_progress=self._in_progress,
            stats=self.stats.model_copy(),
            settings=self.settings.model_copy(deep=True),
        )

    @asynccontextmanager
    async def _bulk_pass(self):
        if self._in_progress:
            raise SyncInProgressError(self.name)
        self._in_progress = True
        self.status = SyncStatus.SYNCING
        try:
            yield
        finally:
            self._in_progress = False
            self.status = self._resting_status()

    async def _check_access(self) -> bool:
        self.authorized = await self.source.check_access()
        return self.authorized

    # --- outward -----------------------------------------------------------

    def _lock_for(self, contact_id: str) -> asyncio.Lock:
        """One lock per contact id; pushes for the same contact run in order."""
        lock = self._locks.get(contact_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[contact_id] = lock
        return lock

    async def _locate(self, record: ContactRecord) -> str | None:
        """Find the external counterpart: stored external id first, then primary phone."""
        external_id = record.external_ids.get(self.name)
        if external_id and await self.source.exists(external_id):
            return external_id

        phone = record.primary_phone
        if phone and phone.normalized:
            return await self.source.find_by_phone(phone.number)
        return None

    def _remember_external_id(self, contact_id: str, external_id: str) -> None:
        current = self.store.get(contact_id)
        if current is None or current.external_ids.get(self.name) == external_id:
            return
        # origin="sync" keeps this write-back from being pushed again
        self.store.update(
            contact_id,
            origin="sync",
            external_ids={**current.external_ids, self.name: external_id},
        )

    async def _push_one(self, record: ContactRecord, intent: PushIntent) -> PushOutcome:
        """Callers hold ``_lock_for(record.id)``."""
        # The stored copy carries ids learned by earlier pushes; a deleted
        # record only has the copy it was pushed with.
        if intent != "delete":
            record = self.store.get(record.id) or record
        external_id = await self._locate(record)

        if intent == "delete":
            if external_id is None:
                return PushOutcome(contact_id=record.id, source=self.name, action="absent")
            await self.source.delete(external_id)
            return PushOutcome(
                contact_id=record.id, source=self.name, action="deleted", external_id=external_id
            )

        omit = self.settings.sync_fields.disabled()
        if external_id:
            await self.source.update(external_id, record, omit=omit)
            action = "updated"
        else:
            external_id = await self.source.create(record, omit=omit)
            action = "created"

        self._remember_external_id(record.id, external_id)
        return PushOutcome(
            contact_id=record.id, source=self.name, action=action, external_id=external_id
        )

    async def push(self, record: ContactRecord, intent: PushIntent) -> PushOutcome:
        """Push one local change outward. Never raises.

        Failures come back as a ``failed`` outcome; the local mutation that
        triggered the push is never affected.
        """
        if not self.settings.should_push(record.id, intent):
            return PushOutcome(contact_id=record.id, source=self.name, action="skipped")

        try:
            if not await self._check_access():
                raise PermissionDeniedError(self.name)
            async with self._lock_for(record.id):
                return await self._push_one(record, intent)
        except Exception as e:
            logger.error(f"Background sync failed for '{record.name}' ({intent}) to {self.name}: {e}")
            return PushOutcome(
                contact_id=record.id,
                source=self.name,
                action="failed",
                error=str(e),
                error_kind=getattr(e, "kind", None) or ErrorKind.EXTERNAL_UNAVAILABLE,
            )

    async def push_all(self, records: Sequence[ContactRecord] | None = None) -> SyncResult:
        """Push every (selected) record to the source.

        Raises ``SyncInProgressError`` if a bulk pass is already running here.
        """
        async with self._bulk_pass():
            logger.info(f"=== Syncing local -> {self.name} ===")
            started = time.monotonic()
            if records is None:
                records = self.store.snapshot()
            to_sync = [r for r in records if self.settings.includes(r.id)]

            result = SyncResult(source=self.name, direction="push", success=False)

            if not await self._check_access():
                result.failed_count = len(to_sync)
                result.errors.append(str(PermissionDeniedError(self.name)))
                logger.error(f"Push to {self.name} aborted: permission not granted")
            else:
                for i, record in enumerate(to_sync, 1):
                    try:
                        async with self._lock_for(record.id):
                            outcome = await self._push_one(record, "update")
                        result.synced_count += 1
                        if outcome.action == "created":
                            result.created += 1
                        else:
                            result.updated += 1
                    except Exception as e:
                        error = SyncError(record.id, record.name, e)
                        result.failed_count += 1
                        result.errors.append(str(error))
                        logger.error(f"  Error: {error}")

                    if i % 10 == 0 or i == len(to_sync):
                        logger.info(f"Progress: {i}/{len(to_sync)} contacts pushed")
                    if i % self.batch_size == 0:
                        await asyncio.sleep(0)

            return await self._finish(result, total=len(to_sync), started=started)

    # --- inward ------------------------------------------------------------

    def _match_local(self, draft: ContactDraft) -> ContactRecord | None:
        """Local counterpart of an external record: external id, then shared email."""
        snapshot = self.store.snapshot()
        external_id = draft.external_ids.get(self.name)
        if external_id:
            for record in snapshot:
                if record.external_ids.get(self.name) == external_id:
                    return record
        # TODO: consider the full similarity score here; inbound matching is
        # email-only for now.
        for record in snapshot:
            if emails_overlap(record, draft):
                return record
        return None

    def _inbound_changes(self, local: ContactRecord, draft: ContactDraft) -> dict:
        """Fields where the external record has data that differs from ours."""
        changes = {}
        if _has_real_name(draft) and draft.name != local.name:
            changes["name"] = draft.name
        for field in INBOUND_FIELDS:
            value = getattr(draft, field)
            if value and value != getattr(local, field):
                changes[field] = value
        external_ids = {**local.external_ids, **draft.external_ids}
        if external_ids != local.external_ids:
            changes["external_ids"] = external_ids
        return changes

    def _reconcile(self, draft: ContactDraft) -> tuple[str, ContactRecord]:
        local = self._match_local(draft)
        if local is None:
            return "created", self.store.add(draft, origin="sync")
        changes = self._inbound_changes(local, draft)
        if not changes:
            return "unchanged", local
        self.store.update(local.id, origin="sync", **changes)
        return "updated", self.store.require(local.id)

    async def pull(self, external_id: str) -> ContactRecord | None:
        """Fetch one external record and fold it into the store.

        Returns the local record it now maps to, or None when the source has
        no record with ``external_id``. Raises ``PermissionDeniedError``
        without access; source errors propagate.
        """
        if not await self._check_access():
            raise PermissionDeniedError(self.name)
        draft = await self.source.get(external_id)
        if draft is None:
            logger.info(f"{self.name} has no contact {external_id}")
            return None
        action, record = self._reconcile(draft)
        logger.info(f"Pulled {external_id} from {self.name}: {action} '{record.name}'")
        return record

    async def count(self) -> int:
        """Number of records in the source; 0 without access."""
        if not await self._check_access():
            return 0
        return await self.source.count()

    async def find_duplicates(
        self, records: Sequence[ContactRecord] | None = None
    ) -> list[SourceDuplicate]:
        """Local records that probably duplicate a record held by the source.

        Compares ``records`` (default: the whole store) against every external
        record; empty without access.
        """
        if not await self._check_access():
            logger.warning(f"Duplicate scan against {self.name} skipped: permission not granted")
            return []
        drafts = [draft async for draft in self.source.list_all()]
        if records is None:
            records = self.store.snapshot()
        return find_cross_source(records, drafts, self.name)

    async def pull_all(self) -> SyncResult:
        """Fetch every external record and fold it into the store.

        Records are reconciled in batches with a yield to the event loop in
        between. Raises ``SyncInProgressError`` if a bulk pass is running.
        """
        async with self._bulk_pass():
            logger.info(f"=== Syncing {self.name} -> local ===")
            started = time.monotonic()
            result = SyncResult(source=self.name, direction="pull", success=False)

            if not await self._check_access():
                result.errors.append(str(PermissionDeniedError(self.name)))
                logger.error(f"Pull from {self.name} aborted: permission not granted")
                return await self._finish(result, total=0, started=started)

            try:
                drafts = [draft async for draft in self.source.list_all()]
            except Exception as e:
                result.errors.append(f"Failed to fetch contacts from {self.name}: {e}")
                logger.error(f"  Error: {result.errors[-1]}")
                return await self._finish(result, total=0, started=started)

            logger.info(f"Fetched {len(drafts)} contacts from {self.name}")

            for start in range(0, len(drafts), self.batch_size):
                for draft in drafts[start : start + self.batch_size]:
                    try:
                        action, _ = self._reconcile(draft)
                        result.synced_count += 1
                        if action == "created":
                            result.created += 1
                        elif action == "updated":
                            result.updated += 1
                    except Exception as e:
                        result.failed_count += 1
                        result.errors.append(f"Failed to import '{draft.name}': {e}")
                        logger.error(f"  Error: {result.errors[-1]}")
                logger.info(
                    f"Progress: {min(start + self.batch_size, len(drafts))}/{len(drafts)} "
                    "contacts processed"
                )
                await asyncio.sleep(0)

            return await self._finish(result, total=len(drafts), started=started)

    async def _finish(self, result: SyncResult, *, total: int, started: float) -> SyncResult:
        result.success = result.failed_count == 0 and not result.errors
        self.stats = SyncStats(
            total_contacts=total,
            synced_contacts=result.synced_count,
            failed_contacts=result.failed_count,
            last_sync_time=utcnow(),
            sync_duration=time.monotonic() - started,
        )
        result.stats = self.stats.model_copy()
        await self._save_state()

        logger.info(f"{self.name} {result.direction} complete: {result.summary()}")
        if result.created or result.updated:
            logger.info(f"  Created: {result.created}")
            logger.info(f"  Updated: {result.updated}")
        return result


class Synchronizer:
    """Fans work out to one ``SourceSynchronizer`` per external source."""

    def __init__(self, sources: Iterable[SourceSynchronizer]):
        self.sources: dict[str, SourceSynchronizer] = {s.name: s for s in sources}

    @classmethod
    def for_sources(
        cls,
        store: ContactStore,
        sources: Iterable[ExternalSource],
        storage: KeyValueStorage,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> "Synchronizer":
        return cls(
            SourceSynchronizer(store, source, storage, batch_size=batch_size) for source in sources
        )

    def __getitem__(self, name: str) -> SourceSynchronizer:
        return self.sources[name]

    async def load_state(self) -> None:
        for source_sync in self.sources.values():
            await source_sync.load_state()
            await source_sync.refresh_access()

    async def push(self, record: ContactRecord, intent: PushIntent) -> list[PushOutcome]:
        """Push one change to every source; each source fails independently."""
        return list(
            await asyncio.gather(*(s.push(record, intent) for s in self.sources.values()))
        )

    async def push_all(self, name: str) -> SyncResult:
        return await self.sources[name].push_all()

    async def pull_all(self, name: str) -> SyncResult:
        return await self.sources[name].pull_all()

    async def pull(self, name: str, external_id: str) -> ContactRecord | None:
        return await self.sources[name].pull(external_id)

    async def count(self, name: str) -> int:
        return await self.sources[name].count()

    async def find_duplicates(self, name: str) -> list[SourceDuplicate]:
        return await self.sources[name].find_duplicates()

    async def sync_source(self, name: str) -> list[SyncResult]:
        """Full pass for one source: pull first, then push."""
        source_sync = self.sources[name]
        return [await source_sync.pull_all(), await source_sync.push_all()]

    def states(self) -> list[SyncState]:
        return [s.state() for s in self.sources.values()]

    async def close(self) -> None:
        for source_sync in self.sources.values():
            await source_sync.source.close()
