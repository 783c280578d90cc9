"""Automatic sync: push-on-change and the periodic background pass."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from contactsync.exceptions import SyncInProgressError
from contactsync.store.store import ContactStore, StoreChange
from contactsync.sync.state import PushIntent
from contactsync.sync.synchronizer import Synchronizer

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 30 * 60
DEFAULT_INITIAL_DELAY_SECONDS = 5.0
# How often the initial pass re-checks for a loaded store
STORE_POLL_SECONDS = 1.0


class AutoSync:
    """Pushes every local add/update/delete to all sources in the background.

    Changes made by the synchronizer itself (origin ``sync``) are ignored.
    """

    def __init__(self, store: ContactStore, synchronizer: Synchronizer):
        self.store = store
        self.synchronizer = synchronizer
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe: Callable[[], None] | None = None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_change)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _on_change(self, change: StoreChange) -> None:
        if change.origin != "local":
            return
        intent: PushIntent = change.action
        task = asyncio.get_running_loop().create_task(
            self.synchronizer.push(change.record, intent)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every push scheduled so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class BackgroundSync:
    """Runs a full pull-then-push pass for each source on a fixed cadence."""

    def __init__(
        self,
        store: ContactStore,
        synchronizer: Synchronizer,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        initial_delay: float = DEFAULT_INITIAL_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.synchronizer = synchronizer
        self.interval_seconds = interval_seconds
        self.initial_delay = initial_delay
        self._sleep = sleep
        self._task: asyncio.Task | None = None

    async def run_once(self) -> None:
        """One pass over every source with auto sync enabled."""
        for name, source_sync in self.synchronizer.sources.items():
            if not source_sync.settings.auto_sync:
                logger.debug(f"Auto sync disabled for {name}, skipping")
                continue
            try:
                for result in await self.synchronizer.sync_source(name):
                    logger.info(f"Background {result.direction} {name}: {result.summary()}")
            except SyncInProgressError:
                logger.info(f"Sync with {name} already running, skipping this tick")
            except Exception as e:
                logger.error(f"Background sync with {name} failed: {e}")

    async def run(self) -> None:
        await self._sleep(self.initial_delay)
        while len(self.store) == 0:
            await self._sleep(STORE_POLL_SECONDS)
        while True:
            await self.run_once()
            await self._sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
