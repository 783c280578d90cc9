"""Per-source sync settings, statistics and results."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from contactsync.exceptions import ErrorKind

PushIntent = Literal["add", "update", "delete"]
PushAction = Literal["created", "updated", "deleted", "absent", "skipped", "failed"]


class SyncStatus(str, Enum):
    UNCONFIGURED = "unconfigured"
    IDLE = "idle"
    SYNCING = "syncing"
    DISABLED = "disabled"


class SyncFields(BaseModel):
    """Which fields are written out to the external source.

    A field switched off is left out of outgoing writes entirely, so whatever
    the external source holds for it is kept.
    """

    name: bool = True
    phone: bool = True
    email: bool = True
    address: bool = True
    birthday: bool = True
    notes: bool = True
    photo: bool = True

    def disabled(self) -> frozenset[str]:
        return frozenset(field for field, enabled in self.model_dump().items() if not enabled)


class SyncSettings(BaseModel):
    auto_sync: bool = True
    sync_on_add: bool = True
    sync_on_update: bool = True
    sync_on_delete: bool = True
    sync_selected_only: bool = False
    selected_contact_ids: list[str] = Field(default_factory=list)
    sync_fields: SyncFields = Field(default_factory=SyncFields)

    def includes(self, contact_id: str) -> bool:
        """Whether selective mode lets this contact through."""
        return not self.sync_selected_only or contact_id in self.selected_contact_ids

    def should_push(self, contact_id: str, intent: PushIntent) -> bool:
        if not self.auto_sync:
            return False
        enabled = {
            "add": self.sync_on_add,
            "update": self.sync_on_update,
            "delete": self.sync_on_delete,
        }[intent]
        return enabled and self.includes(contact_id)


class SyncStats(BaseModel):
    """Statistics from the last bulk pass."""

    total_contacts: int = 0
    synced_contacts: int = 0
    failed_contacts: int = 0
    last_sync_time: datetime | None = None
    sync_duration: float = Field(default=0.0, description="Seconds")


class SyncResult(BaseModel):
    """Outcome of one bulk pass against one source."""

    source: str
    direction: Literal["push", "pull"]
    success: bool
    synced_count: int = 0
    failed_count: int = 0
    created: int = 0
    updated: int = 0
    errors: list[str] = Field(default_factory=list)
    stats: SyncStats = Field(default_factory=SyncStats)

    def summary(self) -> str:
        return f"{self.synced_count} succeeded, {self.failed_count} failed"


class PushOutcome(BaseModel):
    """Result of pushing one record to one source."""

    contact_id: str
    source: str
    action: PushAction
    external_id: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def success(self) -> bool:
        return self.action != "failed"


class SyncState(BaseModel):
    """Read-only view of one source's sync state for display."""

    source: str
    status: SyncStatus
    authorized: bool
    in_progress: bool
    stats: SyncStats
    settings: SyncSettings
