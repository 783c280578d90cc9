"""Mutation intents and the pure transition function that applies them.

Every mutation of the canonical store is one of the intents below. They are
applied by ``apply_intent`` against the current state, which returns the next
state plus the per-record changes so listeners (auto sync) can react.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from contactsync.exceptions import ErrorKind
from contactsync.merger import merge
from contactsync.models import ContactDraft, ContactRecord, HistoryEvent, derive_name

State = tuple[ContactRecord, ...]
ChangeAction = Literal["add", "update", "delete"]

# Fields owned by the store that an update can never overwrite
PROTECTED_FIELDS = frozenset({"id", "created_at", "updated_at"})
# Fields the display name is derived from when none was given
NAME_PARTS = frozenset({"first_name", "last_name", "email_addresses", "phone_numbers"})


@dataclass(frozen=True)
class ReplaceAll:
    records: tuple[ContactRecord, ...]


@dataclass(frozen=True)
class Add:
    draft: ContactDraft


@dataclass(frozen=True)
class Import:
    """Bulk add; imported records go in front of the existing ones."""

    drafts: tuple[ContactDraft, ...]


@dataclass(frozen=True)
class Update:
    contact_id: str
    fields: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Delete:
    contact_id: str


@dataclass(frozen=True)
class ToggleFavorite:
    contact_id: str


@dataclass(frozen=True)
class ToggleVIP:
    contact_id: str


@dataclass(frozen=True)
class AppendHistory:
    contact_id: str
    event: HistoryEvent


@dataclass(frozen=True)
class MergeInto:
    primary_id: str
    secondary_id: str


Intent = (
    ReplaceAll
    | Add
    | Import
    | Update
    | Delete
    | ToggleFavorite
    | ToggleVIP
    | AppendHistory
    | MergeInto
)


@dataclass(frozen=True)
class Change:
    """One record-level effect of an intent."""

    action: ChangeAction
    record: ContactRecord
    previous: ContactRecord | None = None


@dataclass(frozen=True)
class Transition:
    state: State
    changes: tuple[Change, ...] = ()
    error: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _find(state: State, contact_id: str) -> int | None:
    for index, record in enumerate(state):
        if record.id == contact_id:
            return index
    return None


def _new_record(draft: ContactDraft, *, now: datetime, new_id: Callable[[], str]) -> ContactRecord:
    data = draft.model_dump(include=set(ContactDraft.model_fields))
    return ContactRecord.model_validate(
        {**data, "id": new_id(), "created_at": now, "updated_at": now}
    )


def _replace(state: State, index: int, record: ContactRecord) -> State:
    return state[:index] + (record,) + state[index + 1 :]


def _update_at(state: State, index: int, record: ContactRecord) -> Transition:
    previous = state[index]
    return Transition(
        state=_replace(state, index, record),
        changes=(Change("update", record, previous),),
    )


def apply_intent(
    state: State,
    intent: Intent,
    *,
    now: datetime,
    new_id: Callable[[], str],
) -> Transition:
    """Compute the state that results from applying ``intent``.

    Single-record intents with an unknown id are no-ops. ``MergeInto`` reports
    ``ErrorKind.NOT_FOUND`` instead, since the caller asked for that exact pair.
    """
    if isinstance(intent, ReplaceAll):
        return Transition(state=tuple(intent.records))

    if isinstance(intent, Add):
        record = _new_record(intent.draft, now=now, new_id=new_id)
        return Transition(state=state + (record,), changes=(Change("add", record),))

    if isinstance(intent, Import):
        records = tuple(_new_record(d, now=now, new_id=new_id) for d in intent.drafts)
        return Transition(
            state=records + state,
            changes=tuple(Change("add", record) for record in records),
        )

    if isinstance(intent, MergeInto):
        if intent.primary_id == intent.secondary_id:
            return Transition(state=state, error=ErrorKind.NOT_FOUND)
        primary_index = _find(state, intent.primary_id)
        secondary_index = _find(state, intent.secondary_id)
        if primary_index is None or secondary_index is None:
            return Transition(state=state, error=ErrorKind.NOT_FOUND)

        primary = state[primary_index]
        secondary = state[secondary_index]
        merged = merge(primary, secondary, now=now)
        next_state = tuple(
            merged if record.id == primary.id else record
            for record in state
            if record.id != secondary.id
        )
        return Transition(
            state=next_state,
            changes=(
                Change("update", merged, primary),
                Change("delete", secondary, secondary),
            ),
        )

    index = _find(state, intent.contact_id)
    if index is None:
        return Transition(state=state)
    current = state[index]

    if isinstance(intent, Delete):
        return Transition(
            state=state[:index] + state[index + 1 :],
            changes=(Change("delete", current, current),),
        )

    if isinstance(intent, Update):
        fields = {k: v for k, v in intent.fields.items() if k not in PROTECTED_FIELDS}
        data = current.model_dump()
        if (
            "name" not in fields
            and NAME_PARTS & fields.keys()
            and current.name == derive_name(data)
        ):
            # Derived names follow their parts; a name set explicitly stays
            fields["name"] = ""
        record = ContactRecord.model_validate({**data, **fields, "updated_at": now})
        return _update_at(state, index, record)

    if isinstance(intent, ToggleFavorite):
        record = current.model_copy(update={"is_favorite": not current.is_favorite, "updated_at": now})
        return _update_at(state, index, record)

    if isinstance(intent, ToggleVIP):
        record = current.model_copy(update={"is_vip": not current.is_vip, "updated_at": now})
        return _update_at(state, index, record)

    if isinstance(intent, AppendHistory):
        record = current.model_copy(
            update={"history": current.history + (intent.event,), "updated_at": now}
        )
        return _update_at(state, index, record)

    raise TypeError(f"Unknown intent: {intent!r}")
