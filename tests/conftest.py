"""Shared doubles and fixtures for the contactsync unit tests."""

from __future__ import annotations

import itertools
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime
from typing import Any

import pytest

from contactsync.models import ContactDraft, ContactRecord, EmailAddress, PhoneNumber
from contactsync.sources.base import ExternalSource
from contactsync.store import ContactStore, MemoryStorage

FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

# ContactDraft fields behind each sync field switch
GROUP_FIELDS = {
    "name": ("name", "first_name", "last_name"),
    "phone": ("phone_numbers",),
    "email": ("email_addresses",),
    "address": ("address",),
    "birthday": ("birthday",),
    "notes": ("notes",),
    "photo": ("image_uri",),
}


class SourceDouble(ExternalSource):
    """In-memory external source keyed by generated ids."""

    def __init__(self, name: str = "double") -> None:
        self._name = name
        self.records: dict[str, ContactDraft] = {}
        self.online = True
        self.fail_writes: Exception | None = None
        self.calls: list[tuple[str, str | None]] = []
        self._ids = itertools.count(1)

    @property
    def name(self) -> str:
        return self._name

    def seed(self, draft: ContactDraft) -> str:
        external_id = f"{self._name}-{next(self._ids)}"
        self.records[external_id] = draft.model_copy(
            update={"external_ids": {**draft.external_ids, self._name: external_id}}
        )
        return external_id

    async def check_access(self) -> bool:
        return self.online

    async def list_all(self) -> AsyncIterator[ContactDraft]:
        for draft in list(self.records.values()):
            yield draft

    async def exists(self, external_id: str) -> bool:
        return external_id in self.records

    async def get(self, external_id: str) -> ContactDraft | None:
        return self.records.get(external_id)

    async def find_by_phone(self, number: str) -> str | None:
        wanted = "".join(c for c in number if c.isdigit())
        for external_id, draft in self.records.items():
            if any(p.normalized == wanted for p in draft.phone_numbers):
                return external_id
        return None

    async def create(self, contact: ContactDraft, omit: frozenset[str] = frozenset()) -> str:
        self.calls.append(("create", None))
        if self.fail_writes is not None:
            raise self.fail_writes
        blank = ContactDraft()
        left_out = {f: getattr(blank, f) for group in omit for f in GROUP_FIELDS[group]}
        return self.seed(contact.model_copy(update=left_out))

    async def update(
        self, external_id: str, contact: ContactDraft, omit: frozenset[str] = frozenset()
    ) -> None:
        self.calls.append(("update", external_id))
        if self.fail_writes is not None:
            raise self.fail_writes
        existing = self.records[external_id]
        kept = {f: getattr(existing, f) for group in omit for f in GROUP_FIELDS[group]}
        self.records[external_id] = contact.model_copy(
            update={**kept, "external_ids": {**contact.external_ids, self._name: external_id}}
        )

    async def delete(self, external_id: str) -> None:
        self.calls.append(("delete", external_id))
        if self.fail_writes is not None:
            raise self.fail_writes
        self.records.pop(external_id, None)


class AddressBookDouble:
    """Device address book holding device-shaped dicts."""

    def __init__(self) -> None:
        self.contacts: dict[str, dict[str, Any]] = {}
        self.permission = True
        self.grant_on_request = True
        self.list_error: Exception | None = None
        self._ids = itertools.count(100)

    async def get_permission(self) -> bool:
        return self.permission

    async def request_permission(self) -> bool:
        self.permission = self.grant_on_request
        return self.permission

    async def list_contacts(self) -> list[dict]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.contacts.values())

    async def get_contact(self, contact_id: str) -> dict | None:
        return self.contacts.get(contact_id)

    async def find_by_phone(self, number: str) -> list[dict]:
        digits = "".join(c for c in number if c.isdigit())
        return [
            c
            for c in self.contacts.values()
            if any(
                digits in "".join(ch for ch in p.get("number", "") if ch.isdigit())
                for p in c.get("phoneNumbers", [])
            )
        ]

    async def add_contact(self, contact: dict) -> str:
        contact_id = str(next(self._ids))
        self.contacts[contact_id] = {**contact, "id": contact_id}
        return contact_id

    async def update_contact(self, contact: dict) -> None:
        self.contacts[contact["id"]] = {**self.contacts.get(contact["id"], {}), **contact}

    async def delete_contact(self, contact_id: str) -> None:
        self.contacts.pop(contact_id, None)


def draft(
    name: str = "",
    *,
    phones: tuple[str, ...] = (),
    emails: tuple[str, ...] = (),
    **fields: Any,
) -> ContactDraft:
    return ContactDraft(
        name=name,
        phone_numbers=tuple(PhoneNumber(number=p) for p in phones),
        email_addresses=tuple(EmailAddress(email=e) for e in emails),
        **fields,
    )


@pytest.fixture
def make_draft() -> Callable[..., ContactDraft]:
    return draft


@pytest.fixture
def make_record() -> Callable[..., ContactRecord]:
    ids = itertools.count(1)

    def factory(name: str = "", **kwargs: Any) -> ContactRecord:
        contact_id = kwargs.pop("id", None) or f"c{next(ids)}"
        record_fields = {
            k: kwargs.pop(k)
            for k in ("is_favorite", "is_vip", "history", "created_at", "updated_at")
            if k in kwargs
        }
        data = draft(name, **kwargs).model_dump()
        return ContactRecord.model_validate(
            {
                **data,
                "id": contact_id,
                "created_at": FIXED_NOW,
                "updated_at": FIXED_NOW,
                **record_fields,
            }
        )

    return factory


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(storage: MemoryStorage) -> ContactStore:
    ids = itertools.count(1)
    return ContactStore(
        storage,
        debounce_seconds=0.01,
        clock=lambda: FIXED_NOW,
        id_factory=lambda: f"id-{next(ids)}",
    )


@pytest.fixture
def source() -> SourceDouble:
    return SourceDouble()


@pytest.fixture
def address_book() -> AddressBookDouble:
    return AddressBookDouble()
