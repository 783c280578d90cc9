"""Unit tests for the device address-book source."""

from __future__ import annotations

import pytest

from contactsync.exceptions import ExternalUnavailableError, PermissionDeniedError
from contactsync.sources.device import DeviceSource
from contactsync.sync.synchronizer import SourceSynchronizer

from .conftest import draft

pytestmark = pytest.mark.unit


DEVICE_JANE = {
    "id": "7",
    "name": "Jane Doe",
    "firstName": "Jane",
    "lastName": "Doe",
    "company": "Acme",
    "phoneNumbers": [{"number": "555-123-4567", "label": "mobile", "isPrimary": True}],
    "emails": [{"email": "jane@acme.com", "label": "work"}],
    "addresses": [{"street": "1 Main St", "city": "Springfield"}],
    "birthday": {"year": 1990, "month": 5, "day": 15},
}


class TestDeviceSource:
    async def test_list_all_converts_device_contacts(self, address_book):
        address_book.contacts["7"] = DEVICE_JANE
        source = DeviceSource(address_book)

        (contact,) = [c async for c in source.list_all()]

        assert contact.external_ids == {"device": "7"}
        assert contact.name == "Jane Doe"
        assert contact.primary_phone.number == "555-123-4567"
        assert contact.email_addresses[0].kind == "work"
        assert contact.address == "1 Main St, Springfield"
        assert contact.birthday == "1990-05-15"

    async def test_list_all_without_permission(self, address_book):
        address_book.permission = False

        with pytest.raises(PermissionDeniedError):
            [c async for c in DeviceSource(address_book).list_all()]

    async def test_list_failure_is_external_unavailable(self, address_book):
        address_book.list_error = RuntimeError("bridge crashed")

        with pytest.raises(ExternalUnavailableError):
            [c async for c in DeviceSource(address_book).list_all()]

    async def test_request_access(self, address_book):
        address_book.permission = False
        source = DeviceSource(address_book)

        assert await source.check_access() is False
        assert await source.request_access() is True
        assert await source.check_access() is True

    async def test_find_by_phone_matches_normalized_digits(self, address_book):
        address_book.contacts["7"] = DEVICE_JANE
        source = DeviceSource(address_book)

        assert await source.find_by_phone("(555) 123-4567") == "7"
        assert await source.find_by_phone("555-123") is None
        assert await source.find_by_phone("no digits") is None

    async def test_get_and_count(self, address_book):
        address_book.contacts["7"] = DEVICE_JANE
        source = DeviceSource(address_book)

        assert (await source.get("7")).name == "Jane Doe"
        assert await source.get("8") is None
        assert await source.count() == 1

    async def test_update_leaves_omitted_keys_alone(self, address_book):
        address_book.contacts["7"] = DEVICE_JANE
        source = DeviceSource(address_book)

        await source.update(
            "7", draft("Janet", phones=("555-0000",), company="NewCo"), omit=frozenset({"phone"})
        )

        stored = address_book.contacts["7"]
        assert stored["phoneNumbers"] == DEVICE_JANE["phoneNumbers"]
        assert stored["company"] == "NewCo"
        assert stored["name"] == "Janet"

    async def test_create_update_delete(self, address_book):
        source = DeviceSource(address_book)

        external_id = await source.create(draft("Ann Lee", phones=("555",)))
        assert address_book.contacts[external_id]["name"] == "Ann Lee"
        assert await source.exists(external_id)

        await source.update(external_id, draft("Ann Lee", company="Acme"))
        assert address_book.contacts[external_id]["company"] == "Acme"
        assert address_book.contacts[external_id]["id"] == external_id

        await source.delete(external_id)
        assert not await source.exists(external_id)


class TestDeviceSync:
    async def test_push_without_permission_then_after_grant(
        self, store, storage, address_book
    ):
        address_book.permission = False
        address_book.grant_on_request = True
        syncer = SourceSynchronizer(store, DeviceSource(address_book), storage)
        record = store.add(draft("Jane", phones=("555-1234",)))

        denied = await syncer.push(record, "add")
        granted = await syncer.request_access()
        created = await syncer.push(record, "add")

        assert denied.action == "failed"
        assert granted is True
        assert created.action == "created"
        assert store.get(record.id).external_ids == {"device": created.external_id}

    async def test_phone_switched_off_keeps_device_numbers(self, store, storage, address_book):
        syncer = SourceSynchronizer(store, DeviceSource(address_book), storage)
        record = store.add(draft("Jane", phones=("555-1234",)))
        created = await syncer.push(record, "add")
        await syncer.update_settings(sync_fields={"phone": False})
        store.update(record.id, phone_numbers=(), company="Acme")

        updated = await syncer.push(store.get(record.id), "update")

        device = address_book.contacts[created.external_id]
        assert updated.action == "updated"
        assert [p["number"] for p in device["phoneNumbers"]] == ["555-1234"]
        assert device["company"] == "Acme"
