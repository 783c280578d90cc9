"""Device address book as an external source."""

import logging
from collections.abc import AsyncIterator
from typing import Protocol

from contactsync.exceptions import ExternalUnavailableError, PermissionDeniedError
from contactsync.models import ContactDraft, normalize_phone
from contactsync.sources.base import ExternalSource

logger = logging.getLogger(__name__)


class DeviceAddressBook(Protocol):
    """Platform address-book bridge provided by the host application.

    Works on device-shaped dicts (see ``ContactDraft.from_device_contact``).
    """

    async def get_permission(self) -> bool: ...

    async def request_permission(self) -> bool: ...

    async def list_contacts(self) -> list[dict]: ...

    async def get_contact(self, contact_id: str) -> dict | None: ...

    async def find_by_phone(self, number: str) -> list[dict]: ...

    async def add_contact(self, contact: dict) -> str: ...

    async def update_contact(self, contact: dict) -> None:
        """Write the keys present in ``contact``; absent keys keep their value."""
        ...

    async def delete_contact(self, contact_id: str) -> None: ...


class DeviceSource(ExternalSource):
    """Adapts a ``DeviceAddressBook`` to the external-source contract."""

    def __init__(self, address_book: DeviceAddressBook, name: str = "device"):
        self.address_book = address_book
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    async def check_access(self) -> bool:
        try:
            return await self.address_book.get_permission()
        except Exception as e:
            logger.error(f"Error checking contacts permission: {e}")
            return False

    async def request_access(self) -> bool:
        try:
            return await self.address_book.request_permission()
        except Exception as e:
            logger.error(f"Error requesting contacts permission: {e}")
            return False

    async def _require_access(self) -> None:
        if not await self.check_access():
            raise PermissionDeniedError(self.name)

    async def list_all(self) -> AsyncIterator[ContactDraft]:
        await self._require_access()
        try:
            contacts = await self.address_book.list_contacts()
        except Exception as e:
            raise ExternalUnavailableError(f"Listing device contacts failed: {e}") from e

        for contact in contacts:
            try:
                yield ContactDraft.from_device_contact(contact, source=self.name)
            except ValueError as e:
                logger.warning(f"Skipping unreadable device contact {contact.get('id')}: {e}")

    async def exists(self, external_id: str) -> bool:
        return await self.address_book.get_contact(external_id) is not None

    async def get(self, external_id: str) -> ContactDraft | None:
        await self._require_access()
        contact = await self.address_book.get_contact(external_id)
        if contact is None:
            return None
        return ContactDraft.from_device_contact(contact, source=self.name)

    async def count(self) -> int:
        await self._require_access()
        try:
            return len(await self.address_book.list_contacts())
        except Exception as e:
            raise ExternalUnavailableError(f"Listing device contacts failed: {e}") from e

    async def find_by_phone(self, number: str) -> str | None:
        wanted = normalize_phone(number)
        if not wanted:
            return None
        for contact in await self.address_book.find_by_phone(number):
            numbers = [normalize_phone(p.get("number", "")) for p in contact.get("phoneNumbers") or []]
            if wanted in numbers and contact.get("id"):
                return str(contact["id"])
        return None

    async def create(self, contact: ContactDraft, omit: frozenset[str] = frozenset()) -> str:
        return await self.address_book.add_contact(contact.to_device_contact(omit=omit))

    async def update(
        self, external_id: str, contact: ContactDraft, omit: frozenset[str] = frozenset()
    ) -> None:
        await self.address_book.update_contact(
            contact.to_device_contact(device_id=external_id, omit=omit)
        )

    async def delete(self, external_id: str) -> None:
        await self.address_book.delete_contact(external_id)
