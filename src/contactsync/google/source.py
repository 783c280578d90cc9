"""Google Contacts as an external source."""

import logging
from collections.abc import AsyncIterator

from contactsync.exceptions import GoogleAPIError, GoogleAuthError, PermissionDeniedError
from contactsync.google.client import GoogleContactsClient
from contactsync.models import ContactDraft, normalize_phone
from contactsync.sources.base import ExternalSource

logger = logging.getLogger(__name__)


class GoogleSource(ExternalSource):
    """Cloud directory backed by the Google People API.

    The person ``resourceName`` is the stable external identifier.
    """

    def __init__(self, client: GoogleContactsClient, name: str = "google"):
        self.client = client
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    async def check_access(self) -> bool:
        if not self.client.is_configured:
            return False
        try:
            await self.client.get_access_token()
        except GoogleAuthError as e:
            logger.warning(f"Google authentication failed: {e}")
            return False
        return True

    async def list_all(self) -> AsyncIterator[ContactDraft]:
        if not await self.check_access():
            raise PermissionDeniedError(self.name)

        async for person in self.client.iter_contacts():
            try:
                yield ContactDraft.from_google_person(person, source=self.name)
            except ValueError as e:
                # Skip contacts that fail to parse
                logger.warning(f"Failed to parse contact {person.get('resourceName')}: {e}")

    async def exists(self, external_id: str) -> bool:
        return await self.get(external_id) is not None

    async def get(self, external_id: str) -> ContactDraft | None:
        try:
            person = await self.client.get_contact(external_id)
        except GoogleAPIError as e:
            if e.status_code == 404:
                return None
            raise
        return ContactDraft.from_google_person(person, source=self.name)

    async def count(self) -> int:
        if not await self.check_access():
            raise PermissionDeniedError(self.name)
        return await self.client.count_contacts()

    async def find_by_phone(self, number: str) -> str | None:
        wanted = normalize_phone(number)
        if not wanted:
            return None
        for person in await self.client.search_contacts(number):
            numbers = [normalize_phone(p.get("value", "")) for p in person.get("phoneNumbers", [])]
            if wanted in numbers:
                return person.get("resourceName")
        return None

    async def create(self, contact: ContactDraft, omit: frozenset[str] = frozenset()) -> str:
        person = await self.client.create_contact(contact, omit=omit)
        return person["resourceName"]

    async def update(
        self, external_id: str, contact: ContactDraft, omit: frozenset[str] = frozenset()
    ) -> None:
        await self.client.update_contact(external_id, contact, omit=omit)

    async def delete(self, external_id: str) -> None:
        await self.client.delete_contact(external_id)

    async def close(self) -> None:
        await self.client.close()
