"""Contract every external contact source implements."""

import abc
from collections.abc import AsyncIterator

from contactsync.models import ContactDraft


class ExternalSource(abc.ABC):
    """An address book the core does not own (device contacts, Google...).

    Records cross this boundary as ``ContactDraft``s whose ``external_ids``
    carry this source's identifier under ``name``.
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Stable source name, also the key into ``ContactDraft.external_ids``."""
        ...

    @abc.abstractmethod
    async def check_access(self) -> bool:
        """Whether the source is reachable and authorized right now."""
        ...

    async def request_access(self) -> bool:
        """Ask for access where the source supports prompting; defaults to a check."""
        return await self.check_access()

    @abc.abstractmethod
    def list_all(self) -> AsyncIterator[ContactDraft]:
        """Yield every record held by the source."""
        ...

    @abc.abstractmethod
    async def exists(self, external_id: str) -> bool:
        ...

    @abc.abstractmethod
    async def get(self, external_id: str) -> ContactDraft | None:
        """The record with ``external_id``, or None when the source has no such record."""
        ...

    async def count(self) -> int:
        """Number of records held by the source."""
        total = 0
        async for _ in self.list_all():
            total += 1
        return total

    @abc.abstractmethod
    async def find_by_phone(self, number: str) -> str | None:
        """External id of a record carrying ``number``, if any."""
        ...

    @abc.abstractmethod
    async def create(self, contact: ContactDraft, omit: frozenset[str] = frozenset()) -> str:
        """Create the record and return its external id.

        ``omit`` names field groups (see ``SyncFields``) that must not be written.
        """
        ...

    @abc.abstractmethod
    async def update(
        self, external_id: str, contact: ContactDraft, omit: frozenset[str] = frozenset()
    ) -> None:
        """Overwrite the record; field groups in ``omit`` keep their external value."""
        ...

    @abc.abstractmethod
    async def delete(self, external_id: str) -> None:
        ...

    async def close(self) -> None:
        """Release resources held by the source."""
        return None
