"""Read-only views derived from a store snapshot."""

from collections.abc import Sequence
from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from contactsync.models import ContactRecord, as_utc, utcnow

OTHER_GROUP = "Other"


class ContactStats(BaseModel):
    """Counts shown on the overview screen."""

    total: int = 0
    favorites: int = 0
    vip: int = 0
    emergency: int = 0
    groups: dict[str, int] = Field(default_factory=dict)
    recent: int = 0


def favorites(snapshot: Sequence[ContactRecord]) -> list[ContactRecord]:
    return [c for c in snapshot if c.is_favorite]


def vip(snapshot: Sequence[ContactRecord]) -> list[ContactRecord]:
    return [c for c in snapshot if c.is_vip]


def emergency_contacts(snapshot: Sequence[ContactRecord]) -> list[ContactRecord]:
    return [c for c in snapshot if c.is_emergency_contact]


def by_group(snapshot: Sequence[ContactRecord]) -> dict[str, list[ContactRecord]]:
    """Group contacts by their group field; ungrouped ones land in "Other"."""
    groups: dict[str, list[ContactRecord]] = {}
    for contact in snapshot:
        groups.setdefault(contact.group.strip() or OTHER_GROUP, []).append(contact)
    return groups


def by_label(snapshot: Sequence[ContactRecord], label: str) -> list[ContactRecord]:
    return [c for c in snapshot if label in c.labels]


def recent(
    snapshot: Sequence[ContactRecord],
    window: timedelta = timedelta(days=30),
    now: datetime | None = None,
) -> list[ContactRecord]:
    """Contacts whose latest interaction falls within ``window``, most recent first."""
    cutoff = as_utc(now or utcnow()) - window
    hits = [
        (c.last_interaction, c)
        for c in snapshot
        if c.last_interaction is not None and c.last_interaction >= cutoff
    ]
    hits.sort(key=lambda pair: pair[0], reverse=True)
    return [contact for _, contact in hits]


def search(snapshot: Sequence[ContactRecord], query: str) -> list[ContactRecord]:
    """Case-insensitive search over names, company, title, phones, emails and notes."""
    needle = query.strip().lower()
    if not needle:
        return list(snapshot)

    def matches(contact: ContactRecord) -> bool:
        texts = (
            contact.name,
            contact.first_name,
            contact.last_name,
            contact.company,
            contact.job_title,
            contact.notes,
        )
        if any(needle in text.lower() for text in texts if text):
            return True
        if any(query.strip() in p.number for p in contact.phone_numbers):
            return True
        return any(needle in e.email.lower() for e in contact.email_addresses)

    return [c for c in snapshot if matches(c)]


def stats(
    snapshot: Sequence[ContactRecord],
    window: timedelta = timedelta(days=7),
    now: datetime | None = None,
) -> ContactStats:
    return ContactStats(
        total=len(snapshot),
        favorites=len(favorites(snapshot)),
        vip=len(vip(snapshot)),
        emergency=len(emergency_contacts(snapshot)),
        groups={group: len(members) for group, members in by_group(snapshot).items()},
        recent=len(recent(snapshot, window, now)),
    )
