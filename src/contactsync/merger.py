"""Merge two contact records into one without dropping data.

Primary wins on scalars, collections are unioned, flags are OR-ed and the
histories are concatenated with a trailing merge event.
"""

from datetime import datetime

from contactsync.models import ContactRecord, HistoryEvent, utcnow

SCALAR_FIELDS = (
    "name",
    "first_name",
    "last_name",
    "company",
    "job_title",
    "business_type",
    "address",
    "social_media",
    "website",
    "birthday",
    "anniversary",
    "notes",
    "group",
    "emergency_contact",
)

FLAG_FIELDS = ("is_favorite", "is_vip", "is_emergency_contact")


def _union_by_normalized(primary: tuple, secondary: tuple) -> tuple:
    merged = list(primary)
    seen = {entry.normalized for entry in merged}
    has_primary = any(entry.is_primary for entry in merged)
    for entry in secondary:
        if entry.normalized in seen:
            continue
        if entry.is_primary and has_primary:
            entry = entry.model_copy(update={"is_primary": False})
        has_primary = has_primary or entry.is_primary
        seen.add(entry.normalized)
        merged.append(entry)
    return tuple(merged)


def merge(
    primary: ContactRecord,
    secondary: ContactRecord,
    *,
    now: datetime | None = None,
) -> ContactRecord:
    """Reconcile ``secondary`` into ``primary``.

    The result keeps the primary's id and creation time. Removing the
    secondary from wherever it lives is up to the caller.
    """
    now = now or utcnow()

    update: dict = {
        field: getattr(primary, field) or getattr(secondary, field) for field in SCALAR_FIELDS
    }
    update.update(
        {field: getattr(primary, field) or getattr(secondary, field) for field in FLAG_FIELDS}
    )

    update["phone_numbers"] = _union_by_normalized(primary.phone_numbers, secondary.phone_numbers)
    update["email_addresses"] = _union_by_normalized(
        primary.email_addresses, secondary.email_addresses
    )
    update["labels"] = primary.labels | secondary.labels
    update["image_uri"] = primary.image_uri or secondary.image_uri
    update["external_ids"] = {**secondary.external_ids, **primary.external_ids}

    merge_event = HistoryEvent(
        kind="custom",
        timestamp=now,
        note=f"Merged with {secondary.name}",
        source="manual",
    )
    update["history"] = primary.history + secondary.history + (merge_event,)
    update["updated_at"] = now

    return primary.model_copy(update=update)
