"""Data models for contactsync."""

from datetime import UTC, date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PhoneKind = Literal["mobile", "work", "home", "other"]
EmailKind = Literal["personal", "work", "other"]
HistorySource = Literal["automatic", "manual"]

UNNAMED_CONTACT = "Unnamed contact"


def utcnow() -> datetime:
    return datetime.now(UTC)


def normalize_phone(number: str) -> str:
    """Strip everything but digits."""
    return "".join(c for c in number if c.isdigit())


def normalize_email(email: str) -> str:
    return email.strip().lower()


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def _attr(item: Any, key: str) -> Any:
    """Read a field from either a raw dict or an already-built model."""
    if isinstance(item, dict):
        return item.get(key)
    return getattr(item, key, None)


def _single_primary(entries: tuple) -> tuple:
    """Keep the primary flag on the first entry that claims it, clear the rest."""
    seen = False
    fixed = []
    for entry in entries:
        if entry.is_primary and seen:
            entry = entry.model_copy(update={"is_primary": False})
        elif entry.is_primary:
            seen = True
        fixed.append(entry)
    return tuple(fixed)


def derive_name(data: dict[str, Any]) -> str:
    """Display name from first/last name, else the first email, else the first phone."""
    full = " ".join(
        part.strip() for part in (data.get("first_name") or "", data.get("last_name") or "")
        if part and part.strip()
    )
    if not full:
        emails = data.get("email_addresses") or ()
        phones = data.get("phone_numbers") or ()
        if emails:
            full = _attr(emails[0], "email") or ""
        elif phones:
            full = _attr(phones[0], "number") or ""
    return full or UNNAMED_CONTACT


class PhoneNumber(BaseModel):
    """One phone number on a contact."""

    model_config = ConfigDict(frozen=True)

    number: str
    kind: PhoneKind = "mobile"
    is_primary: bool = False

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, value: Any) -> str:
        value = str(value or "").lower()
        return value if value in ("mobile", "work", "home") else "other"

    @property
    def normalized(self) -> str:
        return normalize_phone(self.number)


class EmailAddress(BaseModel):
    """One email address on a contact."""

    model_config = ConfigDict(frozen=True)

    email: str
    kind: EmailKind = "personal"
    is_primary: bool = False

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, value: Any) -> str:
        value = str(value or "").lower()
        if value in ("home", "personal"):
            return "personal"
        return "work" if value == "work" else "other"

    @property
    def normalized(self) -> str:
        return normalize_email(self.email)


class HistoryEvent(BaseModel):
    """An interaction with a contact (call, meeting, note, merge...)."""

    model_config = ConfigDict(frozen=True)

    kind: str = "custom"
    timestamp: datetime = Field(default_factory=utcnow)
    location: str | None = None
    note: str | None = None
    duration: int | None = Field(default=None, description="Seconds")
    source: HistorySource = "manual"

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)


class ContactDraft(BaseModel):
    """Caller-supplied contact fields.

    Used as the payload of an ``add`` and as the shape external sources are
    converted into before they are reconciled with local records.
    """

    model_config = ConfigDict(frozen=True)

    # Per-source external identifiers ({"google": "people/c123"})
    external_ids: dict[str, str] = Field(default_factory=dict)

    name: str = ""
    first_name: str = ""
    last_name: str = ""

    phone_numbers: tuple[PhoneNumber, ...] = ()
    email_addresses: tuple[EmailAddress, ...] = ()

    company: str = ""
    job_title: str = ""
    business_type: str = ""
    address: str = ""
    social_media: str = ""
    website: str = ""
    birthday: str = ""
    anniversary: str = ""
    notes: str = ""

    group: str = ""
    labels: frozenset[str] = frozenset()
    is_emergency_contact: bool = False
    emergency_contact: str = ""

    image_uri: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _derive_name(cls, data: Any) -> Any:
        if not isinstance(data, dict) or (data.get("name") or "").strip():
            return data
        return {**data, "name": derive_name(data)}

    @field_validator("phone_numbers", "email_addresses")
    @classmethod
    def _fix_primary_flags(cls, value: tuple) -> tuple:
        return _single_primary(value)

    @property
    def primary_phone(self) -> PhoneNumber | None:
        """Primary phone, falling back to the first one."""
        for phone in self.phone_numbers:
            if phone.is_primary:
                return phone
        return self.phone_numbers[0] if self.phone_numbers else None

    @property
    def primary_email(self) -> EmailAddress | None:
        """Primary email, falling back to the first one."""
        for email in self.email_addresses:
            if email.is_primary:
                return email
        return self.email_addresses[0] if self.email_addresses else None

    @classmethod
    def from_google_person(cls, person: dict, source: str = "google") -> "ContactDraft":
        """Parse Google People API person resource.

        Expected person structure:
        {
            "resourceName": "people/c123456",
            "names": [{"displayName": "John Doe", "givenName": "John", "familyName": "Doe"}],
            "emailAddresses": [{"value": "john@example.com", "type": "work"}],
            "phoneNumbers": [{"value": "+1234567890", "type": "mobile"}],
            "birthdays": [{"date": {"year": 1990, "month": 1, "day": 15}}],
            "organizations": [{"name": "Company", "title": "Engineer"}],
            "biographies": [{"value": "Met at the conference"}],
            "addresses": [{"formattedValue": "123 Main St"}],
            "urls": [{"value": "https://example.com"}],
            "photos": [{"url": "https://..."}],
        }
        """
        resource_name = person.get("resourceName", "")

        names = person.get("names", [])
        display_name = names[0].get("displayName", "") if names else ""
        first_name = names[0].get("givenName", "") if names else ""
        last_name = names[0].get("familyName", "") if names else ""

        phones = []
        for phone in person.get("phoneNumbers", []):
            if phone.get("value"):
                phones.append(
                    PhoneNumber(
                        number=phone["value"],
                        kind=phone.get("type", "other"),
                        is_primary=phone.get("metadata", {}).get("primary", False),
                    )
                )

        emails = []
        for email in person.get("emailAddresses", []):
            if email.get("value"):
                emails.append(
                    EmailAddress(
                        email=email["value"],
                        kind=email.get("type", "other"),
                        is_primary=email.get("metadata", {}).get("primary", False),
                    )
                )

        # Birthday as ISO date, or --MM-DD when the year is hidden
        birthday = ""
        birthdays = person.get("birthdays", [])
        if birthdays:
            bd = birthdays[0].get("date", {})
            month, day = bd.get("month"), bd.get("day")
            if month and day:
                year = bd.get("year")
                birthday = f"{year:04d}-{month:02d}-{day:02d}" if year else f"--{month:02d}-{day:02d}"

        orgs = person.get("organizations", [])
        bios = person.get("biographies", [])
        addresses = person.get("addresses", [])
        urls = person.get("urls", [])
        photos = [p for p in person.get("photos", []) if not p.get("default")]

        return cls(
            external_ids={source: resource_name} if resource_name else {},
            name=display_name,
            first_name=first_name,
            last_name=last_name,
            phone_numbers=tuple(phones),
            email_addresses=tuple(emails),
            company=orgs[0].get("name", "") if orgs else "",
            job_title=orgs[0].get("title", "") if orgs else "",
            notes=bios[0].get("value", "") if bios else "",
            address=addresses[0].get("formattedValue", "") if addresses else "",
            website=urls[0].get("value", "") if urls else "",
            birthday=birthday,
            image_uri=photos[0].get("url") if photos else None,
        )

    def to_google_person(self, omit: frozenset[str] = frozenset()) -> dict[str, Any]:
        """Convert to Google People API person resource format.

        Empty fields are left out so that an update only touches what we have.
        ``omit`` names field groups ("name", "phone", "email", "address",
        "birthday", "notes", "photo") to leave out as well.
        """
        person: dict[str, Any] = {}

        if "name" not in omit:
            person["names"] = [
                {
                    "givenName": self.first_name,
                    "familyName": self.last_name,
                    "unstructuredName": self.name,
                }
            ]

        if self.phone_numbers and "phone" not in omit:
            person["phoneNumbers"] = [
                {"value": phone.number, "type": phone.kind} for phone in self.phone_numbers
            ]

        if self.email_addresses and "email" not in omit:
            person["emailAddresses"] = [
                {"value": email.email, "type": "home" if email.kind == "personal" else email.kind}
                for email in self.email_addresses
            ]

        if self.company or self.job_title:
            person["organizations"] = [{"name": self.company, "title": self.job_title}]

        if self.notes and "notes" not in omit:
            person["biographies"] = [{"value": self.notes, "contentType": "TEXT_PLAIN"}]

        birthday = _parse_birthday(self.birthday)
        if birthday and "birthday" not in omit:
            person["birthdays"] = [{"date": birthday}]

        if self.address and "address" not in omit:
            person["addresses"] = [{"formattedValue": self.address, "type": "home"}]

        if self.website:
            person["urls"] = [{"value": self.website, "type": "homePage"}]

        return person

    @classmethod
    def from_device_contact(cls, device: dict, source: str = "device") -> "ContactDraft":
        """Parse a device address-book entry.

        Expected structure:
        {
            "id": "412",
            "name": "Jane Doe",
            "firstName": "Jane",
            "lastName": "Doe",
            "company": "Acme",
            "jobTitle": "CTO",
            "note": "...",
            "image": {"uri": "file:///..."},
            "phoneNumbers": [{"number": "555-1234", "label": "mobile", "isPrimary": true}],
            "emails": [{"email": "jane@acme.com", "label": "work", "isPrimary": true}],
            "addresses": [{"street": "1 Main St", "city": "Springfield"}],
            "birthday": {"year": 1990, "month": 5, "day": 15},
        }
        """
        device_id = str(device.get("id") or "")

        phones = tuple(
            PhoneNumber(
                number=phone["number"],
                kind=phone.get("label", "other"),
                is_primary=phone.get("isPrimary", False),
            )
            for phone in device.get("phoneNumbers") or []
            if phone.get("number")
        )
        emails = tuple(
            EmailAddress(
                email=email["email"],
                kind=email.get("label", "other"),
                is_primary=email.get("isPrimary", False),
            )
            for email in device.get("emails") or []
            if email.get("email")
        )

        address = ""
        addresses = device.get("addresses") or []
        if addresses:
            first = addresses[0]
            parts = [first.get(k) for k in ("street", "city", "region", "postalCode", "country")]
            address = ", ".join(p for p in parts if p)

        # Device birthdays use 1-based months
        birthday = ""
        bd = device.get("birthday") or {}
        if bd.get("month") and bd.get("day"):
            if bd.get("year"):
                birthday = f"{bd['year']:04d}-{bd['month']:02d}-{bd['day']:02d}"
            else:
                birthday = f"--{bd['month']:02d}-{bd['day']:02d}"

        image = device.get("image") or {}

        return cls(
            external_ids={source: device_id} if device_id else {},
            name=device.get("name") or "",
            first_name=device.get("firstName") or "",
            last_name=device.get("lastName") or "",
            company=device.get("company") or "",
            job_title=device.get("jobTitle") or "",
            notes=device.get("note") or "",
            phone_numbers=phones,
            email_addresses=emails,
            address=address,
            birthday=birthday,
            image_uri=image.get("uri"),
        )

    def to_device_contact(
        self, device_id: str | None = None, omit: frozenset[str] = frozenset()
    ) -> dict[str, Any]:
        """Convert to the device address-book shape.

        Keys for the field groups in ``omit`` are left out, not blanked.
        """
        contact: dict[str, Any] = {
            "company": self.company,
            "jobTitle": self.job_title,
        }
        if device_id:
            contact["id"] = device_id
        if "name" not in omit:
            contact.update(name=self.name, firstName=self.first_name, lastName=self.last_name)
        if "notes" not in omit:
            contact["note"] = self.notes
        if "phone" not in omit:
            contact["phoneNumbers"] = [
                {"number": p.number, "label": p.kind, "isPrimary": p.is_primary}
                for p in self.phone_numbers
            ]
        if "email" not in omit:
            contact["emails"] = [
                {"email": e.email, "label": e.kind, "isPrimary": e.is_primary}
                for e in self.email_addresses
            ]
        if self.address and "address" not in omit:
            contact["addresses"] = [{"street": self.address, "label": "home"}]
        birthday = _parse_birthday(self.birthday)
        if birthday and "birthday" not in omit:
            contact["birthday"] = birthday
        if self.image_uri and "photo" not in omit:
            contact["image"] = {"uri": self.image_uri}
        return contact


class ContactRecord(ContactDraft):
    """Canonical contact held by the store."""

    id: str
    is_favorite: bool = False
    is_vip: bool = False
    history: tuple[HistoryEvent, ...] = ()
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc_timestamps(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def last_interaction(self) -> datetime | None:
        """Timestamp of the most recent history event."""
        if not self.history:
            return None
        return max(event.timestamp for event in self.history)


class DuplicateCandidate(BaseModel):
    """A pair of records that probably describe the same person."""

    model_config = ConfigDict(frozen=True)

    a: ContactRecord
    b: ContactRecord
    similarity: int
    reasons: list[str] = Field(default_factory=list)


class SourceDuplicate(BaseModel):
    """A local record and an external one that probably describe the same person."""

    model_config = ConfigDict(frozen=True)

    source: str
    record: ContactRecord
    external: ContactDraft
    similarity: int
    reasons: list[str] = Field(default_factory=list)


def _parse_birthday(value: str) -> dict[str, int] | None:
    """Turn "YYYY-MM-DD" or "--MM-DD" into a {year, month, day} dict."""
    if not value:
        return None
    if value.startswith("--"):
        try:
            month, day = (int(part) for part in value[2:].split("-"))
        except ValueError:
            return None
        return {"month": month, "day": day}
    try:
        parsed = date.fromisoformat(value[:10])
    except ValueError:
        return None
    return {"year": parsed.year, "month": parsed.month, "day": parsed.day}
