"""Weighted multi-signal similarity between two contacts.

Weights are fixed policy. The total is a plain sum (max 115) and is never
normalized; callers compare it against ``DUPLICATE_THRESHOLD``.
"""

from pydantic import BaseModel, ConfigDict, Field

from contactsync.models import ContactDraft

NAME_EXACT_WEIGHT = 40
NAME_PARTIAL_WEIGHT = 30
PHONE_WEIGHT = 35
EMAIL_WEIGHT = 25
ORGANIZATION_WEIGHT = 15

DUPLICATE_THRESHOLD = 50


class Signal(BaseModel):
    """One matching field and what it contributed."""

    model_config = ConfigDict(frozen=True)

    name: str
    weight: int
    reason: str


class SimilarityScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: int = 0
    signals: list[Signal] = Field(default_factory=list)

    @property
    def reasons(self) -> list[str]:
        return [signal.reason for signal in self.signals]

    @property
    def is_candidate_duplicate(self) -> bool:
        return self.value >= DUPLICATE_THRESHOLD


def _name_signal(a: ContactDraft, b: ContactDraft) -> Signal | None:
    name_a = a.name.strip().lower()
    name_b = b.name.strip().lower()
    if not name_a or not name_b:
        return None
    if name_a == name_b:
        return Signal(name="name", weight=NAME_EXACT_WEIGHT, reason="Exact name match")
    if name_a in name_b or name_b in name_a:
        return Signal(name="name", weight=NAME_PARTIAL_WEIGHT, reason="Similar names")
    return None


def phones_overlap(a: ContactDraft, b: ContactDraft) -> bool:
    """True when a normalized number of one equals, contains or is contained in one of the other."""
    phones_a = [p.normalized for p in a.phone_numbers if p.normalized]
    phones_b = [p.normalized for p in b.phone_numbers if p.normalized]
    return any(pa in pb or pb in pa for pa in phones_a for pb in phones_b)


def emails_overlap(a: ContactDraft, b: ContactDraft) -> bool:
    emails_a = {e.normalized for e in a.email_addresses if e.normalized}
    emails_b = {e.normalized for e in b.email_addresses if e.normalized}
    return bool(emails_a & emails_b)


def score(a: ContactDraft, b: ContactDraft) -> SimilarityScore:
    """Confidence (0-115) that two contacts refer to the same person."""
    signals = []

    name = _name_signal(a, b)
    if name:
        signals.append(name)

    if phones_overlap(a, b):
        signals.append(Signal(name="phone", weight=PHONE_WEIGHT, reason="Matching phone numbers"))

    if emails_overlap(a, b):
        signals.append(
            Signal(name="email", weight=EMAIL_WEIGHT, reason="Matching email addresses")
        )

    company_a = a.company.strip().lower()
    if company_a and company_a == b.company.strip().lower():
        signals.append(
            Signal(name="organization", weight=ORGANIZATION_WEIGHT, reason="Same company")
        )

    return SimilarityScore(value=sum(s.weight for s in signals), signals=signals)
