"""Duplicate detection within a store snapshot and against an external source."""

import logging
from collections.abc import Sequence

from contactsync.models import (
    ContactDraft,
    ContactRecord,
    DuplicateCandidate,
    SourceDuplicate,
)
from contactsync.similarity import DUPLICATE_THRESHOLD, score

logger = logging.getLogger(__name__)


def find_duplicates(snapshot: Sequence[ContactRecord]) -> list[DuplicateCandidate]:
    """Return candidate duplicate pairs, highest similarity first.

    Exhaustive O(n^2) comparison. Fine for personal address books; bucket by
    normalized phone or email prefix first if this ever has to scale.
    """
    candidates = []
    for i, a in enumerate(snapshot):
        for b in snapshot[i + 1 :]:
            result = score(a, b)
            if result.value >= DUPLICATE_THRESHOLD:
                candidates.append(
                    DuplicateCandidate(a=a, b=b, similarity=result.value, reasons=result.reasons)
                )

    candidates.sort(key=lambda c: c.similarity, reverse=True)
    logger.debug(f"Found {len(candidates)} duplicate candidates among {len(snapshot)} contacts")
    return candidates


def find_cross_source(
    records: Sequence[ContactRecord], drafts: Sequence[ContactDraft], source: str
) -> list[SourceDuplicate]:
    """Pair local records with external ones that probably describe the same person.

    Pairs already linked through ``external_ids[source]`` are not reported.
    """
    candidates = []
    for record in records:
        linked = record.external_ids.get(source)
        for draft in drafts:
            if linked and linked == draft.external_ids.get(source):
                continue
            result = score(record, draft)
            if result.is_candidate_duplicate:
                candidates.append(
                    SourceDuplicate(
                        source=source,
                        record=record,
                        external=draft,
                        similarity=result.value,
                        reasons=result.reasons,
                    )
                )

    candidates.sort(key=lambda c: c.similarity, reverse=True)
    logger.debug(
        f"Found {len(candidates)} duplicate candidates between {len(records)} local "
        f"and {len(drafts)} {source} contacts"
    )
    return candidates
