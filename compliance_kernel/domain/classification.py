"""
ClassificationResolver -- time-aware substance classification.

Responsibility:
    Answers "how was this substance classified on date D?" from the
    substance's current classification and its reclassification history.
    Past transactions are judged under the classification that applied when
    they occurred, even after the substance has been reclassified.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

Algorithm:
    1. Completed events with effective date <= as-of: the latest one's
       ``new`` classification.
    2. Otherwise, if completed events exist (all after as-of): the earliest
       one's ``previous`` classification.
    3. Otherwise: the substance's current classification.

    Events sharing an effective date are ordered by reclassification id so
    the result never depends on input order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from uuid import UUID

from compliance_kernel.domain.substance import (
    Classification,
    ReclassificationEvent,
    Substance,
)


@dataclass(frozen=True, slots=True)
class ResolvedClassification:
    """Classification in force on ``as_of`` and where it came from."""

    substance_code: str
    as_of: date
    classification: Classification
    source_reclassification_id: UUID | None = None


def _chronological(events: tuple[ReclassificationEvent, ...]) -> list[ReclassificationEvent]:
    return sorted(events, key=lambda e: (e.effective_date, str(e.reclassification_id)))


def resolve(substance: Substance, as_of: date) -> ResolvedClassification:
    """Resolve the classification in force on ``as_of``."""
    completed = _chronological(substance.completed_reclassifications)
    if not completed:
        return ResolvedClassification(
            substance_code=substance.substance_code,
            as_of=as_of,
            classification=substance.classification,
        )

    in_force = [e for e in completed if e.effective_date <= as_of]
    if in_force:
        latest = in_force[-1]
        return ResolvedClassification(
            substance_code=substance.substance_code,
            as_of=as_of,
            classification=latest.new,
            source_reclassification_id=latest.reclassification_id,
        )

    # as_of precedes every recorded change
    earliest = completed[0]
    return ResolvedClassification(
        substance_code=substance.substance_code,
        as_of=as_of,
        classification=earliest.previous,
        source_reclassification_id=earliest.reclassification_id,
    )


def classification_on(substance: Substance, as_of: date) -> Classification:
    return resolve(substance, as_of).classification


def has_been_reclassified_since(substance: Substance, since: date) -> bool:
    """True if any completed reclassification takes effect after ``since``."""
    return any(
        e.effective_date > since for e in substance.completed_reclassifications
    )
