"""
Substance domain types (``compliance_kernel.domain.substance``).

Responsibility
--------------
Pure value objects for controlled substances: the two-axis regulatory
classification, reclassification events and the substance record itself.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* A substance's classification is never "none" on both axes.
* A reclassification must change at least one axis and must not leave the
  substance uncontrolled on both axes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from uuid import UUID, uuid4


class OpiumActList(str, Enum):
    """Narcotics list a substance is scheduled on."""

    NONE = "none"
    LIST_I = "list_i"
    LIST_II = "list_ii"


class PrecursorCategory(str, Enum):
    """EU drug-precursor category."""

    NONE = "none"
    CATEGORY_1 = "category_1"
    CATEGORY_2 = "category_2"
    CATEGORY_3 = "category_3"


# Higher number = stricter control
OPIUM_ACT_SEVERITY: dict[OpiumActList, int] = {
    OpiumActList.NONE: 0,
    OpiumActList.LIST_II: 1,
    OpiumActList.LIST_I: 2,
}

PRECURSOR_SEVERITY: dict[PrecursorCategory, int] = {
    PrecursorCategory.NONE: 0,
    PrecursorCategory.CATEGORY_3: 1,
    PrecursorCategory.CATEGORY_2: 2,
    PrecursorCategory.CATEGORY_1: 3,
}


@dataclass(frozen=True, slots=True)
class Classification:
    """Regulatory classification on both axes."""

    opium_act_list: OpiumActList = OpiumActList.NONE
    precursor_category: PrecursorCategory = PrecursorCategory.NONE

    @property
    def is_controlled(self) -> bool:
        return (
            self.opium_act_list != OpiumActList.NONE
            or self.precursor_category != PrecursorCategory.NONE
        )

    @property
    def is_opium_act_controlled(self) -> bool:
        return self.opium_act_list != OpiumActList.NONE

    @property
    def is_precursor(self) -> bool:
        return self.precursor_category != PrecursorCategory.NONE

    def is_stricter_than(self, other: Classification) -> bool:
        """True if either axis is more severely controlled than in ``other``."""
        return (
            OPIUM_ACT_SEVERITY[self.opium_act_list]
            > OPIUM_ACT_SEVERITY[other.opium_act_list]
            or PRECURSOR_SEVERITY[self.precursor_category]
            > PRECURSOR_SEVERITY[other.precursor_category]
        )


class ReclassificationStatus(str, Enum):
    """Processing state of a reclassification event."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ReclassificationEvent:
    """A regulator-driven change to a substance's classification.

    Only ``COMPLETED`` events participate in classification resolution.
    """

    substance_code: str
    previous: Classification
    new: Classification
    effective_date: date
    status: ReclassificationStatus = ReclassificationStatus.COMPLETED
    regulatory_reference: str = ""
    regulatory_authority: str = ""
    reason: str | None = None
    reclassification_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.reclassification_id is None:
            object.__setattr__(self, "reclassification_id", uuid4())
        if self.previous == self.new:
            raise ValueError(
                f"Reclassification of {self.substance_code} must change "
                "at least one classification axis"
            )
        if not self.new.is_controlled:
            raise ValueError(
                f"Reclassification of {self.substance_code} cannot leave "
                "both classification axes at none"
            )

    @property
    def is_completed(self) -> bool:
        return self.status == ReclassificationStatus.COMPLETED

    @property
    def is_upgrade(self) -> bool:
        """True if the substance becomes more strictly controlled."""
        return self.new.is_stricter_than(self.previous)


@dataclass(frozen=True)
class Substance:
    """Controlled substance reference record.

    ``classification`` is the current one; ``reclassifications`` holds the
    history in any order.
    """

    substance_code: str
    name: str
    classification: Classification
    reclassifications: tuple[ReclassificationEvent, ...] = ()
    is_active: bool = True

    def __post_init__(self) -> None:
        if not self.substance_code or not self.substance_code.strip():
            raise ValueError("Substance code is required")
        if not self.classification.is_controlled:
            raise ValueError(
                f"Substance {self.substance_code} must be classified on at "
                "least one axis"
            )
        object.__setattr__(
            self, "reclassifications", tuple(self.reclassifications)
        )
        for event in self.reclassifications:
            if event.substance_code != self.substance_code:
                raise ValueError(
                    f"Reclassification for {event.substance_code} attached "
                    f"to substance {self.substance_code}"
                )

    @property
    def completed_reclassifications(self) -> tuple[ReclassificationEvent, ...]:
        return tuple(e for e in self.reclassifications if e.is_completed)
