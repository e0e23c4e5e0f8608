"""
Licence domain types (``compliance_kernel.domain.licence``).

Responsibility
--------------
Pure value objects for licences and their substance mappings, plus the
effective-validity rules (expiry and grace period) and the expiry-window
scan used by the licence expiry monitor.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* A mapping's effective date must not precede the licence's issue date.
* A mapping's expiry must not exceed the licence's expiry.
* Caps are non-negative.

Date semantics
--------------
Expiry and grace-period end dates are inclusive: a licence expiring on
2025-06-30 is valid on 2025-06-30 and expired on 2025-07-01.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable
from uuid import UUID, uuid4

from compliance_kernel.domain.values import Activity, ActivitySet, Period

# Licence type codes with engine-level meaning
IMPORT_PERMIT = "IMPORT_PERMIT"
EXPORT_PERMIT = "EXPORT_PERMIT"


class LicenceStatus(str, Enum):
    VALID = "valid"
    EXPIRED = "expired"
    SUSPENDED = "suspended"
    REVOKED = "revoked"


class HolderType(str, Enum):
    COMPANY = "company"
    CUSTOMER = "customer"


@dataclass(frozen=True)
class SubstanceMapping:
    """Substance-level scope of a licence.

    ``max_quantity_per_period`` requires ``period``.  A window bound left as
    ``None`` inherits the licence's own bound.
    """

    substance_code: str
    max_quantity_per_transaction: Decimal | None = None
    max_quantity_per_period: Decimal | None = None
    period: Period | None = None
    effective_from: date | None = None
    expires_on: date | None = None
    mapping_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.mapping_id is None:
            object.__setattr__(self, "mapping_id", uuid4())
        for name in ("max_quantity_per_transaction", "max_quantity_per_period"):
            value = getattr(self, name)
            if value is not None:
                value = Decimal(value)
                if value < 0:
                    raise ValueError(f"{name} cannot be negative: {value}")
                object.__setattr__(self, name, value)
        if self.max_quantity_per_period is not None and self.period is None:
            raise ValueError(
                f"Mapping for {self.substance_code} has a per-period cap "
                "but no period"
            )
        if (
            self.effective_from is not None
            and self.expires_on is not None
            and self.expires_on < self.effective_from
        ):
            raise ValueError(
                f"Mapping for {self.substance_code} expires before it takes effect"
            )


@dataclass(frozen=True)
class Licence:
    """A legal authorization held by the company or a named customer."""

    licence_number: str
    licence_type: str
    holder_type: HolderType
    holder_id: str
    issuing_authority: str
    issue_date: date
    permitted_activities: ActivitySet
    expiry_date: date | None = None
    grace_period_end: date | None = None
    status: LicenceStatus = LicenceStatus.VALID
    substance_mappings: tuple[SubstanceMapping, ...] = ()
    licence_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.licence_id is None:
            object.__setattr__(self, "licence_id", uuid4())
        if not self.licence_number:
            raise ValueError("Licence number is required")
        if self.expiry_date is not None and self.expiry_date < self.issue_date:
            raise ValueError(
                f"Licence {self.licence_number} expires before it is issued"
            )
        if (
            self.grace_period_end is not None
            and self.expiry_date is not None
            and self.grace_period_end < self.expiry_date
        ):
            raise ValueError(
                f"Licence {self.licence_number} grace period ends before expiry"
            )
        object.__setattr__(
            self, "substance_mappings", tuple(self.substance_mappings)
        )
        for mapping in self.substance_mappings:
            if (
                mapping.effective_from is not None
                and mapping.effective_from < self.issue_date
            ):
                raise ValueError(
                    f"Mapping for {mapping.substance_code} on licence "
                    f"{self.licence_number} takes effect before the licence "
                    "is issued"
                )
            if (
                mapping.expires_on is not None
                and self.expiry_date is not None
                and mapping.expires_on > self.expiry_date
            ):
                raise ValueError(
                    f"Mapping for {mapping.substance_code} on licence "
                    f"{self.licence_number} outlives the licence"
                )

    def mappings_for(self, substance_code: str) -> tuple[SubstanceMapping, ...]:
        return tuple(
            m for m in self.substance_mappings
            if m.substance_code == substance_code
        )

    def permits(self, activities: ActivitySet) -> bool:
        return self.permitted_activities.includes(activities)

    def permits_activity(self, activity: Activity) -> bool:
        return activity in self.permitted_activities


# =========================================================================
# Validity
# =========================================================================


def is_in_grace_period(licence: Licence, as_of: date) -> bool:
    return (
        licence.expiry_date is not None
        and as_of > licence.expiry_date
        and licence.grace_period_end is not None
        and as_of <= licence.grace_period_end
    )


def is_past_validity(licence: Licence, as_of: date) -> bool:
    """True if ``as_of`` is after the expiry date and any grace period."""
    if licence.expiry_date is None or as_of <= licence.expiry_date:
        return False
    return not is_in_grace_period(licence, as_of)


def is_effectively_valid(licence: Licence, as_of: date) -> bool:
    """Status is valid, the licence is issued, and not past expiry or grace."""
    return (
        licence.status == LicenceStatus.VALID
        and licence.issue_date <= as_of
        and not is_past_validity(licence, as_of)
    )


def is_expired(licence: Licence, as_of: date) -> bool:
    """Expired by status or by date (grace period considered)."""
    return licence.status == LicenceStatus.EXPIRED or (
        licence.status == LicenceStatus.VALID and is_past_validity(licence, as_of)
    )


def validity_end(licence: Licence) -> date | None:
    """Last date the licence can be used, grace period included."""
    if licence.expiry_date is None:
        return None
    if licence.grace_period_end is not None:
        return max(licence.expiry_date, licence.grace_period_end)
    return licence.expiry_date


def mapping_covers(licence: Licence, mapping: SubstanceMapping, on: date) -> bool:
    """True if ``mapping``'s window contains ``on``.

    A mapping running to the licence's own expiry shares the licence's grace
    period; one that ends earlier does not.
    """
    start = mapping.effective_from or licence.issue_date
    if on < start:
        return False
    if mapping.expires_on is None:
        return True
    if on <= mapping.expires_on:
        return True
    return (
        licence.expiry_date is not None
        and mapping.expires_on >= licence.expiry_date
        and is_in_grace_period(licence, on)
    )


# =========================================================================
# Expiry monitoring
# =========================================================================


@dataclass(frozen=True, slots=True)
class ExpiringLicence:
    """A licence whose expiry falls inside a warning window."""

    licence: Licence
    days_until_expiry: int
    window_days: int


def find_expiring(
    licences: Iterable[Licence],
    as_of: date,
    windows_days: tuple[int, ...],
) -> tuple[ExpiringLicence, ...]:
    """
    Licences expiring within the largest window, tagged with the tightest
    window they fall into.

    Only licences with status VALID and an expiry on or after ``as_of`` are
    considered.  Results are ordered by expiry date, then licence number.
    """
    if not windows_days:
        return ()
    ordered_windows = sorted(set(windows_days))
    horizon = ordered_windows[-1]
    found: list[ExpiringLicence] = []
    for licence in licences:
        if licence.status != LicenceStatus.VALID or licence.expiry_date is None:
            continue
        days = (licence.expiry_date - as_of).days
        if days < 0 or days > horizon:
            continue
        window = next(w for w in ordered_windows if days <= w)
        found.append(ExpiringLicence(licence, days, window))
    found.sort(key=lambda e: (e.licence.expiry_date, e.licence.licence_number))
    return tuple(found)
