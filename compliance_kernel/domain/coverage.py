"""
CoverageMatcher -- which licence legally covers a transaction line.

Responsibility:
    For the lines of one substance in a transaction, pick a covering
    licence per line from the holder's licences and report the capacity
    left on it, or a structured reason when nothing covers the line.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

Selection:
    A licence qualifies for a line when
      (a) it is effectively valid on the transaction date (grace period
          counted),
      (b) its permitted activities include every required activity,
      (c) one of its mappings for the substance covers the date,
      (d) the line fits the mapping's per-transaction cap, and
      (e) the line fits what remains of the per-period cap.
    Among qualifying licences the one whose validity ends soonest wins;
    equal end dates are ordered by the configured ``CoverageTieBreak``.
    A cap that the line exceeds disqualifies the licence for that line;
    lines are never split across licences.

Per-period usage:
    ``period_usage`` maps ``(licence_id, substance_code)`` to the quantity
    already consumed in the mapping's current period (see
    ``values.period_bounds``).  The caller computes it.  Lines matched
    earlier in the same call are added on top.

Failure reasons, in precedence order:
    1. A licence failed only the expiry / grace check -> EXPIRED.
    2. A suspended licence would otherwise have matched -> SUSPENDED.
    3. Otherwise -> MISSING.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable, Mapping
from uuid import UUID

from compliance_kernel.domain.licence import (
    Licence,
    LicenceStatus,
    SubstanceMapping,
    is_effectively_valid,
    is_expired,
    mapping_covers,
    validity_end,
)
from compliance_kernel.domain.transaction import (
    CoverageOutcome,
    CoverageStatus,
    TransactionDirection,
    TransactionLine,
    TransactionType,
)
from compliance_kernel.domain.values import Activity, ActivitySet

_ZERO = Decimal("0")


class CoverageTieBreak(str, Enum):
    """Ordering among licences whose validity ends on the same date."""

    LICENCE_NUMBER = "licence_number"
    ISSUE_DATE = "issue_date"
    REMAINING_CAPACITY = "remaining_capacity"


class CoverageFailureReason(str, Enum):
    NO_LICENCE = "no_licence"
    ACTIVITY_NOT_PERMITTED = "activity_not_permitted"
    OUTSIDE_MAPPING_WINDOW = "outside_mapping_window"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    LICENCE_EXPIRED = "licence_expired"
    LICENCE_SUSPENDED = "licence_suspended"


REQUIRED_ACTIVITIES: dict[TransactionType, ActivitySet] = {
    TransactionType.ORDER: ActivitySet.of(Activity.DISTRIBUTE),
    TransactionType.SHIPMENT: ActivitySet.of(Activity.DISTRIBUTE),
    TransactionType.RETURN: ActivitySet.of(Activity.POSSESS),
    TransactionType.TRANSFER: ActivitySet.of(Activity.POSSESS, Activity.STORE),
}


def required_activities(
    transaction_type: TransactionType,
    direction: TransactionDirection,
    cross_border: bool,
) -> ActivitySet:
    activities = REQUIRED_ACTIVITIES[transaction_type]
    if cross_border and direction == TransactionDirection.INBOUND:
        activities = activities | ActivitySet.of(Activity.IMPORT)
    elif cross_border and direction == TransactionDirection.OUTBOUND:
        activities = activities | ActivitySet.of(Activity.EXPORT)
    return activities


@dataclass(frozen=True)
class CoverageRequest:
    """Lines of one substance to be matched together."""

    substance_code: str
    lines: tuple[TransactionLine, ...]
    transaction_date: date
    activities: ActivitySet


@dataclass(frozen=True, slots=True)
class _Candidate:
    licence: Licence
    mapping: SubstanceMapping
    remaining_period: Decimal | None


def _covering_mappings(
    licence: Licence, substance_code: str, on: date
) -> tuple[SubstanceMapping, ...]:
    return tuple(
        mapping
        for mapping in licence.mappings_for(substance_code)
        if mapping_covers(licence, mapping, on)
    )


def _started_mapping(
    licence: Licence, substance_code: str, on: date
) -> SubstanceMapping | None:
    """A mapping that had taken effect by ``on``, ignoring its end date."""
    for mapping in licence.mappings_for(substance_code):
        if (mapping.effective_from or licence.issue_date) <= on:
            return mapping
    return None


def _remaining_period(
    licence: Licence,
    mapping: SubstanceMapping,
    substance_code: str,
    period_usage: Mapping[tuple[UUID, str], Decimal],
    running: Mapping[tuple[UUID, str], Decimal],
) -> Decimal | None:
    if mapping.max_quantity_per_period is None:
        return None
    key = (licence.licence_id, substance_code)
    used = Decimal(period_usage.get(key, _ZERO)) + running.get(key, _ZERO)
    return mapping.max_quantity_per_period - used


def _fits(quantity: Decimal, mapping: SubstanceMapping, remaining: Decimal | None) -> bool:
    cap = mapping.max_quantity_per_transaction
    if cap is not None and quantity > cap:
        return False
    if remaining is not None and quantity > remaining:
        return False
    return True


def _sort_key(candidate: _Candidate, tie_break: CoverageTieBreak) -> tuple:
    licence = candidate.licence
    end = validity_end(licence) or date.max
    if tie_break == CoverageTieBreak.ISSUE_DATE:
        return (end, licence.issue_date, licence.licence_number)
    if tie_break == CoverageTieBreak.REMAINING_CAPACITY:
        # Most remaining capacity first; uncapped counts as unlimited
        remaining = candidate.remaining_period
        return (end, remaining is not None, -(remaining or _ZERO), licence.licence_number)
    return (end, licence.licence_number)


def _select(
    line: TransactionLine,
    request: CoverageRequest,
    licences: tuple[Licence, ...],
    period_usage: Mapping[tuple[UUID, str], Decimal],
    running: Mapping[tuple[UUID, str], Decimal],
    tie_break: CoverageTieBreak,
) -> CoverageOutcome:
    on = request.transaction_date
    code = request.substance_code

    qualifying: list[_Candidate] = []
    capacity_failed = False
    activity_failed = False
    window_failed = False
    for licence in licences:
        if not is_effectively_valid(licence, on):
            continue
        if not licence.mappings_for(code):
            continue
        if not licence.permits(request.activities):
            activity_failed = True
            continue
        mappings = _covering_mappings(licence, code, on)
        if not mappings:
            window_failed = True
            continue
        # Any in-window mapping with enough capacity qualifies the licence
        fitting = None
        for mapping in mappings:
            remaining = _remaining_period(licence, mapping, code, period_usage, running)
            if _fits(line.quantity, mapping, remaining):
                fitting = _Candidate(licence, mapping, remaining)
                break
        if fitting is None:
            capacity_failed = True
            continue
        qualifying.append(fitting)

    if qualifying:
        chosen = min(qualifying, key=lambda c: _sort_key(c, tie_break))
        cap = chosen.mapping.max_quantity_per_transaction
        return CoverageOutcome(
            status=CoverageStatus.COVERED,
            licence_id=chosen.licence.licence_id,
            licence_number=chosen.licence.licence_number,
            licence_type=chosen.licence.licence_type,
            mapping_id=chosen.mapping.mapping_id,
            consumed=line.quantity,
            remaining_per_transaction=(cap - line.quantity) if cap is not None else None,
            remaining_period_capacity=(
                chosen.remaining_period - line.quantity
                if chosen.remaining_period is not None
                else None
            ),
        )

    # Diagnostics: would an expired or suspended licence have matched?
    expired: Licence | None = None
    suspended: Licence | None = None
    for licence in sorted(licences, key=lambda lic: lic.licence_number):
        if not licence.permits(request.activities):
            continue
        mapping = _started_mapping(licence, code, on)
        if mapping is None:
            continue
        if licence.status == LicenceStatus.SUSPENDED:
            suspended = suspended or licence
            continue
        if is_expired(licence, on):
            remaining = _remaining_period(licence, mapping, code, period_usage, running)
            if _fits(line.quantity, mapping, remaining):
                expired = expired or licence

    if expired is not None:
        return CoverageOutcome(
            status=CoverageStatus.EXPIRED,
            licence_id=expired.licence_id,
            licence_number=expired.licence_number,
            licence_type=expired.licence_type,
            reason=CoverageFailureReason.LICENCE_EXPIRED.value,
        )
    if suspended is not None:
        return CoverageOutcome(
            status=CoverageStatus.SUSPENDED,
            licence_id=suspended.licence_id,
            licence_number=suspended.licence_number,
            licence_type=suspended.licence_type,
            reason=CoverageFailureReason.LICENCE_SUSPENDED.value,
        )

    if capacity_failed:
        reason = CoverageFailureReason.CAPACITY_EXCEEDED
    elif window_failed:
        reason = CoverageFailureReason.OUTSIDE_MAPPING_WINDOW
    elif activity_failed:
        reason = CoverageFailureReason.ACTIVITY_NOT_PERMITTED
    else:
        reason = CoverageFailureReason.NO_LICENCE
    return CoverageOutcome(status=CoverageStatus.MISSING, reason=reason.value)


def match(
    request: CoverageRequest,
    licences: Iterable[Licence],
    *,
    period_usage: Mapping[tuple[UUID, str], Decimal] | None = None,
    tie_break: CoverageTieBreak = CoverageTieBreak.LICENCE_NUMBER,
) -> dict[int, CoverageOutcome]:
    """
    Coverage outcome per line number, in line order.

    Capacity consumed by an earlier line in ``request`` is not available
    to later lines.
    """
    licences = tuple(licences)
    usage = period_usage or {}
    running: dict[tuple[UUID, str], Decimal] = {}
    outcomes: dict[int, CoverageOutcome] = {}
    for line in sorted(request.lines, key=lambda ln: ln.line_number):
        outcome = _select(line, request, licences, usage, running, tie_break)
        if outcome.is_covered:
            key = (outcome.licence_id, request.substance_code)
            running[key] = running.get(key, _ZERO) + line.quantity
        outcomes[line.line_number] = outcome
    return outcomes
