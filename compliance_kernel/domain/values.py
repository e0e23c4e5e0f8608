"""
Values -- Immutable set-of-named-values types and period arithmetic.

Responsibility:
    Provides the foundational value types shared by coverage matching,
    threshold evaluation and subscription matching:

    * ``NamedSet`` -- an immutable set over a closed ``Enum`` supporting
      union, intersection and subset tests.  Licence permitted activities
      and webhook event-type subscriptions are both ``NamedSet`` subclasses.
    * ``Activity`` / ``ActivitySet`` -- regulated activities a licence may
      permit.
    * ``Period`` and ``period_bounds`` -- calendar windows used by
      per-period caps and cumulative thresholds.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  No imports from
    other kernel layers.

Invariants enforced:
    - A NamedSet only ever contains members of its declared enum.
    - Weekly periods start on Sunday.

Failure modes:
    - TypeError when a NamedSet is built from values of the wrong enum.
    - ValueError when a member name cannot be parsed.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import ClassVar, Generic, Iterable, Iterator, TypeVar

E = TypeVar("E", bound=Enum)


@dataclass(frozen=True)
class NamedSet(Generic[E]):
    """
    Immutable set of members of a single Enum.

    Contract:
        Subclasses bind ``member_type`` to their Enum.  Operations between
        two sets return the subclass of the left operand.

    Guarantees:
        - Iteration is ordered by member value (deterministic).
        - Equal sets compare and hash equal.
    """

    members: frozenset[E] = frozenset()

    member_type: ClassVar[type[Enum]]

    def __post_init__(self) -> None:
        members = frozenset(self.members)
        for member in members:
            if not isinstance(member, self.member_type):
                raise TypeError(
                    f"{type(self).__name__} accepts {self.member_type.__name__} "
                    f"members, got {member!r}"
                )
        object.__setattr__(self, "members", members)

    @classmethod
    def of(cls, *members: E):
        return cls(frozenset(members))

    @classmethod
    def none(cls):
        return cls(frozenset())

    @classmethod
    def all(cls):
        return cls(frozenset(cls.member_type))

    @classmethod
    def parse(cls, names: Iterable[str]):
        """Build a set from member values or names (case-insensitive)."""
        lookup: dict[str, Enum] = {}
        for member in cls.member_type:
            lookup[str(member.value).lower()] = member
            lookup[member.name.lower()] = member
        parsed = []
        for name in names:
            member = lookup.get(str(name).strip().lower())
            if member is None:
                raise ValueError(
                    f"Unknown {cls.member_type.__name__} value: {name!r}"
                )
            parsed.append(member)
        return cls(frozenset(parsed))

    def union(self, other: NamedSet[E]):
        return type(self)(self.members | other.members)

    def intersection(self, other: NamedSet[E]):
        return type(self)(self.members & other.members)

    def difference(self, other: NamedSet[E]):
        return type(self)(self.members - other.members)

    def issubset(self, other: NamedSet[E]) -> bool:
        return self.members <= other.members

    def includes(self, other: NamedSet[E]) -> bool:
        """True if every member of ``other`` is in this set."""
        return other.members <= self.members

    def overlaps(self, other: NamedSet[E]) -> bool:
        return bool(self.members & other.members)

    def names(self) -> tuple[str, ...]:
        return tuple(str(m.value) for m in self)

    def __or__(self, other: NamedSet[E]):
        return self.union(other)

    def __and__(self, other: NamedSet[E]):
        return self.intersection(other)

    def __le__(self, other: NamedSet[E]) -> bool:
        return self.issubset(other)

    def __contains__(self, member: object) -> bool:
        return member in self.members

    def __iter__(self) -> Iterator[E]:
        return iter(sorted(self.members, key=lambda m: str(m.value)))

    def __len__(self) -> int:
        return len(self.members)

    def __bool__(self) -> bool:
        return bool(self.members)


# =========================================================================
# Activities
# =========================================================================


class Activity(str, Enum):
    """Regulated activities a licence may permit."""

    POSSESS = "possess"
    STORE = "store"
    DISTRIBUTE = "distribute"
    IMPORT = "import"
    EXPORT = "export"
    MANUFACTURE = "manufacture"
    HANDLE_PRECURSORS = "handle_precursors"


@dataclass(frozen=True)
class ActivitySet(NamedSet[Activity]):
    """Set of permitted or required activities."""

    member_type: ClassVar[type[Enum]] = Activity


# =========================================================================
# Periods
# =========================================================================


class Period(str, Enum):
    """Calendar windows for per-period caps and cumulative thresholds."""

    PER_TRANSACTION = "per_transaction"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


def period_bounds(period: Period, reference: date) -> tuple[date, date]:
    """
    Inclusive (start, end) dates of the period containing ``reference``.

    Weeks run Sunday to Saturday.  ``PER_TRANSACTION`` collapses to the
    reference date itself.
    """
    if period in (Period.PER_TRANSACTION, Period.DAILY):
        return reference, reference
    if period == Period.WEEKLY:
        # date.weekday(): Monday=0 .. Sunday=6
        start = reference - timedelta(days=(reference.weekday() + 1) % 7)
        return start, start + timedelta(days=6)
    if period == Period.MONTHLY:
        last_day = calendar.monthrange(reference.year, reference.month)[1]
        return reference.replace(day=1), reference.replace(day=last_day)
    return date(reference.year, 1, 1), date(reference.year, 12, 31)
