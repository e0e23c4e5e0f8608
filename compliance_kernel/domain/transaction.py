"""
Transaction domain types (``compliance_kernel.domain.transaction``).

Responsibility
--------------
Pure value objects for submitted transactions and their lines, the
validation and override status enums, and ``apply_validation_result``:
the one function that derives a transaction's validation fields from a
``ValidationResult``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Status is derived, never set independently: ``apply_validation_result``
  maps a result to (validation status, override status); the override
  workflow is the only other writer.
* ``VALIDATION_TRANSITIONS`` lists the only legal status changes.
  Passed, ApprovedWithOverride and RejectedOverride are terminal.
* A terminal transaction cannot be re-validated.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from compliance_kernel.domain.substance import Classification
from compliance_kernel.domain.violations import ValidationResult, Violation
from compliance_kernel.exceptions import TransactionImmutableError


class TransactionType(str, Enum):
    ORDER = "order"
    SHIPMENT = "shipment"
    RETURN = "return"
    TRANSFER = "transfer"


class TransactionDirection(str, Enum):
    INTERNAL = "internal"
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class ValidationStatus(str, Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    APPROVED_WITH_OVERRIDE = "approved_with_override"
    REJECTED_OVERRIDE = "rejected_override"


class OverrideStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


VALIDATION_TRANSITIONS: dict[ValidationStatus, frozenset[ValidationStatus]] = {
    ValidationStatus.PENDING: frozenset({
        ValidationStatus.PASSED,
        ValidationStatus.FAILED,
    }),
    # Re-validation after remediation, or an override decision
    ValidationStatus.FAILED: frozenset({
        ValidationStatus.PASSED,
        ValidationStatus.FAILED,
        ValidationStatus.APPROVED_WITH_OVERRIDE,
        ValidationStatus.REJECTED_OVERRIDE,
    }),
    ValidationStatus.PASSED: frozenset(),
    ValidationStatus.APPROVED_WITH_OVERRIDE: frozenset(),
    ValidationStatus.REJECTED_OVERRIDE: frozenset(),
}

TERMINAL_VALIDATION_STATUSES: frozenset[ValidationStatus] = frozenset({
    ValidationStatus.PASSED,
    ValidationStatus.APPROVED_WITH_OVERRIDE,
    ValidationStatus.REJECTED_OVERRIDE,
})


class CoverageStatus(str, Enum):
    COVERED = "covered"
    MISSING = "missing"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


@dataclass(frozen=True, slots=True)
class CoverageOutcome:
    """Which licence covers a line, and what capacity is left after it."""

    status: CoverageStatus
    licence_id: UUID | None = None
    licence_number: str | None = None
    licence_type: str | None = None
    mapping_id: UUID | None = None
    consumed: Decimal = Decimal("0")
    remaining_per_transaction: Decimal | None = None
    remaining_period_capacity: Decimal | None = None
    reason: str | None = None

    @property
    def is_covered(self) -> bool:
        return self.status == CoverageStatus.COVERED


@dataclass(frozen=True)
class TransactionLine:
    """
    One line of a submitted transaction.

    ``item_number`` is the caller's product identity; ``substance_code`` is
    filled in by product resolution and stays ``None`` for uncontrolled
    products.  ``quantity`` is in the substance's base unit.
    """

    line_number: int
    item_number: str
    quantity: Decimal
    unit: str = "g"
    substance_code: str | None = None
    classification: Classification | None = None
    coverage: CoverageOutcome | None = None
    is_valid: bool = True
    error_code: str | None = None
    error_message: str | None = None

    def __post_init__(self) -> None:
        quantity = Decimal(self.quantity)
        if quantity < 0:
            raise ValueError(
                f"Line {self.line_number} quantity cannot be negative: {quantity}"
            )
        object.__setattr__(self, "quantity", quantity)

    @property
    def is_controlled(self) -> bool:
        return self.substance_code is not None


@dataclass(frozen=True, slots=True)
class OverrideDecision:
    decided_by: str
    decided_at: datetime
    approved: bool
    justification: str


@dataclass(frozen=True, slots=True)
class Annotation:
    """Audit note; the only thing that may be added to a terminal transaction."""

    author: str
    note: str
    created_at: datetime


@dataclass(frozen=True)
class Transaction:
    """A submitted transaction and its compliance verdict."""

    external_reference: str
    transaction_type: TransactionType
    direction: TransactionDirection
    customer_account: str
    transaction_date: date
    lines: tuple[TransactionLine, ...]
    origin_country: str = "NL"
    destination_country: str | None = None
    violations: tuple[Violation, ...] = ()
    validation_status: ValidationStatus = ValidationStatus.PENDING
    override_status: OverrideStatus = OverrideStatus.NONE
    validated_at: datetime | None = None
    compliance_errors: tuple[str, ...] = ()
    compliance_warnings: tuple[str, ...] = ()
    override_decision: OverrideDecision | None = None
    annotations: tuple[Annotation, ...] = field(default_factory=tuple)
    transaction_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.transaction_id is None:
            object.__setattr__(self, "transaction_id", uuid4())
        object.__setattr__(self, "lines", tuple(self.lines))
        numbers = [line.line_number for line in self.lines]
        if len(set(numbers)) != len(numbers):
            raise ValueError(
                f"Transaction {self.external_reference} has duplicate line numbers"
            )

    # -- Cross-border -----------------------------------------------------

    @property
    def is_cross_border(self) -> bool:
        if not self.destination_country or not self.origin_country:
            return False
        return (
            self.origin_country.strip().upper()
            != self.destination_country.strip().upper()
        )

    @property
    def requires_import_permit(self) -> bool:
        return self.is_cross_border and self.direction == TransactionDirection.INBOUND

    @property
    def requires_export_permit(self) -> bool:
        return self.is_cross_border and self.direction == TransactionDirection.OUTBOUND

    # -- Status helpers ---------------------------------------------------

    @property
    def requires_override(self) -> bool:
        return (
            self.validation_status == ValidationStatus.FAILED
            and self.override_status == OverrideStatus.PENDING
        )

    @property
    def is_awaiting_override(self) -> bool:
        return self.requires_override

    @property
    def can_proceed(self) -> bool:
        return self.validation_status in (
            ValidationStatus.PASSED,
            ValidationStatus.APPROVED_WITH_OVERRIDE,
        )

    @property
    def is_blocked(self) -> bool:
        return self.validation_status in (
            ValidationStatus.FAILED,
            ValidationStatus.REJECTED_OVERRIDE,
        )

    @property
    def is_terminal(self) -> bool:
        return self.validation_status in TERMINAL_VALIDATION_STATUSES

    @property
    def controlled_lines(self) -> tuple[TransactionLine, ...]:
        return tuple(line for line in self.lines if line.is_controlled)

    @property
    def licences_used(self) -> tuple[UUID, ...]:
        """Covering licence ids in first-use order."""
        seen: dict[UUID, None] = {}
        for line in self.lines:
            if line.coverage is not None and line.coverage.licence_id is not None:
                seen.setdefault(line.coverage.licence_id, None)
        return tuple(seen)

    def total_quantity(self, substance_code: str) -> Decimal:
        return sum(
            (line.quantity for line in self.lines if line.substance_code == substance_code),
            Decimal("0"),
        )


@dataclass(frozen=True, slots=True)
class LicenceUsage:
    """Quantity a transaction drew against one licence for one substance."""

    licence_id: UUID
    licence_number: str
    substance_code: str
    quantity: Decimal
    line_numbers: tuple[int, ...]


def licence_usage(transaction: Transaction) -> tuple[LicenceUsage, ...]:
    """Group covered lines by (licence, substance)."""
    grouped: dict[tuple[UUID, str], list[TransactionLine]] = {}
    numbers: dict[UUID, str] = {}
    for line in transaction.lines:
        coverage = line.coverage
        if coverage is None or not coverage.is_covered or line.substance_code is None:
            continue
        key = (coverage.licence_id, line.substance_code)
        grouped.setdefault(key, []).append(line)
        numbers[coverage.licence_id] = coverage.licence_number or ""
    return tuple(
        LicenceUsage(
            licence_id=licence_id,
            licence_number=numbers[licence_id],
            substance_code=substance_code,
            quantity=sum((line.quantity for line in lines), Decimal("0")),
            line_numbers=tuple(line.line_number for line in lines),
        )
        for (licence_id, substance_code), lines in grouped.items()
    )


def apply_validation_result(
    transaction: Transaction,
    lines: tuple[TransactionLine, ...],
    result: ValidationResult,
    validated_at: datetime,
) -> Transaction:
    """
    Next transaction state after a validation pass.

    Valid -> Passed.  Invalid -> Failed, with override Pending when every
    violation is override-eligible, otherwise override None (no path).

    Raises:
        TransactionImmutableError: if the transaction is already terminal.
    """
    if transaction.is_terminal:
        raise TransactionImmutableError(
            transaction.transaction_id, transaction.validation_status.value
        )

    if result.is_valid:
        status = ValidationStatus.PASSED
        override = OverrideStatus.NONE
    else:
        status = ValidationStatus.FAILED
        override = OverrideStatus.PENDING if result.can_override else OverrideStatus.NONE

    return replace(
        transaction,
        lines=lines,
        violations=result.violations,
        validation_status=status,
        override_status=override,
        validated_at=validated_at,
        compliance_errors=result.error_messages(),
        compliance_warnings=result.warning_messages(),
        override_decision=None,
    )


def annotate(
    transaction: Transaction, author: str, note: str, created_at: datetime
) -> Transaction:
    """Append an audit annotation.  Allowed in every status."""
    return replace(
        transaction,
        annotations=transaction.annotations + (Annotation(author, note, created_at),),
    )
