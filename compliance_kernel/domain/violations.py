"""
Violation and validation-result types (``compliance_kernel.domain.violations``).

Responsibility
--------------
Compliance findings are values, not exceptions.  A ``Violation`` is a
tagged variant: ``violation_type`` is the category tag and ``context`` is
the payload shape that category carries (licence, threshold, customer or
permit context).  Per-category behaviour (error code, default severity,
default override eligibility) lives in the lookup tables below rather than
in methods on subclasses.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* A result is valid iff it holds no critical violation.  Warning and info
  findings never block.
* A result is overridable only if it is invalid and every violation in it
  is override-eligible.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable, Union
from uuid import UUID


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class ViolationType(str, Enum):
    """Category tag of a compliance finding."""

    LICENCE_MISSING = "licence_missing"
    LICENCE_EXPIRED = "licence_expired"
    LICENCE_SUSPENDED = "licence_suspended"
    LICENCE_GRACE_PERIOD = "licence_grace_period"
    SUBSTANCE_NOT_FOUND = "substance_not_found"
    THRESHOLD_EXCEEDED = "threshold_exceeded"
    FREQUENCY_EXCEEDED = "frequency_exceeded"
    THRESHOLD_WARNING = "threshold_warning"
    CUSTOMER_NOT_FOUND = "customer_not_found"
    CUSTOMER_SUSPENDED = "customer_suspended"
    CUSTOMER_NOT_APPROVED = "customer_not_approved"
    CUSTOMER_NOT_QUALIFIED = "customer_not_qualified"
    IMPORT_PERMIT_MISSING = "import_permit_missing"
    EXPORT_PERMIT_MISSING = "export_permit_missing"


VIOLATION_CODES: dict[ViolationType, str] = {
    ViolationType.LICENCE_MISSING: "LICENCE_MISSING",
    ViolationType.LICENCE_EXPIRED: "LICENCE_EXPIRED",
    ViolationType.LICENCE_SUSPENDED: "LICENCE_SUSPENDED",
    ViolationType.LICENCE_GRACE_PERIOD: "LICENCE_GRACE_PERIOD",
    ViolationType.SUBSTANCE_NOT_FOUND: "SUBSTANCE_NOT_FOUND",
    ViolationType.THRESHOLD_EXCEEDED: "QUANTITY_THRESHOLD_EXCEEDED",
    ViolationType.FREQUENCY_EXCEEDED: "FREQUENCY_THRESHOLD_EXCEEDED",
    ViolationType.THRESHOLD_WARNING: "VALIDATION_WARNING",
    ViolationType.CUSTOMER_NOT_FOUND: "CUSTOMER_NOT_FOUND",
    ViolationType.CUSTOMER_SUSPENDED: "CUSTOMER_SUSPENDED",
    ViolationType.CUSTOMER_NOT_APPROVED: "CUSTOMER_NOT_APPROVED",
    ViolationType.CUSTOMER_NOT_QUALIFIED: "GDP_QUALIFICATION_INVALID",
    ViolationType.IMPORT_PERMIT_MISSING: "IMPORT_PERMIT_REQUIRED",
    ViolationType.EXPORT_PERMIT_MISSING: "EXPORT_PERMIT_REQUIRED",
}

DEFAULT_SEVERITY: dict[ViolationType, Severity] = {
    ViolationType.LICENCE_MISSING: Severity.CRITICAL,
    ViolationType.LICENCE_EXPIRED: Severity.CRITICAL,
    ViolationType.LICENCE_SUSPENDED: Severity.CRITICAL,
    ViolationType.LICENCE_GRACE_PERIOD: Severity.INFO,
    ViolationType.SUBSTANCE_NOT_FOUND: Severity.CRITICAL,
    ViolationType.THRESHOLD_EXCEEDED: Severity.CRITICAL,
    ViolationType.FREQUENCY_EXCEEDED: Severity.CRITICAL,
    ViolationType.THRESHOLD_WARNING: Severity.WARNING,
    ViolationType.CUSTOMER_NOT_FOUND: Severity.CRITICAL,
    ViolationType.CUSTOMER_SUSPENDED: Severity.CRITICAL,
    ViolationType.CUSTOMER_NOT_APPROVED: Severity.CRITICAL,
    ViolationType.CUSTOMER_NOT_QUALIFIED: Severity.CRITICAL,
    ViolationType.IMPORT_PERMIT_MISSING: Severity.CRITICAL,
    ViolationType.EXPORT_PERMIT_MISSING: Severity.CRITICAL,
}

DEFAULT_OVERRIDABLE: dict[ViolationType, bool] = {
    ViolationType.LICENCE_MISSING: True,
    ViolationType.LICENCE_EXPIRED: True,
    ViolationType.LICENCE_SUSPENDED: False,
    ViolationType.LICENCE_GRACE_PERIOD: True,
    ViolationType.SUBSTANCE_NOT_FOUND: False,
    ViolationType.THRESHOLD_EXCEEDED: True,
    ViolationType.FREQUENCY_EXCEEDED: True,
    ViolationType.THRESHOLD_WARNING: True,
    ViolationType.CUSTOMER_NOT_FOUND: False,
    ViolationType.CUSTOMER_SUSPENDED: False,
    ViolationType.CUSTOMER_NOT_APPROVED: True,
    ViolationType.CUSTOMER_NOT_QUALIFIED: True,
    ViolationType.IMPORT_PERMIT_MISSING: False,
    ViolationType.EXPORT_PERMIT_MISSING: False,
}


# =========================================================================
# Context payloads
# =========================================================================


@dataclass(frozen=True, slots=True)
class LicenceContext:
    licence_id: UUID | None = None
    licence_number: str | None = None
    expiry_date: date | None = None
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class ThresholdContext:
    threshold_id: UUID
    threshold_name: str
    threshold_type: str
    period: str
    limit: Decimal
    actual_value: Decimal
    unit: str
    usage_percent: Decimal
    max_override_percent: Decimal | None = None


@dataclass(frozen=True, slots=True)
class CustomerContext:
    customer_account: str
    customer_name: str | None = None
    business_category: str | None = None
    status: str | None = None


@dataclass(frozen=True, slots=True)
class PermitContext:
    permit_type: str
    origin_country: str | None = None
    destination_country: str | None = None


ViolationContext = Union[LicenceContext, ThresholdContext, CustomerContext, PermitContext]


@dataclass(frozen=True)
class Violation:
    """A single compliance finding."""

    violation_type: ViolationType
    code: str
    message: str
    severity: Severity
    override_eligible: bool
    line_number: int | None = None
    substance_code: str | None = None
    context: ViolationContext | None = None

    @property
    def is_blocking(self) -> bool:
        return self.severity == Severity.CRITICAL

    @property
    def licence_id(self) -> UUID | None:
        if isinstance(self.context, LicenceContext):
            return self.context.licence_id
        return None

    @property
    def threshold_id(self) -> UUID | None:
        if isinstance(self.context, ThresholdContext):
            return self.context.threshold_id
        return None


def make_violation(
    violation_type: ViolationType,
    message: str,
    *,
    line_number: int | None = None,
    substance_code: str | None = None,
    context: ViolationContext | None = None,
    severity: Severity | None = None,
    override_eligible: bool | None = None,
) -> Violation:
    """Build a violation, taking code, severity and overridability from the
    category tables unless explicitly given."""
    return Violation(
        violation_type=violation_type,
        code=VIOLATION_CODES[violation_type],
        message=message,
        severity=severity if severity is not None else DEFAULT_SEVERITY[violation_type],
        override_eligible=(
            override_eligible
            if override_eligible is not None
            else DEFAULT_OVERRIDABLE[violation_type]
        ),
        line_number=line_number,
        substance_code=substance_code,
        context=context,
    )


# =========================================================================
# Validation result
# =========================================================================


@dataclass(frozen=True)
class ValidationResult:
    """Verdict of one validation pass: ordered findings plus derived flags."""

    violations: tuple[Violation, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "violations", tuple(self.violations))

    @classmethod
    def of(cls, violations: Iterable[Violation]) -> ValidationResult:
        return cls(tuple(violations))

    @property
    def errors(self) -> tuple[Violation, ...]:
        return tuple(v for v in self.violations if v.is_blocking)

    @property
    def warnings(self) -> tuple[Violation, ...]:
        return tuple(v for v in self.violations if not v.is_blocking)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def can_override(self) -> bool:
        return (
            not self.is_valid
            and bool(self.violations)
            and all(v.override_eligible for v in self.violations)
        )

    @property
    def codes(self) -> tuple[str, ...]:
        return tuple(v.code for v in self.violations)

    def error_messages(self) -> tuple[str, ...]:
        return tuple(v.message for v in self.errors)

    def warning_messages(self) -> tuple[str, ...]:
        return tuple(v.message for v in self.warnings)
