"""
Pure domain layer.

Value objects and decision functions with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- HTTP
- Wall-clock time (time arrives through ``Clock`` or as arguments)

All domain objects are immutable and deterministic.
"""

from compliance_kernel.domain.classification import (
    ResolvedClassification,
    has_been_reclassified_since,
)
from compliance_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from compliance_kernel.domain.coverage import CoverageTieBreak
from compliance_kernel.domain.events import ComplianceEvent, EventTypeSet, WebhookEventType
from compliance_kernel.domain.licence import Licence, LicenceStatus, SubstanceMapping
from compliance_kernel.domain.substance import (
    Classification,
    OpiumActList,
    PrecursorCategory,
    ReclassificationEvent,
    Substance,
)
from compliance_kernel.domain.threshold import ThresholdRule, ThresholdType
from compliance_kernel.domain.transaction import (
    OverrideStatus,
    Transaction,
    TransactionLine,
    ValidationStatus,
)
from compliance_kernel.domain.values import Activity, ActivitySet, NamedSet, Period
from compliance_kernel.domain.violations import (
    Severity,
    ValidationResult,
    Violation,
    ViolationType,
)
from compliance_kernel.domain.webhook import WebhookSubscription

__all__ = [
    "Activity",
    "ActivitySet",
    "Classification",
    "Clock",
    "ComplianceEvent",
    "CoverageTieBreak",
    "DeterministicClock",
    "EventTypeSet",
    "Licence",
    "LicenceStatus",
    "NamedSet",
    "OpiumActList",
    "OverrideStatus",
    "Period",
    "PrecursorCategory",
    "ReclassificationEvent",
    "ResolvedClassification",
    "Severity",
    "Substance",
    "SubstanceMapping",
    "SystemClock",
    "ThresholdRule",
    "ThresholdType",
    "Transaction",
    "TransactionLine",
    "ValidationResult",
    "ValidationStatus",
    "Violation",
    "ViolationType",
    "WebhookEventType",
    "WebhookSubscription",
    "has_been_reclassified_since",
]
