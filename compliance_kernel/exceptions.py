"""
Typed exception hierarchy for the compliance kernel.

Compliance violations (missing licence, threshold breach, ineligible
customer) are NOT exceptions.  They are ``Violation`` values accumulated in
a ``ValidationResult``.  The classes below cover the two other failure
families:

  1. Programming-contract errors: misuse of the workflow API, such as
     approving an override on a transaction that does not require one.
  2. Operational errors: a repository is unreachable or returns reference
     data that cannot be interpreted.  These must reach the caller; they are
     never turned into "transaction is non-compliant".

Every exception carries a machine-readable ``code`` and stores its context
as attributes so callers catch by type and read structured data instead of
parsing messages.

    ComplianceKernelError (base)
    |
    +-- InvalidOperationError
    |   +-- OverrideNotRequiredError
    |   +-- OverrideAlreadyDecidedError
    |   +-- OverrideJustificationRequiredError
    |   +-- TransactionImmutableError
    |
    +-- OverrideCeilingExceededError
    |
    +-- NotFoundError
    |   +-- TransactionNotFoundError
    |   +-- SubscriptionNotFoundError
    |
    +-- InvalidSubscriptionError
    |
    +-- RepositoryError
    |   +-- MalformedReferenceDataError
    |
    +-- ConfigurationError

Code                       | When raised
---------------------------|----------------------------------------------
INVALID_OPERATION          | Workflow API called in a state that forbids it
OVERRIDE_NOT_REQUIRED      | Approve/reject on a transaction with no pending override
OVERRIDE_ALREADY_DECIDED   | Second decision on the same override cycle
JUSTIFICATION_REQUIRED     | Blank approval justification / rejection reason
TRANSACTION_IMMUTABLE      | Re-validation of a terminal transaction
OVERRIDE_CEILING_EXCEEDED  | Breach above the rule's maximum override percentage
TRANSACTION_NOT_FOUND      | Unknown transaction id
SUBSCRIPTION_NOT_FOUND     | Unknown webhook subscription id
VALIDATION_ERROR           | Webhook subscription fails field validation
REPOSITORY_ERROR           | Data access failed
MALFORMED_REFERENCE_DATA   | Reference data cannot be interpreted
CONFIGURATION_ERROR        | Configuration document is invalid
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID


class ComplianceKernelError(Exception):
    """Base exception for all compliance kernel errors."""

    code: str = "COMPLIANCE_KERNEL_ERROR"


# ---------------------------------------------------------------------------
# Workflow misuse
# ---------------------------------------------------------------------------


class InvalidOperationError(ComplianceKernelError):
    """The requested operation is not allowed in the current state."""

    code: str = "INVALID_OPERATION"


class OverrideNotRequiredError(InvalidOperationError):
    """Approve or reject was called on a transaction with no pending override."""

    code: str = "OVERRIDE_NOT_REQUIRED"

    def __init__(self, transaction_id: UUID, validation_status: str):
        self.transaction_id = transaction_id
        self.validation_status = validation_status
        super().__init__(
            f"Transaction {transaction_id} does not require override "
            f"(validation status: {validation_status})"
        )


class OverrideAlreadyDecidedError(InvalidOperationError):
    """The override cycle has already been approved or rejected."""

    code: str = "OVERRIDE_ALREADY_DECIDED"

    def __init__(self, transaction_id: UUID, override_status: str):
        self.transaction_id = transaction_id
        self.override_status = override_status
        super().__init__(
            f"Transaction {transaction_id} does not require override: "
            f"override already {override_status}"
        )


class OverrideJustificationRequiredError(InvalidOperationError):
    """An override decision was submitted without a justification or reason."""

    code: str = "JUSTIFICATION_REQUIRED"

    def __init__(self, transaction_id: UUID, field_name: str):
        self.transaction_id = transaction_id
        self.field_name = field_name
        super().__init__(
            f"Override decision for transaction {transaction_id} "
            f"requires a non-empty {field_name}"
        )


class TransactionImmutableError(InvalidOperationError):
    """A transaction in a terminal status cannot be re-validated."""

    code: str = "TRANSACTION_IMMUTABLE"

    def __init__(self, transaction_id: UUID, validation_status: str):
        self.transaction_id = transaction_id
        self.validation_status = validation_status
        super().__init__(
            f"Transaction {transaction_id} is terminal ({validation_status}) "
            "and cannot be re-validated"
        )


class OverrideCeilingExceededError(ComplianceKernelError):
    """A threshold breach exceeds the rule's hard override ceiling."""

    code: str = "OVERRIDE_CEILING_EXCEEDED"

    def __init__(
        self,
        transaction_id: UUID,
        threshold_id: UUID,
        actual_value: Decimal,
        ceiling: Decimal,
    ):
        self.transaction_id = transaction_id
        self.threshold_id = threshold_id
        self.actual_value = str(actual_value)
        self.ceiling = str(ceiling)
        super().__init__(
            f"Transaction {transaction_id} cannot be overridden: value "
            f"{actual_value} exceeds the override ceiling {ceiling} of "
            f"threshold {threshold_id}"
        )


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


class NotFoundError(ComplianceKernelError):
    """Base for missing-entity errors."""

    code: str = "NOT_FOUND"


class TransactionNotFoundError(NotFoundError):
    """Transaction id does not exist."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: UUID):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class SubscriptionNotFoundError(NotFoundError):
    """Webhook subscription id does not exist."""

    code: str = "SUBSCRIPTION_NOT_FOUND"

    def __init__(self, subscription_id: UUID):
        self.subscription_id = subscription_id
        super().__init__(f"Webhook subscription not found: {subscription_id}")


class InvalidSubscriptionError(ComplianceKernelError):
    """Webhook subscription failed field validation."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, errors: tuple[str, ...]):
        self.errors = errors
        super().__init__(
            "Invalid webhook subscription: " + "; ".join(errors)
        )


# ---------------------------------------------------------------------------
# Operational
# ---------------------------------------------------------------------------


class RepositoryError(ComplianceKernelError):
    """A reference-data or state repository could not be reached."""

    code: str = "REPOSITORY_ERROR"

    def __init__(self, repository: str, message: str):
        self.repository = repository
        super().__init__(f"{repository}: {message}")


class MalformedReferenceDataError(RepositoryError):
    """Reference data was loaded but cannot be interpreted."""

    code: str = "MALFORMED_REFERENCE_DATA"

    def __init__(self, repository: str, key: str, message: str):
        self.key = key
        super().__init__(repository, f"{key}: {message}")


class ConfigurationError(ComplianceKernelError):
    """Configuration document failed validation."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, errors: tuple[str, ...]):
        self.errors = errors
        super().__init__(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )
