"""
OverrideWorkflow -- human decision on a blocked transaction.

Responsibility
--------------
Pure transitions of the override state machine.  Each takes the current
transaction and returns the next transaction plus the events the decision
emits; persisting and publishing are the caller's job.

Architecture position
---------------------
**Kernel domain layer** -- pure functions.  ZERO I/O.

Invariants enforced
-------------------
* ``OVERRIDE_TRANSITIONS`` defines the only legal override moves.
  Approved and Rejected are terminal for the decision cycle.
* A decision requires ``requires_override``; anything else is an
  invalid-operation error, never a silent no-op.
* The workflow trusts the validator's override-eligible flags.  Hard
  override ceilings are checked by the caller before approval.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

from compliance_kernel.domain import events
from compliance_kernel.domain.events import ComplianceEvent
from compliance_kernel.domain.transaction import (
    VALIDATION_TRANSITIONS,
    OverrideDecision,
    OverrideStatus,
    Transaction,
    ValidationStatus,
)
from compliance_kernel.exceptions import (
    InvalidOperationError,
    OverrideAlreadyDecidedError,
    OverrideJustificationRequiredError,
    OverrideNotRequiredError,
)

OVERRIDE_TRANSITIONS: dict[OverrideStatus, frozenset[OverrideStatus]] = {
    OverrideStatus.NONE: frozenset({OverrideStatus.PENDING}),
    OverrideStatus.PENDING: frozenset({
        OverrideStatus.APPROVED,
        OverrideStatus.REJECTED,
    }),
    OverrideStatus.APPROVED: frozenset(),
    OverrideStatus.REJECTED: frozenset(),
}

TERMINAL_OVERRIDE_STATUSES: frozenset[OverrideStatus] = frozenset({
    OverrideStatus.APPROVED,
    OverrideStatus.REJECTED,
})


@dataclass(frozen=True)
class OverrideTransition:
    transaction: Transaction
    events: tuple[ComplianceEvent, ...]


def _check_decidable(
    transaction: Transaction,
    target: OverrideStatus,
    target_status: ValidationStatus,
) -> None:
    if transaction.override_status in TERMINAL_OVERRIDE_STATUSES:
        raise OverrideAlreadyDecidedError(
            transaction.transaction_id, transaction.override_status.value
        )
    if not transaction.requires_override:
        raise OverrideNotRequiredError(
            transaction.transaction_id, transaction.validation_status.value
        )
    if (
        target not in OVERRIDE_TRANSITIONS[transaction.override_status]
        or target_status not in VALIDATION_TRANSITIONS[transaction.validation_status]
    ):
        raise InvalidOperationError(
            f"Illegal override transition for transaction "
            f"{transaction.transaction_id}: {transaction.override_status.value} "
            f"-> {target.value}"
        )


def approve(
    transaction: Transaction,
    approver: str,
    justification: str,
    decided_at: datetime,
) -> OverrideTransition:
    """Approve a pending override.

    Raises:
        OverrideAlreadyDecidedError: the cycle was already decided.
        OverrideNotRequiredError: nothing is awaiting override.
        OverrideJustificationRequiredError: blank justification.
    """
    _check_decidable(
        transaction, OverrideStatus.APPROVED, ValidationStatus.APPROVED_WITH_OVERRIDE
    )
    if not justification or not justification.strip():
        raise OverrideJustificationRequiredError(transaction.transaction_id, "justification")

    decided = replace(
        transaction,
        override_status=OverrideStatus.APPROVED,
        validation_status=ValidationStatus.APPROVED_WITH_OVERRIDE,
        override_decision=OverrideDecision(
            decided_by=approver,
            decided_at=decided_at,
            approved=True,
            justification=justification.strip(),
        ),
    )
    return OverrideTransition(
        transaction=decided,
        events=(events.override_approved(decided), events.order_approved(decided)),
    )


def reject(
    transaction: Transaction,
    rejecter: str,
    reason: str,
    decided_at: datetime,
) -> OverrideTransition:
    """Reject a pending override.

    Raises:
        OverrideAlreadyDecidedError: the cycle was already decided.
        OverrideNotRequiredError: nothing is awaiting override.
        OverrideJustificationRequiredError: blank reason.
    """
    _check_decidable(
        transaction, OverrideStatus.REJECTED, ValidationStatus.REJECTED_OVERRIDE
    )
    if not reason or not reason.strip():
        raise OverrideJustificationRequiredError(transaction.transaction_id, "reason")

    decided = replace(
        transaction,
        override_status=OverrideStatus.REJECTED,
        validation_status=ValidationStatus.REJECTED_OVERRIDE,
        override_decision=OverrideDecision(
            decided_by=rejecter,
            decided_at=decided_at,
            approved=False,
            justification=reason.strip(),
        ),
    )
    return OverrideTransition(
        transaction=decided,
        events=(events.order_rejected(decided),),
    )
