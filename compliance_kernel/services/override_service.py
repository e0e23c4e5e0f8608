"""
compliance_kernel.services.override_service -- Override decisions.

Responsibility:
    Loads a blocked transaction, enforces hard override ceilings, applies the
    pure override transition and persists the decided transaction.  Returns
    the transition so the caller can publish its events after the decision
    is durable.

Architecture position:
    Kernel > Services.  May import from domain/.

Failure modes:
    - TransactionNotFoundError for an unknown transaction id.
    - OverrideCeilingExceededError when a breach is above the rule's
      maximum override percentage.  Only approval checks the ceiling.
    - The InvalidOperationError family from ``domain.override``.
"""

from __future__ import annotations

from uuid import UUID

from compliance_kernel.domain import override
from compliance_kernel.domain.clock import Clock, SystemClock
from compliance_kernel.domain.override import OverrideTransition
from compliance_kernel.domain.threshold import exceeds_override_ceiling, override_ceiling
from compliance_kernel.domain.transaction import Transaction
from compliance_kernel.domain.violations import ThresholdContext
from compliance_kernel.exceptions import (
    OverrideCeilingExceededError,
    TransactionNotFoundError,
)
from compliance_kernel.logging_config import LogContext, get_logger
from compliance_kernel.services.repositories import TransactionRepository

logger = get_logger("services.override")


def check_override_ceilings(transaction: Transaction) -> None:
    """Raise if any blocking threshold breach is above its hard ceiling."""
    for violation in transaction.violations:
        context = violation.context
        if not violation.is_blocking or not isinstance(context, ThresholdContext):
            continue
        if exceeds_override_ceiling(
            context.limit, context.max_override_percent, context.actual_value
        ):
            raise OverrideCeilingExceededError(
                transaction.transaction_id,
                context.threshold_id,
                context.actual_value,
                override_ceiling(context.limit, context.max_override_percent),
            )


class OverrideService:
    """Approve or reject transactions awaiting a compliance override."""

    def __init__(
        self,
        transactions: TransactionRepository,
        clock: Clock | None = None,
    ) -> None:
        self._transactions = transactions
        self._clock = clock or SystemClock()

    def _load(self, transaction_id: UUID) -> Transaction:
        transaction = self._transactions.get(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)
        return transaction

    def list_pending(self) -> tuple[Transaction, ...]:
        return self._transactions.list_awaiting_override()

    def approve(
        self, transaction_id: UUID, approver: str, justification: str
    ) -> OverrideTransition:
        with LogContext.bind(transaction_id=str(transaction_id), actor_id=approver):
            transaction = self._load(transaction_id)
            if transaction.requires_override:
                check_override_ceilings(transaction)
            transition = override.approve(
                transaction, approver, justification, self._clock.now_utc()
            )
            self._transactions.save(transition.transaction)
            logger.info(
                "override_approved",
                extra={
                    "overridden_codes": sorted({v.code for v in transaction.violations}),
                    "validation_status": transition.transaction.validation_status.value,
                },
            )
            return transition

    def reject(
        self, transaction_id: UUID, rejecter: str, reason: str
    ) -> OverrideTransition:
        with LogContext.bind(transaction_id=str(transaction_id), actor_id=rejecter):
            transaction = self._load(transaction_id)
            transition = override.reject(
                transaction, rejecter, reason, self._clock.now_utc()
            )
            self._transactions.save(transition.transaction)
            logger.info(
                "override_rejected",
                extra={
                    "validation_status": transition.transaction.validation_status.value,
                },
            )
            return transition
