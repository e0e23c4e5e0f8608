"""
compliance_kernel.services.compliance_service -- Transaction validation shell.

Responsibility:
    Loads the reference data a transaction needs (product resolution,
    customer, licences, substances, thresholds), runs the pure validator,
    persists the resulting transaction state and returns the events the
    decision emits.  Publishing those events is left to the caller so a
    notification problem can never undo a committed decision.

Architecture position:
    Kernel > Services.  May import from domain/.

Invariants enforced:
    - Data-access failures propagate.  A repository error is never turned
      into a compliance violation.
    - A terminal transaction is never re-validated.

Failure modes:
    - TransactionNotFoundError from ``revalidate`` for an unknown id.
    - TransactionImmutableError when re-validating a terminal transaction.
    - RepositoryError / MalformedReferenceDataError from collaborators.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Mapping
from uuid import UUID

from compliance_kernel.domain import events, validator
from compliance_kernel.domain.clock import Clock, SystemClock
from compliance_kernel.domain.events import ComplianceEvent
from compliance_kernel.domain.licence import HolderType
from compliance_kernel.domain.substance import Substance
from compliance_kernel.domain.transaction import Transaction
from compliance_kernel.domain.validator import (
    ValidationContext,
    ValidationSettings,
)
from compliance_kernel.domain.violations import ValidationResult
from compliance_kernel.exceptions import (
    MalformedReferenceDataError,
    TransactionNotFoundError,
)
from compliance_kernel.logging_config import LogContext, get_logger
from compliance_kernel.services.repositories import (
    CustomerRepository,
    LicenceRepository,
    ProductRepository,
    SubstanceRepository,
    ThresholdRepository,
    TransactionRepository,
)

logger = get_logger("services.compliance")


@dataclass(frozen=True)
class ComplianceDecision:
    """A validated transaction, its result and the events to publish."""

    transaction: Transaction
    result: ValidationResult
    events: tuple[ComplianceEvent, ...]


class TransactionComplianceService:
    """Validates transactions against reference data and stores the verdict."""

    def __init__(
        self,
        *,
        substances: SubstanceRepository,
        products: ProductRepository,
        customers: CustomerRepository,
        licences: LicenceRepository,
        thresholds: ThresholdRepository,
        transactions: TransactionRepository,
        company_holder_id: str,
        settings: ValidationSettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._substances = substances
        self._products = products
        self._customers = customers
        self._licences = licences
        self._thresholds = thresholds
        self._transactions = transactions
        self._company_holder_id = company_holder_id
        self._settings = settings or ValidationSettings()
        self._clock = clock or SystemClock()

    def resolve_products(self, transaction: Transaction) -> Transaction:
        """Fill in substance codes for lines that only carry a product identity."""
        lines = tuple(
            line if line.substance_code is not None
            else replace(
                line,
                substance_code=self._products.resolve_substance_code(line.item_number),
            )
            for line in transaction.lines
        )
        return replace(transaction, lines=lines)

    def build_context(
        self,
        transaction: Transaction,
        *,
        threshold_aggregates: Mapping[UUID, Decimal] | None = None,
        period_usage: Mapping[tuple[UUID, str], Decimal] | None = None,
    ) -> ValidationContext:
        substances: dict[str, Substance] = {}
        for code in {line.substance_code for line in transaction.controlled_lines}:
            substance = self._substances.get(code)
            if substance is None:
                continue
            if substance.substance_code != code:
                raise MalformedReferenceDataError(
                    "substances",
                    code,
                    f"lookup returned substance {substance.substance_code}",
                )
            substances[code] = substance

        company_licences = self._licences.list_for_holder(
            HolderType.COMPANY, self._company_holder_id
        )
        # Coverage may come from the customer's own licences or the company's.
        return ValidationContext(
            customer=self._customers.get(transaction.customer_account),
            substances=substances,
            holder_licences=self._licences.list_for_holder(
                HolderType.CUSTOMER, transaction.customer_account
            )
            + company_licences,
            permit_licences=company_licences,
            thresholds=self._thresholds.list_effective(transaction.transaction_date),
            threshold_aggregates=dict(threshold_aggregates or {}),
            period_usage=dict(period_usage or {}),
            settings=self._settings,
        )

    def validate(
        self,
        transaction: Transaction,
        *,
        threshold_aggregates: Mapping[UUID, Decimal] | None = None,
        period_usage: Mapping[tuple[UUID, str], Decimal] | None = None,
    ) -> ComplianceDecision:
        """
        Validate, persist and return the decision.

        ``threshold_aggregates`` and ``period_usage`` are the caller's
        already-computed usage from other transactions in the current
        periods; see ``ValidationContext``.
        """
        with LogContext.bind(transaction_id=str(transaction.transaction_id)):
            resolved = self.resolve_products(transaction)
            context = self.build_context(
                resolved,
                threshold_aggregates=threshold_aggregates,
                period_usage=period_usage,
            )
            outcome = validator.validate(resolved, context, self._clock.now_utc())
            self._transactions.save(outcome.transaction)

            logger.info(
                "transaction_validated",
                extra={
                    "external_reference": transaction.external_reference,
                    "validation_status": outcome.transaction.validation_status.value,
                    "override_status": outcome.transaction.override_status.value,
                    "violation_count": len(outcome.result.violations),
                    "error_codes": list(v.code for v in outcome.result.errors),
                    "can_override": outcome.result.can_override,
                },
            )
            return ComplianceDecision(
                transaction=outcome.transaction,
                result=outcome.result,
                events=events.validation_events(outcome.transaction),
            )

    def revalidate(
        self,
        transaction_id: UUID,
        *,
        threshold_aggregates: Mapping[UUID, Decimal] | None = None,
        period_usage: Mapping[tuple[UUID, str], Decimal] | None = None,
    ) -> ComplianceDecision:
        """Re-run validation on a stored transaction after remediation."""
        transaction = self._transactions.get(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)
        return self.validate(
            transaction,
            threshold_aggregates=threshold_aggregates,
            period_usage=period_usage,
        )
