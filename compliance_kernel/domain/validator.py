"""
TransactionValidator -- per-transaction compliance verdict.

Responsibility:
    Orchestrates classification resolution, coverage matching, threshold
    evaluation, cross-border permit rules and customer eligibility for one
    transaction and folds every finding into a ``ValidationResult`` and the
    transaction's next state.

Architecture position:
    Kernel > Domain -- pure.  All reference data arrives in a
    ``ValidationContext``; the validator neither loads, persists nor
    notifies.  Independent transactions can be validated in parallel.

Invariants enforced:
    - Same transaction + same context -> identical violations and status.
    - Violation order: customer findings, then per-line findings in line
      order, then aggregate threshold findings, then permit findings.
    - Cumulative and frequency thresholds use the caller's prior aggregate
      plus this transaction's own contribution; nothing is accumulated
      here.

Failure modes:
    - TransactionImmutableError if the transaction is already terminal.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Mapping
from uuid import UUID

from compliance_kernel.domain import classification, coverage, threshold
from compliance_kernel.domain.coverage import CoverageRequest, CoverageTieBreak
from compliance_kernel.domain.customer import BusinessCategory, Customer, check_customer
from compliance_kernel.domain.licence import (
    EXPORT_PERMIT,
    IMPORT_PERMIT,
    Licence,
    is_effectively_valid,
    is_in_grace_period,
)
from compliance_kernel.domain.substance import Substance
from compliance_kernel.domain.threshold import (
    DEFAULT_WARNING_PERCENT,
    ThresholdEvaluation,
    ThresholdRule,
    ThresholdScope,
    ThresholdType,
)
from compliance_kernel.domain.transaction import (
    CoverageOutcome,
    CoverageStatus,
    Transaction,
    TransactionLine,
    apply_validation_result,
)
from compliance_kernel.domain.violations import (
    LicenceContext,
    PermitContext,
    Severity,
    ThresholdContext,
    ValidationResult,
    Violation,
    ViolationType,
    make_violation,
)

DEFAULT_GDP_REQUIRED_CATEGORIES: frozenset[BusinessCategory] = frozenset({
    BusinessCategory.WHOLESALER_EU,
    BusinessCategory.WHOLESALER_NON_EU,
    BusinessCategory.HOSPITAL_PHARMACY,
    BusinessCategory.COMMUNITY_PHARMACY,
})

_ZERO = Decimal("0")


@dataclass(frozen=True)
class ValidationSettings:
    """Policy knobs the validator receives from configuration."""

    default_warning_percent: Decimal = DEFAULT_WARNING_PERCENT
    tie_break: CoverageTieBreak = CoverageTieBreak.LICENCE_NUMBER
    gdp_required_categories: frozenset[BusinessCategory] = DEFAULT_GDP_REQUIRED_CATEGORIES
    permit_violation_overridable: bool = False


@dataclass(frozen=True)
class ValidationContext:
    """
    Read-only reference data for one validation pass.

    ``holder_licences`` are matched for coverage; ``permit_licences`` are
    searched for import/export permits.  ``threshold_aggregates`` maps a
    cumulative or frequency threshold id to the value already reached in
    its current period by other transactions.  ``period_usage`` maps
    ``(licence_id, substance_code)`` to quantity already consumed against
    per-period licence caps.
    """

    customer: Customer | None
    substances: Mapping[str, Substance]
    holder_licences: tuple[Licence, ...] = ()
    permit_licences: tuple[Licence, ...] = ()
    thresholds: tuple[ThresholdRule, ...] = ()
    threshold_aggregates: Mapping[UUID, Decimal] = field(default_factory=dict)
    period_usage: Mapping[tuple[UUID, str], Decimal] = field(default_factory=dict)
    settings: ValidationSettings = field(default_factory=ValidationSettings)


@dataclass(frozen=True)
class ValidationOutcome:
    transaction: Transaction
    result: ValidationResult


def _fmt(value: Decimal) -> str:
    return f"{value.normalize():f}"


def _reset(line: TransactionLine) -> TransactionLine:
    return replace(
        line,
        classification=None,
        coverage=None,
        is_valid=True,
        error_code=None,
        error_message=None,
    )


# =========================================================================
# Coverage findings
# =========================================================================


def _coverage_violation(
    line: TransactionLine, substance: Substance, outcome: CoverageOutcome
) -> Violation | None:
    context = LicenceContext(
        licence_id=outcome.licence_id,
        licence_number=outcome.licence_number,
        reason=outcome.reason,
    )
    if outcome.status == CoverageStatus.EXPIRED:
        return make_violation(
            ViolationType.LICENCE_EXPIRED,
            f"Licence '{outcome.licence_number}' for substance "
            f"'{substance.name}' has expired (Line {line.line_number})",
            line_number=line.line_number,
            substance_code=substance.substance_code,
            context=context,
        )
    if outcome.status == CoverageStatus.SUSPENDED:
        return make_violation(
            ViolationType.LICENCE_SUSPENDED,
            f"Licence '{outcome.licence_number}' for substance "
            f"'{substance.name}' is suspended (Line {line.line_number})",
            line_number=line.line_number,
            substance_code=substance.substance_code,
            context=context,
        )
    if outcome.status == CoverageStatus.MISSING:
        return make_violation(
            ViolationType.LICENCE_MISSING,
            f"No valid licence found for substance '{substance.name}' "
            f"(Line {line.line_number}): {outcome.reason}",
            line_number=line.line_number,
            substance_code=substance.substance_code,
            context=context,
        )
    return None


def _grace_notice(
    line: TransactionLine,
    substance: Substance,
    outcome: CoverageOutcome,
    licences_by_id: Mapping[UUID, Licence],
    transaction: Transaction,
) -> Violation | None:
    licence = licences_by_id.get(outcome.licence_id)
    if licence is None or not is_in_grace_period(licence, transaction.transaction_date):
        return None
    return make_violation(
        ViolationType.LICENCE_GRACE_PERIOD,
        f"Licence '{licence.licence_number}' covering line {line.line_number} "
        f"is in its grace period until {licence.grace_period_end.isoformat()}",
        line_number=line.line_number,
        substance_code=substance.substance_code,
        context=LicenceContext(
            licence_id=licence.licence_id,
            licence_number=licence.licence_number,
            expiry_date=licence.expiry_date,
        ),
    )


# =========================================================================
# Threshold findings
# =========================================================================


def _threshold_violation(
    evaluation: ThresholdEvaluation, line_number: int | None, substance_code: str | None
) -> Violation | None:
    rule = evaluation.rule
    if not evaluation.is_exceeded and not evaluation.is_warning:
        return None
    context = ThresholdContext(
        threshold_id=rule.threshold_id,
        threshold_name=rule.name,
        threshold_type=rule.threshold_type.value,
        period=rule.period.value,
        limit=rule.limit,
        actual_value=evaluation.value,
        unit=rule.unit,
        usage_percent=evaluation.usage_percent,
        max_override_percent=rule.max_override_percent,
    )
    where = f" (Line {line_number})" if line_number is not None else ""
    if rule.threshold_type == ThresholdType.FREQUENCY:
        measured = f"{_fmt(evaluation.value)} transactions"
        limit = f"{_fmt(rule.limit)} transactions"
    else:
        measured = f"{_fmt(evaluation.value)} {rule.unit}"
        limit = f"{_fmt(rule.limit)} {rule.unit}"

    if evaluation.is_exceeded:
        violation_type = (
            ViolationType.FREQUENCY_EXCEEDED
            if rule.threshold_type == ThresholdType.FREQUENCY
            else ViolationType.THRESHOLD_EXCEEDED
        )
        return make_violation(
            violation_type,
            f"{measured} exceeds threshold '{rule.name}' limit of {limit} "
            f"({rule.period.value}){where}",
            line_number=line_number,
            substance_code=substance_code,
            context=context,
            override_eligible=evaluation.override_eligible,
        )
    return make_violation(
        ViolationType.THRESHOLD_WARNING,
        f"{measured} is {_fmt(evaluation.usage_percent.quantize(Decimal('0.1')))}% "
        f"of threshold '{rule.name}' limit of {limit}{where}",
        line_number=line_number,
        substance_code=substance_code,
        context=context,
        severity=Severity.WARNING,
    )


def _scope(
    transaction: Transaction, customer: Customer | None, line: TransactionLine
) -> ThresholdScope:
    return ThresholdScope(
        on=transaction.transaction_date,
        substance_code=line.substance_code,
        opium_act_list=(
            line.classification.opium_act_list if line.classification else None
        ),
        customer_account=transaction.customer_account,
        customer_category=customer.business_category if customer else None,
        licence_type=line.coverage.licence_type if line.coverage else None,
    )


def _evaluate_thresholds(
    transaction: Transaction,
    lines: list[TransactionLine],
    context: ValidationContext,
) -> tuple[dict[int, list[Violation]], list[Violation]]:
    """Per-line quantity findings and aggregate (cumulative/frequency) findings."""
    per_line: dict[int, list[Violation]] = {}
    aggregate: list[Violation] = []
    warn = context.settings.default_warning_percent
    rules = sorted(
        (r for r in context.thresholds if r.is_effective_on(transaction.transaction_date)),
        key=lambda r: (r.name, str(r.threshold_id)),
    )
    classified = [line for line in lines if line.classification is not None]

    for rule in rules:
        applicable = [
            line for line in classified
            if threshold.rule_applies(rule, _scope(transaction, context.customer, line))
        ]
        if not applicable:
            continue

        if rule.threshold_type == ThresholdType.QUANTITY:
            for line in applicable:
                found = _threshold_violation(
                    threshold.evaluate(rule, line.quantity, warn),
                    line.line_number,
                    line.substance_code,
                )
                if found is not None:
                    per_line.setdefault(line.line_number, []).append(found)
            continue

        prior = Decimal(context.threshold_aggregates.get(rule.threshold_id, _ZERO))
        if rule.threshold_type == ThresholdType.CUMULATIVE_QUANTITY:
            value = prior + sum((line.quantity for line in applicable), _ZERO)
        else:
            value = prior + 1
        found = _threshold_violation(
            threshold.evaluate(rule, value, warn), None, rule.substance_code
        )
        if found is not None:
            aggregate.append(found)
    return per_line, aggregate


# =========================================================================
# Cross-border findings
# =========================================================================


def _has_permit(context: ValidationContext, permit_type: str, transaction: Transaction) -> bool:
    return any(
        licence.licence_type == permit_type
        and is_effectively_valid(licence, transaction.transaction_date)
        for licence in context.permit_licences
    )


def _permit_violations(
    transaction: Transaction, context: ValidationContext
) -> list[Violation]:
    found: list[Violation] = []
    overridable = context.settings.permit_violation_overridable
    permit_context = PermitContext(
        permit_type="",
        origin_country=transaction.origin_country,
        destination_country=transaction.destination_country,
    )
    if transaction.requires_import_permit and not _has_permit(context, IMPORT_PERMIT, transaction):
        found.append(make_violation(
            ViolationType.IMPORT_PERMIT_MISSING,
            f"Import from {transaction.origin_country} requires a valid import permit",
            context=replace(permit_context, permit_type=IMPORT_PERMIT),
            override_eligible=overridable,
        ))
    if transaction.requires_export_permit and not _has_permit(context, EXPORT_PERMIT, transaction):
        found.append(make_violation(
            ViolationType.EXPORT_PERMIT_MISSING,
            f"Export to {transaction.destination_country} requires a valid export permit",
            context=replace(permit_context, permit_type=EXPORT_PERMIT),
            override_eligible=overridable,
        ))
    return found


# =========================================================================
# Entry point
# =========================================================================


def validate(
    transaction: Transaction,
    context: ValidationContext,
    validated_at: datetime,
) -> ValidationOutcome:
    """Validate ``transaction`` and return its next state with the result."""
    on = transaction.transaction_date
    violations: list[Violation] = list(
        check_customer(
            context.customer,
            transaction.customer_account,
            context.settings.gdp_required_categories,
        )
    )

    lines: dict[int, TransactionLine] = {}
    line_findings: dict[int, list[Violation]] = {}
    groups: dict[str, list[TransactionLine]] = {}

    for line in transaction.lines:
        line = _reset(line)
        lines[line.line_number] = line
        if line.substance_code is None:
            continue
        substance = context.substances.get(line.substance_code)
        if substance is None:
            line_findings.setdefault(line.line_number, []).append(make_violation(
                ViolationType.SUBSTANCE_NOT_FOUND,
                f"Substance '{line.substance_code}' not found (Line {line.line_number})",
                line_number=line.line_number,
                substance_code=line.substance_code,
            ))
            continue
        line = replace(line, classification=classification.classification_on(substance, on))
        lines[line.line_number] = line
        groups.setdefault(substance.substance_code, []).append(line)

    activities = coverage.required_activities(
        transaction.transaction_type, transaction.direction, transaction.is_cross_border
    )
    licences_by_id = {lic.licence_id: lic for lic in context.holder_licences}
    for code, group in groups.items():
        substance = context.substances[code]
        outcomes = coverage.match(
            CoverageRequest(code, tuple(group), on, activities),
            context.holder_licences,
            period_usage=context.period_usage,
            tie_break=context.settings.tie_break,
        )
        for line in group:
            outcome = outcomes[line.line_number]
            lines[line.line_number] = replace(line, coverage=outcome)
            found = _coverage_violation(line, substance, outcome)
            if found is None:
                found = _grace_notice(line, substance, outcome, licences_by_id, transaction)
            if found is not None:
                line_findings.setdefault(line.line_number, []).append(found)

    ordered = [lines[line.line_number] for line in transaction.lines]
    threshold_per_line, threshold_aggregate = _evaluate_thresholds(transaction, ordered, context)
    for number, found in threshold_per_line.items():
        line_findings.setdefault(number, []).extend(found)

    final_lines: list[TransactionLine] = []
    for line in ordered:
        findings = line_findings.get(line.line_number, [])
        violations.extend(findings)
        blocking = [v for v in findings if v.is_blocking]
        if blocking:
            line = replace(
                line,
                is_valid=False,
                error_code=blocking[0].code,
                error_message=blocking[0].message,
            )
        final_lines.append(line)

    violations.extend(threshold_aggregate)
    violations.extend(_permit_violations(transaction, context))

    result = ValidationResult.of(violations)
    updated = apply_validation_result(transaction, tuple(final_lines), result, validated_at)
    return ValidationOutcome(transaction=updated, result=result)
