"""
ThresholdEvaluator -- quantity and frequency limits.

Responsibility:
    Decides, for a value and a set of applicable threshold rules, which
    rules are breached, which are in their warning band, and whether a
    breach exceeds the rule's hard override ceiling.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.  The evaluator never
    accumulates state; cumulative and frequency values arrive from the
    caller already aggregated.

Invariants enforced:
    - Breach is strict: ``value > limit``.  A value equal to the limit is
      not a breach.
    - Warning band is inclusive on both ends:
      ``limit * warning% / 100 <= value <= limit``.
    - Override ceiling: ``value > limit * max_override% / 100`` can never
      be approved, whatever a human decides.
    - Every applicable rule is evaluated; there is no early exit.

Failure modes:
    - ValueError on construction with a negative limit or a warning
      percentage outside (0, 100].
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable
from uuid import UUID, uuid4

from compliance_kernel.domain.customer import BusinessCategory
from compliance_kernel.domain.substance import OpiumActList
from compliance_kernel.domain.values import Period

DEFAULT_WARNING_PERCENT = Decimal("80")
_HUNDRED = Decimal("100")


class ThresholdType(str, Enum):
    QUANTITY = "quantity"
    CUMULATIVE_QUANTITY = "cumulative_quantity"
    FREQUENCY = "frequency"


@dataclass(frozen=True)
class ThresholdRule:
    """A configured limit with its scope.

    Scope fields left as ``None`` match anything.  A rule scoped to a
    specific ``customer_account`` ignores ``customer_category``.
    ``warning_percent=None`` means "use the configured default".
    """

    name: str
    threshold_type: ThresholdType
    limit: Decimal
    period: Period = Period.PER_TRANSACTION
    unit: str = "g"
    warning_percent: Decimal | None = None
    allow_override: bool = True
    max_override_percent: Decimal | None = None
    substance_code: str | None = None
    opium_act_list: OpiumActList | None = None
    customer_category: BusinessCategory | None = None
    customer_account: str | None = None
    licence_type: str | None = None
    is_active: bool = True
    effective_from: date | None = None
    effective_to: date | None = None
    threshold_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.threshold_id is None:
            object.__setattr__(self, "threshold_id", uuid4())
        limit = Decimal(self.limit)
        if limit < 0:
            raise ValueError(f"Threshold {self.name} limit cannot be negative: {limit}")
        object.__setattr__(self, "limit", limit)
        if self.warning_percent is not None:
            warning = Decimal(self.warning_percent)
            if warning <= 0 or warning > _HUNDRED:
                raise ValueError(
                    f"Threshold {self.name} warning percent must be in (0, 100]: {warning}"
                )
            object.__setattr__(self, "warning_percent", warning)
        if self.max_override_percent is not None:
            ceiling = Decimal(self.max_override_percent)
            if ceiling < _HUNDRED:
                raise ValueError(
                    f"Threshold {self.name} override ceiling must be at least 100%: {ceiling}"
                )
            object.__setattr__(self, "max_override_percent", ceiling)
        if (
            self.effective_from is not None
            and self.effective_to is not None
            and self.effective_to < self.effective_from
        ):
            raise ValueError(f"Threshold {self.name} ends before it starts")

    def is_effective_on(self, on: date) -> bool:
        if not self.is_active:
            return False
        if self.effective_from is not None and on < self.effective_from:
            return False
        if self.effective_to is not None and on > self.effective_to:
            return False
        return True


@dataclass(frozen=True, slots=True)
class ThresholdScope:
    """What a transaction line looks like to scope matching."""

    on: date
    substance_code: str | None = None
    opium_act_list: OpiumActList | None = None
    customer_account: str | None = None
    customer_category: BusinessCategory | None = None
    licence_type: str | None = None


def rule_applies(rule: ThresholdRule, scope: ThresholdScope) -> bool:
    if not rule.is_effective_on(scope.on):
        return False
    if rule.substance_code is not None and rule.substance_code != scope.substance_code:
        return False
    if rule.opium_act_list is not None and rule.opium_act_list != scope.opium_act_list:
        return False
    if rule.customer_account is not None:
        if rule.customer_account != scope.customer_account:
            return False
    elif rule.customer_category is not None and rule.customer_category != scope.customer_category:
        return False
    if rule.licence_type is not None and rule.licence_type != scope.licence_type:
        return False
    return True


# =========================================================================
# Evaluation
# =========================================================================


def warning_level(limit: Decimal, warning_percent: Decimal) -> Decimal:
    return limit * warning_percent / _HUNDRED


def override_ceiling(limit: Decimal, max_override_percent: Decimal) -> Decimal:
    return limit * max_override_percent / _HUNDRED


def exceeds_override_ceiling(
    limit: Decimal, max_override_percent: Decimal | None, value: Decimal
) -> bool:
    """True if ``value`` is above the hard override ceiling.

    No ceiling configured means no hard cap.
    """
    if max_override_percent is None:
        return False
    return value > override_ceiling(limit, max_override_percent)


def usage_percent(limit: Decimal, value: Decimal) -> Decimal:
    if limit == 0:
        return _HUNDRED
    return value / limit * _HUNDRED


@dataclass(frozen=True, slots=True)
class ThresholdEvaluation:
    """Outcome of one rule against one value."""

    rule: ThresholdRule
    value: Decimal
    is_exceeded: bool
    is_warning: bool
    exceeds_override_ceiling: bool
    usage_percent: Decimal

    @property
    def override_eligible(self) -> bool:
        return self.rule.allow_override


def evaluate(
    rule: ThresholdRule,
    value: Decimal,
    default_warning_percent: Decimal = DEFAULT_WARNING_PERCENT,
) -> ThresholdEvaluation:
    value = Decimal(value)
    warning_percent = (
        rule.warning_percent
        if rule.warning_percent is not None
        else Decimal(default_warning_percent)
    )
    exceeded = value > rule.limit
    return ThresholdEvaluation(
        rule=rule,
        value=value,
        is_exceeded=exceeded,
        is_warning=(
            not exceeded and value >= warning_level(rule.limit, warning_percent)
        ),
        exceeds_override_ceiling=(
            exceeded
            and rule.allow_override
            and exceeds_override_ceiling(rule.limit, rule.max_override_percent, value)
        ),
        usage_percent=usage_percent(rule.limit, value),
    )


def evaluate_all(
    rules: Iterable[ThresholdRule],
    value: Decimal,
    default_warning_percent: Decimal = DEFAULT_WARNING_PERCENT,
) -> tuple[ThresholdEvaluation, ...]:
    """Evaluate every rule independently."""
    return tuple(evaluate(rule, value, default_warning_percent) for rule in rules)
