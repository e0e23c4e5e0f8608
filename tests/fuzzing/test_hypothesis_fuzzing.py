"""
Hypothesis-based property tests.

Boundaries fuzzed here:
- Threshold evaluation: strict breach, inclusive warning band, ceiling
- Classification resolution: input order never matters
- Coverage caps: matched quantity never exceeds a per-transaction or
  per-period cap, whatever the line mix
- Period arithmetic: the reference date always falls inside its period
- Webhook signing: verification accepts exactly the signed payload
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from hypothesis.strategies import composite

from compliance_kernel.domain.classification import classification_on
from compliance_kernel.domain.coverage import CoverageRequest, match
from compliance_kernel.domain.licence import HolderType, Licence, SubstanceMapping
from compliance_kernel.domain.substance import (
    Classification,
    OpiumActList,
    PrecursorCategory,
    ReclassificationEvent,
    Substance,
)
from compliance_kernel.domain.threshold import ThresholdRule, ThresholdType, evaluate
from compliance_kernel.domain.transaction import TransactionLine
from compliance_kernel.domain.values import Activity, ActivitySet, Period, period_bounds
from compliance_kernel.domain.webhook import compute_signature, verify_signature

CONTROLLED = [
    Classification(opium, precursor)
    for opium in OpiumActList
    for precursor in PrecursorCategory
    if opium != OpiumActList.NONE or precursor != PrecursorCategory.NONE
]


@composite
def quantities(draw, max_value="1000"):
    return draw(st.decimals(
        min_value=Decimal("0"),
        max_value=Decimal(max_value),
        places=3,
        allow_nan=False,
        allow_infinity=False,
    ))


@composite
def reclassification_histories(draw):
    """A substance with up to five completed reclassifications."""
    count = draw(st.integers(min_value=0, max_value=5))
    offsets = draw(st.lists(
        st.integers(min_value=0, max_value=3650),
        min_size=count,
        max_size=count,
        unique=True,
    ))
    events = []
    for offset in offsets:
        previous, new = draw(
            st.tuples(st.sampled_from(CONTROLLED), st.sampled_from(CONTROLLED))
            .filter(lambda pair: pair[0] != pair[1])
        )
        events.append(ReclassificationEvent(
            substance_code="SUB",
            previous=previous,
            new=new,
            effective_date=date(2020, 1, 1) + timedelta(days=offset),
        ))
    current = draw(st.sampled_from(CONTROLLED))
    return Substance("SUB", "Substance", current, tuple(events))


# =============================================================================
# Thresholds
# =============================================================================


class TestThresholdProperties:
    @given(
        limit=quantities(max_value="500"),
        value=quantities(),
        warning=st.integers(min_value=1, max_value=100),
    )
    @settings(max_examples=300)
    def test_breach_and_warning_are_exclusive(self, limit, value, warning):
        rule = ThresholdRule(
            name="fuzz",
            threshold_type=ThresholdType.QUANTITY,
            limit=limit,
            warning_percent=Decimal(warning),
        )
        result = evaluate(rule, value)

        assert result.is_exceeded == (value > limit)
        assert not (result.is_exceeded and result.is_warning)
        if result.is_warning:
            assert limit * Decimal(warning) / 100 <= value <= limit

    @given(limit=quantities(max_value="500"), value=quantities(max_value="2000"))
    @settings(max_examples=200)
    def test_ceiling_only_flags_breaches(self, limit, value):
        rule = ThresholdRule(
            name="fuzz",
            threshold_type=ThresholdType.QUANTITY,
            limit=limit,
            max_override_percent=Decimal("150"),
        )
        result = evaluate(rule, value)
        if result.exceeds_override_ceiling:
            assert result.is_exceeded
            assert value > limit * Decimal("1.5")


# =============================================================================
# Classification
# =============================================================================


class TestClassificationProperties:
    @given(
        substance=reclassification_histories(),
        offset=st.integers(min_value=-30, max_value=4000),
        seed=st.randoms(use_true_random=False),
    )
    @settings(max_examples=200)
    def test_event_order_does_not_matter(self, substance, offset, seed):
        on = date(2020, 1, 1) + timedelta(days=offset)
        shuffled = list(substance.reclassifications)
        seed.shuffle(shuffled)
        reordered = Substance(
            substance.substance_code,
            substance.name,
            substance.classification,
            tuple(shuffled),
        )
        assert classification_on(reordered, on) == classification_on(substance, on)

    @given(substance=reclassification_histories())
    @settings(max_examples=100)
    def test_far_future_uses_latest_event(self, substance):
        far = date(2040, 1, 1)
        if substance.reclassifications:
            latest = max(substance.reclassifications, key=lambda e: e.effective_date)
            assert classification_on(substance, far) == latest.new
        else:
            assert classification_on(substance, far) == substance.classification


# =============================================================================
# Coverage caps
# =============================================================================


class TestCoverageProperties:
    @given(
        line_quantities=st.lists(quantities(max_value="80"), min_size=1, max_size=10),
        per_transaction=quantities(max_value="60"),
        per_period=quantities(max_value="200"),
        prior=quantities(max_value="100"),
    )
    @settings(max_examples=200)
    def test_caps_never_exceeded(self, line_quantities, per_transaction, per_period, prior):
        licence = Licence(
            licence_number="LIC-FUZZ",
            licence_type="OPIUM_ACT_EXEMPTION",
            holder_type=HolderType.CUSTOMER,
            holder_id="CUST",
            issuing_authority="Farmatec",
            issue_date=date(2024, 1, 1),
            permitted_activities=ActivitySet.of(Activity.DISTRIBUTE),
            substance_mappings=(
                SubstanceMapping(
                    "SUB",
                    max_quantity_per_transaction=per_transaction,
                    max_quantity_per_period=per_period,
                    period=Period.MONTHLY,
                ),
            ),
        )
        lines = tuple(
            TransactionLine(line_number=i, item_number="X", quantity=q, substance_code="SUB")
            for i, q in enumerate(line_quantities, start=1)
        )
        request = CoverageRequest("SUB", lines, date(2025, 6, 1), ActivitySet.of(Activity.DISTRIBUTE))

        outcomes = match(
            request, [licence], period_usage={(licence.licence_id, "SUB"): prior}
        )

        covered = [line for line in lines if outcomes[line.line_number].is_covered]
        assert all(line.quantity <= per_transaction for line in covered)
        assert prior + sum((line.quantity for line in covered), Decimal("0")) <= max(
            per_period, prior
        )


# =============================================================================
# Periods and signing
# =============================================================================


class TestPeriodProperties:
    @given(
        reference=st.dates(min_value=date(2000, 1, 1), max_value=date(2100, 12, 31)),
        period=st.sampled_from(list(Period)),
    )
    def test_reference_inside_period(self, reference, period):
        start, end = period_bounds(period, reference)
        assert start <= reference <= end
        if period == Period.WEEKLY:
            assert start.weekday() == 6
            assert (end - start).days == 6


class TestSignatureProperties:
    @given(payload=st.text(), secret=st.text(min_size=1), other=st.text())
    @settings(max_examples=200)
    def test_only_signed_payload_verifies(self, payload, secret, other):
        signature = compute_signature(payload, secret)
        assert verify_signature(payload, signature, secret)
        if other != payload:
            assert not verify_signature(other, signature, secret)


@pytest.mark.slow
class TestSlowClassification:
    @given(substance=reclassification_histories(), offset=st.integers(-30, 4000))
    @settings(max_examples=2000, deadline=None)
    def test_resolution_is_stable(self, substance, offset):
        on = date(2020, 1, 1) + timedelta(days=offset)
        assert classification_on(substance, on) == classification_on(substance, on)
