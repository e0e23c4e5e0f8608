"""Tests for threshold evaluation and scope matching."""

from datetime import date
from decimal import Decimal

import pytest

from compliance_kernel.domain.customer import BusinessCategory
from compliance_kernel.domain.substance import OpiumActList
from compliance_kernel.domain.threshold import (
    ThresholdRule,
    ThresholdScope,
    ThresholdType,
    evaluate,
    evaluate_all,
    exceeds_override_ceiling,
    override_ceiling,
    rule_applies,
    usage_percent,
)


def _rule(limit="100", **kwargs) -> ThresholdRule:
    kwargs.setdefault("name", "Morphine per order")
    kwargs.setdefault("threshold_type", ThresholdType.QUANTITY)
    return ThresholdRule(limit=Decimal(limit), **kwargs)


# ---------------------------------------------------------------------------
# Breach and warning band
# ---------------------------------------------------------------------------


class TestEvaluate:
    """Limit 100, warning at 80%."""

    def test_warning_only_below_limit(self):
        rule = _rule(warning_percent=Decimal("80"), allow_override=False)
        result = evaluate(rule, Decimal("95"))
        assert result.is_warning
        assert not result.is_exceeded

    def test_breach_above_limit_not_overridable(self):
        rule = _rule(warning_percent=Decimal("80"), allow_override=False)
        result = evaluate(rule, Decimal("101"))
        assert result.is_exceeded
        assert not result.is_warning
        assert not result.override_eligible

    def test_value_equal_to_limit_is_not_a_breach(self):
        result = evaluate(_rule(), Decimal("100"))
        assert not result.is_exceeded
        assert result.is_warning

    def test_warning_band_lower_bound_inclusive(self):
        assert evaluate(_rule(), Decimal("80")).is_warning
        assert not evaluate(_rule(), Decimal("79.999")).is_warning

    def test_default_warning_percent_applies(self):
        rule = _rule()
        assert evaluate(rule, Decimal("85"), Decimal("90")).is_warning is False
        assert evaluate(rule, Decimal("90"), Decimal("90")).is_warning

    def test_every_rule_evaluated(self):
        rules = [_rule("50", name="a"), _rule("200", name="b")]
        results = evaluate_all(rules, Decimal("60"))
        assert [r.is_exceeded for r in results] == [True, False]

    def test_usage_percent(self):
        assert usage_percent(Decimal("200"), Decimal("50")) == Decimal("25")
        assert usage_percent(Decimal("0"), Decimal("1")) == Decimal("100")


# ---------------------------------------------------------------------------
# Override ceiling
# ---------------------------------------------------------------------------


class TestOverrideCeiling:
    def test_ceiling_value(self):
        assert override_ceiling(Decimal("100"), Decimal("150")) == Decimal("150")

    def test_no_ceiling_means_no_cap(self):
        assert not exceeds_override_ceiling(Decimal("100"), None, Decimal("10000"))

    def test_above_ceiling_flagged(self):
        rule = _rule(max_override_percent=Decimal("150"))
        assert not evaluate(rule, Decimal("150")).exceeds_override_ceiling
        assert evaluate(rule, Decimal("151")).exceeds_override_ceiling

    def test_ceiling_below_limit_rejected(self):
        with pytest.raises(ValueError):
            _rule(max_override_percent=Decimal("90"))


class TestConstruction:
    def test_negative_limit_rejected(self):
        with pytest.raises(ValueError):
            _rule("-1")

    @pytest.mark.parametrize("percent", ["0", "100.1"])
    def test_warning_percent_out_of_range(self, percent):
        with pytest.raises(ValueError):
            _rule(warning_percent=Decimal(percent))


# ---------------------------------------------------------------------------
# Scope
# ---------------------------------------------------------------------------


class TestRuleApplies:
    """Scope fields left as None match anything."""

    ON = date(2025, 6, 1)

    def test_unscoped_rule_applies(self):
        assert rule_applies(_rule(), ThresholdScope(on=self.ON, substance_code="MORPH"))

    def test_substance_scope(self):
        rule = _rule(substance_code="FENT")
        assert not rule_applies(rule, ThresholdScope(on=self.ON, substance_code="MORPH"))

    def test_opium_list_scope(self):
        rule = _rule(opium_act_list=OpiumActList.LIST_II)
        assert rule_applies(
            rule, ThresholdScope(on=self.ON, opium_act_list=OpiumActList.LIST_II)
        )
        assert not rule_applies(
            rule, ThresholdScope(on=self.ON, opium_act_list=OpiumActList.LIST_I)
        )

    def test_account_scope_ignores_category(self):
        rule = _rule(
            customer_account="CUST-001",
            customer_category=BusinessCategory.VETERINARIAN,
        )
        scope = ThresholdScope(
            on=self.ON,
            customer_account="CUST-001",
            customer_category=BusinessCategory.MANUFACTURER,
        )
        assert rule_applies(rule, scope)

    def test_category_scope(self):
        rule = _rule(customer_category=BusinessCategory.VETERINARIAN)
        scope = ThresholdScope(on=self.ON, customer_category=BusinessCategory.MANUFACTURER)
        assert not rule_applies(rule, scope)

    def test_licence_type_scope(self):
        rule = _rule(licence_type="OPIUM_ACT_EXEMPTION")
        assert rule_applies(rule, ThresholdScope(on=self.ON, licence_type="OPIUM_ACT_EXEMPTION"))
        assert not rule_applies(rule, ThresholdScope(on=self.ON, licence_type=None))

    def test_effective_window(self):
        rule = _rule(effective_from=date(2025, 7, 1))
        assert not rule_applies(rule, ThresholdScope(on=self.ON))

    def test_inactive_rule(self):
        assert not rule_applies(_rule(is_active=False), ThresholdScope(on=self.ON))
