"""
PayCore - Deduction Engine Tests

Priority ordering, caps and statutory rule resolution.
"""

import pytest
from decimal import Decimal

from paycore.models.payroll import DeductionBase, DeductionCalculation, DeductionCategory
from paycore.services.deduction_engine import (
    DeductionBases,
    DeductionEngine,
    DeductionRule,
    PENSION_CODE,
)
from paycore.services.payroll_exceptions import MandatoryDeductionError


BASES = DeductionBases(
    gross=Decimal("300000.00"),
    basic=Decimal("200000.00"),
    pensionable=Decimal("300000.00"),
    taxable=Decimal("300000.00"),
)


def rule(code: str, priority: int, **overrides) -> DeductionRule:
    values = dict(
        code=code,
        name=code.title(),
        category=DeductionCategory.VOLUNTARY,
        calculation=DeductionCalculation.FIXED,
        base=DeductionBase.GROSS,
        priority=priority,
    )
    values.update(overrides)
    return DeductionRule(**values)


class TestPriorityOrdering:
    """Deductions apply strictly in ascending priority."""

    def test_pre_tax_deduction_reduces_later_taxable_base(self):
        pension = rule(
            "PENSION", 10,
            calculation=DeductionCalculation.PERCENTAGE,
            base=DeductionBase.PENSIONABLE,
            rate=Decimal("8"),
            is_pre_tax=True,
        )
        levy = rule(
            "LEVY", 50,
            calculation=DeductionCalculation.PERCENTAGE,
            base=DeductionBase.TAXABLE,
            rate=Decimal("10"),
        )

        result = DeductionEngine().apply([levy, pension], BASES)

        assert [d.code for d in result.applied] == ["PENSION", "LEVY"]
        assert result.amount_for("PENSION") == Decimal("24000.00")
        # 10% of (300,000 - 24,000)
        assert result.amount_for("LEVY") == Decimal("27600.00")
        assert result.taxable_base == Decimal("276000.00")
        assert result.total_pre_tax == Decimal("24000.00")
        assert result.total_post_tax == Decimal("27600.00")

    def test_same_priority_breaks_ties_by_code(self):
        result = DeductionEngine().apply(
            [rule("ZULU", 20, amount=Decimal("1")), rule("ALPHA", 20, amount=Decimal("1"))],
            BASES,
        )
        assert [d.code for d in result.applied] == ["ALPHA", "ZULU"]

    def test_taxable_base_never_negative(self):
        big = rule("BIG", 1, amount=Decimal("500000"), is_pre_tax=True)
        result = DeductionEngine().apply([big], BASES)
        assert result.taxable_base == Decimal("0.00")


class TestCaps:
    """Per-period cap, lifetime target and annual cap all clamp the amount."""

    def test_per_period_cap(self):
        capped = rule("UNION", 30, amount=Decimal("8000"), per_period_cap=Decimal("5000"))
        result = DeductionEngine().apply([capped], BASES)
        assert result.amount_for("UNION") == Decimal("5000")

    def test_remaining_target_clamps_and_flags(self):
        loan = rule(
            "LOAN", 50,
            category=DeductionCategory.LOAN,
            amount=Decimal("20000"),
            remaining_target=Decimal("7500"),
        )
        result = DeductionEngine().apply([loan], BASES)

        applied = result.applied[0]
        assert applied.amount == Decimal("7500")
        assert applied.target_reached is True

    def test_remaining_annual_cap(self):
        capped = rule("COOP", 40, amount=Decimal("10000"), remaining_annual=Decimal("2500"))
        result = DeductionEngine().apply([capped], BASES)
        assert result.amount_for("COOP") == Decimal("2500")

    def test_exhausted_optional_deduction_is_dropped(self):
        done = rule("LOAN", 50, amount=Decimal("20000"), remaining_target=Decimal("0"))
        result = DeductionEngine().apply([done], BASES)
        assert result.applied == ()


class TestUnresolvableRules:
    """Rules without an amount or rate."""

    def test_mandatory_without_rate_raises(self):
        broken = rule(
            "PENSION", 5,
            calculation=DeductionCalculation.PERCENTAGE,
            is_mandatory=True,
        )
        with pytest.raises(MandatoryDeductionError):
            DeductionEngine().apply([broken], BASES)

    def test_optional_without_amount_is_skipped(self):
        result = DeductionEngine().apply([rule("DUES", 60)], BASES)
        assert result.applied == ()
        assert result.skipped == ("DUES",)


class TestStatutoryRules:
    """Statutory rules come from enrolment plus the tenant catalog."""

    def test_enrolment_rate_overrides_catalog(self):
        catalog = {
            PENSION_CODE: rule(
                PENSION_CODE, 5,
                category=DeductionCategory.STATUTORY,
                calculation=DeductionCalculation.PERCENTAGE,
                base=DeductionBase.PENSIONABLE,
                rate=Decimal("8"),
                is_pre_tax=True,
                is_mandatory=True,
            ),
        }
        rules = DeductionEngine.statutory_rules(catalog, pension_enabled=True, pension_rate=Decimal("10"))
        assert len(rules) == 1
        assert rules[0].rate == Decimal("10")

    def test_not_enrolled_yields_nothing(self):
        assert DeductionEngine.statutory_rules({}, pension_enabled=False) == []

    def test_missing_catalog_entry_raises(self):
        with pytest.raises(MandatoryDeductionError):
            DeductionEngine.statutory_rules({}, nhf_enabled=True)


class TestCutPostTax:
    """Reducing post-tax deductions to fit the pay available."""

    def test_lowest_priority_reduced_first(self):
        pension = rule("PENSION", 5, amount=Decimal("24000"), is_pre_tax=True)
        union = rule("UNION", 40, amount=Decimal("5000"))
        loan = rule("LOAN", 60, amount=Decimal("50000"), remaining_target=Decimal("100000"))
        result = DeductionEngine().apply([loan, union, pension], BASES)

        reduced, shortfall = result.cut_post_tax(Decimal("52000.00"))

        assert shortfall == Decimal("0.00")
        assert [(d.code, d.amount) for d in reduced.applied] == [
            ("PENSION", Decimal("24000.00")),
            ("UNION", Decimal("3000.00")),
        ]
        assert reduced.total_pre_tax == Decimal("24000.00")
        assert reduced.total_post_tax == Decimal("3000.00")

    def test_pre_tax_never_reduced(self):
        pension = rule("PENSION", 5, amount=Decimal("24000"), is_pre_tax=True)
        union = rule("UNION", 40, amount=Decimal("5000"))
        result = DeductionEngine().apply([union, pension], BASES)

        reduced, shortfall = result.cut_post_tax(Decimal("8000.00"))

        assert shortfall == Decimal("3000.00")
        assert [d.code for d in reduced.applied] == ["PENSION"]
        assert reduced.total == Decimal("24000.00")

    def test_nothing_to_cut(self):
        result = DeductionEngine().apply([rule("UNION", 40, amount=Decimal("5000"))], BASES)
        reduced, shortfall = result.cut_post_tax(Decimal("0.00"))
        assert reduced is result
        assert shortfall == Decimal("0.00")
