"""
PayCore - Wage Advance Ledger Tests

Installment sizing and schedule projection.
"""

from decimal import Decimal

from paycore.models.payroll import WageAdvanceStatus
from paycore.services.wage_advance_ledger import AdvanceSnapshot, WageAdvanceLedger


def snapshot(
    approved: str,
    installments: int,
    paid: int = 0,
    repaid: str = "0.00",
    status: WageAdvanceStatus = WageAdvanceStatus.DISBURSED,
) -> AdvanceSnapshot:
    return AdvanceSnapshot(
        advance_id="adv-1",
        approved_amount=Decimal(approved),
        installment_count=installments,
        installments_paid=paid,
        amount_repaid=Decimal(repaid),
        status=status,
    )


class TestInstallmentAmount:
    """approved / count, with the final installment taking the remainder."""

    def test_even_split(self):
        assert WageAdvanceLedger.installment_amount(snapshot("30000", 3)) == Decimal("10000.00")

    def test_final_installment_takes_remainder(self):
        assert WageAdvanceLedger.installment_amount(snapshot("10000", 3)) == Decimal("3333.33")
        last = snapshot("10000", 3, paid=2, repaid="6666.66")
        assert WageAdvanceLedger.installment_amount(last) == Decimal("3333.34")

    def test_balance_smaller_than_installment(self):
        nearly_done = snapshot("30000", 3, paid=1, repaid="25000")
        assert WageAdvanceLedger.installment_amount(nearly_done) == Decimal("5000")

    def test_nothing_collected_before_disbursement(self):
        approved = snapshot("30000", 3, status=WageAdvanceStatus.APPROVED)
        assert WageAdvanceLedger.installment_amount(approved) == Decimal("0.00")
        assert WageAdvanceLedger.next_installment(approved) is None

    def test_nothing_collected_once_repaid(self):
        repaid = snapshot("30000", 3, paid=3, repaid="30000", status=WageAdvanceStatus.REPAID)
        assert WageAdvanceLedger.next_installment(repaid) is None


class TestProjectedSchedule:
    """Projection of remaining installments."""

    def test_schedule_sums_to_approved_amount(self):
        schedule = WageAdvanceLedger.projected_schedule(snapshot("10000", 3))

        assert [i.amount for i in schedule] == [
            Decimal("3333.33"), Decimal("3333.33"), Decimal("3333.34"),
        ]
        assert [i.installment_number for i in schedule] == [1, 2, 3]
        assert schedule[-1].balance_after == Decimal("0.00")
        assert sum(i.amount for i in schedule) == Decimal("10000")

    def test_approved_advance_projects_full_schedule(self):
        schedule = WageAdvanceLedger.projected_schedule(
            snapshot("30000", 3, status=WageAdvanceStatus.APPROVED)
        )
        assert len(schedule) == 3

    def test_partially_repaid_advance(self):
        schedule = WageAdvanceLedger.projected_schedule(
            snapshot("30000", 3, paid=1, repaid="10000", status=WageAdvanceStatus.REPAYING)
        )
        assert [i.installment_number for i in schedule] == [2, 3]


class TestCutInstallments:
    """Reducing installments when pay cannot cover them."""

    def test_partial_cut_keeps_balance_on_advance(self):
        installment = WageAdvanceLedger.next_installment(snapshot("30000", 3))

        kept, shortfall = WageAdvanceLedger.cut_installments([installment], Decimal("4000.00"))

        assert shortfall == Decimal("0.00")
        assert kept[0].amount == Decimal("6000.00")
        assert kept[0].balance_after == Decimal("24000.00")
        assert kept[0].installment_number == 1

    def test_full_cut_drops_installment_and_reports_remainder(self):
        installment = WageAdvanceLedger.next_installment(snapshot("30000", 3))

        kept, shortfall = WageAdvanceLedger.cut_installments([installment], Decimal("12500.00"))

        assert kept == []
        assert shortfall == Decimal("2500.00")
