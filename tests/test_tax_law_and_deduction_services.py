"""
PayCore - Tax Table and Deduction Service Tests

Database-backed tax table authoring and employee deduction assignments.
"""

import pytest
from datetime import date
from decimal import Decimal

from paycore.config import get_settings
from paycore.models.audit import PayrollAuditAction
from paycore.models.tax_law import TaxLawVersion
from paycore.services.audit_service import PayrollAuditService
from paycore.services.deduction_service import DeductionService
from paycore.services.payroll_exceptions import (
    NoApplicableTaxLawError,
    PayRunStateError,
    PayrollBusinessRuleError,
    PayrollInvariantError,
    PayrollValidationError,
)
from paycore.services.tax_law_service import (
    PITA_2011_BANDS,
    TaxLawService,
    seed_nigerian_tax_tables,
)


class TestTaxTableSeeding:
    """The Nigerian tables seeded for NG."""

    @pytest.mark.asyncio
    async def test_seeding_is_idempotent(self, db_session, tax_tables):
        assert await seed_nigerian_tax_tables(db_session) == []
        assert len(await TaxLawService(db_session).list_tables("NG")) == 2

    @pytest.mark.asyncio
    async def test_table_switches_on_commencement(self, db_session, tax_tables):
        service = TaxLawService(db_session)

        december = await service.get_table_for_date("NG", date(2025, 12, 31))
        january = await service.get_table_for_date("NG", date(2026, 1, 1))

        assert december.version == TaxLawVersion.PITA_2011
        assert january.version == TaxLawVersion.NTA_2025

    @pytest.mark.asyncio
    async def test_cumulative_tax_stored_with_bands(self, db_session, tax_tables):
        table = await TaxLawService(db_session).get_table_for_date("NG", date(2020, 6, 30))

        top = table.bands[-1]
        assert top.upper is None
        # 21,000 + 33,000 + 75,000 + 95,000 + 336,000
        assert top.cumulative_tax == Decimal("560000.00")


class TestTaxTableAuthoring:
    """create_tax_table validation."""

    @pytest.mark.asyncio
    async def test_duplicate_version_refused(self, db_session, tax_tables):
        with pytest.raises(PayrollBusinessRuleError) as exc_info:
            await TaxLawService(db_session).create_tax_table(
                jurisdiction_code="NG",
                version=TaxLawVersion.NTA_2025,
                name="NTA 2025 again",
                effective_from=date(2027, 1, 1),
                effective_to=None,
                bands=PITA_2011_BANDS,
            )
        assert exc_info.value.details["violated_rule"] == "tax_table_unique_version"

    @pytest.mark.asyncio
    async def test_overlapping_range_refused(self, db_session):
        service = TaxLawService(db_session)
        await service.create_tax_table(
            jurisdiction_code="GH",
            version=TaxLawVersion.PITA_2011,
            name="Old table",
            effective_from=date(2020, 1, 1),
            effective_to=date(2026, 1, 1),
            bands=PITA_2011_BANDS,
        )

        with pytest.raises(PayrollBusinessRuleError) as exc_info:
            await service.create_tax_table(
                jurisdiction_code="GH",
                version=TaxLawVersion.NTA_2025,
                name="New table",
                effective_from=date(2025, 7, 1),
                effective_to=None,
                bands=PITA_2011_BANDS,
            )
        assert exc_info.value.details["violated_rule"] == "tax_table_no_overlap"

    @pytest.mark.asyncio
    async def test_adjacent_ranges_accepted(self, db_session):
        service = TaxLawService(db_session)
        for version, start, end in (
            (TaxLawVersion.PITA_2011, date(2020, 1, 1), date(2026, 1, 1)),
            (TaxLawVersion.NTA_2025, date(2026, 1, 1), None),
        ):
            await service.create_tax_table(
                jurisdiction_code="GH",
                version=version,
                name=version.value,
                effective_from=start,
                effective_to=end,
                bands=PITA_2011_BANDS,
            )

        assert len(await service.load_tables("GH")) == 2

    @pytest.mark.asyncio
    async def test_gap_between_bands_refused(self, db_session):
        with pytest.raises(PayrollInvariantError):
            await TaxLawService(db_session).create_tax_table(
                jurisdiction_code="GH",
                version=TaxLawVersion.NTA_2025,
                name="Broken",
                effective_from=date(2026, 1, 1),
                effective_to=None,
                bands=[
                    (Decimal("0"), Decimal("300000"), Decimal("7")),
                    (Decimal("400000"), None, Decimal("11")),
                ],
            )

    @pytest.mark.asyncio
    async def test_empty_date_range_refused(self, db_session):
        with pytest.raises(PayrollValidationError):
            await TaxLawService(db_session).create_tax_table(
                jurisdiction_code="GH",
                version=TaxLawVersion.NTA_2025,
                name="Backwards",
                effective_from=date(2026, 1, 1),
                effective_to=date(2026, 1, 1),
                bands=PITA_2011_BANDS,
            )


class TestTaxEstimates:
    """estimate_tax jurisdiction resolution."""

    @pytest.mark.asyncio
    async def test_default_jurisdiction_from_settings(self, db_session, tax_tables):
        assessment = await TaxLawService(db_session).estimate_tax(Decimal("3600000"), date(2026, 6, 30))
        assert assessment.version == TaxLawVersion.NTA_2025.value

    @pytest.mark.asyncio
    async def test_injected_settings_change_default_jurisdiction(self, db_session, tax_tables):
        settings = get_settings().model_copy(update={"payroll_default_jurisdiction": "GH"})
        service = TaxLawService(db_session, settings)

        with pytest.raises(NoApplicableTaxLawError) as exc_info:
            await service.estimate_tax(Decimal("3600000"), date(2026, 6, 30))
        assert exc_info.value.details["jurisdiction"] == "GH"


class TestDeductionAssignments:
    """Assign, update and end employee deductions."""

    @pytest.mark.asyncio
    async def test_assign_records_audit(self, db_session, employee, deduction_catalog, actor_id):
        service = DeductionService(db_session)

        assignment = await service.assign_deduction(
            employee,
            deduction_catalog["LOAN"],
            effective_from=date(2026, 1, 1),
            amount=Decimal("20000"),
            total_target=Decimal("60000"),
            actor_id=actor_id,
        )
        await db_session.commit()

        assert assignment.is_active is True
        assignments = await service.list_assignments([employee.id])
        assert [a.id for a in assignments[employee.id]] == [assignment.id]

        history = await PayrollAuditService(db_session).get_entity_history("employee_deduction", assignment.id)
        assert [entry.action for entry in history] == [PayrollAuditAction.DEDUCTION_ASSIGNED.value]
        assert history[0].new_values["code"] == "LOAN"

    @pytest.mark.asyncio
    async def test_invalid_terms_refused(self, db_session, employee, deduction_catalog):
        service = DeductionService(db_session)
        loan = deduction_catalog["LOAN"]

        with pytest.raises(PayrollValidationError):
            await service.assign_deduction(employee, loan, date(2026, 1, 1), amount=Decimal("-1"))
        with pytest.raises(PayrollValidationError):
            await service.assign_deduction(employee, loan, date(2026, 1, 1), rate=Decimal("101"))
        with pytest.raises(PayrollValidationError):
            await service.assign_deduction(
                employee, loan, date(2026, 1, 1),
                amount=Decimal("1000"),
                total_target=Decimal("5000"),
                total_deducted=Decimal("6000"),
            )
        with pytest.raises(PayrollValidationError):
            await service.assign_deduction(
                employee, loan, date(2026, 2, 1),
                amount=Decimal("1000"),
                effective_to=date(2026, 1, 1),
            )

    @pytest.mark.asyncio
    async def test_update_keeps_before_and_after(self, db_session, employee, deduction_catalog):
        service = DeductionService(db_session)
        assignment = await service.assign_deduction(
            employee, deduction_catalog["UNION"], date(2026, 1, 1), amount=Decimal("2500"),
        )

        await service.update_deduction(assignment, amount=Decimal("3000"))
        await db_session.commit()

        assert assignment.amount == Decimal("3000")
        history = await PayrollAuditService(db_session).get_entity_history("employee_deduction", assignment.id)
        updated = [e for e in history if e.action == PayrollAuditAction.DEDUCTION_UPDATED.value][0]
        assert updated.old_values["amount"] == "2500"
        assert updated.new_values["amount"] == "3000"

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, db_session, employee, deduction_catalog):
        service = DeductionService(db_session)
        assignment = await service.assign_deduction(
            employee, deduction_catalog["UNION"], date(2026, 1, 1), amount=Decimal("2500"),
        )

        with pytest.raises(PayrollValidationError):
            await service.update_deduction(assignment, total_deducted=Decimal("0"))

    @pytest.mark.asyncio
    async def test_end_deduction(self, db_session, employee, deduction_catalog):
        service = DeductionService(db_session)
        assignment = await service.assign_deduction(
            employee, deduction_catalog["SAVINGS"], date(2026, 1, 1), amount=Decimal("5000"),
        )

        with pytest.raises(PayrollValidationError):
            await service.end_deduction(assignment, date(2025, 12, 31))

        await service.end_deduction(assignment, date(2026, 3, 31))
        assert assignment.is_active is False
        assert assignment.effective_to == date(2026, 3, 31)

        with pytest.raises(PayRunStateError):
            await service.end_deduction(assignment, date(2026, 4, 30))

    @pytest.mark.asyncio
    async def test_catalog_ordered_by_priority(self, db_session, tenant_id, deduction_catalog):
        catalog = await DeductionService(db_session).get_catalog(tenant_id)
        priorities = [d.priority for d in catalog]
        assert priorities == sorted(priorities)
        assert catalog[0].code == "PENSION_EE"
