"""
PayCore - Payroll Report Service

Read-only reports over issued payslips and completed pay runs:

- payroll summary per payslip
- PAYE remittance schedule
- pension remittance schedule (employee and employer contributions)
- bank payment schedule for one completed pay run
- payroll journal for completed pay runs
- pay run statistics by month for a year

Cancelled payslips are left out of the payslip reports. Periods are matched
on pay date, which is also the date that selects the tax law.
"""

import calendar
import logging
import uuid
from collections import OrderedDict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from paycore.config import Settings, get_settings
from paycore.models.pay_run import PayRun, PayRunStatus, Payslip, PayslipStatus
from paycore.models.payroll import Employee
from paycore.services.payroll_exceptions import (
    PayRunStateError,
    PayrollNotFoundError,
    PayrollValidationError,
)
from paycore.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)


def remittance_due_date(period_end: date, day: int) -> date:
    """The given day of the month after period_end, clamped to month end."""
    if period_end.month == 12:
        year, month = period_end.year + 1, 1
    else:
        year, month = period_end.year, period_end.month + 1
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _sum(values) -> Decimal:
    return sum(values, ZERO)


class PayrollReportService:
    """Statutory remittance, payment and management reports for a tenant."""
    
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
    
    # ===========================================
    # QUERIES
    # ===========================================
    
    async def _get_pay_run(self, tenant_id: uuid.UUID, pay_run_id: uuid.UUID) -> PayRun:
        result = await self.db.execute(
            select(PayRun).where(
                and_(
                    PayRun.id == pay_run_id,
                    PayRun.tenant_id == tenant_id,
                    PayRun.deleted_at.is_(None),
                )
            )
        )
        pay_run = result.scalar_one_or_none()
        if pay_run is None:
            raise PayrollNotFoundError("Pay run", pay_run_id)
        return pay_run
    
    async def _payslip_rows(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: Optional[uuid.UUID] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Tuple[Payslip, Employee]]:
        """Issued payslips with their employees, by pay date then employee code."""
        if start_date and end_date and start_date > end_date:
            raise PayrollValidationError("start_date cannot be after end_date", field="start_date")
        
        query = (
            select(Payslip, Employee)
            .join(Employee, Employee.id == Payslip.employee_id)
            .where(
                Payslip.tenant_id == tenant_id,
                Payslip.status == PayslipStatus.ISSUED,
                Payslip.deleted_at.is_(None),
            )
        )
        if pay_run_id is not None:
            query = query.where(Payslip.pay_run_id == pay_run_id)
        if start_date is not None:
            query = query.where(Payslip.pay_date >= start_date)
        if end_date is not None:
            query = query.where(Payslip.pay_date <= end_date)
        
        result = await self.db.execute(query.order_by(Payslip.pay_date, Employee.employee_code))
        return [(row[0], row[1]) for row in result.all()]
    
    async def _remittance_period_end(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: Optional[uuid.UUID],
        end_date: Optional[date],
        rows: List[Tuple[Payslip, Employee]],
    ) -> Optional[date]:
        if pay_run_id is not None:
            return (await self._get_pay_run(tenant_id, pay_run_id)).period_end
        if end_date is not None:
            return end_date
        if rows:
            return max(payslip.pay_date for payslip, _ in rows)
        return None
    
    # ===========================================
    # PAYROLL SUMMARY
    # ===========================================
    
    async def payroll_summary(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: Optional[uuid.UUID] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Totals and one line per issued payslip."""
        if pay_run_id is not None:
            await self._get_pay_run(tenant_id, pay_run_id)
        rows = await self._payslip_rows(tenant_id, pay_run_id, start_date, end_date)
        
        payslips = [payslip for payslip, _ in rows]
        summary = {
            "employee_count": len({payslip.employee_id for payslip in payslips}),
            "payslip_count": len(payslips),
            "total_gross": _sum(p.gross_pay for p in payslips),
            "total_deductions": _sum(p.total_deductions for p in payslips),
            "total_tax": _sum(p.tax_amount for p in payslips),
            "total_net": _sum(p.net_pay for p in payslips),
            "total_pension_employee": _sum(p.pension_employee for p in payslips),
            "total_pension_employer": _sum(p.employer_pension for p in payslips),
            "total_employer_nhf": _sum(p.employer_nhf for p in payslips),
        }
        breakdown = [
            {
                "employee_id": employee.id,
                "employee_code": employee.employee_code,
                "employee_name": employee.full_name,
                "payslip_number": payslip.payslip_number,
                "pay_date": payslip.pay_date,
                "basic_salary": payslip.basic_salary,
                "gross_pay": payslip.gross_pay,
                "total_deductions": payslip.total_deductions,
                "tax_amount": payslip.tax_amount,
                "pension_employee": payslip.pension_employee,
                "pension_employer": payslip.employer_pension,
                "net_pay": payslip.net_pay,
            }
            for payslip, employee in rows
        ]
        return {
            "start_date": start_date,
            "end_date": end_date,
            "pay_run_id": pay_run_id,
            "summary": summary,
            "breakdown": breakdown,
            "generated_at": _now(),
        }
    
    # ===========================================
    # REMITTANCES
    # ===========================================
    
    async def tax_remittance(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: Optional[uuid.UUID] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        PAYE withheld per payslip, for remittance to the tax authority.
        
        Only payslips with tax withheld are listed. Employees without a TIN
        are reported separately since the remittance cannot be filed for them.
        """
        rows = [
            (payslip, employee)
            for payslip, employee in await self._payslip_rows(tenant_id, pay_run_id, start_date, end_date)
            if payslip.tax_amount > 0
        ]
        period_end = await self._remittance_period_end(tenant_id, pay_run_id, end_date, rows)
        
        breakdown = []
        for payslip, employee in rows:
            effective_rate = ZERO
            if payslip.gross_pay > 0:
                effective_rate = round_money(payslip.tax_amount / payslip.gross_pay * Decimal("100"))
            breakdown.append({
                "employee_id": employee.id,
                "employee_code": employee.employee_code,
                "employee_name": employee.full_name,
                "tin": employee.tin,
                "pay_date": payslip.pay_date,
                "tax_law_version": payslip.tax_breakdown.get("tax_law_version") if payslip.tax_breakdown else None,
                "gross_pay": payslip.gross_pay,
                "taxable_income": payslip.taxable_income,
                "tax_amount": payslip.tax_amount,
                "effective_rate": effective_rate,
            })
        
        missing_tin = sorted({employee.employee_code for _, employee in rows if not employee.tin})
        if missing_tin:
            logger.warning(f"PAYE remittance for tenant {tenant_id} has employees without a TIN: {missing_tin}")
        
        return {
            "start_date": start_date,
            "end_date": end_date,
            "pay_run_id": pay_run_id,
            "summary": {
                "employee_count": len({employee.id for _, employee in rows}),
                "total_taxable_income": _sum(line["taxable_income"] for line in breakdown),
                "total_tax": _sum(line["tax_amount"] for line in breakdown),
            },
            "due_date": remittance_due_date(period_end, self.settings.paye_remittance_day) if period_end else None,
            "employees_without_tin": missing_tin,
            "breakdown": breakdown,
            "generated_at": _now(),
        }
    
    async def pension_remittance(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: Optional[uuid.UUID] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Employee and employer pension contributions, with totals per PFA."""
        rows = [
            (payslip, employee)
            for payslip, employee in await self._payslip_rows(tenant_id, pay_run_id, start_date, end_date)
            if payslip.pension_employee > 0 or payslip.employer_pension > 0
        ]
        period_end = await self._remittance_period_end(tenant_id, pay_run_id, end_date, rows)
        
        breakdown = []
        by_pfa: Dict[str, Dict[str, Any]] = {}
        for payslip, employee in rows:
            total = payslip.pension_employee + payslip.employer_pension
            breakdown.append({
                "employee_id": employee.id,
                "employee_code": employee.employee_code,
                "employee_name": employee.full_name,
                "pension_pin": employee.pension_pin,
                "pfa_name": employee.pfa_name,
                "pay_date": payslip.pay_date,
                "gross_pay": payslip.gross_pay,
                "employee_contribution": payslip.pension_employee,
                "employer_contribution": payslip.employer_pension,
                "total_contribution": total,
            })
            pfa = employee.pfa_name or "Unassigned"
            group = by_pfa.setdefault(pfa, {"pfa_name": pfa, "employee_count": 0, "total_contribution": ZERO})
            group["employee_count"] += 1
            group["total_contribution"] += total
        
        total_employee = _sum(line["employee_contribution"] for line in breakdown)
        total_employer = _sum(line["employer_contribution"] for line in breakdown)
        return {
            "start_date": start_date,
            "end_date": end_date,
            "pay_run_id": pay_run_id,
            "summary": {
                "employee_count": len({employee.id for _, employee in rows}),
                "total_employee_contribution": total_employee,
                "total_employer_contribution": total_employer,
                "total_contribution": total_employee + total_employer,
            },
            "due_date": remittance_due_date(period_end, self.settings.pension_remittance_day) if period_end else None,
            "by_pfa": [by_pfa[name] for name in sorted(by_pfa)],
            "breakdown": breakdown,
            "generated_at": _now(),
        }
    
    # ===========================================
    # BANK SCHEDULE
    # ===========================================
    
    async def bank_schedule(self, tenant_id: uuid.UUID, pay_run_id: uuid.UUID) -> Dict[str, Any]:
        """
        Net pay transfers for a completed pay run, grouped by bank.
        
        Payslips without an account number are listed under
        ``missing_bank_details`` and left out of the transfer totals.
        """
        pay_run = await self._get_pay_run(tenant_id, pay_run_id)
        if pay_run.status != PayRunStatus.COMPLETED:
            raise PayRunStateError("pay run", pay_run.status.value, "generate a bank schedule for")
        
        items = []
        missing = []
        by_bank: Dict[str, Dict[str, Any]] = {}
        for payslip, employee in await self._payslip_rows(tenant_id, pay_run_id):
            if payslip.net_pay <= 0:
                continue
            if not payslip.account_number:
                missing.append({
                    "employee_id": employee.id,
                    "employee_code": employee.employee_code,
                    "employee_name": employee.full_name,
                    "net_pay": payslip.net_pay,
                })
                continue
            bank = payslip.bank_name or "N/A"
            items.append({
                "employee_id": employee.id,
                "employee_code": employee.employee_code,
                "employee_name": employee.full_name,
                "bank_name": bank,
                "account_number": payslip.account_number,
                "account_name": payslip.account_name or employee.full_name,
                "amount": payslip.net_pay,
                "narration": f"Salary - {pay_run.name}",
            })
            group = by_bank.setdefault(bank, {"bank_name": bank, "count": 0, "total": ZERO})
            group["count"] += 1
            group["total"] += payslip.net_pay
        
        if missing:
            logger.warning(f"Bank schedule for {pay_run.reference}: {len(missing)} employees have no account number")
        
        return {
            "pay_run_id": pay_run.id,
            "pay_run_reference": pay_run.reference,
            "pay_date": pay_run.pay_date,
            "total_employees": len(items),
            "total_amount": _sum(item["amount"] for item in items),
            "by_bank": [by_bank[name] for name in sorted(by_bank)],
            "items": items,
            "missing_bank_details": missing,
            "generated_at": _now(),
        }
    
    # ===========================================
    # JOURNAL
    # ===========================================
    
    async def payroll_journal(
        self,
        tenant_id: uuid.UUID,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Journal lines for completed pay runs, one balanced set per run.
        
        Debits are gross pay and employer contributions. Credits are PAYE,
        pension (both shares), employer NHF, other deductions and net pay.
        Amounts come from every payslip issued at completion, cancelled or not,
        so the journal matches the run as it was completed.
        """
        if start_date and end_date and start_date > end_date:
            raise PayrollValidationError("start_date cannot be after end_date", field="start_date")
        
        query = select(PayRun).where(
            PayRun.tenant_id == tenant_id,
            PayRun.status == PayRunStatus.COMPLETED,
            PayRun.deleted_at.is_(None),
        )
        if start_date is not None:
            query = query.where(PayRun.pay_date >= start_date)
        if end_date is not None:
            query = query.where(PayRun.pay_date <= end_date)
        pay_runs = list((await self.db.execute(query.order_by(PayRun.pay_date, PayRun.reference))).scalars().all())
        
        entries = []
        for pay_run in pay_runs:
            result = await self.db.execute(
                select(Payslip).where(Payslip.pay_run_id == pay_run.id, Payslip.deleted_at.is_(None))
            )
            payslips = list(result.scalars().all())
            gross = _sum(p.gross_pay for p in payslips)
            tax = _sum(p.tax_amount for p in payslips)
            pension_employee = _sum(p.pension_employee for p in payslips)
            pension_employer = _sum(p.employer_pension for p in payslips)
            nhf_employer = _sum(p.employer_nhf for p in payslips)
            other_deductions = _sum(p.total_deductions for p in payslips) - tax - pension_employee
            net = _sum(p.net_pay for p in payslips)
            
            lines = (
                ("Salaries and Wages Expense", f"Salaries and wages - {pay_run.name}", gross, ZERO),
                ("Employer Contributions Expense", "Employer pension and NHF", pension_employer + nhf_employer, ZERO),
                ("PAYE Payable", "PAYE withheld", ZERO, tax),
                ("Pension Payable", "Pension contributions, employee and employer", ZERO, pension_employee + pension_employer),
                ("NHF Payable", "Employer NHF contribution", ZERO, nhf_employer),
                ("Other Deductions Payable", "Deductions and advance repayments withheld", ZERO, other_deductions),
                ("Net Salaries Payable", "Net pay due to employees", ZERO, net),
            )
            for account, description, debit, credit in lines:
                if debit == 0 and credit == 0:
                    continue
                entries.append({
                    "entry_date": pay_run.pay_date,
                    "reference": pay_run.reference,
                    "account": account,
                    "description": description,
                    "debit": debit,
                    "credit": credit,
                })
        
        total_debits = _sum(entry["debit"] for entry in entries)
        total_credits = _sum(entry["credit"] for entry in entries)
        if total_debits != total_credits:
            logger.error(f"Payroll journal for tenant {tenant_id} does not balance: {total_debits} != {total_credits}")
        return {
            "start_date": start_date,
            "end_date": end_date,
            "pay_run_count": len(pay_runs),
            "entries": entries,
            "total_debits": total_debits,
            "total_credits": total_credits,
            "balanced": total_debits == total_credits,
            "generated_at": _now(),
        }
    
    # ===========================================
    # STATISTICS
    # ===========================================
    
    async def pay_run_statistics(self, tenant_id: uuid.UUID, year: Optional[int] = None) -> Dict[str, Any]:
        """Completed pay run totals for a year, by pay date month."""
        year = year or date.today().year
        result = await self.db.execute(
            select(PayRun)
            .where(
                PayRun.tenant_id == tenant_id,
                PayRun.status == PayRunStatus.COMPLETED,
                PayRun.deleted_at.is_(None),
                PayRun.pay_date >= date(year, 1, 1),
                PayRun.pay_date <= date(year, 12, 31),
            )
            .order_by(PayRun.pay_date)
        )
        pay_runs = list(result.scalars().all())
        
        months: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for pay_run in pay_runs:
            key = f"{pay_run.pay_date:%Y-%m}"
            month = months.setdefault(key, {
                "month": key,
                "pay_runs": 0,
                "employee_count": 0,
                "total_gross": ZERO,
                "total_tax": ZERO,
                "total_net": ZERO,
                "total_employer_cost": ZERO,
            })
            month["pay_runs"] += 1
            month["employee_count"] += pay_run.employee_count
            month["total_gross"] += pay_run.total_gross
            month["total_tax"] += pay_run.total_tax
            month["total_net"] += pay_run.total_net
            month["total_employer_cost"] += pay_run.total_employer_cost
        
        return {
            "year": year,
            "total_pay_runs": len(pay_runs),
            "total_gross": _sum(r.total_gross for r in pay_runs),
            "total_tax": _sum(r.total_tax for r in pay_runs),
            "total_net": _sum(r.total_net for r in pay_runs),
            "total_employer_cost": _sum(r.total_employer_cost for r in pay_runs),
            "monthly_breakdown": list(months.values()),
            "generated_at": _now(),
        }
