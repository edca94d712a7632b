"""
PayCore - Database Models

All SQLAlchemy models are imported here so they register on Base.metadata.
"""

from paycore.models.base import BaseModel, TimestampMixin, AuditMixin, SoftDeleteMixin
from paycore.models.tax_law import (
    TaxLawVersion,
    ReliefKind,
    ReliefBase,
    ReliefEligibility,
    TaxTable,
    TaxTableBand,
    TaxTableRelief,
)
from paycore.models.payroll import (
    PayType,
    PayFrequency,
    TaxHandling,
    EarningCategory,
    EarningCalculation,
    DeductionCategory,
    DeductionCalculation,
    DeductionBase,
    WageAdvanceStatus,
    Employee,
    PayPeriodInput,
    EarningType,
    EmployeeEarning,
    DeductionType,
    EmployeeDeduction,
    EmployeeDeductionPosting,
    WageAdvance,
    WageAdvanceRepayment,
)
from paycore.models.pay_run import (
    PayRunStatus,
    PayRunItemStatus,
    PayslipStatus,
    PayRun,
    PayRunItem,
    Payslip,
)
from paycore.models.audit import PayrollAuditAction, PayrollAuditLog

__all__ = [
    "BaseModel", "TimestampMixin", "AuditMixin", "SoftDeleteMixin",
    "TaxLawVersion", "ReliefKind", "ReliefBase", "ReliefEligibility",
    "TaxTable", "TaxTableBand", "TaxTableRelief",
    "PayType", "PayFrequency", "TaxHandling",
    "EarningCategory", "EarningCalculation",
    "DeductionCategory", "DeductionCalculation", "DeductionBase",
    "WageAdvanceStatus",
    "Employee", "PayPeriodInput", "EarningType", "EmployeeEarning",
    "DeductionType", "EmployeeDeduction", "EmployeeDeductionPosting",
    "WageAdvance", "WageAdvanceRepayment",
    "PayRunStatus", "PayRunItemStatus", "PayslipStatus",
    "PayRun", "PayRunItem", "Payslip",
    "PayrollAuditAction", "PayrollAuditLog",
]
