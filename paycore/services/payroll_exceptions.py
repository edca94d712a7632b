"""
PayCore - Payroll Exceptions

Error taxonomy for payroll computation and pay-run orchestration:

- Configuration errors: no/ambiguous tax law, unresolvable mandatory deduction.
- Data errors: missing pay configuration, negative or invalid amounts.
- State violations: illegal pay-run or wage-advance transitions.
- Invariant violations: non-contiguous bands, aggregate mismatch.

Configuration and data errors raised while computing one employee are
captured on that employee's PayRunItem and never abort the run.
"""

from datetime import date
from typing import Any, Dict, Iterable, Optional, Union
from uuid import UUID

from fastapi import status

from paycore.utils.error_handling import (
    AppException,
    BusinessRuleException,
    ConflictException,
    ErrorCode,
    NotFoundException,
    ValidationException,
)


class PayrollComputationError(AppException):
    """Base for errors that are isolated to one employee's computation."""


# ===========================================
# CONFIGURATION ERRORS
# ===========================================

class PayrollConfigurationError(PayrollComputationError):
    """Payroll reference data cannot produce a result; not retried."""
    
    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONFIGURATION_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
        )


class NoApplicableTaxLawError(PayrollConfigurationError):
    def __init__(self, jurisdiction_code: str, on_date: date):
        super().__init__(
            message=f"No tax law table for jurisdiction '{jurisdiction_code}' covers {on_date.isoformat()}",
            code=ErrorCode.NO_APPLICABLE_TAX_LAW,
            details={"jurisdiction": jurisdiction_code, "date": on_date.isoformat()},
        )


class AmbiguousTaxLawError(PayrollConfigurationError):
    def __init__(self, jurisdiction_code: str, on_date: date, versions: Iterable[str]):
        versions = sorted(versions)
        super().__init__(
            message=(
                f"Overlapping tax law tables for jurisdiction '{jurisdiction_code}' "
                f"on {on_date.isoformat()}: {', '.join(versions)}"
            ),
            code=ErrorCode.AMBIGUOUS_TAX_LAW,
            details={"jurisdiction": jurisdiction_code, "date": on_date.isoformat(), "versions": versions},
        )


class MandatoryDeductionError(PayrollConfigurationError):
    def __init__(self, deduction_code: str, reason: str):
        super().__init__(
            message=f"Mandatory deduction {deduction_code} cannot be resolved: {reason}",
            code=ErrorCode.MANDATORY_DEDUCTION_UNRESOLVED,
            details={"deduction_code": deduction_code},
        )


# ===========================================
# DATA ERRORS
# ===========================================

class PayrollDataError(PayrollComputationError):
    """Input data is missing or invalid; recoverable by correcting and re-processing."""
    
    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.PAY_CONFIGURATION_ERROR,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


# ===========================================
# CALLER ERRORS
# ===========================================

class PayrollValidationError(ValidationException):
    """Invalid input to a payroll mutation."""
    
    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            field=field,
            details=details,
            code=ErrorCode.INVALID_AMOUNT if field and "amount" in field else ErrorCode.VALIDATION_ERROR,
        )


class PayrollNotFoundError(NotFoundException):
    def __init__(self, resource_type: str, resource_id: Optional[Union[str, UUID]] = None):
        super().__init__(resource_type=resource_type, resource_id=resource_id)


class PayRunStateError(ConflictException):
    """An operation was attempted from a state that does not allow it."""
    
    def __init__(self, resource_type: str, current_status: str, operation: str):
        super().__init__(
            message=f"Cannot {operation} {resource_type} in status '{current_status}'",
            resource_type=resource_type,
            code=ErrorCode.INVALID_STATE_TRANSITION,
            details={"current_status": current_status, "operation": operation},
        )
        self.current_status = current_status
        self.operation = operation


class PayrollBusinessRuleError(BusinessRuleException):
    """A payroll policy refused the operation."""


# ===========================================
# INVARIANT VIOLATIONS
# ===========================================

class PayrollInvariantError(AppException):
    """Stored payroll data breaks a structural rule; never auto-corrected."""
    
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.INVARIANT_VIOLATION,
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details,
        )
