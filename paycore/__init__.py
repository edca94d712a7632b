"""
PayCore - Payroll computation and pay-run orchestration.
"""

__version__ = "1.0.0"
