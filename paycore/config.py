"""
PayCore - Configuration Settings

This module handles all application configuration using Pydantic Settings.
Environment variables are loaded from .env file.
"""

from functools import lru_cache
from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )
    
    # ===========================================
    # APPLICATION CONFIGURATION
    # ===========================================
    app_name: str = "PayCore"
    app_env: str = "development"
    debug: bool = False
    api_version: str = "v1"
    log_level: str = "INFO"
    
    # ===========================================
    # DATABASE CONFIGURATION
    # ===========================================
    database_url_async: str = "sqlite+aiosqlite:///./paycore.db"
    database_echo: bool = False
    
    # ===========================================
    # PAYROLL PROCESSING
    # ===========================================
    payroll_default_jurisdiction: str = "NG"
    payroll_max_concurrency: int = 8
    pay_run_reference_prefix: str = "PR"
    
    # Approval policy for runs that still carry per-employee errors
    payroll_allow_approval_with_errors: bool = False
    payroll_require_calculated_items: bool = True
    
    # Employer-side contribution defaults (percent)
    pension_employer_rate_default: Decimal = Decimal("10")
    nhf_employer_rate_default: Decimal = Decimal("2.5")
    
    # ===========================================
    # WAGE ADVANCES
    # ===========================================
    wage_advance_max_salary_percent: Decimal = Decimal("50")
    wage_advance_max_installments: int = 12
    
    # ===========================================
    # REMITTANCE REPORTS
    # ===========================================
    # Day of the month after the period on which remittance falls due
    paye_remittance_day: int = 10
    pension_remittance_day: int = 7
    
    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"
    
    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
