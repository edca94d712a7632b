"""
PayCore - Tax Law Table Models

Versioned progressive tax tables with their bands and reliefs.
Exactly one table is effective per jurisdiction on any date.
"""

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean, Date, ForeignKey, Integer, Numeric, String, Text, Uuid,
    Enum as SQLEnum, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paycore.models.base import BaseModel


# ===========================================
# ENUMS
# ===========================================

class TaxLawVersion(str, Enum):
    """Mutually exclusive tax-law generations."""
    PITA_2011 = "pita_2011"     # Personal Income Tax Act 2011 (as amended)
    NTA_2025 = "nta_2025"       # Nigeria Tax Act 2025


class ReliefKind(str, Enum):
    """Closed set of relief calculation kinds."""
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    CAPPED_PERCENTAGE = "capped_percentage"
    LOW_INCOME_EXEMPTION = "low_income_exemption"


class ReliefBase(str, Enum):
    """Income figure a percentage relief is computed against (annual)."""
    GROSS = "gross"
    BASIC = "basic"
    PENSIONABLE = "pensionable"
    ANNUAL_RENT = "annual_rent"


class ReliefEligibility(str, Enum):
    """Eligibility predicate gating whether a relief is evaluated."""
    ALWAYS = "always"
    NON_HOMEOWNER = "non_homeowner"
    PENSION_ENROLLED = "pension_enrolled"
    HOUSING_FUND_ENROLLED = "housing_fund_enrolled"
    HEALTH_INSURANCE_ENROLLED = "health_insurance_enrolled"


# ===========================================
# TAX TABLE
# ===========================================

class TaxTable(BaseModel):
    """
    Progressive tax table for one jurisdiction and effective date range.
    
    The range is half-open: effective_from inclusive, effective_to exclusive.
    A null effective_to means the table has no scheduled end.
    """
    
    __tablename__ = "tax_tables"
    
    jurisdiction_code: Mapped[str] = mapped_column(
        String(10), nullable=False, index=True,
        comment="Jurisdiction code e.g., NG",
    )
    version: Mapped[TaxLawVersion] = mapped_column(
        SQLEnum(TaxLawVersion), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    bands: Mapped[List["TaxTableBand"]] = relationship(
        "TaxTableBand",
        back_populates="tax_table",
        cascade="all, delete-orphan",
        order_by="TaxTableBand.ordinal",
        lazy="selectin",
    )
    reliefs: Mapped[List["TaxTableRelief"]] = relationship(
        "TaxTableRelief",
        back_populates="tax_table",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    
    __table_args__ = (
        UniqueConstraint('jurisdiction_code', 'version', name='uq_tax_table_jurisdiction_version'),
    )
    
    def __repr__(self) -> str:
        return f"<TaxTable(jurisdiction={self.jurisdiction_code}, version={self.version})>"


class TaxTableBand(BaseModel):
    """One slice of a progressive table."""
    
    __tablename__ = "tax_table_bands"
    
    tax_table_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tax_tables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    lower_bound: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    upper_bound: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(18, 2), nullable=True,
        comment="Exclusive; null for the top band",
    )
    rate: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)
    cumulative_tax: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0.00"),
        comment="Tax owed on all income below lower_bound",
    )
    
    tax_table: Mapped["TaxTable"] = relationship("TaxTable", back_populates="bands")
    
    __table_args__ = (
        UniqueConstraint('tax_table_id', 'ordinal', name='uq_tax_band_table_ordinal'),
    )


class TaxTableRelief(BaseModel):
    """A relief attached to a tax table."""
    
    __tablename__ = "tax_table_reliefs"
    
    tax_table_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tax_tables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    kind: Mapped[ReliefKind] = mapped_column(SQLEnum(ReliefKind), nullable=False)
    base: Mapped[ReliefBase] = mapped_column(
        SQLEnum(ReliefBase), default=ReliefBase.GROSS, nullable=False,
    )
    
    rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 4), nullable=True)
    amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(18, 2), nullable=True,
        comment="Fixed amount, or exemption threshold",
    )
    cap: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    floor_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    floor_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 4), nullable=True)
    
    is_automatic: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    requires_proof: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    eligibility: Mapped[ReliefEligibility] = mapped_column(
        SQLEnum(ReliefEligibility), default=ReliefEligibility.ALWAYS, nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    tax_table: Mapped["TaxTable"] = relationship("TaxTable", back_populates="reliefs")
    
    __table_args__ = (
        UniqueConstraint('tax_table_id', 'code', name='uq_tax_relief_table_code'),
    )
