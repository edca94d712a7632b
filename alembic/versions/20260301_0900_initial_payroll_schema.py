"""Initial payroll schema

Revision ID: 20260301_0900_initial_payroll_schema
Revises:
Create Date: 2026-03-01 09:00:00.000000

Creates the payroll tables:
- tax_tables, tax_table_bands, tax_table_reliefs: versioned PAYE tables (PITA 2011, NTA 2025)
- payroll_employees, pay_period_inputs: pay configuration and approved period aggregates
- earning_types, employee_earnings: earnings catalog and assignments
- deduction_types, employee_deductions, employee_deduction_postings: deductions and their postings
- wage_advances, wage_advance_repayments: salary advances repaid through payroll
- pay_runs, pay_run_items, payslips: pay run lifecycle and issued payslips
- payroll_audit_logs: payroll audit trail

Enum labels are the Python enum member names, as stored by SQLAlchemy.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '20260301_0900_initial_payroll_schema'
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    'taxlawversion': ('PITA_2011', 'NTA_2025'),
    'reliefkind': ('FIXED', 'PERCENTAGE', 'CAPPED_PERCENTAGE', 'LOW_INCOME_EXEMPTION'),
    'reliefbase': ('GROSS', 'BASIC', 'PENSIONABLE', 'ANNUAL_RENT'),
    'reliefeligibility': (
        'ALWAYS', 'NON_HOMEOWNER', 'PENSION_ENROLLED',
        'HOUSING_FUND_ENROLLED', 'HEALTH_INSURANCE_ENROLLED',
    ),
    'paytype': ('SALARY', 'HOURLY', 'COMMISSION'),
    'payfrequency': ('WEEKLY', 'BI_WEEKLY', 'MONTHLY', 'ANNUALLY'),
    'taxhandling': ('EMPLOYER_WITHHOLDS', 'EMPLOYEE_SELF_ASSESSES'),
    'earningcategory': ('BASE', 'ALLOWANCE', 'OVERTIME', 'BONUS', 'COMMISSION'),
    'earningcalculation': ('FIXED', 'PERCENTAGE', 'HOURLY'),
    'deductioncategory': ('STATUTORY', 'LOAN', 'ADVANCE', 'VOLUNTARY'),
    'deductioncalculation': ('FIXED', 'PERCENTAGE'),
    'deductionbase': ('GROSS', 'BASIC', 'TAXABLE', 'PENSIONABLE'),
    'wageadvancestatus': ('PENDING', 'APPROVED', 'DISBURSED', 'REPAYING', 'REPAID', 'REJECTED'),
    'payrunstatus': ('DRAFT', 'CALCULATING', 'PENDING_REVIEW', 'APPROVED', 'COMPLETED', 'CANCELLED'),
    'payrunitemstatus': ('PENDING', 'CALCULATED', 'ERROR', 'EXCLUDED'),
    'payslipstatus': ('ISSUED', 'CANCELLED'),
}


def enum(name):
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def uuid_pk():
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()'))


def uuid_col(name, *args, nullable=False):
    return sa.Column(name, postgresql.UUID(as_uuid=True), *args, nullable=nullable)


def money(name, nullable=False, comment=None):
    if nullable:
        return sa.Column(name, sa.Numeric(18, 2), nullable=True, comment=comment)
    return sa.Column(name, sa.Numeric(18, 2), server_default='0', nullable=False, comment=comment)


def timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def audit_columns():
    return [uuid_col('created_by_id', nullable=True), uuid_col('updated_by_id', nullable=True)]


def upgrade() -> None:
    """Create payroll tables."""
    connection = op.get_bind()
    
    for name in ENUMS:
        postgresql.ENUM(*ENUMS[name], name=name).create(connection, checkfirst=True)
    
    # ===========================================
    # TAX LAW TABLES
    # ===========================================
    
    op.create_table(
        'tax_tables',
        uuid_pk(),
        sa.Column('jurisdiction_code', sa.String(10), nullable=False, comment='Jurisdiction code e.g., NG'),
        sa.Column('version', enum('taxlawversion'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('effective_from', sa.Date, nullable=False),
        sa.Column('effective_to', sa.Date, nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *timestamps(),
        sa.UniqueConstraint('jurisdiction_code', 'version', name='uq_tax_table_jurisdiction_version'),
    )
    op.create_index('ix_tax_tables_jurisdiction_code', 'tax_tables', ['jurisdiction_code'])
    
    op.create_table(
        'tax_table_bands',
        uuid_pk(),
        uuid_col('tax_table_id', sa.ForeignKey('tax_tables.id', ondelete='CASCADE')),
        sa.Column('ordinal', sa.Integer, nullable=False),
        sa.Column('lower_bound', sa.Numeric(18, 2), nullable=False),
        money('upper_bound', nullable=True, comment='Exclusive; null for the top band'),
        sa.Column('rate', sa.Numeric(7, 4), nullable=False),
        money('cumulative_tax', comment='Tax owed on all income below lower_bound'),
        *timestamps(),
        sa.UniqueConstraint('tax_table_id', 'ordinal', name='uq_tax_band_table_ordinal'),
    )
    op.create_index('ix_tax_table_bands_tax_table_id', 'tax_table_bands', ['tax_table_id'])
    
    op.create_table(
        'tax_table_reliefs',
        uuid_pk(),
        uuid_col('tax_table_id', sa.ForeignKey('tax_tables.id', ondelete='CASCADE')),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('kind', enum('reliefkind'), nullable=False),
        sa.Column('base', enum('reliefbase'), server_default='GROSS', nullable=False),
        sa.Column('rate', sa.Numeric(7, 4), nullable=True),
        money('amount', nullable=True, comment='Fixed amount, or exemption threshold'),
        money('cap', nullable=True),
        money('floor_amount', nullable=True),
        sa.Column('floor_rate', sa.Numeric(7, 4), nullable=True),
        sa.Column('is_automatic', sa.Boolean, server_default='true', nullable=False),
        sa.Column('requires_proof', sa.Boolean, server_default='false', nullable=False),
        sa.Column('eligibility', enum('reliefeligibility'), server_default='ALWAYS', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *timestamps(),
        sa.UniqueConstraint('tax_table_id', 'code', name='uq_tax_relief_table_code'),
    )
    op.create_index('ix_tax_table_reliefs_tax_table_id', 'tax_table_reliefs', ['tax_table_id'])
    
    # ===========================================
    # EMPLOYEES AND PERIOD INPUTS
    # ===========================================
    
    op.create_table(
        'payroll_employees',
        uuid_pk(),
        uuid_col('tenant_id'),
        sa.Column('employee_code', sa.String(50), nullable=False, comment='Internal employee ID e.g., EMP-001'),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('jurisdiction_code', sa.String(10), nullable=True),
        
        # Pay basis
        sa.Column('pay_type', enum('paytype'), server_default='SALARY', nullable=False),
        money('pay_amount', comment='Salary per pay_frequency, or hourly rate'),
        sa.Column('pay_frequency', enum('payfrequency'), server_default='MONTHLY', nullable=False),
        sa.Column('standard_hours_per_week', sa.Numeric(7, 2), server_default='40', nullable=False),
        sa.Column('overtime_multiplier', sa.Numeric(7, 4), server_default='1.5', nullable=False),
        sa.Column('weekend_multiplier', sa.Numeric(7, 4), server_default='1.5', nullable=False),
        sa.Column('holiday_multiplier', sa.Numeric(7, 4), server_default='2.0', nullable=False),
        sa.Column('commission_rate', sa.Numeric(7, 4), nullable=True),
        money('commission_cap', nullable=True),
        
        # Statutory enrolment
        sa.Column('pension_enabled', sa.Boolean, server_default='true', nullable=False),
        sa.Column('pension_employee_rate', sa.Numeric(7, 4), nullable=True),
        sa.Column('pension_employer_rate', sa.Numeric(7, 4), nullable=True),
        sa.Column('nhf_enabled', sa.Boolean, server_default='false', nullable=False),
        sa.Column('nhf_rate', sa.Numeric(7, 4), nullable=True),
        sa.Column('nhis_enabled', sa.Boolean, server_default='false', nullable=False),
        sa.Column('nhis_rate', sa.Numeric(7, 4), nullable=True),
        
        # Tax settings
        sa.Column('tax_handling', enum('taxhandling'), server_default='EMPLOYER_WITHHOLDS', nullable=False),
        sa.Column('is_tax_exempt', sa.Boolean, server_default='false', nullable=False),
        sa.Column('exemption_reason', sa.String(255), nullable=True),
        sa.Column('exemption_expires_at', sa.Date, nullable=True),
        sa.Column('is_homeowner', sa.Boolean, server_default='false', nullable=False),
        money('annual_rent_paid'),
        sa.Column('rent_proof_reference', sa.String(255), nullable=True),
        sa.Column('rent_proof_expiry', sa.Date, nullable=True),
        sa.Column('claimed_reliefs', sa.JSON, server_default='[]', nullable=False),
        sa.Column('relief_proofs', sa.JSON, server_default='[]', nullable=False),
        
        # Identifiers and payment details
        sa.Column('tin', sa.String(20), nullable=True, comment='Tax Identification Number (required for PAYE)'),
        sa.Column('pension_pin', sa.String(30), nullable=True, comment='RSA PIN (Retirement Savings Account Pin)'),
        sa.Column('pfa_name', sa.String(100), nullable=True, comment='Pension Fund Administrator'),
        sa.Column('bank_name', sa.String(100), nullable=True),
        sa.Column('account_number', sa.String(20), nullable=True),
        sa.Column('account_name', sa.String(200), nullable=True),
        
        *audit_columns(),
        *timestamps(),
        sa.UniqueConstraint('tenant_id', 'employee_code', name='uq_payroll_employee_tenant_code'),
    )
    op.create_index('ix_payroll_employees_tenant_id', 'payroll_employees', ['tenant_id'])
    
    op.create_table(
        'pay_period_inputs',
        uuid_pk(),
        uuid_col('tenant_id'),
        uuid_col('employee_id', sa.ForeignKey('payroll_employees.id', ondelete='CASCADE')),
        sa.Column('period_start', sa.Date, nullable=False),
        sa.Column('period_end', sa.Date, nullable=False),
        sa.Column('regular_hours', sa.Numeric(9, 2), server_default='0', nullable=False),
        sa.Column('overtime_hours', sa.Numeric(9, 2), server_default='0', nullable=False),
        sa.Column('weekend_hours', sa.Numeric(9, 2), server_default='0', nullable=False),
        sa.Column('holiday_hours', sa.Numeric(9, 2), server_default='0', nullable=False),
        money('sales_amount'),
        *timestamps(),
        sa.UniqueConstraint('employee_id', 'period_start', 'period_end', name='uq_pay_period_input_employee_period'),
    )
    op.create_index('ix_pay_period_inputs_tenant_id', 'pay_period_inputs', ['tenant_id'])
    op.create_index('ix_pay_period_inputs_employee_id', 'pay_period_inputs', ['employee_id'])
    
    # ===========================================
    # EARNINGS
    # ===========================================
    
    op.create_table(
        'earning_types',
        uuid_pk(),
        uuid_col('tenant_id'),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('category', enum('earningcategory'), nullable=False),
        sa.Column('calculation', enum('earningcalculation'), server_default='FIXED', nullable=False),
        money('default_amount', nullable=True),
        sa.Column('default_rate', sa.Numeric(9, 4), nullable=True),
        sa.Column('is_taxable', sa.Boolean, server_default='true', nullable=False),
        sa.Column('is_pensionable', sa.Boolean, server_default='false', nullable=False),
        sa.Column('is_recurring', sa.Boolean, server_default='true', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *timestamps(),
        sa.UniqueConstraint('tenant_id', 'code', name='uq_earning_type_tenant_code'),
    )
    op.create_index('ix_earning_types_tenant_id', 'earning_types', ['tenant_id'])
    
    op.create_table(
        'employee_earnings',
        uuid_pk(),
        uuid_col('tenant_id'),
        uuid_col('employee_id', sa.ForeignKey('payroll_employees.id', ondelete='CASCADE')),
        uuid_col('earning_type_id', sa.ForeignKey('earning_types.id', ondelete='RESTRICT')),
        money('amount', nullable=True),
        sa.Column('rate', sa.Numeric(9, 4), nullable=True),
        sa.Column('effective_from', sa.Date, nullable=False),
        sa.Column('effective_to', sa.Date, nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *timestamps(),
    )
    op.create_index('ix_employee_earnings_tenant_id', 'employee_earnings', ['tenant_id'])
    op.create_index('ix_employee_earnings_employee_id', 'employee_earnings', ['employee_id'])
    
    # ===========================================
    # DEDUCTIONS
    # ===========================================
    
    op.create_table(
        'deduction_types',
        uuid_pk(),
        uuid_col('tenant_id'),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('category', enum('deductioncategory'), nullable=False),
        sa.Column('calculation', enum('deductioncalculation'), server_default='FIXED', nullable=False),
        sa.Column('calculation_base', enum('deductionbase'), server_default='GROSS', nullable=False),
        money('default_amount', nullable=True),
        sa.Column('default_rate', sa.Numeric(7, 4), nullable=True),
        money('max_amount_per_period', nullable=True),
        money('annual_cap', nullable=True),
        sa.Column('is_pre_tax', sa.Boolean, server_default='false', nullable=False),
        sa.Column('is_mandatory', sa.Boolean, server_default='false', nullable=False),
        sa.Column('is_system', sa.Boolean, server_default='false', nullable=False),
        sa.Column('priority', sa.Integer, server_default='100', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *timestamps(),
        sa.UniqueConstraint('tenant_id', 'code', name='uq_deduction_type_tenant_code'),
    )
    op.create_index('ix_deduction_types_tenant_id', 'deduction_types', ['tenant_id'])
    
    op.create_table(
        'employee_deductions',
        uuid_pk(),
        uuid_col('tenant_id'),
        uuid_col('employee_id', sa.ForeignKey('payroll_employees.id', ondelete='CASCADE')),
        uuid_col('deduction_type_id', sa.ForeignKey('deduction_types.id', ondelete='RESTRICT')),
        money('amount', nullable=True),
        sa.Column('rate', sa.Numeric(7, 4), nullable=True),
        money('total_target', nullable=True),
        money('total_deducted'),
        sa.Column('effective_from', sa.Date, nullable=False),
        sa.Column('effective_to', sa.Date, nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        *audit_columns(),
        *timestamps(),
    )
    op.create_index('ix_employee_deductions_tenant_id', 'employee_deductions', ['tenant_id'])
    op.create_index('ix_employee_deductions_employee_id', 'employee_deductions', ['employee_id'])
    
    # ===========================================
    # WAGE ADVANCES
    # ===========================================
    
    op.create_table(
        'wage_advances',
        uuid_pk(),
        uuid_col('tenant_id'),
        uuid_col('employee_id', sa.ForeignKey('payroll_employees.id', ondelete='CASCADE')),
        sa.Column('principal', sa.Numeric(18, 2), nullable=False, comment='Amount requested'),
        money('approved_amount', nullable=True),
        sa.Column('installment_count', sa.Integer, server_default='1', nullable=False),
        sa.Column('installments_paid', sa.Integer, server_default='0', nullable=False),
        money('amount_repaid'),
        sa.Column('status', enum('wageadvancestatus'), server_default='PENDING', nullable=False),
        sa.Column('reason', sa.Text, nullable=True),
        sa.Column('rejection_reason', sa.Text, nullable=True),
        uuid_col('approved_by_id', nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('disbursed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fully_repaid_at', sa.DateTime(timezone=True), nullable=True),
        *audit_columns(),
        *timestamps(),
    )
    op.create_index('ix_wage_advances_tenant_id', 'wage_advances', ['tenant_id'])
    op.create_index('ix_wage_advances_employee_id', 'wage_advances', ['employee_id'])
    
    # ===========================================
    # PAY RUNS
    # ===========================================
    
    op.create_table(
        'pay_runs',
        uuid_pk(),
        uuid_col('tenant_id'),
        sa.Column('reference', sa.String(50), nullable=False, comment='Human reference e.g., PR-20260131-0001'),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('frequency', enum('payfrequency'), server_default='MONTHLY', nullable=False),
        sa.Column('period_start', sa.Date, nullable=False),
        sa.Column('period_end', sa.Date, nullable=False),
        sa.Column('pay_date', sa.Date, nullable=False, comment='Date employees will be paid; selects the tax law'),
        uuid_col('pay_calendar_id', nullable=True),
        sa.Column('status', enum('payrunstatus'), server_default='DRAFT', nullable=False),
        sa.Column('employee_ids', sa.JSON, nullable=True),
        sa.Column('excluded_employee_ids', sa.JSON, server_default='[]', nullable=False),
        
        # Summary
        sa.Column('employee_count', sa.Integer, server_default='0', nullable=False),
        money('total_gross'),
        money('total_deductions'),
        money('total_tax'),
        money('total_net'),
        money('total_employer_contributions'),
        money('total_employer_cost'),
        
        # Workflow
        uuid_col('calculated_by_id', nullable=True),
        sa.Column('calculated_at', sa.DateTime(timezone=True), nullable=True),
        uuid_col('approved_by_id', nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        uuid_col('completed_by_id', nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        uuid_col('cancelled_by_id', nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('metadata', sa.JSON, server_default='{}', nullable=False),
        
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *audit_columns(),
        *timestamps(),
        sa.UniqueConstraint('tenant_id', 'reference', name='uq_pay_run_tenant_reference'),
    )
    op.create_index('ix_pay_runs_tenant_id', 'pay_runs', ['tenant_id'])
    op.create_index('ix_pay_runs_status', 'pay_runs', ['status'])
    
    op.create_table(
        'pay_run_items',
        uuid_pk(),
        uuid_col('pay_run_id', sa.ForeignKey('pay_runs.id', ondelete='CASCADE')),
        uuid_col('employee_id', sa.ForeignKey('payroll_employees.id', ondelete='RESTRICT')),
        sa.Column('status', enum('payrunitemstatus'), server_default='PENDING', nullable=False),
        money('basic_salary'),
        money('gross_earnings'),
        money('pensionable_earnings'),
        money('pre_tax_deductions'),
        money('taxable_income', comment='Period share of annual taxable income'),
        money('tax_amount'),
        money('post_tax_deductions'),
        money('advance_repayment'),
        money('total_deductions', comment='Pre-tax + tax + post-tax + advance'),
        money('net_pay'),
        money('employer_pension'),
        money('employer_nhf'),
        money('employer_contributions'),
        money('total_employer_cost'),
        sa.Column('tax_law_version', sa.String(20), nullable=True),
        sa.Column('earnings_breakdown', sa.JSON, server_default='[]', nullable=False),
        sa.Column('deductions_breakdown', sa.JSON, server_default='[]', nullable=False),
        sa.Column('tax_breakdown', sa.JSON, server_default='{}', nullable=False),
        sa.Column('advance_breakdown', sa.JSON, server_default='[]', nullable=False),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('exclusion_reason', sa.Text, nullable=True),
        sa.Column('calculated_at', sa.DateTime(timezone=True), nullable=True),
        *timestamps(),
        sa.UniqueConstraint('pay_run_id', 'employee_id', name='uq_pay_run_item_run_employee'),
    )
    op.create_index('ix_pay_run_items_pay_run_id', 'pay_run_items', ['pay_run_id'])
    op.create_index('ix_pay_run_items_employee_id', 'pay_run_items', ['employee_id'])
    
    op.create_table(
        'employee_deduction_postings',
        uuid_pk(),
        uuid_col('employee_deduction_id', sa.ForeignKey('employee_deductions.id', ondelete='CASCADE')),
        uuid_col('pay_run_id', sa.ForeignKey('pay_runs.id', ondelete='RESTRICT')),
        uuid_col('employee_id'),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('pay_date', sa.Date, nullable=False),
        *timestamps(),
        sa.UniqueConstraint('employee_deduction_id', 'pay_run_id', name='uq_deduction_posting_deduction_run'),
    )
    op.create_index(
        'ix_employee_deduction_postings_employee_deduction_id',
        'employee_deduction_postings', ['employee_deduction_id'],
    )
    op.create_index('ix_employee_deduction_postings_employee_id', 'employee_deduction_postings', ['employee_id'])
    
    op.create_table(
        'wage_advance_repayments',
        uuid_pk(),
        uuid_col('wage_advance_id', sa.ForeignKey('wage_advances.id', ondelete='CASCADE')),
        uuid_col('pay_run_id', sa.ForeignKey('pay_runs.id', ondelete='RESTRICT')),
        uuid_col('employee_id'),
        sa.Column('installment_number', sa.Integer, nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('balance_after', sa.Numeric(18, 2), nullable=False),
        sa.Column('period_start', sa.Date, nullable=False),
        sa.Column('period_end', sa.Date, nullable=False),
        *timestamps(),
        sa.UniqueConstraint('wage_advance_id', 'pay_run_id', name='uq_advance_repayment_advance_run'),
    )
    op.create_index('ix_wage_advance_repayments_wage_advance_id', 'wage_advance_repayments', ['wage_advance_id'])
    
    op.create_table(
        'payslips',
        uuid_pk(),
        uuid_col('tenant_id'),
        uuid_col('pay_run_id', sa.ForeignKey('pay_runs.id', ondelete='RESTRICT')),
        uuid_col('pay_run_item_id', sa.ForeignKey('pay_run_items.id', ondelete='RESTRICT')),
        uuid_col('employee_id', sa.ForeignKey('payroll_employees.id', ondelete='RESTRICT')),
        sa.Column('payslip_number', sa.String(80), nullable=False),
        sa.Column('period_start', sa.Date, nullable=False),
        sa.Column('period_end', sa.Date, nullable=False),
        sa.Column('pay_date', sa.Date, nullable=False),
        money('basic_salary'),
        money('gross_pay'),
        money('taxable_income'),
        money('tax_amount'),
        money('pension_employee'),
        money('total_deductions'),
        money('net_pay'),
        money('employer_pension'),
        money('employer_nhf'),
        sa.Column('earnings_breakdown', sa.JSON, server_default='[]', nullable=False),
        sa.Column('deductions_breakdown', sa.JSON, server_default='[]', nullable=False),
        sa.Column('tax_breakdown', sa.JSON, server_default='{}', nullable=False),
        money('ytd_gross'),
        money('ytd_tax'),
        money('ytd_pension'),
        money('ytd_net'),
        
        # Payment details at issue
        sa.Column('bank_name', sa.String(100), nullable=True),
        sa.Column('account_number', sa.String(20), nullable=True),
        sa.Column('account_name', sa.String(200), nullable=True),
        
        sa.Column('status', enum('payslipstatus'), server_default='ISSUED', nullable=False),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        uuid_col('cancelled_by_id', nullable=True),
        sa.Column('cancellation_reason', sa.Text, nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *timestamps(),
        sa.UniqueConstraint('pay_run_id', 'employee_id', name='uq_payslip_run_employee'),
        sa.UniqueConstraint('tenant_id', 'payslip_number', name='uq_payslip_tenant_number'),
    )
    op.create_index('ix_payslips_tenant_id', 'payslips', ['tenant_id'])
    op.create_index('ix_payslips_pay_run_id', 'payslips', ['pay_run_id'])
    op.create_index('ix_payslips_employee_id', 'payslips', ['employee_id'])
    
    # ===========================================
    # AUDIT
    # ===========================================
    
    op.create_table(
        'payroll_audit_logs',
        uuid_pk(),
        uuid_col('tenant_id'),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(64), nullable=False),
        uuid_col('actor_id', nullable=True),
        sa.Column('old_values', sa.JSON, nullable=True),
        sa.Column('new_values', sa.JSON, nullable=True),
        sa.Column('metadata', sa.JSON, nullable=True),
        *timestamps(),
    )
    op.create_index('ix_payroll_audit_logs_tenant_id', 'payroll_audit_logs', ['tenant_id'])
    op.create_index('ix_payroll_audit_logs_action', 'payroll_audit_logs', ['action'])
    op.create_index('ix_payroll_audit_logs_entity_id', 'payroll_audit_logs', ['entity_id'])


def downgrade() -> None:
    """Drop payroll tables."""
    op.drop_table('payroll_audit_logs')
    op.drop_table('payslips')
    op.drop_table('wage_advance_repayments')
    op.drop_table('employee_deduction_postings')
    op.drop_table('pay_run_items')
    op.drop_table('pay_runs')
    op.drop_table('wage_advances')
    op.drop_table('employee_deductions')
    op.drop_table('deduction_types')
    op.drop_table('employee_earnings')
    op.drop_table('earning_types')
    op.drop_table('pay_period_inputs')
    op.drop_table('payroll_employees')
    op.drop_table('tax_table_reliefs')
    op.drop_table('tax_table_bands')
    op.drop_table('tax_tables')
    
    # Drop enums
    for name in reversed(list(ENUMS)):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
