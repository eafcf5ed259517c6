"""
Alembic migration: initial fund ledger schema
Investors, financial years, profit distributions, transactions, notifications, system settings
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create all fund ledger tables"""

    op.create_table(
        'investors',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('full_name', sa.String(100), nullable=False),
        sa.Column('national_id', sa.String(20), nullable=False),
        sa.Column('contributed_capital', sa.Float(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(), nullable=False, server_default='USD'),
        sa.Column('share_percentage', sa.Float(), nullable=False, server_default='0'),
        sa.Column('join_date', sa.Date(), nullable=False),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_investors_id', 'investors', ['id'])
    op.create_index('ix_investors_full_name', 'investors', ['full_name'])
    op.create_index('ix_investors_national_id', 'investors', ['national_id'], unique=True)
    op.create_index('ix_investors_join_date', 'investors', ['join_date'])

    op.create_table(
        'financial_years',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('period_name', sa.String(100), nullable=True, unique=True),
        sa.Column('period_type', sa.String(), nullable=False, server_default='custom'),
        sa.Column('total_profit', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False, server_default='USD'),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('total_days', sa.Integer(), nullable=False),
        sa.Column('daily_profit_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(), nullable=False, server_default='draft'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('rollover_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('rollover_percentage', sa.Float(), nullable=False, server_default='100'),
        sa.Column('auto_rollover', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('auto_rollover_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('auto_rollover_status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('created_by', sa.String(), nullable=False),
        sa.Column('approved_by', sa.String(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('distributed_by', sa.String(), nullable=True),
        sa.Column('distributed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_financial_years_id', 'financial_years', ['id'])
    op.create_index('idx_financial_year_status_year', 'financial_years', ['status', 'year'])

    op.create_table(
        'profit_distributions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('financial_year_id', sa.Integer(), sa.ForeignKey('financial_years.id'), nullable=False),
        sa.Column('investor_id', sa.Integer(), sa.ForeignKey('investors.id'), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('investment_amount', sa.Float(), nullable=False),
        sa.Column('total_days', sa.Integer(), nullable=False),
        sa.Column('daily_profit_rate', sa.Float(), nullable=False),
        sa.Column('calculated_profit', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False, server_default='USD'),
        sa.Column('status', sa.String(), nullable=False, server_default='calculated'),
        sa.Column('is_rolled_over', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('rollover_amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('rollover_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('distribution_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('approved_by', sa.String(), nullable=True),
        sa.Column('distributed_by', sa.String(), nullable=True),
        sa.Column('distributed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        # One distribution per investor per financial year, enforced by the database
        sa.UniqueConstraint('financial_year_id', 'investor_id', name='uq_distribution_year_investor'),
    )
    op.create_index('ix_profit_distributions_id', 'profit_distributions', ['id'])
    op.create_index('ix_profit_distributions_financial_year_id', 'profit_distributions', ['financial_year_id'])
    op.create_index('ix_profit_distributions_investor_id', 'profit_distributions', ['investor_id'])
    op.create_index('idx_distribution_status_year', 'profit_distributions', ['status', 'financial_year_id'])

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('investor_id', sa.Integer(), sa.ForeignKey('investors.id'), nullable=False),
        sa.Column('transaction_type', sa.String(), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False, server_default='USD'),
        sa.Column('transaction_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('profit_year', sa.Integer(), nullable=True),
        sa.Column('financial_year_id', sa.Integer(), sa.ForeignKey('financial_years.id'), nullable=True),
        sa.Column('is_contribution', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reference', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('receipt_number', sa.String(), nullable=True),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_transactions_id', 'transactions', ['id'])
    op.create_index('ix_transactions_investor_id', 'transactions', ['investor_id'])
    op.create_index('ix_transactions_receipt_number', 'transactions', ['receipt_number'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('notification_type', sa.String(), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.String(1000), nullable=False),
        sa.Column('recipient_actor_id', sa.String(), nullable=True),
        sa.Column('recipient_investor_id', sa.Integer(), sa.ForeignKey('investors.id'), nullable=True),
        sa.Column('financial_year_id', sa.Integer(), nullable=True),
        sa.Column('distribution_id', sa.Integer(), nullable=True),
        sa.Column('transaction_id', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Float(), nullable=True),
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='unread'),
        sa.Column('priority', sa.String(), nullable=False, server_default='medium'),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_notifications_id', 'notifications', ['id'])
    op.create_index('ix_notifications_recipient_actor_id', 'notifications', ['recipient_actor_id'])
    op.create_index('ix_notifications_recipient_investor_id', 'notifications', ['recipient_investor_id'])

    op.create_table(
        'system_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('default_currency', sa.String(), nullable=False, server_default='USD'),
        sa.Column('display_currency', sa.String(), nullable=False, server_default='USD'),
        sa.Column('auto_convert_currency', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('usd_to_iqd', sa.Float(), nullable=False),
        sa.Column('iqd_to_usd', sa.Float(), nullable=False),
        sa.Column('last_rate_update', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_system_settings_id', 'system_settings', ['id'])


def downgrade():
    """Drop all fund ledger tables"""
    op.drop_table('system_settings')
    op.drop_table('notifications')
    op.drop_table('transactions')
    op.drop_table('profit_distributions')
    op.drop_table('financial_years')
    op.drop_table('investors')
