"""Create loyalty ledger tables.

Revision ID: e1f2a3b4c5d6
Revises:
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'e1f2a3b4c5d6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create brands, ledger, projection, referral, tier and idempotency tables."""
    op.create_table(
        'brands',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('domain', sa.String(255), nullable=True),
        sa.Column('referral_salt', sa.String(128), nullable=True),
        sa.Column('min_redemption_points', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('tier_grace_days', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_brands_domain', 'brands', ['domain'], unique=True)

    op.create_table(
        'ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('brand_id', sa.String(64), nullable=False),
        sa.Column('member_key', sa.String(255), nullable=False),
        sa.Column('entry_id', sa.Integer(), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(30), nullable=False),
        sa.Column('reference_id', sa.String(100), nullable=True),
        sa.Column('idempotency_key', sa.String(255), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['brand_id'], ['brands.id']),
        sa.UniqueConstraint('brand_id', 'member_key', 'entry_id', name='uq_ledger_member_entry'),
        sa.UniqueConstraint('brand_id', 'member_key', 'idempotency_key', name='uq_ledger_member_idem'),
    )
    op.create_index('ix_ledger_brand_reason', 'ledger_entries', ['brand_id', 'reason'])

    op.create_table(
        'member_balances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('brand_id', sa.String(64), nullable=False),
        sa.Column('member_key', sa.String(255), nullable=False),
        sa.Column('balance', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('lifetime_earned', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('lifetime_redeemed', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('last_entry_id', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('last_entry_at', sa.DateTime(), nullable=True),
        sa.Column('tier_name', sa.String(50), nullable=True),
        sa.Column('tier_achieved_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['brand_id'], ['brands.id']),
        sa.UniqueConstraint('brand_id', 'member_key', name='uq_balance_member'),
    )

    op.create_table(
        'reward_catalog',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('brand_id', sa.String(64), nullable=False),
        sa.Column('reward_id', sa.String(100), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('cost_points', sa.Integer(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['brand_id'], ['brands.id']),
        sa.UniqueConstraint('brand_id', 'reward_id', name='uq_reward_brand'),
    )

    op.create_table(
        'earn_rules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('brand_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('rule_type', sa.String(30), nullable=False, server_default='purchase'),
        sa.Column('points_per_dollar', sa.Numeric(10, 2), nullable=True),
        sa.Column('fixed_points', sa.Integer(), nullable=True),
        sa.Column('min_order_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('max_points_per_order', sa.Integer(), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['brand_id'], ['brands.id']),
    )
    op.create_index('ix_earn_rules_brand_type', 'earn_rules', ['brand_id', 'rule_type'])

    op.create_table(
        'referral_programs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('brand_id', sa.String(64), nullable=False),
        sa.Column('referrer_points', sa.Integer(), nullable=False, server_default=sa.text('100')),
        sa.Column('referee_points', sa.Integer(), nullable=False, server_default=sa.text('50')),
        sa.Column('monthly_referral_limit', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['brand_id'], ['brands.id']),
        sa.UniqueConstraint('brand_id'),
    )

    op.create_table(
        'referral_codes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('brand_id', sa.String(64), nullable=False),
        sa.Column('owner_member_key', sa.String(255), nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['brand_id'], ['brands.id']),
        sa.UniqueConstraint('brand_id', 'owner_member_key', name='uq_referral_code_owner'),
        sa.UniqueConstraint('brand_id', 'code', name='uq_referral_code_value'),
    )

    op.create_table(
        'referral_applications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('brand_id', sa.String(64), nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('referrer_member_key', sa.String(255), nullable=False),
        sa.Column('referred_member_key', sa.String(255), nullable=False),
        sa.Column('referrer_points', sa.Integer(), nullable=False),
        sa.Column('referee_points', sa.Integer(), nullable=False),
        sa.Column('idempotency_key', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='applied'),
        sa.Column('applied_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['brand_id'], ['brands.id']),
        sa.UniqueConstraint('brand_id', 'referred_member_key', name='uq_referral_referred'),
    )
    op.create_index(
        'ix_referral_referrer_applied',
        'referral_applications',
        ['brand_id', 'referrer_member_key', 'applied_at'],
    )

    op.create_table(
        'tier_thresholds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('brand_id', sa.String(64), nullable=False),
        sa.Column('tier_name', sa.String(50), nullable=False),
        sa.Column('min_lifetime_points', sa.Integer(), nullable=False),
        sa.Column('points_multiplier', sa.Numeric(4, 2), nullable=False, server_default=sa.text('1.00')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['brand_id'], ['brands.id']),
        sa.UniqueConstraint('brand_id', 'tier_name', name='uq_tier_threshold_name'),
    )

    op.create_table(
        'tier_changes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('brand_id', sa.String(64), nullable=False),
        sa.Column('member_key', sa.String(255), nullable=False),
        sa.Column('from_tier', sa.String(50), nullable=True),
        sa.Column('to_tier', sa.String(50), nullable=False),
        sa.Column('change_type', sa.String(20), nullable=False),
        sa.Column('lifetime_earned', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['brand_id'], ['brands.id']),
    )
    op.create_index('ix_tier_changes_member', 'tier_changes', ['brand_id', 'member_key'])

    op.create_table(
        'idempotency_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('brand_id', sa.String(64), nullable=False),
        sa.Column('member_key', sa.String(255), nullable=False),
        sa.Column('idempotency_key', sa.String(255), nullable=False),
        sa.Column('operation', sa.String(50), nullable=False),
        sa.Column('fingerprint', sa.String(64), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('result_json', sa.Text(), nullable=True),
        sa.Column('error_code', sa.String(50), nullable=True),
        sa.Column('error_message', sa.String(500), nullable=True),
        sa.Column('error_details_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['brand_id'], ['brands.id']),
        sa.UniqueConstraint('brand_id', 'member_key', 'idempotency_key', name='uq_idempotency_member_key'),
    )


def downgrade():
    """Drop all ledger tables."""
    op.drop_table('idempotency_records')
    op.drop_index('ix_tier_changes_member', table_name='tier_changes')
    op.drop_table('tier_changes')
    op.drop_table('tier_thresholds')
    op.drop_index('ix_referral_referrer_applied', table_name='referral_applications')
    op.drop_table('referral_applications')
    op.drop_table('referral_codes')
    op.drop_table('referral_programs')
    op.drop_index('ix_earn_rules_brand_type', table_name='earn_rules')
    op.drop_table('earn_rules')
    op.drop_table('reward_catalog')
    op.drop_table('member_balances')
    op.drop_index('ix_ledger_brand_reason', table_name='ledger_entries')
    op.drop_table('ledger_entries')
    op.drop_index('ix_brands_domain', table_name='brands')
    op.drop_table('brands')
