"""Initial deal engine schema: reps, deals, commissions, pins, deal events

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. Rep roster mirror (default commission percent in basis points)
2. Deals (status lifecycle, payment request sub-state, optimistic version)
3. Commissions (amount snapshot, unique (deal_id, idempotency_key))
4. Pins (unique normalized_address, unique deal_id)
5. Deal events (append-only audit trail)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. REPS TABLE
    # ==========================================================================
    op.create_table('reps',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('full_name', sa.String(length=200), nullable=True),
        sa.Column('commission_level', sa.String(length=16), nullable=False, server_default='junior'),
        sa.Column('default_commission_percent_bps', sa.Integer(), nullable=False, server_default='500'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('reps', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_reps_user_id'), ['user_id'], unique=True)
        batch_op.create_index(batch_op.f('ix_reps_active'), ['active'], unique=False)

    # ==========================================================================
    # 2. DEALS TABLE
    # ==========================================================================
    op.create_table('deals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('homeowner_name', sa.String(length=200), nullable=False),
        sa.Column('homeowner_phone', sa.String(length=32), nullable=True),
        sa.Column('homeowner_email', sa.String(length=255), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=False),
        sa.Column('city', sa.String(length=120), nullable=True),
        sa.Column('state', sa.String(length=64), nullable=True),
        sa.Column('zip_code', sa.String(length=16), nullable=True),
        sa.Column('normalized_address', sa.String(length=255), nullable=True),
        sa.Column('total_price_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('rcv_cents', sa.BigInteger(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='lead'),
        sa.Column('status_vocabulary', sa.String(length=16), nullable=False, server_default='extended'),
        sa.Column('held_from_status', sa.String(length=32), nullable=True),
        sa.Column('contract_signed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('signature_url', sa.String(length=1024), nullable=True),
        sa.Column('permit_file_url', sa.String(length=1024), nullable=True),
        sa.Column('install_images', sa.JSON(), nullable=True),
        sa.Column('completion_images', sa.JSON(), nullable=True),
        sa.Column('signed_date', sa.Date(), nullable=True),
        sa.Column('install_date', sa.Date(), nullable=True),
        sa.Column('completion_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('payment_requested', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('payment_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='not_requested'),
        sa.Column('payment_reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_reviewed_by', sa.String(length=64), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('deals', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_deals_normalized_address'), ['normalized_address'], unique=False)
        batch_op.create_index(batch_op.f('ix_deals_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_deals_payment_status'), ['payment_status'], unique=False)
        batch_op.create_index('ix_deals_payment_queue', ['payment_requested', 'payment_requested_at'], unique=False)
        batch_op.create_index('ix_deals_status_created', ['status', 'created_at'], unique=False)

    # ==========================================================================
    # 3. COMMISSIONS TABLE
    # ==========================================================================
    op.create_table('commissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('deal_id', sa.Integer(), nullable=False),
        sa.Column('rep_id', sa.Integer(), nullable=False),
        sa.Column('commission_type', sa.String(length=16), nullable=False),
        sa.Column('commission_percent_bps', sa.Integer(), nullable=False),
        sa.Column('commission_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('deal_value_cents', sa.BigInteger(), nullable=False),
        sa.Column('paid', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('paid_date', sa.Date(), nullable=True),
        sa.Column('idempotency_key', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['deal_id'], ['deals.id'], ),
        sa.ForeignKeyConstraint(['rep_id'], ['reps.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('deal_id', 'idempotency_key', name='uq_commissions_deal_idempotency_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('commissions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_commissions_deal_id'), ['deal_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_commissions_rep_id'), ['rep_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_commissions_paid'), ['paid'], unique=False)
        batch_op.create_index('ix_commissions_deal_paid', ['deal_id', 'paid'], unique=False)

    # ==========================================================================
    # 4. PINS TABLE
    # ==========================================================================
    op.create_table('pins',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('rep_id', sa.Integer(), nullable=False),
        sa.Column('deal_id', sa.Integer(), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('city', sa.String(length=120), nullable=True),
        sa.Column('state', sa.String(length=64), nullable=True),
        sa.Column('zip_code', sa.String(length=16), nullable=True),
        sa.Column('normalized_address', sa.String(length=255), nullable=True),
        sa.Column('homeowner_name', sa.String(length=200), nullable=True),
        sa.Column('homeowner_phone', sa.String(length=32), nullable=True),
        sa.Column('homeowner_email', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='not_home'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('appointment_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('appointment_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('appointment_all_day', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('assigned_closer_id', sa.Integer(), nullable=True),
        sa.Column('follow_up_date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['rep_id'], ['reps.id'], ),
        sa.ForeignKeyConstraint(['deal_id'], ['deals.id'], ),
        sa.ForeignKeyConstraint(['assigned_closer_id'], ['reps.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('normalized_address', name='uq_pins_normalized_address'),
        sa.UniqueConstraint('deal_id', name='uq_pins_deal_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('pins', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_pins_rep_id'), ['rep_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_pins_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_pins_assigned_closer_id'), ['assigned_closer_id'], unique=False)
        batch_op.create_index('ix_pins_location', ['latitude', 'longitude'], unique=False)

    # ==========================================================================
    # 5. DEAL EVENTS TABLE
    # ==========================================================================
    op.create_table('deal_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('deal_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('from_status', sa.String(length=32), nullable=True),
        sa.Column('to_status', sa.String(length=32), nullable=True),
        sa.Column('commission_id', sa.Integer(), nullable=True),
        sa.Column('pin_id', sa.Integer(), nullable=True),
        sa.Column('actor_user_id', sa.String(length=64), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['deal_id'], ['deals.id'], ),
        sa.ForeignKeyConstraint(['commission_id'], ['commissions.id'], ),
        sa.ForeignKeyConstraint(['pin_id'], ['pins.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('deal_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_deal_events_deal_id'), ['deal_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_deal_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_deal_events_commission_id'), ['commission_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_deal_events_pin_id'), ['pin_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_deal_events_actor_user_id'), ['actor_user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_deal_events_occurred_at'), ['occurred_at'], unique=False)
        batch_op.create_index('ix_deal_events_deal_occurred', ['deal_id', 'occurred_at'], unique=False)


def downgrade():
    op.drop_table('deal_events')
    op.drop_table('pins')
    op.drop_table('commissions')
    op.drop_table('deals')
    op.drop_table('reps')
