"""booking core: facilities, reservations, payments, overlap constraints

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

from models.exclusion import PG_PREPARE, PG_STATEMENTS, sqlite_trigger_statements


# revision identifiers, used by Alembic.
revision = 'a1b2c3d4e5f6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=120), nullable=True),
        sa.Column('phone_number', sa.String(length=30), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_users_email'), ['email'], unique=True)

    op.create_table(
        'sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('revoked', sa.Boolean(), nullable=False),
        sa.Column('ip', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('sessions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sessions_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sessions_token_hash'), ['token_hash'], unique=True)

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=80), nullable=False),
        sa.Column('entity', sa.String(length=80), nullable=True),
        sa.Column('entity_id', sa.String(length=80), nullable=True),
        sa.Column('ip', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('metadata_json', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'facilities',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('owner_user_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('opening_time', sa.String(length=5), nullable=False),
        sa.Column('closing_time', sa.String(length=5), nullable=False),
        sa.Column('is_approved', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['owner_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('facilities', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_facilities_owner_user_id'), ['owner_user_id'], unique=False)

    op.create_table(
        'owner_subscriptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('owner_user_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('current_period_end', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['owner_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('owner_subscriptions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_owner_subscriptions_owner_user_id'), ['owner_user_id'], unique=True)

    op.create_table(
        'play_areas',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('facility_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('conflict_group_id', sa.String(length=64), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['facility_id'], ['facilities.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('play_areas', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_play_areas_facility_id'), ['facility_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_play_areas_conflict_group_id'), ['conflict_group_id'], unique=False)

    op.create_table(
        'pricing_profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('play_area_id', sa.Integer(), nullable=False),
        sa.Column('sport', sa.String(length=40), nullable=False),
        sa.Column('allowed_durations', sa.JSON(), nullable=False),
        sa.Column('duration_prices', sa.JSON(), nullable=False),
        sa.Column('peak_duration_prices', sa.JSON(), nullable=True),
        sa.Column('slot_interval_minutes', sa.Integer(), nullable=False),
        sa.Column('buffer_minutes', sa.Integer(), nullable=False),
        sa.Column('min_lead_time_minutes', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['play_area_id'], ['play_areas.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('pricing_profiles', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_pricing_profiles_play_area_id'), ['play_area_id'], unique=False)

    op.create_table(
        'peak_rules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('pricing_profile_id', sa.Integer(), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.String(length=5), nullable=False),
        sa.Column('end_time', sa.String(length=5), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['pricing_profile_id'], ['pricing_profiles.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('peak_rules', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_peak_rules_pricing_profile_id'), ['pricing_profile_id'], unique=False)

    op.create_table(
        'reservations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reservation_number', sa.String(length=32), nullable=False),
        sa.Column('player_user_id', sa.Integer(), nullable=False),
        sa.Column('play_area_id', sa.Integer(), nullable=False),
        sa.Column('pricing_profile_id', sa.Integer(), nullable=False),
        sa.Column('conflict_group_id', sa.String(length=64), nullable=False),
        sa.Column('start_at', sa.DateTime(), nullable=False),
        sa.Column('end_at', sa.DateTime(), nullable=False),
        sa.Column('blocked_end_at', sa.DateTime(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('payment_stage', sa.String(length=24), nullable=False),
        sa.Column('total_amount', sa.Integer(), nullable=False),
        sa.Column('advance_amount', sa.Integer(), nullable=False),
        sa.Column('platform_commission', sa.Integer(), nullable=False),
        sa.Column('owner_advance_credit', sa.Integer(), nullable=False),
        sa.Column('offline_amount_collected', sa.Integer(), nullable=False),
        sa.Column('is_peak_pricing', sa.Boolean(), nullable=False),
        sa.Column('hold_expires_at', sa.DateTime(), nullable=True),
        sa.Column('contact_name', sa.String(length=120), nullable=True),
        sa.Column('contact_phone', sa.String(length=30), nullable=True),
        sa.Column('contact_email', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('canceled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.String(length=255), nullable=True),
        sa.Column('canceled_by', sa.Integer(), nullable=True),
        sa.Column('expired_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('blocked_end_at >= end_at AND end_at > start_at', name='ck_reservation_range'),
        sa.ForeignKeyConstraint(['play_area_id'], ['play_areas.id'], ),
        sa.ForeignKeyConstraint(['player_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['pricing_profile_id'], ['pricing_profiles.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('reservations', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_reservations_reservation_number'), ['reservation_number'], unique=True)
        batch_op.create_index(batch_op.f('ix_reservations_player_user_id'), ['player_user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_reservations_play_area_id'), ['play_area_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_reservations_conflict_group_id'), ['conflict_group_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_reservations_start_at'), ['start_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_reservations_status'), ['status'], unique=False)
        batch_op.create_index('ix_reservations_group_start', ['conflict_group_id', 'start_at'], unique=False)

    op.create_table(
        'manual_blocks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('facility_id', sa.Integer(), nullable=False),
        sa.Column('conflict_group_id', sa.String(length=64), nullable=False),
        sa.Column('start_at', sa.DateTime(), nullable=False),
        sa.Column('end_at', sa.DateTime(), nullable=False),
        sa.Column('block_type', sa.String(length=20), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('end_at > start_at', name='ck_manual_block_range'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.ForeignKeyConstraint(['facility_id'], ['facilities.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('manual_blocks', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_manual_blocks_facility_id'), ['facility_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_manual_blocks_conflict_group_id'), ['conflict_group_id'], unique=False)

    op.create_table(
        'payment_intents',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reservation_id', sa.Integer(), nullable=False),
        sa.Column('gateway', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('status', sa.String(length=30), nullable=False),
        sa.Column('gateway_tran_id', sa.String(length=64), nullable=False),
        sa.Column('session_key', sa.String(length=255), nullable=True),
        sa.Column('gateway_url', sa.String(length=500), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['reservation_id'], ['reservations.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('payment_intents', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payment_intents_reservation_id'), ['reservation_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_intents_gateway_tran_id'), ['gateway_tran_id'], unique=True)

    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payment_intent_id', sa.Integer(), nullable=False),
        sa.Column('tran_id', sa.String(length=64), nullable=False),
        sa.Column('val_id', sa.String(length=128), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=True),
        sa.Column('currency', sa.String(length=10), nullable=True),
        sa.Column('status', sa.String(length=30), nullable=False),
        sa.Column('gateway_status', sa.String(length=30), nullable=True),
        sa.Column('signature_valid', sa.Boolean(), nullable=False),
        sa.Column('raw_payload', sa.JSON(), nullable=False),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['payment_intent_id'], ['payment_intents.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tran_id', 'status', name='uq_payment_transaction_status')
    )
    with op.batch_alter_table('payment_transactions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payment_transactions_payment_intent_id'), ['payment_intent_id'], unique=False)

    op.create_table(
        'refunds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reservation_id', sa.Integer(), nullable=False),
        sa.Column('payment_intent_id', sa.Integer(), nullable=True),
        sa.Column('refund_amount', sa.Integer(), nullable=False),
        sa.Column('platform_fee_retained', sa.Integer(), nullable=False),
        sa.Column('original_advance', sa.Integer(), nullable=False),
        sa.Column('tier', sa.String(length=40), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('reference_id', sa.String(length=128), nullable=True),
        sa.Column('decided_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['payment_intent_id'], ['payment_intents.id'], ),
        sa.ForeignKeyConstraint(['reservation_id'], ['reservations.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('refunds', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_refunds_reservation_id'), ['reservation_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_refunds_payment_intent_id'), ['payment_intent_id'], unique=False)

    op.create_table(
        'owner_ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('owner_user_id', sa.Integer(), nullable=False),
        sa.Column('reservation_id', sa.Integer(), nullable=False),
        sa.Column('entry_type', sa.String(length=30), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('running_balance', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('period_month', sa.String(length=7), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['owner_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['reservation_id'], ['reservations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reservation_id', 'entry_type', name='uq_ledger_reservation_entry')
    )
    with op.batch_alter_table('owner_ledger_entries', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_owner_ledger_entries_owner_user_id'), ['owner_user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_owner_ledger_entries_reservation_id'), ['reservation_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_owner_ledger_entries_period_month'), ['period_month'], unique=False)

    op.create_table(
        'booking_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reservation_id', sa.Integer(), nullable=False),
        sa.Column('event', sa.String(length=40), nullable=False),
        sa.Column('from_status', sa.String(length=20), nullable=True),
        sa.Column('to_status', sa.String(length=20), nullable=True),
        sa.Column('metadata_json', sa.JSON(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['reservation_id'], ['reservations.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('booking_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_booking_events_reservation_id'), ['reservation_id'], unique=False)

    op.create_table(
        'idempotency_keys',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=64), nullable=False),
        sa.Column('scope', sa.String(length=40), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('idempotency_keys', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_idempotency_keys_key'), ['key'], unique=True)

    op.create_table(
        'booking_rate_limits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('window_start', sa.DateTime(), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False),
        sa.Column('previous_count', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('booking_rate_limits', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_booking_rate_limits_user_id'), ['user_id'], unique=True)

    # exclusivity on [start_at, blocked_end_at) per conflict group
    dialect = op.get_bind().dialect.name
    if dialect == 'postgresql':
        for stmt in PG_PREPARE + PG_STATEMENTS:
            op.execute(stmt)
    elif dialect == 'sqlite':
        for stmt in sqlite_trigger_statements():
            op.execute(stmt)


def downgrade():
    dialect = op.get_bind().dialect.name
    if dialect == 'postgresql':
        op.execute('DROP TRIGGER IF EXISTS block_vs_reservations ON manual_blocks')
        op.execute('DROP TRIGGER IF EXISTS reservation_vs_blocks ON reservations')
        op.execute('DROP FUNCTION IF EXISTS block_vs_reservations()')
        op.execute('DROP FUNCTION IF EXISTS reservation_vs_blocks()')
    elif dialect == 'sqlite':
        for name in ('booking_no_overlap_insert', 'booking_no_overlap_update',
                     'manual_block_no_overlap_insert', 'manual_block_no_overlap_update'):
            op.execute(f'DROP TRIGGER IF EXISTS {name}')

    for table in ('booking_rate_limits', 'idempotency_keys', 'booking_events', 'owner_ledger_entries',
                  'refunds', 'payment_transactions', 'payment_intents', 'manual_blocks', 'reservations',
                  'peak_rules', 'pricing_profiles', 'play_areas', 'owner_subscriptions', 'facilities',
                  'audit_logs', 'sessions', 'users'):
        op.drop_table(table)
