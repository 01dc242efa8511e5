"""Initial schema: accounts, tags, taps, visitors, claims, lists

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration creates:
1. users, session_tokens, security_events, rate_limit_buckets
2. tag_batches, nfc_tags
3. visitors, tap_events, identity_claims
4. my_lists, my_list_items, user_preferences
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
    # 1. ACCOUNTS & SECURITY
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='user'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint("role IN ('user', 'admin')", name='ck_users_user_role_valid'),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('ix_users_email', ['email'], unique=False)

    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_used_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_hash', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_session_tokens_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_session_tokens'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('session_tokens', schema=None) as batch_op:
        batch_op.create_index('ix_session_tokens_token_hash', ['token_hash'], unique=True)
        batch_op.create_index('ix_session_tokens_user_id', ['user_id'], unique=False)
        batch_op.create_index('ix_session_tokens_expires_at', ['expires_at'], unique=False)
        batch_op.create_index('ix_session_tokens_is_revoked', ['is_revoked'], unique=False)
        batch_op.create_index('ix_session_tokens_user_active', ['user_id', 'is_revoked'], unique=False)

    op.create_table('security_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('resource', sa.String(length=128), nullable=True),
        sa.Column('action', sa.String(length=255), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_hash', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_security_events_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_security_events'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('security_events', schema=None) as batch_op:
        batch_op.create_index('ix_security_events_user_id', ['user_id'], unique=False)
        batch_op.create_index('ix_security_events_event_type', ['event_type'], unique=False)
        batch_op.create_index('ix_security_events_action', ['action'], unique=False)
        batch_op.create_index('ix_security_events_success', ['success'], unique=False)
        batch_op.create_index('ix_security_events_occurred_at', ['occurred_at'], unique=False)
        batch_op.create_index('ix_security_events_user_type', ['user_id', 'event_type'], unique=False)

    op.create_table('rate_limit_buckets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reset_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_rate_limit_buckets'),
        sa.UniqueConstraint('key', name='uq_rate_limit_buckets_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('rate_limit_buckets', schema=None) as batch_op:
        batch_op.create_index('ix_rate_limit_buckets_reset_at', ['reset_at'], unique=False)

    # ==========================================================================
    # 2. TAG BATCHES & TAGS
    # ==========================================================================
    op.create_table('tag_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('slug', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_tag_batches'),
        sa.UniqueConstraint('slug', name='uq_tag_batches_slug'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('tag_batches', schema=None) as batch_op:
        batch_op.create_index('ix_tag_batches_slug', ['slug'], unique=False)

    op.create_table('nfc_tags',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('public_uuid', sa.String(length=36), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('label', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('linked_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint("status IN ('active', 'disabled')", name='ck_nfc_tags_tag_status_valid'),
        sa.ForeignKeyConstraint(['batch_id'], ['tag_batches.id'], name='fk_nfc_tags_batch_id_tag_batches'),
        sa.ForeignKeyConstraint(['linked_user_id'], ['users.id'], name='fk_nfc_tags_linked_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_nfc_tags'),
        sa.UniqueConstraint('public_uuid', name='uq_nfc_tags_public_uuid'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('nfc_tags', schema=None) as batch_op:
        batch_op.create_index('ix_nfc_tags_public_uuid', ['public_uuid'], unique=False)
        batch_op.create_index('ix_nfc_tags_batch_id', ['batch_id'], unique=False)
        batch_op.create_index('ix_nfc_tags_linked_user_id', ['linked_user_id'], unique=False)

    # ==========================================================================
    # 3. VISITORS, TAP EVENTS & CLAIMS
    # ==========================================================================
    op.create_table('visitors',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('anon_visitor_id', sa.String(length=36), nullable=False),
        sa.Column('first_seen_at', sa.DateTime(), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(), nullable=False),
        sa.Column('ip_hash_last_seen', sa.String(length=64), nullable=True),
        sa.Column('user_agent_last_seen', sa.String(length=512), nullable=True),
        sa.Column('tap_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_tag_id', sa.Integer(), nullable=True),
        sa.Column('last_batch_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['last_tag_id'], ['nfc_tags.id'], name='fk_visitors_last_tag_id_nfc_tags'),
        sa.ForeignKeyConstraint(['last_batch_id'], ['tag_batches.id'], name='fk_visitors_last_batch_id_tag_batches'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_visitors_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_visitors'),
        sa.UniqueConstraint('anon_visitor_id', name='uq_visitors_anon_visitor_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('visitors', schema=None) as batch_op:
        batch_op.create_index('ix_visitors_anon_visitor_id', ['anon_visitor_id'], unique=False)
        batch_op.create_index('ix_visitors_user_id', ['user_id'], unique=False)

    op.create_table('tap_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tag_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('ip_hash', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('accept_language', sa.String(length=255), nullable=True),
        sa.Column('referer', sa.String(length=1024), nullable=True),
        sa.Column('device_hint', sa.String(length=16), nullable=False, server_default='desktop'),
        sa.Column('anon_visitor_id', sa.String(length=36), nullable=True),
        sa.Column('session_hint', sa.String(length=128), nullable=True),
        sa.Column('is_duplicate', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('duplicate_of_id', sa.Integer(), nullable=True),
        sa.Column('visitor_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('linked_at', sa.DateTime(), nullable=True),
        sa.Column('link_method', sa.String(length=32), nullable=True),
        sa.Column('tapper_had_session', sa.Boolean(), nullable=False, server_default='0'),
        sa.CheckConstraint("device_hint IN ('mobile', 'desktop', 'tablet')", name='ck_tap_events_tap_device_hint_valid'),
        sa.ForeignKeyConstraint(['tag_id'], ['nfc_tags.id'], name='fk_tap_events_tag_id_nfc_tags'),
        sa.ForeignKeyConstraint(['batch_id'], ['tag_batches.id'], name='fk_tap_events_batch_id_tag_batches'),
        sa.ForeignKeyConstraint(['duplicate_of_id'], ['tap_events.id'], name='fk_tap_events_duplicate_of_id_tap_events'),
        sa.ForeignKeyConstraint(['visitor_id'], ['visitors.id'], name='fk_tap_events_visitor_id_visitors'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_tap_events_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_tap_events'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('tap_events', schema=None) as batch_op:
        batch_op.create_index('ix_tap_events_tag_id', ['tag_id'], unique=False)
        batch_op.create_index('ix_tap_events_batch_id', ['batch_id'], unique=False)
        batch_op.create_index('ix_tap_events_occurred_at', ['occurred_at'], unique=False)
        batch_op.create_index('ix_tap_events_anon_visitor_id', ['anon_visitor_id'], unique=False)
        batch_op.create_index('ix_tap_events_is_duplicate', ['is_duplicate'], unique=False)
        batch_op.create_index('ix_tap_events_visitor_id', ['visitor_id'], unique=False)
        batch_op.create_index('ix_tap_events_user_id', ['user_id'], unique=False)
        batch_op.create_index('ix_tap_events_tag_visitor_time', ['tag_id', 'anon_visitor_id', 'occurred_at'], unique=False)
        batch_op.create_index('ix_tap_events_tag_fingerprint_time', ['tag_id', 'ip_hash', 'occurred_at'], unique=False)
        batch_op.create_index('ix_tap_events_session_hint_time', ['session_hint', 'occurred_at'], unique=False)

    op.create_table('identity_claims',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('visitor_id', sa.Integer(), nullable=False),
        sa.Column('claimed_at', sa.DateTime(), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('tap_events_linked', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('my_list_claimed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('reclaimed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_identity_claims_user_id_users'),
        sa.ForeignKeyConstraint(['visitor_id'], ['visitors.id'], name='fk_identity_claims_visitor_id_visitors'),
        sa.PrimaryKeyConstraint('id', name='pk_identity_claims'),
        sa.UniqueConstraint('user_id', 'visitor_id', name='uq_identity_claims_user_visitor'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('identity_claims', schema=None) as batch_op:
        batch_op.create_index('ix_identity_claims_user_id', ['user_id'], unique=False)
        batch_op.create_index('ix_identity_claims_visitor_id', ['visitor_id'], unique=False)

    # ==========================================================================
    # 4. LISTS & PREFERENCES
    # ==========================================================================
    op.create_table('my_lists',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('owner_visitor_id', sa.Integer(), nullable=True),
        sa.Column('owner_user_id', sa.Integer(), nullable=True),
        sa.Column('source_tag_id', sa.Integer(), nullable=True),
        sa.Column('source_batch_id', sa.Integer(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('merged_into_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            '(owner_visitor_id IS NULL) <> (owner_user_id IS NULL)',
            name='ck_my_lists_my_list_single_owner',
        ),
        sa.ForeignKeyConstraint(['owner_visitor_id'], ['visitors.id'], name='fk_my_lists_owner_visitor_id_visitors'),
        sa.ForeignKeyConstraint(['owner_user_id'], ['users.id'], name='fk_my_lists_owner_user_id_users'),
        sa.ForeignKeyConstraint(['source_tag_id'], ['nfc_tags.id'], name='fk_my_lists_source_tag_id_nfc_tags'),
        sa.ForeignKeyConstraint(['source_batch_id'], ['tag_batches.id'], name='fk_my_lists_source_batch_id_tag_batches'),
        sa.ForeignKeyConstraint(['merged_into_id'], ['my_lists.id'], name='fk_my_lists_merged_into_id_my_lists'),
        sa.PrimaryKeyConstraint('id', name='pk_my_lists'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('my_lists', schema=None) as batch_op:
        batch_op.create_index('ix_my_lists_owner_visitor_id', ['owner_visitor_id'], unique=False)
        batch_op.create_index('ix_my_lists_owner_user_id', ['owner_user_id'], unique=False)

    op.create_table('my_list_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('list_id', sa.Integer(), nullable=False),
        sa.Column('item_key', sa.String(length=128), nullable=False),
        sa.Column('item_label', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('times_purchased', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_added_at', sa.DateTime(), nullable=False),
        sa.Column('purchased_at', sa.DateTime(), nullable=True),
        sa.Column('source_tag_id', sa.Integer(), nullable=True),
        sa.Column('source_batch_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['list_id'], ['my_lists.id'], name='fk_my_list_items_list_id_my_lists'),
        sa.ForeignKeyConstraint(['source_tag_id'], ['nfc_tags.id'], name='fk_my_list_items_source_tag_id_nfc_tags'),
        sa.ForeignKeyConstraint(['source_batch_id'], ['tag_batches.id'], name='fk_my_list_items_source_batch_id_tag_batches'),
        sa.PrimaryKeyConstraint('id', name='pk_my_list_items'),
        sa.UniqueConstraint('list_id', 'item_key', name='uq_my_list_items_list_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('my_list_items', schema=None) as batch_op:
        batch_op.create_index('ix_my_list_items_list_id', ['list_id'], unique=False)

    op.create_table('user_preferences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('nfc_landing_mode', sa.String(length=16), nullable=False, server_default='home'),
        sa.Column('nfc_landing_path', sa.String(length=255), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "nfc_landing_mode IN ('home', 'list', 'custom')",
            name='ck_user_preferences_landing_mode_valid',
        ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_user_preferences_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_user_preferences'),
        sa.UniqueConstraint('user_id', name='uq_user_preferences_user_id'),
        sqlite_autoincrement=True
    )


def downgrade():
    op.drop_table('user_preferences')
    op.drop_table('my_list_items')
    op.drop_table('my_lists')
    op.drop_table('identity_claims')
    op.drop_table('tap_events')
    op.drop_table('visitors')
    op.drop_table('nfc_tags')
    op.drop_table('tag_batches')
    op.drop_table('rate_limit_buckets')
    op.drop_table('security_events')
    op.drop_table('session_tokens')
    op.drop_table('users')
