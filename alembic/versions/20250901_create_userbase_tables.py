"""Create userbase tables

Revision ID: create_userbase_tables
Revises:
Create Date: 2025-09-01 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'create_userbase_tables'
down_revision = None
branch_labels = None
depends_on = None

# (index name, identifier column, identity type)
IDENTITY_UNIQUE_INDEXES = [
    ('uq_userbase_identities_hive_handle', 'handle', 'hive'),
    ('uq_userbase_identities_evm_address', 'address', 'evm'),
    ('uq_userbase_identities_farcaster_fid', 'external_id', 'farcaster'),
]


def upgrade():
    # 1. Users, the root every other table points at
    op.create_table(
        'userbase_users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('handle', sa.String(64), nullable=True),
        sa.Column('display_name', sa.String(100)),
        sa.Column('avatar_url', sa.String(512)),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('onboarding_step', sa.Integer, nullable=False),
        sa.Column('merged_into_user_id', sa.String(36), sa.ForeignKey('userbase_users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_userbase_users_handle', 'userbase_users', ['handle'], unique=True)

    # 2. Linked identities, unique per type on the column that identifies them
    op.create_table(
        'userbase_identities',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('userbase_users.id'), nullable=False),
        sa.Column('type', sa.String(16), nullable=False),
        sa.Column('handle', sa.String(64)),
        sa.Column('address', sa.String(64)),
        sa.Column('external_id', sa.String(64)),
        sa.Column('is_primary', sa.Boolean, nullable=False),
        sa.Column('verified_at', sa.DateTime(timezone=True)),
        sa.Column('metadata', sa.JSON),
        sa.Column('created_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_userbase_identities_user_id', 'userbase_identities', ['user_id'])
    op.create_index('idx_userbase_identities_user_type', 'userbase_identities', ['user_id', 'type'])
    for name, column, identity_type in IDENTITY_UNIQUE_INDEXES:
        where = sa.text(f"type = '{identity_type}'")
        op.create_index(
            name,
            'userbase_identities',
            [column],
            unique=True,
            postgresql_where=where,
            sqlite_where=where,
        )

    # 3. Signing challenges
    op.create_table(
        'userbase_identity_challenges',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('userbase_users.id'), nullable=False),
        sa.Column('type', sa.String(16), nullable=False),
        sa.Column('identifier', sa.String(64), nullable=False),
        sa.Column('nonce', sa.String(64), nullable=False),
        sa.Column('message', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        'idx_userbase_challenges_scope',
        'userbase_identity_challenges',
        ['user_id', 'type', 'identifier', 'created_at'],
    )

    # 4. Sessions, storing only the refresh token hash
    op.create_table(
        'userbase_sessions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('userbase_users.id'), nullable=False),
        sa.Column('refresh_token_hash', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('user_agent', sa.Text),
        sa.Column('device_id', sa.String(128)),
    )
    op.create_index('ix_userbase_sessions_user_id', 'userbase_sessions', ['user_id'])
    op.create_index('ix_userbase_sessions_refresh_token_hash', 'userbase_sessions', ['refresh_token_hash'], unique=True)

    # 5. Email auth methods and magic links
    op.create_table(
        'userbase_auth_methods',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('userbase_users.id'), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('identifier', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('type', 'identifier', name='uq_userbase_auth_methods_type_identifier'),
    )
    op.create_index('ix_userbase_auth_methods_user_id', 'userbase_auth_methods', ['user_id'])

    op.create_table(
        'userbase_magic_links',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('userbase_users.id'), nullable=False),
        sa.Column('identifier', sa.String(255), nullable=False),
        sa.Column('token_hash', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_userbase_magic_links_token_hash', 'userbase_magic_links', ['token_hash'], unique=True)

    # 6. Queued app-only content that moves with a merge
    op.create_table(
        'userbase_soft_posts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('userbase_users.id'), nullable=False),
        sa.Column('author', sa.String(64)),
        sa.Column('permlink', sa.String(255)),
        sa.Column('status', sa.String(32)),
        sa.Column('payload', sa.JSON),
        sa.Column('created_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_userbase_soft_posts_user_id', 'userbase_soft_posts', ['user_id'])

    op.create_table(
        'userbase_soft_votes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('userbase_users.id'), nullable=False),
        sa.Column('author', sa.String(64)),
        sa.Column('permlink', sa.String(255)),
        sa.Column('weight', sa.Integer),
        sa.Column('status', sa.String(32)),
        sa.Column('created_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_userbase_soft_votes_user_id', 'userbase_soft_votes', ['user_id'])

    # 7. Merge audit trail
    op.create_table(
        'userbase_merges',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('source_user_id', sa.String(36), sa.ForeignKey('userbase_users.id'), nullable=False),
        sa.Column('target_user_id', sa.String(36), sa.ForeignKey('userbase_users.id'), nullable=False),
        sa.Column('actor_user_id', sa.String(36), sa.ForeignKey('userbase_users.id'), nullable=False),
        sa.Column('reason', sa.String(64), nullable=False),
        sa.Column('metadata', sa.JSON),
        sa.Column('created_at', sa.DateTime(timezone=True)),
    )


def downgrade():
    op.drop_table('userbase_merges')

    op.drop_index('ix_userbase_soft_votes_user_id', table_name='userbase_soft_votes')
    op.drop_table('userbase_soft_votes')
    op.drop_index('ix_userbase_soft_posts_user_id', table_name='userbase_soft_posts')
    op.drop_table('userbase_soft_posts')

    op.drop_index('ix_userbase_magic_links_token_hash', table_name='userbase_magic_links')
    op.drop_table('userbase_magic_links')
    op.drop_index('ix_userbase_auth_methods_user_id', table_name='userbase_auth_methods')
    op.drop_table('userbase_auth_methods')

    op.drop_index('ix_userbase_sessions_refresh_token_hash', table_name='userbase_sessions')
    op.drop_index('ix_userbase_sessions_user_id', table_name='userbase_sessions')
    op.drop_table('userbase_sessions')

    op.drop_index('idx_userbase_challenges_scope', table_name='userbase_identity_challenges')
    op.drop_table('userbase_identity_challenges')

    for name, _, _ in IDENTITY_UNIQUE_INDEXES:
        op.drop_index(name, table_name='userbase_identities')
    op.drop_index('idx_userbase_identities_user_type', table_name='userbase_identities')
    op.drop_index('ix_userbase_identities_user_id', table_name='userbase_identities')
    op.drop_table('userbase_identities')

    op.drop_index('ix_userbase_users_handle', table_name='userbase_users')
    op.drop_table('userbase_users')
