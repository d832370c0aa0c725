"""create users, connectors, sync jobs and record tables

Revision ID: sync_tables_001
Revises:
Create Date: 2026-03-01

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = 'sync_tables_001'
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('role', sa.String(16), nullable=False, server_default='user'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'connectors',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('base_url', sa.Text(), nullable=False),
        sa.Column('auth_type', sa.String(16), nullable=False, server_default='NONE'),
        sa.Column('auth_config', JSONType, nullable=False),
        sa.Column('rate_limit_config', JSONType, nullable=False),
        sa.Column('endpoint_config', JSONType, nullable=False),
        sa.Column('field_mapping_config', JSONType, nullable=False),
        sa.Column('is_shared', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('owner_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_connectors_is_shared', 'connectors', ['is_shared'])
    op.create_index('ix_connectors_owner_id', 'connectors', ['owner_id'])

    op.create_table(
        'sync_jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('connector_id', sa.String(36), sa.ForeignKey('connectors.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='PENDING'),
        sa.Column('logs', JSONType, nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_sync_jobs_connector_id', 'sync_jobs', ['connector_id'])
    op.create_index('ix_sync_jobs_user_id', 'sync_jobs', ['user_id'])
    op.create_index('ix_sync_jobs_status', 'sync_jobs', ['status'])
    op.create_index('idx_sync_jobs_connector_created', 'sync_jobs', ['connector_id', 'created_at'])

    op.create_table(
        'raw_api_data',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('sync_job_id', sa.String(36), sa.ForeignKey('sync_jobs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('endpoint', sa.Text(), nullable=False),
        sa.Column('response', JSONType, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_raw_api_data_sync_job_id', 'raw_api_data', ['sync_job_id'])

    op.create_table(
        'normalized_data',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('sync_job_id', sa.String(36), sa.ForeignKey('sync_jobs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('connector_id', sa.String(36), sa.ForeignKey('connectors.id', ondelete='CASCADE'), nullable=False),
        sa.Column('entity_key', sa.Text(), nullable=False),
        sa.Column('data', JSONType, nullable=False),
        sa.Column('metadata', JSONType, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_normalized_data_sync_job_id', 'normalized_data', ['sync_job_id'])
    op.create_index('ix_normalized_data_connector_id', 'normalized_data', ['connector_id'])
    op.create_index('ix_normalized_data_entity_key', 'normalized_data', ['entity_key'])
    op.create_index('idx_normalized_connector_entity', 'normalized_data', ['connector_id', 'entity_key'])


def downgrade():
    op.drop_table('normalized_data')
    op.drop_table('raw_api_data')
    op.drop_table('sync_jobs')
    op.drop_table('connectors')
    op.drop_table('users')
