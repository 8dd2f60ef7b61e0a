"""Initial migration

Revision ID: 001
Revises:
Create Date: 2025-04-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Clients
    op.create_table(
        'clients',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('primary_domain', sa.String(length=255), nullable=True),
        sa.Column('timezone', sa.String(length=100), nullable=True),
        sa.Column('contact_emails', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_clients_id'), 'clients', ['id'], unique=False)
    op.create_index(op.f('ix_clients_name'), 'clients', ['name'], unique=False)

    # Data sources
    op.create_table(
        'data_sources',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.Enum('GOOGLE_ANALYTICS', 'GOOGLE_ADS', 'SEARCH_CONSOLE', name='sourcetype'), nullable=False),
        sa.Column('external_account_id', sa.String(length=255), nullable=True),
        sa.Column('external_account_name', sa.String(length=255), nullable=True),
        sa.Column('credentials', sa.JSON(), nullable=True),
        sa.Column('status', sa.Enum('ACTIVE', 'EXPIRED', 'DISCONNECTED', name='datasourcestatus'), nullable=False),
        sa.Column('config', sa.JSON(), nullable=True),
        sa.Column('connected_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_data_sources_id'), 'data_sources', ['id'], unique=False)
    op.create_index(op.f('ix_data_sources_client_id'), 'data_sources', ['client_id'], unique=False)
    op.create_index(op.f('ix_data_sources_type'), 'data_sources', ['type'], unique=False)
    op.create_index(op.f('ix_data_sources_status'), 'data_sources', ['status'], unique=False)
    op.create_index('idx_data_source_client_type', 'data_sources', ['client_id', 'type'], unique=False)

    # Snapshots
    op.create_table(
        'snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('snapshot_date', sa.Date(), nullable=False),
        sa.Column('template_version', sa.String(length=50), nullable=False),
        sa.Column('storage_path', sa.String(length=500), nullable=False),
        sa.Column('pdf_storage_path', sa.String(length=500), nullable=True),
        sa.Column('metrics_summary', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id', 'snapshot_date', name='uq_snapshot_client_date')
    )
    op.create_index(op.f('ix_snapshots_id'), 'snapshots', ['id'], unique=False)
    op.create_index(op.f('ix_snapshots_client_id'), 'snapshots', ['client_id'], unique=False)
    op.create_index(op.f('ix_snapshots_snapshot_date'), 'snapshots', ['snapshot_date'], unique=False)
    op.create_index(op.f('ix_snapshots_expires_at'), 'snapshots', ['expires_at'], unique=False)
    op.create_index('idx_snapshot_client_date', 'snapshots', ['client_id', 'snapshot_date'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_snapshot_client_date', table_name='snapshots')
    op.drop_index(op.f('ix_snapshots_expires_at'), table_name='snapshots')
    op.drop_index(op.f('ix_snapshots_snapshot_date'), table_name='snapshots')
    op.drop_index(op.f('ix_snapshots_client_id'), table_name='snapshots')
    op.drop_index(op.f('ix_snapshots_id'), table_name='snapshots')
    op.drop_table('snapshots')
    op.drop_index('idx_data_source_client_type', table_name='data_sources')
    op.drop_index(op.f('ix_data_sources_status'), table_name='data_sources')
    op.drop_index(op.f('ix_data_sources_type'), table_name='data_sources')
    op.drop_index(op.f('ix_data_sources_client_id'), table_name='data_sources')
    op.drop_index(op.f('ix_data_sources_id'), table_name='data_sources')
    op.drop_table('data_sources')
    op.drop_index(op.f('ix_clients_name'), table_name='clients')
    op.drop_index(op.f('ix_clients_id'), table_name='clients')
    op.drop_table('clients')
    sa.Enum(name='datasourcestatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='sourcetype').drop(op.get_bind(), checkfirst=True)
