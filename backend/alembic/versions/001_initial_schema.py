"""Initial schema: domains, landing pages, deployment runs and their logs

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # === domains ===
    op.create_table(
        'domains',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('zone_id', sa.String(64), nullable=True),
        sa.Column('nameservers', sa.JSON(), nullable=False),
        sa.Column('dns_management', sa.String(20), nullable=False, server_default=sa.text("'provider'")),
        sa.Column('verification_status', sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column('expected_cname', sa.String(255), nullable=True),
        sa.Column('hosting_project_id', sa.String(128), nullable=True),
        sa.Column('deployment_status', sa.String(20), nullable=False, server_default=sa.text("'not_deployed'")),
        sa.Column('last_deployed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deployment_url', sa.String(512), nullable=True),
        sa.Column('active_run_id', sa.String(64), nullable=True),
        sa.Column('ban_count', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_domains_name', 'domains', ['name'], unique=True)

    # === landing_pages ===
    op.create_table(
        'landing_pages',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('domain_id', sa.Integer(), nullable=False),
        sa.Column('subdomain', sa.String(63), nullable=False, server_default=sa.text("''")),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('affiliate_url', sa.String(2048), nullable=False),
        sa.Column('original_url', sa.String(2048), nullable=True),
        sa.Column('html_content', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.ForeignKeyConstraint(['domain_id'], ['domains.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('domain_id', 'subdomain', name='uq_landing_pages_domain_subdomain'),
    )
    op.create_index('ix_landing_pages_domain_id', 'landing_pages', ['domain_id'])
    # At most one root (empty subdomain) binding per domain
    op.create_index(
        'uq_landing_pages_root_binding',
        'landing_pages',
        ['domain_id'],
        unique=True,
        postgresql_where=sa.text("subdomain = ''"),
        sqlite_where=sa.text("subdomain = ''"),
    )

    # === domain_deployments ===
    op.create_table(
        'domain_deployments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('run_id', sa.String(64), nullable=False),
        sa.Column('domain_id', sa.Integer(), nullable=False),
        sa.Column('domain_name', sa.String(255), nullable=False),
        sa.Column('landing_page_id', sa.Integer(), nullable=True),
        sa.Column('target_host', sa.String(255), nullable=False),
        sa.Column('hosting_project_id', sa.String(128), nullable=True),
        sa.Column('deployment_url', sa.String(512), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['domain_id'], ['domains.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['landing_page_id'], ['landing_pages.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_domain_deployments_run_id', 'domain_deployments', ['run_id'], unique=True)
    op.create_index('ix_domain_deployments_domain_id', 'domain_deployments', ['domain_id'])
    op.create_index('ix_domain_deployments_status', 'domain_deployments', ['status'])

    # === deployment_log_entries ===
    op.create_table(
        'deployment_log_entries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('deployment_id', sa.Integer(), nullable=False),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('level', sa.String(10), nullable=False, server_default=sa.text("'info'")),
        sa.Column('message', sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(['deployment_id'], ['domain_deployments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('deployment_id', 'seq', name='uq_deployment_log_seq'),
    )
    op.create_index('ix_deployment_log_entries_deployment_id', 'deployment_log_entries', ['deployment_id'])


def downgrade() -> None:
    op.drop_table('deployment_log_entries')
    op.drop_table('domain_deployments')
    op.drop_index('uq_landing_pages_root_binding', table_name='landing_pages')
    op.drop_table('landing_pages')
    op.drop_table('domains')
