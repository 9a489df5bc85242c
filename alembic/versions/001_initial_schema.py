"""Initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Tables:
  - projects: project store (status, deployed URL)
  - project_files: virtual file tree of each project
  - deployments: one row per deployment attempt
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # =========================================================================
    # 1. projects
    # =========================================================================
    op.create_table(
        'projects',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('deployed_url', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "status IN ('active', 'deploying', 'archived')",
            name='ck_projects_status',
        ),
    )
    op.create_index('ix_projects_status', 'projects', ['status'])

    # =========================================================================
    # 2. project_files
    # =========================================================================
    op.create_table(
        'project_files',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('project_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('path', sa.String(1000), nullable=False),
        sa.Column('content', sa.Text(), nullable=False, server_default=''),
        sa.Column('type', sa.String(20), nullable=False, server_default='file'),
        sa.ForeignKeyConstraint(
            ['project_id'], ['projects.id'],
            name='project_files_project_id_fkey', ondelete='CASCADE',
        ),
    )
    op.create_index('ix_project_files_project_id', 'project_files', ['project_id'])

    # =========================================================================
    # 3. deployments
    # =========================================================================
    op.create_table(
        'deployments',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('project_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('logs', sa.Text(), nullable=True),
        sa.Column('url', sa.String(500), nullable=True),
        sa.Column('runtime_type', sa.String(50), nullable=True),
        sa.Column('host_port', sa.Integer(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(
            ['project_id'], ['projects.id'],
            name='deployments_project_id_fkey', ondelete='CASCADE',
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'building', 'succeeded', 'failed')",
            name='ck_deployments_status',
        ),
    )
    op.create_index('ix_deployments_project_id', 'deployments', ['project_id'])
    op.create_index('ix_deployments_status', 'deployments', ['status'])
    op.create_index('ix_deployments_host_port', 'deployments', ['host_port'])
    op.create_index('ix_deployments_created_at', 'deployments', ['created_at'])


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_table('deployments')
    op.drop_table('project_files')
    op.drop_table('projects')
