"""Baseline: workspaces, integrations, tickets, and reference data.

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-17

Creates:
- workspaces, workspace_members, agents, workflows
- integrations
- ticket_statuses, ticket_priorities (seeded with the fixed rows)
- tickets (unique per integration + external ticket id)
- ticket_comments
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from app.db.seed import TICKET_PRIORITIES, TICKET_STATUSES

# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ==========================================================================
    # workspaces and members
    # ==========================================================================
    op.create_table(
        'workspaces',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'workspace_members',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('workspace_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['workspace_id'], ['workspaces.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('workspace_id', 'user_id', name='uq_workspace_members_user'),
    )
    op.create_index('idx_workspace_members_user', 'workspace_members', ['user_id'])

    # ==========================================================================
    # assignees
    # ==========================================================================
    for table in ('agents', 'workflows'):
        op.create_table(
            table,
            sa.Column('id', sa.Uuid(), nullable=False),
            sa.Column('workspace_id', sa.Uuid(), nullable=False),
            sa.Column('name', sa.String(200), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.ForeignKeyConstraint(['workspace_id'], ['workspaces.id'], ondelete='CASCADE'),
        )

    # ==========================================================================
    # integrations (api_key holds Fernet ciphertext)
    # ==========================================================================
    op.create_table(
        'integrations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('workspace_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('provider', sa.String(32), nullable=False),
        sa.Column('url', sa.Text(), nullable=True),
        sa.Column('username', sa.String(255), nullable=True),
        sa.Column('api_key', sa.Text(), nullable=True),
        sa.Column('filter_query', sa.Text(), nullable=True),
        sa.Column('jira_type', sa.String(32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['workspace_id'], ['workspaces.id'], ondelete='CASCADE'),
    )
    op.create_index('idx_integrations_workspace_active', 'integrations', ['workspace_id', 'is_active'])

    # ==========================================================================
    # ticket reference tables
    # ==========================================================================
    statuses = op.create_table(
        'ticket_statuses',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('color', sa.String(200), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    priorities = op.create_table(
        'ticket_priorities',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('color', sa.String(200), nullable=False),
        sa.Column('value', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    # ==========================================================================
    # tickets and comments
    # ==========================================================================
    op.create_table(
        'tickets',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('workspace_id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('status_id', sa.Uuid(), nullable=True),
        sa.Column('priority_id', sa.Uuid(), nullable=True),
        sa.Column('is_internal', sa.Boolean(), nullable=False),
        sa.Column('integration_id', sa.Uuid(), nullable=True),
        sa.Column('external_ticket_id', sa.String(255), nullable=True),
        sa.Column('assigned_agent_id', sa.Uuid(), nullable=True),
        sa.Column('assigned_workflow_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['workspace_id'], ['workspaces.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['status_id'], ['ticket_statuses.id']),
        sa.ForeignKeyConstraint(['priority_id'], ['ticket_priorities.id']),
        sa.ForeignKeyConstraint(['integration_id'], ['integrations.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['assigned_agent_id'], ['agents.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['assigned_workflow_id'], ['workflows.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('integration_id', 'external_ticket_id', name='uq_tickets_integration_external'),
    )
    op.create_index('idx_tickets_workspace', 'tickets', ['workspace_id'])
    op.create_index('idx_tickets_workspace_internal', 'tickets', ['workspace_id', 'is_internal'])

    op.create_table(
        'ticket_comments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('ticket_id', sa.Uuid(), nullable=False),
        sa.Column('author', sa.String(255), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id'], ondelete='CASCADE'),
    )
    op.create_index('idx_ticket_comments_ticket', 'ticket_comments', ['ticket_id', 'created_at'])

    # ==========================================================================
    # seed fixed statuses and priorities
    # ==========================================================================
    op.bulk_insert(
        priorities,
        [
            {'id': priority_id, 'name': name, 'color': color, 'value': value}
            for priority_id, name, color, value in TICKET_PRIORITIES
        ],
    )
    op.bulk_insert(
        statuses,
        [
            {'id': status_id, 'name': name, 'color': color}
            for status_id, name, color in TICKET_STATUSES
        ],
    )


def downgrade() -> None:
    op.drop_index('idx_ticket_comments_ticket', table_name='ticket_comments')
    op.drop_table('ticket_comments')
    op.drop_index('idx_tickets_workspace_internal', table_name='tickets')
    op.drop_index('idx_tickets_workspace', table_name='tickets')
    op.drop_table('tickets')
    op.drop_table('ticket_priorities')
    op.drop_table('ticket_statuses')
    op.drop_index('idx_integrations_workspace_active', table_name='integrations')
    op.drop_table('integrations')
    op.drop_table('workflows')
    op.drop_table('agents')
    op.drop_index('idx_workspace_members_user', table_name='workspace_members')
    op.drop_table('workspace_members')
    op.drop_table('workspaces')
