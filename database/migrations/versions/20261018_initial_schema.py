"""Initial schema - workflows, steps, enrollments, nudge tracking, step executions

The engine tables reference the CRM-owned `leads` and `campaigns` tables,
which this revision does not create. Upgrading a database without them stops
with an error before any table is created; scripts/create_all_tables.py builds
a standalone development database including the CRM tables.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from alembic import context, op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

OPEN_ENROLLMENT = sa.text("status IN ('active', 'paused')")

# Owned by the CRM, referenced by foreign keys below
CRM_TABLES = ('leads', 'campaigns')


def _require_crm_tables() -> None:
    if context.is_offline_mode():
        return

    existing = set(sa.inspect(op.get_bind()).get_table_names())
    missing = [table for table in CRM_TABLES if table not in existing]
    if missing:
        raise RuntimeError(
            f"CRM table(s) {', '.join(missing)} must exist before this revision; "
            "use scripts/create_all_tables.py for a standalone database"
        )


def upgrade() -> None:
    """Create tables for the LeadFlow workflow engine"""
    _require_crm_tables()

    # Create campaign_workflows table
    op.create_table(
        'campaign_workflows',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_campaign_workflows_id'), 'campaign_workflows', ['id'], unique=False)
    op.create_index(op.f('ix_campaign_workflows_user_id'), 'campaign_workflows', ['user_id'], unique=False)
    op.create_index(op.f('ix_campaign_workflows_name'), 'campaign_workflows', ['name'], unique=False)

    # Create workflow_steps table
    op.create_table(
        'workflow_steps',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('workflow_id', sa.Integer(), nullable=False),
        sa.Column('step_number', sa.Integer(), nullable=False),
        sa.Column('step_type', sa.String(length=50), nullable=False),
        sa.Column('step_config', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['workflow_id'], ['campaign_workflows.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('workflow_id', 'step_number', name='uq_workflow_steps_workflow_step_number')
    )
    op.create_index(op.f('ix_workflow_steps_id'), 'workflow_steps', ['id'], unique=False)
    op.create_index(op.f('ix_workflow_steps_workflow_id'), 'workflow_steps', ['workflow_id'], unique=False)

    # Create lead_workflow_progress table
    op.create_table(
        'lead_workflow_progress',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('lead_id', sa.Integer(), nullable=False),
        sa.Column('workflow_id', sa.Integer(), nullable=False),
        sa.Column('campaign_id', sa.Integer(), nullable=True),
        sa.Column('current_step_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('next_action_at', sa.DateTime(), nullable=True),
        sa.Column('last_action_at', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('removal_reason', sa.Text(), nullable=True),
        sa.Column('claimed_until', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['lead_id'], ['leads.id'], ),
        sa.ForeignKeyConstraint(['workflow_id'], ['campaign_workflows.id'], ),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], ),
        sa.ForeignKeyConstraint(['current_step_id'], ['workflow_steps.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_lead_workflow_progress_id'), 'lead_workflow_progress', ['id'], unique=False)
    op.create_index(op.f('ix_lead_workflow_progress_user_id'), 'lead_workflow_progress', ['user_id'], unique=False)
    op.create_index(op.f('ix_lead_workflow_progress_lead_id'), 'lead_workflow_progress', ['lead_id'], unique=False)
    op.create_index(op.f('ix_lead_workflow_progress_workflow_id'), 'lead_workflow_progress', ['workflow_id'], unique=False)
    op.create_index(op.f('ix_lead_workflow_progress_campaign_id'), 'lead_workflow_progress', ['campaign_id'], unique=False)
    op.create_index('ix_lead_workflow_progress_due', 'lead_workflow_progress', ['status', 'next_action_at'], unique=False)
    op.create_index(
        'uq_lead_workflow_progress_open_enrollment',
        'lead_workflow_progress',
        ['lead_id', 'workflow_id'],
        unique=True,
        postgresql_where=OPEN_ENROLLMENT,
        sqlite_where=OPEN_ENROLLMENT
    )

    # Create lead_nudge_tracking table
    op.create_table(
        'lead_nudge_tracking',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('lead_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('nudge_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_ai_contact_at', sa.DateTime(), nullable=True),
        sa.Column('is_engaged', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sequence_paused', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('pause_reason', sa.String(length=255), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['lead_id'], ['leads.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_lead_nudge_tracking_id'), 'lead_nudge_tracking', ['id'], unique=False)
    op.create_index(op.f('ix_lead_nudge_tracking_lead_id'), 'lead_nudge_tracking', ['lead_id'], unique=True)

    # Create workflow_step_executions table
    op.create_table(
        'workflow_step_executions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('progress_id', sa.Integer(), nullable=False),
        sa.Column('lead_id', sa.Integer(), nullable=False),
        sa.Column('workflow_id', sa.Integer(), nullable=False),
        sa.Column('step_id', sa.Integer(), nullable=True),
        sa.Column('step_number', sa.Integer(), nullable=True),
        sa.Column('step_type', sa.String(length=50), nullable=True),
        sa.Column('action', sa.String(length=100), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('execution_time', sa.Float(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['progress_id'], ['lead_workflow_progress.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_workflow_step_executions_id'), 'workflow_step_executions', ['id'], unique=False)
    op.create_index(op.f('ix_workflow_step_executions_progress_id'), 'workflow_step_executions', ['progress_id'], unique=False)
    op.create_index(op.f('ix_workflow_step_executions_lead_id'), 'workflow_step_executions', ['lead_id'], unique=False)
    op.create_index(op.f('ix_workflow_step_executions_workflow_id'), 'workflow_step_executions', ['workflow_id'], unique=False)
    op.create_index(op.f('ix_workflow_step_executions_timestamp'), 'workflow_step_executions', ['timestamp'], unique=False)


def downgrade() -> None:
    """Drop all LeadFlow engine tables"""
    op.drop_index(op.f('ix_workflow_step_executions_timestamp'), table_name='workflow_step_executions')
    op.drop_index(op.f('ix_workflow_step_executions_workflow_id'), table_name='workflow_step_executions')
    op.drop_index(op.f('ix_workflow_step_executions_lead_id'), table_name='workflow_step_executions')
    op.drop_index(op.f('ix_workflow_step_executions_progress_id'), table_name='workflow_step_executions')
    op.drop_index(op.f('ix_workflow_step_executions_id'), table_name='workflow_step_executions')
    op.drop_table('workflow_step_executions')

    op.drop_index(op.f('ix_lead_nudge_tracking_lead_id'), table_name='lead_nudge_tracking')
    op.drop_index(op.f('ix_lead_nudge_tracking_id'), table_name='lead_nudge_tracking')
    op.drop_table('lead_nudge_tracking')

    op.drop_index('uq_lead_workflow_progress_open_enrollment', table_name='lead_workflow_progress')
    op.drop_index('ix_lead_workflow_progress_due', table_name='lead_workflow_progress')
    op.drop_index(op.f('ix_lead_workflow_progress_campaign_id'), table_name='lead_workflow_progress')
    op.drop_index(op.f('ix_lead_workflow_progress_workflow_id'), table_name='lead_workflow_progress')
    op.drop_index(op.f('ix_lead_workflow_progress_lead_id'), table_name='lead_workflow_progress')
    op.drop_index(op.f('ix_lead_workflow_progress_user_id'), table_name='lead_workflow_progress')
    op.drop_index(op.f('ix_lead_workflow_progress_id'), table_name='lead_workflow_progress')
    op.drop_table('lead_workflow_progress')

    op.drop_index(op.f('ix_workflow_steps_workflow_id'), table_name='workflow_steps')
    op.drop_index(op.f('ix_workflow_steps_id'), table_name='workflow_steps')
    op.drop_table('workflow_steps')

    op.drop_index(op.f('ix_campaign_workflows_name'), table_name='campaign_workflows')
    op.drop_index(op.f('ix_campaign_workflows_user_id'), table_name='campaign_workflows')
    op.drop_index(op.f('ix_campaign_workflows_id'), table_name='campaign_workflows')
    op.drop_table('campaign_workflows')
