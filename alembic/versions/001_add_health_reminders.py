"""Add recurring health reminders and completion logs

Revision ID: 001_health_reminders
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_health_reminders'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('health_reminders',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('reminder_type', sa.String(), nullable=False, server_default='other'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('sound_id', sa.String(), nullable=True),
        sa.Column('frequency', sa.String(), nullable=False),
        sa.Column('time', sa.String(5), nullable=False),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('days', sa.JSON(), nullable=True),
        sa.Column('day_of_month', sa.Integer(), nullable=True),
        sa.Column('cron_expression', sa.String(), nullable=True),
        sa.Column('timezone', sa.String(), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.text('TRUE')),
        sa.Column('next_due', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notification_id', sa.String(), nullable=True),
        sa.Column('dispatched_notification_id', sa.String(), nullable=True),
        sa.Column('last_completed', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shared_from_user_id', sa.String(), nullable=True),
        sa.Column('shared_from_reminder_id', sa.String(36), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default=sa.text('1')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_health_reminders_user_id', 'health_reminders', ['user_id'])
    op.create_index('ix_health_reminders_next_due', 'health_reminders', ['next_due'])
    op.create_index('ix_health_reminders_user_created', 'health_reminders', ['user_id', 'created_at'])
    op.create_index('ix_health_reminders_enabled_next_due', 'health_reminders', ['enabled', 'next_due'])

    op.create_table('reminder_completion_logs',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('reminder_id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed', sa.Boolean(), nullable=False, server_default=sa.text('TRUE')),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['reminder_id'], ['health_reminders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_reminder_completion_logs_reminder_id', 'reminder_completion_logs', ['reminder_id'])
    op.create_index('ix_reminder_completion_logs_user_id', 'reminder_completion_logs', ['user_id'])
    op.create_index('ix_reminder_completion_logs_reminder_ts', 'reminder_completion_logs', ['reminder_id', 'timestamp'])


def downgrade():
    op.drop_index('ix_reminder_completion_logs_reminder_ts', table_name='reminder_completion_logs')
    op.drop_index('ix_reminder_completion_logs_user_id', table_name='reminder_completion_logs')
    op.drop_index('ix_reminder_completion_logs_reminder_id', table_name='reminder_completion_logs')
    op.drop_table('reminder_completion_logs')

    op.drop_index('ix_health_reminders_enabled_next_due', table_name='health_reminders')
    op.drop_index('ix_health_reminders_user_created', table_name='health_reminders')
    op.drop_index('ix_health_reminders_next_due', table_name='health_reminders')
    op.drop_index('ix_health_reminders_user_id', table_name='health_reminders')
    op.drop_table('health_reminders')
