"""Add module assignments, capability snapshots and the notification outbox

Revision ID: 20261002_assignments_outbox
Revises: 20261001_platform_rubrics
Create Date: 2026-10-02

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261002_assignments_outbox'
down_revision: Union[str, Sequence[str], None] = '20261001_platform_rubrics'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'capability_snapshots',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('assessment_id', sa.String(), sa.ForeignKey('capability_assessments.id'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('enrollment_id', sa.String(), sa.ForeignKey('client_enrollments.id'), nullable=True),
        sa.Column('evaluator_id', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('is_self_assessment', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', sa.String(), nullable=False, server_default='draft'),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_capability_snapshots_user_id', 'capability_snapshots', ['user_id'], unique=False)

    op.create_table(
        'capability_snapshot_ratings',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('snapshot_id', sa.String(), sa.ForeignKey('capability_snapshots.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question_id', sa.String(), sa.ForeignKey('capability_domain_questions.id'), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.UniqueConstraint('snapshot_id', 'question_id', name='uq_snapshot_rating_question'),
    )
    op.create_table(
        'capability_question_notes',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('snapshot_id', sa.String(), sa.ForeignKey('capability_snapshots.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question_id', sa.String(), sa.ForeignKey('capability_domain_questions.id'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.UniqueConstraint('snapshot_id', 'question_id', name='uq_snapshot_question_note'),
    )
    op.create_table(
        'capability_domain_notes',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('snapshot_id', sa.String(), sa.ForeignKey('capability_snapshots.id', ondelete='CASCADE'), nullable=False),
        sa.Column('domain_id', sa.String(), sa.ForeignKey('capability_domains.id'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.UniqueConstraint('snapshot_id', 'domain_id', name='uq_snapshot_domain_note'),
    )

    op.create_table(
        'module_assignments',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('module_progress_id', sa.String(), sa.ForeignKey('module_progress.id'), nullable=False),
        sa.Column('assignment_type_id', sa.String(), sa.ForeignKey('module_assignment_types.id'), nullable=False),
        sa.Column('assessor_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('responses', sa.JSON(), nullable=False),
        sa.Column('overall_score', sa.Float(), nullable=True),
        sa.Column('overall_comments', sa.Text(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='draft'),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('is_private', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('scoring_snapshot_id', sa.String(), sa.ForeignKey('capability_snapshots.id'), nullable=True),
        sa.Column('scored_by', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('scored_at', sa.DateTime(), nullable=True),
        sa.Column('instructor_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('module_progress_id', 'assignment_type_id', name='uq_module_assignment_progress_type'),
    )
    op.create_index('ix_module_assignments_module_progress_id', 'module_assignments', ['module_progress_id'], unique=False)
    op.create_index('ix_module_assignments_status', 'module_assignments', ['status'], unique=False)

    op.create_table(
        'notifications',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('link', sa.String(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'], unique=False)

    op.create_table(
        'notification_preferences',
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), primary_key=True),
        sa.Column('assignment_submitted', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('assignment_graded', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'notification_events',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('recipient_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assignment_id', sa.String(), sa.ForeignKey('module_assignments.id'), nullable=True),
        sa.Column('dedupe_key', sa.String(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('dedupe_key', name='uq_notification_events_dedupe_key'),
    )
    op.create_index('ix_notification_events_recipient_id', 'notification_events', ['recipient_id'], unique=False)
    op.create_index('ix_notification_events_assignment_id', 'notification_events', ['assignment_id'], unique=False)
    op.create_index('ix_notification_events_status', 'notification_events', ['status'], unique=False)

    op.create_table(
        'device_tokens',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('fcm_token', sa.String(), nullable=False),
        sa.Column('platform', sa.Enum('ios', 'android', 'web', name='deviceplatform'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('last_used', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_device_tokens_user_id', 'device_tokens', ['user_id'], unique=False)
    op.create_index('ix_device_tokens_fcm_token', 'device_tokens', ['fcm_token'], unique=True)


def downgrade() -> None:
    op.drop_index('ix_device_tokens_fcm_token', table_name='device_tokens')
    op.drop_index('ix_device_tokens_user_id', table_name='device_tokens')
    op.drop_table('device_tokens')
    op.execute('DROP TYPE IF EXISTS deviceplatform')
    op.drop_index('ix_notification_events_status', table_name='notification_events')
    op.drop_index('ix_notification_events_assignment_id', table_name='notification_events')
    op.drop_index('ix_notification_events_recipient_id', table_name='notification_events')
    op.drop_table('notification_events')
    op.drop_table('notification_preferences')
    op.drop_index('ix_notifications_user_id', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('ix_module_assignments_status', table_name='module_assignments')
    op.drop_index('ix_module_assignments_module_progress_id', table_name='module_assignments')
    op.drop_table('module_assignments')
    op.drop_table('capability_domain_notes')
    op.drop_table('capability_question_notes')
    op.drop_table('capability_snapshot_ratings')
    op.drop_index('ix_capability_snapshots_user_id', table_name='capability_snapshots')
    op.drop_table('capability_snapshots')
