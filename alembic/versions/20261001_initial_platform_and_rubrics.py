"""Initial platform, staffing and capability rubric tables

Revision ID: 20261001_platform_rubrics
Revises:
Create Date: 2026-10-01

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261001_platform_rubrics'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('role', sa.Enum('client', 'instructor', 'coach', 'admin', name='userrole'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_users_id', 'users', ['id'], unique=False)
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'programs',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_table(
        'program_modules',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('program_id', sa.String(), sa.ForeignKey('programs.id'), nullable=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        'client_enrollments',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('client_user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('program_id', sa.String(), sa.ForeignKey('programs.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_table(
        'module_progress',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('module_id', sa.String(), sa.ForeignKey('program_modules.id'), nullable=False),
        sa.Column('enrollment_id', sa.String(), sa.ForeignKey('client_enrollments.id'), nullable=False),
    )

    for table, scope_col, scope_fk, user_col, constraint in (
        ('module_instructors', 'module_id', 'program_modules.id', 'instructor_id', 'uq_module_instructor'),
        ('module_coaches', 'module_id', 'program_modules.id', 'coach_id', 'uq_module_coach'),
        ('program_instructors', 'program_id', 'programs.id', 'instructor_id', 'uq_program_instructor'),
        ('program_coaches', 'program_id', 'programs.id', 'coach_id', 'uq_program_coach'),
    ):
        op.create_table(
            table,
            sa.Column('id', sa.String(), primary_key=True),
            sa.Column(scope_col, sa.String(), sa.ForeignKey(scope_fk), nullable=False),
            sa.Column(user_col, sa.String(), sa.ForeignKey('users.id'), nullable=False),
            sa.UniqueConstraint(scope_col, user_col, name=constraint),
        )
        op.create_index(f'ix_{table}_{scope_col}', table, [scope_col], unique=False)
        op.create_index(f'ix_{table}_{user_col}', table, [user_col], unique=False)

    op.create_table(
        'capability_assessments',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('rating_scale', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('pass_fail_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('pass_fail_threshold', sa.Float(), nullable=True),
        sa.Column('pass_fail_mode', sa.String(), nullable=True, server_default='overall'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_table(
        'capability_domains',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('assessment_id', sa.String(), sa.ForeignKey('capability_assessments.id'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('order_index', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_index('ix_capability_domains_assessment_id', 'capability_domains', ['assessment_id'], unique=False)
    op.create_table(
        'capability_domain_questions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('domain_id', sa.String(), sa.ForeignKey('capability_domains.id'), nullable=False),
        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('order_index', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_index('ix_capability_domain_questions_domain_id', 'capability_domain_questions', ['domain_id'], unique=False)

    op.create_table(
        'module_assignment_types',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('structure', sa.JSON(), nullable=False),
        sa.Column('scoring_assessment_id', sa.String(), sa.ForeignKey('capability_assessments.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_table(
        'module_assignment_configs',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('module_id', sa.String(), sa.ForeignKey('program_modules.id'), nullable=False),
        sa.Column('assignment_type_id', sa.String(), sa.ForeignKey('module_assignment_types.id'), nullable=False),
        sa.Column('linked_capability_assessment_id', sa.String(), sa.ForeignKey('capability_assessments.id'), nullable=True),
        sa.UniqueConstraint('module_id', 'assignment_type_id', name='uq_module_assignment_config'),
    )


def downgrade() -> None:
    op.drop_table('module_assignment_configs')
    op.drop_table('module_assignment_types')
    op.drop_index('ix_capability_domain_questions_domain_id', table_name='capability_domain_questions')
    op.drop_table('capability_domain_questions')
    op.drop_index('ix_capability_domains_assessment_id', table_name='capability_domains')
    op.drop_table('capability_domains')
    op.drop_table('capability_assessments')
    for table in ('program_coaches', 'program_instructors', 'module_coaches', 'module_instructors'):
        op.drop_table(table)
    op.drop_table('module_progress')
    op.drop_table('client_enrollments')
    op.drop_table('program_modules')
    op.drop_table('programs')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_index('ix_users_id', table_name='users')
    op.drop_table('users')
    op.execute('DROP TYPE IF EXISTS userrole')
