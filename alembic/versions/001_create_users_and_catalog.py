"""create rw_users, rw_patterns, rw_questions

Revision ID: 001
Revises:
Create Date: 2026-01-12

Users are keyed by the identity provider's subject id.
Patterns and questions are seeded separately and never edited by the API.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Enum type name must match the models.py Enum class name
DIFFICULTY = postgresql.ENUM(
    'Easy', 'Medium', 'Hard',
    name='difficulty',
    create_type=False,
)


def upgrade() -> None:
    DIFFICULTY.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'rw_users',
        sa.Column('id', sa.UUID(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('interview_target_days', sa.Integer(), nullable=False, server_default='90'),
        sa.Column('current_readiness_days', sa.Float(), nullable=False, server_default='90'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('NOW()'), nullable=False),
        sa.CheckConstraint(
            'current_readiness_days >= 0 AND current_readiness_days <= interview_target_days',
            name='ck_rw_users_readiness_range',
        ),
    )

    op.create_table(
        'rw_patterns',
        sa.Column('id', sa.UUID(), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('importance_weight', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('short_mental_model', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_unique_constraint('uq_rw_patterns_name', 'rw_patterns', ['name'])

    op.create_table(
        'rw_questions',
        sa.Column('id', sa.UUID(), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('difficulty', DIFFICULTY, nullable=False),
        sa.Column('leetcode_url', sa.String(500), nullable=True),
        sa.Column('time_minutes', sa.Integer(), nullable=True),
        sa.Column('order_index', sa.Integer(), nullable=False),
        sa.Column('pattern_id', sa.UUID(), sa.ForeignKey('rw_patterns.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_unique_constraint('uq_rw_questions_order_index', 'rw_questions', ['order_index'])
    op.create_index('ix_rw_questions_pattern_id', 'rw_questions', ['pattern_id'])


def downgrade() -> None:
    op.drop_index('ix_rw_questions_pattern_id', table_name='rw_questions')
    op.drop_table('rw_questions')
    op.drop_table('rw_patterns')
    op.drop_table('rw_users')
    DIFFICULTY.drop(op.get_bind(), checkfirst=True)
