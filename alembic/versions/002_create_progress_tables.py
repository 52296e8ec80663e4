"""create progress tables

Revision ID: 002
Revises: 001
Create Date: 2026-01-19

Everything a progress reset deletes: user questions, solutions, recordings,
AI feedback, pattern stats, readiness events, revision schedules/sessions.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


USER_QUESTION_STATUS = postgresql.ENUM(
    'NOT_STARTED', 'STARTED', 'DONE',
    name='userquestionstatus',
    create_type=False,
)
ANALYSIS_STATUS = postgresql.ENUM(
    'PENDING', 'PROCESSING', 'COMPLETED', 'FAILED',
    name='analysisstatus',
    create_type=False,
)
FEEDBACK_TYPE = postgresql.ENUM(
    'HINT', 'REFLECTION_QUESTION', 'COMMUNICATION_TIP',
    name='feedbacktype',
    create_type=False,
)
REVISION_REASON = postgresql.ENUM(
    'LOW_CONFIDENCE', 'TIME_DECAY', 'PATTERN_WEAKNESS', 'MANUAL',
    name='revisionreason',
    create_type=False,
)

ENUMS = [USER_QUESTION_STATUS, ANALYSIS_STATUS, FEEDBACK_TYPE, REVISION_REASON]


def _id():
    return sa.Column('id', sa.UUID(), primary_key=True, server_default=sa.text('gen_random_uuid()'))


def _created_at():
    return sa.Column('created_at', sa.DateTime(), server_default=sa.text('NOW()'), nullable=False)


def upgrade() -> None:
    for enum_type in ENUMS:
        enum_type.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'rw_user_questions',
        _id(),
        sa.Column('user_id', sa.UUID(), sa.ForeignKey('rw_users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question_id', sa.UUID(), sa.ForeignKey('rw_questions.id'), nullable=False),
        sa.Column('status', USER_QUESTION_STATUS, nullable=False, server_default='NOT_STARTED'),
        sa.Column('confidence_score', sa.Integer(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('done_at', sa.DateTime(), nullable=True),
        sa.Column('solved_duration_seconds', sa.Integer(), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('NOW()'), nullable=False),
        sa.CheckConstraint(
            "confidence_score IS NULL OR confidence_score BETWEEN 1 AND 5",
            name='ck_rw_user_questions_confidence',
        ),
    )
    op.create_unique_constraint(
        'uq_rw_user_questions_user_question', 'rw_user_questions', ['user_id', 'question_id']
    )
    op.create_index('ix_rw_user_questions_user_id', 'rw_user_questions', ['user_id'])

    op.create_table(
        'rw_solutions',
        _id(),
        sa.Column('user_question_id', sa.UUID(),
                  sa.ForeignKey('rw_user_questions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('code', sa.Text(), nullable=False),
        sa.Column('language', sa.String(50), nullable=False),
        sa.Column('leetcode_link', sa.String(500), nullable=True),
        sa.Column('is_optimal', sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
    )
    op.create_index('ix_rw_solutions_user_question_id', 'rw_solutions', ['user_question_id'])

    op.create_table(
        'rw_explanation_recordings',
        _id(),
        sa.Column('user_question_id', sa.UUID(),
                  sa.ForeignKey('rw_user_questions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('audio_url', sa.String(1000), nullable=True),
        sa.Column('transcript', sa.Text(), nullable=True),
        sa.Column('duration_seconds', sa.Integer(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('recorded_at', sa.DateTime(), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('analysis_status', ANALYSIS_STATUS, nullable=False, server_default='PENDING'),
    )
    op.create_unique_constraint(
        'uq_rw_recordings_version', 'rw_explanation_recordings', ['user_question_id', 'version']
    )
    op.create_index(
        'ix_rw_explanation_recordings_user_question_id', 'rw_explanation_recordings', ['user_question_id']
    )

    op.create_table(
        'rw_ai_feedback',
        _id(),
        sa.Column('user_question_id', sa.UUID(),
                  sa.ForeignKey('rw_user_questions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('recording_id', sa.UUID(),
                  sa.ForeignKey('rw_explanation_recordings.id', ondelete='CASCADE'), nullable=True),
        sa.Column('type', FEEDBACK_TYPE, nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        _created_at(),
    )
    op.create_index('ix_rw_ai_feedback_user_question_id', 'rw_ai_feedback', ['user_question_id'])
    op.create_index('ix_rw_ai_feedback_recording_id', 'rw_ai_feedback', ['recording_id'])

    op.create_table(
        'rw_user_pattern_stats',
        _id(),
        sa.Column('user_id', sa.UUID(), sa.ForeignKey('rw_users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('pattern_id', sa.UUID(), sa.ForeignKey('rw_patterns.id'), nullable=False),
        sa.Column('questions_attempted', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('questions_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('avg_confidence', sa.Float(), nullable=False, server_default='0'),
        sa.Column('last_practiced_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            'questions_completed <= questions_attempted', name='ck_rw_pattern_stats_counts'
        ),
    )
    op.create_unique_constraint(
        'uq_rw_pattern_stats_user_pattern', 'rw_user_pattern_stats', ['user_id', 'pattern_id']
    )
    op.create_index('ix_rw_user_pattern_stats_user_id', 'rw_user_pattern_stats', ['user_id'])

    op.create_table(
        'rw_readiness_events',
        _id(),
        sa.Column('user_id', sa.UUID(), sa.ForeignKey('rw_users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('change_delta_days', sa.Float(), nullable=False),
        sa.Column('reason', sa.String(500), nullable=False),
        sa.Column('related_question_id', sa.UUID(), sa.ForeignKey('rw_questions.id'), nullable=True),
        _created_at(),
    )
    op.create_index('ix_rw_readiness_events_user_id', 'rw_readiness_events', ['user_id'])

    op.create_table(
        'rw_revision_schedules',
        _id(),
        sa.Column('user_id', sa.UUID(), sa.ForeignKey('rw_users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_question_id', sa.UUID(),
                  sa.ForeignKey('rw_user_questions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('pattern_id', sa.UUID(), sa.ForeignKey('rw_patterns.id'), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(), nullable=False),
        sa.Column('reason', REVISION_REASON, nullable=False),
        sa.Column('priority_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        _created_at(),
    )
    op.create_index('ix_rw_revision_schedules_user_id', 'rw_revision_schedules', ['user_id'])
    # One open schedule per user question; concurrent generators lose on this index
    op.create_index(
        'uq_rw_revision_schedules_open',
        'rw_revision_schedules',
        ['user_question_id'],
        unique=True,
        postgresql_where=sa.text('completed_at IS NULL'),
    )

    op.create_table(
        'rw_revision_sessions',
        _id(),
        sa.Column('revision_schedule_id', sa.UUID(),
                  sa.ForeignKey('rw_revision_schedules.id', ondelete='CASCADE'), nullable=False),
        sa.Column('listened_audio_version', sa.Integer(), nullable=True),
        sa.Column('rerecorded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('new_confidence_score', sa.Integer(), nullable=True),
        _created_at(),
    )
    op.create_unique_constraint(
        'uq_rw_revision_sessions_schedule', 'rw_revision_sessions', ['revision_schedule_id']
    )


def downgrade() -> None:
    op.drop_table('rw_revision_sessions')
    op.drop_index('uq_rw_revision_schedules_open', table_name='rw_revision_schedules')
    op.drop_table('rw_revision_schedules')
    op.drop_table('rw_readiness_events')
    op.drop_table('rw_user_pattern_stats')
    op.drop_table('rw_ai_feedback')
    op.drop_table('rw_explanation_recordings')
    op.drop_table('rw_solutions')
    op.drop_table('rw_user_questions')
    for enum_type in reversed(ENUMS):
        enum_type.drop(op.get_bind(), checkfirst=True)
