"""create user, question and room tables

Revision ID: 3c7a9e21b0f4
Revises:
Create Date: 2026-10-17 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c7a9e21b0f4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)

    if 'question' not in existing_tables:
        op.create_table(
            'question',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('creator_id', sa.Integer(), nullable=False),
            sa.Column('title', sa.String(length=200), nullable=False),
            sa.Column('content', sa.Text(), nullable=False),
            sa.Column('options', sa.JSON(), nullable=False),
            sa.Column('correct_answer', sa.Integer(), nullable=False),
            sa.Column('explanation', sa.Text(), nullable=True),
            sa.Column('points', sa.Integer(), nullable=True),
            sa.Column('time_limit', sa.Integer(), nullable=True),
            sa.Column('difficulty', sa.String(length=16), nullable=True),
            sa.Column('category', sa.String(length=64), nullable=True),
            sa.Column('is_public', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['creator_id'], ['user.id']),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_question_creator_id', 'question', ['creator_id'])

    if 'room' not in existing_tables:
        op.create_table(
            'room',
            sa.Column('id', sa.String(length=32), nullable=False),
            sa.Column('code', sa.String(length=16), nullable=False),
            sa.Column('title', sa.String(length=200), nullable=False),
            sa.Column('description', sa.Text(), nullable=False),
            sa.Column('category', sa.String(length=64), nullable=True),
            sa.Column('difficulty', sa.String(length=16), nullable=True),
            sa.Column('creator_id', sa.Integer(), nullable=False),
            sa.Column('creator_name', sa.String(length=64), nullable=True),
            sa.Column('max_participants', sa.Integer(), nullable=False),
            sa.Column('time_limit', sa.Integer(), nullable=False),
            sa.Column('is_public', sa.Boolean(), nullable=False),
            sa.Column('allow_late_join', sa.Boolean(), nullable=False),
            sa.Column('show_leaderboard', sa.Boolean(), nullable=False),
            sa.Column('shuffle_questions', sa.Boolean(), nullable=False),
            sa.Column('allow_chat', sa.Boolean(), nullable=False),
            sa.Column('allow_question_skip', sa.Boolean(), nullable=False),
            sa.Column('show_correct_answers', sa.Boolean(), nullable=False),
            sa.Column('instant_feedback', sa.Boolean(), nullable=False),
            sa.Column('scheduled_start_time', sa.DateTime(), nullable=True),
            sa.Column('status', sa.String(length=16), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.Column('started_at', sa.DateTime(), nullable=True),
            sa.Column('paused_at', sa.DateTime(), nullable=True),
            sa.Column('resumed_at', sa.DateTime(), nullable=True),
            sa.Column('completed_at', sa.DateTime(), nullable=True),
            sa.Column('scheduled_end_time', sa.DateTime(), nullable=True),
            sa.Column('total_questions', sa.Integer(), nullable=False),
            sa.Column('average_score', sa.Integer(), nullable=False),
            sa.Column('completion_rate', sa.Integer(), nullable=False),
            sa.Column('average_rating', sa.Float(), nullable=False),
            sa.Column('total_ratings', sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(['creator_id'], ['user.id']),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_room_code', 'room', ['code'], unique=True)
        op.create_index('ix_room_creator_id', 'room', ['creator_id'])
        op.create_index('ix_room_status', 'room', ['status'])

    if 'room_participant' not in existing_tables:
        op.create_table(
            'room_participant',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('room_id', sa.String(length=32), nullable=False),
            sa.Column('participant_key', sa.String(length=96), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=True),
            sa.Column('user_name', sa.String(length=64), nullable=False),
            sa.Column('is_authenticated', sa.Boolean(), nullable=False),
            sa.Column('joined_at', sa.DateTime(), nullable=False),
            sa.Column('is_active', sa.Boolean(), nullable=False),
            sa.Column('score', sa.Integer(), nullable=False),
            sa.Column('answered_questions', sa.Integer(), nullable=False),
            sa.Column('last_activity', sa.DateTime(), nullable=False),
            sa.Column('final_score', sa.Integer(), nullable=True),
            sa.Column('completed_at', sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(['room_id'], ['room.id']),
            sa.ForeignKeyConstraint(['user_id'], ['user.id']),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('room_id', 'participant_key', name='uq_room_participant_key'),
        )
        op.create_index('ix_room_participant_room_id', 'room_participant', ['room_id'])

    if 'room_question' not in existing_tables:
        op.create_table(
            'room_question',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('room_id', sa.String(length=32), nullable=False),
            sa.Column('question_id', sa.Integer(), nullable=False),
            sa.Column('order', sa.Integer(), nullable=False),
            sa.Column('is_required', sa.Boolean(), nullable=False),
            sa.Column('time_limit', sa.Integer(), nullable=True),
            sa.Column('points', sa.Integer(), nullable=True),
            sa.Column('added_at', sa.DateTime(), nullable=False),
            sa.Column('added_by', sa.Integer(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(['room_id'], ['room.id']),
            sa.ForeignKeyConstraint(['question_id'], ['question.id']),
            sa.ForeignKeyConstraint(['added_by'], ['user.id']),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('room_id', 'question_id', name='uq_room_question'),
        )
        op.create_index('ix_room_question_room_id', 'room_question', ['room_id'])

    if 'answer_record' not in existing_tables:
        op.create_table(
            'answer_record',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('room_id', sa.String(length=32), nullable=False),
            sa.Column('question_id', sa.Integer(), nullable=False),
            sa.Column('participant_key', sa.String(length=96), nullable=False),
            sa.Column('selected_answer', sa.Integer(), nullable=True),
            sa.Column('is_correct', sa.Boolean(), nullable=False),
            sa.Column('points_awarded', sa.Integer(), nullable=False),
            sa.Column('time_spent', sa.Integer(), nullable=False),
            sa.Column('answered_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['room_id'], ['room.id']),
            sa.ForeignKeyConstraint(['question_id'], ['question.id']),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('room_id', 'question_id', 'participant_key', name='uq_answer_record_key'),
        )
        op.create_index('ix_answer_record_room_id', 'answer_record', ['room_id'])
        op.create_index('ix_answer_record_participant_key', 'answer_record', ['participant_key'])

    if 'room_session' not in existing_tables:
        op.create_table(
            'room_session',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('room_id', sa.String(length=32), nullable=False),
            sa.Column('room_code', sa.String(length=16), nullable=False),
            sa.Column('started_by', sa.Integer(), nullable=True),
            sa.Column('started_at', sa.DateTime(), nullable=True),
            sa.Column('scheduled_end_time', sa.DateTime(), nullable=True),
            sa.Column('current_question', sa.Integer(), nullable=False),
            sa.Column('question_start_time', sa.DateTime(), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=False),
            sa.Column('is_paused', sa.Boolean(), nullable=False),
            sa.Column('paused_at', sa.DateTime(), nullable=True),
            sa.Column('resumed_at', sa.DateTime(), nullable=True),
            sa.Column('ended_at', sa.DateTime(), nullable=True),
            sa.Column('ended_by', sa.Integer(), nullable=True),
            sa.Column('total_questions', sa.Integer(), nullable=False),
            sa.Column('final_statistics', sa.JSON(), nullable=True),
            sa.ForeignKeyConstraint(['room_id'], ['room.id']),
            sa.ForeignKeyConstraint(['started_by'], ['user.id']),
            sa.ForeignKeyConstraint(['ended_by'], ['user.id']),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('room_id'),
        )

    if 'room_activity' not in existing_tables:
        op.create_table(
            'room_activity',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('room_id', sa.String(length=32), nullable=False),
            sa.Column('room_code', sa.String(length=16), nullable=True),
            sa.Column('user_id', sa.Integer(), nullable=True),
            sa.Column('user_name', sa.String(length=64), nullable=True),
            sa.Column('action', sa.String(length=64), nullable=False),
            sa.Column('details', sa.JSON(), nullable=True),
            sa.Column('timestamp', sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_room_activity_room_id', 'room_activity', ['room_id'])

    if 'room_rating' not in existing_tables:
        op.create_table(
            'room_rating',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('room_id', sa.String(length=32), nullable=False),
            sa.Column('participant_key', sa.String(length=96), nullable=False),
            sa.Column('user_name', sa.String(length=64), nullable=True),
            sa.Column('rating', sa.Integer(), nullable=False),
            sa.Column('is_authenticated', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['room_id'], ['room.id']),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('room_id', 'participant_key', name='uq_room_rating_key'),
        )
        op.create_index('ix_room_rating_room_id', 'room_rating', ['room_id'])


def downgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    # Children first
    for table in ('room_rating', 'room_activity', 'room_session', 'answer_record',
                  'room_question', 'room_participant', 'room', 'question', 'user'):
        if table in existing_tables:
            op.drop_table(table)
