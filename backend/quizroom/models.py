from quizroom import db, bcrypt
from flask import current_app
from flask_login import UserMixin
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional
import random
import string
import uuid

from quizroom.identity import ParticipantKey

ROOM_STATUSES = ('waiting', 'active', 'paused', 'completed', 'cancelled')
DIFFICULTIES = ('easy', 'medium', 'hard')
ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    return value.isoformat() + 'Z' if value else None


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


class Question(db.Model):
    """Catalog question. Owned outside the room core, which only reads it."""
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    creator_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False, default='')
    options = db.Column(db.JSON, nullable=False, default=list)
    correct_answer = db.Column(db.Integer, nullable=False)
    explanation = db.Column(db.Text, nullable=True)
    points = db.Column(db.Integer, nullable=True)
    time_limit = db.Column(db.Integer, nullable=True)  # seconds
    difficulty = db.Column(db.String(16), nullable=True)
    category = db.Column(db.String(64), nullable=True)
    is_public = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self, include_answer=False):
        data = {
            'id': self.id,
            'title': self.title,
            'content': self.content,
            'options': list(self.options or []),
            'difficulty': self.difficulty,
            'category': self.category,
            'points': self.points,
            'time_limit': self.time_limit,
            'created_at': isoformat(self.created_at),
        }
        if include_answer:
            data['correct_answer'] = self.correct_answer
            data['explanation'] = self.explanation
        return data


@dataclass(frozen=True)
class RoomSettings:
    allow_chat: bool = True
    allow_question_skip: bool = False
    show_correct_answers: bool = True
    instant_feedback: bool = True

    def to_dict(self):
        return asdict(self)


SETTING_FIELDS = tuple(RoomSettings.__dataclass_fields__)


def generate_room_code(length=None, attempts=None):
    """Generate a unique, upper-case share code."""
    length = length or int(current_app.config.get('ROOM_CODE_LENGTH', 6))
    attempts = attempts or int(current_app.config.get('ROOM_CODE_ATTEMPTS', 10))
    for _ in range(attempts):
        code = ''.join(random.choices(ROOM_CODE_ALPHABET, k=length))
        if not Room.query.filter_by(code=code).first():
            return code
    raise RuntimeError('Failed to generate unique room code')


class Room(db.Model):
    __tablename__ = 'room'
    id = db.Column(db.String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    code = db.Column(db.String(16), unique=True, nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False, default='')
    category = db.Column(db.String(64), nullable=True)
    difficulty = db.Column(db.String(16), nullable=True)
    creator_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    creator_name = db.Column(db.String(64), nullable=True)
    max_participants = db.Column(db.Integer, nullable=False, default=50)
    time_limit = db.Column(db.Integer, nullable=False, default=30)  # minutes
    is_public = db.Column(db.Boolean, nullable=False, default=False)
    allow_late_join = db.Column(db.Boolean, nullable=False, default=False)
    show_leaderboard = db.Column(db.Boolean, nullable=False, default=True)
    shuffle_questions = db.Column(db.Boolean, nullable=False, default=False)
    # Behaviour settings (see RoomSettings)
    allow_chat = db.Column(db.Boolean, nullable=False, default=True)
    allow_question_skip = db.Column(db.Boolean, nullable=False, default=False)
    show_correct_answers = db.Column(db.Boolean, nullable=False, default=True)
    instant_feedback = db.Column(db.Boolean, nullable=False, default=True)
    scheduled_start_time = db.Column(db.DateTime, nullable=True)
    status = db.Column(db.String(16), nullable=False, default='waiting', index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    started_at = db.Column(db.DateTime, nullable=True)
    paused_at = db.Column(db.DateTime, nullable=True)
    resumed_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    scheduled_end_time = db.Column(db.DateTime, nullable=True)
    # Statistics snapshot; total_questions is kept live, the rest is frozen at completion
    total_questions = db.Column(db.Integer, nullable=False, default=0)
    average_score = db.Column(db.Integer, nullable=False, default=0)
    completion_rate = db.Column(db.Integer, nullable=False, default=0)
    average_rating = db.Column(db.Float, nullable=False, default=0.0)
    total_ratings = db.Column(db.Integer, nullable=False, default=0)

    participants = db.relationship(
        'RoomParticipant', back_populates='room', order_by='RoomParticipant.joined_at',
        cascade='all, delete-orphan',
    )
    questions = db.relationship(
        'RoomQuestion', back_populates='room', order_by='RoomQuestion.order',
        cascade='all, delete-orphan',
    )

    def __init__(self, **kwargs):
        super(Room, self).__init__(**kwargs)
        if not self.code:
            self.code = generate_room_code()

    @property
    def settings(self) -> RoomSettings:
        return RoomSettings(**{field: bool(getattr(self, field)) for field in SETTING_FIELDS})

    def apply_settings(self, settings: RoomSettings) -> None:
        for field in SETTING_FIELDS:
            setattr(self, field, getattr(settings, field))

    @property
    def current_participants(self) -> int:
        return len(self.participants)

    @property
    def statistics(self):
        return {
            'total_questions': self.total_questions,
            'average_score': self.average_score,
            'completion_rate': self.completion_rate,
            'average_rating': self.average_rating,
            'total_ratings': self.total_ratings,
        }

    def is_deadline_passed(self, now=None) -> bool:
        if not self.scheduled_end_time:
            return False
        return (now or utcnow()) > self.scheduled_end_time

    def time_remaining(self, now=None) -> Optional[int]:
        """Whole seconds until scheduled_end_time while the room is running."""
        if self.status not in ('active', 'paused') or not self.scheduled_end_time:
            return None
        delta = self.scheduled_end_time - (now or utcnow())
        return max(0, int(delta.total_seconds()))

    def find_participant(self, key: ParticipantKey) -> Optional['RoomParticipant']:
        wanted = str(key)
        for participant in self.participants:
            if participant.participant_key == wanted:
                return participant
        return None

    def summary(self):
        return {
            'id': self.id,
            'code': self.code,
            'title': self.title,
            'description': self.description,
            'status': self.status,
            'category': self.category,
            'difficulty': self.difficulty,
            'creator_name': self.creator_name,
            'current_participants': self.current_participants,
            'max_participants': self.max_participants,
            'allow_late_join': self.allow_late_join,
            'is_public': self.is_public,
            'time_limit': self.time_limit,
            'scheduled_start_time': isoformat(self.scheduled_start_time),
        }

    def to_dict(self, include_participants=True):
        data = self.summary()
        data.update({
            'creator_id': self.creator_id,
            'show_leaderboard': self.show_leaderboard,
            'shuffle_questions': self.shuffle_questions,
            'settings': self.settings.to_dict(),
            'statistics': self.statistics,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
            'started_at': isoformat(self.started_at),
            'paused_at': isoformat(self.paused_at),
            'resumed_at': isoformat(self.resumed_at),
            'completed_at': isoformat(self.completed_at),
            'scheduled_end_time': isoformat(self.scheduled_end_time),
        })
        if include_participants:
            data['participants'] = [p.to_dict() for p in self.participants]
        return data


class RoomParticipant(db.Model):
    __tablename__ = 'room_participant'
    __table_args__ = (
        db.UniqueConstraint('room_id', 'participant_key', name='uq_room_participant_key'),
    )
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.String(32), db.ForeignKey('room.id'), nullable=False, index=True)
    participant_key = db.Column(db.String(96), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    user_name = db.Column(db.String(64), nullable=False)
    is_authenticated = db.Column(db.Boolean, nullable=False, default=False)
    joined_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    score = db.Column(db.Integer, nullable=False, default=0)
    answered_questions = db.Column(db.Integer, nullable=False, default=0)
    last_activity = db.Column(db.DateTime, nullable=False, default=utcnow)
    final_score = db.Column(db.Integer, nullable=True)  # percent, set when the room ends
    completed_at = db.Column(db.DateTime, nullable=True)

    room = db.relationship('Room', back_populates='participants')

    @property
    def key(self) -> ParticipantKey:
        return ParticipantKey.parse(self.participant_key)

    def to_dict(self):
        return {
            'participant_id': self.participant_key,
            'user_id': self.user_id,
            'user_name': self.user_name,
            'is_authenticated': self.is_authenticated,
            'joined_at': isoformat(self.joined_at),
            'is_active': self.is_active,
            'score': self.score,
            'answered_questions': self.answered_questions,
            'last_activity': isoformat(self.last_activity),
            'final_score': self.final_score,
            'completed_at': isoformat(self.completed_at),
        }


class RoomQuestion(db.Model):
    """Ordered link between a room and a catalog question, with per-room overrides."""
    __tablename__ = 'room_question'
    __table_args__ = (
        db.UniqueConstraint('room_id', 'question_id', name='uq_room_question'),
    )
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.String(32), db.ForeignKey('room.id'), nullable=False, index=True)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=False)
    order = db.Column(db.Integer, nullable=False)  # 1-based sort key, gaps allowed
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    time_limit = db.Column(db.Integer, nullable=True)  # None: inherit from catalog
    points = db.Column(db.Integer, nullable=True)  # None: inherit from catalog
    added_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    added_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    updated_at = db.Column(db.DateTime, nullable=True)

    room = db.relationship('Room', back_populates='questions')

    def to_dict(self):
        return {
            'question_id': self.question_id,
            'order': self.order,
            'is_required': self.is_required,
            'time_limit': self.time_limit,
            'points': self.points,
            'added_at': isoformat(self.added_at),
            'added_by': self.added_by,
        }


class AnswerRecord(db.Model):
    """Current answer of one participant to one question in one room."""
    __tablename__ = 'answer_record'
    __table_args__ = (
        db.UniqueConstraint('room_id', 'question_id', 'participant_key', name='uq_answer_record_key'),
    )
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.String(32), db.ForeignKey('room.id'), nullable=False, index=True)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=False)
    participant_key = db.Column(db.String(96), nullable=False, index=True)
    selected_answer = db.Column(db.Integer, nullable=True)  # None: skipped or timed out
    is_correct = db.Column(db.Boolean, nullable=False, default=False)
    points_awarded = db.Column(db.Integer, nullable=False, default=0)
    time_spent = db.Column(db.Integer, nullable=False, default=0)  # seconds
    answered_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'question_id': self.question_id,
            'participant_id': self.participant_key,
            'selected_answer': self.selected_answer,
            'is_correct': self.is_correct,
            'points_awarded': self.points_awarded,
            'time_spent': self.time_spent,
            'answered_at': isoformat(self.answered_at),
        }


class RoomSession(db.Model):
    """Live tracking projection of a started room; rebuildable from Room + answers."""
    __tablename__ = 'room_session'
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.String(32), db.ForeignKey('room.id'), nullable=False, unique=True)
    room_code = db.Column(db.String(16), nullable=False)
    started_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    started_at = db.Column(db.DateTime, nullable=True)
    scheduled_end_time = db.Column(db.DateTime, nullable=True)
    current_question = db.Column(db.Integer, nullable=False, default=0)
    question_start_time = db.Column(db.DateTime, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_paused = db.Column(db.Boolean, nullable=False, default=False)
    paused_at = db.Column(db.DateTime, nullable=True)
    resumed_at = db.Column(db.DateTime, nullable=True)
    ended_at = db.Column(db.DateTime, nullable=True)
    ended_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    total_questions = db.Column(db.Integer, nullable=False, default=0)
    final_statistics = db.Column(db.JSON, nullable=True)

    room = db.relationship('Room')

    def to_dict(self):
        return {
            'current_question': self.current_question,
            'question_start_time': isoformat(self.question_start_time),
            'is_active': self.is_active,
            'is_paused': self.is_paused,
            'paused_at': isoformat(self.paused_at),
            'resumed_at': isoformat(self.resumed_at),
            'ended_at': isoformat(self.ended_at),
            'total_questions': self.total_questions,
            'final_statistics': self.final_statistics,
            'participant_progress': [
                {
                    'participant_id': p.participant_key,
                    'user_name': p.user_name,
                    'score': p.score,
                    'answered_questions': p.answered_questions,
                    'is_active': p.is_active,
                    'last_activity': isoformat(p.last_activity),
                }
                for p in (self.room.participants if self.room else [])
            ],
        }


class RoomActivity(db.Model):
    __tablename__ = 'room_activity'
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.String(32), nullable=False, index=True)
    room_code = db.Column(db.String(16), nullable=True)
    user_id = db.Column(db.Integer, nullable=True)
    user_name = db.Column(db.String(64), nullable=True)
    action = db.Column(db.String(64), nullable=False)
    details = db.Column(db.JSON, nullable=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'action': self.action,
            'user_id': self.user_id,
            'user_name': self.user_name,
            'details': self.details or {},
            'timestamp': isoformat(self.timestamp),
        }


class RoomRating(db.Model):
    __tablename__ = 'room_rating'
    __table_args__ = (
        db.UniqueConstraint('room_id', 'participant_key', name='uq_room_rating_key'),
    )
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.String(32), db.ForeignKey('room.id'), nullable=False, index=True)
    participant_key = db.Column(db.String(96), nullable=False)
    user_name = db.Column(db.String(64), nullable=True)
    rating = db.Column(db.Integer, nullable=False)
    is_authenticated = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_name': self.user_name or 'Anonymous',
            'rating': self.rating,
            'is_authenticated': self.is_authenticated,
            'created_at': isoformat(self.created_at),
        }
