import os
import sys
from datetime import datetime

import pytest

# Ensure the backend root (containing the `quizroom` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from quizroom import create_app, db
from quizroom.identity import Identity, ParticipantKey


T0 = datetime(2026, 1, 1, 12, 0, 0)


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BCRYPT_LOG_ROUNDS = 4
    LOG_LEVEL = 'DEBUG'
    ROOM_CODE_LENGTH = 6
    ROOM_CODE_ATTEMPTS = 10
    MAX_PARTICIPANTS_LIMIT = 1000
    DEFAULT_ROOM_TIME_LIMIT_MIN = 30
    MAX_ROOM_TIME_LIMIT_MIN = 1440
    DEFAULT_QUESTION_TIME_LIMIT_SEC = 30
    DEFAULT_QUESTION_POINTS = 1
    ENFORCE_ANSWER_DEADLINE = True
    AUTO_END_EXPIRED_ROOMS = True


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import quizroom.models  # noqa: F401
        db.create_all()
    # No context is held here: test-client requests must each get their own,
    # otherwise flask_login's cached user in `g` leaks between clients
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def app_ctx(flask_app):
    """App context for tests that call services directly."""
    with flask_app.app_context():
        yield flask_app
        db.session.remove()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def make_user(flask_app):
    from quizroom.models import User

    def _make(username, password='password'):
        user = User(username=username)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture()
def make_question(flask_app):
    from quizroom.models import Question

    def _make(creator, correct_answer=1, points=None, options=None, is_public=False, title='Question', **extra):
        question = Question(
            creator_id=creator.id,
            title=title,
            content=f'{title}?',
            options=options or ['A', 'B', 'C', 'D'],
            correct_answer=correct_answer,
            points=points,
            is_public=is_public,
            **extra,
        )
        db.session.add(question)
        db.session.commit()
        return question
    return _make


@pytest.fixture()
def make_room(flask_app):
    from quizroom.services.rooms.linkage import add_questions
    from quizroom.services.rooms.rooms import create_room

    def _make(creator, questions=(), now=T0, **data):
        payload = {'title': 'Friday quiz', 'max_participants': 10, 'time_limit': 30}
        payload.update(data)
        room = create_room(creator, payload, now=now)
        if questions:
            add_questions(room.id, creator.id, [q.id for q in questions], now=now)
        return room
    return _make


@pytest.fixture()
def join_guest(flask_app):
    from quizroom.services.rooms.rooms import join_room

    def _join(room, name, now=T0):
        join_room(room.code, Identity(user_name=name), now=now)
        return ParticipantKey.guest(name)
    return _join


def login(client, username, password='password'):
    res = client.post('/login', json={'username': username, 'password': password})
    assert res.status_code == 200
    return res.get_json()['user']
