import pytest

from conftest import T0
from quizroom import db
from quizroom.errors import InvalidState, QuestionNotAccessible, Unauthorized, ValidationError
from quizroom.models import Room, RoomQuestion
from quizroom.services.rooms.lifecycle import start_room
from quizroom.services.rooms.linkage import (
    add_questions, describe_room_questions, remove_questions, reorder_questions,
)


@pytest.fixture()
def host(app_ctx, make_user):
    return make_user('host')


@pytest.fixture()
def bank(host, make_question):
    return [make_question(host, title=f'Q{i}') for i in range(4)]


def _orders(room_id):
    db.session.expire_all()
    links = RoomQuestion.query.filter_by(room_id=room_id).order_by(RoomQuestion.order).all()
    return [(link.question_id, link.order) for link in links]


def test_add_assigns_contiguous_orders(host, bank, make_room):
    room = make_room(host)
    assert add_questions(room.id, host.id, [bank[0].id, bank[1].id], now=T0) == {'total_questions': 2}
    add_questions(room.id, host.id, [bank[2].id], now=T0)
    assert _orders(room.id) == [(bank[0].id, 1), (bank[1].id, 2), (bank[2].id, 3)]
    assert db.session.get(Room, room.id).total_questions == 3


def test_replace_all_restarts_order(host, bank, make_room):
    room = make_room(host, questions=bank[:3])
    result = add_questions(room.id, host.id, [bank[3].id, bank[0].id], replace_all=True, now=T0)
    assert result == {'total_questions': 2}
    assert _orders(room.id) == [(bank[3].id, 1), (bank[0].id, 2)]


def test_new_links_inherit_catalog_values(host, make_question, make_room):
    question = make_question(host, points=4, time_limit=45)
    room = make_room(host, questions=[question])
    link = RoomQuestion.query.filter_by(room_id=room.id).one()
    assert link.points is None
    assert link.time_limit is None
    described = describe_room_questions(db.session.get(Room, room.id))
    assert described[0]['points'] == 4
    assert described[0]['time_limit'] == 45
    assert 'correct_answer' not in described[0]


def test_only_own_or_public_questions(host, make_user, make_question, make_room):
    other = make_user('other')
    private = make_question(other, title='secret')
    public = make_question(other, title='shared', is_public=True)
    room = make_room(host)

    with pytest.raises(QuestionNotAccessible) as excinfo:
        add_questions(room.id, host.id, [public.id, private.id], now=T0)
    assert excinfo.value.details['question_ids'] == [private.id]
    assert _orders(room.id) == []

    add_questions(room.id, host.id, [public.id], now=T0)
    assert _orders(room.id) == [(public.id, 1)]


def test_missing_question_rejected(host, make_room):
    room = make_room(host)
    with pytest.raises(QuestionNotAccessible):
        add_questions(room.id, host.id, [999], now=T0)


@pytest.mark.parametrize('bad', [[], None, ['x'], [0], [1, 1]])
def test_malformed_question_ids(host, make_room, bad):
    room = make_room(host)
    with pytest.raises(ValidationError):
        add_questions(room.id, host.id, bad, now=T0)


def test_adding_linked_question_twice(host, bank, make_room):
    room = make_room(host, questions=bank[:1])
    with pytest.raises(ValidationError):
        add_questions(room.id, host.id, [bank[0].id], now=T0)
    assert _orders(room.id) == [(bank[0].id, 1)]


def test_remove_keeps_gaps(host, bank, make_room):
    room = make_room(host, questions=bank[:3])
    result = remove_questions(room.id, host.id, [bank[1].id], now=T0)
    assert result == {'total_questions': 2, 'removed': 1}
    assert _orders(room.id) == [(bank[0].id, 1), (bank[2].id, 3)]
    assert db.session.get(Room, room.id).total_questions == 2


def test_reorder_with_overrides(host, bank, make_room):
    room = make_room(host, questions=bank[:2])
    reorder_questions(room.id, host.id, [
        {'question_id': bank[0].id, 'order': 2, 'points': 5},
        {'question_id': bank[1].id, 'order': 1, 'time_limit': 20},
    ], now=T0)
    assert _orders(room.id) == [(bank[1].id, 1), (bank[0].id, 2)]
    links = {link.question_id: link for link in RoomQuestion.query.filter_by(room_id=room.id)}
    assert links[bank[0].id].points == 5
    assert links[bank[0].id].time_limit is None
    assert links[bank[1].id].time_limit == 20


def test_reorder_rejects_duplicate_orders(host, bank, make_room):
    room = make_room(host, questions=bank[:3])
    with pytest.raises(ValidationError):
        reorder_questions(room.id, host.id, [{'question_id': bank[0].id, 'order': 2}], now=T0)
    assert _orders(room.id) == [(bank[0].id, 1), (bank[1].id, 2), (bank[2].id, 3)]


def test_reorder_rejects_unlinked_question(host, bank, make_room):
    room = make_room(host, questions=bank[:1])
    with pytest.raises(ValidationError):
        reorder_questions(room.id, host.id, [{'question_id': bank[3].id, 'order': 5}], now=T0)


def test_linkage_frozen_after_start(host, bank, make_room):
    room = make_room(host, questions=bank[:2])
    start_room(room.id, host.id, now=T0)
    before = _orders(room.id)
    with pytest.raises(InvalidState):
        add_questions(room.id, host.id, [bank[2].id], now=T0)
    with pytest.raises(InvalidState):
        remove_questions(room.id, host.id, [bank[0].id], now=T0)
    with pytest.raises(InvalidState):
        reorder_questions(room.id, host.id, [{'question_id': bank[0].id, 'order': 9}], now=T0)
    assert _orders(room.id) == before


def test_only_creator_edits_linkage(host, bank, make_user, make_room):
    other = make_user('other')
    room = make_room(host)
    with pytest.raises(Unauthorized):
        add_questions(room.id, other.id, [bank[0].id], now=T0)
