from datetime import datetime, timedelta

from conftest import login
from quizroom.models import RoomQuestion


def _parse(ts):
    return datetime.fromisoformat(ts.rstrip('Z'))


def _seed(flask_app, make_user, make_question, questions=1, users=('host',)):
    """Create users and catalog questions owned by the first user; returns (question ids, answer keys)."""
    with flask_app.app_context():
        created = [make_user(name) for name in users]
        rows = [make_question(created[0], correct_answer=i % 4, title=f'Q{i}') for i in range(questions)]
        return [q.id for q in rows], [q.correct_answer for q in rows]


def _create_room_with_questions(client, question_ids, **extra):
    payload = {'title': 'Geography night', 'max_participants': 10, 'time_limit': 30}
    payload.update(extra)
    res = client.post('/api/rooms/create', json=payload)
    assert res.status_code == 201
    room = res.get_json()['room']
    res = client.post(f"/api/rooms/{room['id']}/questions", json={'question_ids': question_ids})
    assert res.status_code == 200
    assert res.get_json()['total_questions'] == len(question_ids)
    return room


def test_register_login_and_check(client):
    res = client.post('/register', json={'username': 'newbie', 'password': 'pw'})
    assert res.status_code == 201
    assert client.get('/check_login').get_json()['user']['username'] == 'newbie'
    client.post('/logout')
    assert client.get('/check_login').status_code == 401
    assert client.post('/login', json={'username': 'newbie', 'password': 'bad'}).status_code == 401


def test_create_requires_login(client):
    res = client.post('/api/rooms/create', json={'title': 'x', 'max_participants': 5})
    assert res.status_code == 401
    assert res.get_json()['code'] == 'unauthenticated'


def test_full_room_scenario(flask_app, client, make_user, make_question):
    qids, answers = _seed(flask_app, make_user, make_question, questions=3)
    login(client, 'host')
    room = _create_room_with_questions(client, qids)
    assert room['status'] == 'waiting'
    assert len(room['code']) == 6

    # Guest joins with a lower-case code
    guest = flask_app.test_client()
    res = guest.post('/api/rooms/join', json={'code': room['code'].lower(), 'user_name': 'Pat'})
    assert res.status_code == 201
    participant_id = res.get_json()['participant']['participant_id']
    assert participant_id == 'guest:Pat'

    res = client.post(f"/api/rooms/{room['id']}/start")
    assert res.status_code == 200
    started = res.get_json()['room']
    assert started['status'] == 'active'
    assert started['question_count'] == 3
    assert _parse(started['scheduled_end_time']) - _parse(started['started_at']) == timedelta(minutes=30)

    res = guest.get(f"/api/rooms/{room['id']}/quiz?participant_id={participant_id}")
    assert res.status_code == 200
    quiz = res.get_json()
    assert [q['id'] for q in quiz['questions']] == qids
    assert all('correct_answer' not in q for q in quiz['questions'])
    assert quiz['progress'] == {'answered': 0, 'total': 3, 'percentage': 0}

    picks = [answers[0], answers[1], (answers[2] + 1) % 4]
    for qid, pick in zip(qids, picks):
        res = guest.post(f"/api/rooms/{room['id']}/quiz", json={
            'participant_id': participant_id,
            'question_id': qid,
            'selected_answer': pick,
            'time_spent': 5,
        })
        assert res.status_code == 200
        assert res.get_json()['submitted'] is True

    status = guest.get(f"/api/rooms/{room['id']}/status").get_json()
    pat = status['room']['participants'][0]
    assert pat['score'] == 2
    assert pat['answered_questions'] == 3
    assert status['session']['is_active'] is True

    res = client.put(f"/api/rooms/{room['id']}/control", json={'action': 'end'})
    assert res.status_code == 200
    ended = res.get_json()['room']
    assert ended['status'] == 'completed'
    assert ended['statistics']['average_score'] == 67
    assert ended['statistics']['completion_rate'] == 100

    detail = client.get(f"/api/rooms/{room['id']}").get_json()['room']
    assert detail['status'] == 'completed'
    assert detail['statistics']['average_score'] == 67
    assert detail['participants'][0]['final_score'] == 67

    results = guest.get(f"/api/rooms/{room['id']}/results").get_json()
    assert results['participants'][0]['rank'] == 1
    assert results['participants'][0]['correct_answers'] == 2


def test_answer_feedback_follows_settings(flask_app, client, make_user, make_question):
    qids, answers = _seed(flask_app, make_user, make_question)
    login(client, 'host')
    room = _create_room_with_questions(client, qids, settings={
        'instant_feedback': False, 'show_correct_answers': False,
    })
    guest = flask_app.test_client()
    guest.post('/api/rooms/join', json={'code': room['code'], 'user_name': 'Quiet'})
    client.post(f"/api/rooms/{room['id']}/start")

    res = guest.post(f"/api/rooms/{room['id']}/quiz", json={
        'participant_id': 'Quiet', 'question_id': qids[0], 'selected_answer': answers[0],
    })
    assert res.get_json() == {'submitted': True, 'question_id': qids[0]}


def test_non_creator_cannot_start(flask_app, client, make_user, make_question):
    qids, _ = _seed(flask_app, make_user, make_question, users=('host', 'intruder'))
    login(client, 'host')
    room = _create_room_with_questions(client, qids)

    other = flask_app.test_client()
    login(other, 'intruder')
    res = other.post(f"/api/rooms/{room['id']}/start")
    assert res.status_code == 403
    assert res.get_json()['code'] == 'unauthorized'
    assert client.get(f"/api/rooms/{room['id']}").get_json()['room']['status'] == 'waiting'


def test_add_questions_to_active_room_rejected(flask_app, client, make_user, make_question):
    qids, _ = _seed(flask_app, make_user, make_question, questions=2)
    login(client, 'host')
    room = _create_room_with_questions(client, qids[:1])
    client.post(f"/api/rooms/{room['id']}/start")

    res = client.post(f"/api/rooms/{room['id']}/questions", json={'question_ids': qids[1:]})
    assert res.status_code == 400
    body = res.get_json()
    assert body['code'] == 'invalid_state'
    assert body['error'] == 'Cannot modify questions in active or completed rooms'
    with flask_app.app_context():
        linked = [link.question_id for link in RoomQuestion.query.filter_by(room_id=room['id']).all()]
    assert linked == qids[:1]


def test_unknown_and_malformed_room_ids(client):
    assert client.get('/api/rooms/not-a-room/status').status_code == 404
    assert client.get(f"/api/rooms/{'0' * 32}/status").get_json()['code'] == 'not_found'


def test_quiz_requires_identity(flask_app, client, make_user, make_question):
    qids, _ = _seed(flask_app, make_user, make_question)
    login(client, 'host')
    room = _create_room_with_questions(client, qids)
    client.post('/logout')
    res = client.get(f"/api/rooms/{room['id']}/quiz")
    assert res.status_code == 400
    assert res.get_json()['code'] == 'validation_error'


def test_public_listing_and_code_lookup(flask_app, client, make_user, make_question):
    _seed(flask_app, make_user, make_question, questions=0)
    login(client, 'host')
    public = client.post('/api/rooms/create', json={
        'title': 'Open trivia', 'max_participants': 5, 'is_public': True, 'category': 'science',
    }).get_json()['room']
    client.post('/api/rooms/create', json={'title': 'Private', 'max_participants': 5})

    listing = client.get('/api/rooms?category=science').get_json()
    assert [r['id'] for r in listing['rooms']] == [public['id']]
    assert listing['pagination']['total'] == 1

    found = client.get(f"/api/rooms/code/{public['code'].lower()}").get_json()['room']
    assert found['id'] == public['id']

    mine = client.get('/api/rooms/mine').get_json()
    assert len(mine['created_rooms']) == 2


def test_remove_questions_via_query_string(flask_app, client, make_user, make_question):
    qids, _ = _seed(flask_app, make_user, make_question, questions=3)
    login(client, 'host')
    room = _create_room_with_questions(client, qids)

    res = client.delete(f"/api/rooms/{room['id']}/questions?question_ids={qids[0]},{qids[2]}")
    assert res.status_code == 200
    assert res.get_json()['total_questions'] == 1

    listed = client.get(f"/api/rooms/{room['id']}/questions").get_json()['questions']
    assert [(q['id'], q['order']) for q in listed] == [(qids[1], 2)]
    assert 'correct_answer' in listed[0]


def test_rating_and_activity_endpoints(flask_app, client, make_user, make_question):
    qids, _ = _seed(flask_app, make_user, make_question)
    login(client, 'host')
    room = _create_room_with_questions(client, qids)
    guest = flask_app.test_client()
    guest.post('/api/rooms/join', json={'code': room['code'], 'user_name': 'Rater'})

    res = guest.post(f"/api/rooms/{room['id']}/rating", json={'participant_id': 'guest:Rater', 'rating': 4})
    assert res.status_code == 201
    assert res.get_json()['average_rating'] == 4.0
    again = guest.post(f"/api/rooms/{room['id']}/rating", json={'participant_id': 'Rater', 'rating': 5})
    assert again.status_code == 400

    ratings = client.get(f"/api/rooms/{room['id']}/rating").get_json()
    assert ratings['statistics']['distribution']['4'] == 1

    actions = [a['action'] for a in client.get(f"/api/rooms/{room['id']}/activities").get_json()['activities']]
    assert 'room_created' in actions
    assert 'user_joined' in actions
    assert 'questions_added' in actions
