from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from quizroom.errors import Unauthorized, ValidationError
from quizroom.identity import resolve_identity
from quizroom.services.rooms.activity import list_activities
from quizroom.services.rooms.lifecycle import (
    cancel_room, control_room, expire_if_due, get_room_status, start_room,
)
from quizroom.services.rooms.linkage import (
    add_questions, describe_room_questions, remove_questions, reorder_questions,
)
from quizroom.services.rooms.results import build_results, list_ratings, submit_rating
from quizroom.services.rooms.rooms import (
    create_room, delete_room, get_room_by_code, join_room, list_public_rooms,
    list_rooms_for_user, require_creator, require_room, update_room_config,
)


rooms = Blueprint('rooms', __name__)


def _int_arg(name, default):
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f'{name} must be an integer')


@rooms.route('/create', methods=['POST'])
@login_required
def create():
    data = request.get_json(silent=True) or {}
    room = create_room(current_user, data)
    return jsonify({
        'message': 'Room created successfully',
        'room': room.to_dict(include_participants=False),
    }), 201


@rooms.route('', methods=['GET'])
@rooms.route('/', methods=['GET'])
def public_rooms():
    page = _int_arg('page', 1)
    limit = _int_arg('limit', 10)
    found, total = list_public_rooms(
        search=request.args.get('search'),
        category=request.args.get('category'),
        difficulty=request.args.get('difficulty'),
        page=page,
        limit=limit,
    )
    return jsonify({
        'rooms': [room.summary() for room in found],
        'pagination': {'page': max(1, page), 'limit': max(1, min(50, limit)), 'total': total},
    })


@rooms.route('/mine', methods=['GET'])
@login_required
def my_rooms():
    created, joined = list_rooms_for_user(current_user.id, limit=_int_arg('limit', 20))
    return jsonify({
        'created_rooms': [room.summary() for room in created],
        'joined_rooms': [room.summary() for room in joined],
    })


@rooms.route('/code/<string:code>', methods=['GET'])
def lookup_by_code(code):
    room = get_room_by_code(code)
    return jsonify({'room': room.summary()})


@rooms.route('/join', methods=['POST'])
def join():
    data = request.get_json(silent=True) or {}
    room, participant, created = join_room(data.get('code') or data.get('room_code'), resolve_identity())
    return jsonify({
        'message': 'Successfully joined room' if created else 'Already joined this room',
        'room': room.summary(),
        'participant': participant.to_dict(),
    }), 201 if created else 200


@rooms.route('/<string:room_id>', methods=['GET'])
def room_detail(room_id):
    room = require_room(room_id)
    expire_if_due(room)
    return jsonify({'room': room.to_dict(include_participants=True)})


@rooms.route('/<string:room_id>', methods=['PUT'])
@login_required
def update(room_id):
    data = request.get_json(silent=True) or {}
    room = update_room_config(room_id, current_user.id, data)
    return jsonify({'message': 'Room updated successfully', 'room': room.to_dict(include_participants=False)})


@rooms.route('/<string:room_id>', methods=['DELETE'])
@login_required
def delete(room_id):
    delete_room(room_id, current_user.id)
    return jsonify({'message': 'Room deleted successfully'})


@rooms.route('/<string:room_id>/start', methods=['POST'])
@login_required
def start(room_id):
    result = start_room(room_id, current_user.id)
    return jsonify({'message': 'Room started successfully', 'room': result})


@rooms.route('/<string:room_id>/control', methods=['PUT', 'POST'])
@login_required
def control(room_id):
    data = request.get_json(silent=True) or {}
    result = control_room(room_id, current_user.id, data.get('action'))
    return jsonify({'message': f"Room {result['status']}", 'room': result})


@rooms.route('/<string:room_id>/cancel', methods=['POST'])
@login_required
def cancel(room_id):
    return jsonify({'message': 'Room cancelled', 'room': cancel_room(room_id, current_user.id)})


@rooms.route('/<string:room_id>/status', methods=['GET'])
def status(room_id):
    return jsonify(get_room_status(room_id))


@rooms.route('/<string:room_id>/questions', methods=['GET'])
@login_required
def questions(room_id):
    room = require_room(room_id)
    require_creator(room, current_user.id, 'view the answer key')
    return jsonify({'questions': describe_room_questions(room, include_answers=True)})


@rooms.route('/<string:room_id>/questions', methods=['POST'])
@login_required
def link_questions(room_id):
    data = request.get_json(silent=True) or {}
    result = add_questions(room_id, current_user.id, data.get('question_ids'),
                           replace_all=bool(data.get('replace_all', False)))
    return jsonify({'message': 'Questions added to room successfully', **result})


@rooms.route('/<string:room_id>/questions', methods=['PUT'])
@login_required
def update_questions(room_id):
    data = request.get_json(silent=True) or {}
    result = reorder_questions(room_id, current_user.id, data.get('questions'))
    return jsonify({'message': 'Question order updated successfully', **result})


@rooms.route('/<string:room_id>/questions', methods=['DELETE'])
@login_required
def unlink_questions(room_id):
    raw = request.args.get('question_ids')
    if raw:
        ids = [part.strip() for part in raw.split(',') if part.strip()]
    else:
        ids = (request.get_json(silent=True) or {}).get('question_ids')
    result = remove_questions(room_id, current_user.id, ids)
    return jsonify({'message': 'Questions removed from room successfully', **result})


@rooms.route('/<string:room_id>/results', methods=['GET'])
def results(room_id):
    return jsonify(build_results(room_id, resolve_identity()))


@rooms.route('/<string:room_id>/rating', methods=['GET'])
def ratings(room_id):
    return jsonify(list_ratings(room_id))


@rooms.route('/<string:room_id>/rating', methods=['POST'])
def rate(room_id):
    data = request.get_json(silent=True) or {}
    identity = resolve_identity()
    result = submit_rating(room_id, identity.require_participant_key(), data.get('rating'),
                           user_name=identity.user_name)
    return jsonify({'message': 'Rating submitted successfully', **result}), 201


@rooms.route('/<string:room_id>/activities', methods=['GET'])
@login_required
def activities(room_id):
    room = require_room(room_id)
    if room.creator_id != current_user.id:
        raise Unauthorized('Only the room creator can view activities')
    entries = list_activities(room, limit=max(1, min(500, _int_arg('limit', 100))))
    return jsonify({'activities': [entry.to_dict() for entry in entries]})
