from flask import Blueprint, jsonify, request

from quizroom.identity import resolve_identity
from quizroom.services.rooms.scoring import get_quiz_for_participant, submit_answer


quiz = Blueprint('quiz', __name__)


@quiz.route('/<string:room_id>/quiz', methods=['GET'])
def get_quiz(room_id):
    participant = resolve_identity().require_participant_key()
    return jsonify(get_quiz_for_participant(room_id, participant))


@quiz.route('/<string:room_id>/quiz', methods=['POST'])
def answer(room_id):
    data = request.get_json(silent=True) or {}
    participant = resolve_identity().require_participant_key()
    result = submit_answer(
        room_id,
        participant,
        data.get('question_id'),
        data.get('selected_answer'),
        time_spent=data.get('time_spent', 0),
    )
    return jsonify(result)
