import random
from typing import Optional, Tuple

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from quizroom import db
from quizroom.errors import (
    DeadlinePassed, Ended, NotActive, NotAParticipant, NotFound, NotStarted,
    QuestionNotFound, ValidationError,
)
from quizroom.identity import ParticipantKey
from quizroom.locks import participant_locks
from quizroom.models import AnswerRecord, Room, RoomParticipant, RoomQuestion, isoformat, utcnow
from .catalog import effective_points, effective_time_limit, lookup_questions
from .finalization import round_half_up
from .lifecycle import expire_if_due
from .linkage import list_room_questions
from .rooms import require_room


def score_answer(selected_answer: Optional[int], correct_answer: int, points: int) -> Tuple[bool, int]:
    """A null answer (skip or timeout) is never correct."""
    is_correct = selected_answer is not None and selected_answer == correct_answer
    return is_correct, (points if is_correct else 0)


def _membership(room: Room, participant: ParticipantKey) -> Optional[RoomParticipant]:
    """Roster entry for the participant; None for the creator trying the room out."""
    member = room.find_participant(participant)
    if member is None and participant.user_id != room.creator_id:
        raise NotAParticipant('You are not a participant in this room')
    return member


def _parse_selected_answer(selected_answer):
    if selected_answer is None:
        return None
    if isinstance(selected_answer, bool) or not isinstance(selected_answer, int):
        raise ValidationError('selected_answer must be an option index or null')
    return selected_answer


def _parse_time_spent(time_spent):
    if time_spent is None:
        return 0
    if isinstance(time_spent, bool) or not isinstance(time_spent, (int, float)) or time_spent < 0:
        raise ValidationError('time_spent must be a non-negative number of seconds')
    return int(time_spent)


def _upsert_answer(room_id, question_id, key: str, values) -> AnswerRecord:
    """Replace the participant's answer for the question, inserting if absent."""
    def find():
        return AnswerRecord.query.filter_by(
            room_id=room_id, question_id=question_id, participant_key=key,
        ).first()

    record = find()
    if record is None:
        record = AnswerRecord(room_id=room_id, question_id=question_id, participant_key=key, **values)
        db.session.add(record)
        try:
            db.session.flush()
            return record
        except IntegrityError:
            # Lost the insert race for this key; overwrite the winner
            db.session.rollback()
            record = find()
            if record is None:
                raise
    for field, value in values.items():
        setattr(record, field, value)
    return record


def lock_room_for_answer(room_id):
    return Room.query.filter_by(id=room_id).with_for_update(read=True).populate_existing()


def lock_member_for_totals(member_id):
    """Serializes running-total updates across worker processes."""
    return RoomParticipant.query.filter_by(id=member_id).with_for_update().populate_existing()


def _running_totals(room_id, key: str) -> Tuple[int, int]:
    score, answered = (
        db.session.query(
            func.coalesce(func.sum(AnswerRecord.points_awarded), 0),
            func.count(AnswerRecord.id),
        )
        .filter(AnswerRecord.room_id == room_id, AnswerRecord.participant_key == key)
        .one()
    )
    return int(score), int(answered)


def submit_answer(room_id, participant: ParticipantKey, question_id, selected_answer,
                  time_spent=0, now=None):
    """Record (or overwrite) one answer and refresh the participant's running total."""
    now = now or utcnow()
    selected_answer = _parse_selected_answer(selected_answer)
    time_spent = _parse_time_spent(time_spent)
    if isinstance(question_id, bool) or not isinstance(question_id, int):
        raise ValidationError('question_id must be an integer')

    room = require_room(room_id)
    key = str(participant)
    with participant_locks.hold((room.id, key)):
        # Shared row lock: end/expire block on it until this answer commits
        room = lock_room_for_answer(room.id).one()
        if room.status != 'active':
            raise NotActive('Quiz is not active', status=room.status)
        member = _membership(room, participant)
        if current_app.config.get('ENFORCE_ANSWER_DEADLINE', True) and room.is_deadline_passed(now):
            db.session.rollback()
            expire_if_due(room, now)
            raise DeadlinePassed('Time is up for this quiz')

        link = RoomQuestion.query.filter_by(room_id=room.id, question_id=question_id).first()
        question = lookup_questions([question_id]).get(question_id) if link else None
        if link is None or question is None:
            raise QuestionNotFound('Question not found', question_id=question_id)
        if selected_answer is not None and not 0 <= selected_answer < len(question.options or []):
            raise ValidationError('Invalid answer index', selected_answer=selected_answer)

        if member is not None:
            member = lock_member_for_totals(member.id).one()
        is_correct, points = score_answer(selected_answer, question.correct_answer, effective_points(link, question))
        _upsert_answer(room.id, question_id, key, {
            'selected_answer': selected_answer,
            'is_correct': is_correct,
            'points_awarded': points,
            'time_spent': time_spent,
            'answered_at': now,
        })
        db.session.flush()
        status = db.session.query(Room.status).filter(Room.id == room.id).scalar()
        if status != 'active':
            db.session.rollback()
            raise NotActive('Quiz is not active', status=status)
        score, answered = _running_totals(room.id, key)
        if member is not None:
            member.score = score
            member.answered_questions = answered
            member.last_activity = now
        db.session.commit()

    current_app.logger.info(
        f"[answer] room={room_id} participant={key} question={question_id} "
        f"correct={is_correct} points={points} total={score}"
    )
    settings = room.settings
    response = {'submitted': True, 'question_id': question_id}
    if settings.instant_feedback:
        response['is_correct'] = is_correct
        response['points'] = points
    if settings.show_correct_answers:
        response['correct_answer'] = question.correct_answer
        response['explanation'] = question.explanation
    return response


def _ordered_links(room: Room, participant: ParticipantKey):
    links = list_room_questions(room)
    if room.shuffle_questions:
        # Stable per participant so refreshes keep the same sequence
        random.Random(f'{room.id}:{participant}').shuffle(links)
    return links


def get_quiz_for_participant(room_id, participant: ParticipantKey, now=None):
    """Question set for a participant, without answer keys."""
    now = now or utcnow()
    room = require_room(room_id)
    expire_if_due(room, now)
    if room.status in ('completed', 'cancelled'):
        raise Ended('This quiz has ended', status=room.status)
    if room.status == 'waiting':
        raise NotStarted("Quiz hasn't started yet")
    _membership(room, participant)

    links = _ordered_links(room, participant)
    catalog = lookup_questions(link.question_id for link in links)
    if not catalog:
        raise NotFound('No questions found for this quiz')

    key = str(participant)
    answers = {
        a.question_id: a for a in
        AnswerRecord.query.filter_by(room_id=room.id, participant_key=key).all()
    }
    settings = room.settings
    questions = []
    for link in links:
        question = catalog.get(link.question_id)
        if question is None:
            continue
        existing = answers.get(question.id)
        item = {
            'id': question.id,
            'question_number': len(questions) + 1,
            'title': question.title,
            'content': question.content,
            'options': list(question.options or []),
            'time_limit': effective_time_limit(link, question),
            'points': effective_points(link, question),
            'difficulty': question.difficulty,
            'category': question.category,
            'is_required': link.is_required,
            'selected_answer': existing.selected_answer if existing else None,
            'answered_at': isoformat(existing.answered_at) if existing else None,
            'time_spent': existing.time_spent if existing else None,
        }
        if settings.instant_feedback:
            item['is_correct'] = existing.is_correct if existing else None
        questions.append(item)

    total = len(questions)
    answered = sum(1 for q in questions if q['answered_at'] is not None)
    return {
        'room': {
            'id': room.id,
            'code': room.code,
            'title': room.title,
            'status': room.status,
            'time_limit': room.time_limit,
            'show_leaderboard': room.show_leaderboard,
            'settings': settings.to_dict(),
        },
        'questions': questions,
        'progress': {
            'answered': answered,
            'total': total,
            'percentage': round_half_up(answered / total * 100) if total else 0,
        },
        'time_remaining': room.time_remaining(now),
    }
