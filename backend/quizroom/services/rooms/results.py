from collections import defaultdict

from flask import current_app
from sqlalchemy.exc import IntegrityError

from quizroom import db
from quizroom.errors import Forbidden, NotAParticipant, ValidationError
from quizroom.identity import Identity, ParticipantKey
from quizroom.models import AnswerRecord, Room, RoomRating, isoformat, utcnow
from .catalog import lookup_questions
from .finalization import round_half_up, total_possible_points
from .linkage import list_room_questions
from .rooms import require_room


def _can_view(room: Room, identity: Identity) -> bool:
    if room.status == 'completed':
        return True
    if identity.user_id is not None and identity.user_id == room.creator_id:
        return True
    key = identity.participant_key
    return key is not None and room.find_participant(key) is not None


def rank_participants(rows):
    """Sort by score desc, accuracy desc, then time spent asc; assign 1-based ranks."""
    ranked = sorted(rows, key=lambda r: (-r['score'], -r['accuracy'], r['time_spent']))
    for index, row in enumerate(ranked, start=1):
        row['rank'] = index
    return ranked


def build_results(room_id, identity: Identity):
    room = require_room(room_id)
    if not _can_view(room, identity):
        raise Forbidden('Access denied')

    answers = AnswerRecord.query.filter_by(room_id=room.id).all()
    links = list_room_questions(room)
    catalog = lookup_questions(link.question_id for link in links)
    total_points = total_possible_points(room)

    by_participant = defaultdict(list)
    by_question = defaultdict(list)
    for answer in answers:
        by_participant[answer.participant_key].append(answer)
        by_question[answer.question_id].append(answer)

    rows = []
    for participant in room.participants:
        own = by_participant.get(participant.participant_key, [])
        answered = len(own)
        correct = sum(1 for a in own if a.is_correct)
        raw = sum(a.points_awarded for a in own)
        if participant.final_score is not None:
            score = participant.final_score
        else:
            score = round_half_up(raw / total_points * 100) if total_points else 0
        rows.append({
            'id': participant.participant_key,
            'user_name': participant.user_name,
            'is_authenticated': participant.is_authenticated,
            'score': score,
            'points': raw,
            'answered_questions': answered,
            'correct_answers': correct,
            'total_questions': len(links),
            'time_spent': sum(a.time_spent for a in own),
            'accuracy': round_half_up(correct / answered * 100) if answered else 0,
        })
    participants = rank_participants(rows)

    question_results = []
    for link in links:
        question = catalog.get(link.question_id)
        if question is None:
            continue
        attempts = by_question.get(question.id, [])
        correct = sum(1 for a in attempts if a.is_correct)
        question_results.append({
            'id': question.id,
            'order': link.order,
            'title': question.title,
            'category': question.category,
            'difficulty': question.difficulty,
            'total_attempts': len(attempts),
            'correct_rate': round_half_up(correct / len(attempts) * 100) if attempts else 0,
            'average_time': round_half_up(sum(a.time_spent for a in attempts) / len(attempts)) if attempts else 0,
        })

    total_participants = len(participants)
    completed = [p for p in participants if p['answered_questions'] > 0]
    if room.status == 'completed':
        average_score = room.average_score
        completion_rate = room.completion_rate
    else:
        average_score = round_half_up(sum(p['score'] for p in completed) / len(completed)) if completed else 0
        completion_rate = round_half_up(len(completed) / total_participants * 100) if total_participants else 0

    return {
        'id': room.id,
        'code': room.code,
        'title': room.title,
        'description': room.description,
        'category': room.category,
        'difficulty': room.difficulty,
        'status': room.status,
        'creator_name': room.creator_name,
        'show_leaderboard': room.show_leaderboard,
        'participants': participants,
        'question_results': question_results,
        'statistics': {
            'total_questions': len(links),
            'average_score': average_score,
            'completion_rate': completion_rate,
            'total_participants': total_participants,
            'average_time': round_half_up(sum(p['time_spent'] for p in participants) / total_participants) if total_participants else 0,
            'highest_score': participants[0]['score'] if participants else 0,
            'lowest_score': participants[-1]['score'] if participants else 0,
        },
        'started_at': isoformat(room.started_at),
        'completed_at': isoformat(room.completed_at),
        'time_limit': room.time_limit,
    }


def submit_rating(room_id, participant: ParticipantKey, rating, user_name=None, now=None):
    now = now or utcnow()
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError('Rating must be between 1 and 5')
    room = require_room(room_id)
    member = room.find_participant(participant)
    if member is None:
        raise NotAParticipant('Only participants can rate this room')
    key = str(participant)
    if RoomRating.query.filter_by(room_id=room.id, participant_key=key).first():
        raise ValidationError('You have already rated this room')

    db.session.add(RoomRating(
        room_id=room.id,
        participant_key=key,
        user_name=user_name or member.user_name,
        rating=rating,
        is_authenticated=not participant.is_guest,
        created_at=now,
    ))
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError('You have already rated this room')
    summary = rating_summary(room)
    room.average_rating = summary['average_rating']
    room.total_ratings = summary['total_ratings']
    room.updated_at = now
    db.session.commit()
    current_app.logger.info(f"[room-rating] room={room.id} participant={key} rating={rating}")
    return {'rating': rating, **summary}


def rating_summary(room: Room):
    ratings = [r.rating for r in RoomRating.query.filter_by(room_id=room.id).all()]
    total = len(ratings)
    average = round(sum(ratings) / total, 1) if total else 0.0
    return {
        'total_ratings': total,
        'average_rating': average,
        'distribution': {str(star): ratings.count(star) for star in range(5, 0, -1)},
    }


def list_ratings(room_id):
    room = require_room(room_id)
    ratings = (
        RoomRating.query.filter_by(room_id=room.id)
        .order_by(RoomRating.created_at.desc(), RoomRating.id.desc())
        .all()
    )
    return {
        'statistics': rating_summary(room),
        'ratings': [r.to_dict() for r in ratings],
    }
