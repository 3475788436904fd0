from datetime import timedelta
from typing import Optional

from flask import current_app
from sqlalchemy import func

from quizroom import db
from quizroom.errors import Conflict, InvalidAction, InvalidState, NoQuestions
from quizroom.locks import room_locks
from quizroom.models import AnswerRecord, Room, RoomQuestion, RoomSession, isoformat, utcnow
from .activity import log_activity
from .finalization import compute_final_statistics, persist_participant_results
from .rooms import require_creator, require_room

CONTROL_ACTIONS = ('pause', 'resume', 'end')
# Transition table: action -> statuses it may start from
ALLOWED_FROM = {
    'start': ('waiting',),
    'pause': ('active',),
    'resume': ('paused',),
    'end': ('active', 'paused'),
    'cancel': ('waiting',),
}


def swap_status(room: Room, expected: str, **changes) -> None:
    """Compare-and-swap the room status.

    The UPDATE only matches while the stored status is still `expected`, so
    of two racing transitions exactly one wins; the loser gets Conflict and
    nothing of its request is written.
    """
    updated = (
        Room.query.filter(Room.id == room.id, Room.status == expected)
        .update(changes, synchronize_session='fetch')
    )
    if updated != 1:
        db.session.rollback()
        raise Conflict(f'Room status changed concurrently (expected {expected})')


def _check_transition(room: Room, action: str) -> None:
    allowed = ALLOWED_FROM[action]
    if room.status not in allowed:
        raise InvalidState(
            f"Room must be {' or '.join(allowed)} to {action} (currently {room.status})",
            status=room.status, action=action,
        )


def _get_session(room: Room) -> Optional[RoomSession]:
    return RoomSession.query.filter_by(room_id=room.id).first()


def rebuild_session(room: Room, started_by=None) -> RoomSession:
    """Recreate session tracking and roster progress from the room and its answers."""
    session = _get_session(room)
    if session is None:
        session = RoomSession(room_id=room.id, room_code=room.code)
        db.session.add(session)
    if started_by is not None:
        session.started_by = started_by
    session.room_code = room.code
    session.started_at = room.started_at
    session.scheduled_end_time = room.scheduled_end_time
    session.is_active = room.status in ('active', 'paused')
    session.is_paused = room.status == 'paused'
    session.paused_at = room.paused_at
    session.resumed_at = room.resumed_at
    session.total_questions = RoomQuestion.query.filter_by(room_id=room.id).count()

    rows = (
        db.session.query(
            AnswerRecord.participant_key,
            func.coalesce(func.sum(AnswerRecord.points_awarded), 0),
            func.count(AnswerRecord.id),
        )
        .filter(AnswerRecord.room_id == room.id)
        .group_by(AnswerRecord.participant_key)
        .all()
    )
    progress = {key: (int(score), int(count)) for key, score, count in rows}
    for participant in room.participants:
        score, answered = progress.get(participant.participant_key, (0, 0))
        participant.score = score
        participant.answered_questions = answered
    return session


def start_room(room_id, caller_id, now=None):
    now = now or utcnow()
    with room_locks.hold(room_id):
        room = require_room(room_id)
        require_creator(room, caller_id, 'start the room')
        if room.status != 'waiting':
            raise InvalidState('Room can only be started from waiting status', status=room.status)
        question_count = RoomQuestion.query.filter_by(room_id=room.id).count()
        if question_count == 0:
            raise NoQuestions('Cannot start room without questions')

        scheduled_end = now + timedelta(minutes=room.time_limit)
        swap_status(
            room, 'waiting',
            status='active', started_at=now, scheduled_end_time=scheduled_end,
            updated_at=now, total_questions=question_count,
        )
        for participant in room.participants:
            participant.is_active = True
            participant.last_activity = now
        rebuild_session(room, started_by=caller_id)
        log_activity(room, 'room_started', caller_id, room.creator_name,
                     start_time=now, end_time=scheduled_end, question_count=question_count,
                     participant_count=room.current_participants)
        db.session.commit()
    current_app.logger.info(
        f"[room-start] room={room_id} questions={question_count} deadline={isoformat(scheduled_end)}"
    )
    return {
        'id': room_id,
        'status': 'active',
        'started_at': isoformat(now),
        'scheduled_end_time': isoformat(scheduled_end),
        'question_count': question_count,
    }


def _end_room(room: Room, now, ended_by=None, action='room_ended'):
    """Finalize statistics and flip the room to completed. Caller holds the room lock."""
    expected = room.status
    # Swap first: the row lock waits out in-flight answers, so the snapshot sees them
    swap_status(room, expected, status='completed', completed_at=now, updated_at=now, paused_at=None)
    stats = compute_final_statistics(room)
    room.average_score = stats.average_score
    room.completion_rate = stats.completion_rate
    room.total_questions = stats.total_questions
    persist_participant_results(room, stats, now)
    session = _get_session(room) or rebuild_session(room)
    session.is_active = False
    session.is_paused = False
    session.ended_at = now
    session.ended_by = ended_by
    session.final_statistics = stats.to_dict()
    log_activity(room, action, ended_by, room.creator_name if ended_by else None,
                 final_statistics=stats.to_dict())
    db.session.commit()
    current_app.logger.info(
        f"[room-end] room={room.id} by={ended_by or 'deadline'} average={stats.average_score} "
        f"completion={stats.completion_rate} participants={stats.total_participants}"
    )
    return stats


def control_room(room_id, caller_id, action, now=None):
    """Pause, resume or end a running room."""
    now = now or utcnow()
    if action not in CONTROL_ACTIONS:
        raise InvalidAction('Invalid action', action=action, allowed=list(CONTROL_ACTIONS))
    with room_locks.hold(room_id):
        room = require_room(room_id)
        require_creator(room, caller_id, 'control the room')
        if room.status not in ('active', 'paused'):
            raise InvalidState('Room must be active or paused to control', status=room.status)
        _check_transition(room, action)

        result = {'id': room_id}
        if action == 'pause':
            swap_status(room, 'active', status='paused', paused_at=now, updated_at=now)
            rebuild_session(room)
            log_activity(room, 'room_paused', caller_id, room.creator_name)
            db.session.commit()
            current_app.logger.info(f"[room-pause] room={room_id}")
        elif action == 'resume':
            swap_status(room, 'paused', status='active', paused_at=None, resumed_at=now, updated_at=now)
            rebuild_session(room)
            log_activity(room, 'room_resumed', caller_id, room.creator_name)
            db.session.commit()
            current_app.logger.info(f"[room-resume] room={room_id}")
        else:
            stats = _end_room(room, now, ended_by=caller_id)
            result['statistics'] = stats.to_dict()
        result['status'] = room.status
        result['updated_at'] = isoformat(room.updated_at)
    return result


def cancel_room(room_id, caller_id, now=None):
    now = now or utcnow()
    with room_locks.hold(room_id):
        room = require_room(room_id)
        require_creator(room, caller_id, 'cancel the room')
        _check_transition(room, 'cancel')
        swap_status(room, 'waiting', status='cancelled', updated_at=now)
        log_activity(room, 'room_cancelled', caller_id, room.creator_name)
        db.session.commit()
    current_app.logger.info(f"[room-cancel] room={room_id}")
    return {'id': room_id, 'status': 'cancelled'}


def expire_if_due(room: Room, now=None) -> bool:
    """End an active room whose deadline has passed. Returns True if this call ended it.

    There is no timer; callers that poll or submit trigger this check.
    """
    now = now or utcnow()
    if not current_app.config.get('AUTO_END_EXPIRED_ROOMS', True):
        return False
    if room.status != 'active' or not room.is_deadline_passed(now):
        return False
    with room_locks.hold(room.id):
        db.session.refresh(room)
        if room.status != 'active':
            return False
        try:
            _end_room(room, now, ended_by=None, action='room_expired')
        except Conflict:
            # Another request finalized it first
            current_app.logger.info(f"[room-expire-skip] room={room.id} already ended")
            db.session.refresh(room)
            return False
    return True


def get_room_status(room_id, now=None):
    """Polling view for creator and participants."""
    now = now or utcnow()
    room = require_room(room_id)
    expire_if_due(room, now)
    session = _get_session(room)
    payload = room.to_dict(include_participants=True)
    payload['time_remaining'] = room.time_remaining(now)
    return {
        'room': payload,
        'session': session.to_dict() if session else None,
    }
