from datetime import datetime, timezone
from typing import Optional
import re

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from quizroom import db
from quizroom.errors import (
    Conflict, Ended, InvalidState, NotFound, Unauthorized, ValidationError,
)
from quizroom.identity import Identity, ParticipantKey
from quizroom.models import (
    DIFFICULTIES, SETTING_FIELDS, AnswerRecord, Room, RoomActivity, RoomParticipant,
    RoomRating, RoomSession, RoomSettings, User, generate_room_code, utcnow,
)
from .activity import log_activity

ROOM_ID_PATTERN = re.compile(r'^[0-9a-f]{32}$')
BOOL_FIELDS = ('is_public', 'allow_late_join', 'show_leaderboard', 'shuffle_questions')


def require_room(room_id) -> Room:
    if not isinstance(room_id, str) or not ROOM_ID_PATTERN.match(room_id):
        raise NotFound('Room not found', room_id=room_id)
    room = db.session.get(Room, room_id)
    if room is None:
        raise NotFound('Room not found', room_id=room_id)
    return room


def require_creator(room: Room, caller_id: Optional[int], action: str) -> None:
    if caller_id is None or int(caller_id) != room.creator_id:
        raise Unauthorized(f'Only the room creator can {action}')


def touch_waiting_room(room: Room, now: datetime) -> None:
    """Take the row for a waiting-room edit; fails if the room left `waiting` meanwhile."""
    updated = (
        Room.query.filter(Room.id == room.id, Room.status == 'waiting')
        .update({'updated_at': now}, synchronize_session=False)
    )
    if updated != 1:
        db.session.rollback()
        raise Conflict('Room was started or changed by another request')


def _parse_int(data, field, minimum=None, maximum=None):
    value = data.get(field)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f'{field} must be an integer')
    if minimum is not None and value < minimum:
        raise ValidationError(f'{field} must be at least {minimum}')
    if maximum is not None and value > maximum:
        raise ValidationError(f'{field} must be at most {maximum}')
    return value


def _parse_datetime(value, field):
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f'{field} must be an ISO-8601 string')
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'{field} must be an ISO-8601 string')
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_settings(value, base: RoomSettings) -> RoomSettings:
    if not isinstance(value, dict):
        raise ValidationError('settings must be an object')
    unknown = sorted(set(value) - set(SETTING_FIELDS))
    if unknown:
        raise ValidationError('Unknown settings', fields=unknown)
    merged = base.to_dict()
    for field, flag in value.items():
        if not isinstance(flag, bool):
            raise ValidationError(f'settings.{field} must be a boolean')
        merged[field] = flag
    return RoomSettings(**merged)


def parse_room_config(data, partial=False, base_settings=None):
    """Validate room configuration input; returns only the fields present."""
    if not isinstance(data, dict):
        raise ValidationError('Invalid room configuration')
    cfg = current_app.config
    values = {}

    if 'title' in data or not partial:
        title = data.get('title')
        if not isinstance(title, str) or not title.strip():
            raise ValidationError('title is required')
        if len(title.strip()) > 200:
            raise ValidationError('title must be at most 200 characters')
        values['title'] = title.strip()
    if 'description' in data:
        description = data.get('description') or ''
        if not isinstance(description, str):
            raise ValidationError('description must be a string')
        values['description'] = description
    if 'category' in data:
        category = data.get('category')
        if category is not None and not isinstance(category, str):
            raise ValidationError('category must be a string')
        values['category'] = category or None
    if 'difficulty' in data:
        difficulty = data.get('difficulty')
        if difficulty is not None and difficulty not in DIFFICULTIES:
            raise ValidationError(f"difficulty must be one of {', '.join(DIFFICULTIES)}")
        values['difficulty'] = difficulty
    if 'max_participants' in data or not partial:
        values['max_participants'] = _parse_int(
            data, 'max_participants', 1, int(cfg.get('MAX_PARTICIPANTS_LIMIT', 1000)))
    if 'time_limit' in data and data.get('time_limit') is not None:
        values['time_limit'] = _parse_int(data, 'time_limit', 1, int(cfg.get('MAX_ROOM_TIME_LIMIT_MIN', 1440)))
    elif not partial:
        values['time_limit'] = int(cfg.get('DEFAULT_ROOM_TIME_LIMIT_MIN', 30))
    for field in BOOL_FIELDS:
        if field in data:
            if not isinstance(data[field], bool):
                raise ValidationError(f'{field} must be a boolean')
            values[field] = data[field]
    if 'scheduled_start_time' in data:
        values['scheduled_start_time'] = _parse_datetime(data.get('scheduled_start_time'), 'scheduled_start_time')
    if 'settings' in data:
        values['settings'] = parse_settings(data['settings'], base_settings or RoomSettings())
    return values


def _apply_config(room: Room, values) -> None:
    for field, value in values.items():
        if field == 'settings':
            room.apply_settings(value)
        else:
            setattr(room, field, value)


def create_room(creator: User, data, now=None) -> Room:
    now = now or utcnow()
    values = parse_room_config(data, partial=False)
    values.setdefault('settings', RoomSettings())
    room = Room(
        code=generate_room_code(),
        creator_id=creator.id,
        creator_name=creator.username,
        status='waiting',
        created_at=now,
        updated_at=now,
    )
    _apply_config(room, values)
    db.session.add(room)
    db.session.flush()
    log_activity(room, 'room_created', creator.id, creator.username,
                 title=room.title, max_participants=room.max_participants)
    db.session.commit()
    current_app.logger.info(f"[room-create] room={room.id} code={room.code} creator={creator.id}")
    return room


def get_room_by_code(code) -> Room:
    if not isinstance(code, str) or not code.strip():
        raise ValidationError('Room code is required')
    room = Room.query.filter_by(code=code.strip().upper()).first()
    if room is None:
        raise NotFound('Room not found. Please check the room code and try again.')
    return room


def update_room_config(room_id, caller_id, data, now=None) -> Room:
    now = now or utcnow()
    room = require_room(room_id)
    require_creator(room, caller_id, 'update the room')
    if room.status != 'waiting':
        raise InvalidState('Cannot modify room after it has started', status=room.status)
    values = parse_room_config(data, partial=True, base_settings=room.settings)
    touch_waiting_room(room, now)
    _apply_config(room, values)
    room.updated_at = now
    changed = {k: (v.to_dict() if isinstance(v, RoomSettings) else v) for k, v in values.items()}
    log_activity(room, 'room_updated', caller_id, room.creator_name, **changed)
    db.session.commit()
    current_app.logger.info(f"[room-update] room={room.id} fields={sorted(values)}")
    return room


def delete_room(room_id, caller_id) -> None:
    room = require_room(room_id)
    require_creator(room, caller_id, 'delete the room')
    if room.status in ('active', 'paused'):
        raise InvalidState('Cannot delete active room. Please end the room first.', status=room.status)
    # Roster and linkage rows go with the room through the ORM cascade
    for model in (AnswerRecord, RoomSession, RoomRating):
        model.query.filter_by(room_id=room.id).delete(synchronize_session=False)
    RoomActivity.query.filter_by(room_id=room.id).delete(synchronize_session=False)
    db.session.delete(room)
    db.session.commit()
    current_app.logger.info(f"[room-delete] room={room_id} by={caller_id}")


def join_room(code, identity: Identity, now=None):
    """Add the caller to a room's roster. Returns (room, participant, created)."""
    now = now or utcnow()
    room = get_room_by_code(code)
    if room.status == 'completed':
        raise Ended('This room has already ended')
    if room.status == 'cancelled':
        raise InvalidState('This room has been cancelled', status=room.status)
    if room.status in ('active', 'paused') and not room.allow_late_join:
        raise InvalidState("This room has already started and doesn't allow late joining", status=room.status)

    if identity.is_authenticated:
        key = ParticipantKey.authenticated(identity.user_id)
        user_name = identity.user_name
    else:
        user_name = identity.user_name or f'Guest_{int(now.timestamp() * 1000)}'
        key = ParticipantKey.guest(user_name)

    existing = room.find_participant(key)
    if existing is not None:
        return room, existing, False

    if room.current_participants >= room.max_participants:
        raise InvalidState('Room is full')

    participant = RoomParticipant(
        room=room,
        participant_key=str(key),
        user_id=key.user_id,
        user_name=user_name,
        is_authenticated=identity.is_authenticated,
        joined_at=now,
        last_activity=now,
    )
    db.session.add(participant)
    room.updated_at = now
    log_activity(room, 'user_joined', identity.user_id, user_name,
                 join_method='authenticated' if identity.is_authenticated else 'guest')
    try:
        db.session.commit()
    except IntegrityError:
        # Same key joined concurrently; the stored entry wins
        db.session.rollback()
        room = require_room(room.id)
        existing = room.find_participant(key)
        if existing is None:
            raise
        return room, existing, False
    current_app.logger.info(f"[room-join] room={room.id} participant={key}")
    return room, participant, True


def list_public_rooms(search=None, category=None, difficulty=None, page=1, limit=10):
    query = Room.query.filter(Room.is_public.is_(True), Room.status.in_(('waiting', 'active')))
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(
            Room.title.ilike(pattern), Room.description.ilike(pattern),
            Room.code.ilike(pattern), Room.category.ilike(pattern),
        ))
    if category:
        query = query.filter(Room.category == category)
    if difficulty:
        query = query.filter(Room.difficulty == difficulty)
    page = max(1, int(page))
    limit = max(1, min(50, int(limit)))
    total = query.count()
    rooms = query.order_by(Room.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return rooms, total


def list_rooms_for_user(user_id, limit=20):
    created = (
        Room.query.filter_by(creator_id=user_id)
        .order_by(Room.created_at.desc()).limit(limit).all()
    )
    joined = (
        Room.query.join(RoomParticipant)
        .filter(RoomParticipant.user_id == user_id, Room.creator_id != user_id)
        .order_by(RoomParticipant.joined_at.desc()).limit(limit).all()
    )
    return created, joined
