from datetime import datetime

from quizroom import db
from quizroom.models import Room, RoomActivity, isoformat


def _jsonable(value):
    if isinstance(value, datetime):
        return isoformat(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def log_activity(room: Room, action: str, user_id=None, user_name=None, **details) -> RoomActivity:
    """Stage an activity row; committed together with the caller's change."""
    entry = RoomActivity(
        room_id=room.id,
        room_code=room.code,
        user_id=user_id,
        user_name=user_name,
        action=action,
        details=_jsonable(details),
    )
    db.session.add(entry)
    return entry


def list_activities(room: Room, limit=100):
    return (
        RoomActivity.query.filter_by(room_id=room.id)
        .order_by(RoomActivity.timestamp.desc(), RoomActivity.id.desc())
        .limit(limit)
        .all()
    )
