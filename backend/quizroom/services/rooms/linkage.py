from typing import List

from flask import current_app
from sqlalchemy import func

from quizroom import db
from quizroom.errors import InvalidState, QuestionNotAccessible, ValidationError
from quizroom.locks import room_locks
from quizroom.models import Room, RoomQuestion, utcnow
from .activity import log_activity
from .catalog import effective_points, effective_time_limit, lookup_questions, accessible_questions
from .rooms import require_creator, require_room, touch_waiting_room

LOCKED_MESSAGE = 'Cannot modify questions in active or completed rooms'


def _parse_question_ids(question_ids) -> List[int]:
    if not isinstance(question_ids, (list, tuple)) or not question_ids:
        raise ValidationError('Invalid question IDs')
    parsed = []
    for raw in question_ids:
        try:
            qid = int(raw)
        except (TypeError, ValueError):
            raise ValidationError('Invalid question IDs', question_id=raw)
        if isinstance(raw, bool) or qid < 1:
            raise ValidationError('Invalid question IDs', question_id=raw)
        parsed.append(qid)
    if len(set(parsed)) != len(parsed):
        raise ValidationError('Duplicate question IDs')
    return parsed


def _require_editable(room: Room) -> None:
    if room.status != 'waiting':
        raise InvalidState(LOCKED_MESSAGE, status=room.status)


def refresh_total_questions(room: Room) -> int:
    """Recount the linkage and cache it on the room."""
    db.session.flush()
    total = RoomQuestion.query.filter_by(room_id=room.id).count()
    room.total_questions = total
    return total


def list_room_questions(room: Room) -> List[RoomQuestion]:
    return (
        RoomQuestion.query.filter_by(room_id=room.id)
        .order_by(RoomQuestion.order, RoomQuestion.id)
        .all()
    )


def describe_room_questions(room: Room, include_answers=False):
    """Linked questions joined with catalog content, in room order."""
    links = list_room_questions(room)
    catalog = lookup_questions(link.question_id for link in links)
    described = []
    for link in links:
        question = catalog.get(link.question_id)
        if question is None:
            continue
        item = question.to_dict(include_answer=include_answers)
        item.update({
            'order': link.order,
            'is_required': link.is_required,
            'time_limit': effective_time_limit(link, question),
            'points': effective_points(link, question),
            'time_limit_override': link.time_limit,
            'points_override': link.points,
        })
        described.append(item)
    return described


def add_questions(room_id, caller_id, question_ids, replace_all=False, now=None):
    now = now or utcnow()
    ids = _parse_question_ids(question_ids)
    with room_locks.hold(room_id):
        room = require_room(room_id)
        require_creator(room, caller_id, 'modify questions')
        _require_editable(room)

        accessible = accessible_questions(ids, caller_id)
        missing = [qid for qid in ids if qid not in accessible]
        if missing:
            raise QuestionNotAccessible('Some questions not found or not accessible', question_ids=missing)

        if not replace_all:
            already = {
                link.question_id for link in
                RoomQuestion.query.filter(RoomQuestion.room_id == room.id, RoomQuestion.question_id.in_(ids)).all()
            }
            if already:
                raise ValidationError('Some questions are already in this room', question_ids=sorted(already))

        touch_waiting_room(room, now)
        if replace_all:
            for link in list_room_questions(room):
                db.session.delete(link)
            db.session.flush()
            next_order = 1
        else:
            max_order = db.session.query(func.max(RoomQuestion.order)).filter(RoomQuestion.room_id == room.id).scalar()
            next_order = (max_order or 0) + 1

        for offset, qid in enumerate(ids):
            db.session.add(RoomQuestion(
                room_id=room.id,
                question_id=qid,
                order=next_order + offset,
                is_required=True,
                time_limit=None,
                points=None,
                added_at=now,
                added_by=caller_id,
            ))
        total = refresh_total_questions(room)
        room.updated_at = now
        log_activity(room, 'questions_added', caller_id, room.creator_name,
                     question_ids=ids, replace_all=bool(replace_all), total_questions=total)
        db.session.commit()
    current_app.logger.info(f"[room-questions-add] room={room_id} added={len(ids)} replace_all={bool(replace_all)} total={total}")
    return {'total_questions': total}


def remove_questions(room_id, caller_id, question_ids, now=None):
    """Unlink questions. Remaining order values keep their gaps."""
    now = now or utcnow()
    ids = _parse_question_ids(question_ids)
    with room_locks.hold(room_id):
        room = require_room(room_id)
        require_creator(room, caller_id, 'modify questions')
        _require_editable(room)
        touch_waiting_room(room, now)
        doomed = RoomQuestion.query.filter(
            RoomQuestion.room_id == room.id, RoomQuestion.question_id.in_(ids),
        ).all()
        for link in doomed:
            db.session.delete(link)
        removed = len(doomed)
        total = refresh_total_questions(room)
        room.updated_at = now
        log_activity(room, 'questions_removed', caller_id, room.creator_name,
                     question_ids=ids, removed=removed, total_questions=total)
        db.session.commit()
    current_app.logger.info(f"[room-questions-remove] room={room_id} removed={removed} total={total}")
    return {'total_questions': total, 'removed': removed}


def _parse_entries(entries):
    if not isinstance(entries, list) or not entries:
        raise ValidationError('Invalid questions data')
    parsed = []
    seen = set()
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValidationError('Invalid questions data')
        qid = entry.get('question_id')
        order = entry.get('order')
        if isinstance(qid, bool) or not isinstance(qid, int):
            raise ValidationError('question_id must be an integer', entry=entry)
        if qid in seen:
            raise ValidationError('Duplicate question_id in update', question_id=qid)
        seen.add(qid)
        if isinstance(order, bool) or not isinstance(order, int) or order < 1:
            raise ValidationError('order must be a positive integer', question_id=qid)
        item = {'question_id': qid, 'order': order}
        for field, minimum in (('time_limit', 1), ('points', 0)):
            if field in entry:
                value = entry[field]
                if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < minimum):
                    raise ValidationError(f'{field} must be an integer >= {minimum} or null', question_id=qid)
                item[field] = value
        parsed.append(item)
    return parsed


def reorder_questions(room_id, caller_id, entries, now=None):
    """Apply new order values and optional time/points overrides."""
    now = now or utcnow()
    updates = _parse_entries(entries)
    with room_locks.hold(room_id):
        room = require_room(room_id)
        require_creator(room, caller_id, 'modify questions')
        _require_editable(room)

        links = {link.question_id: link for link in list_room_questions(room)}
        unknown = [u['question_id'] for u in updates if u['question_id'] not in links]
        if unknown:
            raise ValidationError('Questions are not linked to this room', question_ids=unknown)

        resulting = {qid: link.order for qid, link in links.items()}
        resulting.update({u['question_id']: u['order'] for u in updates})
        if len(set(resulting.values())) != len(resulting):
            raise ValidationError('Question order values must be unique within the room')

        touch_waiting_room(room, now)
        for update in updates:
            link = links[update['question_id']]
            link.order = update['order']
            if 'time_limit' in update:
                link.time_limit = update['time_limit']
            if 'points' in update:
                link.points = update['points']
            link.updated_at = now
        room.updated_at = now
        log_activity(room, 'questions_reordered', caller_id, room.creator_name, questions=updates)
        db.session.commit()
    current_app.logger.info(f"[room-questions-reorder] room={room_id} updated={len(updates)}")
    return {'questions': [link.to_dict() for link in sorted(links.values(), key=lambda l: l.order)]}
