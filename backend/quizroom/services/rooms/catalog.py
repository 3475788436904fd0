from typing import Dict, Iterable, Optional

from flask import current_app
from sqlalchemy import or_

from quizroom.models import Question, RoomQuestion


def lookup_questions(question_ids: Iterable[int]) -> Dict[int, Question]:
    """Fetch catalog questions by id; missing ids are simply absent."""
    ids = list({int(qid) for qid in question_ids})
    if not ids:
        return {}
    return {q.id: q for q in Question.query.filter(Question.id.in_(ids)).all()}


def accessible_questions(question_ids: Iterable[int], user_id: int) -> Dict[int, Question]:
    """Questions the user may put in a room: their own or public ones."""
    ids = list({int(qid) for qid in question_ids})
    if not ids:
        return {}
    rows = Question.query.filter(
        Question.id.in_(ids),
        or_(Question.creator_id == user_id, Question.is_public.is_(True)),
    ).all()
    return {q.id: q for q in rows}


def effective_points(link: Optional[RoomQuestion], question: Question) -> int:
    if link is not None and link.points is not None:
        return link.points
    if question.points is not None:
        return question.points
    return int(current_app.config.get('DEFAULT_QUESTION_POINTS', 1))


def effective_time_limit(link: Optional[RoomQuestion], question: Question) -> int:
    if link is not None and link.time_limit is not None:
        return link.time_limit
    if question.time_limit is not None:
        return question.time_limit
    return int(current_app.config.get('DEFAULT_QUESTION_TIME_LIMIT_SEC', 30))
