"""End-of-room aggregation.

Statistics are computed once, when a room ends, from the answer ledger and
the roster. They are a frozen snapshot afterwards.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List

from quizroom.models import AnswerRecord, Room, RoomParticipant
from .catalog import effective_points, lookup_questions
from .linkage import list_room_questions


def round_half_up(value) -> int:
    return int(Decimal(str(value)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


@dataclass
class ParticipantTotals:
    participant_key: str
    raw_score: int = 0
    answered: int = 0
    percent: float = 0.0

    @property
    def percent_score(self) -> int:
        return round_half_up(self.percent)


@dataclass
class FinalStatistics:
    total_questions: int
    total_points: int
    total_participants: int
    completed_participants: int
    average_score: int
    completion_rate: int
    participants: Dict[str, ParticipantTotals] = field(default_factory=dict)

    def to_dict(self):
        return {
            'average_score': self.average_score,
            'completion_rate': self.completion_rate,
            'total_questions': self.total_questions,
            'total_participants': self.total_participants,
            'completed_participants': self.completed_participants,
        }


def aggregate(answers: Iterable, roster_keys: List[str], total_questions: int, total_points: int) -> FinalStatistics:
    """Fold answer records into per-participant totals and room statistics.

    `answers` needs `participant_key` and `points_awarded`. Only roster
    members count; a member with no answers is in the participant total but
    not among completed participants.
    """
    roster = list(dict.fromkeys(roster_keys))
    totals = {key: ParticipantTotals(key) for key in roster}
    for answer in answers:
        entry = totals.get(answer.participant_key)
        if entry is None:
            continue
        entry.raw_score += answer.points_awarded or 0
        entry.answered += 1

    percents = []
    for entry in totals.values():
        entry.percent = (entry.raw_score / total_points * 100) if total_points > 0 else 0.0
        if entry.answered > 0:
            percents.append(entry.percent)

    total_participants = len(roster)
    completed = len(percents)
    average_score = round_half_up(sum(percents) / completed) if completed else 0
    completion_rate = round_half_up(completed / total_participants * 100) if total_participants else 0
    return FinalStatistics(
        total_questions=total_questions,
        total_points=total_points,
        total_participants=total_participants,
        completed_participants=completed,
        average_score=average_score,
        completion_rate=completion_rate,
        participants=totals,
    )


def total_possible_points(room: Room) -> int:
    links = list_room_questions(room)
    catalog = lookup_questions(link.question_id for link in links)
    return sum(effective_points(link, catalog[link.question_id]) for link in links if link.question_id in catalog)


def compute_final_statistics(room: Room) -> FinalStatistics:
    answers = AnswerRecord.query.filter_by(room_id=room.id).all()
    roster = [p.participant_key for p in RoomParticipant.query.filter_by(room_id=room.id).all()]
    total_questions = len(list_room_questions(room))
    return aggregate(answers, roster, total_questions, total_possible_points(room))


def persist_participant_results(room: Room, stats: FinalStatistics, now) -> None:
    for participant in RoomParticipant.query.filter_by(room_id=room.id).all():
        totals = stats.participants.get(participant.participant_key)
        if totals is None:
            continue
        participant.score = totals.raw_score
        participant.answered_questions = totals.answered
        participant.final_score = totals.percent_score
        participant.completed_at = now
