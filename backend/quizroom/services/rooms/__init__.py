"""Room domain services: lifecycle, question linkage, scoring and results.

This package holds the quiz-room rules. HTTP routes resolve the caller and
delegate here, keeping transport concerns separated from the state machine
and scoring logic. Services raise quizroom.errors.RoomError subclasses for
every expected rejection.
"""
