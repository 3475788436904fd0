"""Domain errors raised by the room services.

Every expected rejection (missing room, wrong caller, illegal transition,
bad input, lost compare-and-swap) is one of these. The app factory renders
them as JSON with the matching HTTP status; anything else is an
infrastructure failure and propagates.
"""


class RoomError(Exception):
    code = 'room_error'
    status_code = 400

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {'error': self.message, 'code': self.code}
        payload.update(self.details)
        return payload


class NotFound(RoomError):
    code = 'not_found'
    status_code = 404


class QuestionNotFound(NotFound):
    code = 'question_not_found'


class Unauthorized(RoomError):
    """Caller is not the room creator."""
    code = 'unauthorized'
    status_code = 403


class Forbidden(RoomError):
    code = 'forbidden'
    status_code = 403


class NotAParticipant(Forbidden):
    code = 'not_a_participant'


class InvalidState(RoomError):
    code = 'invalid_state'
    status_code = 400


class NoQuestions(InvalidState):
    code = 'no_questions'


class NotStarted(InvalidState):
    code = 'not_started'


class Ended(InvalidState):
    code = 'ended'


class NotActive(InvalidState):
    code = 'not_active'


class DeadlinePassed(InvalidState):
    code = 'deadline_passed'


class ValidationError(RoomError):
    code = 'validation_error'
    status_code = 400


class InvalidAction(ValidationError):
    code = 'invalid_action'


class QuestionNotAccessible(ValidationError):
    code = 'question_not_accessible'


class Conflict(RoomError):
    """A concurrent request changed the room first."""
    code = 'conflict'
    status_code = 409
