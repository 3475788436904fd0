from dataclasses import dataclass
from typing import Optional

from flask import request
from flask_login import current_user

from quizroom.errors import ValidationError

GUEST_NAME_MAX_LENGTH = 64


@dataclass(frozen=True)
class ParticipantKey:
    """Roster and answer-ledger key: an authenticated user id or a guest name."""

    kind: str
    value: str

    USER = 'user'
    GUEST = 'guest'

    @classmethod
    def authenticated(cls, user_id) -> 'ParticipantKey':
        return cls(cls.USER, str(int(user_id)))

    @classmethod
    def guest(cls, name: str) -> 'ParticipantKey':
        name = (name or '').strip()
        if not name:
            raise ValidationError('Guest name is required')
        if len(name) > GUEST_NAME_MAX_LENGTH:
            raise ValidationError(f'Guest name must be at most {GUEST_NAME_MAX_LENGTH} characters')
        return cls(cls.GUEST, name)

    @classmethod
    def parse(cls, raw: str) -> 'ParticipantKey':
        kind, sep, value = (raw or '').partition(':')
        if not sep or kind not in (cls.USER, cls.GUEST) or not value:
            raise ValidationError(f'Malformed participant key: {raw!r}')
        if kind == cls.USER:
            return cls.authenticated(value)
        return cls.guest(value)

    @property
    def is_guest(self) -> bool:
        return self.kind == self.GUEST

    @property
    def user_id(self) -> Optional[int]:
        return int(self.value) if self.kind == self.USER else None

    def __str__(self):
        return f'{self.kind}:{self.value}'


@dataclass(frozen=True)
class Identity:
    user_id: Optional[int] = None
    user_name: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def participant_key(self) -> Optional[ParticipantKey]:
        if self.user_id is not None:
            return ParticipantKey.authenticated(self.user_id)
        if self.user_name:
            return ParticipantKey.guest(self.user_name)
        return None

    def require_participant_key(self) -> ParticipantKey:
        key = self.participant_key
        if key is None:
            raise ValidationError('Participant identity is required (log in or pass participant_id)')
        return key


def _strip_guest_prefix(value: str) -> str:
    # Clients may echo back the full participant_id they were given on join
    prefix = f'{ParticipantKey.GUEST}:'
    value = value.strip()
    return value[len(prefix):].strip() if value.startswith(prefix) else value


def _guest_name_from_request() -> Optional[str]:
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        data = {}
    for field in ('participant_id', 'user_name'):
        value = data.get(field)
        if isinstance(value, str) and value.strip():
            return _strip_guest_prefix(value) or None
    value = request.args.get('participant_id') or request.headers.get('X-Guest-Name')
    if value and value.strip():
        return _strip_guest_prefix(value) or None
    return None


def resolve_identity() -> Identity:
    """Resolve the caller of the current request.

    Logged-in users win; otherwise the guest name supplied with the request
    is used. Returns an empty Identity when neither is present.
    """
    if current_user.is_authenticated:
        return Identity(user_id=current_user.id, user_name=current_user.username)
    return Identity(user_name=_guest_name_from_request())
