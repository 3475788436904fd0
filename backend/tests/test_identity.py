import pytest

from quizroom.errors import ValidationError
from quizroom.identity import Identity, ParticipantKey, resolve_identity


def test_participant_key_serialization():
    assert str(ParticipantKey.authenticated(7)) == 'user:7'
    assert str(ParticipantKey.guest('  Pat ')) == 'guest:Pat'
    assert ParticipantKey.parse('user:7') == ParticipantKey.authenticated(7)
    assert ParticipantKey.parse('guest:Pat').is_guest
    assert ParticipantKey.parse('user:7').user_id == 7
    assert ParticipantKey.guest('Pat').user_id is None


@pytest.mark.parametrize('raw', ['', 'Pat', 'admin:1', 'user:', 'user:abc'])
def test_parse_rejects_malformed_keys(raw):
    with pytest.raises((ValidationError, ValueError)):
        ParticipantKey.parse(raw)


def test_guest_name_validation():
    with pytest.raises(ValidationError):
        ParticipantKey.guest('   ')
    with pytest.raises(ValidationError):
        ParticipantKey.guest('x' * 65)


def test_identity_prefers_user_id():
    assert Identity(user_id=3, user_name='sam').participant_key == ParticipantKey.authenticated(3)
    assert Identity(user_name='sam').participant_key == ParticipantKey.guest('sam')
    assert Identity().participant_key is None
    with pytest.raises(ValidationError):
        Identity().require_participant_key()


def test_resolve_guest_from_json_body(flask_app):
    with flask_app.test_request_context('/', method='POST', json={'participant_id': 'guest:Pat'}):
        identity = resolve_identity()
    assert identity == Identity(user_name='Pat')


def test_resolve_guest_from_query_and_header(flask_app):
    with flask_app.test_request_context('/?participant_id=Quinn'):
        assert resolve_identity().user_name == 'Quinn'
    with flask_app.test_request_context('/', headers={'X-Guest-Name': 'Rae'}):
        assert resolve_identity().user_name == 'Rae'
    with flask_app.test_request_context('/'):
        assert resolve_identity() == Identity()
