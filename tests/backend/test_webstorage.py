import json

import pytest

from scstorage.codec import RecordCodec
from scstorage.config import Settings
from scstorage.errors import ValidationError
from scstorage.webstorage import WebStorageUtility, local_area, session_area


@pytest.fixture
def local(tmp_path, clock):
    settings = Settings(lifetime=1000, data_dir=str(tmp_path))
    return WebStorageUtility(local_area(tmp_path), RecordCodec(settings.lifetime, clock), settings, 'local storage')


@pytest.fixture
def session(clock):
    settings = Settings(lifetime=1000)
    return WebStorageUtility(session_area(), RecordCodec(settings.lifetime, clock), settings, 'session storage')


def test_local_write_persists_envelope(local, tmp_path, clock):
    assert local.write('greeting', {'text': 'hello'}) is True
    stored = json.loads((tmp_path / 'local_storage' / 'greeting.txt').read_text())
    assert stored == {
        'data': {'text': 'hello'},
        'expires': clock.now + 1000,
        'createdAt': clock.now,
        'updatedAt': clock.now,
    }
    assert local.read('greeting') == {'text': 'hello'}
    assert local.read('greeting', with_meta=True) == stored


def test_local_survives_new_utility(local, tmp_path, clock):
    local.write('k', [1, 2, 3])
    again = WebStorageUtility(local_area(tmp_path), RecordCodec(1000, clock), Settings(), 'local storage')
    assert again.read('k') == [1, 2, 3]


def test_never_written_key(session):
    assert session.read('missing') is None
    assert session.read('missing', with_meta=True) == {'data': None}
    assert session.has('missing') is False


def test_expired_item_is_removed(session, clock):
    session.write('k', 'v', expires=100)
    clock.advance(101)
    assert session.read('k') is None
    assert session.area.get_item('k') is None
    assert session.has('k') is False


def test_rewrite_keeps_created_at(session, clock):
    session.write('k', 1)
    created = clock.now
    clock.advance(10)
    session.write('k', 2)
    item = session.read('k', with_meta=True)
    assert item['createdAt'] == created
    assert item['updatedAt'] == created + 10
    assert item['data'] == 2


def test_invalid_items_are_returned_raw(session, caplog):
    session.area.set_item('text', 'not json')
    session.area.set_item('bare', json.dumps({'foo': 1}))
    with caplog.at_level('INFO', logger='scstorage.webstorage'):
        assert session.read('text') == 'not json'
        assert session.read('bare', with_meta=True) == {'data': {'foo': 1}}
    assert 'invalid item' in caplog.text


def test_delete_and_option_validation(session):
    session.write('k', 'v')
    assert session.delete('k') is True
    assert session.delete('k') is True
    assert session.has('k') is False
    with pytest.raises(ValidationError):
        session.write('k', 'v', update=True)
    with pytest.raises(ValidationError):
        session.read('k', with_meta='yes')
    with pytest.raises(ValidationError):
        session.write('k', object())


def test_session_areas_are_independent():
    a, b = session_area(), session_area()
    a.set_item('k', 'v')
    assert b.get_item('k') is None
    assert list(a.keys()) == ['k']
    assert len(a) == 1
    a.clear()
    assert len(a) == 0
