from datetime import datetime, timedelta, timezone

import pytest

from scstorage.codec import Envelope, RecordCodec
from scstorage.errors import ValidationError


def test_expires_at_variants(clock):
    codec = RecordCodec(lifetime=1000, clock=clock)
    now = clock.now

    assert codec.expires_at(None) == now + 1000
    assert codec.expires_at(500) == now + 500
    assert codec.expires_at(2.5) == now + 2
    assert codec.expires_at(timedelta(seconds=2)) == now + 2000

    absolute = datetime(2030, 1, 1, tzinfo=timezone.utc)
    assert codec.expires_at(absolute) == int(absolute.timestamp() * 1000)
    # naive datetimes are taken as UTC
    assert codec.expires_at(datetime(2030, 1, 1)) == int(absolute.timestamp() * 1000)


@pytest.mark.parametrize('bad', [True, 'tomorrow', [1]])
def test_expires_at_rejects_other_types(clock, bad):
    codec = RecordCodec(lifetime=1000, clock=clock)
    with pytest.raises(ValidationError):
        codec.expires_at(bad)


def test_wrap_for_create_sets_timestamps(clock):
    codec = RecordCodec(lifetime=1000, clock=clock)
    env = codec.wrap_for_create({'todo': 'Walking'})

    assert env.created_at == env.updated_at == clock.now
    assert env.expires == clock.now + 1000
    assert env.id is None
    assert env.to_record() == {
        'todo': 'Walking',
        'expires': clock.now + 1000,
        'createdAt': clock.now,
        'updatedAt': clock.now,
    }


def test_wrap_for_update_keeps_created_and_expires(clock):
    codec = RecordCodec(lifetime=1000, clock=clock)
    stored = {'id': 1, 'todo': 'Walking', 'expires': clock.now + 1000, 'createdAt': clock.now, 'updatedAt': clock.now}
    existing = Envelope.from_record(stored)
    created = clock.now

    clock.advance(200)
    env = codec.wrap_for_update(existing, {'id': 1, 'todo': 'Jumping'})
    assert env.id == 1
    assert env.data == {'todo': 'Jumping'}
    assert env.created_at == created
    assert env.expires == created + 1000
    assert env.updated_at == created + 200

    renewed = codec.wrap_for_update(existing, {'id': 1, 'todo': 'Jumping'}, expires=5000)
    assert renewed.expires == clock.now + 5000
    assert renewed.to_record()['id'] == 1


def test_envelope_from_record_separates_metadata():
    env = Envelope.from_record({'id': 3, 'a': 1, 'expires': 10, 'createdAt': 1, 'updatedAt': 2})
    assert env.data == {'a': 1}
    assert (env.id, env.expires, env.created_at, env.updated_at) == (3, 10, 1, 2)


def test_is_expired_is_strict():
    env = Envelope(data=None, expires=100, created_at=0, updated_at=0)
    assert env.is_expired(100) is False
    assert env.is_expired(101) is True
    assert Envelope(data=None, expires=None, created_at=0, updated_at=0).is_expired(10**15) is False


def test_wrap_keeps_created_at_of_existing_item(clock):
    codec = RecordCodec(lifetime=1000, clock=clock)
    first = codec.wrap('v1')
    clock.advance(50)
    second = codec.wrap('v2', existing=Envelope.from_item(first.to_item()))

    assert second.created_at == first.created_at
    assert second.updated_at == first.created_at + 50
    assert second.to_item()['data'] == 'v2'
