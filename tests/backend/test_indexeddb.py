import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from scstorage.codec import RecordCodec
from scstorage.config import Settings
from scstorage.errors import (
    NativeRequestError,
    RecordNotFoundError,
    RequestTimeoutError,
    SchemaError,
    ValidationError,
)
from scstorage.indexeddb import IDBFactory, IndexedDBUtility, IndexSpec
from scstorage.indexeddb.engine import IDBCursorWithValue, IDBObjectStore, IDBOpenDBRequest, NativeError
from scstorage.indexeddb.registry import ConnectionState

TODO_INDEX = {'index_key': 'todo', 'index_name': 'todo', 'index_options': {'unique': False, 'multi_entry': True}}


def make_util(clock, **settings):
    cfg = Settings(lifetime=1000, indexeddb_enable=True, **settings)
    return IndexedDBUtility(cfg, factory=IDBFactory(), codec=RecordCodec(cfg.lifetime, clock))


def test_read_by_index_value(clock):
    async def scenario():
        db = make_util(clock)
        assert await db.write('todos', {'todo': 'Walking'}, indexes=[TODO_INDEX]) is True
        record = await db.read('todos', index='todo', name_value='Walking')
        assert record['todo'] == 'Walking'
        assert record['id'] == 1
        assert await db.read('todos', index='todo', name_value='Sleeping') is None

    asyncio.run(scenario())


def test_camel_case_index_declaration(clock):
    async def scenario():
        db = make_util(clock)
        index = {'indexKey': 'tags', 'indexName': 'tags', 'indexOptions': {'unique': False, 'multiEntry': True}}
        await db.write('posts', {'tags': ['a', 'b']}, indexes=[index])
        assert (await db.read('posts', index='tags', nameValue='b'))['id'] == 1

    asyncio.run(scenario())


def test_update_replaces_data_and_keeps_metadata(clock):
    async def scenario():
        db = make_util(clock)
        await db.write('todos', {'todo': 'Walking'})
        before = await db.read('todos', id=1)

        clock.advance(100)
        assert await db.write('todos', {'todo': 'Jumping', 'friends': ['Tom'], 'id': 1}, update=True) is True
        after = await db.read('todos', id=1)
        assert after['friends'][0] == 'Tom'
        assert after['todo'] == 'Jumping'
        assert after['createdAt'] == before['createdAt']
        assert after['expires'] == before['expires']
        assert after['updatedAt'] == before['updatedAt'] + 100

        await db.write('todos', {'todo': 'Jumping', 'id': 1}, update=True, expires=5000)
        assert (await db.read('todos', id=1))['expires'] == clock.now + 5000

    asyncio.run(scenario())


def test_round_trip_and_repeated_reads(clock):
    async def scenario():
        db = make_util(clock)
        await db.write('notes', {'text': 'hi', 'n': 1})
        expected = {
            'text': 'hi',
            'n': 1,
            'id': 1,
            'expires': clock.now + 1000,
            'createdAt': clock.now,
            'updatedAt': clock.now,
        }
        assert await db.read('notes', id=1) == expected
        assert await db.read('notes', id=1) == expected
        assert await db.read('notes', id=1, with_meta=True) == {'data': expected}
        assert await db.read('notes') == [expected]
        assert await db.read('notes', with_meta=True) == {'data': [expected]}

    asyncio.run(scenario())


def test_never_written_keys(clock):
    async def scenario():
        db = make_util(clock)
        assert await db.has('nothing', id=1) is False
        assert await db.read('nothing', id=1) is None
        assert await db.read('nothing', id=1, with_meta=True) == {'data': None}
        assert await db.read('nothing') == []

        await db.write('todos', {'todo': 'Walking'}, indexes=[TODO_INDEX])
        assert await db.has('todos', id=99) is False
        assert await db.has('todos', index='todo', name_value='Running') is False
        assert await db.has('todos', id=1) is True
        assert await db.has('todos') is True

    asyncio.run(scenario())


def test_expired_records_are_deleted_on_read(clock):
    async def scenario():
        db = make_util(clock)
        await db.write('todos', {'todo': 'Walking'}, indexes=[TODO_INDEX], expires=100)
        clock.advance(101)
        assert await db.has('todos', id=1) is False
        assert await db.read('todos', index='todo', name_value='Walking') is None

        # turning the clock back shows the record is gone, not hidden
        clock.advance(-200)
        assert await db.read('todos', id=1) is None
        assert await db.read('todos') == []

    asyncio.run(scenario())


def test_scan_skips_and_removes_expired(clock):
    async def scenario():
        db = make_util(clock)
        await db.write('items', {'n': 1})
        await db.write('items', {'n': 2}, expires=10)
        await db.write('items', {'n': 3}, expires=timedelta(seconds=5))
        await db.write('items', {'n': 4}, expires=datetime(2000, 1, 1, tzinfo=timezone.utc))
        clock.advance(11)

        assert [r['n'] for r in await db.read('items')] == [1, 3]
        clock.advance(-11)
        assert [r['n'] for r in await db.read('items')] == [1, 3]

    asyncio.run(scenario())


def test_scan_in_index_order(clock):
    async def scenario():
        db = make_util(clock)
        for todo in ('c', 'a', 'b'):
            await db.write('todos', {'todo': todo}, indexes=[TODO_INDEX])
        assert [r['todo'] for r in await db.read('todos', index='todo')] == ['a', 'b', 'c']
        assert [r['id'] for r in await db.read('todos')] == [1, 2, 3]

    asyncio.run(scenario())


def test_index_scan_of_missing_store_is_an_empty_list(clock):
    async def scenario():
        db = make_util(clock)
        await db.write('other', {'todo': 'Walking'}, indexes=[TODO_INDEX])
        assert await db.read('todos', index='todo') == []
        assert await db.read('todos', index='todo', with_meta=True) == {'data': []}
        assert await db.read('todos', index='todo', name_value='Walking') is None
        assert await db.has('todos', index='todo') is False

    asyncio.run(scenario())


def _raise_on_delete(self, *args):
    raise NativeError('InvalidStateError', 'delete refused')


def _fail_on_delete(self, *args):
    if isinstance(self, IDBCursorWithValue):
        transaction, source = self._transaction, self._source
    else:
        transaction, source = self.transaction, self

    def operation():
        raise NativeError('QuotaExceededError', 'disk full')

    return transaction._request(source, operation)


@pytest.mark.parametrize('failing_delete', [_raise_on_delete, _fail_on_delete])
def test_failed_expiry_cleanup_still_hides_record(clock, monkeypatch, failing_delete):
    async def scenario():
        db = make_util(clock)
        await db.write('todos', {'todo': 'Walking'}, indexes=[TODO_INDEX], expires=100)
        await db.write('todos', {'todo': 'Walking'})
        clock.advance(101)

        monkeypatch.setattr(IDBObjectStore, 'delete', failing_delete)
        monkeypatch.setattr(IDBCursorWithValue, 'delete', failing_delete)
        assert await db.read('todos', id=1) is None
        assert await db.has('todos', id=1) is False
        assert (await db.read('todos', index='todo', name_value='Walking'))['id'] == 2
        assert [r['id'] for r in await db.read('todos')] == [2]
        assert [r['id'] for r in await db.read('todos', index='todo')] == [2]
        monkeypatch.undo()

        # the record was never removed
        clock.advance(-101)
        assert (await db.read('todos', id=1))['id'] == 1

    asyncio.run(scenario())


def test_update_errors(clock):
    async def scenario():
        db = make_util(clock)
        await db.write('todos', {'todo': 'Walking'}, expires=10)
        with pytest.raises(RecordNotFoundError) as exc:
            await db.write('todos', {'todo': 'x', 'id': 42}, update=True)
        assert 'Id 42 not found' in str(exc.value)

        clock.advance(11)
        with pytest.raises(RecordNotFoundError):
            await db.write('todos', {'todo': 'x', 'id': 1}, update=True)

    asyncio.run(scenario())


@pytest.mark.parametrize('data, options, error', [
    ({'todo': 'x', 'expires': 1}, {}, ValidationError),
    ({'todo': 'x', 'createdAt': 1}, {}, ValidationError),
    ({'todo': 'x', 'updatedAt': 1}, {}, ValidationError),
    ({'todo': 'x', 'id': 1}, {}, ValidationError),
    ({'todo': 'x'}, {'update': True}, ValidationError),
    ({'todo': 'x', 'id': '1'}, {'update': True}, ValidationError),
    (['not', 'a', 'mapping'], {}, ValidationError),
    ({'todo': 'x'}, {'update': 'yes'}, ValidationError),
    ({'todo': 'x'}, {'expires': 'soon'}, ValidationError),
    ({'todo': 'x'}, {'database': 3}, ValidationError),
    ({'todo': 'x'}, {'colour': 'blue'}, ValidationError),
    ({'todo': 'x'}, {'indexes': [{'index_key': 'todo'}]}, ValidationError),
    ({'todo': 'x'}, {'indexes': [{'index_key': 'a', 'index_name': 'a', 'unique': 'no'}]}, ValidationError),
    ({'todo': 'x'}, {'indexes': [TODO_INDEX, TODO_INDEX]}, SchemaError),
    ({'todo': 'x'}, {'indexes': [IndexSpec('other', 'id')]}, SchemaError),
])
def test_write_validation_is_synchronous(clock, data, options, error):
    db = make_util(clock)
    # raises before any awaitable exists
    with pytest.raises(error):
        db.write('todos', data, **options)


@pytest.mark.parametrize('options', [
    {'name_value': 'x'},
    {'id': 1, 'index': 'todo'},
    {'id': True},
    {'index': 5},
    {'with_meta': 'yes'},
    {'close_database': 1},
    {'unknown': 1},
])
def test_read_validation_is_synchronous(clock, options):
    db = make_util(clock)
    with pytest.raises(ValidationError):
        db.read('todos', **options)
    with pytest.raises(ValidationError):
        db.has('todos', **options)


def test_bad_store_name_and_delete_options(clock):
    db = make_util(clock)
    with pytest.raises(ValidationError):
        db.read('', id=1)
    with pytest.raises(ValidationError):
        db.write(None, {})
    with pytest.raises(ValidationError):
        db.delete(1)
    with pytest.raises(ValidationError):
        db.delete(1, store_name='todos', type='table')
    with pytest.raises(ValidationError):
        db.delete(5, type='database')


def test_delete_granularities(clock):
    async def scenario():
        db = make_util(clock)
        await db.write('todos', {'todo': 'a'})
        await db.write('todos', {'todo': 'b'})
        await db.write('other', {'x': 1})

        assert await db.delete(1, store_name='todos') is True
        assert await db.has('todos', id=1) is False
        assert await db.has('todos', id=2) is True
        # idempotent
        assert await db.delete(1, store_name='todos') is True
        assert await db.delete(1, store_name='missing') is True

        assert await db.delete('todos', type='store') is True
        assert await db.has('todos', id=2) is False
        assert await db.read('todos') == []
        assert await db.has('other', id=1) is True
        assert await db.delete('todos', type='store') is True

        # the store comes back on the next write
        await db.write('todos', {'todo': 'c'})
        assert await db.has('todos') is True

        assert await db.delete('default', type='database') is True
        assert await db.has('other', id=1) is False
        assert await db.has('todos') is False
        assert await db.delete('never-created', type='database') is True

    asyncio.run(scenario())


def test_databases_are_independent(clock):
    async def scenario():
        db = make_util(clock)
        await db.write('todos', {'todo': 'a'}, database='one')
        await db.write('todos', {'todo': 'b'}, database='two')
        assert (await db.read('todos', id=1, database='one'))['todo'] == 'a'
        assert (await db.read('todos', id=1, database='two'))['todo'] == 'b'
        await db.delete('one', type='database')
        assert await db.read('todos', id=1, database='one') is None
        assert await db.read('todos', id=1, database='two') is not None

    asyncio.run(scenario())


def test_indexes_ignored_for_existing_store(clock):
    async def scenario():
        db = make_util(clock)
        await db.write('todos', {'todo': 'a'})
        assert await db.write('todos', {'todo': 'b'}, indexes=[TODO_INDEX]) is True
        with pytest.raises(NativeRequestError) as exc:
            await db.read('todos', index='todo', name_value='b')
        assert exc.value.name == 'NotFoundError'

    asyncio.run(scenario())


def test_native_errors_surface_and_close(clock):
    async def scenario():
        db = make_util(clock)
        unique = {'index_key': 'email', 'index_name': 'email', 'index_options': {'unique': True, 'multi_entry': False}}
        await db.write('users', {'email': 'a@x'}, indexes=[unique])
        with pytest.raises(NativeRequestError) as exc:
            await db.write('users', {'email': 'a@x'})
        assert exc.value.name == 'ConstraintError'
        assert db.registry.state('default') is ConnectionState.CLOSED

    asyncio.run(scenario())


def test_close_database_option(clock):
    async def scenario():
        db = make_util(clock, indexeddb_close_after_request=False)
        await db.write('todos', {'todo': 'a'})
        assert db.registry.state('default') is ConnectionState.OPEN
        await db.read('todos', id=1, close_database=True)
        assert db.registry.state('default') is ConnectionState.CLOSED
        await db.read('todos', id=1)
        assert db.close() is True
        assert db.close() is False

    asyncio.run(scenario())


def test_concurrent_writes_to_new_store(clock):
    async def scenario():
        db = make_util(clock)
        results = await asyncio.gather(*(db.write('many', {'n': n}) for n in range(5)))
        assert results == [True] * 5
        assert sorted(r['n'] for r in await db.read('many')) == [0, 1, 2, 3, 4]
        assert db.databases() == [{'name': 'default', 'version': 2}]

    asyncio.run(scenario())


class HangingFactory(IDBFactory):
    def open(self, name, version=None):
        # never answers
        return IDBOpenDBRequest()


def test_request_timeout(clock):
    async def scenario():
        cfg = Settings(indexeddb_enable=True, indexeddb_request_timeout=0.05)
        db = IndexedDBUtility(cfg, factory=HangingFactory(), codec=RecordCodec(1000, clock))
        with pytest.raises(RequestTimeoutError):
            await db.read('todos', id=1)
        # the abandoned open does not block later calls
        assert db.registry.state('default') is ConnectionState.CLOSED
        with pytest.raises(RequestTimeoutError):
            await db.write('todos', {'todo': 'a'})

    asyncio.run(scenario())
