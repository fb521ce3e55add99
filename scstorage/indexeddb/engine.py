"""In-process transactional object-store engine.

This is the host-side engine the IndexedDB backend talks to. Its API follows
the browser IndexedDB model closely:

- `IDBFactory.open()` / `delete_database()` return request objects whose
  ``onsuccess`` / ``onerror`` / ``onupgradeneeded`` / ``onblocked`` handlers
  are invoked later from the running asyncio loop.
- Schema changes only happen inside the ``versionchange`` transaction of an
  open request that asked for a higher version.
- Transactions queue requests in FIFO order and commit by themselves once no
  request is left after the last handler ran. Handlers may place new requests
  on the same transaction to keep it alive.
- Cursors are positional: `continue_()` seeks to the first entry after the
  current key, so deleting the current record does not skip the next one.

Transactions on the same database are not isolated from each other; they
are interleaved request by request on the single event loop. An abort only
reverts the keys the aborted transaction wrote, so writes committed by
other transactions in the meantime survive.

When the factory is given a `StorageBackend`, every committed database is
snapshotted under the ``indexeddb`` namespace and reloaded on first open.
"""
from __future__ import annotations
import asyncio
import copy
import logging
import math
from collections import deque
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Sequence

from scstorage.storage.base import StorageBackend

logger = logging.getLogger(__name__)

READONLY = 'readonly'
READWRITE = 'readwrite'
VERSIONCHANGE = 'versionchange'

SNAPSHOT_NAMESPACE = 'indexeddb'

_MISSING = object()


class NativeError(Exception):
    """Error reported by the engine, named like a DOMException."""

    def __init__(self, name: str, message: str):
        super().__init__(message)
        self.name = name

    def __repr__(self) -> str:
        return f"NativeError({self.name!r}, {str(self)!r})"


# ---------------------------------------------------------------------------
# keys


def _key_rank(key: Any) -> tuple:
    """Sort key implementing IndexedDB key ordering.

    numbers < dates < strings < binary < arrays. Raises DataError for values
    that are not valid keys.
    """
    if isinstance(key, bool):
        raise NativeError('DataError', f'{key!r} is not a valid key')
    if isinstance(key, (int, float)):
        if isinstance(key, float) and math.isnan(key):
            raise NativeError('DataError', 'NaN is not a valid key')
        return (0, key)
    if isinstance(key, datetime):
        return (1, key.timestamp())
    if isinstance(key, str):
        return (2, key)
    if isinstance(key, (bytes, bytearray, memoryview)):
        return (3, bytes(key))
    if isinstance(key, (list, tuple)):
        return (4, tuple(_key_rank(k) for k in key))
    raise NativeError('DataError', f'{type(key).__name__} is not a valid key')


def _is_valid_key(key: Any) -> bool:
    try:
        _key_rank(key)
    except NativeError:
        return False
    return True


def _extract(value: Any, key_path: str | Sequence[str]) -> Any:
    """Evaluate a key path against a value; `_MISSING` when it does not resolve."""
    if not isinstance(key_path, str):
        parts = [_extract(value, p) for p in key_path]
        return _MISSING if any(p is _MISSING for p in parts) else list(parts)
    if key_path == '':
        return value
    cur = value
    for part in key_path.split('.'):
        if not isinstance(cur, dict) or part not in cur:
            return _MISSING
        cur = cur[part]
    return cur


def _inject(value: Any, key_path: str, key: Any) -> None:
    parts = key_path.split('.')
    cur = value
    for part in parts[:-1]:
        if not isinstance(cur, dict):
            raise NativeError('DataError', f'Cannot assign generated key at {key_path!r}')
        cur = cur.setdefault(part, {})
    if not isinstance(cur, dict):
        raise NativeError('DataError', f'Cannot assign generated key at {key_path!r}')
    cur[parts[-1]] = key


# ---------------------------------------------------------------------------
# persistent state


class _IndexData:
    def __init__(self, name: str, key_path: str | Sequence[str], unique: bool, multi_entry: bool):
        self.name = name
        self.key_path = key_path
        self.unique = unique
        self.multi_entry = multi_entry

    def keys_for(self, value: Any) -> list[Any]:
        found = _extract(value, self.key_path)
        if found is _MISSING:
            return []
        if self.multi_entry and isinstance(found, list):
            keys: list[Any] = []
            ranks = set()
            for item in found:
                if _is_valid_key(item) and _key_rank(item) not in ranks:
                    ranks.add(_key_rank(item))
                    keys.append(item)
            return keys
        return [found] if _is_valid_key(found) else []

    def to_snapshot(self) -> dict:
        return {'name': self.name, 'key_path': self.key_path, 'unique': self.unique, 'multi_entry': self.multi_entry}


class _StoreData:
    def __init__(self, name: str, key_path: Optional[str], auto_increment: bool):
        self.name = name
        self.key_path = key_path
        self.auto_increment = auto_increment
        self.current_key = 0
        # rank -> (key, value)
        self.records: dict[tuple, tuple[Any, Any]] = {}
        self.indexes: dict[str, _IndexData] = {}

    def sorted_records(self) -> list[tuple[tuple, Any, Any]]:
        return [(rank, key, value) for rank, (key, value) in sorted(self.records.items(), key=lambda kv: kv[0])]

    def index_entries(self, index: _IndexData) -> list[tuple[tuple, tuple, Any, Any, Any]]:
        entries = []
        for rank, (key, value) in self.records.items():
            for ikey in index.keys_for(value):
                entries.append((_key_rank(ikey), rank, ikey, key, value))
        entries.sort(key=lambda e: (e[0], e[1]))
        return entries

    def check_unique(self, value: Any, primary_rank: tuple) -> None:
        for index in self.indexes.values():
            if not index.unique:
                continue
            new_ranks = {_key_rank(k) for k in index.keys_for(value)}
            if not new_ranks:
                continue
            for rank, (_, other) in self.records.items():
                if rank == primary_rank:
                    continue
                if new_ranks & {_key_rank(k) for k in index.keys_for(other)}:
                    raise NativeError('ConstraintError', f"Unique index '{index.name}' already contains this key")

    def undo(self, previous: dict[tuple, Any], current_key: int) -> None:
        """Put back the entries in `previous` (`_MISSING` for keys that did not exist)."""
        for rank, entry in previous.items():
            if entry is _MISSING:
                self.records.pop(rank, None)
            else:
                self.records[rank] = entry
        # keys generated meanwhile by other transactions stay reserved
        generated = [key for key, _ in self.records.values() if isinstance(key, int) and not isinstance(key, bool)]
        self.current_key = max([current_key, *generated]) if self.auto_increment else current_key

    def to_snapshot(self) -> dict:
        return {
            'key_path': self.key_path,
            'auto_increment': self.auto_increment,
            'current_key': self.current_key,
            'records': [(key, value) for _, key, value in self.sorted_records()],
            'indexes': [i.to_snapshot() for i in self.indexes.values()],
        }

    @classmethod
    def from_snapshot(cls, name: str, snap: dict) -> '_StoreData':
        store = cls(name, snap['key_path'], snap['auto_increment'])
        store.current_key = snap['current_key']
        for key, value in snap['records']:
            store.records[_key_rank(key)] = (key, value)
        for i in snap['indexes']:
            store.indexes[i['name']] = _IndexData(i['name'], i['key_path'], i['unique'], i['multi_entry'])
        return store


class _DatabaseData:
    def __init__(self, name: str, version: int = 0):
        self.name = name
        self.version = version
        self.stores: dict[str, _StoreData] = {}
        self.connections: list[IDBDatabase] = []
        self.close_waiters: list[asyncio.Future] = []

    def open_connections(self, exclude: Optional['IDBDatabase'] = None) -> list['IDBDatabase']:
        return [c for c in self.connections if c is not exclude and not c._finalized]

    def notify_closed(self) -> None:
        waiters, self.close_waiters = self.close_waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_result(None)

    def to_snapshot(self) -> dict:
        return {
            'name': self.name,
            'version': self.version,
            'stores': {name: s.to_snapshot() for name, s in self.stores.items()},
        }

    @classmethod
    def from_snapshot(cls, snap: dict) -> '_DatabaseData':
        data = cls(snap['name'], snap['version'])
        for name, s in snap['stores'].items():
            data.stores[name] = _StoreData.from_snapshot(name, s)
        return data


# ---------------------------------------------------------------------------
# events and requests


class Event:
    def __init__(self, type: str, target: Any, *, old_version: Optional[int] = None, new_version: Optional[int] = None):
        self.type = type
        self.target = target
        self.old_version = old_version
        self.new_version = new_version
        self.default_prevented = False

    def prevent_default(self) -> None:
        self.default_prevented = True


class EventTarget:
    def _dispatch(self, event: Event) -> Event:
        handler = getattr(self, 'on' + event.type, None)
        if handler is not None:
            handler(event)
        return event


class IDBRequest(EventTarget):
    def __init__(self, source: Any = None, transaction: Optional['IDBTransaction'] = None):
        self.source = source
        self.transaction = transaction
        self.ready_state = 'pending'
        self.result: Any = None
        self.error: Optional[NativeError] = None
        self.onsuccess: Optional[Callable[[Event], Any]] = None
        self.onerror: Optional[Callable[[Event], Any]] = None

    def _succeed(self, result: Any) -> Event:
        self.ready_state = 'done'
        self.result = result
        self.error = None
        return self._dispatch(Event('success', self))

    def _fail(self, error: NativeError) -> Event:
        self.ready_state = 'done'
        self.result = None
        self.error = error
        return self._dispatch(Event('error', self))


class IDBOpenDBRequest(IDBRequest):
    def __init__(self) -> None:
        super().__init__()
        self.onupgradeneeded: Optional[Callable[[Event], Any]] = None
        self.onblocked: Optional[Callable[[Event], Any]] = None


# ---------------------------------------------------------------------------
# connection and transactions


class IDBDatabase(EventTarget):
    def __init__(self, factory: 'IDBFactory', data: _DatabaseData, version: int):
        self._factory = factory
        self._data = data
        self.name = data.name
        self.version = version
        self.onversionchange: Optional[Callable[[Event], Any]] = None
        self.onclose: Optional[Callable[[Event], Any]] = None
        self._close_pending = False
        self._finalized = False
        self._transactions: set[IDBTransaction] = set()
        self._upgrade_tx: Optional[IDBTransaction] = None

    @property
    def object_store_names(self) -> tuple[str, ...]:
        return tuple(sorted(self._data.stores))

    @property
    def closed(self) -> bool:
        return self._close_pending

    def transaction(self, store_names: str | Iterable[str], mode: str = READONLY) -> 'IDBTransaction':
        if self._close_pending:
            raise NativeError('InvalidStateError', f"The connection to '{self.name}' is closing")
        if self._upgrade_tx is not None:
            raise NativeError('InvalidStateError', 'A version change transaction is running')
        if mode not in (READONLY, READWRITE):
            raise TypeError(f'Invalid transaction mode {mode!r}')
        names = [store_names] if isinstance(store_names, str) else list(store_names)
        if not names:
            raise NativeError('InvalidAccessError', 'A transaction needs at least one store')
        for name in names:
            if name not in self._data.stores:
                raise NativeError('NotFoundError', f"No object store named '{name}' in '{self.name}'")
        return IDBTransaction(self, names, mode)

    def _require_upgrade(self) -> 'IDBTransaction':
        tx = self._upgrade_tx
        if tx is None or tx._finished:
            raise NativeError('InvalidStateError', 'Schema changes require a version change transaction')
        return tx

    def create_object_store(self, name: str, key_path: Optional[str] = None, auto_increment: bool = False) -> 'IDBObjectStore':
        tx = self._require_upgrade()
        if name in self._data.stores:
            raise NativeError('ConstraintError', f"Object store '{name}' already exists")
        if auto_increment and (key_path == '' or (key_path is not None and not isinstance(key_path, str))):
            raise NativeError('InvalidAccessError', 'auto_increment requires a non-empty string key path')
        self._data.stores[name] = _StoreData(name, key_path, auto_increment)
        logger.debug("Created object store '%s' in '%s'", name, self.name)
        return IDBObjectStore(tx, name)

    def delete_object_store(self, name: str) -> None:
        self._require_upgrade()
        if name not in self._data.stores:
            raise NativeError('NotFoundError', f"No object store named '{name}' in '{self.name}'")
        del self._data.stores[name]
        logger.debug("Deleted object store '%s' in '%s'", name, self.name)

    def close(self) -> None:
        self._close_pending = True
        if not self._transactions:
            self._finalize()

    def _transaction_finished(self, tx: 'IDBTransaction') -> None:
        self._transactions.discard(tx)
        if self._close_pending and not self._transactions:
            self._finalize()

    def _finalize(self) -> None:
        if self._finalized:
            return
        self._finalized = True
        if self in self._data.connections:
            self._data.connections.remove(self)
        if not self._data.open_connections():
            self._data.notify_closed()


class IDBTransaction(EventTarget):
    def __init__(self, db: IDBDatabase, store_names: Sequence[str], mode: str):
        self.db = db
        self.mode = mode
        self.object_store_names = tuple(store_names)
        self.error: Optional[NativeError] = None
        self.oncomplete: Optional[Callable[[Event], Any]] = None
        self.onerror: Optional[Callable[[Event], Any]] = None
        self.onabort: Optional[Callable[[Event], Any]] = None
        self._loop = asyncio.get_running_loop()
        self._queue: deque[tuple[IDBRequest, Callable[[], Any]]] = deque()
        self._scheduled = False
        self._finished = False
        # store name -> (key generator at first write, rank -> entry before first write)
        self._undo: dict[str, tuple[int, dict[tuple, Any]]] = {}
        self._on_finish: Optional[Callable[[bool], None]] = None
        db._transactions.add(self)
        self._schedule()

    def object_store(self, name: str) -> 'IDBObjectStore':
        if self._finished:
            raise NativeError('InvalidStateError', 'The transaction has finished')
        if self.mode != VERSIONCHANGE and name not in self.object_store_names:
            raise NativeError('NotFoundError', f"Object store '{name}' is not in this transaction's scope")
        if name not in self.db._data.stores:
            raise NativeError('NotFoundError', f"No object store named '{name}' in '{self.db.name}'")
        return IDBObjectStore(self, name)

    def abort(self) -> None:
        if self._finished:
            raise NativeError('InvalidStateError', 'The transaction has finished')
        self._abort(None)

    # -- internals

    def _store_data(self, name: str) -> _StoreData:
        try:
            return self.db._data.stores[name]
        except KeyError:
            raise NativeError('InvalidStateError', f"Object store '{name}' has been deleted") from None

    def _touch(self, store: _StoreData, ranks: Optional[Iterable[tuple]] = None) -> None:
        """Journal the entries about to change; `ranks=None` means every record."""
        # versionchange transactions keep a whole-database backup instead
        if self.mode == VERSIONCHANGE:
            return
        _, previous = self._undo.setdefault(store.name, (store.current_key, {}))
        for rank in list(store.records if ranks is None else ranks):
            if rank not in previous:
                previous[rank] = store.records.get(rank, _MISSING)

    def _check_writable(self) -> None:
        if self.mode == READONLY:
            raise NativeError('ReadOnlyError', 'The transaction is read-only')

    def _enqueue(self, request: IDBRequest, operation: Callable[[], Any]) -> IDBRequest:
        if self._finished:
            raise NativeError('TransactionInactiveError', 'The transaction has finished')
        request.ready_state = 'pending'
        self._queue.append((request, operation))
        self._schedule()
        return request

    def _request(self, source: Any, operation: Callable[[], Any]) -> IDBRequest:
        return self._enqueue(IDBRequest(source, self), operation)

    def _schedule(self) -> None:
        if not self._scheduled:
            self._scheduled = True
            self._loop.call_soon(self._step)

    def _step(self) -> None:
        self._scheduled = False
        if self._finished:
            return
        if not self._queue:
            self._commit()
            return
        request, operation = self._queue.popleft()
        try:
            result = operation()
        except NativeError as exc:
            self._request_failed(request, exc)
        except Exception as exc:
            logger.debug("Request operation raised", exc_info=True)
            self._request_failed(request, NativeError("UnknownError", str(exc)))
        else:
            try:
                request._succeed(result)
            except Exception as exc:
                logger.exception('Success handler raised; aborting transaction')
                self._abort(NativeError('AbortError', f'Success handler raised: {exc}'))
                return
        if not self._finished:
            self._schedule()

    def _request_failed(self, request: IDBRequest, error: NativeError) -> None:
        try:
            event = request._fail(error)
            if not event.default_prevented:
                event = self._dispatch(event)
        except Exception as exc:
            logger.exception('Error handler raised; aborting transaction')
            self._abort(NativeError('AbortError', f'Error handler raised: {exc}'))
            return
        if not event.default_prevented:
            self._abort(error)

    def _commit(self) -> None:
        self._finished = True
        if self.mode != READONLY:
            self.db._factory._persist(self.db._data)
        try:
            self._dispatch(Event('complete', self))
        finally:
            self._done(False)

    def _abort(self, error: Optional[NativeError]) -> None:
        if self._finished:
            return
        self._finished = True
        self.error = error
        for name, (current_key, previous) in self._undo.items():
            store = self.db._data.stores.get(name)
            if store is not None:
                store.undo(previous, current_key)
        pending, self._queue = self._queue, deque()
        aborted = NativeError('AbortError', 'The transaction was aborted')
        try:
            for request, _ in pending:
                request._fail(aborted)
            self._dispatch(Event('abort', self))
        finally:
            self._done(True)

    def _done(self, aborted: bool) -> None:
        self.db._transaction_finished(self)
        if self._on_finish is not None:
            self._on_finish(aborted)


# ---------------------------------------------------------------------------
# stores, indexes and cursors


class IDBCursorWithValue:
    def __init__(self, request: IDBRequest, source: Any, direction: str, entries: Callable[[], list], query_rank: Optional[tuple]):
        self._request = request
        self._source = source
        self._direction = direction
        self._entries = entries
        self._query_rank = query_rank
        self._position: Optional[tuple] = None
        self._got_value = False
        self.key: Any = None
        self.primary_key: Any = None
        self.value: Any = None

    @property
    def _transaction(self) -> IDBTransaction:
        return self._request.transaction

    def _seek(self) -> Optional['IDBCursorWithValue']:
        # entries are (position, key, primary_key, value) sorted ascending
        entries = self._entries()
        if self._query_rank is not None:
            entries = [e for e in entries if e[0][0] == self._query_rank]
        if self._direction == 'prev':
            entries = list(reversed(entries))
        for position, key, primary_key, value in entries:
            if self._position is not None:
                if self._direction == 'prev' and not position < self._position:
                    continue
                if self._direction != 'prev' and not position > self._position:
                    continue
            self._position = position
            self.key = key
            self.primary_key = primary_key
            self.value = copy.deepcopy(value)
            self._got_value = True
            return self
        self._got_value = False
        self.key = self.primary_key = self.value = None
        return None

    def continue_(self) -> None:
        if not self._got_value:
            raise NativeError('InvalidStateError', 'The cursor is not positioned on a record')
        self._got_value = False
        self._transaction._enqueue(self._request, self._seek)

    def delete(self) -> IDBRequest:
        tx = self._transaction
        tx._check_writable()
        if not self._got_value:
            raise NativeError('InvalidStateError', 'The cursor is not positioned on a record')
        store_name = self._source.name if isinstance(self._source, IDBObjectStore) else self._source.object_store.name
        primary_rank = _key_rank(self.primary_key)

        def operation() -> None:
            store = tx._store_data(store_name)
            tx._touch(store, [primary_rank])
            store.records.pop(primary_rank, None)

        return tx._request(self._source, operation)


class IDBIndex:
    def __init__(self, store: 'IDBObjectStore', name: str):
        self.object_store = store
        self.name = name

    def _data(self) -> _IndexData:
        try:
            return self.object_store._data().indexes[self.name]
        except KeyError:
            raise NativeError('InvalidStateError', f"Index '{self.name}' has been deleted") from None

    @property
    def key_path(self) -> Any:
        return self._data().key_path

    @property
    def unique(self) -> bool:
        return self._data().unique

    @property
    def multi_entry(self) -> bool:
        return self._data().multi_entry

    def _entries(self) -> list:
        store = self.object_store._data()
        return [((irank, prank), ikey, pkey, value) for irank, prank, ikey, pkey, value in store.index_entries(self._data())]

    def get(self, key: Any) -> IDBRequest:
        rank = _key_rank(key)
        tx = self.object_store.transaction

        def operation() -> Any:
            for position, _, _, value in self._entries():
                if position[0] == rank:
                    return copy.deepcopy(value)
            return None

        return tx._request(self, operation)

    def count(self, key: Any = None) -> IDBRequest:
        rank = None if key is None else _key_rank(key)
        tx = self.object_store.transaction
        return tx._request(self, lambda: sum(1 for e in self._entries() if rank is None or e[0][0] == rank))

    def open_cursor(self, query: Any = None, direction: str = 'next') -> IDBRequest:
        rank = None if query is None else _key_rank(query)
        tx = self.object_store.transaction
        request = IDBRequest(self, tx)
        cursor = IDBCursorWithValue(request, self, direction, self._entries, rank)
        return tx._enqueue(request, cursor._seek)


class IDBObjectStore:
    def __init__(self, transaction: IDBTransaction, name: str):
        self.transaction = transaction
        self.name = name

    def _data(self) -> _StoreData:
        return self.transaction._store_data(self.name)

    @property
    def key_path(self) -> Optional[str]:
        return self._data().key_path

    @property
    def auto_increment(self) -> bool:
        return self._data().auto_increment

    @property
    def index_names(self) -> tuple[str, ...]:
        return tuple(sorted(self._data().indexes))

    def _prepare(self, value: Any, key: Any) -> tuple[Any, Any]:
        store = self._data()
        clone = copy.deepcopy(value)
        if store.key_path is not None:
            if key is not None:
                raise NativeError('DataError', 'Stores with a key path cannot take an explicit key')
            found = _extract(clone, store.key_path)
            if found is _MISSING:
                if not store.auto_increment:
                    raise NativeError('DataError', f"Value has no key at path '{store.key_path}'")
                if not isinstance(clone, dict):
                    raise NativeError('DataError', 'Generated keys can only be injected into mappings')
                return clone, _MISSING
            _key_rank(found)
            return clone, found
        if key is None:
            if not store.auto_increment:
                raise NativeError('DataError', 'A key is required for stores without a key generator')
            return clone, _MISSING
        _key_rank(key)
        return clone, key

    def _store(self, clone: Any, key: Any, overwrite: bool) -> Any:
        store = self._data()
        if key is _MISSING:
            key = store.current_key + 1
            if store.key_path is not None:
                _inject(clone, store.key_path, key)
        rank = _key_rank(key)
        if not overwrite and rank in store.records:
            raise NativeError('ConstraintError', f"Key {key!r} already exists in '{self.name}'")
        store.check_unique(clone, rank)
        self.transaction._touch(store, [rank])
        if store.auto_increment and isinstance(key, (int, float)) and key >= store.current_key:
            store.current_key = int(math.floor(key))
        store.records[rank] = (key, clone)
        return key

    def add(self, value: Any, key: Any = None) -> IDBRequest:
        self.transaction._check_writable()
        clone, resolved = self._prepare(value, key)
        return self.transaction._request(self, lambda: self._store(clone, resolved, overwrite=False))

    def put(self, value: Any, key: Any = None) -> IDBRequest:
        self.transaction._check_writable()
        clone, resolved = self._prepare(value, key)
        return self.transaction._request(self, lambda: self._store(clone, resolved, overwrite=True))

    def get(self, key: Any) -> IDBRequest:
        rank = _key_rank(key)

        def operation() -> Any:
            found = self._data().records.get(rank)
            return None if found is None else copy.deepcopy(found[1])

        return self.transaction._request(self, operation)

    def delete(self, key: Any) -> IDBRequest:
        self.transaction._check_writable()
        rank = _key_rank(key)

        def operation() -> None:
            store = self._data()
            self.transaction._touch(store, [rank])
            store.records.pop(rank, None)

        return self.transaction._request(self, operation)

    def clear(self) -> IDBRequest:
        self.transaction._check_writable()

        def operation() -> None:
            store = self._data()
            self.transaction._touch(store)
            store.records.clear()

        return self.transaction._request(self, operation)

    def count(self, key: Any = None) -> IDBRequest:
        rank = None if key is None else _key_rank(key)
        return self.transaction._request(
            self, lambda: len(self._data().records) if rank is None else int(rank in self._data().records)
        )

    def _entries(self) -> list:
        return [((rank,), key, key, value) for rank, key, value in self._data().sorted_records()]

    def open_cursor(self, query: Any = None, direction: str = 'next') -> IDBRequest:
        rank = None if query is None else _key_rank(query)
        request = IDBRequest(self, self.transaction)
        cursor = IDBCursorWithValue(request, self, direction, self._entries, rank)
        return self.transaction._enqueue(request, cursor._seek)

    def index(self, name: str) -> IDBIndex:
        if name not in self._data().indexes:
            raise NativeError('NotFoundError', f"No index named '{name}' on '{self.name}'")
        return IDBIndex(self, name)

    def create_index(self, name: str, key_path: str | Sequence[str], unique: bool = False, multi_entry: bool = False) -> IDBIndex:
        self.transaction.db._require_upgrade()
        store = self._data()
        if name in store.indexes:
            raise NativeError('ConstraintError', f"Index '{name}' already exists on '{self.name}'")
        if multi_entry and not isinstance(key_path, str):
            raise NativeError('InvalidAccessError', 'multi_entry indexes need a single key path')
        index = _IndexData(name, key_path, unique, multi_entry)
        if unique:
            seen: set = set()
            for _, value in store.records.values():
                for k in index.keys_for(value):
                    if _key_rank(k) in seen:
                        raise NativeError('ConstraintError', f"Existing records violate unique index '{name}'")
                    seen.add(_key_rank(k))
        store.indexes[name] = index
        return IDBIndex(self, name)

    def delete_index(self, name: str) -> None:
        self.transaction.db._require_upgrade()
        if self._data().indexes.pop(name, None) is None:
            raise NativeError('NotFoundError', f"No index named '{name}' on '{self.name}'")


# ---------------------------------------------------------------------------
# factory


class IDBFactory:
    """Entry point of the engine, one per host.

    `backend` persists committed databases; without it data lives as long
    as the factory.
    """

    def __init__(self, backend: Optional[StorageBackend] = None):
        self._backend = backend
        self._databases: dict[str, _DatabaseData] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task] = set()

    def open(self, name: str, version: Optional[int] = None) -> IDBOpenDBRequest:
        if not isinstance(name, str):
            raise TypeError('Database name must be a string')
        if version is not None and (isinstance(version, bool) or not isinstance(version, int) or version < 1):
            raise TypeError('Version must be a positive integer')
        request = IDBOpenDBRequest()
        self._spawn(self._run_open(request, name, version))
        return request

    def delete_database(self, name: str) -> IDBOpenDBRequest:
        if not isinstance(name, str):
            raise TypeError('Database name must be a string')
        request = IDBOpenDBRequest()
        self._spawn(self._run_delete(request, name))
        return request

    def databases(self) -> list[dict[str, Any]]:
        names = set(self._databases)
        if self._backend is not None:
            names.update(self._backend.list_keys(SNAPSHOT_NAMESPACE))
        result = []
        for name in sorted(names):
            data = self._load(name)
            if data is not None:
                result.append({'name': name, 'version': data.version})
        return result

    def cmp(self, first: Any, second: Any) -> int:
        a, b = _key_rank(first), _key_rank(second)
        return (a > b) - (a < b)

    # -- internals

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error('Engine request failed', exc_info=task.exception())

    def _lock(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    def _load(self, name: str) -> Optional[_DatabaseData]:
        data = self._databases.get(name)
        if data is None and self._backend is not None and self._backend.exists(SNAPSHOT_NAMESPACE, name):
            data = _DatabaseData.from_snapshot(self._backend.load(SNAPSHOT_NAMESPACE, name))
            self._databases[name] = data
        return data

    def _persist(self, data: _DatabaseData) -> None:
        if self._backend is not None and self._databases.get(data.name) is data:
            self._backend.save(SNAPSHOT_NAMESPACE, data.name, data.to_snapshot())

    async def _wait_for_others(self, data: _DatabaseData, request: IDBOpenDBRequest, exclude: Optional[IDBDatabase], new_version: Optional[int]) -> None:
        others = data.open_connections(exclude)
        for conn in others:
            if not conn._close_pending:
                try:
                    conn._dispatch(Event('versionchange', conn, old_version=data.version, new_version=new_version))
                except Exception:
                    logger.exception("versionchange handler on '%s' raised", data.name)
        # let handlers that close asynchronously run
        await asyncio.sleep(0)
        if not data.open_connections(exclude):
            return
        logger.debug("Request on '%s' blocked by %d open connection(s)", data.name, len(data.open_connections(exclude)))
        request._dispatch(Event('blocked', request, old_version=data.version, new_version=new_version))
        while data.open_connections(exclude):
            fut = asyncio.get_running_loop().create_future()
            data.close_waiters.append(fut)
            await fut

    async def _run_open(self, request: IDBOpenDBRequest, name: str, version: Optional[int]) -> None:
        async with self._lock(name):
            data = self._load(name)
            is_new = data is None
            if data is None:
                data = _DatabaseData(name)
            if version is None:
                version = max(data.version, 1)
            if version < data.version:
                request._fail(NativeError('VersionError', f"Requested version {version} of '{name}' is lower than {data.version}"))
                return
            conn = IDBDatabase(self, data, version)
            if version > data.version:
                await self._wait_for_others(data, request, None, version)
                if is_new:
                    self._databases[name] = data
                data.connections.append(conn)
                if not await self._upgrade(request, conn, data, is_new):
                    return
            else:
                data.connections.append(conn)
            request._succeed(conn)

    async def _upgrade(self, request: IDBOpenDBRequest, conn: IDBDatabase, data: _DatabaseData, is_new: bool) -> bool:
        old_version = data.version
        backup = copy.deepcopy(data.stores)
        data.version = conn.version
        loop = asyncio.get_running_loop()
        finished: asyncio.Future = loop.create_future()
        tx = IDBTransaction(conn, list(data.stores), VERSIONCHANGE)
        tx._on_finish = lambda aborted: finished.done() or finished.set_result(aborted)
        conn._upgrade_tx = tx
        request.transaction = tx
        request.result = conn
        request.ready_state = 'done'
        logger.debug("Upgrading '%s' from version %d to %d", data.name, old_version, conn.version)
        try:
            request._dispatch(Event('upgradeneeded', request, old_version=old_version, new_version=conn.version))
        except NativeError as exc:
            tx._abort(exc)
        except Exception as exc:
            logger.debug('upgradeneeded handler raised', exc_info=True)
            tx._abort(NativeError('AbortError', f'upgradeneeded handler raised: {exc}'))
        aborted = await finished
        conn._upgrade_tx = None
        request.transaction = None
        if not aborted:
            return True
        data.version = old_version
        data.stores = backup
        conn._finalize()
        if is_new:
            self._databases.pop(data.name, None)
        request._fail(tx.error or NativeError('AbortError', 'The version change transaction was aborted'))
        return False

    async def _run_delete(self, request: IDBOpenDBRequest, name: str) -> None:
        async with self._lock(name):
            data = self._load(name)
            if data is not None:
                await self._wait_for_others(data, request, None, None)
                self._databases.pop(name, None)
                if self._backend is not None and self._backend.exists(SNAPSHOT_NAMESPACE, name):
                    self._backend.delete(SNAPSHOT_NAMESPACE, name)
                logger.debug("Deleted database '%s'", name)
            request._succeed(None)


_default_factory: Optional[IDBFactory] = None


def default_factory() -> IDBFactory:
    """The process-wide in-memory engine, created on first use."""
    global _default_factory
    if _default_factory is None:
        _default_factory = IDBFactory()
    return _default_factory
