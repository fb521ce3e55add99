"""Synchronous checks on caller data and per-call options.

Everything here runs before a connection is touched, so a malformed call
fails without side effects.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping, Optional, Union

from scstorage.codec import ID_FIELD, RESERVED_FIELDS
from scstorage.config import Settings
from scstorage.errors import ValidationError
from scstorage.indexeddb.schema import IndexSpec, check_indexes

Key = Union[int, float, str]

# camelCase spellings accepted alongside the snake_case option names
_ALIASES = {
    'withMeta': 'with_meta',
    'asObject': 'with_meta',
    'as_object': 'with_meta',
    'closeDatabase': 'close_database',
    'nameValue': 'name_value',
    'storeName': 'store_name',
}


class DeleteType(str, Enum):
    DATA = 'data'
    STORE = 'store'
    DATABASE = 'database'


@dataclass(frozen=True)
class WriteOptions:
    database: str
    indexes: tuple[IndexSpec, ...] = ()
    update: bool = False
    expires: Union[datetime, timedelta, int, float, None] = None
    close_database: bool = True


@dataclass(frozen=True)
class ReadOptions:
    database: str
    id: Optional[Key] = None
    index: Optional[str] = None
    name_value: Optional[Key] = None
    with_meta: bool = False
    close_database: bool = True

    @property
    def is_scan(self) -> bool:
        return self.id is None and self.name_value is None


@dataclass(frozen=True)
class DeleteOptions:
    database: str
    type: DeleteType = DeleteType.DATA
    store_name: Optional[str] = None
    close_database: bool = True


def _normalize(options: Mapping[str, Any], allowed: set[str]) -> dict:
    result = {}
    for name, value in options.items():
        name = _ALIASES.get(name, name)
        if name not in allowed:
            raise ValidationError(f"Unknown option '{name}'")
        result[name] = value
    return result


def _check_bool(options: dict, name: str) -> None:
    if name in options and not isinstance(options[name], bool):
        raise ValidationError(f'{name} must be a boolean')


def _check_database(options: dict, settings: Settings) -> str:
    database = options.get('database', settings.indexeddb_database)
    if not isinstance(database, str) or not database:
        raise ValidationError('database must be a non-empty string')
    return database


def _is_key(value: Any) -> bool:
    return isinstance(value, (int, float, str)) and not isinstance(value, bool)


def validate_store_name(store: Any) -> str:
    if not isinstance(store, str) or not store:
        raise ValidationError('store_name must be a non-empty string')
    return store


def validate_write(data: Any, options: Mapping[str, Any], settings: Settings) -> WriteOptions:
    opts = _normalize(options, {'database', 'indexes', 'update', 'expires', 'close_database'})
    _check_bool(opts, 'update')
    _check_bool(opts, 'close_database')
    expires = opts.get('expires')
    if expires is not None and (isinstance(expires, bool) or not isinstance(expires, (datetime, timedelta, int, float))):
        raise ValidationError('expires must be a number of milliseconds, a timedelta or a datetime')
    indexes = opts.get('indexes') or ()
    if isinstance(indexes, (str, bytes, Mapping)) or not hasattr(indexes, '__iter__'):
        raise ValidationError('indexes must be a list of index declarations')
    specs = tuple(IndexSpec.from_value(item) for item in indexes)
    check_indexes(specs)
    update = opts.get('update', False)

    if not isinstance(data, Mapping):
        raise ValidationError(f'Data must be a mapping, got {type(data).__name__}')
    reserved = [name for name in RESERVED_FIELDS if name in data]
    if reserved:
        raise ValidationError(f"Data must not contain the reserved field(s) {', '.join(reserved)}")
    if update:
        if isinstance(data.get(ID_FIELD), bool) or not isinstance(data.get(ID_FIELD), int):
            raise ValidationError('Updating requires an integer id in data')
    elif ID_FIELD in data:
        raise ValidationError('Data must not contain an id unless update is set')

    return WriteOptions(
        database=_check_database(opts, settings),
        indexes=specs,
        update=update,
        expires=expires,
        close_database=opts.get('close_database', settings.indexeddb_close_after_request),
    )


def validate_read(options: Mapping[str, Any], settings: Settings) -> ReadOptions:
    opts = _normalize(options, {'database', 'id', 'index', 'name_value', 'with_meta', 'close_database'})
    _check_bool(opts, 'with_meta')
    _check_bool(opts, 'close_database')
    record_id = opts.get('id')
    index = opts.get('index')
    name_value = opts.get('name_value')
    if record_id is not None and not _is_key(record_id):
        raise ValidationError('id must be a number or a string')
    if index is not None and (not isinstance(index, str) or not index):
        raise ValidationError('index must be a non-empty string')
    if name_value is not None and not _is_key(name_value):
        raise ValidationError('name_value must be a number or a string')
    if name_value is not None and index is None:
        raise ValidationError('name_value requires index')
    if record_id is not None and index is not None:
        raise ValidationError('id and index cannot be combined')
    return ReadOptions(
        database=_check_database(opts, settings),
        id=record_id,
        index=index,
        name_value=name_value,
        with_meta=opts.get('with_meta', settings.with_meta),
        close_database=opts.get('close_database', settings.indexeddb_close_after_request),
    )


def validate_delete(key: Any, options: Mapping[str, Any], settings: Settings) -> DeleteOptions:
    opts = _normalize(options, {'database', 'type', 'store_name', 'close_database'})
    _check_bool(opts, 'close_database')
    try:
        kind = DeleteType(opts.get('type', DeleteType.DATA))
    except ValueError:
        raise ValidationError(f"type must be one of {', '.join(t.value for t in DeleteType)}") from None
    if not _is_key(key):
        raise ValidationError('Key must be a string or a number')
    store_name = opts.get('store_name')
    if kind is DeleteType.DATA:
        validate_store_name(store_name)
    elif not isinstance(key, str) or not key:
        raise ValidationError(f'The {kind.value} name must be a non-empty string')
    return DeleteOptions(
        database=key if kind is DeleteType.DATABASE else _check_database(opts, settings),
        type=kind,
        store_name=store_name,
        close_database=opts.get('close_database', settings.indexeddb_close_after_request),
    )
