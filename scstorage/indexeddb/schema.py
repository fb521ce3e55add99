"""Store and index creation through version upgrades."""
from __future__ import annotations
from dataclasses import dataclass
import logging
from typing import Any, Mapping, Optional, Sequence

from scstorage.errors import NativeRequestError, SchemaError, ValidationError
from scstorage.indexeddb.engine import READWRITE, Event, IDBObjectStore
from scstorage.indexeddb.registry import ConnectionRegistry
from scstorage.indexeddb.requests import native_errors

logger = logging.getLogger(__name__)

# attempts before giving up when a concurrent call keeps deleting the store
_ENSURE_ATTEMPTS = 3


def _pick(value: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in value:
            return value[name]
    return default


@dataclass(frozen=True)
class IndexSpec:
    """A secondary index declared when a store is created."""

    index_key: str
    index_name: str
    unique: bool = False
    multi_entry: bool = False

    @classmethod
    def from_value(cls, value: Any) -> 'IndexSpec':
        """Build from an `IndexSpec` or a mapping.

        Mappings use ``index_key``/``index_name`` plus either an
        ``index_options`` mapping or top-level ``unique``/``multi_entry``;
        the camelCase spellings are accepted as well.
        """
        if isinstance(value, IndexSpec):
            return value
        if not isinstance(value, Mapping):
            raise ValidationError(f'Index declarations must be mappings, got {type(value).__name__}')
        index_key = _pick(value, 'index_key', 'indexKey')
        index_name = _pick(value, 'index_name', 'indexName')
        if not isinstance(index_key, str) or not index_key:
            raise ValidationError('Index declaration needs a string index_key')
        if not isinstance(index_name, str) or not index_name:
            raise ValidationError('Index declaration needs a string index_name')
        options = _pick(value, 'index_options', 'indexOptions', default=value)
        if not isinstance(options, Mapping):
            raise ValidationError(f"index_options of '{index_name}' must be a mapping")
        unique = _pick(options, 'unique', default=False)
        multi_entry = _pick(options, 'multi_entry', 'multiEntry', default=False)
        if not isinstance(unique, bool) or not isinstance(multi_entry, bool):
            raise ValidationError(f"unique and multi_entry of index '{index_name}' must be booleans")
        return cls(index_key, index_name, unique, multi_entry)


# every store carries a unique index over its primary key
ID_INDEX = IndexSpec('id', 'id', unique=True)


def check_indexes(indexes: Sequence[IndexSpec]) -> None:
    """Reject index lists whose names collide with each other or with ``id``."""
    seen = {ID_INDEX.index_name}
    for spec in indexes:
        if spec.index_name in seen:
            raise SchemaError(f"Index name '{spec.index_name}' is declared more than once")
        seen.add(spec.index_name)


class SchemaManager:
    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def ensure_store(self, database: str, store: str, indexes: Sequence[IndexSpec] = ()) -> IDBObjectStore:
        """Return `store` in a fresh readwrite transaction, creating it first if needed.

        `indexes` only apply when the store is created; they are ignored for
        an existing store. The transaction commits as soon as the caller
        yields without placing a request, so use the store right away.
        """
        for _ in range(_ENSURE_ATTEMPTS):
            found = await self.open_store(database, store)
            if found is not None:
                return found
            await self._create_store(database, store, indexes)
        raise SchemaError(f"The store '{store}' in '{database}' could not be created")

    async def open_store(self, database: str, store: str) -> Optional[IDBObjectStore]:
        """`store` in a fresh readwrite transaction, or None when it does not exist."""
        conn = await self.registry.open(database)
        if store not in conn.object_store_names:
            return None
        with native_errors():
            return conn.transaction(store, READWRITE).object_store(store)

    async def delete_store(self, database: str, store: str) -> bool:
        """Drop `store`; False when there was nothing to drop."""
        async with self.registry.lock(database):
            conn = await self.registry.open(database)
            if store not in conn.object_store_names:
                return False

            def on_upgrade(event: Event) -> None:
                db = event.target.result
                if store in db.object_store_names:
                    db.delete_object_store(store)

            await self.registry.upgrade(database, on_upgrade)
        logger.debug("Deleted store '%s' from '%s'", store, database)
        return True

    async def _create_store(self, database: str, store: str, indexes: Sequence[IndexSpec]) -> None:
        async with self.registry.lock(database):
            conn = await self.registry.open(database)
            if store in conn.object_store_names:
                return

            def on_upgrade(event: Event) -> None:
                db = event.target.result
                if store in db.object_store_names:
                    return
                created = db.create_object_store(store, key_path='id', auto_increment=True)
                for spec in (ID_INDEX, *indexes):
                    created.create_index(spec.index_name, spec.index_key, unique=spec.unique, multi_entry=spec.multi_entry)

            try:
                await self.registry.upgrade(database, on_upgrade)
            except NativeRequestError as exc:
                if exc.name == 'ConstraintError':
                    raise SchemaError(f"Cannot create store '{store}' in '{database}': {exc}") from exc
                raise
        logger.debug("Created store '%s' in '%s' with indexes %s", store, database, [s.index_name for s in indexes])
