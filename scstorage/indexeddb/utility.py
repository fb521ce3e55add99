"""Object-store backend behind the façade.

Every public method validates its arguments synchronously and only then
returns an awaitable, so malformed calls raise before any connection work.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import replace
from typing import Any, Awaitable, Optional, TypeVar

from scstorage.codec import RecordCodec
from scstorage.config import Settings
from scstorage.errors import RequestTimeoutError
from scstorage.indexeddb.crud import CrudOperations
from scstorage.indexeddb.deletion import DeletionRouter
from scstorage.indexeddb.engine import IDBFactory, default_factory
from scstorage.indexeddb.reaper import ExpiryReaper
from scstorage.indexeddb.registry import ConnectionRegistry
from scstorage.indexeddb.schema import SchemaManager
from scstorage.indexeddb.validation import (
    validate_delete,
    validate_read,
    validate_store_name,
    validate_write,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


class IndexedDBUtility:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        factory: Optional[IDBFactory] = None,
        codec: Optional[RecordCodec] = None,
        registry: Optional[ConnectionRegistry] = None,
    ):
        self.settings = settings or Settings()
        self.factory = factory or default_factory()
        self.codec = codec or RecordCodec(self.settings.lifetime)
        self.registry = registry or ConnectionRegistry(self.factory)
        self.schema = SchemaManager(self.registry)
        self.crud = CrudOperations(self.schema, self.codec, ExpiryReaper(self.codec))
        self.deletion = DeletionRouter(self.registry, self.schema)

    def write(self, store_name: str, data: Any, **options: Any) -> Awaitable[bool]:
        """Add `data` to `store_name`, creating the store on first use.

        Options: ``database``, ``indexes`` (honoured only when the store is
        created), ``update`` (replace the record with ``data['id']``),
        ``expires`` and ``close_database``.
        """
        validate_store_name(store_name)
        opts = validate_write(data, options, self.settings)
        return self._run(opts.database, opts.close_database, self.crud.write(store_name, dict(data), opts))

    def read(self, store_name: str, **options: Any) -> Awaitable[Any]:
        """Read by ``id``, by ``index`` + ``name_value``, or scan the whole store."""
        validate_store_name(store_name)
        opts = validate_read(options, self.settings)
        return self._run(opts.database, opts.close_database, self.crud.read(store_name, opts))

    def has(self, store_name: str, **options: Any) -> Awaitable[bool]:
        validate_store_name(store_name)
        opts = replace(validate_read(options, self.settings), with_meta=False)
        return self._run(opts.database, opts.close_database, self.crud.has(store_name, opts))

    def delete(self, key: Any, **options: Any) -> Awaitable[bool]:
        """Delete a record (``type='data'``, the default), a store or a database.

        For records `key` is the id and ``store_name`` is required; for
        stores and databases `key` is the name.
        """
        opts = validate_delete(key, options, self.settings)
        return self._run(opts.database, opts.close_database, self.deletion.delete(key, opts))

    def close(self, database: Optional[str] = None) -> bool:
        """Close the cached connection to `database` (default database when omitted)."""
        return self.registry.close(database or self.settings.indexeddb_database)

    def close_all(self) -> None:
        self.registry.close_all()

    def databases(self) -> list[dict[str, Any]]:
        return self.factory.databases()

    async def _run(self, database: str, close_database: bool, operation: Awaitable[T]) -> T:
        timeout = self.settings.indexeddb_request_timeout
        try:
            if timeout is None:
                return await operation
            try:
                return await asyncio.wait_for(operation, timeout)
            except asyncio.TimeoutError:
                raise RequestTimeoutError(
                    f"No answer from '{database}' within {timeout} seconds"
                ) from None
        finally:
            if close_database:
                self.registry.close(database)
