"""Delete a record, a whole store or a whole database."""
from __future__ import annotations
import logging
from typing import Any

from scstorage.indexeddb.registry import ConnectionRegistry
from scstorage.indexeddb.requests import Settler, native_errors
from scstorage.indexeddb.schema import SchemaManager
from scstorage.indexeddb.validation import DeleteOptions, DeleteType

logger = logging.getLogger(__name__)


class DeletionRouter:
    """Dispatches on `DeleteOptions.type`.

    Deleting something that does not exist succeeds, so every path resolves
    True unless the engine reports an error.
    """

    def __init__(self, registry: ConnectionRegistry, schema: SchemaManager):
        self.registry = registry
        self.schema = schema

    async def delete(self, key: Any, opts: DeleteOptions) -> bool:
        if opts.type is DeleteType.DATABASE:
            await self.registry.delete_database(opts.database)
        elif opts.type is DeleteType.STORE:
            if not await self.schema.delete_store(opts.database, key):
                logger.debug("Store '%s' not found in '%s'; nothing to delete", key, opts.database)
        else:
            await self._delete_record(key, opts)
        return True

    async def _delete_record(self, record_id: Any, opts: DeleteOptions) -> None:
        store = await self.schema.open_store(opts.database, opts.store_name)
        if store is None:
            logger.debug("Store '%s' not found in '%s'; nothing to delete", opts.store_name, opts.database)
            return
        settler = Settler()
        with native_errors():
            request = store.delete(record_id)
        request.onsuccess = lambda event: settler.resolve(True)
        request.onerror = lambda event: settler.reject_event(event, f"Unable to delete {record_id!r} from '{opts.store_name}'")
        await settler
