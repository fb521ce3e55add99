"""Record-level write, read and existence checks against object stores.

Each operation places its native requests from inside the success handler
of the previous one, so they all share one transaction and one settlement.
"""
from __future__ import annotations
import logging
from typing import Any, Optional

from scstorage.codec import Envelope, RecordCodec
from scstorage.errors import RecordNotFoundError
from scstorage.indexeddb.engine import Event, IDBObjectStore
from scstorage.indexeddb.reaper import ExpiryReaper
from scstorage.indexeddb.requests import Settler, native_errors, walk_cursor
from scstorage.indexeddb.schema import SchemaManager
from scstorage.indexeddb.validation import ReadOptions, WriteOptions

logger = logging.getLogger(__name__)


def shape(result: Any, with_meta: bool) -> Any:
    """Wrap a read result as ``{'data': result}`` when metadata is requested."""
    return {'data': result} if with_meta else result


class CrudOperations:
    def __init__(self, schema: SchemaManager, codec: RecordCodec, reaper: Optional[ExpiryReaper] = None):
        self.schema = schema
        self.codec = codec
        self.reaper = reaper or ExpiryReaper(codec)

    async def write(self, store_name: str, data: dict, opts: WriteOptions) -> bool:
        """Create a record, or replace the one with ``data['id']`` when `opts.update` is set."""
        store = await self.schema.ensure_store(opts.database, store_name, opts.indexes)
        if opts.update:
            return await self._update(store, data, opts)
        envelope = self.codec.wrap_for_create(data, opts.expires)
        settler = Settler()
        with native_errors():
            request = store.add(envelope.to_record())
        request.onsuccess = lambda event: settler.resolve(True)
        request.onerror = lambda event: settler.reject_event(event, f"Unable to add data to '{store_name}'")
        return await settler

    async def read(self, store_name: str, opts: ReadOptions) -> Any:
        """Return one record (by id or index value), or every live record for a scan.

        A missing store reads as "not found". Expired records are deleted on
        the way and never returned.
        """
        store = await self.schema.open_store(opts.database, store_name)
        if store is None:
            logger.debug("Store '%s' does not exist in '%s'", store_name, opts.database)
            return shape([] if opts.is_scan else None, opts.with_meta)
        if opts.id is not None:
            result = await self._read_by_id(store, opts.id)
        elif opts.name_value is not None:
            result = await self._read_by_index(store, opts.index, opts.name_value)
        else:
            result = await self._scan(store, opts.index)
        return shape(result, opts.with_meta)

    async def has(self, store_name: str, opts: ReadOptions) -> bool:
        result = await self.read(store_name, opts)
        if isinstance(result, list):
            return len(result) > 0
        return result is not None

    # -- internals

    async def _update(self, store: IDBObjectStore, data: dict, opts: WriteOptions) -> bool:
        record_id = data['id']
        settler = Settler()

        def missing() -> None:
            settler.reject(RecordNotFoundError(
                f"Error while updating data in '{opts.database}'. Id {record_id} not found."
            ))

        def on_get(event: Event) -> None:
            existing = event.target.result
            if existing is None:
                missing()
                return
            if self.reaper.is_expired(existing):
                self.reaper.discard(store, existing, then=missing)
                return
            envelope = self.codec.wrap_for_update(Envelope.from_record(existing), data, opts.expires)
            put = store.put(envelope.to_record())
            put.onsuccess = lambda e: settler.resolve(True)
            put.onerror = lambda e: settler.reject_event(e, f"Unable to update data in '{store.name}'")

        with native_errors():
            request = store.get(record_id)
        request.onsuccess = settler.guard(on_get)
        request.onerror = lambda event: settler.reject_event(event, f"Unable to update data in '{store.name}'")
        return await settler

    async def _read_by_id(self, store: IDBObjectStore, record_id: Any) -> Optional[dict]:
        settler = Settler()

        def on_success(event: Event) -> None:
            record = event.target.result
            if record is None:
                settler.resolve(None)
            elif self.reaper.is_expired(record):
                self.reaper.discard(store, record, then=lambda: settler.resolve(None))
            else:
                settler.resolve(record)

        with native_errors():
            request = store.get(record_id)
        request.onsuccess = settler.guard(on_success)
        request.onerror = settler.reject_event
        return await settler

    async def _read_by_index(self, store: IDBObjectStore, index: str, value: Any) -> Optional[dict]:
        found: list[dict] = []

        def on_item(cursor: Any) -> bool:
            record = cursor.value
            if self.reaper.is_expired(record):
                self.reaper.discard_at_cursor(cursor, record)
                return True
            found.append(record)
            return False

        with native_errors():
            request = store.index(index).open_cursor(value)
        return await walk_cursor(request, on_item, lambda: found[0] if found else None)

    async def _scan(self, store: IDBObjectStore, index: Optional[str]) -> list[dict]:
        records: list[dict] = []
        seen: set = set()

        def on_item(cursor: Any) -> bool:
            record = cursor.value
            # multi-entry indexes visit a record once per entry
            if cursor.primary_key in seen:
                return True
            seen.add(cursor.primary_key)
            if self.reaper.is_expired(record):
                self.reaper.discard_at_cursor(cursor, record)
            else:
                records.append(record)
            return True

        with native_errors():
            source = store.index(index) if index is not None else store
            request = source.open_cursor()
        return await walk_cursor(request, on_item, lambda: records)
