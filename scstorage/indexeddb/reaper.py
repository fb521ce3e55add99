"""Lazy removal of expired records met during reads."""
from __future__ import annotations
import logging
from typing import Any, Callable, Mapping, Optional

from scstorage.codec import Envelope, RecordCodec
from scstorage.indexeddb.engine import Event, IDBObjectStore, IDBRequest, NativeError

logger = logging.getLogger(__name__)


class ExpiryReaper:
    def __init__(self, codec: RecordCodec):
        self.codec = codec

    def is_expired(self, record: Mapping[str, Any]) -> bool:
        envelope = Envelope.from_record(record)
        if envelope.expires is None:
            logger.info("Record %r has no expiry; treating it as live", envelope.id)
        return envelope.is_expired(self.codec.now())

    def discard(self, store: IDBObjectStore, record: Mapping[str, Any], then: Callable[[], None]) -> None:
        """Delete `record` and call `then` once the delete has settled either way.

        Must be called from inside a request handler so the delete joins the
        live transaction. A failing delete is logged and otherwise ignored.
        """
        try:
            request = store.delete(record['id'])
        except NativeError as exc:
            logger.debug("Could not remove expired record %r: %s", record.get('id'), exc)
            then()
            return
        self._settle(request, record, then)

    def discard_at_cursor(self, cursor: Any, record: Mapping[str, Any]) -> None:
        """Delete the record under `cursor`; the walk continues without waiting."""
        try:
            request = cursor.delete()
        except NativeError as exc:
            logger.debug("Could not remove expired record %r: %s", record.get('id'), exc)
            return
        self._settle(request, record, None)

    def _settle(self, request: IDBRequest, record: Mapping[str, Any], then: Optional[Callable[[], None]]) -> None:
        def on_success(event: Event) -> None:
            logger.debug("Removed expired record %r", record.get('id'))
            if then is not None:
                then()

        def on_error(event: Event) -> None:
            # keep the transaction alive; the read result does not depend on it
            event.prevent_default()
            logger.debug("Could not remove expired record %r: %s", record.get('id'), event.target.error)
            if then is not None:
                then()

        request.onsuccess = on_success
        request.onerror = on_error
