"""Cache of open engine connections, one per database name.

The registry is the only owner of connections. Callers always resolve the
current connection through `open()` right before creating a transaction and
never keep one across an ``await``: another call may close or upgrade it in
the meantime.
"""
from __future__ import annotations
import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from scstorage.errors import ScStorageError
from scstorage.indexeddb.engine import Event, IDBDatabase, IDBFactory
from scstorage.indexeddb.requests import Settler, await_request, native_errors

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CLOSED = 'closed'
    OPENING = 'opening'
    OPEN = 'open'


class ConnectionRegistry:
    def __init__(self, factory: IDBFactory) -> None:
        self.factory = factory
        self._connections: dict[str, IDBDatabase] = {}
        self._pending: dict[str, asyncio.Future] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def state(self, name: str) -> ConnectionState:
        if name in self._pending:
            return ConnectionState.OPENING
        if name in self._connections:
            return ConnectionState.OPEN
        return ConnectionState.CLOSED

    def lock(self, name: str) -> asyncio.Lock:
        """Per-database lock serializing schema changes."""
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    async def open(self, name: str) -> IDBDatabase:
        """Return the cached connection for `name`, opening one if needed.

        A call that arrives while another open for the same name is in flight
        waits for it instead of issuing a second native open.
        """
        while True:
            pending = self._pending.get(name)
            if pending is not None:
                await self._wait(name, pending)
                continue
            conn = self._connections.get(name)
            if conn is not None and not conn.closed:
                return conn
            return await self._open(name)

    async def upgrade(self, name: str, on_upgrade: Callable[[Event], None]) -> IDBDatabase:
        """Reopen `name` at the next version, running `on_upgrade` in its versionchange transaction."""
        while True:
            conn = await self.open(name)
            if name not in self._pending:
                break
        version = conn.version + 1
        self.close(name)
        return await self._open(name, version, on_upgrade)

    def close(self, name: str) -> bool:
        """Evict and close the cached connection; False when none was cached."""
        conn = self._connections.pop(name, None)
        if conn is None:
            return False
        conn.close()
        logger.debug("Closed connection to '%s'", name)
        return True

    def close_all(self) -> None:
        for name in list(self._connections):
            self.close(name)

    async def delete_database(self, name: str) -> None:
        self.close(name)
        with native_errors():
            request = self.factory.delete_database(name)
        request.onblocked = lambda event: logger.warning("Deleting '%s' is blocked by an open connection", name)
        await await_request(request)
        logger.debug("Deleted database '%s'", name)

    # -- internals

    async def _wait(self, name: str, pending: asyncio.Future) -> None:
        try:
            await asyncio.shield(pending)
        except ScStorageError:
            # the caller that issued the open reports its failure
            logger.debug("In-flight open of '%s' failed; retrying", name)
        except asyncio.CancelledError:
            if not pending.cancelled():
                raise
            logger.debug("In-flight open of '%s' was abandoned; retrying", name)

    async def _open(self, name: str, version: Optional[int] = None, on_upgrade: Optional[Callable[[Event], None]] = None) -> IDBDatabase:
        settler = Settler()
        self._pending[name] = settler.future

        def on_success(event: Event) -> None:
            conn = event.target.result
            conn.onversionchange = self._on_version_change
            # cache before settling so waiters find the connection
            self._connections[name] = conn
            self._release(name, settler)
            settler.resolve(conn)

        def on_error(event: Event) -> None:
            self._release(name, settler)
            settler.reject_event(event, f"Unable to open database '{name}'")

        try:
            with native_errors():
                request = self.factory.open(name, version)
        except Exception:
            self._release(name, settler)
            raise
        request.onsuccess = on_success
        request.onerror = on_error
        request.onblocked = lambda event: logger.warning(
            "Opening '%s' at version %s is blocked by an open connection", name, event.new_version
        )
        if on_upgrade is not None:
            # exceptions must reach the engine so it aborts the upgrade
            request.onupgradeneeded = on_upgrade
        try:
            conn = await settler
        except asyncio.CancelledError:
            # abandoned by a timeout; later callers start a fresh open
            self._release(name, settler)
            raise
        logger.debug("Opened connection to '%s' at version %d", name, conn.version)
        return conn

    def _release(self, name: str, settler: Settler) -> None:
        if self._pending.get(name) is settler.future:
            del self._pending[name]

    def _on_version_change(self, event: Event) -> None:
        conn = event.target
        if self._connections.get(conn.name) is conn:
            del self._connections[conn.name]
        conn.close()
        logger.debug("Closed connection to '%s' for a version change", conn.name)
