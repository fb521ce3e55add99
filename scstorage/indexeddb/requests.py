"""Turn engine request events into awaitables.

Engine requests report completion through ``onsuccess`` / ``onerror``
handlers. The helpers here wrap them in an asyncio future that settles
exactly once, however many handlers fire.
"""
from __future__ import annotations
import asyncio
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

from scstorage.errors import NativeRequestError
from scstorage.indexeddb.engine import Event, IDBRequest, NativeError


def native_error(error: Optional[BaseException], fallback: str = 'Unknown error') -> NativeRequestError:
    """Build the public error for a native error event."""
    name = getattr(error, 'name', None)
    message = str(error) if error else fallback
    exc = NativeRequestError(message, name=name)
    exc.__cause__ = error
    return exc


class Settler:
    """Single-settlement wrapper around a future.

    `resolve` and `reject` are no-ops once the future is done, so nested
    handlers (a delete issued from a read's success handler, say) can call
    either without checking.
    """

    def __init__(self) -> None:
        self.future: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self.future.done()

    def resolve(self, value: Any = None) -> None:
        if not self.future.done():
            self.future.set_result(value)

    def reject(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)

    def reject_event(self, event: Event, fallback: str = 'Request error') -> None:
        self.reject(native_error(event.target.error, fallback))

    def guard(self, handler: Callable[[Event], Any]) -> Callable[[Event], None]:
        """Wrap an event handler so an exception rejects instead of escaping into the engine."""

        def wrapped(event: Event) -> None:
            if self.future.done():
                return
            try:
                handler(event)
            except NativeError as exc:
                self.reject(native_error(exc))
            except Exception as exc:
                self.reject(exc)

        return wrapped

    def __await__(self):
        return self.future.__await__()


async def await_request(request: IDBRequest) -> Any:
    """Await a request and return its result."""
    settler = Settler()
    request.onsuccess = lambda event: settler.resolve(event.target.result)
    request.onerror = settler.reject_event
    return await settler


async def walk_cursor(
    request: IDBRequest,
    on_item: Callable[[Any], bool],
    on_done: Optional[Callable[[], Any]] = None,
) -> Any:
    """Walk a cursor request without yielding between steps.

    `on_item(cursor)` runs inside the success handler for each record and
    returns True to continue. Because it runs inside the handler it may place
    further requests (``cursor.delete()``) on the live transaction.
    `on_done()` runs once the cursor is exhausted or stopped; its return
    value is the result.
    """
    settler = Settler()

    def on_success(event: Event) -> None:
        cursor = event.target.result
        if cursor is not None and on_item(cursor):
            cursor.continue_()
            return
        settler.resolve(on_done() if on_done is not None else None)

    request.onsuccess = settler.guard(on_success)
    request.onerror = lambda event: settler.reject_event(event, 'Cursor error')
    return await settler


@contextmanager
def native_errors() -> Iterator[None]:
    """Re-raise errors thrown synchronously by engine calls as `NativeRequestError`."""
    try:
        yield
    except NativeError as exc:
        raise native_error(exc) from exc
