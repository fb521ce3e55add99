"""Exception hierarchy shared by every storage backend.

All errors raised on purpose by this package derive from `ScStorageError`
so callers can catch one type. Validation and not-found errors also derive
from the matching builtin (`ValueError` / `KeyError`) so existing
``except KeyError`` call sites keep working.
"""
from __future__ import annotations
from typing import Optional


class ScStorageError(Exception):
    """Base exception for storage errors."""


class UnsupportedEnvironmentError(ScStorageError):
    """The requested storage engine is not available in this host."""


class ValidationError(ScStorageError, ValueError):
    """Malformed options or reserved fields in caller data."""


class InvalidKeyError(ValidationError):
    """A façade key contains characters outside ``[a-zA-Z0-9._-]``."""

    def __init__(self, key: object, invalid: list[str]):
        self.key = key
        self.invalid = invalid
        super().__init__(
            f'The key "{key}" is invalid. Please remove the following characters: {",".join(invalid)}'
        )


class RecordNotFoundError(ScStorageError, KeyError):
    """An update referenced an id that does not exist."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the message readable
        return str(self.args[0]) if self.args else ""


class NativeRequestError(ScStorageError):
    """A request against the native engine reported an error event."""

    def __init__(self, message: str, *, name: Optional[str] = None):
        super().__init__(message)
        self.name = name


class SchemaError(ScStorageError):
    """Conflicting store or index declarations during store creation."""


class RequestTimeoutError(ScStorageError, TimeoutError):
    """A configured request deadline elapsed before the engine answered."""
