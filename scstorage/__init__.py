"""Uniform read/write/has/delete over cookie, local, session and object-store storage."""
from __future__ import annotations

from .codec import Envelope, RecordCodec
from .config import Settings, StorageType, load_settings
from .errors import (
    InvalidKeyError,
    NativeRequestError,
    RecordNotFoundError,
    RequestTimeoutError,
    SchemaError,
    ScStorageError,
    UnsupportedEnvironmentError,
    ValidationError,
)
from .facade import ScStorage, validate_key
from .indexeddb import IDBFactory, IndexedDBUtility, IndexSpec
from .logging_config import configure_logging

__all__ = [
    "Envelope",
    "IDBFactory",
    "IndexSpec",
    "IndexedDBUtility",
    "InvalidKeyError",
    "NativeRequestError",
    "RecordCodec",
    "RecordNotFoundError",
    "RequestTimeoutError",
    "ScStorage",
    "ScStorageError",
    "SchemaError",
    "Settings",
    "StorageType",
    "UnsupportedEnvironmentError",
    "ValidationError",
    "configure_logging",
    "load_settings",
    "validate_key",
]
