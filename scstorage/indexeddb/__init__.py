"""Transactional object-store backend and the engine it drives."""
from __future__ import annotations

from .engine import IDBFactory, default_factory
from .registry import ConnectionRegistry, ConnectionState
from .schema import IndexSpec, SchemaManager
from .utility import IndexedDBUtility
from .validation import DeleteType

__all__ = [
    "ConnectionRegistry",
    "ConnectionState",
    "DeleteType",
    "IDBFactory",
    "IndexSpec",
    "IndexedDBUtility",
    "SchemaManager",
    "default_factory",
]
