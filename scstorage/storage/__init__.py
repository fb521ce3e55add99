"""Storage abstraction package for scstorage."""
from __future__ import annotations
from pathlib import Path

from .base import StorageBackend
from .file_backend import FileStorageBackend
from .memory_backend import MemoryStorage
from .serializer import SERIALIZERS, JSONSerializer, PickleSerializer, TextSerializer, YAMLSerializer

__all__ = [
    "StorageBackend",
    "FileStorageBackend",
    "MemoryStorage",
    "JSONSerializer",
    "PickleSerializer",
    "YAMLSerializer",
    "TextSerializer",
    "create_storage",
]


def create_storage(kind: str = 'file', serializer: str = 'pickle', data_dir: str | Path = './data') -> StorageBackend:
    """Build a storage backend by name.

    `kind` is ``'file'`` or ``'memory'``; `serializer` selects the on-disk
    format for file backends and is ignored for memory.
    """
    if kind == 'memory':
        return MemoryStorage()
    if kind != 'file':
        raise ValueError(f"Unknown storage kind {kind!r}")
    try:
        ser = SERIALIZERS[serializer]()
    except KeyError:
        raise ValueError(f"Unknown serializer {serializer!r}") from None
    return FileStorageBackend(data_dir=data_dir, serializer=ser)
