"""Key/value persistence shared by the storage areas and the engine.

Local storage, session storage and object-store snapshots all write through
a `StorageBackend`. Each of them owns one `namespace` (``local_storage``,
``session_storage``, ``indexeddb``) and addresses values by `key` inside it.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Iterable


class StorageBackend(ABC):
    """Abstract namespaced key/value backend.

    Missing keys raise `KeyError` from `load` and `delete`. Implementations
    shared between threads guard their own state.
    """

    @abstractmethod
    def save(self, namespace: str, key: str, value: Any) -> None:
        """Store `value`, replacing any previous value; readers never see a partial write."""

    @abstractmethod
    def load(self, namespace: str, key: str) -> Any:
        """Return the value stored under `key`."""

    @abstractmethod
    def delete(self, namespace: str, key: str) -> None:
        """Remove `key` from `namespace`."""

    @abstractmethod
    def list_keys(self, namespace: str) -> Iterable[str]:
        ...

    @abstractmethod
    def exists(self, namespace: str, key: str) -> bool:
        ...

    def clear(self, namespace: str) -> None:
        """Remove every key in `namespace`."""
        for key in list(self.list_keys(namespace)):
            try:
                self.delete(namespace, key)
            except KeyError:
                pass
