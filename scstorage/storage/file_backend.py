"""Directory-per-namespace backend used for persistent local storage.

A value lives in ``<data_dir>/<namespace>/<quoted key><ext>``; the extension
comes from the serializer. Keys are percent-quoted so database names with
slashes or spaces map to one file and come back unchanged from `list_keys`.
"""
from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import Any, Iterable, Optional
from urllib.parse import quote, unquote

from .base import StorageBackend
from .serializer import PickleSerializer, Serializer

logger = logging.getLogger(__name__)


class FileStorageBackend(StorageBackend):
    def __init__(self, data_dir: str | Path = "./data", serializer: Optional[Serializer] = None) -> None:
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.serializer = serializer or PickleSerializer()

    def _namespace_dir(self, namespace: str) -> Path:
        directory = self.data_dir / namespace
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def _file(self, namespace: str, key: str) -> Path:
        return self._namespace_dir(namespace) / (quote(key, safe="") + self.serializer.extension)

    def save(self, namespace: str, key: str, value: Any) -> None:
        target = self._file(namespace, key)
        staging = target.with_name(target.name + ".tmp")
        payload = self.serializer.dump(value)
        with open(staging, "wb") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        # rename is atomic on the same filesystem
        staging.replace(target)
        logger.debug("Saved %s/%s (%d bytes)", namespace, key, len(payload))

    def load(self, namespace: str, key: str) -> Any:
        try:
            payload = self._file(namespace, key).read_bytes()
        except FileNotFoundError:
            raise KeyError(key) from None
        return self.serializer.load(payload)

    def delete(self, namespace: str, key: str) -> None:
        try:
            self._file(namespace, key).unlink()
        except FileNotFoundError:
            raise KeyError(key) from None

    def list_keys(self, namespace: str) -> Iterable[str]:
        suffix = self.serializer.extension
        return sorted(
            unquote(entry.name[: -len(suffix)])
            for entry in self._namespace_dir(namespace).iterdir()
            if entry.is_file() and entry.name.endswith(suffix)
        )

    def exists(self, namespace: str, key: str) -> bool:
        return self._file(namespace, key).is_file()
