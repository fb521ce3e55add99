"""Local and session storage: string items wrapped in a JSON envelope."""
from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from scstorage.codec import Envelope, RecordCodec
from scstorage.config import Settings
from scstorage.errors import ValidationError
from scstorage.storage import FileStorageBackend, MemoryStorage, StorageBackend, TextSerializer

logger = logging.getLogger(__name__)


class StorageArea:
    """String key/value area over one namespace of a `StorageBackend`."""

    def __init__(self, backend: StorageBackend, namespace: str):
        self.backend = backend
        self.namespace = namespace

    def get_item(self, key: str) -> Optional[str]:
        try:
            return self.backend.load(self.namespace, key)
        except KeyError:
            return None

    def set_item(self, key: str, value: str) -> None:
        self.backend.save(self.namespace, key, str(value))

    def remove_item(self, key: str) -> None:
        try:
            self.backend.delete(self.namespace, key)
        except KeyError:
            pass

    def keys(self) -> Iterable[str]:
        return list(self.backend.list_keys(self.namespace))

    def clear(self) -> None:
        self.backend.clear(self.namespace)

    def __len__(self) -> int:
        return len(list(self.keys()))


def local_area(data_dir: str | Path) -> StorageArea:
    """Persistent area under `data_dir`, one text file per key."""
    return StorageArea(FileStorageBackend(data_dir=data_dir, serializer=TextSerializer()), 'local_storage')


def session_area() -> StorageArea:
    """Area that lives as long as the process."""
    return StorageArea(MemoryStorage(), 'session_storage')


def _with_meta(options: Mapping[str, Any], settings: Settings) -> bool:
    value = settings.with_meta
    for name in ('with_meta', 'withMeta', 'as_object', 'asObject'):
        if name in options:
            value = options[name]
    if not isinstance(value, bool):
        raise ValidationError('with_meta must be a boolean')
    return value


class WebStorageUtility:
    """read/write/has/delete over a `StorageArea`.

    Items are stored as ``{"data", "expires", "createdAt", "updatedAt"}``
    JSON. Items that are not such an envelope are returned as they are.
    """

    # option names accepted by write, besides `expires`
    write_options: frozenset = frozenset()

    def __init__(self, area: StorageArea, codec: RecordCodec, settings: Settings, label: str):
        self.area = area
        self.codec = codec
        self.settings = settings
        self.label = label

    def write(self, key: str, data: Any, **options: Any) -> bool:
        extra = self._check_write_options(options)
        existing = self.read(key, with_meta=True)
        previous = Envelope.from_item(existing) if isinstance(existing, dict) and 'createdAt' in existing else None
        envelope = self.codec.wrap(data, options.get('expires'), previous)
        try:
            text = json.dumps(envelope.to_item())
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Data for '{key}' is not JSON serializable: {exc}") from exc
        self._put(key, text, envelope, extra)
        return True

    def read(self, key: str, **options: Any) -> Any:
        unknown = set(options) - {'with_meta', 'withMeta', 'as_object', 'asObject'}
        if unknown:
            raise ValidationError(f"Unknown option(s) {', '.join(sorted(unknown))}")
        with_meta = _with_meta(options, self.settings)
        item = self._get(key)
        if not item:
            return {'data': None} if with_meta else None
        try:
            obj = json.loads(item)
        except ValueError:
            logger.info("Read an invalid item from the key '%s' in %s. Please delete it.", key, self.label)
            return {'data': item} if with_meta else item
        if not isinstance(obj, dict) or 'expires' not in obj or 'data' not in obj:
            logger.info("Read an item without envelope from the key '%s' in %s. Please delete it.", key, self.label)
            return {'data': obj} if with_meta else obj
        if Envelope.from_item(obj).is_expired(self.codec.now()):
            logger.debug("Item '%s' in %s expired", key, self.label)
            self.delete(key)
            return {'data': None} if with_meta else None
        return obj if with_meta else obj['data']

    def has(self, key: str) -> bool:
        return self.read(key, with_meta=False) is not None

    def delete(self, key: str) -> bool:
        self.area.remove_item(key)
        return True

    # -- hooks for subclasses

    def _check_write_options(self, options: Mapping[str, Any]) -> dict:
        unknown = set(options) - {'expires'} - self.write_options
        if unknown:
            raise ValidationError(f"Unknown option(s) {', '.join(sorted(unknown))}")
        return {}

    def _get(self, key: str) -> Optional[str]:
        return self.area.get_item(key)

    def _put(self, key: str, text: str, envelope: Envelope, extra: dict) -> None:
        self.area.set_item(key, text)
