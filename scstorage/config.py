"""Process-wide defaults for the storage façade.

Settings can be built from a mapping that uses either the legacy upper-case
keys (``STORAGE_TYPE``, ``LIFETIME``, ...) or the dataclass field names, or
loaded from a YAML file. Per-call options override these values for a
single call only.
"""
from __future__ import annotations
from dataclasses import dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional
import logging

import yaml

from scstorage.errors import ValidationError

logger = logging.getLogger(__name__)


class StorageType(str, Enum):
    COOKIE = 'Cookie'
    LOCAL_STORAGE = 'LocalStorage'
    SESSION_STORAGE = 'SessionStorage'
    INDEXEDDB = 'IndexedDB'


# legacy configuration keys -> Settings field names
_LEGACY_KEYS = {
    'STORAGE_TYPE': 'storage_type',
    'LIFETIME': 'lifetime',
    'WITH_META': 'with_meta',
    'AS_OBJECT': 'with_meta',
    'INDEXEDDB_ENABLE': 'indexeddb_enable',
    'INDEXEDDB_CLOSE_AFTER_REQUEST': 'indexeddb_close_after_request',
    'INDEXEDDB_DATABASE': 'indexeddb_database',
    'INDEXEDDB_REQUEST_TIMEOUT': 'indexeddb_request_timeout',
    'DATA_DIR': 'data_dir',
    'LOG_LEVEL': 'log_level',
}


@dataclass(frozen=True)
class Settings:
    storage_type: StorageType = StorageType.LOCAL_STORAGE
    # default time-to-live in milliseconds
    lifetime: int = 86400000
    with_meta: bool = False
    indexeddb_enable: bool = False
    indexeddb_close_after_request: bool = True
    indexeddb_database: str = 'default'
    # seconds; None waits for the engine indefinitely
    indexeddb_request_timeout: Optional[float] = None
    data_dir: str = './data'
    log_level: str = 'WARNING'

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, 'storage_type', StorageType(self.storage_type))
        except ValueError:
            raise ValidationError(f'Unknown storage type {self.storage_type!r}') from None
        if isinstance(self.lifetime, bool) or not isinstance(self.lifetime, (int, float)) or self.lifetime < 0:
            raise ValidationError('LIFETIME must be a non-negative number of milliseconds')
        for name in ('with_meta', 'indexeddb_enable', 'indexeddb_close_after_request'):
            if not isinstance(getattr(self, name), bool):
                raise ValidationError(f'{name} must be a boolean')
        if not isinstance(self.indexeddb_database, str) or not self.indexeddb_database:
            raise ValidationError('indexeddb_database must be a non-empty string')
        timeout = self.indexeddb_request_timeout
        if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0):
            raise ValidationError('indexeddb_request_timeout must be a positive number of seconds or None')

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]] = None) -> 'Settings':
        """Build settings from a config mapping.

        Accepts legacy upper-case keys as well as field names. Unknown keys
        raise `ValidationError` so typos do not silently fall back to a
        default.
        """
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in (mapping or {}).items():
            name = _LEGACY_KEYS.get(key, key)
            if name not in known:
                raise ValidationError(f'Unknown configuration key {key!r}')
            values[name] = value
        return cls(**values)


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """Load settings from a YAML file, falling back to defaults if it is missing."""
    cfg_path = Path(config_path) if config_path else Path('data/config/storage_config.yml')
    if not cfg_path.exists():
        logger.debug('No storage config at %s, using defaults', cfg_path)
        return Settings()
    with cfg_path.open('r', encoding='utf-8') as f:
        cfg = yaml.safe_load(f) or {}
    if not isinstance(cfg, dict):
        raise ValidationError(f'Storage config {cfg_path} must contain a mapping')
    logger.debug('Loaded storage config from %s', cfg_path)
    return Settings.from_mapping(cfg)
