"""One entry point over cookie, local, session and object-store storage."""
from __future__ import annotations
import logging
import re
from typing import Any, Callable, Mapping, Optional, Union

from scstorage.codec import RecordCodec
from scstorage.config import Settings, StorageType
from scstorage.cookies import CookieJar, CookieUtility
from scstorage.errors import InvalidKeyError, UnsupportedEnvironmentError, ValidationError
from scstorage.indexeddb import IDBFactory, IndexedDBUtility
from scstorage.webstorage import WebStorageUtility, local_area, session_area

logger = logging.getLogger(__name__)

_VALID_KEY = re.compile(r'^[a-zA-Z0-9._-]+$')
_INVALID_CHARS = re.compile(r'[^a-zA-Z0-9._-]+')


def validate_key(key: Any) -> str:
    """Raise `InvalidKeyError` unless `key` only uses ``[a-zA-Z0-9._-]``."""
    if isinstance(key, bool) or not isinstance(key, (str, int, float)):
        raise InvalidKeyError(key, [type(key).__name__])
    text = str(key)
    if not _VALID_KEY.match(text):
        raise InvalidKeyError(key, _INVALID_CHARS.findall(text) or ['(empty)'])
    return text


class ScStorage:
    """Read, write, test and delete keyed values on the configured backend.

    The backend comes from the ``storage_type`` option of each call, or from
    the settings. Cookie, local and session storage answer synchronously;
    IndexedDB calls validate synchronously and return an awaitable.

    `config` is a `Settings` or a mapping accepted by `Settings.from_mapping`.
    `factory` is the object-store engine (the process-wide one when
    omitted) and `clock` returns epoch milliseconds.
    """

    def __init__(
        self,
        config: Union[Settings, Mapping[str, Any], None] = None,
        *,
        factory: Optional[IDBFactory] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.settings = config if isinstance(config, Settings) else Settings.from_mapping(config)
        self.codec = RecordCodec(self.settings.lifetime, clock)
        self.cookie_jar = CookieJar(self.codec.now)
        self._local: Optional[WebStorageUtility] = None
        self._session = WebStorageUtility(session_area(), self.codec, self.settings, 'session storage')
        self._cookies = CookieUtility(self.cookie_jar, self.codec, self.settings)
        self._indexeddb: Optional[IndexedDBUtility] = None
        if self.settings.indexeddb_enable or self.settings.storage_type is StorageType.INDEXEDDB:
            self._indexeddb = IndexedDBUtility(self.settings, factory=factory, codec=self.codec)

    @property
    def local(self) -> WebStorageUtility:
        # the local area touches the filesystem; only create it when used
        if self._local is None:
            self._local = WebStorageUtility(local_area(self.settings.data_dir), self.codec, self.settings, 'local storage')
        return self._local

    @property
    def session(self) -> WebStorageUtility:
        return self._session

    @property
    def cookies(self) -> CookieUtility:
        return self._cookies

    @property
    def indexeddb(self) -> IndexedDBUtility:
        if self._indexeddb is None:
            raise UnsupportedEnvironmentError('IndexedDB is not enabled; set indexeddb_enable in the settings')
        return self._indexeddb

    def read(self, key: Any, **options: Any) -> Any:
        text = validate_key(key)
        storage_type = self._storage_type(options)
        if storage_type is StorageType.INDEXEDDB:
            return self.indexeddb.read(text, **options)
        return self._simple(storage_type).read(text, **options)

    def write(self, key: Any, data: Any, **options: Any) -> Any:
        text = validate_key(key)
        storage_type = self._storage_type(options)
        if storage_type is StorageType.INDEXEDDB:
            return self.indexeddb.write(text, data, **options)
        return self._simple(storage_type).write(text, data, **options)

    def has(self, key: Any, **options: Any) -> Any:
        text = validate_key(key)
        storage_type = self._storage_type(options)
        if storage_type is StorageType.INDEXEDDB:
            return self.indexeddb.has(text, **options)
        if options:
            raise ValidationError(f"Unknown option(s) {', '.join(sorted(options))}")
        return self._simple(storage_type).has(text)

    def delete(self, key: Any, **options: Any) -> Any:
        """Delete `key`; for IndexedDB see `IndexedDBUtility.delete` for ``type`` and ``store_name``."""
        text = validate_key(key)
        storage_type = self._storage_type(options)
        if storage_type is StorageType.INDEXEDDB:
            # record ids stay numeric
            return self.indexeddb.delete(key, **options)
        if options:
            raise ValidationError(f"Unknown option(s) {', '.join(sorted(options))}")
        return self._simple(storage_type).delete(text)

    def _storage_type(self, options: dict) -> StorageType:
        camel = options.pop('storageType', None)
        value = options.pop('storage_type', None) or camel or self.settings.storage_type
        try:
            return StorageType(value)
        except ValueError:
            raise ValidationError(f'Unknown storage type {value!r}') from None

    def _simple(self, storage_type: StorageType) -> WebStorageUtility:
        if storage_type is StorageType.COOKIE:
            return self.cookies
        if storage_type is StorageType.SESSION_STORAGE:
            return self.session
        return self.local
