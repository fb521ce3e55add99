"""Cookie storage over an in-process cookie jar."""
from __future__ import annotations
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from http.cookies import CookieError, Morsel, SimpleCookie
import logging
from typing import Any, Callable, Mapping, Optional
from urllib.parse import quote, unquote

from scstorage.codec import Envelope, RecordCodec, epoch_ms
from scstorage.config import Settings
from scstorage.errors import ValidationError
from scstorage.webstorage import WebStorageUtility

logger = logging.getLogger(__name__)

# camelCase spellings of the cookie attribute options
_OPTION_ALIASES = {'maxAge': 'max_age', 'httpOnly': 'http_only', 'sameSite': 'same_site'}
_SAME_SITE = {'none': 'None', 'lax': 'Lax', 'strict': 'Strict'}


class CookieJar:
    """The cookies visible to one document.

    Assigning a ``Set-Cookie`` style string through `set` adds or replaces a
    cookie; an expiry in the past or ``Max-Age<=0`` removes it. `cookie`
    renders the live cookies as ``name=value; name2=value2``.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self.clock = clock or epoch_ms
        # name -> (morsel, expiry in epoch ms or None for a session cookie)
        self._cookies: dict[str, tuple[Morsel, Optional[int]]] = {}

    def set(self, header: str) -> None:
        parsed = SimpleCookie()
        try:
            parsed.load(header)
        except CookieError as exc:
            raise ValidationError(f'Invalid cookie string: {exc}') from exc
        if not parsed:
            raise ValidationError(f'Invalid cookie string: {header!r}')
        for name, morsel in parsed.items():
            expires = self._expiry(morsel)
            if expires is not None and expires <= self.clock():
                self._cookies.pop(name, None)
                continue
            self._cookies[name] = (morsel, expires)

    def get(self, name: str) -> Optional[str]:
        self._prune()
        found = self._cookies.get(name)
        return None if found is None else found[0].coded_value

    def attributes(self, name: str) -> dict:
        """Attributes the cookie was set with, for inspection."""
        found = self._cookies.get(name)
        if found is None:
            return {}
        return {k: v for k, v in found[0].items() if v}

    @property
    def cookie(self) -> str:
        self._prune()
        return '; '.join(f'{m.key}={m.coded_value}' for m, _ in self._cookies.values())

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def _expiry(self, morsel: Morsel) -> Optional[int]:
        if morsel['max-age'] != '':
            try:
                return self.clock() + int(morsel['max-age']) * 1000
            except ValueError:
                raise ValidationError(f"Invalid Max-Age {morsel['max-age']!r}") from None
        if morsel['expires']:
            try:
                when = parsedate_to_datetime(morsel['expires'])
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid Expires {morsel['expires']!r}") from None
            return int(when.timestamp() * 1000)
        return None

    def _prune(self) -> None:
        now = self.clock()
        for name in [n for n, (_, exp) in self._cookies.items() if exp is not None and exp <= now]:
            del self._cookies[name]


def cookie_attributes(options: Mapping[str, Any]) -> str:
    """Validate cookie options and render them as ``; Attr=value`` pairs."""
    opts = {_OPTION_ALIASES.get(k, k): v for k, v in options.items()}
    parts = []
    path = opts.get('path')
    if path is not None:
        if not isinstance(path, str):
            raise ValidationError('path must be a string')
        parts.append(f'Path={path.split(";")[0]}')
    domain = opts.get('domain')
    if domain is not None:
        if not isinstance(domain, str):
            raise ValidationError('domain must be a string')
        parts.append(f'Domain={domain.split(";")[0]}')
    max_age = opts.get('max_age')
    if max_age is not None:
        if isinstance(max_age, bool) or not isinstance(max_age, int):
            raise ValidationError('max_age must be an integer number of seconds')
        parts.append(f'Max-Age={max_age}')
    for name, label in (('secure', 'Secure'), ('http_only', 'HttpOnly')):
        flag = opts.get(name, False)
        if not isinstance(flag, bool):
            raise ValidationError(f'{name} must be a boolean')
        if flag:
            parts.append(label)
    same_site = opts.get('same_site')
    if same_site is not None and same_site is not False:
        if same_site is True:
            parts.append('SameSite=Strict')
        elif isinstance(same_site, str) and same_site in _SAME_SITE:
            parts.append(f'SameSite={_SAME_SITE[same_site]}')
        else:
            raise ValidationError('same_site must be "none", "strict", "lax" or a boolean')
    return ''.join(f'; {p}' for p in parts)


class CookieUtility(WebStorageUtility):
    """Stores the envelope URL-encoded in a cookie named after the key."""

    write_options = frozenset({'path', 'domain', 'max_age', 'secure', 'http_only', 'same_site', *_OPTION_ALIASES})

    def __init__(self, jar: CookieJar, codec: RecordCodec, settings: Settings):
        super().__init__(area=None, codec=codec, settings=settings, label='cookies')
        self.jar = jar

    def has(self, key: str) -> bool:
        return key in self.jar

    def delete(self, key: str) -> bool:
        self.jar.set(f'{key}=; Max-Age=-99999999')
        return True

    def _check_write_options(self, options: Mapping[str, Any]) -> dict:
        super()._check_write_options(options)
        return {'attributes': cookie_attributes({k: v for k, v in options.items() if k != 'expires'})}

    def _get(self, key: str) -> Optional[str]:
        value = self.jar.get(key)
        return None if value is None else unquote(value)

    def _put(self, key: str, text: str, envelope: Envelope, extra: dict) -> None:
        expires = datetime.fromtimestamp(envelope.expires / 1000, tz=timezone.utc)
        header = f'{key}={quote(text, safe="")}; Expires={format_datetime(expires, usegmt=True)}{extra["attributes"]}'
        logger.debug('Setting cookie %s', key)
        self.jar.set(header)
