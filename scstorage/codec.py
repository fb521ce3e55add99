"""Metadata envelopes wrapped around stored values.

Every backend stores a caller value together with an expiry instant and
creation/update timestamps, all in epoch milliseconds. `Envelope` keeps the
caller data and the metadata apart; `RecordCodec` owns the clock and turns
an expiry option into an absolute instant.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional, Union
import time

from scstorage.errors import ValidationError

# fields the engine manages on every stored record
RESERVED_FIELDS = ('expires', 'createdAt', 'updatedAt')
ID_FIELD = 'id'

ExpiresInput = Union[datetime, timedelta, int, float, None]


def epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Envelope:
    """A caller value plus its engine-managed metadata.

    For the simple backends `data` is any JSON value; for the object store it
    is the caller's field mapping and `id` is the primary key.
    """

    data: Any
    expires: Optional[int]
    created_at: int
    updated_at: int
    id: Optional[Any] = None

    def is_expired(self, now: int) -> bool:
        return self.expires is not None and now > self.expires

    def to_item(self) -> dict:
        """Serializable form used by local, session and cookie storage."""
        return {
            'data': self.data,
            'expires': self.expires,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }

    def to_record(self) -> dict:
        """Flat record layout persisted in an object store."""
        record = dict(self.data)
        if self.id is not None:
            record[ID_FIELD] = self.id
        record['expires'] = self.expires
        record['createdAt'] = self.created_at
        record['updatedAt'] = self.updated_at
        return record

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> 'Envelope':
        return cls(
            data=item['data'],
            expires=item.get('expires'),
            created_at=item.get('createdAt', 0),
            updated_at=item.get('updatedAt', 0),
        )

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> 'Envelope':
        data = {k: v for k, v in record.items() if k != ID_FIELD and k not in RESERVED_FIELDS}
        return cls(
            data=data,
            expires=record.get('expires'),
            created_at=record.get('createdAt', 0),
            updated_at=record.get('updatedAt', 0),
            id=record.get(ID_FIELD),
        )


class RecordCodec:
    """Wraps values in envelopes using a configurable clock.

    `clock` returns the current time in epoch milliseconds; tests pass a
    controllable one. `lifetime` is the default time-to-live in ms.
    """

    def __init__(self, lifetime: int, clock: Optional[Callable[[], int]] = None):
        self.lifetime = lifetime
        self.clock = clock or epoch_ms

    def now(self) -> int:
        return int(self.clock())

    def expires_at(self, expires: ExpiresInput) -> int:
        """Resolve an expiry option to an absolute epoch-ms instant.

        A `datetime` is absolute; a number is a duration in milliseconds from
        now, as is a `timedelta`. `None` falls back to the default lifetime.
        """
        if expires is None:
            return self.now() + int(self.lifetime)
        if isinstance(expires, datetime):
            if expires.tzinfo is None:
                expires = expires.replace(tzinfo=timezone.utc)
            return int(expires.timestamp() * 1000)
        if isinstance(expires, timedelta):
            return self.now() + int(expires.total_seconds() * 1000)
        if isinstance(expires, bool) or not isinstance(expires, (int, float)):
            raise ValidationError('Expires can only be a number, a timedelta or a datetime object')
        return self.now() + int(expires)

    def wrap(self, data: Any, expires: ExpiresInput = None, existing: Optional[Envelope] = None) -> Envelope:
        """Envelope for a simple backend write, keeping `createdAt` of `existing`."""
        now = self.now()
        created_at = existing.created_at if existing is not None and existing.created_at else now
        return Envelope(data=data, expires=self.expires_at(expires), created_at=created_at, updated_at=now)

    def wrap_for_create(self, data: Mapping[str, Any], expires: ExpiresInput = None) -> Envelope:
        now = self.now()
        return Envelope(data=dict(data), expires=self.expires_at(expires), created_at=now, updated_at=now)

    def wrap_for_update(self, existing: Envelope, data: Mapping[str, Any], expires: ExpiresInput = None) -> Envelope:
        """Envelope replacing `existing`'s data.

        `createdAt` is always kept. `expires` is kept unless a new expiry is
        given. `updatedAt` is refreshed.
        """
        body = {k: v for k, v in data.items() if k != ID_FIELD}
        new_expires = existing.expires if expires is None else self.expires_at(expires)
        return Envelope(
            data=body,
            expires=new_expires,
            created_at=existing.created_at,
            updated_at=self.now(),
            id=existing.id,
        )
