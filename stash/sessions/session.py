"""
Session Entity
===============

In-memory form of one stored session row, with change tracking.

Attribute values are held encoded (as stored); ``get_attribute`` decodes on
every call, so mutate a returned object and then ``set_attribute`` it again
for the change to be recorded.

Every access moves ``last_accessed_time`` forward: loading through
``SessionStore.find_by_id`` and each attribute set or remove stamp the
clock. Reads through ``get_attribute`` do not.

Mutators are coroutines: under FlushMode.IMMEDIATE they persist the session
before returning. Session objects are not safe to share between concurrent
requests.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from stash.sessions.codec import AttributeCodec, PickleCodec

if TYPE_CHECKING:
    from stash.sessions.flush import FlushCoordinator


def now_millis() -> int:
    return int(time.time() * 1000)


@dataclass
class SessionDelta:
    """Changes accumulated since the last successful persist. Never stored."""

    attributes: set[str] = field(default_factory=set)
    last_accessed_time: bool = False
    max_inactive_interval: bool = False
    original_id: str | None = None  # set when the id was rotated

    def __bool__(self) -> bool:
        return bool(
            self.attributes
            or self.last_accessed_time
            or self.max_inactive_interval
            or self.original_id
        )

    def clear(self) -> None:
        self.attributes.clear()
        self.last_accessed_time = False
        self.max_inactive_interval = False
        self.original_id = None


class Session:
    """One session: id, encoded attributes, timestamps and change tracking."""

    def __init__(
        self,
        session_id: str,
        *,
        creation_time: int,
        last_accessed_time: int,
        max_inactive_interval_seconds: int,
        attributes: dict[str, str] | None = None,
        is_new: bool = True,
        indexed_principal: str | None = None,
        codec: AttributeCodec | None = None,
        coordinator: FlushCoordinator | None = None,
        clock: Callable[[], int] = now_millis,
    ):
        if not session_id:
            raise ValueError("session_id cannot be empty")
        self._id = session_id
        self._attributes: dict[str, str] = dict(attributes or {})
        self._creation_time = creation_time
        self._last_accessed_time = last_accessed_time
        self._max_inactive_interval = max_inactive_interval_seconds
        self._is_new = is_new
        self._indexed_principal = indexed_principal
        self._delta = SessionDelta()
        self._codec = codec or PickleCodec()
        self._coordinator = coordinator
        self._clock = clock

    def __repr__(self) -> str:
        state = "new" if self._is_new else ("dirty" if self._delta else "clean")
        return f"Session({self._id!r}, attributes={len(self._attributes)}, {state})"

    # ── Identity & state ─────────────────────────────────────────────────

    @property
    def id(self) -> str:
        return self._id

    @property
    def is_new(self) -> bool:
        return self._is_new

    @property
    def is_dirty(self) -> bool:
        return bool(self._delta)

    @property
    def delta(self) -> SessionDelta:
        return self._delta

    @property
    def indexed_principal(self) -> str | None:
        """Principal the stored row is indexed under (as of the last persist)."""
        return self._indexed_principal

    # ── Timestamps & expiry ──────────────────────────────────────────────

    @property
    def creation_time(self) -> int:
        return self._creation_time

    @property
    def last_accessed_time(self) -> int:
        return self._last_accessed_time

    @property
    def max_inactive_interval_seconds(self) -> int:
        return self._max_inactive_interval

    @property
    def expiry_time(self) -> int | None:
        """Epoch millis after which the session is expired; None if it never expires."""
        if self._max_inactive_interval < 0:
            return None
        return self._last_accessed_time + self._max_inactive_interval * 1000

    def is_expired(self, now: int | None = None) -> bool:
        expiry = self.expiry_time
        if expiry is None:
            return False
        if now is None:
            now = self._clock()
        return now > expiry

    async def set_last_accessed_time(self, timestamp: int) -> None:
        self._last_accessed_time = timestamp
        self._delta.last_accessed_time = True
        await self._changed()

    async def touch(self) -> None:
        """Mark the session as accessed now."""
        await self.set_last_accessed_time(self._clock())

    async def record_access(self) -> None:
        """Stamp an access. Does nothing unless the clock has moved on."""
        if self._accessed():
            await self._changed()

    def _accessed(self) -> bool:
        now = self._clock()
        if now <= self._last_accessed_time:
            return False
        self._last_accessed_time = now
        self._delta.last_accessed_time = True
        return True

    async def set_max_inactive_interval(self, seconds: int) -> None:
        """Negative values disable expiry."""
        self._max_inactive_interval = int(seconds)
        self._delta.max_inactive_interval = True
        await self._changed()

    # ── Attributes ───────────────────────────────────────────────────────

    @property
    def attribute_names(self) -> set[str]:
        return set(self._attributes)

    @property
    def encoded_attributes(self) -> dict[str, str]:
        """Attribute map as stored (name → encoded value)."""
        return dict(self._attributes)

    def __contains__(self, name: str) -> bool:
        return name in self._attributes

    def get_attribute(self, name: str, default: Any = None) -> Any:
        """Decode and return an attribute. Raises CodecError on corrupt values."""
        if name not in self._attributes:
            return default
        return self._codec.decode(self._attributes[name])

    async def set_attribute(self, name: str, value: Any) -> None:
        """Set an attribute. Setting ``None`` removes it."""
        if value is None:
            await self.remove_attribute(name)
            return
        self._attributes[name] = self._codec.encode(value)
        self._delta.attributes.add(name)
        self._accessed()
        await self._changed()

    async def remove_attribute(self, name: str) -> None:
        if name not in self._attributes:
            return
        del self._attributes[name]
        self._delta.attributes.add(name)
        self._accessed()
        await self._changed()

    # ── Id rotation ──────────────────────────────────────────────────────

    async def change_session_id(self) -> str:
        """Give the session a fresh id. The old row is replaced on the next persist."""
        if self._delta.original_id is None and not self._is_new:
            self._delta.original_id = self._id
        self._id = str(uuid.uuid4())
        await self._changed()
        return self._id

    # ── Persistence hooks ────────────────────────────────────────────────

    def mark_persisted(self, principal: str | None) -> None:
        """Called by the store once the row has been written."""
        self._is_new = False
        self._indexed_principal = principal
        self._delta.clear()

    async def _changed(self) -> None:
        if self._coordinator is not None:
            await self._coordinator.session_changed(self)
