"""
Flush Policy
=============

Decides whether a session mutation is written to the database right away
or waits for the caller's explicit ``save``.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from stash.sessions.session import Session

logger = logging.getLogger(__name__)


class FlushMode(str, Enum):
    ON_SAVE = "on_save"
    """Only write when ``SessionStore.save`` is called (typically at end of request)."""

    IMMEDIATE = "immediate"
    """Write on create and on every mutation, before the mutator returns."""


class FlushCoordinator:
    """Applies one store's flush mode to its sessions."""

    def __init__(self, mode: FlushMode, save: Callable[[Session], Awaitable[None]]):
        self.mode = FlushMode(mode)
        self._save = save

    @property
    def immediate(self) -> bool:
        return self.mode is FlushMode.IMMEDIATE

    async def session_created(self, session: Session) -> None:
        await self._flush(session)

    async def session_changed(self, session: Session) -> None:
        await self._flush(session)

    async def _flush(self, session: Session) -> None:
        if self.immediate:
            logger.debug("Immediate flush of session %s", session.id)
            await self._save(session)
