"""
Principal Resolution
=====================

Work out which principal (logged-in identity) a session belongs to, for
the principal index.

Two places are checked, in order:
  1. the PRINCIPAL_NAME_ATTRIBUTE attribute, a plain string;
  2. the SECURITY_CONTEXT_ATTRIBUTE attribute, any object exposing a
     ``principal_name()`` method.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from stash.errors import CodecError

if TYPE_CHECKING:
    from stash.sessions.session import Session

logger = logging.getLogger(__name__)

PRINCIPAL_NAME_ATTRIBUTE = "stash.principal_name"
SECURITY_CONTEXT_ATTRIBUTE = "stash.security_context"


@runtime_checkable
class SecurityContext(Protocol):
    """Anything stored under SECURITY_CONTEXT_ATTRIBUTE that knows its principal."""

    def principal_name(self) -> str | None: ...


@dataclass(frozen=True)
class AuthenticatedContext:
    """Minimal security context: an authenticated name plus its authorities."""
    name: str
    authorities: tuple[str, ...] = ()

    def principal_name(self) -> str | None:
        return self.name


class PrincipalResolver:
    """Resolves the principal name of a session. Never raises."""

    def __init__(
        self,
        principal_attribute: str = PRINCIPAL_NAME_ATTRIBUTE,
        context_attribute: str = SECURITY_CONTEXT_ATTRIBUTE,
    ):
        self.principal_attribute = principal_attribute
        self.context_attribute = context_attribute

    def is_principal_attribute(self, name: str) -> bool:
        return name in (self.principal_attribute, self.context_attribute)

    def resolve(self, session: Session) -> str | None:
        try:
            explicit = session.get_attribute(self.principal_attribute)
        except CodecError as e:
            logger.debug("Session %s: unreadable principal attribute: %s", session.id, e)
            explicit = None
        if isinstance(explicit, str) and explicit:
            return explicit

        try:
            context = session.get_attribute(self.context_attribute)
        except CodecError as e:
            logger.debug("Session %s: unreadable security context: %s", session.id, e)
            return None
        if context is None or not isinstance(context, SecurityContext):
            return None

        try:
            name = context.principal_name()
        except Exception as e:  # noqa: BLE001 - third-party context objects
            logger.debug("Session %s: principal_name() raised: %s", session.id, e)
            return None
        if isinstance(name, str) and name:
            return name
        return None
