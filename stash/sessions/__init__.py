"""
STASH Session Management
========================

Session entity, attribute codecs, principal resolution, flush policy and
the aiosqlite-backed session store.
"""

from stash.sessions.codec import AttributeCodec, JsonCodec, PickleCodec, get_codec
from stash.sessions.flush import FlushCoordinator, FlushMode
from stash.sessions.principal import (
    PRINCIPAL_NAME_ATTRIBUTE,
    SECURITY_CONTEXT_ATTRIBUTE,
    AuthenticatedContext,
    PrincipalResolver,
    SecurityContext,
)
from stash.sessions.session import Session, SessionDelta
from stash.sessions.store import SessionStore, StoreStats, SweepResult

__all__ = [
    "AttributeCodec",
    "JsonCodec",
    "PickleCodec",
    "get_codec",
    "FlushCoordinator",
    "FlushMode",
    "PRINCIPAL_NAME_ATTRIBUTE",
    "SECURITY_CONTEXT_ATTRIBUTE",
    "AuthenticatedContext",
    "PrincipalResolver",
    "SecurityContext",
    "Session",
    "SessionDelta",
    "SessionStore",
    "StoreStats",
    "SweepResult",
]
