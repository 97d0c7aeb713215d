"""
STASH Errors
=============

Exception types raised by the session store and its collaborators.

    StashError
    ├── NotFoundError          — raising lookup of an absent session
    ├── CodecError             — attribute value could not be encoded/decoded
    ├── StoreUnavailableError  — database unreachable, failed or timed out
    ├── ValidationError        — invalid configuration (fails at load/construction)
    └── SweepError             — one or more rows failed during an expiry sweep
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stash.sessions.store import SweepResult


class StashError(Exception):
    """Base class for all STASH errors."""


class NotFoundError(StashError, LookupError):
    """The requested session does not exist (or has expired)."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class CodecError(StashError):
    """An attribute value could not be encoded or decoded."""


class StoreUnavailableError(StashError):
    """The backing database could not complete an operation."""

    def __init__(self, operation: str, cause: str):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


class ValidationError(StashError, ValueError):
    """Configuration is invalid."""


class SweepError(StashError):
    """An expiry sweep finished but some rows could not be deleted."""

    def __init__(self, result: SweepResult):
        failed = ", ".join(sorted(result.failures))
        super().__init__(
            f"Sweep failed for {len(result.failures)} of {result.scanned} "
            f"expired session(s): {failed}"
        )
        self.result = result
