"""
STASH
=====

Session persistence on a wide-column table layout: change-tracked
sessions, a principal index, configurable flush policy and a scheduled
expiry sweep.
"""

from stash.errors import (
    CodecError,
    NotFoundError,
    StashError,
    StoreUnavailableError,
    SweepError,
    ValidationError,
)
from stash.sessions import (
    AuthenticatedContext,
    FlushMode,
    PrincipalResolver,
    Session,
    SessionStore,
    SweepResult,
)
from stash.cron import CronSchedule, ExpirySweeper
from stash.config import StashConfig, StoreConfig, SweeperConfig, load_config

__version__ = "0.1.0"

__all__ = [
    "CodecError",
    "NotFoundError",
    "StashError",
    "StoreUnavailableError",
    "SweepError",
    "ValidationError",
    "AuthenticatedContext",
    "FlushMode",
    "PrincipalResolver",
    "Session",
    "SessionStore",
    "SweepResult",
    "CronSchedule",
    "ExpirySweeper",
    "StashConfig",
    "StoreConfig",
    "SweeperConfig",
    "load_config",
]
