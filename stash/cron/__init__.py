"""
STASH Scheduling
================

Cron expressions and the scheduled expiry sweeper.
"""

from stash.cron.schedule import DEFAULT_CLEANUP_CRON, CronSchedule, parse_schedule
from stash.cron.sweeper import ExpirySweeper

__all__ = ["DEFAULT_CLEANUP_CRON", "CronSchedule", "ExpirySweeper", "parse_schedule"]
