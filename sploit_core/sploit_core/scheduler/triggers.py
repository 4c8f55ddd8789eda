"""
Trigger specs and the APScheduler-backed trigger capability.

Accepted specs:
    "*/15 * * * *"        5-field crontab
    "0 */15 * * * *"      6-field crontab, seconds first
    "@hourly", "@daily"   descriptors (@yearly @annually @monthly @weekly @midnight)
    "@every 1h30m"        fixed interval, Go-style duration
"""

from __future__ import annotations
import itertools
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..errors import ConfigError

logger = logging.getLogger('sploit.scheduler.triggers')

_DESCRIPTORS: Dict[str, Dict[str, Any]] = {
    "@yearly": {"month": 1, "day": 1, "hour": 0, "minute": 0},
    "@annually": {"month": 1, "day": 1, "hour": 0, "minute": 0},
    "@monthly": {"day": 1, "hour": 0, "minute": 0},
    "@weekly": {"day_of_week": "sun", "hour": 0, "minute": 0},
    "@daily": {"hour": 0, "minute": 0},
    "@midnight": {"hour": 0, "minute": 0},
    "@hourly": {"minute": 0},
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(text: str) -> timedelta:
    """Parse a Go-style duration such as '90s', '1h30m' or '1.5h'."""
    text = text.strip()
    pos = 0
    total = 0.0
    for m in _DURATION_PART.finditer(text):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _UNITS[m.group(2)]
        pos = m.end()
    if not text or pos != len(text):
        raise ConfigError(f"invalid duration: {text!r}")
    if total <= 0:
        raise ConfigError(f"duration must be positive: {text!r}")
    return timedelta(seconds=total)


def parse_trigger(spec: str, timezone: Any = None) -> BaseTrigger:
    """Build an APScheduler trigger from a cron-style spec; raises ConfigError."""
    if not isinstance(spec, str) or not spec.strip():
        raise ConfigError(f"empty trigger spec: {spec!r}")
    spec = spec.strip()
    try:
        if spec.startswith("@every"):
            return IntervalTrigger(seconds=parse_duration(spec[len("@every"):]).total_seconds(), timezone=timezone)
        if spec.startswith("@"):
            fields = _DESCRIPTORS.get(spec.lower())
            if fields is None:
                raise ConfigError(f"unknown trigger descriptor: {spec!r}")
            return CronTrigger(timezone=timezone, **fields)
        parts = spec.split()
        if len(parts) == 5:
            return CronTrigger.from_crontab(spec, timezone=timezone)
        if len(parts) == 6:
            second, minute, hour, day, month, dow = parts
            return CronTrigger(second=second, minute=minute, hour=hour, day=day,
                               month=month, day_of_week=dow, timezone=timezone)
    except ValueError as e:
        raise ConfigError(f"invalid trigger spec {spec!r}: {e}") from e
    raise ConfigError(f"trigger spec must have 5 or 6 fields: {spec!r}")


class TriggerBackend:
    """
    Trigger capability: schedule(spec, callback) -> handle, cancel(handle).

    Wraps one APScheduler BackgroundScheduler. Every firing runs on the
    scheduler's thread pool, so long console jobs do not delay other triggers.
    """

    def __init__(self, max_workers: int = 10, scheduler: Optional[BackgroundScheduler] = None) -> None:
        executors = {
            'default': ThreadPoolExecutor(max_workers)
        }
        job_defaults = {
            'coalesce': True,
            # Overlapping ticks must reach the module guard, which logs and drops them
            'max_instances': 3,
            'misfire_grace_time': 60
        }
        self.scheduler = scheduler or BackgroundScheduler(
            executors=executors,
            job_defaults=job_defaults,
        )
        self._seq = itertools.count(1)

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Trigger backend started")

    def shutdown(self, wait: bool = False) -> None:
        """Stop future firings; running jobs are left to finish on their own."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Trigger backend stopped")

    def schedule(self, spec: str, callback: Callable[[], Any], name: str = "") -> str:
        trigger = parse_trigger(spec)
        handle = f"{name or getattr(callback, '__name__', 'trigger')}#{next(self._seq)}"
        self.scheduler.add_job(func=callback, trigger=trigger, id=handle, name=name or handle)
        logger.debug(f"Scheduled {handle} on '{spec}'")
        return handle

    def cancel(self, handle: str) -> bool:
        try:
            self.scheduler.remove_job(handle)
        except JobLookupError:
            logger.debug(f"Trigger {handle} already gone")
            return False
        logger.debug(f"Removed trigger {handle}")
        return True

    def next_fire(self, handle: str) -> Optional[datetime]:
        job = self.scheduler.get_job(handle)
        if job is None:
            return None
        return getattr(job, "next_run_time", None)
