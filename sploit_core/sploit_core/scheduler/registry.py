"""
Per-module scan scheduling.

One trigger is registered per (service, module). Trigger callbacks carry only
the module key; the entry and the target list are looked up together in the
current table at firing time, and the overlap guard lives in DaemonState, so
a rebuilt schedule and a still-running job from the old one share the same
guard.
"""

from __future__ import annotations
import logging
import queue
import threading
import time
from dataclasses import dataclass
from functools import partial
from typing import Dict, List, Optional, Sequence, Tuple

from ..console.driver import ConsoleSessionDriver
from ..errors import ConfigError, TransportError
from ..models import Definitions, ModuleKey, ScheduleEntry, Target, schedule_entries
from ..notify.notifier import ErrorReporter
from ..state import DaemonState
from .triggers import TriggerBackend, parse_trigger

logger = logging.getLogger('sploit.scheduler.registry')

RECOMPUTE_QUEUE_SIZE = 10


@dataclass
class ScanResult:
    key: ModuleKey
    completed: bool
    runs: int = 0
    duration_s: float = 0.0
    error: Optional[str] = None


class ScanJob:
    """
    One firing of one module against every matching (target, port).

    Targets are processed in list order. The first driver failure aborts the
    rest of the firing: targets already scanned are not repeated and the
    remaining ones wait for the next tick.
    """

    def __init__(self, entry: ScheduleEntry, targets: Sequence[Target], driver: ConsoleSessionDriver) -> None:
        self.entry = entry
        self.targets = targets
        self.driver = driver

    def plan(self) -> List[Tuple[str, int, List[str]]]:
        batches = []
        for target in self.targets:
            for port in target.ports_for(self.entry.service):
                batches.append((target.name, port, self.entry.module.render(target.name, port)))
        return batches

    def run(self) -> int:
        """Returns the number of console runs; raises TransportError on the first failure."""
        runs = 0
        for host, port, commands in self.plan():
            logger.info(
                f"Initiating '{self.entry.module.name}' to run against port '{port}' on '{host}'",
                extra={"scan_module": self.entry.module.name, "host": host, "port": port},
            )
            logger.debug(f"Commands that will be run: {commands}")
            self.driver.execute_commands(commands)
            runs += 1
        return runs


class ScheduleRegistry:
    def __init__(
        self,
        backend: TriggerBackend,
        state: DaemonState,
        driver: ConsoleSessionDriver,
        reporter: ErrorReporter,
        recompute: Optional["queue.Queue[bool]"] = None,
    ) -> None:
        self.backend = backend
        self.state = state
        self.driver = driver
        self.reporter = reporter
        self.recompute = recompute if recompute is not None else queue.Queue(maxsize=RECOMPUTE_QUEUE_SIZE)
        self._lock = threading.Lock()
        self._entries: Dict[ModuleKey, ScheduleEntry] = {}
        self._targets: Tuple[Target, ...] = ()
        self._handles: Dict[ModuleKey, str] = {}

    def register_all(self, definitions: Definitions) -> int:
        """
        Install one trigger per (service, module) of `definitions`.

        Every trigger spec is checked before anything changes. The entry table
        and the target list are then swapped together under the lock, new
        triggers are added and the previous ones cancelled. A firing at any
        point sees either the complete old or the complete new definitions.
        """
        entries: Dict[ModuleKey, ScheduleEntry] = {}
        for entry in schedule_entries(definitions.services):
            if entry.key in entries:
                logger.warning(f"Duplicate module {entry.key}, keeping the first definition")
                continue
            parse_trigger(entry.module.trigger_spec)
            entries[entry.key] = entry

        with self._lock:
            old_entries, old_targets = self._entries, self._targets
            self._entries, self._targets = entries, tuple(definitions.targets)

        handles: Dict[ModuleKey, str] = {}
        try:
            for key, entry in entries.items():
                logger.info(f"Creating a trigger for {entry.service}/{entry.module.name}")
                handles[key] = self.backend.schedule(
                    entry.module.trigger_spec, partial(self.fire, key),
                    name=f"{entry.service}/{entry.module.name}",
                )
        except ConfigError:
            with self._lock:
                self._entries, self._targets = old_entries, old_targets
            for handle in handles.values():
                self.backend.cancel(handle)
            raise

        with self._lock:
            stale, self._handles = self._handles, handles
        for handle in stale.values():
            self.backend.cancel(handle)
        return len(handles)

    def remove_all(self) -> int:
        """Cancel every registered trigger. Jobs already running are not interrupted."""
        with self._lock:
            handles, self._handles = self._handles, {}
            self._entries = {}
            self._targets = ()
        for handle in handles.values():
            self.backend.cancel(handle)
        logger.debug(f"Removed {len(handles)} triggers")
        return len(handles)

    def entries(self) -> List[ScheduleEntry]:
        with self._lock:
            return list(self._entries.values())

    def triggers(self) -> List[dict]:
        with self._lock:
            items = [(self._entries[k], h) for k, h in self._handles.items() if k in self._entries]
        out = []
        for entry, handle in items:
            nxt = self.backend.next_fire(handle)
            out.append({
                "id": handle,
                "service": entry.service,
                "module": entry.module.name,
                "spec": entry.module.trigger_spec,
                "next_run": nxt.isoformat() if nxt else None,
                "running": self.state.is_running(entry.key),
            })
        return out

    def fire(self, key: ModuleKey) -> ScanResult:
        with self._lock:
            entry = self._entries.get(key)
            targets = self._targets
        if entry is None:
            logger.debug(f"Trigger for {key} fired after removal, ignoring")
            return ScanResult(key=key, completed=False, error="removed")

        logger.info(f"Triggered entry for module {entry.module.name}", extra={"scan_module": entry.module.name})
        if not self.state.try_start_module(key):
            logger.warning(f"Module {entry.module.name} is already running, not running again.",
                           extra={"scan_module": entry.module.name})
            return ScanResult(key=key, completed=False, error="already running")

        t0 = time.monotonic()
        job = ScanJob(entry, targets, self.driver)
        try:
            runs = job.run()
        except TransportError as e:
            self.reporter.report(
                f"Error running '{entry.module.name}' for service '{entry.service}', remaining targets skipped", e
            )
            return ScanResult(key=key, completed=False, duration_s=time.monotonic() - t0, error=str(e))
        finally:
            self.state.finish_module(key)

        duration = time.monotonic() - t0
        logger.info(f"{entry.module.name} took {duration:.1f}s to run", extra={"scan_module": entry.module.name})
        self.state.record_scan()
        self.signal_recompute()
        return ScanResult(key=key, completed=True, runs=runs, duration_s=duration)

    def signal_recompute(self) -> bool:
        try:
            self.recompute.put_nowait(True)
        except queue.Full:
            # A pending signal already covers this one
            logger.debug("Recompute queue full, dropping redundant signal")
            return False
        return True
