"""
Debounced hot reload of host and service definitions.

Change events are consumed on one control thread. Every event for a
definition file re-arms an idle timer; the rebuild runs only once the
timer expires without a newer event, so an editor writing several files
produces one rebuild. Rebuilds never overlap because only this thread
performs them.
"""

from __future__ import annotations
import logging
import queue
import re
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Pattern

from ..errors import ConfigError
from ..notify.notifier import ErrorReporter
from ..scheduler.registry import ScheduleRegistry
from ..state import DaemonState
from .definitions import DEFINITION_PATTERN, DefinitionSource

logger = logging.getLogger('sploit.config.reload')

DEBOUNCE_SECONDS = 3.0


@dataclass
class DebounceState:
    """Pure debounce reducer, driven with explicit timestamps."""
    window: float
    deadline: Optional[float] = None
    last_path: Optional[str] = None

    def on_event(self, path: str, now: float) -> None:
        self.deadline = now + self.window
        self.last_path = path

    def timeout(self, now: float) -> Optional[float]:
        """Seconds until the pending rebuild is due; None when idle."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - now)

    def due(self, now: float) -> Optional[str]:
        """Return the triggering path and disarm if the timer expired."""
        if self.deadline is None or now < self.deadline:
            return None
        path, self.deadline, self.last_path = self.last_path, None, None
        return path


class ReloadCoordinator:
    def __init__(
        self,
        source: DefinitionSource,
        registry: ScheduleRegistry,
        state: DaemonState,
        reporter: ErrorReporter,
        debounce: float = DEBOUNCE_SECONDS,
        pattern: str = DEFINITION_PATTERN,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.registry = registry
        self.state = state
        self.reporter = reporter
        self.pattern: Pattern[str] = re.compile(pattern)
        self.events: "queue.Queue[Optional[str]]" = queue.Queue()
        self.debounce = DebounceState(window=debounce)
        self.rebuilds = 0
        self._clock = clock
        self._thread: Optional[threading.Thread] = None

    def submit(self, path: str) -> None:
        """Watcher callback; safe from any thread."""
        self.events.put(path)

    def handle(self, path: str) -> bool:
        if not self.pattern.match(path):
            logger.debug(f"Skipping file event: {path}")
            return False
        self.debounce.on_event(path, self._clock())
        logger.debug(f"Reset reload timer for event: {path}")
        return True

    def rebuild(self, reason: str = "") -> bool:
        """
        Load both definition sets, then swap them and the schedule in.

        register_all() publishes entries and targets to firing jobs in one
        step and cancels the previous triggers, so a failed load leaves the
        old schedule and definitions untouched. DaemonState gets the new set
        afterwards for status readers only.
        """
        logger.info(f"Reloading configuration after {reason or 'request'}")
        try:
            definitions = self.source.load()
            count = self.registry.register_all(definitions)
            self.state.replace_definitions(definitions)
        except ConfigError as e:
            self.reporter.report("Error reloading definitions, keeping the previous schedule", e)
            return False
        self.rebuilds += 1
        logger.info(f"Schedule rebuilt with {count} triggers for {len(definitions.targets)} hosts")
        return True

    def run(self) -> None:
        while True:
            try:
                path = self.events.get(timeout=self.debounce.timeout(self._clock()))
            except queue.Empty:
                path = ""
            if path is None:
                break
            if path:
                self.handle(path)
            fired = self.debounce.due(self._clock())
            if fired is None:
                continue
            try:
                self.rebuild(f"{fired} write")
            except Exception as e:
                # The reload thread must outlive any single bad rebuild
                self.reporter.report("Unexpected error reloading definitions, keeping the previous schedule", e)
                logger.exception("Reload failed")

    def start(self) -> None:
        self._thread = threading.Thread(target=self.run, name="sploit-reload", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self.events.put(None)
        if self._thread is not None:
            self._thread.join(timeout=timeout)
