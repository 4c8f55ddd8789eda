"""
Shared daemon state.

One instance is passed by reference to every job, tracker and the reload
coordinator. All fields are guarded by a single lock; definition sets are
replaced by reference so readers only ever see a complete old or new set.
"""

from __future__ import annotations
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .models import Definitions, ModuleKey, ServiceDefinition, Target


class DaemonState:
    def __init__(self, definitions: Optional[Definitions] = None) -> None:
        self._lock = threading.Lock()
        self._definitions = definitions or Definitions()
        self._running: Set[ModuleKey] = set()
        self._module_started: Dict[ModuleKey, datetime] = {}
        self._update_running = False
        self._last_update: Optional[datetime] = None
        self._scan_count = 0
        self._known_vuln_ids: Set[int] = set()
        self._known_modules: Dict[str, List[str]] = {}

    # Definitions

    @property
    def definitions(self) -> Definitions:
        with self._lock:
            return self._definitions

    @property
    def targets(self) -> Tuple[Target, ...]:
        return self.definitions.targets

    @property
    def services(self) -> Tuple[ServiceDefinition, ...]:
        return self.definitions.services

    def replace_definitions(self, definitions: Definitions) -> None:
        with self._lock:
            self._definitions = definitions

    # Module overlap guard

    def try_start_module(self, key: ModuleKey) -> bool:
        """Atomically mark a module running. False if it already is."""
        with self._lock:
            if key in self._running:
                return False
            self._running.add(key)
            self._module_started[key] = datetime.now(timezone.utc)
            return True

    def finish_module(self, key: ModuleKey) -> None:
        with self._lock:
            self._running.discard(key)
            self._module_started.pop(key, None)

    def is_running(self, key: ModuleKey) -> bool:
        with self._lock:
            return key in self._running

    def running_modules(self) -> Dict[ModuleKey, datetime]:
        with self._lock:
            return dict(self._module_started)

    # Update cycle guard

    def try_start_update(self) -> bool:
        with self._lock:
            if self._update_running:
                return False
            self._update_running = True
            return True

    def finish_update(self) -> None:
        with self._lock:
            self._update_running = False

    @property
    def update_running(self) -> bool:
        with self._lock:
            return self._update_running

    def record_update(self, when: Optional[datetime] = None) -> None:
        with self._lock:
            self._last_update = when or datetime.now(timezone.utc)

    @property
    def last_update(self) -> Optional[datetime]:
        with self._lock:
            return self._last_update

    # Scan counter

    def record_scan(self) -> int:
        with self._lock:
            self._scan_count += 1
            return self._scan_count

    @property
    def scan_count(self) -> int:
        with self._lock:
            return self._scan_count

    def take_scan_count(self) -> int:
        """Return the counter and reset it to zero."""
        with self._lock:
            count, self._scan_count = self._scan_count, 0
            return count

    # Dedup memory

    def remember_vulns(self, ids: Iterable[int]) -> List[int]:
        """Add ids to the known set; return the ones that were new, in order."""
        fresh: List[int] = []
        with self._lock:
            for vid in ids:
                if vid not in self._known_vuln_ids:
                    self._known_vuln_ids.add(vid)
                    fresh.append(vid)
        return fresh

    def known_vuln_ids(self) -> Set[int]:
        with self._lock:
            return set(self._known_vuln_ids)

    def known_modules(self, service: str) -> List[str]:
        with self._lock:
            return list(self._known_modules.get(service, []))

    def replace_known_modules(self, service: str, lines: List[str]) -> None:
        with self._lock:
            self._known_modules[service] = list(lines)
