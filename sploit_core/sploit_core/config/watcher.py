from __future__ import annotations
import logging
import os
from typing import Callable, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..errors import ConfigError

logger = logging.getLogger('sploit.config.watcher')

Callback = Callable[[str], None]


class _Handler(FileSystemEventHandler):
    def __init__(self, on_change: Callback) -> None:
        super().__init__()
        self.on_change = on_change

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type in ("opened", "closed_no_write"):
            return
        self.on_change(os.fsdecode(event.src_path))
        dest = getattr(event, "dest_path", None)
        if dest:
            self.on_change(os.fsdecode(dest))


class DefinitionWatcher:
    """
    Watches the host directory and the directory of the services file and
    forwards every changed path to a callback (the reload coordinator's
    event queue). Filtering and debouncing happen downstream.
    """

    def __init__(self, directories: List[str], on_change: Callback) -> None:
        self.directories = sorted(set(os.path.abspath(d) for d in directories))
        self.on_change = on_change
        self._observer: Optional[Observer] = None  # type: ignore

    def start(self) -> None:
        handler = _Handler(self.on_change)
        self._observer = Observer()
        for d in self.directories:
            if not os.path.isdir(d):
                raise ConfigError(f"cannot watch {d}: not a directory")
            self._observer.schedule(handler, d, recursive=False)
            logger.info(f"Watching {d} for definition changes")
        self._observer.start()

    def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
