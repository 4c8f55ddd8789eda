import threading
from typing import Dict, List, Optional

import pytest

from sploit_core.console.driver import ConsoleSessionDriver
from sploit_core.console.transport import ConsoleRead
from sploit_core.errors import StoreError, TransportError
from sploit_core.notify.notifier import ErrorReporter
from sploit_core.state import DaemonState


class FakeTransport:
    """
    Scripted console. Each write answers with `busy` busy reads followed by
    one idle read; `fail` maps a primitive name to the call number (1-based)
    that raises TransportError.
    """

    def __init__(self, busy: int = 0, responses: Optional[Dict[str, str]] = None,
                 fail: Optional[Dict[str, int]] = None, always_busy: bool = False):
        self.busy = busy
        self.responses = responses or {}
        self.fail = fail or {}
        self.always_busy = always_busy
        self.calls: List[tuple] = []
        self.counts = {"open": 0, "read": 0, "write": 0, "destroy": 0}
        self._pending: List[ConsoleRead] = []
        self._next_id = 0
        self._lock = threading.Lock()

    def _tick(self, name: str) -> None:
        with self._lock:
            self.counts[name] += 1
            n = self.counts[name]
        if self.fail.get(name) == n:
            raise TransportError(f"{name} #{n} failed")

    def open(self) -> str:
        self._tick("open")
        self._next_id += 1
        sid = str(self._next_id)
        self.calls.append(("open", sid))
        self._pending = [ConsoleRead(text="banner\n", busy=False)]
        return sid

    def read(self, session_id: str) -> ConsoleRead:
        self._tick("read")
        self.calls.append(("read", session_id))
        if self.always_busy:
            return ConsoleRead(text="", busy=True)
        if self._pending:
            return self._pending.pop(0)
        return ConsoleRead(text="", busy=False)

    def write(self, session_id: str, text: str) -> None:
        self._tick("write")
        self.calls.append(("write", session_id, text))
        out = self.responses.get(text.strip(), f"ran {text.strip()}\n")
        self._pending = [ConsoleRead(text=f"part{i}\n", busy=True) for i in range(self.busy)]
        self._pending.append(ConsoleRead(text=out, busy=False))

    def destroy(self, session_id: str) -> None:
        self.calls.append(("destroy", session_id))
        self._tick("destroy")

    @property
    def writes(self) -> List[str]:
        return [c[2] for c in self.calls if c[0] == "write"]


class FakeNotifier:
    def __init__(self):
        self.sent: List[tuple] = []

    def send(self, subject: str, body: str) -> None:
        self.sent.append((subject, body))


class FakeStore:
    def __init__(self, records=None, error: Optional[str] = None):
        self.records = list(records or [])
        self.error = error
        self.queries = 0

    def query(self):
        self.queries += 1
        if self.error:
            raise StoreError(self.error)
        return list(self.records)


class FakeBackend:
    """Trigger capability that only fires when the test says so."""

    def __init__(self):
        self.jobs: Dict[str, tuple] = {}
        self.cancelled: List[str] = []
        self._n = 0
        self.running = False

    def start(self):
        self.running = True

    def shutdown(self, wait=False):
        self.running = False

    def schedule(self, spec, callback, name=""):
        self._n += 1
        handle = f"{name}#{self._n}"
        self.jobs[handle] = (spec, callback)
        return handle

    def cancel(self, handle):
        self.cancelled.append(handle)
        return self.jobs.pop(handle, None) is not None

    def next_fire(self, handle):
        return None

    def fire(self, name):
        for handle, (_, cb) in list(self.jobs.items()):
            if handle.startswith(f"{name}#"):
                return cb()
        raise KeyError(name)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def driver(transport):
    return ConsoleSessionDriver(transport, sleep=lambda s: None)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def reporter(notifier):
    return ErrorReporter(notifier)


@pytest.fixture
def state():
    return DaemonState()


@pytest.fixture
def backend():
    return FakeBackend()
