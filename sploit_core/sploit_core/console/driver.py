from __future__ import annotations
import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator, List, Sequence

from ..errors import ConsoleTimeoutError, TransportError
from ..obs.tracing import trace_call
from .transport import ConsoleTransport

logger = logging.getLogger('sploit.console.driver')

SETTLE_DELAY = 0.75  # reading straight after a write returns an empty buffer
POLL_INTERVAL = 3.0
MAX_WAIT = 600.0


class ConsoleSessionDriver:
    """
    Runs a batch of commands in one short-lived console session.

    Every call opens a fresh console, discards its banner, writes each command
    and polls until the console stops reporting busy, then destroys the
    console whatever happened. The output of all commands is concatenated;
    callers that need per-command output issue one command per call.
    """

    def __init__(
        self,
        transport: ConsoleTransport,
        settle_delay: float = SETTLE_DELAY,
        poll_interval: float = POLL_INTERVAL,
        max_wait: float = MAX_WAIT,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.settle_delay = settle_delay
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self._sleep = sleep
        self._clock = clock

    @contextmanager
    def session(self) -> Iterator[str]:
        session_id = self.transport.open()
        logger.debug(f"New console allocated: {session_id}", extra={"session": session_id})
        try:
            yield session_id
        except BaseException:
            try:
                self.transport.destroy(session_id)
            except TransportError as e:
                logger.error(f"Could not destroy console {session_id} after failure: {e}",
                             extra={"session": session_id})
            raise
        self.transport.destroy(session_id)
        logger.debug(f"Destroyed console {session_id}", extra={"session": session_id})

    @trace_call("console.execute_commands")
    def execute_commands(self, commands: Sequence[str]) -> str:
        output: List[str] = []
        with self.session() as session_id:
            self.transport.read(session_id)
            logger.debug("Discarded console banner", extra={"session": session_id})
            for command in commands:
                output.extend(self._run_one(session_id, command))
        return "".join(output)

    def _run_one(self, session_id: str, command: str) -> List[str]:
        if not command.endswith("\n"):
            command = f"{command}\n"
        self.transport.write(session_id, command)
        logger.debug(f"Wrote {command!r} to console {session_id}", extra={"session": session_id})
        self._sleep(self.settle_delay)

        fragments: List[str] = []
        deadline = self._clock() + self.max_wait
        while True:
            response = self.transport.read(session_id)
            if response.text:
                logger.debug(f"Read console {session_id} output:\n{response.text}",
                             extra={"session": session_id})
                fragments.append(response.text)
            if not response.busy:
                return fragments
            if self._clock() >= deadline:
                raise ConsoleTimeoutError(
                    f"console {session_id} still busy after {self.max_wait:.0f}s running {command.strip()!r}"
                )
            logger.debug(f"Console {session_id} is still busy, sleeping {self.poll_interval}s",
                         extra={"session": session_id})
            self._sleep(self.poll_interval)
