from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import Optional

from .console.driver import ConsoleSessionDriver
from .errors import TransportError
from .notify.notifier import ErrorReporter
from .obs.tracing import trace_call
from .state import DaemonState
from .tracking.modules import ModuleDiscoveryTracker

logger = logging.getLogger('sploit.update')

UPDATE_COMMAND = "msfupdate"
RELOAD_COMMAND = "reload_all"
UP_TO_DATE_PATTERN = r"No updates available"


@dataclass
class UpdateOutcome:
    ran: bool
    updated: bool = False
    completed: bool = False
    error: Optional[str] = None


class UpdateCycleRunner:
    """
    msfupdate -> reload_all -> module search, single flight.

    A trigger arriving while a cycle is in progress is dropped. Any console
    failure ends the cycle early and is reported; the in-progress flag is
    cleared on every path.
    """

    def __init__(
        self,
        driver: ConsoleSessionDriver,
        state: DaemonState,
        discovery: ModuleDiscoveryTracker,
        reporter: ErrorReporter,
        update_command: str = UPDATE_COMMAND,
        reload_command: str = RELOAD_COMMAND,
        up_to_date_pattern: str = UP_TO_DATE_PATTERN,
    ) -> None:
        self.driver = driver
        self.state = state
        self.discovery = discovery
        self.reporter = reporter
        self.update_command = update_command
        self.reload_command = reload_command
        self.up_to_date = re.compile(up_to_date_pattern)

    def __call__(self) -> UpdateOutcome:
        return self.run()

    @trace_call("update.run", level="info")
    def run(self) -> UpdateOutcome:
        if not self.state.try_start_update():
            logger.warning("An update of MSF is already running, not running again.")
            return UpdateOutcome(ran=False)
        try:
            logger.info("Beginning an update of MSF.")
            output = self.driver.execute_commands([self.update_command])
            if self.up_to_date.search(output):
                logger.info("MSF is already up to date")
                self.state.record_update()
                return UpdateOutcome(ran=True, completed=True)

            self.driver.execute_commands([self.reload_command])
            self.discovery.discover(self.driver, self.state.services)
            self.state.record_update()
            return UpdateOutcome(ran=True, updated=True, completed=True)
        except TransportError as e:
            self.reporter.report("Error running the MSF update cycle", e)
            return UpdateOutcome(ran=True, error=str(e))
        finally:
            self.state.finish_update()
