from __future__ import annotations
import logging
from typing import Dict, List, Sequence

from ..console.driver import ConsoleSessionDriver
from ..models import ServiceDefinition
from ..notify.notifier import Notifier
from ..state import DaemonState

logger = logging.getLogger('sploit.tracking.modules')


def search_command(service_names: Sequence[str]) -> str:
    return "search " + " ".join(service_names)


def matching_lines(output: str, service_name: str) -> List[str]:
    return [line for line in output.splitlines() if service_name and service_name in line]


class ModuleDiscoveryTracker:
    """
    Reports Metasploit modules that appear after an update.

    One aggregated `search` covers every configured service; each service
    keeps the lines mentioning its name. The stored listing is replaced, not
    merged, so a line that disappears and comes back is reported again.
    """

    def __init__(self, state: DaemonState, notifier: Notifier) -> None:
        self.state = state
        self.notifier = notifier

    def diff(self, output: str, service_names: Sequence[str]) -> Dict[str, List[str]]:
        found: Dict[str, List[str]] = {}
        for name in service_names:
            lines = matching_lines(output, name)
            known = set(self.state.known_modules(name))
            new = [line for line in lines if line not in known]
            self.state.replace_known_modules(name, lines)
            if new:
                found[name] = new
                self.notifier.send(
                    f"New MSF modules matching '{name}' found",
                    f"After updating MSF, found the following new modules with '{name}' "
                    f"in the name/description:\n" + "\n".join(new),
                )
            else:
                logger.info(f"No new modules matching '{name}' were found.")
        return found

    def discover(self, driver: ConsoleSessionDriver, services: Sequence[ServiceDefinition]) -> Dict[str, List[str]]:
        names = [s.name for s in services]
        if not names:
            logger.info("No services configured, skipping module search")
            return {}
        output = driver.execute_commands([search_command(names)])
        return self.diff(output, names)
