"""
Read-only status: the JSON snapshot served by the dashboard and the
periodic status mail.
"""

from __future__ import annotations
import logging
from typing import Any, Dict, List

from .errors import StoreError
from .notify.notifier import ErrorReporter, Notifier
from .scheduler.registry import ScheduleRegistry
from .state import DaemonState
from .tracking.vulns import VulnerabilityStore

logger = logging.getLogger('sploit.status')

STATUS_SUBJECT = "MSF regular Status Update"
NO_UPDATE_YET = "[An update has not yet been run]"


def build_status(registry: ScheduleRegistry, state: DaemonState, store: VulnerabilityStore) -> Dict[str, Any]:
    """
    Snapshot of the current schedule and known vulnerabilities.
    A store failure leaves 'vulnerabilities' empty and sets 'store_error'.
    """
    last = state.last_update
    status: Dict[str, Any] = {
        "triggers": registry.triggers(),
        "vulnerabilities": [],
        "last_update": last.isoformat() if last else None,
        "update_running": state.update_running,
        "scan_count": state.scan_count,
        "hosts": len(state.targets),
    }
    try:
        status["vulnerabilities"] = [v.to_dict() for v in store.query()]
    except StoreError as e:
        logger.error(f"Status snapshot without vulnerabilities: {e}")
        status["store_error"] = str(e)
    return status


class StatusReporter:
    def __init__(self, state: DaemonState, store: VulnerabilityStore, notifier: Notifier,
                 reporter: ErrorReporter) -> None:
        self.state = state
        self.store = store
        self.notifier = notifier
        self.reporter = reporter

    def compose(self) -> str:
        """Raises StoreError; the scan counter is not touched."""
        last = self.state.last_update
        when = str(last) if last else NO_UPDATE_YET
        lines: List[str] = [
            f"Last successful MSF update: {when}",
            "",
            f"{self.state.scan_count} scans have been run since the last email update",
            "",
        ]
        vulns = self.store.query()
        if vulns:
            lines.append("Currently known vulnerabilities: (Notifications have previously been sent.)")
            lines.append("")
            lines.extend(f"\t{v.line()}" for v in vulns)
        else:
            lines.append("No currently known vulnerabilities")
        return "\n".join(lines) + "\n"

    def send(self) -> bool:
        try:
            body = self.compose()
        except StoreError as e:
            self.reporter.report("Error selecting vulns from the database for the status email", e)
            return False
        self.notifier.send(STATUS_SUBJECT, body)
        self.state.take_scan_count()
        logger.debug("Sent status email")
        return True

    __call__ = send
