"""
Daemon wiring.

Startup order mirrors the failure policy: settings, definitions, the RPC
token and the database must all be usable or startup fails; everything
after that degrades instead of crashing.
"""

from __future__ import annotations
import logging
import os
import threading
import time
from typing import Any, Dict, Optional

from .config.definitions import DefinitionSource
from .config.reload import ReloadCoordinator
from .config.settings import Settings
from .config.watcher import DefinitionWatcher
from .console.driver import ConsoleSessionDriver
from .console.transport import MsfRpcClient, bootstrap_token, wait_for_listener
from .dashboard.app import create_app, serve_in_thread
from .errors import TransportError
from .notify.notifier import ErrorReporter, LogNotifier, Notifier, SmtpNotifier
from .scheduler.registry import ScheduleRegistry
from .scheduler.triggers import TriggerBackend
from .state import DaemonState
from .status import StatusReporter, build_status
from .tracking.modules import ModuleDiscoveryTracker
from .tracking.vulns import RecomputeWorker, SqlVulnerabilityStore, VulnerabilityDedupTracker, VulnerabilityStore
from .update import UpdateCycleRunner

logger = logging.getLogger('sploit.daemon')

STOP_GRACE_SECONDS = 30.0


def build_notifier(settings: Settings) -> Notifier:
    smtp = settings.smtp
    if not smtp.enabled:
        logger.warning("SMTP is not configured, notifications go to the log only")
        return LogNotifier()
    return SmtpNotifier(smtp.host, smtp.sender, smtp.recipients, user=smtp.user, password=smtp.password)


class Daemon:
    def __init__(
        self,
        settings: Settings,
        client: Optional[MsfRpcClient] = None,
        store: Optional[VulnerabilityStore] = None,
        notifier: Optional[Notifier] = None,
        backend: Optional[TriggerBackend] = None,
        stop_grace: float = STOP_GRACE_SECONDS,
    ) -> None:
        self.settings = settings
        self.stop_grace = stop_grace
        cfg = settings.sploit
        self.notifier = notifier or build_notifier(settings)
        self.reporter = ErrorReporter(self.notifier)
        self.state = DaemonState()
        self.client = client or MsfRpcClient(settings.msfrpc.url)
        self.store = store or SqlVulnerabilityStore(settings.postgres.url)
        self.backend = backend or TriggerBackend()
        self.driver = ConsoleSessionDriver(
            self.client,
            settle_delay=cfg.settle_delay,
            poll_interval=cfg.poll_interval,
            max_wait=cfg.max_console_wait,
        )
        self.source = DefinitionSource(settings.resolve(cfg.watch_dir), settings.resolve(cfg.services_file))
        self.registry = ScheduleRegistry(self.backend, self.state, self.driver, self.reporter)
        self.vulns = VulnerabilityDedupTracker(self.store, self.state, self.notifier)
        self.recompute = RecomputeWorker(self.vulns, self.registry.recompute, self.reporter)
        self.discovery = ModuleDiscoveryTracker(self.state, self.notifier)
        self.updater = UpdateCycleRunner(self.driver, self.state, self.discovery, self.reporter)
        self.status_reporter = StatusReporter(self.state, self.store, self.notifier, self.reporter)
        self.reload = ReloadCoordinator(
            self.source, self.registry, self.state, self.reporter, debounce=cfg.debounce_seconds
        )
        self.watcher = DefinitionWatcher(
            [self.source.watch_dir, os.path.dirname(os.path.abspath(self.source.services_file))],
            self.reload.submit,
        )
        self._http = None
        self._stopped = threading.Event()

    def status(self) -> Dict[str, Any]:
        return build_status(self.registry, self.state, self.store)

    def bootstrap(self) -> None:
        """Fatal-at-startup steps; any exception here should end the process."""
        definitions = self.source.load()
        self.state.replace_definitions(definitions)
        rpc = self.settings.msfrpc
        wait_for_listener(rpc.host, rpc.port)
        bootstrap_token(self.client, rpc.user, rpc.password)
        if isinstance(self.store, SqlVulnerabilityStore):
            self.store.ping()

    def start(self) -> None:
        cfg = self.settings.sploit
        self.bootstrap()
        self.recompute.start()
        self.registry.register_all(self.state.definitions)
        self.backend.schedule(cfg.update_spec, self.updater.run, name="msf-update")
        logger.info(f"Setup to msfupdate on this schedule '{cfg.update_spec}'")
        self.backend.schedule(cfg.status_spec, self.status_reporter.send, name="status-email")
        self.backend.start()
        self.reload.start()
        self.watcher.start()
        if cfg.serve_address:
            app = create_app(self.status, self.registry.triggers)
            self._http = serve_in_thread(app, cfg.serve_address)
        logger.info("Sploit daemon started")

    def wait_for_jobs(self, timeout: float) -> bool:
        """Block until no scan or update holds the console, or `timeout` expires."""
        deadline = time.monotonic() + timeout
        while self.state.running_modules() or self.state.update_running:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.05)
        return True

    def stop(self) -> None:
        """
        Stop future firings and helpers, then give in-flight console jobs
        up to `stop_grace` seconds before the auth token is removed.
        """
        if self._stopped.is_set():
            return
        self._stopped.set()
        logger.info("Closing....")
        self.backend.shutdown(wait=False)
        self.watcher.stop()
        self.reload.stop()
        self.recompute.stop()
        if self._http is not None:
            self._http.should_exit = True
        if not self.wait_for_jobs(self.stop_grace):
            running = sorted("/".join(k) for k in self.state.running_modules())
            logger.warning(f"Jobs still running after {self.stop_grace:.0f}s, removing the token anyway: {running}")
        token = self.client.token
        if token:
            try:
                self.client.token_remove(token)
                logger.debug(f"Removed auth token {token}")
            except TransportError as e:
                self.reporter.report("Error removing auth token", e)
        if isinstance(self.store, SqlVulnerabilityStore):
            self.store.close()

    def wait(self) -> None:
        while not self._stopped.wait(1.0):
            pass
