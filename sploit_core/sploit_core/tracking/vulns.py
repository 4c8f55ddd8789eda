"""
New-vulnerability notifications.

The Metasploit database is the source of truth; every pass re-reads the
full vulnerability set and mails the identities not seen before. Known
identities are kept in memory only and never forgotten, even if the row is
deleted from the database later.
"""

from __future__ import annotations
import logging
import queue
import threading
from datetime import datetime
from typing import Any, Iterable, List, Optional, Protocol, Sequence, Union

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError

from ..errors import StoreError
from ..models import VulnerabilityRecord
from ..notify.notifier import ErrorReporter, Notifier
from ..state import DaemonState

logger = logging.getLogger('sploit.tracking.vulns')

VULN_QUERY = " ".join([
    "SELECT vulns.id, vulns.created_at, hosts.address, vulns.name,",
    "array_to_string(array_agg(refs.name), ',') AS refs",
    "FROM vulns, hosts, vulns_refs, refs",
    "WHERE vulns.host_id = hosts.id AND refs.id = vulns_refs.ref_id AND vulns_refs.vuln_id = vulns.id",
    "GROUP BY vulns.id, vulns.created_at, hosts.address, vulns.name",
    "ORDER BY vulns.id",
])


class VulnerabilityStore(Protocol):
    def query(self) -> List[VulnerabilityRecord]: ...


def normalize_references(refs: Any) -> str:
    """
    'CVE-2017-0144,MSB-MS17-010-http://x' -> 'CVE-2017-0144 MSB-MS17-010 http://x'

    Separators become spaces and the first URL glued to the previous
    reference with a dash is split off.
    """
    if refs is None:
        return ""
    if isinstance(refs, (list, tuple)):
        refs = ",".join(str(r) for r in refs)
    refs = str(refs).replace(",", " ")
    return refs.replace("-http", " http", 1)


def record_from_row(row: Sequence[Any]) -> VulnerabilityRecord:
    vid, created_at, address, name, refs = row
    if isinstance(created_at, str):
        created_at = datetime.fromisoformat(created_at)
    return VulnerabilityRecord(
        id=int(vid),
        created_at=created_at,
        address=str(address),
        name=str(name),
        references=normalize_references(refs),
    )


class SqlVulnerabilityStore:
    """Reads vulnerabilities from the Metasploit PostgreSQL schema."""

    def __init__(self, url: Union[str, URL], query: str = VULN_QUERY, engine: Optional[Engine] = None) -> None:
        self.engine = engine or create_engine(url, pool_pre_ping=True)
        self.sql = text(query)

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise StoreError(f"database unreachable: {e}") from e
        logger.info("Successfully opened a database connection")

    def query(self) -> List[VulnerabilityRecord]:
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(self.sql).fetchall()
        except SQLAlchemyError as e:
            raise StoreError(f"selecting vulnerabilities failed: {e}") from e
        records = [record_from_row(r) for r in rows]
        for r in records:
            logger.debug(f"Vulnerability found: {r.line()}")
        return records

    def close(self) -> None:
        self.engine.dispose()


class VulnerabilityDedupTracker:
    def __init__(self, store: VulnerabilityStore, state: DaemonState, notifier: Notifier) -> None:
        self.store = store
        self.state = state
        self.notifier = notifier

    def query(self) -> List[VulnerabilityRecord]:
        return list(self.store.query())

    def diff(self, records: Iterable[VulnerabilityRecord]) -> List[VulnerabilityRecord]:
        """Notify and remember every record whose id has not been seen; returns those records."""
        records = list(records)
        fresh_ids = set(self.state.remember_vulns(r.id for r in records))
        fresh: List[VulnerabilityRecord] = []
        for r in records:
            if r.id not in fresh_ids:
                logger.debug(f"Vulnerability {r.id} is already known, not notifying")
                continue
            fresh_ids.discard(r.id)
            fresh.append(r)
            self.notifier.send(
                f"New Vulnerability found on {r.address}",
                f"Found the following vulnerability on {r.address}\n\n{r.line()}",
            )
        return fresh

    def refresh(self) -> List[VulnerabilityRecord]:
        return self.diff(self.query())


class RecomputeWorker:
    """
    Drains the recompute queue filled by finished scans and runs one
    notification pass per signal. A StoreError aborts that pass only.
    """

    def __init__(self, tracker: VulnerabilityDedupTracker, signals: "queue.Queue[bool]",
                 reporter: ErrorReporter) -> None:
        self.tracker = tracker
        self.signals = signals
        self.reporter = reporter
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def run_once(self) -> int:
        try:
            return len(self.tracker.refresh())
        except StoreError as e:
            self.reporter.report("Error selecting vulns from the database", e)
            return 0

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                signal = self.signals.get(timeout=1.0)
            except queue.Empty:
                continue
            if signal is None:
                break
            self.run_once()

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="sploit-recompute", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        try:
            self.signals.put_nowait(None)
        except queue.Full:
            # The stop flag ends the loop after the current pass
            logger.debug("Recompute queue full, worker stops on its flag")
        if self._thread is not None:
            self._thread.join(timeout=timeout)
