"""Instance discovery pipeline and change-triggered poller for agenttop."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from agenttop.ancestry import MAX_DEPTH, classify_ancestry
from agenttop.config import MonitorConfig
from agenttop.models import Instance
from agenttop.process import ProcessQuery
from agenttop.registry import InstanceRegistry
from agenttop.sessions import SessionCorrelator

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class CollectResult:
    """Outcome of one full pipeline run."""

    instances: list[Instance]
    pids: frozenset[int]  # Every PID enumerated, including ones that were dropped
    partial: bool = False


class MonitorState(Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


class InstanceCollector:
    """
    Runs the full discovery pipeline: process facts, ancestry and session
    correlation for every candidate PID.

    Problems with a single PID never abort the run. A PID whose facts cannot
    be read, or whose processing raises, is left out of the result.
    """

    def __init__(
        self,
        query: ProcessQuery,
        correlator: SessionCorrelator,
        command_name: str = "claude",
        max_depth: int = MAX_DEPTH,
        cycle_deadline: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._query = query
        self._correlator = correlator
        self._command_name = command_name
        self._max_depth = max_depth
        self._cycle_deadline = cycle_deadline
        self._clock = clock

    @classmethod
    def from_config(cls, config: MonitorConfig, query: ProcessQuery) -> "InstanceCollector":
        correlator = SessionCorrelator(
            query,
            config.projects_root,
            extension=config.session_extension,
            recent_minutes=config.recent_minutes,
            match_tolerance=config.match_tolerance,
        )
        return cls(
            query,
            correlator,
            command_name=config.command_name,
            max_depth=config.max_ancestry_depth,
            cycle_deadline=config.cycle_deadline,
        )

    def probe(self) -> list[int]:
        """Cheap liveness check: candidate PIDs only, no per-process work."""
        return self._query.list_candidate_pids(self._command_name)

    def build_instance(
        self,
        pid: int,
        index: int,
        recent: list[tuple[Path, float]] | None = None,
    ) -> Instance | None:
        """Build the Instance for ``pid``, or None if it has gone away."""
        facts = self._query.facts(pid)
        if facts is None:
            return None

        ancestry = classify_ancestry(self._query, self._query.ancestor_pid(pid), self._max_depth)
        session = self._correlator.correlate(pid, facts.start_time, recent)

        return Instance(
            pid=pid,
            index=index,
            start_time=facts.start_time,
            elapsed=facts.elapsed,
            type=ancestry.type,
            cpu_percent=facts.cpu_percent,
            memory_kb=facts.memory_kb,
            is_remote=ancestry.is_remote,
            parent_chain=ancestry.parent_chain,
            tty=facts.tty,
            folder=session.folder,
            git_branch=session.git_branch,
            first_prompt=session.first_prompt,
            session_id=session.session_id,
            session_title=session.session_title,
        )

    def collect(self, pids: list[int] | None = None) -> CollectResult:
        """
        Build instances for ``pids`` (or a fresh enumeration) in order.

        When a cycle deadline is configured and exceeded, the instances built
        so far are returned with ``partial`` set. The session store is listed
        once per run and shared by every PID.
        """
        if pids is None:
            pids = self.probe()

        started = self._clock()
        instances: list[Instance] = []
        partial = False
        recent = self._correlator.recent_session_files() if pids else []

        for pid in pids:
            if self._cycle_deadline is not None and self._clock() - started > self._cycle_deadline:
                logger.info(f"Refresh deadline of {self._cycle_deadline}s reached, skipping remaining PIDs")
                partial = True
                break
            try:
                instance = self.build_instance(pid, index=len(instances) + 1, recent=recent)
            except Exception:
                logger.warning(f"Skipping PID {pid} after an unexpected error", exc_info=True)
                continue
            if instance is not None:
                instances.append(instance)

        return CollectResult(instances=instances, pids=frozenset(pids), partial=partial)


class InstanceMonitor:
    """
    Change-triggered poller that keeps an InstanceRegistry current.

    Runs in a separate daemon thread. Every ``poll_rate`` seconds it lists
    candidate PIDs and only runs the expensive pipeline when that set differs
    from the last published one. At most one pipeline run is in flight; a
    refresh requested meanwhile is coalesced into one more run afterwards.
    """

    def __init__(
        self,
        collector: InstanceCollector,
        registry: InstanceRegistry,
        poll_rate: float = 5.0,
    ) -> None:
        """
        Initialize the InstanceMonitor.

        Args:
            collector: Pipeline used for probing and full refreshes.
            registry: Registry that receives each new snapshot.
            poll_rate: How often to probe for changes (in seconds). Default 5.0s.
        """
        self._collector = collector
        self._registry = registry
        self._poll_rate = max(0.1, poll_rate)
        self._state = MonitorState.IDLE
        self._pending = False
        self._state_lock = threading.Lock()
        self._known_pids: frozenset[int] | None = None
        self._force_requested = False
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def known_pids(self) -> frozenset[int] | None:
        """PID set of the last complete refresh, None before the first one."""
        return self._known_pids

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="InstanceMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        self._wake_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def check_for_changes(self) -> bool:
        """
        Probe candidate PIDs and refresh only if the set changed.

        Returns True if a refresh was triggered.
        """
        pids = self._collector.probe()
        if self._known_pids is not None and frozenset(pids) == self._known_pids:
            return False
        self.refresh_now(pids)
        return True

    def refresh_now(self, pids: list[int] | None = None) -> bool:
        """
        Run the full pipeline and publish its result.

        If a refresh is already in flight, the request is recorded and the
        running refresh repeats once more when it finishes; this call then
        returns False without doing any work.
        """
        with self._state_lock:
            if self._state is MonitorState.REFRESHING:
                self._pending = True
                return False
            self._state = MonitorState.REFRESHING

        try:
            while True:
                self._run_cycle(pids)
                pids = None
                with self._state_lock:
                    if not self._pending:
                        self._state = MonitorState.IDLE
                        return True
                    self._pending = False
        except BaseException:
            with self._state_lock:
                self._state = MonitorState.IDLE
                self._pending = False
            raise

    def force_refresh(self) -> None:
        """Refresh regardless of whether the PID set changed."""
        if self.is_running:
            self._force_requested = True
            self._wake_event.set()
        else:
            self.refresh_now()

    def _run_cycle(self, pids: list[int] | None) -> None:
        result = self._collector.collect(pids)
        self._registry.publish(result.instances, partial=result.partial)
        # A partial cycle must not suppress the next refresh
        self._known_pids = None if result.partial else result.pids

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                if self._force_requested:
                    self._force_requested = False
                    self.refresh_now()
                else:
                    self.check_for_changes()
            except Exception:
                logger.exception("Refresh cycle failed")

            # Wait for poll_rate seconds, a forced refresh, or a stop request
            self._wake_event.wait(timeout=self._poll_rate)
            self._wake_event.clear()
