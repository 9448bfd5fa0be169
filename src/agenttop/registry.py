"""Published instance snapshots for agenttop."""

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from queue import Queue

from agenttop.models import Instance

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class InstanceSnapshot:
    """Immutable, ordered list of the instances found by one refresh."""

    instances: tuple[Instance, ...] = ()
    generation: int = 0
    taken_at: datetime = field(default_factory=datetime.now)
    partial: bool = False  # Refresh hit its deadline before every PID was processed

    @property
    def pids(self) -> frozenset[int]:
        return frozenset(instance.pid for instance in self.instances)

    def __len__(self) -> int:
        return len(self.instances)


class InstanceRegistry:
    """
    Holds the current snapshot and hands new ones to subscribers.

    Publishing swaps a single reference, so a reader always sees either the
    previous snapshot or the new one in full. Subscribers receive snapshots
    through their own thread-safe Queue.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshot = InstanceSnapshot()
        self._subscribers: list[Queue[InstanceSnapshot]] = []

    @property
    def snapshot(self) -> InstanceSnapshot:
        """The most recently published snapshot."""
        return self._snapshot

    def get(self, pid: int) -> Instance | None:
        """Look up an instance by PID in the current snapshot."""
        for instance in self._snapshot.instances:
            if instance.pid == pid:
                return instance
        return None

    def publish(self, instances: Iterable[Instance], partial: bool = False) -> InstanceSnapshot:
        """Replace the current snapshot and notify subscribers."""
        with self._lock:
            snapshot = InstanceSnapshot(
                instances=tuple(instances),
                generation=self._snapshot.generation + 1,
                partial=partial,
            )
            self._snapshot = snapshot
            for queue in self._subscribers:
                queue.put(snapshot)

        logger.debug(f"Published snapshot {snapshot.generation} with {len(snapshot)} instance(s)")
        return snapshot

    def subscribe(self) -> "Queue[InstanceSnapshot]":
        """Return a new queue that receives every published snapshot, starting with the current one."""
        queue: Queue[InstanceSnapshot] = Queue()
        with self._lock:
            queue.put(self._snapshot)
            self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: "Queue[InstanceSnapshot]") -> None:
        with self._lock:
            if queue in self._subscribers:
                self._subscribers.remove(queue)
