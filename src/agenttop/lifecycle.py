"""Termination of agent processes."""

import logging
import os
import signal
import threading
from collections.abc import Callable

from agenttop.registry import InstanceRegistry

logger = logging.getLogger(__name__)

GRACE_DELAY = 0.5


class LifecycleController:
    """
    Sends termination signals and schedules a refresh shortly afterwards.

    Signalling is fire-and-forget: nothing waits for the process to exit.
    The delayed refresh lets the registry reflect the outcome before the
    next poll tick.
    """

    def __init__(
        self,
        registry: InstanceRegistry,
        refresh: Callable[[], None],
        *,
        grace_delay: float = GRACE_DELAY,
        kill: Callable[[int, int], None] = os.kill,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ) -> None:
        self._registry = registry
        self._refresh = refresh
        self._grace_delay = grace_delay
        self._kill = kill
        self._timer_factory = timer_factory

    def _signal(self, pid: int, force: bool) -> None:
        # kill() treats 0 and negative PIDs as process groups
        if pid <= 0:
            logger.debug(f"Refusing to signal non-process PID {pid}")
            return
        sig = signal.SIGKILL if force else signal.SIGTERM
        try:
            self._kill(pid, sig)
            logger.info(f"Sent {sig.name} to PID {pid}")
        except ProcessLookupError:
            logger.debug(f"PID {pid} already exited")
        except PermissionError:
            logger.debug(f"Not permitted to signal PID {pid}")

    def _schedule_refresh(self) -> threading.Timer:
        timer = self._timer_factory(self._grace_delay, self._refresh)
        timer.daemon = True
        timer.start()
        return timer

    def terminate(self, pid: int, force: bool = False) -> threading.Timer:
        """Signal one process, then refresh after the grace delay."""
        self._signal(pid, force)
        return self._schedule_refresh()

    def terminate_all(self, force: bool = False) -> threading.Timer:
        """Signal every process in the current snapshot, then refresh once."""
        for instance in self._registry.snapshot.instances:
            self._signal(instance.pid, force)
        return self._schedule_refresh()
