"""Wiring of the discovery engine's components."""

from dataclasses import dataclass

from agenttop.config import MonitorConfig
from agenttop.lifecycle import LifecycleController
from agenttop.monitor import InstanceCollector, InstanceMonitor
from agenttop.process import ProcessQuery, create_process_query
from agenttop.registry import InstanceRegistry


@dataclass(slots=True)
class Engine:
    """The assembled engine: one registry fed by one monitor."""

    config: MonitorConfig
    query: ProcessQuery
    collector: InstanceCollector
    registry: InstanceRegistry
    monitor: InstanceMonitor
    lifecycle: LifecycleController

    def start(self) -> None:
        self.monitor.start()

    def stop(self) -> None:
        self.monitor.stop()


def create_engine(config: MonitorConfig | None = None, query: ProcessQuery | None = None) -> Engine:
    """Build an engine from ``config`` (defaults plus environment when omitted)."""
    config = config or MonitorConfig.from_env()
    query = query or create_process_query(config)
    collector = InstanceCollector.from_config(config, query)
    registry = InstanceRegistry()
    monitor = InstanceMonitor(collector, registry, poll_rate=config.poll_interval)
    lifecycle = LifecycleController(registry, monitor.force_refresh, grace_delay=config.grace_delay)
    return Engine(
        config=config,
        query=query,
        collector=collector,
        registry=registry,
        monitor=monitor,
        lifecycle=lifecycle,
    )
