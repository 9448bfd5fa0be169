"""Command line entry point for agenttop."""

import logging
import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from agenttop.config import BACKENDS, MonitorConfig
from agenttop.engine import create_engine
from agenttop.registry import InstanceSnapshot

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

console = Console()


def setup_logging(level: str | None, log_file: Path | None) -> None:
    """Configure root logging; the TUI owns the terminal, so default to quiet."""
    level_name = (level or os.environ.get("AGENTTOP_LOG_LEVEL", "WARNING")).upper()
    kwargs: dict = {"filename": str(log_file)} if log_file else {"stream": sys.stderr}
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format=LOG_FORMAT,
        **kwargs,
    )


def render_snapshot(snapshot: InstanceSnapshot) -> Table:
    """Render a snapshot as a rich table."""
    table = Table(title=f"{len(snapshot)} agent session(s)")
    table.add_column("#", justify="right")
    table.add_column("PID", justify="right")
    table.add_column("Type")
    table.add_column("Started")
    table.add_column("Time", justify="right")
    table.add_column("CPU%", justify="right")
    table.add_column("Mem", justify="right")
    table.add_column("TTY")
    table.add_column("Branch")
    table.add_column("Folder")
    table.add_column("Session")

    for instance in snapshot.instances:
        kind = instance.type.value + (" (ssh)" if instance.is_remote else "")
        table.add_row(
            str(instance.index),
            str(instance.pid),
            kind,
            instance.start_time_formatted,
            instance.elapsed,
            f"{instance.cpu_percent:.1f}",
            f"{instance.memory_kb // 1024}M",
            instance.tty or "",
            instance.git_branch or "",
            instance.folder or "",
            instance.label,
        )
    return table


@click.command()
@click.option("--interval", type=float, default=None, help="Seconds between change probes.")
@click.option("--once", is_flag=True, help="Print the running sessions and exit.")
@click.option("--backend", type=click.Choice(BACKENDS), default=None, help="Process table backend.")
@click.option(
    "--projects-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Session log root (default ~/.claude/projects).",
)
@click.option("--command", "command_name", default=None, help="Executable name of the agent process.")
@click.option("--log-level", default=None, help="Logging level (default WARNING, or $AGENTTOP_LOG_LEVEL).")
@click.option("--log-file", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Write logs here.")
def main(
    interval: float | None,
    once: bool,
    backend: str | None,
    projects_dir: Path | None,
    command_name: str | None,
    log_level: str | None,
    log_file: Path | None,
) -> None:
    """Show which agent sessions are running, where, and why."""
    setup_logging(log_level, log_file)
    config = MonitorConfig.from_env().with_overrides(
        poll_interval=interval,
        backend=backend,
        projects_root=projects_dir,
        command_name=command_name,
    )
    engine = create_engine(config)

    if once:
        engine.monitor.refresh_now()
        console.print(render_snapshot(engine.registry.snapshot))
        return

    from agenttop.app import AgentTopApp

    AgentTopApp(engine).run()


if __name__ == "__main__":
    main()
