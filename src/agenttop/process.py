"""Process table queries for agenttop.

Two backends share one contract: :class:`PsutilProcessQuery` reads the
process table natively through psutil, :class:`PsProcessQuery` parses
``ps`` and ``lsof`` output. Every query is an advisory read of state that
may change underneath it, so a process that has exited, is inaccessible,
or whose query failed yields "no data" instead of an exception.
"""

import logging
import os
import subprocess
import time
from abc import ABC, abstractmethod
from datetime import datetime

import psutil

from agenttop.config import MonitorConfig
from agenttop.models import ProcessFacts

logger = logging.getLogger(__name__)

# lstart (5 tokens) + etime + %cpu + rss; tty is optional
MIN_FACT_COLUMNS = 8
LSTART_FORMAT = "%a %b %d %H:%M:%S %Y"
NO_TTY = ("?", "??", "-", "")


def format_elapsed(seconds: float) -> str:
    """Format a duration the way ``ps -o etime`` does: ``[[dd-]hh:]mm:ss``."""
    total = max(0, int(seconds))
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    if days:
        return f"{days:02d}-{hours:02d}:{minutes:02d}:{secs:02d}"
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def _to_float(value: str) -> float:
    try:
        return float(value.replace(",", "."))
    except ValueError:
        return 0.0


def _to_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def _normalize_tty(tty: str | None) -> str | None:
    if tty is None:
        return None
    tty = tty.strip()
    if tty in NO_TTY:
        return None
    return tty.removeprefix("/dev/")


def parse_facts_row(row: str) -> ProcessFacts | None:
    """
    Parse one ``lstart etime %cpu rss [tty]`` row of ``ps`` output.

    Rows shorter than the minimum column count are discarded entirely.
    Unparseable numbers default to 0 and an unparseable start time falls
    back to the current time.
    """
    parts = row.split()
    if len(parts) < MIN_FACT_COLUMNS:
        return None

    try:
        start_time = datetime.strptime(" ".join(parts[0:5]), LSTART_FORMAT)
    except ValueError:
        start_time = datetime.now()

    return ProcessFacts(
        start_time=start_time,
        elapsed=parts[5],
        cpu_percent=_to_float(parts[6]),
        memory_kb=_to_int(parts[7]),
        tty=_normalize_tty(parts[8]) if len(parts) > 8 else None,
    )


class ProcessQuery(ABC):
    """Read-only view of the OS process table."""

    @abstractmethod
    def list_candidate_pids(self, command_name: str) -> list[int]:
        """PIDs whose executable name is ``command_name``, in table order."""

    @abstractmethod
    def facts(self, pid: int) -> ProcessFacts | None:
        """Start time, elapsed time, CPU, memory and tty of ``pid``."""

    @abstractmethod
    def ancestor_pid(self, pid: int) -> int | None:
        """Parent PID of ``pid``."""

    @abstractmethod
    def command_line(self, pid: int) -> str:
        """Full command line of ``pid``, or an empty string."""

    @abstractmethod
    def open_files(self, pid: int) -> list[str]:
        """Paths of the regular files ``pid`` holds open."""


def lifetime_cpu_percent(cpu_seconds: float, created: float, now: float) -> float:
    """CPU time over wall time since start, as ``ps -o %cpu`` reports it."""
    wall = now - created
    if wall <= 0:
        return 0.0
    return cpu_seconds / wall * 100


class PsutilProcessQuery(ProcessQuery):
    """
    ProcessQuery backed by psutil.

    CPU usage is the lifetime average rather than ``Process.cpu_percent()``,
    which needs two samples on the same handle and reads 0.0 on the first.
    """

    def list_candidate_pids(self, command_name: str) -> list[int]:
        pids: list[int] = []
        for proc in psutil.process_iter(attrs=["pid", "name"]):
            try:
                if proc.info.get("name") == command_name:
                    pids.append(proc.pid)
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return pids

    def facts(self, pid: int) -> ProcessFacts | None:
        try:
            proc = psutil.Process(pid)
            with proc.oneshot():
                created = proc.create_time()
                times = proc.cpu_times()
                rss = proc.memory_info().rss
                try:
                    tty = proc.terminal()
                except AttributeError:
                    # terminal() does not exist on every platform
                    tty = None
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return None

        now = time.time()
        return ProcessFacts(
            start_time=datetime.fromtimestamp(created),
            elapsed=format_elapsed(now - created),
            cpu_percent=lifetime_cpu_percent(times.user + times.system, created, now),
            memory_kb=rss // 1024,
            tty=_normalize_tty(tty),
        )

    def ancestor_pid(self, pid: int) -> int | None:
        try:
            return psutil.Process(pid).ppid()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return None

    def command_line(self, pid: int) -> str:
        try:
            proc = psutil.Process(pid)
            with proc.oneshot():
                cmdline = proc.cmdline()
                return " ".join(cmdline) if cmdline else proc.name()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return ""

    def open_files(self, pid: int) -> list[str]:
        try:
            return [f.path for f in psutil.Process(pid).open_files()]
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return []


class PsProcessQuery(ProcessQuery):
    """ProcessQuery that shells out to ``ps`` and ``lsof`` with a bounded timeout."""

    def __init__(self, timeout: float = 2.0) -> None:
        self._timeout = timeout
        # Fixed locale so lstart parses with LSTART_FORMAT
        self._env = {**os.environ, "LC_ALL": "C"}

    def _run(self, args: list[str]) -> str | None:
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                env=self._env,
            )
        except subprocess.TimeoutExpired:
            logger.debug(f"{args[0]} timed out after {self._timeout}s: {args}")
            return None
        except OSError as e:
            logger.debug(f"Failed to run {args[0]}: {e}")
            return None
        if result.returncode != 0:
            return None
        return result.stdout

    def list_candidate_pids(self, command_name: str) -> list[int]:
        output = self._run(["ps", "-A", "-o", "pid=", "-o", "comm="])
        if output is None:
            return []
        pids: list[int] = []
        for line in output.splitlines():
            parts = line.strip().split(None, 1)
            if len(parts) < 2:
                continue
            # comm is a full path on macOS and a bare name on Linux
            if os.path.basename(parts[1].strip()) != command_name:
                continue
            try:
                pids.append(int(parts[0]))
            except ValueError:
                continue
        return pids

    def facts(self, pid: int) -> ProcessFacts | None:
        output = self._run(
            ["ps", "-p", str(pid), "-o", "lstart=", "-o", "etime=", "-o", "%cpu=", "-o", "rss=", "-o", "tty="]
        )
        if not output:
            return None
        lines = output.strip().splitlines()
        if not lines:
            return None
        return parse_facts_row(lines[0])

    def ancestor_pid(self, pid: int) -> int | None:
        output = self._run(["ps", "-p", str(pid), "-o", "ppid="])
        if not output:
            return None
        try:
            return int(output.strip())
        except ValueError:
            return None

    def command_line(self, pid: int) -> str:
        output = self._run(["ps", "-ww", "-p", str(pid), "-o", "command="])
        return output.strip() if output else ""

    def open_files(self, pid: int) -> list[str]:
        output = self._run(["lsof", "-n", "-P", "-p", str(pid), "-Fn"])
        if not output:
            return []
        return [line[1:] for line in output.splitlines() if line.startswith("n/")]


def create_process_query(config: MonitorConfig) -> ProcessQuery:
    """Build the ProcessQuery backend selected by ``config.backend``."""
    if config.backend == "ps":
        return PsProcessQuery(timeout=config.command_timeout)
    return PsutilProcessQuery()
