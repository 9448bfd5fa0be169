"""Shared fixtures for agenttop tests."""

from collections import Counter
from datetime import datetime
from pathlib import Path

import pytest

from agenttop.models import ProcessFacts
from agenttop.process import ProcessQuery


class FakeProcessQuery(ProcessQuery):
    """In-memory process table that records every query made against it."""

    def __init__(self) -> None:
        self.processes: dict[int, dict] = {}
        self.calls: Counter[str] = Counter()
        self.queried: list[tuple[str, int]] = []

    def add(
        self,
        pid: int,
        ppid: int = 1,
        command: str = "",
        name: str = "",
        facts: ProcessFacts | None = None,
        files: tuple[str, ...] = (),
    ) -> None:
        self.processes[pid] = {
            "ppid": ppid,
            "command": command,
            "name": name,
            "facts": facts,
            "files": list(files),
        }

    def add_agent(self, pid: int, ppid: int, start_time: datetime | None = None, files: tuple[str, ...] = ()) -> None:
        self.add(
            pid,
            ppid=ppid,
            command="claude",
            name="claude",
            facts=make_facts(start_time),
            files=files,
        )

    def remove(self, pid: int) -> None:
        self.processes.pop(pid, None)

    def _record(self, op: str, pid: int) -> dict | None:
        self.calls[op] += 1
        self.queried.append((op, pid))
        return self.processes.get(pid)

    def list_candidate_pids(self, command_name: str) -> list[int]:
        self.calls["list"] += 1
        return [pid for pid, proc in self.processes.items() if proc["name"] == command_name]

    def facts(self, pid: int) -> ProcessFacts | None:
        proc = self._record("facts", pid)
        return proc["facts"] if proc else None

    def ancestor_pid(self, pid: int) -> int | None:
        proc = self._record("ancestor_pid", pid)
        return proc["ppid"] if proc else None

    def command_line(self, pid: int) -> str:
        proc = self._record("command_line", pid)
        return proc["command"] if proc else ""

    def open_files(self, pid: int) -> list[str]:
        proc = self._record("open_files", pid)
        return list(proc["files"]) if proc else []


def make_facts(start_time: datetime | None = None, cpu: float = 1.5, memory_kb: int = 204800) -> ProcessFacts:
    return ProcessFacts(
        start_time=start_time or datetime(2026, 10, 19, 9, 5, 0),
        elapsed="01:02:03",
        cpu_percent=cpu,
        memory_kb=memory_kb,
        tty="ttys001",
    )


@pytest.fixture
def fake_query() -> FakeProcessQuery:
    return FakeProcessQuery()


@pytest.fixture
def projects_root(tmp_path: Path) -> Path:
    root = tmp_path / ".claude" / "projects"
    root.mkdir(parents=True)
    return root
