"""Data models for agenttop."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class InstanceType(Enum):
    """How an agent process was launched."""

    HAPPY = "happy"
    TERMINAL = "terminal"
    NODE = "node"
    UNKNOWN = "unknown"


class MatchConfidence(Enum):
    """Which correlation strategy matched a session log."""

    OPEN_FILE = "open-file"
    RECENT_FILE = "recent-file"


@dataclass(slots=True, frozen=True)
class ProcessFacts:
    """Raw per-process facts read from the process table."""

    start_time: datetime
    elapsed: str  # ps etime style, [[dd-]hh:]mm:ss
    cpu_percent: float
    memory_kb: int  # Resident set size
    tty: str | None = None


@dataclass(slots=True, frozen=True)
class Ancestry:
    """Launch provenance derived from a process's parent chain."""

    type: InstanceType
    is_remote: bool
    parent_chain: tuple[str, ...]  # Nearest parent first


@dataclass(slots=True, frozen=True)
class SessionInfo:
    """Metadata extracted from the session log a process is writing."""

    folder: str | None = None
    git_branch: str | None = None
    first_prompt: str | None = None
    session_id: str | None = None
    session_title: str | None = None
    confidence: MatchConfidence | None = None

    @property
    def is_empty(self) -> bool:
        """True when no session log could be matched."""
        return self.session_id is None and self.folder is None


@dataclass(slots=True, frozen=True)
class Instance:
    """Immutable snapshot of one live agent process."""

    pid: int
    index: int  # 1-based, stable within a single snapshot only
    start_time: datetime
    elapsed: str
    type: InstanceType
    cpu_percent: float
    memory_kb: int
    is_remote: bool = False
    parent_chain: tuple[str, ...] = ()
    tty: str | None = None
    folder: str | None = None
    git_branch: str | None = None
    first_prompt: str | None = None
    session_id: str | None = None
    session_title: str | None = None

    @property
    def start_time_formatted(self) -> str:
        """Start time as e.g. ``Oct 19, 09:05``."""
        return f"{self.start_time:%b} {self.start_time.day}, {self.start_time:%H:%M}"

    @property
    def launch_command(self) -> str:
        """Shell command that reopens this kind of session."""
        if self.type is InstanceType.HAPPY:
            return "happy open"
        if self.folder:
            return f"cd {self.folder} && claude"
        return "claude"

    @property
    def label(self) -> str:
        return self.session_title or self.first_prompt or self.folder or ""
