"""Runtime configuration for agenttop.

Every setting has a default and may be overridden through an ``AGENTTOP_*``
environment variable, e.g. ``AGENTTOP_POLL_INTERVAL=2``.
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

ENV_PREFIX = "AGENTTOP_"
BACKENDS = ("psutil", "ps")


def default_projects_root() -> Path:
    return Path.home() / ".claude" / "projects"


@dataclass(frozen=True)
class MonitorConfig:
    """Tunables for discovery, correlation and polling."""

    command_name: str = "claude"
    poll_interval: float = 5.0
    grace_delay: float = 0.5
    max_ancestry_depth: int = 10
    projects_root: Path = field(default_factory=default_projects_root)
    session_extension: str = ".jsonl"
    recent_minutes: float = 120.0
    match_tolerance: float = 600.0
    command_timeout: float = 2.0
    backend: str = "psutil"
    cycle_deadline: float | None = None

    def __post_init__(self) -> None:
        if self.backend not in BACKENDS:
            raise ValueError(f"Unknown backend {self.backend!r}, expected one of {BACKENDS}")

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "MonitorConfig":
        """Build a config from defaults overridden by environment variables."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            try:
                values[f.name] = _coerce(f.name, raw)
            except ValueError:
                logger.warning(f"Ignoring invalid {ENV_PREFIX}{f.name.upper()}={raw!r}")
        if values.get("backend") not in (None, *BACKENDS):
            logger.warning(f"Ignoring unknown backend {values.pop('backend')!r}")
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> "MonitorConfig":
        """Return a copy with the given non-None settings replaced."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _coerce(name: str, raw: str) -> Any:
    if name in ("poll_interval", "grace_delay", "recent_minutes", "match_tolerance", "command_timeout", "cycle_deadline"):
        return float(raw)
    if name == "max_ancestry_depth":
        return int(raw)
    if name == "projects_root":
        return Path(raw).expanduser()
    return raw
