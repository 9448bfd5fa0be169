"""Correlation of live processes with their on-disk session logs.

Session logs live under ``<root>/<encoded-path>/<session-id>.jsonl``, where
``<encoded-path>`` is the session's working directory with every ``/``
replaced by ``-``. Each file is JSON Lines, one event per line.

A process is matched to a log in one of two ways, in order of confidence:

1. the log is among the files the process currently holds open;
2. a log under the root was modified within a tolerance of the process's
   start time.
"""

import json
import logging
import os
import re
import time
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path

from agenttop.models import MatchConfidence, SessionInfo
from agenttop.process import ProcessQuery

logger = logging.getLogger(__name__)

EXCLUDED_SEGMENT = "subagents"
PROMPT_PREVIEW_LENGTH = 80
TITLE_PATTERN = re.compile(r'changed chat title to\s*\\?"(.*?)\\?"')


def encode_project_path(path: str) -> str:
    """Encode a directory path the way the session store names folders."""
    return path.replace("/", "-")


def decode_project_dir(name: str) -> str:
    """
    Decode a session store folder name back into a path.

    Lossy for paths that contain literal hyphens: ``/work/my-app`` is stored
    as ``-work-my-app`` and decodes to ``/work/my/app``.
    """
    return name.replace("-", "/")


def _is_excluded(path: Path) -> bool:
    return EXCLUDED_SEGMENT in path.parts


def _iter_lines(path: Path) -> Iterator[str]:
    with open(path, encoding="utf-8", errors="replace") as f:
        for line in f:
            line = line.strip()
            if line:
                yield line


def _preview(content: str) -> str:
    return content.replace("\r\n", " ").replace("\n", " ")[:PROMPT_PREVIEW_LENGTH]


def read_first_user_turn(path: Path) -> dict | None:
    """Return the first ``"type": "user"`` event of a session log."""
    for line in _iter_lines(path):
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(event, dict) and event.get("type") == "user":
            return event
    return None


def read_chat_title(path: Path) -> str | None:
    """Return the quoted title after the first 'changed chat title to' marker."""
    for line in _iter_lines(path):
        if "changed chat title to" not in line:
            continue
        match = TITLE_PATTERN.search(line)
        if match:
            return match.group(1)
    return None


class SessionCorrelator:
    """Finds and reads the session log belonging to a live process."""

    def __init__(
        self,
        query: ProcessQuery,
        projects_root: Path,
        *,
        extension: str = ".jsonl",
        recent_minutes: float = 120.0,
        match_tolerance: float = 600.0,
    ) -> None:
        """
        Initialize the SessionCorrelator.

        Args:
            query: Process table backend used to list open files.
            projects_root: Root folder of the session store.
            extension: Suffix of session log files.
            recent_minutes: Only logs modified this recently are considered
                by the start-time fallback.
            match_tolerance: Maximum distance in seconds between a log's
                modification time and the process start time.
        """
        self._query = query
        self._root = Path(projects_root)
        self._extension = extension
        self._recent_seconds = recent_minutes * 60
        self._tolerance = match_tolerance

    @property
    def projects_root(self) -> Path:
        return self._root

    def _is_session_log(self, path: Path) -> bool:
        return path.name.endswith(self._extension) and not _is_excluded(path)

    def find_open_session_file(self, pid: int) -> Path | None:
        """Return the first existing session log that ``pid`` holds open."""
        for name in self._query.open_files(pid):
            path = Path(name)
            if self._is_session_log(path) and path.is_file():
                return path
        return None

    def recent_session_files(self, now: float | None = None) -> list[tuple[Path, float]]:
        """Session logs modified within the recency window, newest first."""
        now = time.time() if now is None else now
        cutoff = now - self._recent_seconds
        candidates: list[tuple[Path, float]] = []
        if not self._root.is_dir():
            return candidates

        try:
            for path in self._root.rglob(f"*{self._extension}"):
                if _is_excluded(path.relative_to(self._root)):
                    continue
                try:
                    stat = path.stat()
                except OSError:
                    # Vanished between listing and stat
                    continue
                if stat.st_mtime >= cutoff and os.path.isfile(path):
                    candidates.append((path, stat.st_mtime))
        except OSError as e:
            logger.debug(f"Stopped scanning {self._root} early: {e}")

        candidates.sort(key=lambda item: item[1], reverse=True)
        return candidates

    def find_recent_session_file(
        self,
        start_time: datetime,
        now: float | None = None,
        candidates: list[tuple[Path, float]] | None = None,
    ) -> Path | None:
        """
        Return the most recently modified log whose mtime is close to ``start_time``.

        ``candidates`` is a listing from :meth:`recent_session_files`; the
        store is scanned when it is not given.
        """
        if candidates is None:
            candidates = self.recent_session_files(now)
        started = start_time.timestamp()
        for path, mtime in candidates:
            if abs(mtime - started) < self._tolerance:
                return path
        return None

    def correlate(
        self,
        pid: int,
        start_time: datetime,
        recent: list[tuple[Path, float]] | None = None,
    ) -> SessionInfo:
        """
        Match ``pid`` to a session log and extract its metadata.

        An open-file match always takes precedence over the start-time
        fallback. No match yields an empty SessionInfo. Pass ``recent`` to
        reuse one store listing across several processes.
        """
        path = self.find_open_session_file(pid)
        if path is not None:
            return self.read_session_info(path, MatchConfidence.OPEN_FILE)

        path = self.find_recent_session_file(start_time, candidates=recent)
        if path is not None:
            return self.read_session_info(path, MatchConfidence.RECENT_FILE)

        return SessionInfo()

    def folder_for(self, path: Path) -> str | None:
        """Working directory encoded in the log's parent folder name."""
        try:
            relative = path.parent.relative_to(self._root)
        except ValueError:
            # Not under the configured root; fall back to the parent folder name
            return decode_project_dir(path.parent.name) if path.parent.name else None
        if not relative.parts:
            return None
        return decode_project_dir(relative.parts[0])

    def read_session_info(self, path: Path, confidence: MatchConfidence | None = None) -> SessionInfo:
        """Extract folder, branch, first prompt and title from a session log."""
        folder = self.folder_for(path)
        git_branch = None
        first_prompt = None
        title = None

        try:
            event = read_first_user_turn(path)
        except OSError as e:
            logger.debug(f"Could not read {path}: {e}")
            event = None

        if event is not None:
            cwd = event.get("cwd")
            if isinstance(cwd, str) and cwd:
                folder = cwd
            branch = event.get("gitBranch")
            if isinstance(branch, str) and branch:
                git_branch = branch
            message = event.get("message")
            content = message.get("content") if isinstance(message, dict) else None
            if isinstance(content, str):
                first_prompt = _preview(content)

        try:
            title = read_chat_title(path)
        except OSError as e:
            logger.debug(f"Could not scan {path} for a title: {e}")

        return SessionInfo(
            folder=folder,
            git_branch=git_branch,
            first_prompt=first_prompt,
            session_id=path.stem,
            session_title=title,
            confidence=confidence,
        )
