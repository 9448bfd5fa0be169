"""Launch provenance classification from a process's parent chain."""

from agenttop.models import Ancestry, InstanceType
from agenttop.process import ProcessQuery

MAX_DEPTH = 10

HAPPY_LAUNCHER_MARKER = "happy-coder"
REMOTE_LOGIN_MARKER = "sshd"
SHELL_NAMES = ("zsh", "bash", "fish")
NODE_MARKER = "node"


def is_happy_launcher(command_line: str) -> bool:
    return HAPPY_LAUNCHER_MARKER in command_line


def is_remote_login(command_line: str) -> bool:
    return REMOTE_LOGIN_MARKER in command_line


def is_interactive_shell(command_line: str) -> bool:
    return any(shell in command_line for shell in SHELL_NAMES)


def is_node_runtime(command_line: str) -> bool:
    return NODE_MARKER in command_line


def _walk(query: ProcessQuery, parent_pid: int | None, max_depth: int) -> list[tuple[int, str]]:
    hops: list[tuple[int, str]] = []
    pid = parent_pid
    while pid is not None and pid > 1 and len(hops) < max_depth:
        hops.append((pid, query.command_line(pid)))
        pid = query.ancestor_pid(pid)
    return hops


def walk_ancestry(query: ProcessQuery, parent_pid: int | None, max_depth: int = MAX_DEPTH) -> tuple[str, ...]:
    """
    Collect command lines up the parent chain, nearest parent first.

    Stops after ``max_depth`` hops or once the PID reaches 1 (the init
    process) or becomes unknown. Empty command lines are left out.
    """
    return tuple(command for _, command in _walk(query, parent_pid, max_depth) if command)


def classify_ancestry(query: ProcessQuery, parent_pid: int | None, max_depth: int = MAX_DEPTH) -> Ancestry:
    """
    Classify how a process was launched from its parent chain.

    A happy launcher anywhere in the chain wins outright. Otherwise only
    the immediate parent decides between TERMINAL, NODE and UNKNOWN. The
    remote flag is set when any ancestor is an SSH daemon, independently
    of the type.
    """
    hops = _walk(query, parent_pid, max_depth)
    chain = tuple(command for _, command in hops if command)
    is_remote = any(is_remote_login(command) for command in chain)

    if any(is_happy_launcher(command) for command in chain):
        return Ancestry(InstanceType.HAPPY, is_remote, chain)

    if hops:
        parent_command = hops[0][1]
    elif parent_pid is not None:
        # Parent is init or the walk was disabled; still look at it
        parent_command = query.command_line(parent_pid)
    else:
        parent_command = ""

    if is_interactive_shell(parent_command):
        kind = InstanceType.TERMINAL
    elif is_node_runtime(parent_command):
        kind = InstanceType.NODE
    else:
        kind = InstanceType.UNKNOWN
    return Ancestry(kind, is_remote, chain)
