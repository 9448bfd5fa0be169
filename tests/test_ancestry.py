"""Tests for launch provenance classification."""

import pytest

from agenttop.ancestry import (
    classify_ancestry,
    is_happy_launcher,
    is_interactive_shell,
    is_node_runtime,
    is_remote_login,
    walk_ancestry,
)
from agenttop.models import Ancestry, InstanceType


def build_chain(query, commands: list[str], top_parent: int = 1) -> int:
    """Register a parent chain, nearest parent first; returns the nearest parent's PID."""
    pids = [1000 + i for i in range(len(commands))]
    for i, (pid, command) in enumerate(zip(pids, commands)):
        ppid = pids[i + 1] if i + 1 < len(pids) else top_parent
        query.add(pid, ppid=ppid, command=command)
    return pids[0]


class TestPredicates:
    """Tests for the named string predicates."""

    @pytest.mark.parametrize(
        "command, expected",
        [
            ("node /usr/local/lib/node_modules/happy-coder/bin/happy.mjs", True),
            ("happy", False),
            ("-zsh", False),
        ],
    )
    def test_is_happy_launcher(self, command, expected):
        assert is_happy_launcher(command) is expected

    @pytest.mark.parametrize(
        "command, expected",
        [("sshd: alice@ttys003", True), ("/usr/sbin/sshd -D", True), ("ssh host", False)],
    )
    def test_is_remote_login(self, command, expected):
        assert is_remote_login(command) is expected

    @pytest.mark.parametrize(
        "command, expected",
        [("-zsh", True), ("/bin/bash --login", True), ("/opt/homebrew/bin/fish", True), ("tmux", False)],
    )
    def test_is_interactive_shell(self, command, expected):
        assert is_interactive_shell(command) is expected

    @pytest.mark.parametrize(
        "command, expected",
        [("node /app/server.js", True), ("/usr/bin/nodejs", True), ("python", False)],
    )
    def test_is_node_runtime(self, command, expected):
        assert is_node_runtime(command) is expected


class TestClassifyAncestry:
    """Tests for classify_ancestry precedence and remote detection."""

    def test_shell_parent_is_terminal(self, fake_query):
        parent = build_chain(fake_query, ["-zsh", "login -pf alice", "Terminal"])

        result = classify_ancestry(fake_query, parent)

        assert result == Ancestry(InstanceType.TERMINAL, False, ("-zsh", "login -pf alice", "Terminal"))

    def test_node_parent_is_node(self, fake_query):
        parent = build_chain(fake_query, ["node /app/agent.js", "-bash"])

        assert classify_ancestry(fake_query, parent).type is InstanceType.NODE

    def test_other_parent_is_unknown(self, fake_query):
        parent = build_chain(fake_query, ["tmux new-session"])

        assert classify_ancestry(fake_query, parent).type is InstanceType.UNKNOWN

    def test_happy_launcher_deep_in_chain_beats_shell_parent(self, fake_query):
        """A happy launcher at hop 3 outranks a shell at hop 1."""
        parent = build_chain(
            fake_query,
            ["-zsh", "tmux", "node /usr/lib/node_modules/happy-coder/dist/index.mjs", "launchd-helper"],
        )

        assert classify_ancestry(fake_query, parent).type is InstanceType.HAPPY

    def test_happy_launcher_as_immediate_parent(self, fake_query):
        parent = build_chain(fake_query, ["node happy-coder"])

        assert classify_ancestry(fake_query, parent).type is InstanceType.HAPPY

    def test_shell_beyond_immediate_parent_is_ignored(self, fake_query):
        """Only the immediate parent decides TERMINAL/NODE; deeper shells do not count."""
        parent = build_chain(fake_query, ["tmux: server", "-zsh"])

        result = classify_ancestry(fake_query, parent)

        assert result.type is InstanceType.UNKNOWN
        assert "-zsh" in result.parent_chain

    def test_node_beyond_immediate_parent_is_ignored(self, fake_query):
        parent = build_chain(fake_query, ["-bash", "node /srv/spawner.js"])

        assert classify_ancestry(fake_query, parent).type is InstanceType.TERMINAL

    def test_sshd_anywhere_sets_remote(self, fake_query):
        parent = build_chain(fake_query, ["-zsh", "sshd: alice@pts/0", "sshd: alice [priv]", "/usr/sbin/sshd -D"])

        result = classify_ancestry(fake_query, parent)

        assert result.type is InstanceType.TERMINAL
        assert result.is_remote is True

    def test_remote_detected_above_happy_launcher(self, fake_query):
        parent = build_chain(fake_query, ["node happy-coder", "-bash", "sshd: bob@pts/1"])

        result = classify_ancestry(fake_query, parent)

        assert result.type is InstanceType.HAPPY
        assert result.is_remote is True

    def test_local_chain_is_not_remote(self, fake_query):
        parent = build_chain(fake_query, ["-zsh", "login"])

        assert classify_ancestry(fake_query, parent).is_remote is False

    def test_walk_is_bounded_to_ten_hops(self, fake_query):
        commands = [f"proc-{i}" for i in range(15)] + ["node happy-coder"]
        parent = build_chain(fake_query, commands)

        result = classify_ancestry(fake_query, parent)

        assert len(result.parent_chain) == 10
        assert result.parent_chain[0] == "proc-0"
        # The launcher sits at hop 16, beyond the bound
        assert result.type is InstanceType.UNKNOWN

    def test_walk_stops_at_init(self, fake_query):
        parent = build_chain(fake_query, ["-zsh", "login"], top_parent=1)
        fake_query.add(1, ppid=0, command="/sbin/launchd")

        result = classify_ancestry(fake_query, parent)

        assert result.parent_chain == ("-zsh", "login")
        assert ("command_line", 1) not in fake_query.queried

    def test_empty_command_lines_are_left_out(self, fake_query):
        parent = build_chain(fake_query, ["-zsh", "", "login"])

        assert walk_ancestry(fake_query, parent) == ("-zsh", "login")

    def test_empty_parent_command_is_not_replaced_by_grandparent(self, fake_query):
        parent = build_chain(fake_query, ["", "-zsh"])

        result = classify_ancestry(fake_query, parent)

        assert result.type is InstanceType.UNKNOWN
        assert result.parent_chain == ("-zsh",)

    def test_parent_is_init(self, fake_query):
        """A process reparented to init is classified from init's command line."""
        fake_query.add(1, ppid=0, command="/sbin/launchd")

        result = classify_ancestry(fake_query, 1)

        assert result == Ancestry(InstanceType.UNKNOWN, False, ())

    def test_unknown_parent(self, fake_query):
        assert classify_ancestry(fake_query, None) == Ancestry(InstanceType.UNKNOWN, False, ())

    def test_vanished_ancestor_ends_walk(self, fake_query):
        fake_query.add(1000, ppid=2000, command="-zsh")  # 2000 is not in the table

        result = classify_ancestry(fake_query, 1000)

        assert result.type is InstanceType.TERMINAL
        assert result.parent_chain == ("-zsh",)

    def test_classification_is_idempotent(self, fake_query):
        parent = build_chain(fake_query, ["-zsh", "sshd: alice@pts/0", "node happy-coder"])

        first = classify_ancestry(fake_query, parent)
        second = classify_ancestry(fake_query, parent)

        assert first == second
