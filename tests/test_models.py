"""Tests for agenttop data models."""

from datetime import datetime

import pytest

from agenttop.models import Instance, InstanceType, MatchConfidence, ProcessFacts, SessionInfo


def make_instance(**overrides) -> Instance:
    values = dict(
        pid=123,
        index=1,
        start_time=datetime(2026, 10, 19, 9, 5, 0),
        elapsed="05:00",
        type=InstanceType.TERMINAL,
        cpu_percent=2.5,
        memory_kb=10240,
    )
    values.update(overrides)
    return Instance(**values)


def test_instance_creation():
    """Test Instance dataclass creation with only the mandatory fields."""
    instance = make_instance()

    assert instance.pid == 123
    assert instance.index == 1
    assert instance.type is InstanceType.TERMINAL
    assert instance.cpu_percent == 2.5
    assert instance.memory_kb == 10240
    assert instance.is_remote is False
    assert instance.parent_chain == ()
    assert instance.folder is None
    assert instance.git_branch is None
    assert instance.first_prompt is None
    assert instance.session_id is None
    assert instance.session_title is None
    assert instance.tty is None


def test_instance_is_frozen():
    """Test that Instance is immutable (frozen)."""
    instance = make_instance()

    try:
        instance.pid = 999
        raise AssertionError("Should have raised FrozenInstanceError")
    except AttributeError:
        pass  # Expected behavior for frozen dataclass


def test_instance_uses_slots():
    """Test that Instance uses __slots__ for memory efficiency."""
    assert not hasattr(make_instance(), "__dict__")


def test_instance_equality_compares_every_field():
    """A reused PID with a different start time is a different instance."""
    first = make_instance()
    replacement = make_instance(start_time=datetime(2026, 10, 19, 10, 0, 0))

    assert first != replacement
    assert first == make_instance()


def test_start_time_formatted():
    assert make_instance().start_time_formatted == "Oct 19, 09:05"


@pytest.mark.parametrize(
    "overrides, expected",
    [
        ({"type": InstanceType.HAPPY, "folder": "/work/foo"}, "happy open"),
        ({"folder": "/work/foo"}, "cd /work/foo && claude"),
        ({}, "claude"),
        ({"type": InstanceType.NODE, "folder": "/srv/app"}, "cd /srv/app && claude"),
    ],
)
def test_launch_command(overrides, expected):
    assert make_instance(**overrides).launch_command == expected


def test_label_prefers_title_then_prompt_then_folder():
    assert make_instance(session_title="T", first_prompt="P", folder="/f").label == "T"
    assert make_instance(first_prompt="P", folder="/f").label == "P"
    assert make_instance(folder="/f").label == "/f"
    assert make_instance().label == ""


def test_instance_type_values():
    assert [t.value for t in InstanceType] == ["happy", "terminal", "node", "unknown"]


def test_session_info_empty():
    """Test the default SessionInfo represents 'no match'."""
    info = SessionInfo()

    assert info.is_empty
    assert info.confidence is None
    assert not SessionInfo(session_id="abc", confidence=MatchConfidence.OPEN_FILE).is_empty


def test_process_facts_is_frozen():
    facts = ProcessFacts(start_time=datetime(2026, 1, 1), elapsed="00:01", cpu_percent=0.0, memory_kb=1)

    assert facts.tty is None
    with pytest.raises(AttributeError):
        facts.memory_kb = 2
