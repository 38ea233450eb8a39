"""Tests for the event log and selection."""
import pytest

from livebridge.errors import EventNotFound
from livebridge.event_models import CanonicalEvent
from livebridge.services.event_log import EventLog


def event(message_id: str, **properties) -> CanonicalEvent:
    return CanonicalEvent(messageId=message_id, timestamp="2024-01-01T00:00:00Z", type="track", properties=properties)


def test_newest_first():
    log = EventLog()
    for message_id in ("a", "b", "c"):
        assert log.append(event(message_id)) is True

    assert [e.message_id for e in log] == ["c", "b", "a"]
    assert [e.message_id for e in log.recent(2)] == ["c", "b"]
    assert len(log) == 3
    assert "b" in log


def test_duplicate_message_id_dropped():
    log = EventLog()
    log.append(event("a"))
    assert log.append(event("a", changed=True)) is False
    assert len(log) == 1
    assert log.get("a").properties == {}


def test_select_first_if_unset():
    log = EventLog()
    seen = []
    log.add_listener(seen.append)
    log.append(event("a"))
    log.append(event("b"))

    assert log.select_first_if_unset(log.get("a")) is True
    assert log.select_first_if_unset(log.get("b")) is False
    assert log.selected.message_id == "a"
    assert [e.message_id for e in seen] == ["a"]


def test_select_changes_and_notifies():
    log = EventLog()
    seen = []
    log.add_listener(seen.append)
    log.append(event("a"))
    log.append(event("b"))

    log.select("a")
    log.select("b")
    log.select("b")

    assert log.selected.message_id == "b"
    # Re-selecting the current event does not fire again
    assert [e.message_id for e in seen] == ["a", "b"]


def test_select_unknown_raises():
    log = EventLog()
    with pytest.raises(EventNotFound):
        log.select("missing")
    with pytest.raises(KeyError):
        log.select("missing")


def test_clear():
    log = EventLog()
    log.append(event("a"))
    log.select("a")

    log.clear()

    assert len(log) == 0
    assert log.selected is None
    assert log.get("a") is None
