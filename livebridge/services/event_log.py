"""Append-only, newest-first event log with a single selection pointer."""
from collections import deque
from typing import Callable, Iterator, Optional

import structlog

from ..errors import EventNotFound
from ..event_models import CanonicalEvent

log = structlog.get_logger()

SelectionListener = Callable[[Optional[CanonicalEvent]], None]


class EventLog:
    """
    In-memory log of the events seen by one live session.

    Entries are never removed individually, so a selection always refers to
    an event that is still present. The whole log is cleared on teardown.
    """

    def __init__(self):
        self._events: deque[CanonicalEvent] = deque()
        self._by_id: dict[str, CanonicalEvent] = {}
        self._selected_id: Optional[str] = None
        self._listeners: list[SelectionListener] = []

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[CanonicalEvent]:
        return iter(self._events)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._by_id

    def recent(self, limit: Optional[int] = None) -> list[CanonicalEvent]:
        """Events newest-first, optionally truncated."""
        if limit is None:
            return list(self._events)
        return [event for _, event in zip(range(limit), self._events)]

    def get(self, message_id: str) -> Optional[CanonicalEvent]:
        return self._by_id.get(message_id)

    @property
    def selected(self) -> Optional[CanonicalEvent]:
        if self._selected_id is None:
            return None
        return self._by_id[self._selected_id]

    def add_listener(self, listener: SelectionListener) -> None:
        """Register a callback fired on every selection change."""
        self._listeners.append(listener)

    def append(self, event: CanonicalEvent) -> bool:
        """
        Prepend an event (most-recent-first order).

        Returns:
            False if an event with the same message id is already present
            (redelivery by the at-least-once transport), True otherwise
        """
        if event.message_id in self._by_id:
            log.debug("event_log.duplicate_dropped", message_id=event.message_id)
            return False
        self._events.appendleft(event)
        self._by_id[event.message_id] = event
        return True

    def select_first_if_unset(self, event: CanonicalEvent) -> bool:
        """Select ``event`` only when nothing is selected yet."""
        if self._selected_id is not None:
            return False
        self._change_selection(event.message_id)
        return True

    def select(self, message_id: str) -> CanonicalEvent:
        """
        Select an event explicitly.

        Raises:
            EventNotFound: If the message id is not in the log
        """
        event = self._by_id.get(message_id)
        if event is None:
            raise EventNotFound(message_id)
        if message_id != self._selected_id:
            self._change_selection(message_id)
        return event

    def clear(self) -> None:
        """Drop every event and the selection. Listeners are not notified."""
        self._events.clear()
        self._by_id.clear()
        self._selected_id = None

    def _change_selection(self, message_id: str) -> None:
        if message_id not in self._by_id:
            raise EventNotFound(message_id)
        self._selected_id = message_id
        log.debug("event_log.selected", message_id=message_id)
        selected = self._by_id[message_id]
        for listener in self._listeners:
            listener(selected)
