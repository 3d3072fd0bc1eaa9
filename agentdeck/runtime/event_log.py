from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable

from .error_codes import ErrorCode
from .protocol import AgentEvent

logger = logging.getLogger(__name__)

SnapshotHandler = Callable[[tuple[AgentEvent, ...]], None]


class EventLog:
    """
    Host-side append-only log.

    Appends are serialized; after each non-empty batch every subscriber receives
    the full immutable snapshot.
    """

    def __init__(self, *, events: Iterable[AgentEvent] = ()) -> None:
        self._lock = threading.Lock()
        self._events: tuple[AgentEvent, ...] = ()
        self._subs: list[SnapshotHandler] = []
        initial = list(events)
        if initial:
            self._check_order(initial)
            self._events = tuple(initial)

    def __len__(self) -> int:
        return len(self._events)

    def snapshot(self) -> tuple[AgentEvent, ...]:
        return self._events

    @property
    def last_sequence_id(self) -> int | None:
        return self._events[-1].sequence_id if self._events else None

    def subscribe(self, handler: SnapshotHandler) -> None:
        self._subs.append(handler)

    def extend(self, events: Iterable[AgentEvent]) -> tuple[AgentEvent, ...]:
        batch = list(events)
        if not batch:
            return self._events
        with self._lock:
            self._check_order(batch)
            self._events = self._events + tuple(batch)
            snapshot = self._events
        self._dispatch(snapshot)
        return snapshot

    def reset(self, events: Iterable[AgentEvent] = ()) -> tuple[AgentEvent, ...]:
        """Replace the whole log (the task was cleared or the file was replaced) and notify every subscriber."""

        batch = list(events)
        with self._lock:
            previous, self._events = self._events, ()
            try:
                self._check_order(batch)
            except EventOrderError:
                self._events = previous
                raise
            self._events = tuple(batch)
            snapshot = self._events
        logger.info("event log reset with %d event(s)", len(snapshot))
        self._dispatch(snapshot)
        return snapshot

    def _check_order(self, batch: list[AgentEvent]) -> None:
        last = self._events[-1].sequence_id if self._events else None
        for event in batch:
            if last is not None and event.sequence_id <= last:
                raise EventOrderError(sequence_id=event.sequence_id, last_sequence_id=last)
            last = event.sequence_id

    def _dispatch(self, snapshot: tuple[AgentEvent, ...]) -> None:
        for handler in list(self._subs):
            handler(snapshot)


class EventOrderError(ValueError):
    def __init__(self, *, sequence_id: int, last_sequence_id: int) -> None:
        super().__init__(
            f"{ErrorCode.EVENT_OUT_OF_ORDER.value}: sequence_id {sequence_id} does not follow {last_sequence_id}"
        )
        self.sequence_id = sequence_id
        self.last_sequence_id = last_sequence_id
