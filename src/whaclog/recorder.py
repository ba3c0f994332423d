"""Event log recorder: encodes events to log lines as a session emits them."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .codec import encode_event

if TYPE_CHECKING:
    from .events import Event


class EventLog:
    """
    Growing log of one or more sessions.

    Pass an instance as the `listener` of a `Game`:

        log = EventLog()
        game = Game(listener=log)
    """

    def __init__(self) -> None:
        self._events: list[Event] = []
        self._lines: list[str] = []

    def __call__(self, event: Event) -> None:
        self.record(event)

    def record(self, event: Event) -> None:
        self._events.append(event)
        self._lines.append(encode_event(event))

    @property
    def events(self) -> list[Event]:
        return list(self._events)

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    def tail(self, n: int = 6) -> list[str]:
        """Last `n` lines (what a live view shows while playing)."""
        return self._lines[-n:] if n > 0 else []

    def text(self) -> str:
        return "".join(f"{line}\n" for line in self._lines)

    def clear(self) -> None:
        self._events.clear()
        self._lines.clear()
