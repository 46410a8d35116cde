"""Typed engine events delivered over blinker signals.

Each event class has its own signal. :class:`DayRefreshed` is sent with the
record key as the blinker sender, so observers can follow a single day.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Union

from blinker import Namespace

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SessionStateChanged:
    state: str


@dataclass(slots=True, frozen=True)
class SessionDisconnected:
    """The command channel dropped; the session was torn down."""

    reason: str


@dataclass(slots=True, frozen=True)
class SubscriptionChanged:
    state: str
    generation: int
    keys: tuple[str, ...] = ()
    error: str | None = None


@dataclass(slots=True, frozen=True)
class DayRefreshed:
    key: str
    count: int
    changed: bool


SyncEvent = Union[SessionStateChanged, SessionDisconnected, SubscriptionChanged, DayRefreshed]

_SIGNAL_NAMES: dict[type, str] = {
    SessionStateChanged: "session-state",
    SessionDisconnected: "session-disconnected",
    SubscriptionChanged: "subscription-changed",
    DayRefreshed: "day-refreshed",
}


class SyncPulse:
    """Per-engine event hub; remembers the most recent event of each type."""

    def __init__(self) -> None:
        self._signals = Namespace()
        self._latest: dict[type, SyncEvent] = {}

    def emit(self, event: SyncEvent) -> None:
        event_type = type(event)
        self._latest[event_type] = event
        sender = event.key if isinstance(event, DayRefreshed) else self
        self._signals.signal(_SIGNAL_NAMES[event_type]).send(sender, event=event)

    def connect(
        self,
        event_type: type,
        listener: Callable[[Any], None],
        *,
        key: str | None = None,
    ) -> Callable[[], None]:
        """Call ``listener`` with every ``event_type`` event; return a disconnect.

        ``key`` narrows :class:`DayRefreshed` events to one record. Listener
        errors are logged and never reach the engine.
        """

        if key is not None and event_type is not DayRefreshed:
            raise ValueError(f"{event_type.__name__} events are not keyed")
        signal = self._signals.signal(_SIGNAL_NAMES[event_type])

        def _receiver(sender: Any, *, event: SyncEvent, **_: Any) -> None:
            try:
                listener(event)
            except Exception:
                logger.exception("%s listener failed", event_type.__name__)

        if key is None:
            signal.connect(_receiver, weak=False)
        else:
            signal.connect(_receiver, sender=key, weak=False)

        def disconnect() -> None:
            signal.disconnect(_receiver)

        return disconnect

    def latest(self, event_type: type) -> Any:
        return self._latest.get(event_type)


__all__ = [
    "DayRefreshed",
    "SessionDisconnected",
    "SessionStateChanged",
    "SubscriptionChanged",
    "SyncEvent",
    "SyncPulse",
]
