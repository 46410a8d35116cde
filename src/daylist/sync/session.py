"""Per-session mutable state shared by the engine and the mutation pipeline."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from typing import Callable

from daylist.sync.cache import ReconciliationCache
from daylist.sync.correlator import DEFAULT_CAPACITY, MessageCorrelator
from daylist.sync.debounce import DEBOUNCE_WINDOW_MS, DebounceGate


def epoch_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass(slots=True)
class SessionContext:
    """Everything one connected session owns.

    Two contexts never share state, so independent sessions (and tests) can
    run side by side in one process.
    """

    cache: ReconciliationCache
    correlator: MessageCorrelator
    gate: DebounceGate
    clock: Callable[[], int] = epoch_ms
    today: Callable[[], date] = date.today
    active_day: date | None = None
    active_key: str | None = None

    @classmethod
    def create(
        cls,
        *,
        debounce_ms: int = DEBOUNCE_WINDOW_MS,
        sent_id_capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], int] | None = None,
        today: Callable[[], date] | None = None,
    ) -> "SessionContext":
        correlator = MessageCorrelator(sent_id_capacity)
        return cls(
            cache=ReconciliationCache(),
            correlator=correlator,
            gate=DebounceGate(correlator, debounce_ms),
            clock=clock or epoch_ms,
            today=today or date.today,
        )

    def now(self) -> int:
        return self.clock()

    def is_echo(self, message_id: int | None, key: str) -> bool:
        """True when ``message_id`` is our own write to ``key`` inside the window.

        A key with no cached value has never been read or written here, so
        whatever arrives for it is news and is never treated as an echo.
        """

        if key not in self.cache:
            return False
        if not self.correlator.is_self_originated(message_id):
            return False
        return self.gate.should_suppress_refresh(self.clock(), key)

    def reset(self) -> None:
        self.cache.clear()
        self.correlator.reset()
        self.gate.reset()
        self.active_day = None
        self.active_key = None


__all__ = ["SessionContext", "epoch_ms"]
