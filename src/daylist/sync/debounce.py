from __future__ import annotations

from daylist.sync.correlator import MessageCorrelator

DEBOUNCE_WINDOW_MS = 1000


class DebounceGate:
    """Hold off refreshes for a short window after a local mutation.

    Inside the window a poll or notification may still describe the state
    from before the optimistic edit, so applying it would regress the view.
    The window is assumed to exceed the store's round trip. Mutations are
    tracked per key: a write to one day never holds back another day.
    """

    __slots__ = ("_correlator", "_window_ms", "_last_mutation", "_mutated_keys")

    def __init__(
        self, correlator: MessageCorrelator, window_ms: int = DEBOUNCE_WINDOW_MS
    ) -> None:
        self._correlator = correlator
        self._window_ms = int(window_ms)
        self._last_mutation: int | None = None
        self._mutated_keys: dict[str, int] = {}

    @property
    def window_ms(self) -> int:
        return self._window_ms

    @property
    def last_mutation(self) -> int | None:
        return self._last_mutation

    def mark_local_mutation(self, now: int, key: str | None = None) -> None:
        self._last_mutation = int(now)
        if key is not None:
            self._mutated_keys[key] = int(now)

    def should_suppress_refresh(self, now: int, key: str | None = None) -> bool:
        """True while ``key`` (or any key when omitted) has a fresh local write."""

        last = self._last_mutation if key is None else self._mutated_keys.get(key)
        if last is None:
            return False
        if now - last >= self._window_ms:
            return False
        return self._correlator.has_pending

    def reset(self) -> None:
        self._last_mutation = None
        self._mutated_keys.clear()


__all__ = ["DEBOUNCE_WINDOW_MS", "DebounceGate"]
