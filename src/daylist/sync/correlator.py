from __future__ import annotations

import itertools
import logging
from typing import NamedTuple

from cachetools import FIFOCache

from daylist.sync.protocol import Op, OutboundMessage

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100


class SentRecord(NamedTuple):
    op: Op
    key: str
    value: str


class MessageCorrelator:
    """Assign message ids and remember which ones this client sent recently.

    The sent-set is bounded and evicts in sending order. An id that fell out
    of it is indistinguishable from one sent by another client.
    """

    __slots__ = ("_capacity", "_counter", "_sent")

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._counter = itertools.count(1)
        self._sent: FIFOCache[int, SentRecord] = FIFOCache(maxsize=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def has_pending(self) -> bool:
        return len(self._sent) > 0

    def __len__(self) -> int:
        return len(self._sent)

    def tag(self, message: OutboundMessage) -> int:
        if message.message_id is not None:
            raise ValueError(f"Message already tagged with id {message.message_id}")
        message.message_id = next(self._counter)
        return message.message_id

    def record_sent(self, message: OutboundMessage) -> None:
        if message.message_id is None:
            raise ValueError("Cannot record an untagged message")
        self._sent[message.message_id] = SentRecord(
            op=message.op, key=message.key, value=message.value
        )

    def is_self_originated(self, message_id: int | None) -> bool:
        if message_id is None:
            return False
        return message_id in self._sent

    def lookup(self, message_id: int | None) -> SentRecord | None:
        if message_id is None:
            return None
        return self._sent.get(message_id)

    def reset(self) -> None:
        """Forget everything; ids restart at 1 for a fresh connection."""

        logger.debug("Resetting correlator (%d ids tracked)", len(self._sent))
        self._counter = itertools.count(1)
        self._sent.clear()


__all__ = ["DEFAULT_CAPACITY", "MessageCorrelator", "SentRecord"]
