"""Optimistic add/toggle/delete against the cached collection.

Every operation is a synchronous read-modify-write of the cache followed by a
single ``INSERT`` of the whole collection. Nothing here awaits, so on one
event loop mutation N+1 always reads the cache as mutation N left it, and
the cache, the outbound write and the rendered view change together.
Write confirmations are not tracked; a failed write only shows up in the log.
"""

from __future__ import annotations

import logging
from typing import Callable

from daylist.sync.models import Collection, Priority, Task, canonical_dumps, find_task
from daylist.sync.protocol import Op, OutboundMessage
from daylist.sync.session import SessionContext

logger = logging.getLogger(__name__)

SendFn = Callable[[Op, str, str], OutboundMessage]
AppliedFn = Callable[[str, Collection], None]


class MutationPipeline:
    __slots__ = ("_session", "_send", "_on_applied", "_max_text_length")

    def __init__(
        self,
        session: SessionContext,
        *,
        send: SendFn,
        on_applied: AppliedFn | None = None,
        max_text_length: int = 500,
    ) -> None:
        self._session = session
        self._send = send
        self._on_applied = on_applied
        self._max_text_length = max_text_length

    def add(self, key: str, text: str, priority: Priority | str = Priority.LOW) -> Task:
        cleaned = (text or "").strip()
        if not cleaned:
            raise ValueError("Task text must not be empty")
        if len(cleaned) > self._max_text_length:
            logger.debug("Truncating task text to %d characters", self._max_text_length)
            cleaned = cleaned[: self._max_text_length].rstrip()

        current = self._session.cache.get(key)
        if current is None:
            current = ()
        task = Task.create(cleaned, priority, created=self._session.now())
        self._commit(key, current + (task,))
        logger.info("Added task %s to %s", task.id, key)
        return task

    def toggle(self, key: str, task_id: str) -> Task | None:
        current = self._session.cache.get(key)
        index = find_task(current, task_id) if current is not None else None
        if current is None or index is None:
            logger.warning("Cannot toggle %s: not found in %s", task_id, key)
            return None
        updated = current[index].with_status(current[index].status.toggled())
        self._commit(key, current[:index] + (updated,) + current[index + 1 :])
        logger.info("Toggled task %s to %r", task_id, updated.status.value)
        return updated

    def delete(self, key: str, task_id: str) -> Task | None:
        current = self._session.cache.get(key)
        index = find_task(current, task_id) if current is not None else None
        if current is None or index is None:
            logger.warning("Cannot delete %s: not found in %s", task_id, key)
            return None
        removed = current[index]
        self._commit(key, current[:index] + current[index + 1 :])
        logger.info("Deleted task %s from %s", task_id, key)
        return removed

    def _commit(self, key: str, collection: Collection) -> None:
        # A closed channel raises here, before the cache is touched.
        self._send(Op.INSERT, key, canonical_dumps(collection))
        self._session.cache.put(key, collection)
        self._session.gate.mark_local_mutation(self._session.now(), key)
        if self._on_applied is not None:
            self._on_applied(key, collection)


__all__ = ["MutationPipeline"]
