"""Push-notification subscriptions for a set of record keys.

Every :meth:`SubscriptionManager.subscribe` call replaces the previous
subscription wholesale. Each setup runs under a generation number; a token or
channel that arrives after a newer setup (or :meth:`close`) has started is
discarded instead of activating a stale key set.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum
from typing import Callable
from urllib.parse import urlencode

from daylist.sync.channel import Connector, NotificationChannel
from daylist.sync.errors import ChannelError, ProtocolError, TokenAcquisitionFailure
from daylist.sync.protocol import Notification, decode_inbound
from daylist.sync.pulse import SubscriptionChanged, SyncPulse
from daylist.sync.tokens import TokenClient

logger = logging.getLogger(__name__)

NotificationHandler = Callable[[Notification], None]


class SubscriptionState(str, Enum):
    DISCONNECTED = "disconnected"
    TOKEN_REQUESTED = "token_requested"
    CONNECTED = "connected"


class SubscriptionManager:
    def __init__(
        self,
        *,
        token_client: TokenClient,
        ws_url: str,
        on_notification: NotificationHandler,
        connector: Connector | None = None,
        pulse: SyncPulse | None = None,
    ) -> None:
        self._tokens = token_client
        self._ws_url = ws_url
        self._on_notification = on_notification
        self._connector = connector
        self._pulse = pulse
        self._state = SubscriptionState.DISCONNECTED
        self._generation = 0
        self._keys: frozenset[str] = frozenset()
        self._channel: NotificationChannel | None = None

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def keys(self) -> frozenset[str]:
        return self._keys

    @property
    def generation(self) -> int:
        return self._generation

    async def subscribe(self, keys: Iterable[str]) -> None:
        """Replace the current subscription with one covering ``keys``.

        Raises :class:`TokenAcquisitionFailure` or :class:`ChannelError` when
        this setup fails; the manager is then ``DISCONNECTED`` and nothing is
        retried.
        """

        self._generation += 1
        generation = self._generation
        requested = frozenset(keys)
        await self._close_channel()
        if not self._is_current(generation):
            return
        self._keys = frozenset()
        self._set_state(SubscriptionState.TOKEN_REQUESTED, generation)

        try:
            token = await self._tokens.acquire(requested)
        except TokenAcquisitionFailure as exc:
            if not self._is_current(generation):
                logger.debug("Ignoring token failure for superseded subscription: %s", exc)
                return
            self._set_state(SubscriptionState.DISCONNECTED, generation, error=str(exc))
            logger.error("Subscription setup aborted: %s", exc)
            raise

        if not self._is_current(generation):
            logger.debug(
                "Discarding token for superseded subscription (generation %d < %d)",
                generation,
                self._generation,
            )
            return

        channel = NotificationChannel(
            f"{self._ws_url}?{urlencode({'token': token})}",
            on_message=self._handle_frame,
            on_close=lambda exc: self._handle_close(channel, exc),
            connector=self._connector,
        )
        try:
            await channel.open()
        except ChannelError as exc:
            if not self._is_current(generation):
                logger.debug("Ignoring channel failure for superseded subscription: %s", exc)
                return
            self._set_state(SubscriptionState.DISCONNECTED, generation, error=str(exc))
            logger.error("Notification channel failed to open: %s", exc)
            raise

        if not self._is_current(generation):
            logger.debug("Closing notification channel opened for a stale subscription")
            await channel.close()
            return

        self._channel = channel
        self._keys = requested
        self._set_state(SubscriptionState.CONNECTED, generation)
        logger.info("Subscribed to %d keys", len(requested))

    async def close(self) -> None:
        self._generation += 1
        await self._close_channel()
        self._keys = frozenset()
        self._set_state(SubscriptionState.DISCONNECTED, self._generation)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def _close_channel(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            await channel.close()

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            inbound = decode_inbound(raw)
        except ProtocolError as exc:
            logger.warning("Dropping malformed notification: %s", exc)
            return
        if not isinstance(inbound, Notification):
            logger.debug("Ignoring non-notification frame on notification channel")
            return
        if inbound.key not in self._keys:
            logger.debug("Ignoring notification for unsubscribed key %s", inbound.key)
            return
        self._on_notification(inbound)

    async def _handle_close(self, channel: NotificationChannel, exc: ChannelError) -> None:
        if channel is not self._channel:
            return
        self._channel = None
        self._keys = frozenset()
        self._set_state(SubscriptionState.DISCONNECTED, self._generation, error=str(exc))
        logger.error("Notification channel lost: %s", exc)

    def _set_state(
        self, state: SubscriptionState, generation: int, *, error: str | None = None
    ) -> None:
        self._state = state
        if self._pulse is not None:
            self._pulse.emit(
                SubscriptionChanged(
                    state=state.value,
                    generation=generation,
                    keys=tuple(sorted(self._keys)),
                    error=error or None,
                )
            )


__all__ = ["NotificationHandler", "SubscriptionManager", "SubscriptionState"]
