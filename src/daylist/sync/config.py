from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any
from urllib.parse import urlencode

from daylist.sync.models import Priority


@dataclass(slots=True, frozen=True)
class RemoteConfig:
    """Where the store lives and how to authenticate against it."""

    endpoint: str
    api_key: str
    secure: bool = True
    ws_path: str = "/ws"
    token_path: str = "/token/websocket"
    timeout: float = 10.0

    @property
    def http_base_url(self) -> str:
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.endpoint}"

    @property
    def ws_url(self) -> str:
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self.endpoint}/{self.ws_path.lstrip('/')}"

    @property
    def command_url(self) -> str:
        return f"{self.ws_url}?{urlencode({'apiKey': self.api_key})}"


@dataclass(slots=True, frozen=True)
class SyncConfig:
    """Aggregate configuration for a synchronization session."""

    remote: RemoteConfig
    debounce_ms: int = 1000
    sent_id_capacity: int = 100
    key_prefix: str = "todos-"
    days_past: int = 1
    days_future: int = 4
    default_priority: Priority = Priority.LOW
    max_text_length: int = 500

    @classmethod
    def from_settings(
        cls, settings: Any, *, api_key: str | None = None, endpoint: str | None = None
    ) -> "SyncConfig":
        """Construct a :class:`SyncConfig` from application settings."""

        remote_settings = settings.REMOTE
        key = api_key or remote_settings.get("api_key")
        if not key:
            raise ValueError(
                "No API key configured. Set DAYLIST_REMOTE__API_KEY or pass --api-key."
            )
        remote = RemoteConfig(
            endpoint=str(endpoint or remote_settings.endpoint),
            api_key=str(key),
            secure=bool(remote_settings.secure),
            ws_path=str(remote_settings.ws_path),
            token_path=str(remote_settings.token_path),
            timeout=float(remote_settings.timeout),
        )
        return cls(
            remote=remote,
            debounce_ms=int(settings.SYNC.debounce_ms),
            sent_id_capacity=int(settings.SYNC.sent_id_capacity),
            key_prefix=str(settings.SYNC.key_prefix),
            days_past=int(settings.DAYS.past),
            days_future=int(settings.DAYS.future),
            default_priority=Priority(settings.TASKS.default_priority),
            max_text_length=int(settings.TASKS.max_text_length),
        )

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["remote"]["api_key"] = "***"
        return data


__all__ = ["RemoteConfig", "SyncConfig"]
