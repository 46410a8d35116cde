"""Daylist: day-scoped task lists synchronized with a remote key-value store."""

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:  # pragma: no cover - import only for static analysis
    from .sync.engine import SyncEngine as SyncEngine
else:
    def __getattr__(name: str) -> Any:
        if name == "SyncEngine":
            from .sync.engine import SyncEngine as _SyncEngine

            return _SyncEngine
        raise AttributeError(name)


__all__ = ["SyncEngine"]
