"""Synchronization engine keeping day collections in step with the store."""

from daylist.sync.cache import ReconciliationCache
from daylist.sync.config import RemoteConfig, SyncConfig
from daylist.sync.correlator import MessageCorrelator
from daylist.sync.debounce import DebounceGate
from daylist.sync.engine import EngineState, SyncEngine
from daylist.sync.errors import (
    ChannelError,
    Conflict,
    NotFound,
    ProtocolError,
    SyncError,
    TokenAcquisitionFailure,
)
from daylist.sync.models import Priority, Status, Task, record_key
from daylist.sync.session import SessionContext
from daylist.sync.subscription import SubscriptionManager, SubscriptionState

__all__ = [
    "ChannelError",
    "Conflict",
    "DebounceGate",
    "EngineState",
    "MessageCorrelator",
    "NotFound",
    "Priority",
    "ProtocolError",
    "ReconciliationCache",
    "RemoteConfig",
    "SessionContext",
    "Status",
    "SubscriptionManager",
    "SubscriptionState",
    "SyncConfig",
    "SyncEngine",
    "SyncError",
    "Task",
    "TokenAcquisitionFailure",
    "record_key",
]
