"""Recent calls API: local-first resolution of a contact's most recent calls."""

from __future__ import annotations

from .call_log import CallLogSource, InMemoryCallLog
from .config import (
    ConfigError,
    LoggingConfig,
    RecentCallsConfig,
    RemoteConfig,
    ResolutionSettings,
    load_config,
)
from .core.concurrency import concurrent_execute
from .errors import (
    CallLogRateLimitedError,
    CallLogRequestError,
    MissingDependencyError,
    RecentCallsError,
    RemoteFetchError,
)
from .matching import matches_contact, matches_identity, scan_local_calls, window_start
from .models import (
    CallEndpoint,
    CallLogPage,
    CallRecord,
    Contact,
    PhoneIdentity,
    PhoneKind,
)
from .pipeline import finalize_calls
from .remote import CallLogQuery, CallLogQueryClient, HttpCallLogClient, RemoteCallFetcher
from .resolver import RecentCallsResolver
from .state import (
    CallStatus,
    EventBus,
    ModuleStatus,
    RecentCallsEvent,
    RecentCallsEventType,
    RecentCallsState,
)

__all__ = [
    "CallEndpoint",
    "CallLogPage",
    "CallLogQuery",
    "CallLogQueryClient",
    "CallLogRateLimitedError",
    "CallLogRequestError",
    "CallLogSource",
    "CallRecord",
    "CallStatus",
    "ConfigError",
    "Contact",
    "EventBus",
    "HttpCallLogClient",
    "InMemoryCallLog",
    "LoggingConfig",
    "MissingDependencyError",
    "ModuleStatus",
    "PhoneIdentity",
    "PhoneKind",
    "RecentCallsConfig",
    "RecentCallsError",
    "RecentCallsEvent",
    "RecentCallsEventType",
    "RecentCallsResolver",
    "RecentCallsState",
    "RemoteCallFetcher",
    "RemoteConfig",
    "RemoteFetchError",
    "ResolutionSettings",
    "concurrent_execute",
    "finalize_calls",
    "load_config",
    "matches_contact",
    "matches_identity",
    "scan_local_calls",
    "window_start",
]
