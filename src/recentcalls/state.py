"""Resolution lifecycle state, transitions and the notification bus."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace

from recentcalls.models import CallRecord

logger = logging.getLogger(__name__)


class ModuleStatus(enum.StrEnum):
    """Readiness of the resolver, following the local call source."""

    PENDING = "pending"
    READY = "ready"


class CallStatus(enum.StrEnum):
    """Progress of the current resolution."""

    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"


class RecentCallsEventType(enum.StrEnum):
    INIT_SUCCESS = "init_success"
    RESET_SUCCESS = "reset_success"
    INIT_LOAD = "init_load"
    LOAD_SUCCESS = "load_success"
    LOAD_RESET = "load_reset"
    LOAD_FAILURE = "load_failure"


@dataclass(frozen=True)
class RecentCallsState:
    status: ModuleStatus = ModuleStatus.PENDING
    call_status: CallStatus = CallStatus.IDLE
    calls: tuple[CallRecord, ...] = ()

    @property
    def is_loaded(self) -> bool:
        return self.call_status is CallStatus.LOADED


@dataclass(frozen=True)
class RecentCallsEvent:
    """A published lifecycle transition and the state it produced."""

    type: RecentCallsEventType
    state: RecentCallsState


def apply_event(
    state: RecentCallsState,
    event_type: RecentCallsEventType,
    *,
    calls: Sequence[CallRecord] = (),
    restore_call_status: CallStatus | None = None,
) -> RecentCallsState:
    """Return the state that follows *event_type*.

    ``calls`` is read for ``LOAD_SUCCESS`` only; ``restore_call_status`` for
    ``LOAD_FAILURE`` only. Calls are left untouched on failure.
    """
    match event_type:
        case RecentCallsEventType.INIT_SUCCESS:
            return replace(state, status=ModuleStatus.READY)
        case RecentCallsEventType.RESET_SUCCESS:
            return RecentCallsState()
        case RecentCallsEventType.INIT_LOAD:
            return replace(state, call_status=CallStatus.LOADING)
        case RecentCallsEventType.LOAD_SUCCESS:
            return replace(state, call_status=CallStatus.LOADED, calls=tuple(calls))
        case RecentCallsEventType.LOAD_RESET:
            return replace(state, call_status=CallStatus.IDLE, calls=())
        case RecentCallsEventType.LOAD_FAILURE:
            return replace(state, call_status=restore_call_status or CallStatus.IDLE)
    raise ValueError(f"Unknown recent-calls event type: {event_type!r}")


EventListener = Callable[[RecentCallsEvent], None]


class EventBus:
    """Synchronous in-process publish/subscribe for lifecycle events."""

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register *listener*; the returned callable unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, event: RecentCallsEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Recent-calls event listener failed for %s", event.type)
