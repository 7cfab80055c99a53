"""Local call-log source contract and an in-memory implementation."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Protocol

from recentcalls.models import CallRecord

logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]


class CallLogSource(Protocol):
    """Already-synchronized local call log."""

    @property
    def ready(self) -> bool:
        """Whether ``calls`` holds a usable snapshot."""
        ...

    @property
    def calls(self) -> Sequence[CallRecord]:
        """Read-only snapshot of local call records."""
        ...

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Call *listener* on every change; the returned callable unsubscribes."""
        ...


class InMemoryCallLog:
    """Call log held in memory, filled by whatever syncs it."""

    def __init__(self, records: Iterable[CallRecord] | None = None) -> None:
        self._calls: tuple[CallRecord, ...] = tuple(records or ())
        self._ready = records is not None
        self._listeners: list[ChangeListener] = []

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def calls(self) -> Sequence[CallRecord]:
        return self._calls

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def load(self, records: Iterable[CallRecord]) -> None:
        """Replace the snapshot and mark the log ready."""
        self._calls = tuple(records)
        self._ready = True
        logger.debug("Call log loaded with %d record(s)", len(self._calls))
        self._notify()

    def set_ready(self, ready: bool) -> None:
        if ready == self._ready:
            return
        self._ready = ready
        self._notify()

    def reset(self) -> None:
        """Drop the snapshot and mark the log not ready."""
        self._calls = ()
        self._ready = False
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Call log change listener failed")
