"""Local-first resolution of a contact's most recent calls.

``RecentCallsResolver`` scans the already-synchronized local call log first
and only falls back to the remote call log when fewer than ``max_calls``
local matches fall inside the recency window. Results are committed through
``apply_event`` and announced on the ``EventBus``.

Requests are tracked with a generation counter. A request for another
contact, an explicit clear, or the local call log going not-ready bumps the
generation, and any in-flight resolution started under an older generation
drops its result instead of committing it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from recentcalls.call_log import CallLogSource
from recentcalls.config import ResolutionSettings
from recentcalls.core.logging import reset_contact_context, set_contact_context
from recentcalls.core.metrics import ResolutionMetrics
from recentcalls.core.telemetry import resolution_span
from recentcalls.errors import MissingDependencyError, RemoteFetchError
from recentcalls.matching import scan_local_calls, window_start
from recentcalls.models import CallRecord, Contact
from recentcalls.pipeline import finalize_calls
from recentcalls.remote import CallLogQueryClient, RemoteCallFetcher
from recentcalls.state import (
    CallStatus,
    EventBus,
    ModuleStatus,
    RecentCallsEvent,
    RecentCallsEventType,
    RecentCallsState,
    apply_event,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_SETTLING_EVENTS = frozenset(
    {
        RecentCallsEventType.LOAD_SUCCESS,
        RecentCallsEventType.LOAD_RESET,
        RecentCallsEventType.RESET_SUCCESS,
    }
)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class RecentCallsResolver:
    """Resolves and holds the recent calls of one contact at a time."""

    def __init__(
        self,
        *,
        call_log: CallLogSource | None,
        client: CallLogQueryClient | None,
        settings: ResolutionSettings | None = None,
        event_bus: EventBus | None = None,
        fetcher: RemoteCallFetcher | None = None,
        metrics: ResolutionMetrics | None = None,
        clock: Clock | None = None,
    ) -> None:
        if call_log is None:
            raise MissingDependencyError("call_log")
        if client is None:
            raise MissingDependencyError("client")

        self._call_log = call_log
        self._settings = settings or ResolutionSettings()
        self._event_bus = event_bus or EventBus()
        self._metrics = metrics or ResolutionMetrics()
        self._fetcher = fetcher or RemoteCallFetcher(
            client,
            max_concurrent=self._settings.max_concurrent,
            inter_batch_delay_ms=self._settings.inter_batch_delay_ms,
            metrics=self._metrics,
        )
        self._clock = clock or _utc_now
        self._state = RecentCallsState()
        self._current_contact: Contact | None = None
        self._generation = 0
        # Call status of the last committed outcome, restored when a load fails.
        self._settled_call_status = CallStatus.IDLE
        self._unsubscribe: Callable[[], None] | None = call_log.subscribe(
            self._on_call_log_change
        )
        # Pick up a call log that was ready before we subscribed.
        self._on_call_log_change()

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> RecentCallsState:
        return self._state

    @property
    def status(self) -> ModuleStatus:
        return self._state.status

    @property
    def call_status(self) -> CallStatus:
        return self._state.call_status

    @property
    def calls(self) -> tuple[CallRecord, ...]:
        return self._state.calls

    @property
    def is_loaded(self) -> bool:
        return self._state.is_loaded

    @property
    def ready(self) -> bool:
        return self._state.status is ModuleStatus.READY

    @property
    def current_contact(self) -> Contact | None:
        return self._current_contact

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def resolve_recent_calls(self, contact: Contact | None) -> None:
        """Resolve the recent calls of *contact* into :attr:`calls`.

        Resolving the contact that is already tracked is a no-op. Passing
        ``None`` clears the result without fetching anything.

        Raises
        ------
        RemoteFetchError
            If the remote fallback fails for the request that is still
            current. Calls already loaded are left as they were and the same
            contact can be resolved again to retry.
        """
        if contact is not None and contact == self._current_contact:
            logger.debug("Recent calls for contact %s already tracked; skipping", contact.id)
            return

        self._current_contact = contact
        self._generation += 1
        generation = self._generation
        self._dispatch(RecentCallsEventType.INIT_LOAD)

        if contact is None:
            self._dispatch(RecentCallsEventType.LOAD_RESET)
            self._metrics.record_resolution("reset")
            return

        token = set_contact_context(contact.id)
        outcome = "error"
        try:
            with (
                self._metrics.track_resolution(lambda: outcome),
                resolution_span("resolve", contact_id=contact.id),
            ):
                try:
                    calls, outcome = await self._find_recent_calls(contact, self._call_log.calls)
                except RemoteFetchError as exc:
                    if generation != self._generation:
                        outcome = "stale"
                        logger.debug(
                            "Discarding failed resolution for superseded contact %s: %s",
                            contact.id,
                            exc,
                        )
                        return
                    self._current_contact = None
                    self._dispatch(
                        RecentCallsEventType.LOAD_FAILURE,
                        restore_call_status=self._settled_call_status,
                    )
                    logger.warning(
                        "Recent calls resolution failed for contact %s: %s", contact.id, exc
                    )
                    raise

                if generation != self._generation:
                    outcome = "stale"
                    logger.debug("Discarding stale recent calls for contact %s", contact.id)
                    return

                self._dispatch(RecentCallsEventType.LOAD_SUCCESS, calls=calls)
                logger.info(
                    "Resolved %d recent call(s) for contact %s (%s)",
                    len(calls),
                    contact.id,
                    outcome,
                )
        finally:
            reset_contact_context(token)

    def clear_resolution(self) -> None:
        """Forget the tracked contact and empty the result."""
        self._current_contact = None
        self._generation += 1
        self._dispatch(RecentCallsEventType.LOAD_RESET)

    def close(self) -> None:
        """Stop observing the local call log."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _find_recent_calls(
        self,
        contact: Contact,
        local_calls: Sequence[CallRecord],
    ) -> tuple[tuple[CallRecord, ...], str]:
        settings = self._settings
        date_from = window_start(settings.day_span, now=self._clock())
        candidates = scan_local_calls(contact, local_calls, date_from)

        if len(candidates) >= settings.max_calls:
            outcome = "local"
        elif not contact.usable_identities:
            outcome = "empty"
            candidates = []
        else:
            # Remote results replace the local candidates; the remote query
            # covers the same window.
            logger.debug(
                "Only %d local match(es) for contact %s; querying remote call log",
                len(candidates),
                contact.id,
            )
            candidates = await self._fetcher.fetch(
                contact,
                date_from.isoformat(),
                settings.max_calls,
            )
            outcome = "remote"

        return finalize_calls(candidates, settings.max_calls), outcome

    def _on_call_log_change(self) -> None:
        if self._state.status is ModuleStatus.PENDING and self._call_log.ready:
            self._dispatch(RecentCallsEventType.INIT_SUCCESS)
        elif self._state.status is ModuleStatus.READY and not self._call_log.ready:
            self._current_contact = None
            self._generation += 1
            self._dispatch(RecentCallsEventType.RESET_SUCCESS)

    def _dispatch(
        self,
        event_type: RecentCallsEventType,
        *,
        calls: Sequence[CallRecord] = (),
        restore_call_status: CallStatus | None = None,
    ) -> None:
        self._state = apply_event(
            self._state,
            event_type,
            calls=calls,
            restore_call_status=restore_call_status,
        )
        if event_type in _SETTLING_EVENTS:
            self._settled_call_status = self._state.call_status
        self._event_bus.publish(RecentCallsEvent(type=event_type, state=self._state))
