"""Local call-log matching for a contact's phone identities."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from recentcalls.models import CallRecord, Contact, PhoneIdentity, PhoneKind


def matches_identity(call: CallRecord, identity: PhoneIdentity) -> bool:
    """Return True when either party of *call* carries *identity*.

    Direct phones compare against the endpoints' phone numbers, extensions
    against their extension numbers. Values are compared verbatim.
    """
    if call.from_ is None or call.to is None:
        return False
    if identity.kind is PhoneKind.DIRECT_PHONE:
        return identity.value in (call.from_.phone_number, call.to.phone_number)
    if identity.kind is PhoneKind.EXTENSION:
        return identity.value in (call.from_.extension_number, call.to.extension_number)
    return False


def matches_contact(call: CallRecord, contact: Contact) -> bool:
    return any(matches_identity(call, identity) for identity in contact.phone_identities)


def scan_local_calls(
    contact: Contact,
    records: Iterable[CallRecord],
    since: datetime,
) -> list[CallRecord]:
    """Return records matching *contact* that started strictly after *since*.

    Source order is preserved and duplicates are left in place.
    """
    return [
        call
        for call in records
        if call.has_endpoints and matches_contact(call, contact) and call.start_time > since
    ]


def window_start(day_span: int, now: datetime | None = None) -> datetime:
    """Start of the recency window: *day_span* days ago, at midnight UTC."""
    current = now if now is not None else datetime.now(UTC)
    if current.tzinfo is None:
        current = current.replace(tzinfo=UTC)
    start = current.astimezone(UTC) - timedelta(days=day_span)
    return start.replace(hour=0, minute=0, second=0, microsecond=0)
