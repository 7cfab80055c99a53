"""Sort, dedup and truncate candidate calls into a bounded result set."""

from __future__ import annotations

from collections.abc import Iterable

from recentcalls.models import CallRecord


def finalize_calls(records: Iterable[CallRecord], max_count: int) -> tuple[CallRecord, ...]:
    """Return at most *max_count* distinct calls, most recent first.

    Sorting happens before dedup, so when two records share an id the one
    with the later start time wins. Ties keep input order.
    """
    if max_count <= 0:
        return ()

    ordered = sorted(records, key=lambda call: call.start_time, reverse=True)
    seen: set[str] = set()
    result: list[CallRecord] = []
    for call in ordered:
        if call.id in seen:
            continue
        seen.add(call.id)
        result.append(call)
        if len(result) == max_count:
            break
    return tuple(result)
