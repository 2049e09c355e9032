"""
BharatCRM - Tolerance-window matching

Shared pattern for fuzzy dedupe on a timestamped key:
  1. fetch a small candidate set bounded by a time window in the query
  2. apply a tolerance predicate in process, return the first hit

Used for device call logs (same user + phone, start +/- 10s, duration +/- 5s).
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from config import to_utc_iso

DEFAULT_CANDIDATE_LIMIT = 10


def window_bounds(center, window_seconds: float):
    """(low_iso, high_iso) around center"""
    if isinstance(center, str):
        center = datetime.fromisoformat(to_utc_iso(center))
    low = center - timedelta(seconds=window_seconds)
    high = center + timedelta(seconds=window_seconds)
    return to_utc_iso(low), to_utc_iso(high)


async def find_within_window(
    collection,
    base_query: Dict[str, Any],
    time_field: str,
    center,
    window_seconds: float,
    predicate: Optional[Callable[[Dict[str, Any]], bool]] = None,
    projection: Optional[Dict[str, int]] = None,
    limit: int = DEFAULT_CANDIDATE_LIMIT,
) -> Optional[Dict[str, Any]]:
    low, high = window_bounds(center, window_seconds)
    query = {**base_query, time_field: {"$gte": low, "$lte": high}}

    candidates = await collection.find(query, projection or {"_id": 0}).limit(limit).to_list(limit)

    for candidate in candidates:
        if predicate is None or predicate(candidate):
            return candidate
    return None


def within_tolerance(a, b, tolerance) -> bool:
    return abs((a or 0) - (b or 0)) <= tolerance
