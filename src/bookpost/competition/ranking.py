"""Deterministic weekly ranking with no dependence on read or arrival order.

Readers ranked by duration DESC, then by earlier account creation ASC,
then by user id ASC as the final tiebreaker, so the order is total.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

_FAR_FUTURE = datetime(2099, 12, 31, 23, 59, 59, tzinfo=timezone.utc)


def sort_key(entry: dict[str, Any]) -> tuple[int, datetime, int]:
    return (
        -entry.get("duration_seconds", 0),
        entry.get("created_at") or _FAR_FUTURE,
        entry["user_id"],
    )


def rank_entries(entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Rank entries deterministically by weekly duration.

    Input: list of dicts with at least:
        - user_id: int
        - duration_seconds: int
        - created_at: datetime (account creation, for tiebreaking)

    Output: same dicts sorted and augmented with ``rank`` (1-indexed).
    """
    ranked = sorted(entries, key=sort_key)
    for idx, entry in enumerate(ranked):
        entry["rank"] = idx + 1
    return ranked


def rank_change(rank: int, previous_rank: int | None) -> int | None:
    """Positive when the reader moved up; None for readers new this week."""
    if previous_rank is None:
        return None
    return previous_rank - rank
