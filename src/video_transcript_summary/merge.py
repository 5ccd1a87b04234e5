"""Conflict resolution for summary records coming from different stores."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Sequence

from .models import SummaryRecord

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def parse_instant(value: str | None) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are UTC, unparseable ones sort oldest."""

    if not value:
        return _OLDEST
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return _OLDEST
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _sort_key(record: SummaryRecord) -> tuple[datetime, datetime]:
    return parse_instant(record.published_at), parse_instant(record.processed_at)


def merge_records(
    base: Iterable[SummaryRecord],
    overlay: Iterable[SummaryRecord],
) -> list[SummaryRecord]:
    """Merge two record collections keyed by ``url``.

    ``base`` seeds the result (usually the remote or previously published
    set). A record from ``overlay`` replaces the seeded one only when its
    ``processed_at`` is strictly newer. The result is ordered newest
    ``published_at`` first, ties broken by newest ``processed_at``.
    """

    by_key: dict[str, SummaryRecord] = {}
    for record in base:
        existing = by_key.get(record.key)
        if existing is None or parse_instant(record.processed_at) > parse_instant(existing.processed_at):
            by_key[record.key] = record

    for record in overlay:
        existing = by_key.get(record.key)
        if existing is None or parse_instant(record.processed_at) > parse_instant(existing.processed_at):
            by_key[record.key] = record

    return sorted(by_key.values(), key=_sort_key, reverse=True)


@dataclass(frozen=True)
class MergeStats:
    only_base: int
    only_overlay: int
    common: int
    total: int


def merge_stats(
    base: Sequence[SummaryRecord],
    overlay: Sequence[SummaryRecord],
    merged: Sequence[SummaryRecord],
) -> MergeStats:
    base_keys = {record.key for record in base}
    overlay_keys = {record.key for record in overlay}
    merged_keys = {record.key for record in merged}
    return MergeStats(
        only_base=len((merged_keys & base_keys) - overlay_keys),
        only_overlay=len((merged_keys & overlay_keys) - base_keys),
        common=len(merged_keys & base_keys & overlay_keys),
        total=len(merged),
    )
