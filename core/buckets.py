"""Bucket key calculation for time-slotted event storage."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from contracts.events import as_utc

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _check_size(bucket_minutes: int) -> None:
    if bucket_minutes <= 0:
        raise ValueError(f"bucket_minutes must be positive, got {bucket_minutes}")


def align_down(timestamp: datetime, minutes: int) -> datetime:
    """Floor ``timestamp`` to a multiple of ``minutes`` since the Unix epoch."""
    _check_size(minutes)
    step = timedelta(minutes=minutes)
    offset = as_utc(timestamp) - _EPOCH
    return _EPOCH + (offset // step) * step


def align_up(timestamp: datetime, minutes: int) -> datetime:
    """Ceil ``timestamp`` to a multiple of ``minutes`` since the Unix epoch."""
    floor = align_down(timestamp, minutes)
    if floor == as_utc(timestamp):
        return floor
    return floor + timedelta(minutes=minutes)


def format_bucket_id(tenant_id: str, slot_start: datetime) -> str:
    return f"{tenant_id}_{slot_start:%Y%m%d}_{slot_start:%H%M}"


def bucket_id(tenant_id: str, timestamp: datetime, bucket_minutes: int) -> str:
    """Id of the bucket holding ``timestamp``: ``{tenant}_{YYYYMMDD}_{HHMM}``."""
    return format_bucket_id(tenant_id, align_down(timestamp, bucket_minutes))


def bucket_bounds(timestamp: datetime, bucket_minutes: int) -> tuple[datetime, datetime]:
    start = align_down(timestamp, bucket_minutes)
    return start, start + timedelta(minutes=bucket_minutes)


def bucket_range(
    tenant_id: str,
    start: datetime,
    end: datetime,
    bucket_minutes: int,
) -> list[str]:
    """
    Ordered bucket ids whose slots cover ``[start, end]``.

    Every slot starting at or before ``end`` is included, beginning with the
    slot that contains ``start``. Returns an empty list when ``end < start``.
    """
    _check_size(bucket_minutes)
    start_utc = as_utc(start)
    end_utc = as_utc(end)
    if end_utc < start_utc:
        return []

    step = timedelta(minutes=bucket_minutes)
    current = align_down(start_utc, bucket_minutes)
    ids: list[str] = []
    while current <= end_utc:
        ids.append(format_bucket_id(tenant_id, current))
        current += step
    return ids
