"""
Sync bookkeeping for clients that poll a family's data.

The last sync time is owned by the caller and passed in explicitly, so
concurrent families never share state.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from household_analytics.core.exceptions import InvalidInputError
from household_analytics.models.expense import ExpenseRecord
from household_analytics.utils.bucketing import as_utc_naive

DATA_VERSION = 1
STALE_AFTER = timedelta(minutes=5)
DEFAULT_CHANGE_LIMIT = 100


@dataclass
class SyncStatus:
    last_sync: Optional[datetime]
    checked_at: datetime
    has_changes: bool
    changed_records: int
    total_records: int
    data_version: int = DATA_VERSION


@dataclass
class ChangeSet:
    since: Optional[datetime]
    last_sync: datetime
    expenses: List[ExpenseRecord] = field(default_factory=list)


def _changed_since(records: Iterable[ExpenseRecord], since: Optional[datetime]) -> List[ExpenseRecord]:
    if since is None:
        return list(records)
    return [r for r in records if r.timestamp is not None and as_utc_naive(r.timestamp) > since]


def get_sync_status(
    records: Iterable[ExpenseRecord],
    member_count: int,
    last_sync: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> SyncStatus:
    now = as_utc_naive(now) if now else datetime.utcnow()
    last_sync = as_utc_naive(last_sync) if last_sync else None
    records = list(records)
    changed = _changed_since(records, last_sync)

    # A client that has not synced for a while refreshes regardless
    stale = last_sync is None or last_sync < now - STALE_AFTER
    return SyncStatus(
        last_sync=last_sync,
        checked_at=now,
        has_changes=bool(changed) or stale,
        changed_records=len(changed),
        total_records=len(records) + member_count,
    )


def get_changes(
    records: Iterable[ExpenseRecord],
    since: Optional[datetime] = None,
    limit: int = DEFAULT_CHANGE_LIMIT,
    now: Optional[datetime] = None,
) -> ChangeSet:
    if limit < 1:
        raise InvalidInputError("limit must be at least 1")
    now = as_utc_naive(now) if now else datetime.utcnow()
    since = as_utc_naive(since) if since else None

    changed = _changed_since(records, since)
    changed.sort(key=lambda r: as_utc_naive(r.timestamp) if r.timestamp else datetime.min, reverse=True)
    return ChangeSet(since=since, last_sync=now, expenses=changed[:limit])
