"""In-memory hot cache of recent fact rows plus per-table statistics.

A snapshot is immutable and replaced wholesale, so readers either see the
previous snapshot or the new one, never a mix.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping, Optional

from yunzhou.core.models import TableStats, TableType


@dataclass(frozen=True)
class HotCacheSnapshot:
    anchor_date: str
    window_start: str
    window_end: str
    stats: Mapping[TableType, TableStats] = field(default_factory=dict)
    rows: Mapping[TableType, tuple[dict[str, Any], ...]] = field(default_factory=dict)
    refreshed_at: Optional[datetime] = None

    def rows_for(self, table_type: TableType) -> tuple[dict[str, Any], ...]:
        return self.rows.get(table_type, ())

    def stats_for(self, table_type: TableType) -> TableStats:
        return self.stats.get(table_type, TableStats())


def build_snapshot(
    anchor_date: str,
    window_start: str,
    window_end: str,
    stats: dict[TableType, TableStats],
    rows: dict[TableType, list[dict[str, Any]]],
    refreshed_at: Optional[datetime] = None,
) -> HotCacheSnapshot:
    return HotCacheSnapshot(
        anchor_date=anchor_date,
        window_start=window_start,
        window_end=window_end,
        stats=MappingProxyType(dict(stats)),
        rows=MappingProxyType({t: tuple(r) for t, r in rows.items()}),
        refreshed_at=refreshed_at,
    )


class HotCache:
    """Process-wide holder of the current snapshot."""

    def __init__(self, snapshot: Optional[HotCacheSnapshot] = None):
        self._lock = threading.Lock()
        self._snapshot = snapshot

    @property
    def snapshot(self) -> Optional[HotCacheSnapshot]:
        with self._lock:
            return self._snapshot

    def replace(self, snapshot: HotCacheSnapshot) -> None:
        with self._lock:
            self._snapshot = snapshot
