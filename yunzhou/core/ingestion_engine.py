"""Sync Orchestrator — drives a full import and keeps cached metadata fresh.

An import runs extract -> detect table type -> map/normalize -> bulk write
-> append upload history -> refresh metadata. Committed rows are never rolled
back: when the write aborts, the rows before the failing offset stay in the
store, a failed history record is appended and the error propagates to the
caller, who decides whether to resubmit.

Every stage runs on the caller's thread, so one import is strictly ordered.
The API layer runs it from a worker thread.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx

from yunzhou.core.bulk_writer import BatchPolicy, BulkWriter, ProgressCallback
from yunzhou.core.config import settings
from yunzhou.core.config_store import ConfigStore
from yunzhou.core.dates import lookback_window, normalize_date, today_in
from yunzhou.core.excel_parser import parse_excel
from yunzhou.core.exceptions import (
    NoValidDataError,
    StoreRequestError,
    TableTypeMismatchError,
    WriteError,
)
from yunzhou.core.hot_cache import HotCache, HotCacheSnapshot, build_snapshot
from yunzhou.core.id_gen import generate_id
from yunzhou.core.models import (
    PRIMARY_TABLE,
    Shop,
    TableStats,
    TableType,
    UploadHistoryRecord,
    UploadStatus,
)
from yunzhou.core.normalizer import check_required_columns, normalize_rows
from yunzhou.core.schema_registry import SchemaRegistry, detect_table_type
from yunzhou.core.store_client import StoreClient, create_store_client

logger = logging.getLogger(__name__)

HISTORY_KEY = "upload_history"
SHOPS_KEY = "dim_shops"

# Called with (detected, requested); True redirects the import to the detected table.
RedirectDecision = Callable[[TableType, TableType], bool]


@dataclass
class ImportResult:
    """Result of a completed import."""
    history: UploadHistoryRecord
    table_type: TableType
    rows_written: int
    skipped_count: int
    redirected_from: Optional[TableType] = None


class SyncOrchestrator:
    """Owns the store handle, the hot cache and the import workflow."""

    def __init__(
        self,
        store: Optional[StoreClient],
        config_store: ConfigStore,
        schema_registry: SchemaRegistry,
        hot_cache: Optional[HotCache] = None,
        policy: Optional[BatchPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        today: Optional[Callable[[], str]] = None,
    ):
        self._store = store
        self._config_store = config_store
        self._schema_registry = schema_registry
        self._hot_cache = hot_cache or HotCache()
        self._policy = policy
        self._sleep = sleep
        self._today = today or (lambda: today_in(settings.business_timezone))

    # -----------------------------------------------------------------------
    # Store handle
    # -----------------------------------------------------------------------

    @property
    def store(self) -> Optional[StoreClient]:
        return self._store

    @property
    def hot_cache(self) -> HotCache:
        return self._hot_cache

    @property
    def schema_registry(self) -> SchemaRegistry:
        return self._schema_registry

    def reconfigure_store(self, url: str, api_key: str) -> StoreClient:
        """Swap in a client for new connection settings.

        Raises ConnectionUnavailableError (and keeps the old client) if the
        settings are unusable.
        """
        client = create_store_client(url, api_key)
        self.reset_store()
        self._store = client
        return client

    def reset_store(self) -> None:
        if self._store is not None:
            self._store.close()
            self._store = None

    # -----------------------------------------------------------------------
    # Directories and history
    # -----------------------------------------------------------------------

    def load_shops(self) -> list[Shop]:
        return [Shop(**s) for s in self._config_store.get(SHOPS_KEY, [])]

    def save_shops(self, shops: list[Shop]) -> None:
        self._config_store.set(SHOPS_KEY, [s.model_dump(mode="json") for s in shops])

    def load_history(self) -> list[UploadHistoryRecord]:
        return [UploadHistoryRecord(**r) for r in self._config_store.get(HISTORY_KEY, [])]

    def _append_history(self, record: UploadHistoryRecord) -> None:
        history = [record] + self.load_history()
        history = history[:settings.upload_history_limit]
        self._config_store.set(HISTORY_KEY, [r.model_dump(mode="json") for r in history])

    # -----------------------------------------------------------------------
    # Import
    # -----------------------------------------------------------------------

    def resolve_target(
        self,
        headers: list[str],
        requested: TableType,
        confirm_redirect: Optional[RedirectDecision] = None,
    ) -> tuple[TableType, Optional[TableType]]:
        """Return (effective table, requested table if redirected else None)."""
        detected, scores = detect_table_type(headers, self._schema_registry.get_all())
        logger.debug(f"Header match scores: {scores}")
        if detected is None or detected == requested:
            return requested, None
        if confirm_redirect is None:
            raise TableTypeMismatchError(detected.value, requested.value)
        if confirm_redirect(detected, requested):
            logger.info(f"Import redirected from '{requested.value}' to '{detected.value}'")
            return detected, requested
        return requested, None

    def run_import(
        self,
        content: bytes,
        file_name: str,
        target: TableType,
        shop_id: Optional[str] = None,
        confirm_redirect: Optional[RedirectDecision] = None,
        progress: Optional[ProgressCallback] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> ImportResult:
        """Run a full import of one spreadsheet into one fact table.

        Steps:
        1. Extract headers and raw rows from the first sheet
        2. Detect the table type; a mismatch is redirected or refused
        3. Map, coerce and validate rows against the table schema
        4. Bulk-upsert the valid rows
        5. Append an upload history record
        6. Refresh table statistics and the hot cache
        """
        table = parse_excel(content, file_name)
        if not table.data:
            raise NoValidDataError(total_rows=0)

        effective, redirected_from = self.resolve_target(table.headers, target, confirm_redirect)
        check_required_columns(effective, table.headers)

        schema = self._schema_registry.get_schema(effective)
        mapped = normalize_rows(
            table.data, effective, schema,
            shop_id=shop_id, shops=self.load_shops(),
        )

        writer = BulkWriter(self._store, policy=self._policy, sleep=self._sleep)
        try:
            written = writer.write(
                effective.fact_table, mapped.valid_rows,
                progress=progress, should_stop=should_stop,
            )
        except WriteError as e:
            self._append_history(self._history_record(
                file_name, len(content), e.offset, effective,
                UploadStatus.FAILED, mapped.skipped_count, e.message,
            ))
            self.try_refresh_metadata()
            raise

        record = self._history_record(
            file_name, len(content), written, effective,
            UploadStatus.SUCCESS, mapped.skipped_count,
        )
        self._append_history(record)
        logger.info(
            f"Imported {written} rows from '{file_name}' into {effective.fact_table} "
            f"({mapped.skipped_count} skipped)"
        )
        self.try_refresh_metadata()

        return ImportResult(
            history=record,
            table_type=effective,
            rows_written=written,
            skipped_count=mapped.skipped_count,
            redirected_from=redirected_from,
        )

    @staticmethod
    def _history_record(
        file_name: str,
        file_size: int,
        row_count: int,
        table_type: TableType,
        status: UploadStatus,
        skipped_count: int,
        error_message: Optional[str] = None,
    ) -> UploadHistoryRecord:
        return UploadHistoryRecord(
            id=generate_id("up_"),
            file_name=file_name,
            file_size=file_size,
            row_count=row_count,
            upload_time=datetime.now(timezone.utc),
            status=status,
            target_table=table_type,
            skipped_count=skipped_count,
            error_message=error_message,
        )

    # -----------------------------------------------------------------------
    # Metadata and hot cache
    # -----------------------------------------------------------------------

    def refresh_metadata(self) -> HotCacheSnapshot:
        """Recompute table stats and reload the hot window, then swap the snapshot.

        The window is anchored on the latest date stored in the primary table,
        falling back to today when it is empty.
        """
        store = self._store
        stats: dict[TableType, TableStats] = {}
        rows: dict[TableType, list[dict[str, Any]]] = {}

        if store is None:
            logger.warning("Store not configured, publishing empty metadata")
            anchor = self._today()
            start, end = lookback_window(anchor, settings.hot_window_days)
            stats = {t: TableStats() for t in TableType}
        else:
            for table_type in TableType:
                latest = store.latest_date(table_type.fact_table)
                stats[table_type] = TableStats(
                    count=store.count_rows(table_type.fact_table),
                    latest_date=normalize_date(latest),
                )
            anchor = stats[PRIMARY_TABLE].latest_date or self._today()
            start, end = lookback_window(anchor, settings.hot_window_days)
            for table_type in TableType:
                rows[table_type] = store.fetch_range(table_type.fact_table, start, end)

        snapshot = build_snapshot(
            anchor_date=anchor,
            window_start=start,
            window_end=end,
            stats=stats,
            rows=rows,
            refreshed_at=datetime.now(timezone.utc),
        )
        self._hot_cache.replace(snapshot)
        logger.info(
            f"Metadata refreshed: hot window {start}..{end}, "
            f"{sum(len(r) for r in rows.values())} rows cached"
        )
        return snapshot

    def try_refresh_metadata(self) -> None:
        """Refresh, logging store failures; a failed refresh leaves the previous snapshot."""
        try:
            self.refresh_metadata()
        except (StoreRequestError, httpx.HTTPError) as e:
            logger.error(f"Metadata refresh failed, cache left stale: {e}")

    # -----------------------------------------------------------------------
    # Administrative primitives
    # -----------------------------------------------------------------------

    def fetch_table_rows(self, table_type: TableType) -> list[dict[str, Any]]:
        if self._store is None:
            return []
        return self._store.fetch_all(table_type.fact_table)

    def delete_rows(self, table_type: TableType, ids: list[Any]) -> None:
        if self._store is None:
            logger.warning("Store not configured, delete ignored")
            return
        self._store.delete_rows(table_type.fact_table, ids)
        logger.info(f"Deleted {len(ids)} rows from {table_type.fact_table}")
        self.try_refresh_metadata()

    def clear_table(self, table_type: TableType) -> None:
        if self._store is None:
            logger.warning("Store not configured, clear ignored")
            return
        self._store.delete_all(table_type.fact_table)
        logger.info(f"Cleared {table_type.fact_table}")
        self.try_refresh_metadata()
