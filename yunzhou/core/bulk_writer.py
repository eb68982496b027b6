"""Adaptive Bulk Writer — idempotent, self-tuning upserts into the remote store.

Rows are cleansed once, then written in slices. The slice size starts small,
grows by a fixed factor after every committed slice (capped), and halves
after a transient failure while the same slice is retried from the same
cursor. The cursor only moves after the store confirms a slice, and every
slice is an upsert on the table's conflict key, so a retried slice never
duplicates data.

The batch bookkeeping is an explicit state value (``BatchState``) advanced
by pure transition functions, so the grow/shrink rules can be checked on
their own.
"""

import logging
import math
import re
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

import httpx

from yunzhou.core.config import settings
from yunzhou.core.dates import format_instant, normalize_date
from yunzhou.core.exceptions import (
    ConnectionUnavailableError,
    FatalWriteError,
    ImportCancelledError,
    SchemaMismatchError,
    StoreRequestError,
    TransientWriteError,
    WriteError,
    WritePermissionError,
)
from yunzhou.core.store_client import StoreClient

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

FACT_TABLES = {"fact_shangzhi", "fact_jingzhuntong", "fact_customer_service"}
IDENTITY_FIELD = "id"
UPDATED_AT_FIELD = "updated_at"
ACCOUNT_FIELD = "account_nickname"
ACCOUNT_FALLBACK = "UNKNOWN_ACCOUNT"

# Must match the unique constraints declared on the remote tables.
CONFLICT_KEYS: dict[str, str] = {
    "fact_shangzhi": "date,sku_code",
    "fact_jingzhuntong": "date,account_nickname,tracked_sku_id,cost",
    "fact_customer_service": "date,agent_account",
    "dim_skus": "code",
    "dim_shops": "id",
}

_PERMISSION_CODES = {"42501"}
_SCHEMA_CODES = {"PGRST204", "42703"}
_TRANSIENT_STATUS = {413, 502, 503, 504}
_COLUMN_RE = re.compile(r"""['"]([^'"]+)['"] column|column ['"]([^'"]+)['"]""")


def conflict_key_for(table: str) -> Optional[str]:
    return CONFLICT_KEYS.get(table)


# ---------------------------------------------------------------------------
# Batch state machine
# ---------------------------------------------------------------------------

class BatchPhase(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    COMMITTED = "committed"
    SHRINK_AND_RETRY = "shrink_and_retry"
    FATAL_ABORT = "fatal_abort"


@dataclass(frozen=True)
class BatchPolicy:
    initial_size: int = 20
    max_size: int = 100
    growth_factor: float = 1.1
    throttle_seconds: float = 0.05
    cooldown_seconds: float = 2.0

    @classmethod
    def from_settings(cls) -> "BatchPolicy":
        return cls(
            initial_size=settings.initial_batch_size,
            max_size=settings.max_batch_size,
            growth_factor=settings.batch_growth_factor,
            throttle_seconds=settings.throttle_seconds,
            cooldown_seconds=settings.cooldown_seconds,
        )


@dataclass(frozen=True)
class BatchState:
    cursor: int = 0
    batch_size: int = 20
    phase: BatchPhase = BatchPhase.IDLE
    attempts: int = 0


def start_state(policy: BatchPolicy) -> BatchState:
    size = max(1, min(policy.initial_size, policy.max_size))
    return BatchState(cursor=0, batch_size=size)


def grow_batch_size(size: int, policy: BatchPolicy) -> int:
    """Multiply by the growth factor (always at least +1), capped at max_size."""
    return min(policy.max_size, max(size + 1, int(size * policy.growth_factor)))


def shrink_batch_size(size: int) -> int:
    return max(1, size // 2)


def begin_attempt(state: BatchState) -> BatchState:
    return replace(state, phase=BatchPhase.ATTEMPTING, attempts=state.attempts + 1)


def on_success(state: BatchState, committed: int, policy: BatchPolicy) -> BatchState:
    return replace(
        state,
        cursor=state.cursor + committed,
        batch_size=grow_batch_size(state.batch_size, policy),
        phase=BatchPhase.COMMITTED,
    )


def on_transient_failure(state: BatchState) -> BatchState:
    return replace(state, batch_size=shrink_batch_size(state.batch_size), phase=BatchPhase.SHRINK_AND_RETRY)


def on_fatal(state: BatchState) -> BatchState:
    return replace(state, phase=BatchPhase.FATAL_ABORT)


def next_slice(state: BatchState, total: int) -> tuple[int, int]:
    return state.cursor, min(total, state.cursor + state.batch_size)


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMISSION = "permission"
    SCHEMA = "schema"
    OTHER = "other"


def classify_error(exc: BaseException) -> ErrorKind:
    """Decide whether a failed slice is worth retrying with a smaller batch."""
    if isinstance(exc, httpx.TransportError):
        return ErrorKind.TRANSIENT

    message = str(exc).lower()
    if isinstance(exc, StoreRequestError):
        if exc.status_code in (401, 403) or exc.store_code in _PERMISSION_CODES:
            return ErrorKind.PERMISSION
        if exc.store_code in _SCHEMA_CODES:
            return ErrorKind.SCHEMA
        if exc.status_code in _TRANSIENT_STATUS:
            return ErrorKind.TRANSIENT

    if "row-level security" in message or "permission denied" in message:
        return ErrorKind.PERMISSION
    if "column" in message and ("does not exist" in message or "could not find" in message):
        return ErrorKind.SCHEMA
    if "payload too large" in message or "failed to fetch" in message or "network" in message:
        return ErrorKind.TRANSIENT
    return ErrorKind.OTHER


def _missing_column(exc: BaseException) -> Optional[str]:
    match = _COLUMN_RE.search(str(exc))
    if not match:
        return None
    return match.group(1) or match.group(2)


def _fatal_error(kind: ErrorKind, table: str, offset: int, exc: BaseException) -> WriteError:
    cause = str(exc) or exc.__class__.__name__
    if kind == ErrorKind.TRANSIENT:
        return TransientWriteError(table, offset, cause)
    if kind == ErrorKind.PERMISSION:
        return WritePermissionError(table, offset, cause)
    if kind == ErrorKind.SCHEMA:
        return SchemaMismatchError(table, offset, cause, column=_missing_column(exc))
    return FatalWriteError(table, offset, cause)


# ---------------------------------------------------------------------------
# Pre-write cleansing
# ---------------------------------------------------------------------------

def _is_date_key(key: str) -> bool:
    return key == "date" or key.endswith("_date")


def _clean_value(key: str, value: Any) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    if value is not None and _is_date_key(key):
        return normalize_date(value) or value
    return value


def merge_duplicates(table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Collapse rows sharing the table's conflict key; later values win.

    One upsert request must not touch the same key twice.
    """
    on_conflict = conflict_key_for(table)
    if not on_conflict:
        return rows
    columns = on_conflict.split(",")
    merged: dict[tuple, dict[str, Any]] = {}
    for row in rows:
        identity = tuple(row.get(c) for c in columns)
        if identity in merged:
            merged[identity].update(row)
        else:
            merged[identity] = dict(row)
    if len(merged) < len(rows):
        logger.info(f"Merged {len(rows) - len(merged)} duplicate rows for '{table}'")
    return list(merged.values())


def prepare_rows(table: str, rows: list[dict[str, Any]], now: Optional[datetime] = None) -> list[dict[str, Any]]:
    """Cleanse rows once before writing.

    Drops client identities on fact tables, normalizes dates, zero-fills
    non-finite numbers, stamps updated_at, merges rows sharing a conflict
    key and pads every row to the same column set (bulk requests need
    uniform keys).
    """
    stamp = format_instant(now or datetime.now(timezone.utc))
    strip_identity = table in FACT_TABLES

    prepared = []
    columns: dict[str, None] = {}
    for row in rows:
        out = {}
        for key, value in row.items():
            if strip_identity and key == IDENTITY_FIELD:
                continue
            out[key] = _clean_value(key, value)
        if table == "fact_jingzhuntong" and not out.get(ACCOUNT_FIELD):
            out[ACCOUNT_FIELD] = ACCOUNT_FALLBACK
        out[UPDATED_AT_FIELD] = stamp
        prepared.append(out)

    prepared = merge_duplicates(table, prepared)
    for row in prepared:
        columns.update(dict.fromkeys(row))
    return [{col: row.get(col) for col in columns} for row in prepared]


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------

class BulkWriter:
    """Writes one table's rows with adaptive batching. One instance per import."""

    def __init__(
        self,
        store: Optional[StoreClient],
        policy: Optional[BatchPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self._policy = policy or BatchPolicy.from_settings()
        self._sleep = sleep

    def write(
        self,
        table: str,
        rows: list[dict[str, Any]],
        progress: Optional[ProgressCallback] = None,
        should_stop: Optional[Callable[[], bool]] = None,
        on_state: Optional[Callable[[BatchState], None]] = None,
    ) -> int:
        """Upsert every row or raise a WriteError naming the failing offset.

        Returns the number of rows committed.
        """
        if self._store is None:
            raise ConnectionUnavailableError()

        policy = self._policy
        prepared = prepare_rows(table, rows)
        total = len(prepared)
        on_conflict = conflict_key_for(table)
        if on_conflict is None:
            logger.warning(f"No conflict key for '{table}', writing with plain inserts")

        state = start_state(policy)
        if progress:
            progress(0, total)

        while state.cursor < total:
            if should_stop and should_stop():
                raise ImportCancelledError(table, state.cursor)

            self._sleep(policy.throttle_seconds)
            start, end = next_slice(state, total)
            state = begin_attempt(state)
            if on_state:
                on_state(state)

            try:
                self._store.upsert(table, prepared[start:end], on_conflict)
            except Exception as e:
                kind = classify_error(e)
                if kind == ErrorKind.TRANSIENT and state.batch_size > 1:
                    state = on_transient_failure(state)
                    if on_state:
                        on_state(state)
                    logger.warning(
                        f"Transient failure writing '{table}' rows {start}-{end}: {e}. "
                        f"Retrying with batch size {state.batch_size}"
                    )
                    self._sleep(policy.cooldown_seconds)
                    continue

                state = on_fatal(state)
                if on_state:
                    on_state(state)
                error = _fatal_error(kind, table, start, e)
                logger.error(f"Aborting write to '{table}': {error.message}")
                raise error from e

            state = on_success(state, end - start, policy)
            if on_state:
                on_state(state)
            if progress:
                progress(state.cursor, total)

        logger.info(f"Wrote {total} rows to '{table}' in {state.attempts} attempts")
        return total
