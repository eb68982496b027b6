"""Fact table endpoints — stats, hot-window rows, refresh and deletes."""

import logging

from fastapi import APIRouter, Depends

from yunzhou.api.deps import get_orchestrator, get_table_type, http_error
from yunzhou.core.exceptions import IngestionError
from yunzhou.core.hot_cache import HotCacheSnapshot
from yunzhou.core.ingestion_engine import SyncOrchestrator
from yunzhou.core.models import DeleteRowsRequest, MetadataResponse, TableType

logger = logging.getLogger(__name__)

router = APIRouter()


def _metadata(snapshot: HotCacheSnapshot) -> MetadataResponse:
    return MetadataResponse(
        anchor_date=snapshot.anchor_date,
        window_start=snapshot.window_start,
        window_end=snapshot.window_end,
        refreshed_at=snapshot.refreshed_at,
        stats={t.value: snapshot.stats_for(t) for t in TableType},
        hot_row_counts={t.value: len(snapshot.rows_for(t)) for t in TableType},
    )


def _current_snapshot(orchestrator: SyncOrchestrator) -> HotCacheSnapshot:
    snapshot = orchestrator.hot_cache.snapshot
    if snapshot is None:
        snapshot = orchestrator.refresh_metadata()
    return snapshot


@router.get("/tables", response_model=MetadataResponse)
def get_metadata(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Row counts, latest dates and the current hot window."""
    return _metadata(_current_snapshot(orchestrator))


@router.post("/tables/refresh", response_model=MetadataResponse)
def refresh_metadata(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    try:
        snapshot = orchestrator.refresh_metadata()
    except IngestionError as e:
        raise http_error(e)
    return _metadata(snapshot)


@router.get("/tables/{table}/rows")
def get_hot_rows(
    table_type: TableType = Depends(get_table_type),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Rows of this table inside the hot window."""
    snapshot = _current_snapshot(orchestrator)
    return {
        "table_type": table_type.value,
        "window_start": snapshot.window_start,
        "window_end": snapshot.window_end,
        "rows": list(snapshot.rows_for(table_type)),
    }


@router.post("/tables/{table}/delete")
def delete_rows(
    body: DeleteRowsRequest,
    table_type: TableType = Depends(get_table_type),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    try:
        orchestrator.delete_rows(table_type, body.ids)
    except IngestionError as e:
        raise http_error(e)
    return {"deleted": len(body.ids)}


@router.delete("/tables/{table}")
def clear_table(
    table_type: TableType = Depends(get_table_type),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Delete every row of a fact table."""
    try:
        orchestrator.clear_table(table_type)
    except IngestionError as e:
        raise http_error(e)
    logger.info(f"Table '{table_type.fact_table}' cleared via API")
    return {"cleared": table_type.value}
