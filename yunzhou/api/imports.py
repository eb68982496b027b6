"""Import endpoints — spreadsheet upload and upload history.

Handlers are plain ``def`` so the blocking pipeline runs in the threadpool.
"""

import logging
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from yunzhou.api.deps import get_orchestrator, http_error
from yunzhou.core.exceptions import IngestionError
from yunzhou.core.ingestion_engine import SyncOrchestrator
from yunzhou.core.models import ImportResponse, TableType, UploadHistoryRecord

logger = logging.getLogger(__name__)

router = APIRouter()


class RedirectMode(str, Enum):
    ASK = "ask"        # refuse with 409 so the client can ask the user
    ACCEPT = "accept"  # import into the detected table
    IGNORE = "ignore"  # import into the requested table anyway


@router.post("/imports", response_model=ImportResponse)
def create_import(
    file: UploadFile = File(...),
    table_type: TableType = Form(...),
    shop_id: Optional[str] = Form(None),
    redirect: RedirectMode = Form(RedirectMode.ASK),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Upload an Excel file and import it into a fact table.

    - **file**: Excel file (.xlsx or .xls)
    - **table_type**: target logical table
    - **shop_id**: optional shop id from the shop directory
    - **redirect**: what to do when the headers match another table
    """
    if not file.filename or not file.filename.lower().endswith((".xlsx", ".xls")):
        raise HTTPException(status_code=400, detail="Only Excel files (.xlsx, .xls) are supported")

    content = file.file.read()

    confirm = None
    if redirect != RedirectMode.ASK:
        def confirm(detected: TableType, requested: TableType) -> bool:
            return redirect == RedirectMode.ACCEPT

    try:
        result = orchestrator.run_import(
            content,
            file.filename,
            table_type,
            shop_id=shop_id,
            confirm_redirect=confirm,
        )
    except IngestionError as e:
        logger.error(f"Import of '{file.filename}' failed: {e.message}")
        raise http_error(e)

    message = f"Imported {result.rows_written} rows into {result.table_type.display_name}"
    if result.skipped_count:
        message += f", skipped {result.skipped_count} rows"

    return ImportResponse(
        history_id=result.history.id,
        table_type=result.table_type,
        rows_written=result.rows_written,
        skipped_count=result.skipped_count,
        redirected_from=result.redirected_from,
        message=message,
    )


@router.get("/imports/history", response_model=list[UploadHistoryRecord])
def list_history(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Recent uploads, newest first."""
    return orchestrator.load_history()
