"""FastAPI dependencies for collaborator lookup and table type validation."""

from fastapi import HTTPException, Path, Request

from yunzhou.core.exceptions import (
    ConnectionUnavailableError,
    DataValidationError,
    ExtractionError,
    IngestionError,
    StoreRequestError,
    TableTypeMismatchError,
    WriteError,
    WritePermissionError,
)
from yunzhou.core.ingestion_engine import SyncOrchestrator
from yunzhou.core.models import TableType
from yunzhou.core.schema_registry import SchemaRegistry


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


def get_schema_registry(request: Request) -> SchemaRegistry:
    return request.app.state.schema_registry


async def get_table_type(
    table: str = Path(..., description="Logical table type", min_length=1, max_length=32)
) -> TableType:
    """Extract and validate the logical table type from the URL path.

    Raises 404 for unknown table types.
    """
    try:
        return TableType(table)
    except ValueError:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown table type: '{table}'. "
                   f"Expected one of: {', '.join(t.value for t in TableType)}"
        )


def http_error(e: IngestionError) -> HTTPException:
    """Map a pipeline error onto an HTTP status code."""
    if isinstance(e, TableTypeMismatchError):
        status = 409
    elif isinstance(e, (ExtractionError, DataValidationError)):
        status = 422 if isinstance(e, DataValidationError) else 400
    elif isinstance(e, WritePermissionError):
        status = 403
    elif isinstance(e, ConnectionUnavailableError):
        status = 503
    elif isinstance(e, (WriteError, StoreRequestError)):
        status = 502
    else:
        status = 500
    return HTTPException(status_code=status, detail=e.to_dict())
