"""Error taxonomy for the ingestion pipeline.

Row-level anomalies never raise: they are zero-filled or counted as skipped.
Everything here is structural (bad file, no usable rows, a write the store
refused) and propagates to the orchestrator and on to the caller.
"""

from typing import Any, Optional


class IngestionError(Exception):
    """Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or "INGESTION_ERROR"
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

class ExtractionError(IngestionError):
    """The spreadsheet could not be read. The user must supply another file."""

    def __init__(self, message: str, code: str = "EXTRACTION_ERROR", details: Optional[dict] = None):
        super().__init__(message, code=code, details=details)


class NoSheetError(ExtractionError):
    def __init__(self):
        super().__init__("The uploaded file does not contain any worksheet.", code="NO_SHEET")


class MissingWorksheetError(ExtractionError):
    def __init__(self, sheet_name: str):
        self.sheet_name = sheet_name
        super().__init__(
            f"Worksheet '{sheet_name}' was not found or is empty.",
            code="MISSING_WORKSHEET",
            details={"sheet_name": sheet_name},
        )


class UnsupportedFileError(ExtractionError):
    def __init__(self, file_name: str):
        super().__init__(
            f"Unsupported file '{file_name}': only .xls and .xlsx are accepted.",
            code="UNSUPPORTED_FILE",
            details={"file_name": file_name},
        )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class DataValidationError(IngestionError):
    def __init__(self, message: str, code: str = "VALIDATION_ERROR", details: Optional[dict] = None):
        super().__init__(message, code=code, details=details)


class NoValidDataError(DataValidationError):
    """Every row failed the required-field gate."""

    def __init__(self, total_rows: int, missing_fields: Optional[list[str]] = None):
        self.total_rows = total_rows
        self.missing_fields = missing_fields or []
        message = f"No valid rows found in {total_rows} data rows."
        if self.missing_fields:
            message += f" Most commonly missing: {', '.join(self.missing_fields)}"
        super().__init__(
            message,
            code="NO_VALID_DATA",
            details={"total_rows": total_rows, "missing_fields": self.missing_fields},
        )


class MissingColumnsError(DataValidationError):
    def __init__(self, table_type: str, missing: list[str]):
        self.table_type = table_type
        self.missing = missing
        super().__init__(
            f"Files for '{table_type}' must contain the columns: {', '.join(missing)}",
            code="MISSING_COLUMNS",
            details={"table_type": table_type, "missing": missing},
        )


class TableTypeMismatchError(IngestionError):
    """The file looks like a different table than the one selected."""

    def __init__(self, detected: str, requested: str):
        self.detected = detected
        self.requested = requested
        super().__init__(
            f"File headers match '{detected}' but '{requested}' was selected.",
            code="TABLE_TYPE_MISMATCH",
            details={"detected": detected, "requested": requested},
        )


# ---------------------------------------------------------------------------
# Remote store and writes
# ---------------------------------------------------------------------------

class ConnectionUnavailableError(IngestionError):
    def __init__(self, reason: str = "Remote store is not configured."):
        super().__init__(reason, code="CONNECTION_UNAVAILABLE")


class StoreRequestError(IngestionError):
    """The remote store answered with an HTTP error."""

    def __init__(
        self,
        status_code: int,
        message: str,
        store_code: Optional[str] = None,
        store_details: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        self.status_code = status_code
        self.store_code = store_code
        self.store_details = store_details
        self.hint = hint
        super().__init__(
            message,
            code="STORE_REQUEST_ERROR",
            details={
                "status_code": status_code,
                "store_code": store_code,
                "store_details": store_details,
                "hint": hint,
            },
        )


class WriteError(IngestionError):
    """A bulk write aborted. Rows before ``offset`` are committed."""

    def __init__(self, message: str, table: str, offset: int, code: str = "WRITE_ERROR", cause: Optional[str] = None):
        self.table = table
        self.offset = offset
        self.cause = cause
        super().__init__(
            message,
            code=code,
            details={"table": table, "offset": offset, "cause": cause},
        )


class TransientWriteError(WriteError):
    """Transient failures persisted down to a batch size of one."""

    def __init__(self, table: str, offset: int, cause: str):
        super().__init__(
            f"Write to '{table}' failed at row {offset} after shrinking the batch to a single row: {cause}",
            table=table, offset=offset, code="TRANSIENT_RETRIES_EXHAUSTED", cause=cause,
        )


class WritePermissionError(WriteError):
    def __init__(self, table: str, offset: int, cause: str):
        super().__init__(
            f"Write to '{table}' rejected at row {offset}: permission denied. "
            f"Grant insert/update policies on the table for this API key.",
            table=table, offset=offset, code="WRITE_PERMISSION_DENIED", cause=cause,
        )


class SchemaMismatchError(WriteError):
    def __init__(self, table: str, offset: int, cause: str, column: Optional[str] = None):
        self.column = column
        detail = f" (column: {column})" if column else ""
        super().__init__(
            f"Write to '{table}' rejected at row {offset}: the remote table is missing an expected column{detail}. {cause}",
            table=table, offset=offset, code="SCHEMA_MISMATCH", cause=cause,
        )


class FatalWriteError(WriteError):
    def __init__(self, table: str, offset: int, cause: str):
        super().__init__(
            f"Write to '{table}' failed at row {offset}: {cause}",
            table=table, offset=offset, code="WRITE_FAILED", cause=cause,
        )


class ImportCancelledError(WriteError):
    def __init__(self, table: str, offset: int):
        super().__init__(
            f"Write to '{table}' stopped by caller after {offset} rows.",
            table=table, offset=offset, code="IMPORT_CANCELLED",
        )
