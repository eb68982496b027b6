"""Pydantic models for schemas, directory entries, history and API payloads."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class FieldType(str, Enum):
    STRING = "STRING"
    INTEGER = "INTEGER"
    REAL = "REAL"
    NUMERIC = "NUMERIC"
    TIMESTAMP = "TIMESTAMP"


NUMERIC_TYPES = {FieldType.INTEGER, FieldType.REAL, FieldType.NUMERIC}


class TableType(str, Enum):
    SHANGZHI = "shangzhi"
    JINGZHUNTONG = "jingzhuntong"
    CUSTOMER_SERVICE = "customer_service"

    @property
    def fact_table(self) -> str:
        return f"fact_{self.value}"

    @property
    def display_name(self) -> str:
        return TABLE_DISPLAY_NAMES[self]


TABLE_DISPLAY_NAMES = {
    TableType.SHANGZHI: "商智",
    TableType.JINGZHUNTONG: "广告",
    TableType.CUSTOMER_SERVICE: "客服",
}

# Table whose latest date anchors the hot window.
PRIMARY_TABLE = TableType.SHANGZHI


class UploadStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


# --- Schema registry models ---


class FieldDefinition(BaseModel):
    key: str
    label: str
    type: FieldType = FieldType.STRING
    required: bool = False
    tags: list[str] = []


class TableSchema(BaseModel):
    table_type: TableType
    version: int = 1
    fields: list[FieldDefinition] = []

    def required_fields(self) -> list[FieldDefinition]:
        return [f for f in self.fields if f.required]

    def field(self, key: str) -> Optional[FieldDefinition]:
        for f in self.fields:
            if f.key == key:
                return f
        return None


# --- Directory / history ---


class Shop(BaseModel):
    id: str
    name: str
    platform: Optional[str] = None


class UploadHistoryRecord(BaseModel):
    id: str
    file_name: str
    file_size: int  # bytes
    row_count: int
    upload_time: datetime
    status: UploadStatus
    target_table: TableType
    skipped_count: int = 0
    error_message: Optional[str] = None


class TableStats(BaseModel):
    count: int = 0
    latest_date: Optional[str] = None


# --- API request/response models ---


class ImportResponse(BaseModel):
    history_id: str
    table_type: TableType
    rows_written: int
    skipped_count: int
    redirected_from: Optional[TableType] = None
    message: str


class SchemaUpdate(BaseModel):
    fields: list[FieldDefinition]


class DetectRequest(BaseModel):
    headers: list[str]


class DetectResponse(BaseModel):
    detected: Optional[TableType] = None
    scores: dict[str, float] = {}


class DeleteRowsRequest(BaseModel):
    ids: list[Any] = Field(..., min_length=1)


class StoreConnectionUpdate(BaseModel):
    url: str
    api_key: str


class MetadataResponse(BaseModel):
    anchor_date: str
    window_start: str
    window_end: str
    refreshed_at: Optional[datetime] = None
    stats: dict[str, TableStats] = {}
    hot_row_counts: dict[str, int] = {}
