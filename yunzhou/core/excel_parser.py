"""Tabular Extractor — reads the first worksheet of an uploaded spreadsheet.

.xlsx files are read with openpyxl, legacy .xls files with xlrd. The header
row is auto-detected within the first few rows, and every following row is
turned into a label -> raw value mapping aligned by column position.
"""

import io
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import openpyxl
import xlrd

from yunzhou.core.config import settings
from yunzhou.core.exceptions import (
    MissingWorksheetError,
    NoSheetError,
    UnsupportedFileError,
)

logger = logging.getLogger(__name__)

_XLSX_MAGIC = b"PK\x03\x04"
_XLS_MAGIC = b"\xd0\xcf\x11\xe0"


@dataclass
class ExtractedTable:
    """Header labels plus one raw row object per data line."""
    headers: list[str] = field(default_factory=list)
    data: list[dict[str, Any]] = field(default_factory=list)
    sheet_name: Optional[str] = None
    header_row_index: Optional[int] = None


def _detect_format(content: bytes, file_name: Optional[str]) -> str:
    """Return "xlsx" or "xls" from magic bytes, falling back to the extension."""
    if content.startswith(_XLSX_MAGIC):
        return "xlsx"
    if content.startswith(_XLS_MAGIC):
        return "xls"
    name = (file_name or "").lower()
    if name.endswith(".xlsx"):
        return "xlsx"
    if name.endswith(".xls"):
        return "xls"
    raise UnsupportedFileError(file_name or "<upload>")


def _read_xlsx_rows(content: bytes, sheet_name: Optional[str]) -> tuple[str, list[list[Any]]]:
    wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        if not wb.sheetnames:
            raise NoSheetError()
        name = sheet_name or wb.sheetnames[0]
        if name not in wb.sheetnames:
            raise MissingWorksheetError(name)
        ws = wb[name]
        rows = [list(row) for row in ws.iter_rows(values_only=True)]
        return name, rows
    finally:
        wb.close()


def _read_xls_rows(content: bytes, sheet_name: Optional[str]) -> tuple[str, list[list[Any]]]:
    book = xlrd.open_workbook(file_contents=content, formatting_info=False)
    if book.nsheets == 0:
        raise NoSheetError()
    names = book.sheet_names()
    name = sheet_name or names[0]
    if name not in names:
        raise MissingWorksheetError(name)
    sh = book.sheet_by_name(name)
    rows = []
    for i in range(sh.nrows):
        row = []
        for j in range(sh.ncols):
            if sh.cell_type(i, j) in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
                row.append(None)
            else:
                row.append(sh.cell_value(i, j))
        rows.append(row)
    return name, rows


def read_sheet_rows(
    content: bytes,
    file_name: Optional[str] = None,
    sheet_name: Optional[str] = None,
) -> tuple[str, list[list[Any]]]:
    """Read one worksheet (the first unless named) as a list of cell lists."""
    fmt = _detect_format(content, file_name)
    if fmt == "xlsx":
        return _read_xlsx_rows(content, sheet_name)
    return _read_xls_rows(content, sheet_name)


def _is_blank(cell: Any) -> bool:
    return cell is None or str(cell).strip() == ""


def find_header_row(rows: list[list[Any]], scan_rows: int) -> Optional[int]:
    """Index of the first row with at least one non-blank cell, within scan_rows."""
    for i, row in enumerate(rows[:scan_rows]):
        if row and any(not _is_blank(cell) for cell in row):
            return i
    return None


def _row_to_object(headers: list[str], row: list[Any]) -> dict[str, Any]:
    obj = {}
    for index, header in enumerate(headers):
        if header and index < len(row):
            obj[header] = row[index]
    return obj


def rows_to_table(rows: list[list[Any]], scan_rows: Optional[int] = None) -> ExtractedTable:
    """Turn raw cell rows into headers + row objects."""
    scan_rows = scan_rows or settings.header_scan_rows
    header_idx = find_header_row(rows, scan_rows)
    if header_idx is None:
        return ExtractedTable()

    headers = ["" if _is_blank(h) else str(h).strip() for h in rows[header_idx]]

    data = []
    for row in rows[header_idx + 1:]:
        if not row or all(cell is None for cell in row):
            continue
        obj = _row_to_object(headers, row)
        if not any(v is not None for v in obj.values()):
            continue
        data.append(obj)

    return ExtractedTable(headers=headers, data=data, header_row_index=header_idx)


def parse_excel(
    content: bytes,
    file_name: Optional[str] = None,
    sheet_name: Optional[str] = None,
    scan_rows: Optional[int] = None,
) -> ExtractedTable:
    """Parse a spreadsheet buffer into headers and raw row objects.

    Raises NoSheetError / MissingWorksheetError / UnsupportedFileError.
    A sheet without a header row inside the scan window yields an empty table.
    """
    name, rows = read_sheet_rows(content, file_name, sheet_name)
    table = rows_to_table(rows, scan_rows)
    table.sheet_name = name
    if table.header_row_index is None:
        logger.warning(f"No header row found in the first rows of sheet '{name}'")
    else:
        logger.info(
            f"Extracted {len(table.data)} rows from sheet '{name}' "
            f"(header at row {table.header_row_index})"
        )
    return table
