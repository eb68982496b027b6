"""Field Mapper & Normalizer — raw spreadsheet rows to canonical rows.

Per raw row:
1. Resolve headers to field keys through the schema's labels, tags and keys
2. Read the business date from the date column (serials become YYYY-MM-DD)
3. Inject the shop name (explicit shop id first, else a shop column)
4. Map and coerce every other column according to its field type
5. Fill the table's identifier field from fallback identifier columns
6. Reject rows missing a required field or carrying an unparseable date

Row-level problems never raise: bad numbers become 0 and invalid rows are
counted as skipped. Only a batch with no valid row at all is an error.
"""

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from yunzhou.core.config import settings
from yunzhou.core.dates import date_cell_value, normalize_date, parse_timestamp
from yunzhou.core.exceptions import MissingColumnsError, NoValidDataError
from yunzhou.core.models import (
    NUMERIC_TYPES,
    FieldDefinition,
    FieldType,
    Shop,
    TableSchema,
    TableType,
)
from yunzhou.core.schema_registry import build_header_lookup, resolve_header

logger = logging.getLogger(__name__)

DATE_HEADERS = ("日期", "时间")
DATE_LABEL = DATE_HEADERS[0]
SHOP_HEADERS = ("店铺名称", "店铺", "店铺名", "shop_name")
ACCOUNT_HEADERS = ("账户昵称", "账户")
SUMMARY_AGENT_VALUES = {"总值", "均值"}

_CURRENCY_RE = re.compile(r"[¥￥$€£,，\s]")
_SCIENTIFIC_RE = re.compile(r"^[0-9.]+[eE][+-]?\d+$")


@dataclass(frozen=True)
class IdentifierSource:
    """One source-side spelling of an identifier: a field key plus raw headers."""
    key: str
    headers: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReconciliationRule:
    target_key: str
    sources: tuple[IdentifierSource, ...]


RECONCILIATION_RULES: dict[TableType, ReconciliationRule] = {
    TableType.SHANGZHI: ReconciliationRule(
        target_key="sku_code",
        sources=(
            IdentifierSource("sku_code", ("SKU编码", "SKU", "商品SKU")),
            IdentifierSource("product_id", ("商品ID", "商品编号")),
        ),
    ),
    TableType.JINGZHUNTONG: ReconciliationRule(
        target_key="tracked_sku_id",
        sources=(
            IdentifierSource("tracked_sku_id", ("跟单SKU ID", "跟单SKU", "跟单SKUID")),
            IdentifierSource("sku_code", ("SKU编码", "SKU")),
            IdentifierSource("product_id", ("商品ID",)),
        ),
    ),
}


@dataclass
class MappingResult:
    valid_rows: list[dict[str, Any]] = field(default_factory=list)
    skipped_count: int = 0
    summary_rows: int = 0
    invalid_dates: int = 0
    missing_fields: Counter = field(default_factory=Counter)


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------

def clean_value(value: Any) -> Any:
    """Trim strings; blank or whitespace-only values become None."""
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def coerce_number(value: Any) -> float:
    """Parse a numeric cell. Anything unparseable or non-finite becomes 0."""
    if value is None or isinstance(value, bool):
        return 0 if value is None else int(value)
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else 0

    text = str(value).strip()
    if text in ("", "-"):
        return 0
    percent = text.endswith("%")
    cleaned = _CURRENCY_RE.sub("", text.rstrip("%"))
    try:
        number = float(cleaned)
    except ValueError:
        return 0
    if not math.isfinite(number):
        return 0
    return number / 100 if percent else number


def coerce_field(value: Any, field_def: FieldDefinition, tz_name: str) -> Any:
    value = clean_value(value)
    if field_def.type in NUMERIC_TYPES:
        number = coerce_number(value)
        if field_def.type == FieldType.INTEGER and isinstance(number, float) and number.is_integer():
            return int(number)
        return number
    if field_def.type == FieldType.TIMESTAMP:
        return parse_timestamp(value, tz_name)
    return value


def clean_identifier(value: Any) -> Optional[str]:
    """Normalize a SKU / product identifier to a plain string.

    Integral floats and scientific-notation strings (as spreadsheets render
    long numeric ids) are expanded to exact integer strings.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        if value.is_integer():
            return str(int(value))
    text = str(value).strip()
    if not text:
        return None
    if _SCIENTIFIC_RE.match(text):
        try:
            return str(int(Decimal(text).to_integral_value()))
        except InvalidOperation:
            return text
    return text


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

def _raw_lookup(raw_row: dict[str, Any], headers: Iterable[str]) -> Any:
    """First non-blank value among the given headers (matched after trimming)."""
    trimmed = {str(h).strip(): v for h, v in raw_row.items()}
    for header in headers:
        value = clean_value(trimmed.get(header))
        if value is not None:
            return value
    return None


def _resolve_shop_name(
    raw_row: dict[str, Any],
    shop_id: Optional[str],
    shops_by_id: dict[str, Shop],
) -> Optional[str]:
    if shop_id:
        shop = shops_by_id.get(str(shop_id))
        if shop is not None:
            return shop.name
    value = _raw_lookup(raw_row, SHOP_HEADERS)
    return str(value) if value is not None else None


def _reconcile_identifier(
    row: dict[str, Any],
    raw_row: dict[str, Any],
    rule: ReconciliationRule,
) -> None:
    if _is_missing(row.get(rule.target_key)):
        for source in rule.sources:
            candidate = row.get(source.key)
            if _is_missing(candidate):
                candidate = _raw_lookup(raw_row, source.headers)
            if not _is_missing(candidate):
                row[rule.target_key] = candidate
                break
    if not _is_missing(row.get(rule.target_key)):
        row[rule.target_key] = clean_identifier(row[rule.target_key])


def map_row(
    raw_row: dict[str, Any],
    table_type: TableType,
    schema: TableSchema,
    lookup: dict[str, str],
    shop_id: Optional[str] = None,
    shops_by_id: Optional[dict[str, Shop]] = None,
    tz_name: Optional[str] = None,
) -> dict[str, Any]:
    """Convert one raw row into a canonical row (not yet validated)."""
    tz_name = tz_name or settings.business_timezone
    fields_by_key = {f.key: f for f in schema.fields}
    row: dict[str, Any] = {}

    date_value = None
    trimmed = {str(h).strip(): v for h, v in raw_row.items()}
    for header in DATE_HEADERS:
        if header in trimmed:
            date_value = date_cell_value(trimmed[header])
            if date_value is not None:
                break
    if date_value is not None:
        row["date"] = date_value

    shop_name = _resolve_shop_name(raw_row, shop_id, shops_by_id or {})
    if shop_name is not None:
        row["shop_name"] = shop_name

    for header, value in raw_row.items():
        key = resolve_header(lookup, header)
        if key is None:
            continue
        if row.get(key) is not None:
            continue
        if key == "date":
            row[key] = date_cell_value(value)
            continue
        field_def = fields_by_key.get(key)
        row[key] = coerce_field(value, field_def, tz_name) if field_def else clean_value(value)

    rule = RECONCILIATION_RULES.get(table_type)
    if rule is not None:
        _reconcile_identifier(row, raw_row, rule)

    return row


def missing_required(row: dict[str, Any], schema: TableSchema) -> list[FieldDefinition]:
    return [f for f in schema.required_fields() if _is_missing(row.get(f.key))]


def normalize_rows(
    raw_rows: list[dict[str, Any]],
    table_type: TableType,
    schema: TableSchema,
    shop_id: Optional[str] = None,
    shops: Iterable[Shop] = (),
    require_rows: bool = True,
    tz_name: Optional[str] = None,
) -> MappingResult:
    """Map, coerce and validate every raw row for one target table.

    Raises NoValidDataError when require_rows is set and nothing survives.
    """
    lookup = build_header_lookup(schema)
    shops_by_id = {str(s.id): s for s in shops}
    if shop_id and str(shop_id) not in shops_by_id:
        logger.warning(f"Shop '{shop_id}' not in directory, falling back to shop columns")

    result = MappingResult()
    for index, raw_row in enumerate(raw_rows):
        row = map_row(raw_row, table_type, schema, lookup, shop_id, shops_by_id, tz_name)

        if table_type == TableType.CUSTOMER_SERVICE and row.get("agent_account") in SUMMARY_AGENT_VALUES:
            result.skipped_count += 1
            result.summary_rows += 1
            continue

        missing = missing_required(row, schema)
        if missing:
            result.skipped_count += 1
            result.missing_fields.update(f.label for f in missing)
            logger.debug(f"Row {index} skipped, missing: {[f.key for f in missing]}")
            continue

        day = normalize_date(row.get("date"))
        if day is None:
            result.skipped_count += 1
            result.invalid_dates += 1
            result.missing_fields.update([DATE_LABEL])
            logger.debug(f"Row {index} skipped, unparseable date: {row.get('date')!r}")
            continue
        row["date"] = day

        result.valid_rows.append(row)

    if result.skipped_count:
        logger.info(
            f"{table_type.value}: {len(result.valid_rows)} valid rows, "
            f"{result.skipped_count} skipped ({result.summary_rows} summary rows, {result.invalid_dates} bad dates)"
        )

    if require_rows and not result.valid_rows:
        raise NoValidDataError(
            total_rows=len(raw_rows),
            missing_fields=[label for label, _ in result.missing_fields.most_common(3)],
        )
    return result


def check_required_columns(table_type: TableType, headers: list[str]) -> None:
    """Ad-platform exports must carry a date column and an account column."""
    if table_type != TableType.JINGZHUNTONG:
        return
    present = {str(h).strip() for h in headers}
    missing = []
    if not present.intersection(DATE_HEADERS):
        missing.append("/".join(DATE_HEADERS))
    if not present.intersection(ACCOUNT_HEADERS):
        missing.append("/".join(ACCOUNT_HEADERS))
    if missing:
        raise MissingColumnsError(table_type.value, missing)
