"""Tests for the field mapper & normalizer."""

import pytest

from yunzhou.core.exceptions import MissingColumnsError, NoValidDataError
from yunzhou.core.models import FieldDefinition, FieldType, Shop, TableType
from yunzhou.core.normalizer import (
    check_required_columns,
    clean_identifier,
    coerce_field,
    coerce_number,
    normalize_rows,
)
from yunzhou.core.schema_registry import SchemaRegistry

REGISTRY = SchemaRegistry()


def _normalize(rows, table_type=TableType.SHANGZHI, **kwargs):
    return normalize_rows(rows, table_type, REGISTRY.load_default(table_type), **kwargs)


class TestCoerceNumber:
    @pytest.mark.parametrize("value,expected", [
        (None, 0),
        ("-", 0),
        ("", 0),
        ("¥1,234.50", 1234.5),
        ("￥ 2,000", 2000.0),
        ("$3.5", 3.5),
        ("12.5%", 0.125),
        ("abc", 0),
        ("inf", 0),
        (float("nan"), 0),
        (7, 7),
    ])
    def test_values(self, value, expected):
        assert coerce_number(value) == expected

    def test_integer_field(self):
        field = FieldDefinition(key="pv", label="浏览量", type=FieldType.INTEGER)
        result = coerce_field("1,200", field, "Asia/Shanghai")
        assert result == 1200
        assert isinstance(result, int)

    def test_timestamp_field(self):
        field = FieldDefinition(key="t", label="T", type=FieldType.TIMESTAMP)
        assert coerce_field("2026-03-10 08:00:00", field, "Asia/Shanghai") == "2026-03-10T00:00:00.000Z"
        assert coerce_field(45000, field, "Asia/Shanghai") == "2023-03-15T00:00:00.000Z"
        assert coerce_field("never", field, "Asia/Shanghai") is None

    def test_string_field_blank_becomes_none(self):
        field = FieldDefinition(key="brand", label="品牌")
        assert coerce_field("   ", field, "Asia/Shanghai") is None
        assert coerce_field(" ACME ", field, "Asia/Shanghai") == "ACME"


class TestCleanIdentifier:
    @pytest.mark.parametrize("value,expected", [
        (100012345678.0, "100012345678"),
        ("1.00012E+11", "100012000000"),
        (" SKU-1 ", "SKU-1"),
        (12345, "12345"),
        ("", None),
        (None, None),
    ])
    def test_values(self, value, expected):
        assert clean_identifier(value) == expected


class TestShangzhiRows:
    def test_three_row_file(self):
        rows = [
            {"日期": 45000, "SKU编码": "SKU-1", "商品价格": "99"},
            {"日期": "2026-03-02", "SKU编码": None, "商品价格": "10"},
            {"日期": "2026-03-03", "SKU编码": "SKU-3", "商品价格": "¥1,234.50"},
        ]
        result = _normalize(rows)

        assert len(result.valid_rows) == 2
        assert result.skipped_count == 1
        assert len(result.valid_rows) == len(rows) - result.skipped_count
        assert result.valid_rows[0]["date"] == "2023-03-15"
        assert result.valid_rows[1]["price"] == 1234.5

    def test_unknown_headers_dropped(self):
        result = _normalize([{"日期": "2026-03-01", "SKU编码": "A", "备注": "x"}])
        assert "备注" not in result.valid_rows[0]
        assert set(result.valid_rows[0]) == {"date", "sku_code"}

    def test_date_from_second_header(self):
        result = _normalize([{"时间": "2026-03-01", "SKU编码": "A"}])
        assert result.valid_rows[0]["date"] == "2026-03-01"

    def test_whitespace_date_is_missing(self):
        with pytest.raises(NoValidDataError) as exc_info:
            _normalize([{"日期": "   ", "SKU编码": "A"}])
        assert exc_info.value.missing_fields == ["日期"]

    def test_unparseable_dates_skipped(self):
        rows = [
            {"日期": "2026/3/1", "SKU编码": "A"},
            {"日期": "-", "SKU编码": "B"},
            {"日期": "合计", "SKU编码": "C"},
        ]
        result = _normalize(rows)

        assert [r["sku_code"] for r in result.valid_rows] == ["A"]
        assert result.valid_rows[0]["date"] == "2026-03-01"
        assert result.skipped_count == 2
        assert result.invalid_dates == 2

    def test_only_unparseable_dates_is_an_error(self):
        with pytest.raises(NoValidDataError) as exc_info:
            _normalize([{"日期": "合计", "SKU编码": "A"}])
        assert exc_info.value.missing_fields == ["日期"]

    def test_sku_falls_back_to_product_id(self):
        result = _normalize([{"日期": "2026-03-01", "商品ID": 100012345678.0}])
        row = result.valid_rows[0]
        assert row["sku_code"] == "100012345678"

    def test_missing_numeric_zero_filled(self):
        result = _normalize([{"日期": "2026-03-01", "SKU编码": "A", "成交金额": "-", "浏览量": None}])
        assert result.valid_rows[0]["paid_amount"] == 0
        assert result.valid_rows[0]["pv"] == 0

    def test_no_valid_rows_names_missing_fields(self):
        rows = [{"日期": "2026-03-01"}, {"日期": "2026-03-02"}, {"SKU编码": "A"}]
        with pytest.raises(NoValidDataError) as exc_info:
            _normalize(rows)
        assert exc_info.value.total_rows == 3
        assert exc_info.value.missing_fields == ["SKU编码", "日期"]

    def test_empty_allowed_when_not_required(self):
        result = _normalize([{"日期": "2026-03-01"}], require_rows=False)
        assert result.valid_rows == []
        assert result.skipped_count == 1


class TestShopInjection:
    SHOPS = [Shop(id="s1", name="旗舰店"), Shop(id="s2", name="专营店")]

    def test_explicit_shop_wins_over_column(self):
        result = _normalize(
            [{"日期": "2026-03-01", "SKU编码": "A", "店铺名称": "别的店"}],
            shop_id="s1", shops=self.SHOPS,
        )
        assert result.valid_rows[0]["shop_name"] == "旗舰店"

    def test_shop_column_fallback(self):
        result = _normalize([{"日期": "2026-03-01", "SKU编码": "A", "店铺": "别的店"}])
        assert result.valid_rows[0]["shop_name"] == "别的店"

    def test_unknown_shop_id_uses_column(self):
        result = _normalize(
            [{"日期": "2026-03-01", "SKU编码": "A", "店铺名称": "别的店"}],
            shop_id="missing", shops=self.SHOPS,
        )
        assert result.valid_rows[0]["shop_name"] == "别的店"


class TestJingzhuntongRows:
    def test_tracked_sku_takes_precedence(self):
        rows = [{"日期": "2026-03-01", "账户昵称": "acct", "跟单SKU ID": "T1", "SKU编码": "S1"}]
        row = _normalize(rows, TableType.JINGZHUNTONG).valid_rows[0]
        assert row["tracked_sku_id"] == "T1"
        assert row["sku_code"] == "S1"

    def test_falls_back_to_sku_code_then_product_id(self):
        rows = [
            {"日期": "2026-03-01", "账户": "acct", "SKU编码": "S1", "商品ID": "P1"},
            {"日期": "2026-03-01", "账户": "acct", "商品ID": "P2"},
        ]
        result = _normalize(rows, TableType.JINGZHUNTONG)
        assert [r["tracked_sku_id"] for r in result.valid_rows] == ["S1", "P2"]

    def test_numeric_tracked_sku(self):
        rows = [{"日期": "2026-03-01", "跟单SKU": 100098765432.0, "花费": "1,000.5"}]
        row = _normalize(rows, TableType.JINGZHUNTONG).valid_rows[0]
        assert row["tracked_sku_id"] == "100098765432"
        assert row["cost"] == 1000.5


class TestCustomerServiceRows:
    def test_summary_rows_skipped(self):
        rows = [
            {"日期": "2026-03-01", "客服账号": "agent-1", "咨询人数": "12"},
            {"日期": "2026-03-01", "客服账号": "总值", "咨询人数": "12"},
            {"日期": "2026-03-01", "客服账号": "均值", "咨询人数": "12"},
        ]
        result = _normalize(rows, TableType.CUSTOMER_SERVICE)
        assert len(result.valid_rows) == 1
        assert result.skipped_count == 2
        assert result.summary_rows == 2
        assert result.valid_rows[0]["consult_users"] == 12


class TestCheckRequiredColumns:
    def test_ad_table_needs_account(self):
        with pytest.raises(MissingColumnsError) as exc_info:
            check_required_columns(TableType.JINGZHUNTONG, ["日期", "花费"])
        assert exc_info.value.missing == ["账户昵称/账户"]

    def test_ad_table_needs_date(self):
        with pytest.raises(MissingColumnsError):
            check_required_columns(TableType.JINGZHUNTONG, ["账户", "花费"])

    def test_ad_table_ok(self):
        check_required_columns(TableType.JINGZHUNTONG, ["时间", " 账户 "])

    def test_other_tables_unchecked(self):
        check_required_columns(TableType.SHANGZHI, [])
