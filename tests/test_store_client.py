"""Tests for the remote store client — httpx.MockTransport, no network."""

import json

import httpx
import pytest

from yunzhou.core.exceptions import ConnectionUnavailableError, StoreRequestError
from yunzhou.core.store_client import StoreClient, create_store_client


def _client(handler, page_size: int = 1000) -> tuple[StoreClient, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = StoreClient(
        "https://store.example.com/", "secret-key",
        page_size=page_size, transport=httpx.MockTransport(record),
    )
    return client, seen


class TestRequests:
    def test_auth_headers_and_base_path(self):
        client, seen = _client(lambda r: httpx.Response(200, json=[]))
        client.fetch_all("fact_shangzhi")
        request = seen[0]
        assert request.url.path == "/rest/v1/fact_shangzhi"
        assert request.headers["apikey"] == "secret-key"
        assert request.headers["authorization"] == "Bearer secret-key"

    def test_count_rows(self):
        client, seen = _client(lambda r: httpx.Response(
            206, json=[{"id": 1}], headers={"Content-Range": "0-0/42"},
        ))
        assert client.count_rows("fact_shangzhi") == 42
        assert seen[0].headers["prefer"] == "count=exact"

    def test_count_rows_empty_table(self):
        client, _ = _client(lambda r: httpx.Response(200, json=[], headers={"Content-Range": "*/0"}))
        assert client.count_rows("fact_shangzhi") == 0

    def test_latest_date(self):
        client, seen = _client(lambda r: httpx.Response(200, json=[{"date": "2026-03-10"}]))
        assert client.latest_date("fact_shangzhi") == "2026-03-10"
        assert seen[0].url.params["order"] == "date.desc"

    def test_latest_date_empty(self):
        client, _ = _client(lambda r: httpx.Response(200, json=[]))
        assert client.latest_date("fact_shangzhi") is None

    def test_fetch_range_paginates(self):
        data = [{"id": i, "date": "2026-03-01"} for i in range(5)]

        def handler(request):
            offset = int(request.url.params["offset"])
            limit = int(request.url.params["limit"])
            return httpx.Response(200, json=data[offset:offset + limit])

        client, seen = _client(handler, page_size=2)
        rows = client.fetch_range("fact_shangzhi", "2026-01-09", "2026-03-10")

        assert rows == data
        assert len(seen) == 3
        assert seen[0].url.params.get_list("date") == ["gte.2026-01-09", "lte.2026-03-10"]

    def test_upsert_merges_on_conflict_key(self):
        client, seen = _client(lambda r: httpx.Response(201))
        rows = [{"date": "2026-03-01", "sku_code": "A"}]

        client.upsert("fact_shangzhi", rows, "date,sku_code")

        request = seen[0]
        assert request.method == "POST"
        assert request.url.params["on_conflict"] == "date,sku_code"
        assert "resolution=merge-duplicates" in request.headers["prefer"]
        assert json.loads(request.content) == rows

    def test_upsert_without_conflict_key_inserts(self):
        client, seen = _client(lambda r: httpx.Response(201))
        client.upsert("scratch", [{"a": 1}])
        assert "on_conflict" not in seen[0].url.params
        assert seen[0].headers["prefer"] == "return=minimal"

    def test_delete_rows(self):
        client, seen = _client(lambda r: httpx.Response(204))
        client.delete_rows("fact_shangzhi", [3, 7])
        assert seen[0].method == "DELETE"
        assert seen[0].url.params["id"] == "in.(3,7)"

    def test_delete_rows_empty_is_noop(self):
        client, seen = _client(lambda r: httpx.Response(204))
        client.delete_rows("fact_shangzhi", [])
        assert seen == []

    def test_delete_all(self):
        client, seen = _client(lambda r: httpx.Response(204))
        client.delete_all("fact_customer_service")
        assert seen[0].url.params["id"] == "not.is.null"


class TestErrors:
    def test_error_body_is_parsed(self):
        client, _ = _client(lambda r: httpx.Response(400, json={
            "code": "PGRST204",
            "message": "Could not find the 'gmv' column of 'fact_shangzhi' in the schema cache",
            "details": None,
            "hint": None,
        }))
        with pytest.raises(StoreRequestError) as exc_info:
            client.upsert("fact_shangzhi", [{"gmv": 1}], "date,sku_code")
        assert exc_info.value.status_code == 400
        assert exc_info.value.store_code == "PGRST204"
        assert "gmv" in exc_info.value.message

    def test_non_json_error(self):
        client, _ = _client(lambda r: httpx.Response(413, text="Payload Too Large"))
        with pytest.raises(StoreRequestError) as exc_info:
            client.insert("fact_shangzhi", [{}])
        assert exc_info.value.status_code == 413
        assert exc_info.value.store_code is None

    def test_transport_errors_propagate(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client, _ = _client(handler)
        with pytest.raises(httpx.ConnectError):
            client.fetch_all("fact_shangzhi")

    def test_ping(self):
        client, _ = _client(lambda r: httpx.Response(200, json={}))
        assert client.ping() is True

    def test_ping_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client, _ = _client(handler)
        assert client.ping() is False


class TestCreateStoreClient:
    def test_missing_configuration(self):
        with pytest.raises(ConnectionUnavailableError):
            create_store_client("", "")

    def test_invalid_url(self):
        with pytest.raises(ConnectionUnavailableError, match="Invalid"):
            create_store_client("not a url", "key")

    def test_valid(self):
        client = create_store_client("https://store.example.com", "key", transport=httpx.MockTransport(
            lambda r: httpx.Response(200, json=[])
        ))
        assert client.base_url == "https://store.example.com"
        client.close()
