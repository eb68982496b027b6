"""Tests for the Redis-backed config store."""

from unittest.mock import MagicMock

import pytest
import redis

from tests.conftest import DictRedis
from yunzhou.core.config_store import ConfigStore


class TestConfigStore:
    def test_round_trip_under_namespace(self):
        client = DictRedis()
        store = ConfigStore(client, namespace="yz")
        store.set("dim_shops", [{"id": "s1", "name": "旗舰店"}])
        assert "yz:dim_shops" in client.data
        assert store.get("dim_shops") == [{"id": "s1", "name": "旗舰店"}]

    def test_missing_key_returns_default(self):
        assert ConfigStore(DictRedis(), namespace="yz").get("nope", []) == []

    def test_unreachable_returns_default(self):
        client = DictRedis()
        client.down = True
        assert ConfigStore(client, namespace="yz").get("upload_history", []) == []

    def test_invalid_json_returns_default(self):
        client = DictRedis()
        client.data["yz:k"] = "{not json"
        assert ConfigStore(client, namespace="yz").get("k", {"a": 1}) == {"a": 1}

    def test_set_propagates_failures(self):
        client = DictRedis()
        client.down = True
        with pytest.raises(redis.ConnectionError):
            ConfigStore(client, namespace="yz").set("k", 1)

    def test_delete(self):
        store = ConfigStore(DictRedis(), namespace="yz")
        store.set("k", 1)
        store.delete("k")
        assert store.get("k") is None

    def test_ping(self):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("down")
        assert ConfigStore(client, namespace="yz").ping() is False
