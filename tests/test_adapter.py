"""
Tests for the batch cache operations of CouchbaseCollectionAdapter.

Tests:
- fetch / have / delete / save / clear
- Per-key failure aggregation
- Expiry passed to the store
- Metrics
"""

import pickle
import threading
from datetime import timedelta
from unittest.mock import Mock, patch

import pytest

from vertector_couchbasecache import connection
from vertector_couchbasecache.adapter import CouchbaseCollectionAdapter
from vertector_couchbasecache.config import CouchbaseCacheConfig
from vertector_couchbasecache.exceptions import UnsupportedBackendError
from vertector_couchbasecache.expiry import normalize_expiry
from vertector_couchbasecache.marshaller import DefaultMarshaller
from vertector_couchbasecache.results import BatchResult


class PartialMarshaller:
    """Marshaller that refuses some keys and serializes the rest with pickle."""

    def __init__(self, refuse: set[str]):
        self.refuse = refuse
        self.unmarshalled: list[bytes] = []

    def marshall(self, values):
        serialized = {k: pickle.dumps(v) for k, v in values.items() if k not in self.refuse}
        return serialized, [k for k in values if k in self.refuse]

    def unmarshall(self, value):
        self.unmarshalled.append(value)
        return pickle.loads(value)


@pytest.mark.unit
class TestInitialization:
    """Test adapter construction."""

    def test_rejects_unsupported_sdk(self, monkeypatch, fake_collection):
        monkeypatch.setattr(connection, "COUCHBASE_AVAILABLE", True)
        monkeypatch.setattr(connection, "sdk_version", lambda: "4.2.0")

        with pytest.raises(UnsupportedBackendError):
            CouchbaseCollectionAdapter(fake_collection)

    def test_default_marshaller(self, supported_sdk, fake_collection):
        adapter = CouchbaseCollectionAdapter(fake_collection)

        assert isinstance(adapter.marshaller, DefaultMarshaller)
        assert adapter.collection is fake_collection
        assert adapter.metrics is None
        assert adapter.get_metrics() == {}

    def test_is_supported_delegates(self, supported_sdk):
        assert CouchbaseCollectionAdapter.is_supported() is True

    def test_from_config(self, supported_sdk, fake_collection):
        config = CouchbaseCacheConfig(
            servers=["couchbase://host1/cache"],
            username="cache_user",
            password="secret1",
            options={"timeout": "5"},
        )

        with patch.object(connection, "create_connection", return_value=fake_collection) as create:
            adapter = CouchbaseCollectionAdapter.from_config(config)

        create.assert_called_once_with(
            ["couchbase://host1/cache"],
            {"timeout": "5", "username": "cache_user", "password": "secret1"},
        )
        assert adapter.collection is fake_collection
        assert adapter.metrics is not None


@pytest.mark.unit
class TestFetch:
    """Test multi-key fetch."""

    def test_fetch_returns_only_existing_keys(self, supported_sdk, fake_collection):
        marshaller = PartialMarshaller(set())
        adapter = CouchbaseCollectionAdapter(fake_collection, marshaller)
        fake_collection.documents["a"] = pickle.dumps({"n": 1})
        fake_collection.documents["c"] = pickle.dumps([3])

        result = adapter.fetch(["a", "b", "c"])

        assert result == {"a": {"n": 1}, "c": [3]}
        assert marshaller.unmarshalled == [pickle.dumps({"n": 1}), pickle.dumps([3])]

    def test_fetch_all_missing(self, adapter):
        assert adapter.fetch(["x", "y"]) == {}

    def test_fetch_accepts_generators(self, adapter, fake_collection):
        fake_collection.documents["a"] = pickle.dumps(1)
        assert adapter.fetch(k for k in ["a"]) == {"a": 1}

    def test_other_store_errors_propagate(self, adapter, fake_collection):
        """Test that only not-found is a miss."""
        fake_collection.get = Mock(side_effect=TimeoutError("slow"))

        with pytest.raises(TimeoutError):
            adapter.fetch(["a"])

    def test_fetch_records_hits_and_misses(self, adapter, fake_collection):
        fake_collection.documents["a"] = pickle.dumps(1)

        adapter.fetch(["a", "b", "c"])

        stats = adapter.get_metrics()
        assert stats["cache"]["hits"] == 1
        assert stats["cache"]["misses"] == 2
        assert stats["operations"]["fetch"]["calls"] == 1
        assert stats["operations"]["fetch"]["keys"] == 3


@pytest.mark.unit
class TestHave:
    """Test existence checks."""

    def test_have(self, adapter, fake_collection):
        fake_collection.documents["a"] = pickle.dumps(1)

        assert adapter.have("a") is True
        assert adapter.have("b") is False
        assert adapter.exists("a") is True

    def test_have_does_not_read_value(self, adapter, fake_collection):
        fake_collection.documents["a"] = pickle.dumps(1)
        adapter.have("a")
        assert ("get", "a") not in fake_collection.calls


@pytest.mark.unit
class TestDelete:
    """Test multi-key delete."""

    def test_delete_missing_key_succeeds(self, adapter):
        assert adapter.delete(["missing"]) is True

    def test_delete_existing_keys(self, adapter, fake_collection):
        fake_collection.documents.update({"a": b"1", "b": b"2"})

        assert adapter.delete(["a", "b", "c"]) is True
        assert fake_collection.documents == {}

    def test_delete_without_mutation_token_fails(self, adapter, fake_collection):
        fake_collection.documents.update({"a": b"1", "b": b"2", "c": b"3"})
        fake_collection.tokenless_removes.add("b")

        assert adapter.delete(["a", "b", "c"]) is False
        # The failure did not stop the batch
        assert ("remove", "c") in fake_collection.calls

    def test_delete_batch_outcomes(self, adapter, fake_collection):
        fake_collection.documents.update({"a": b"1", "b": b"2"})
        fake_collection.tokenless_removes.add("b")

        batch = adapter.delete_batch(["a", "b", "missing"])

        assert isinstance(batch, BatchResult)
        assert batch.succeeded_keys == {"a", "missing"}
        assert batch.failed_keys == {"b"}
        assert adapter.get_metrics()["operations"]["delete"]["failed_keys"] == 1


@pytest.mark.unit
class TestSave:
    """Test multi-key save."""

    def test_save_all_succeed(self, adapter, fake_collection):
        assert adapter.save({"a": 1, "b": "two"}, 60) is True

        assert pickle.loads(fake_collection.documents["a"]) == 1
        assert pickle.loads(fake_collection.documents["b"]) == "two"
        assert fake_collection.expiries["a"] == timedelta(seconds=60)

    def test_partial_failures_reported_by_key(self, supported_sdk, fake_collection):
        """Test that unserializable and rejected keys are both reported."""
        adapter = CouchbaseCollectionAdapter(fake_collection, PartialMarshaller({"k3"}))
        fake_collection.failing_upserts.add("k4")

        result = adapter.save({"k1": 1, "k2": 2, "k3": 3, "k4": 4, "k5": 5}, 0)

        assert result == {"k3", "k4"}
        assert set(fake_collection.documents) == {"k1", "k2", "k5"}
        assert ("upsert", "k3") not in fake_collection.calls

    def test_every_key_unserializable(self, supported_sdk, fake_collection):
        adapter = CouchbaseCollectionAdapter(fake_collection, PartialMarshaller({"a", "b"}))

        assert adapter.save({"a": 1, "b": 2}, 0) == {"a", "b"}
        assert fake_collection.calls == []

    def test_default_marshaller_failure(self, adapter, fake_collection):
        result = adapter.save({"ok": 1, "lock": threading.Lock()}, 0)

        assert result == {"lock"}
        assert "ok" in fake_collection.documents

    def test_zero_ttl_never_expires(self, adapter, fake_collection):
        adapter.save({"a": 1}, 0)
        assert fake_collection.expiries["a"] == timedelta(0)

    def test_long_ttl_normalized_once_for_batch(self, adapter, fake_collection):
        with patch("vertector_couchbasecache.adapter.normalize_expiry", wraps=normalize_expiry) as normalize:
            adapter.save({"a": 1, "b": 2}, 3000000)

        assert normalize.call_count == 1
        assert fake_collection.expiries["a"] == timedelta(seconds=3000000)
        assert fake_collection.expiries["a"] == fake_collection.expiries["b"]

    def test_save_batch_outcomes(self, supported_sdk, fake_collection):
        adapter = CouchbaseCollectionAdapter(fake_collection, PartialMarshaller({"bad"}))
        fake_collection.failing_upserts.add("down")

        batch = adapter.save_batch({"good": 1, "bad": 2, "down": 3}, 10)

        assert not batch.ok
        assert batch.succeeded_keys == {"good"}
        reasons = {o.key: o.reason for o in batch.outcomes}
        assert reasons["bad"] == "unserializable value"
        assert reasons["down"] == "RuntimeError"
        assert batch.as_save_result() == {"bad", "down"}


@pytest.mark.unit
class TestClear:
    """Test namespace clearing."""

    @pytest.mark.parametrize("namespace", ["", "app:", "anything"])
    def test_clear_always_false(self, adapter, fake_collection, namespace):
        fake_collection.documents["a"] = b"1"

        assert adapter.clear(namespace) is False
        assert fake_collection.documents == {"a": b"1"}


@pytest.mark.unit
class TestMarshaller:
    """Test the default pickle marshaller."""

    def test_round_trip(self):
        marshaller = DefaultMarshaller()
        serialized, failed = marshaller.marshall({"a": {"nested": [1, 2]}, "b": None})

        assert failed == []
        assert marshaller.unmarshall(serialized["a"]) == {"nested": [1, 2]}
        assert marshaller.unmarshall(serialized["b"]) is None

    def test_unpicklable_values_reported(self):
        serialized, failed = DefaultMarshaller().marshall({"a": 1, "lock": threading.Lock()})

        assert failed == ["lock"]
        assert list(serialized) == ["a"]
