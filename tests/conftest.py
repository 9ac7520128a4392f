"""
Pytest configuration and fixtures for the Couchbase cache adapter tests.

Provides:
- An in-memory stand-in for an SDK collection
- Fixtures that pass the SDK version gate without a Couchbase install
- Adapter and pool fixtures
"""

from types import SimpleNamespace

import pytest
from dotenv import load_dotenv

from vertector_couchbasecache import connection

# Load environment variables for tests
load_dotenv()


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (require a Couchbase cluster)"
    )


# ============================================================================
# Fake Collection
# ============================================================================

class FakeDocumentNotFound(Exception):
    """Plays the SDK's DocumentNotFoundException."""


class FakeCollection:
    """
    In-memory collection with the SDK 3 surface the adapter uses.

    ``failing_upserts`` keys raise on upsert; ``tokenless_removes`` keys are
    removed without a mutation token.
    """

    def __init__(self):
        self.documents: dict[str, bytes] = {}
        self.expiries: dict[str, object] = {}
        self.failing_upserts: set[str] = set()
        self.tokenless_removes: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def get(self, key):
        self.calls.append(("get", key))
        if key not in self.documents:
            raise FakeDocumentNotFound(key)
        return SimpleNamespace(content=self.documents[key])

    def exists(self, key):
        self.calls.append(("exists", key))
        return SimpleNamespace(exists=key in self.documents)

    def remove(self, key):
        self.calls.append(("remove", key))
        if key not in self.documents:
            raise FakeDocumentNotFound(key)
        del self.documents[key]
        token = None if key in self.tokenless_removes else f"token-{key}"
        return SimpleNamespace(mutation_token=lambda: token)

    def upsert(self, key, value, expiry=None):
        self.calls.append(("upsert", key))
        if key in self.failing_upserts:
            raise RuntimeError(f"temporary failure for {key}")
        self.documents[key] = value
        self.expiries[key] = expiry
        return SimpleNamespace(mutation_token=lambda: f"token-{key}")


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def supported_sdk(monkeypatch):
    """Pretend a 3.x SDK is installed and route not-found errors to the fake."""
    monkeypatch.setattr(connection, "COUCHBASE_AVAILABLE", True)
    monkeypatch.setattr(connection, "sdk_version", lambda: "3.2.7")
    monkeypatch.setattr(connection, "NOT_FOUND_ERRORS", (FakeDocumentNotFound,))


@pytest.fixture
def fake_collection():
    return FakeCollection()


@pytest.fixture
def adapter(supported_sdk, fake_collection):
    from vertector_couchbasecache import CacheMetrics, CouchbaseCollectionAdapter

    return CouchbaseCollectionAdapter(fake_collection, metrics=CacheMetrics())


@pytest.fixture
def pool(adapter):
    from vertector_couchbasecache import CachePool

    return CachePool(adapter, namespace="app", default_lifetime=600)
