"""
Vertector Couchbase Cache - batch cache adapter backed by a Couchbase collection.

This package resolves Couchbase connection strings into a live collection
and maps batch cache operations (fetch, have, delete, save, clear) onto it,
reporting per-key failures instead of failing whole batches.
"""

from vertector_couchbasecache.adapter import CouchbaseCollectionAdapter

from vertector_couchbasecache.pool import CachePool

from vertector_couchbasecache.dsn import (
    ConnectionDescriptor,
    Protocol,
    ResolvedConfig,
    parse_descriptor,
    resolve_descriptors,
)

from vertector_couchbasecache.connection import (
    build_store_handle,
    create_connection,
    is_supported,
)

from vertector_couchbasecache.expiry import normalize_expiry

from vertector_couchbasecache.results import BatchResult, KeyOutcome

from vertector_couchbasecache.marshaller import DefaultMarshaller, Marshaller

from vertector_couchbasecache.exceptions import (
    CouchbaseCacheError,
    MalformedDescriptorError,
    InvalidArgumentKindError,
    UnsupportedBackendError,
    CacheKeyError,
    CacheConfigurationError,
)

from vertector_couchbasecache.config import (
    CouchbaseCacheConfig,
    SecretsManager,
    SecretsProvider,
    load_config_from_env,
)

from vertector_couchbasecache.observability import Tracer, CacheMetrics

__version__ = "1.0.0"

__all__ = [
    # Core adapter
    "CouchbaseCollectionAdapter",
    "CachePool",
    "BatchResult",
    "KeyOutcome",
    "DefaultMarshaller",
    "Marshaller",
    "normalize_expiry",
    # Connection
    "ConnectionDescriptor",
    "Protocol",
    "ResolvedConfig",
    "parse_descriptor",
    "resolve_descriptors",
    "build_store_handle",
    "create_connection",
    "is_supported",
    # Errors
    "CouchbaseCacheError",
    "MalformedDescriptorError",
    "InvalidArgumentKindError",
    "UnsupportedBackendError",
    "CacheKeyError",
    "CacheConfigurationError",
    # Configuration
    "CouchbaseCacheConfig",
    "SecretsManager",
    "SecretsProvider",
    "load_config_from_env",
    # Observability
    "Tracer",
    "CacheMetrics",
]
