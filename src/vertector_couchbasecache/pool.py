"""
Namespaced cache pool on top of ``CouchbaseCollectionAdapter``.

The pool turns user keys into store ids (namespace prefix, version token,
hashing of over-long ids), applies the default lifetime, and implements
``clear`` by bumping the namespace version, since the store cannot drop a
namespace in bulk.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import time
from typing import Any, Iterable, Literal

from vertector_couchbasecache.adapter import CouchbaseCollectionAdapter
from vertector_couchbasecache.config import RESERVED_CHARACTERS, CouchbaseCacheConfig
from vertector_couchbasecache.exceptions import CacheKeyError
from vertector_couchbasecache.marshaller import Marshaller

logger = logging.getLogger(__name__)

NS_SEPARATOR = ":"

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def validate_key(key: Any) -> str:
    """
    Raises:
        CacheKeyError: If the key is not a non-empty string free of reserved characters
    """
    if not isinstance(key, str):
        raise CacheKeyError(f"Cache key must be a string, {type(key).__name__} given.", key=key)
    if not key:
        raise CacheKeyError("Cache key length must be greater than zero.", key=key)
    bad = [c for c in RESERVED_CHARACTERS if c in key]
    if bad:
        raise CacheKeyError(f'Cache key "{key}" contains reserved characters "{RESERVED_CHARACTERS}".', key=key)
    return key


def _format_version(number: int) -> str:
    digits = ""
    while True:
        number, rem = divmod(number, 36)
        digits = _BASE36[rem] + digits
        if not number:
            break
    return digits + NS_SEPARATOR


class CachePool:
    """
    Cache pool with namespacing, key hashing, default lifetimes and
    versioned invalidation.

    Example:
        pool = CachePool(adapter, namespace="sessions", default_lifetime=3600)
        pool.set("abc", {"user_id": 1})
        pool.get("abc")
        pool.clear()  # every key of the namespace is now a miss
    """

    def __init__(
        self,
        adapter: CouchbaseCollectionAdapter,
        namespace: str = "",
        default_lifetime: int = 0,
        versioning: bool = True,
    ):
        self.adapter = adapter
        self.max_id_length = adapter.MAX_KEY_LENGTH
        self.namespace = validate_key(namespace) + NS_SEPARATOR if namespace else ""
        if len(self.namespace) > self.max_id_length - 24:
            raise CacheKeyError(
                f'Namespace must be {self.max_id_length - 24} chars max, {len(self.namespace)} given ("{namespace}").',
                key=namespace,
            )
        self.default_lifetime = default_lifetime
        self.versioning = versioning
        self._namespace_version = ""
        self._ids: dict[str, str] = {}

    @classmethod
    def from_config(cls, config: CouchbaseCacheConfig, marshaller: Marshaller | None = None) -> "CachePool":
        adapter = CouchbaseCollectionAdapter.from_config(config, marshaller)
        return cls(
            adapter,
            namespace=config.namespace,
            default_lifetime=config.default_lifetime,
            versioning=config.versioning,
        )

    @property
    def _version_key(self) -> str:
        return NS_SEPARATOR + self.namespace

    def _load_version(self) -> str:
        if not self._namespace_version:
            stored = self.adapter.fetch([self._version_key]).get(self._version_key)
            if stored:
                self._namespace_version = stored
            else:
                self._namespace_version = _format_version(int(time.time()))
                self.adapter.save({self._version_key: self._namespace_version}, 0)
        return self._namespace_version

    def get_id(self, key: str) -> str:
        """Store id for ``key``: namespace, version token, then the key, hashed when too long."""
        if self.versioning:
            self._load_version()
        prefix = self.namespace + self._namespace_version

        if key in self._ids:
            return prefix + self._ids[key]

        validate_key(key)
        suffix = key
        if len(prefix + suffix) > self.max_id_length:
            digest = base64.urlsafe_b64encode(hashlib.sha256(key.encode()).digest()).decode()[:22]
            suffix = key[:self.max_id_length - len(prefix) - 23] + NS_SEPARATOR + digest

        if len(self._ids) > 1000:
            self._ids.clear()
        self._ids[key] = suffix
        return prefix + suffix

    def _map_ids(self, keys: Iterable[str]) -> dict[str, str]:
        return {self.get_id(key): key for key in keys}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        return self.get_many([key]).get(key, default)

    def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        """Found keys mapped to their values; misses are left out."""
        ids = self._map_ids(keys)
        return {ids[id]: value for id, value in self.adapter.fetch(list(ids)).items()}

    def has(self, key: str) -> bool:
        return self.adapter.have(self.get_id(key))

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        return self.set_many({key: value}, ttl) is True

    def set_many(self, values: dict[str, Any], ttl: int | None = None) -> Literal[True] | set[str]:
        """
        Store several values.

        Args:
            values: Mapping of keys to values
            ttl: Time-to-live in seconds; the pool's default lifetime when
                None; a negative ttl expires the keys immediately

        Returns:
            True if every key was stored, otherwise the set of failed keys
        """
        if ttl is None:
            ttl = self.default_lifetime
        if ttl < 0:
            return True if self.delete_many(values) else set(values)

        ids = self._map_ids(values)
        result = self.adapter.save({id: values[key] for id, key in ids.items()}, ttl)
        if result is True:
            return True
        return {ids[id] for id in result}

    def delete(self, key: str) -> bool:
        return self.delete_many([key])

    def delete_many(self, keys: Iterable[str]) -> bool:
        return self.adapter.delete(list(self._map_ids(keys)))

    def clear(self) -> bool:
        """
        Invalidate every key of the namespace.

        With versioning enabled a new version token is stored, so ids built
        before the clear no longer match.
        """
        cleared = self.versioning
        if self.versioning:
            namespace_to_clear = self.namespace + self._load_version()
            new_version = _format_version(time.time_ns() // 1000)
            result = self.adapter.save({self._version_key: new_version}, 0)
            if result is True:
                self._namespace_version = new_version
                self._ids.clear()
            else:
                logger.warning(
                    "Failed to save the new namespace version",
                    extra={"namespace": self.namespace}
                )
                cleared = False
        else:
            namespace_to_clear = self.namespace

        return self.adapter.clear(namespace_to_clear) or cleared
