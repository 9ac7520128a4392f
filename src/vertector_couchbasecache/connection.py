"""
Couchbase store handle construction.

Turns a resolved configuration into an open collection:
cluster -> bucket -> default collection, or named scope -> named collection.
The SDK version is checked before any network activity.
"""

import logging
import re
from importlib.metadata import PackageNotFoundError, version
from typing import Any

from vertector_couchbasecache.dsn import ResolvedConfig, mask_credentials, normalize_servers, resolve_descriptors
from vertector_couchbasecache.exceptions import UnsupportedBackendError
from vertector_couchbasecache.logging_utils import PerformanceLogger

# Couchbase SDK (optional extra)
try:
    from couchbase.auth import PasswordAuthenticator
    from couchbase.cluster import Cluster, ClusterOptions
    from couchbase.exceptions import DocumentNotFoundException
    COUCHBASE_AVAILABLE = True
    NOT_FOUND_ERRORS: tuple[type[BaseException], ...] = (DocumentNotFoundException,)
except ImportError:
    COUCHBASE_AVAILABLE = False
    NOT_FOUND_ERRORS = ()

logger = logging.getLogger(__name__)

# Supported SDK generations: inclusive lower bound, exclusive upper bound
SUPPORTED_SDK_RANGE = ((3, 0), (4, 0))


def sdk_version() -> str | None:
    """Installed Couchbase SDK version, or None when it is not installed."""
    try:
        return version("couchbase")
    except PackageNotFoundError:
        return None


def _version_tuple(value: str) -> tuple[int, int]:
    numbers = [int(part) for part in re.findall(r"\d+", value)[:2]]
    while len(numbers) < 2:
        numbers.append(0)
    return numbers[0], numbers[1]


def is_supported() -> bool:
    """Whether the installed Couchbase SDK falls within ``SUPPORTED_SDK_RANGE``."""
    if not COUCHBASE_AVAILABLE:
        return False
    installed = sdk_version()
    if installed is None:
        return False
    lower, upper = SUPPORTED_SDK_RANGE
    return lower <= _version_tuple(installed) < upper


def ensure_supported() -> None:
    """
    Raises:
        UnsupportedBackendError: If the SDK is missing or out of range
    """
    if not is_supported():
        lower, upper = SUPPORTED_SDK_RANGE
        raise UnsupportedBackendError(
            f"Couchbase SDK >= {lower[0]}.{lower[1]}.0 < {upper[0]}.{upper[1]}.0 is required.",
            detected_version=sdk_version() if COUCHBASE_AVAILABLE else None,
        )


def build_store_handle(config: ResolvedConfig) -> Any:
    """
    Open the collection described by a resolved configuration.

    SDK errors at any stage propagate unchanged; nothing is retried.

    Args:
        config: Resolved connection configuration

    Returns:
        The SDK collection object

    Raises:
        UnsupportedBackendError: If the SDK is missing or out of range
    """
    ensure_supported()

    cluster_options = ClusterOptions(PasswordAuthenticator(config.username, config.password))

    with PerformanceLogger(
        "couchbase.connect",
        logger=logger,
        level=logging.INFO,
        connection_string=mask_credentials(config.connection_string),
        bucket=config.bucket_name,
    ):
        cluster = Cluster(config.connection_string, cluster_options)
        bucket = cluster.bucket(config.bucket_name)

        if config.uses_default_collection:
            return bucket.default_collection()

        scope = bucket.scope(config.scope_name)
        return scope.collection(config.collection_name)


def create_connection(servers: str | list[str], options: dict[str, Any] | None = None) -> Any:
    """
    Resolve connection strings and open the target collection.

    Example:
        collection = create_connection(
            ["couchbase://node1/cache", "couchbase://node2/cache/app/sessions"],
            {"username": "cache_user", "password": "s3cr3t!"},
        )

    Args:
        servers: A connection string or a list of them
        options: Caller options; may include ``username`` and ``password``

    Returns:
        The SDK collection object

    Raises:
        InvalidArgumentKindError: If ``servers`` is not a string or a list
        UnsupportedBackendError: If the SDK is missing or out of range
        MalformedDescriptorError: If any connection string is malformed
    """
    servers = normalize_servers(servers)
    ensure_supported()
    return build_store_handle(resolve_descriptors(servers, options))
