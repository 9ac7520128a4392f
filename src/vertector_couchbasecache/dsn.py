"""
Connection string parsing and resolution.

A connection string (DSN) follows the grammar:

    couchbase[s]://[user:pass@]host[:port]/bucket[/scope/collection][?opt1=v1&opt2=v2]

``parse_descriptor`` turns one string into a ``ConnectionDescriptor``.
``resolve_descriptors`` merges one or more of them, plus a caller options
map, into a single ``ResolvedConfig`` carrying the canonical connection
string used to open the cluster.
"""

import logging
import re
import warnings
from contextlib import contextmanager
from enum import Enum
from typing import Any, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field

from vertector_couchbasecache.exceptions import InvalidArgumentKindError, MalformedDescriptorError

logger = logging.getLogger(__name__)

SCHEME_PREFIXES = ("couchbase:", "couchbases:")
MIN_PASSWORD_LENGTH = 6

_DSN_PATTERN = re.compile(
    r"^(?P<protocol>couchbases?)://"
    r"(?:(?P<username>[^:/@?]+):(?P<password>[^@]*)@)?"
    r"(?P<host>[^:/@?]+(?::\d+)?)"
    r"/(?P<bucket>[^/?]+)"
    r"(?:/(?P<scope>[^/?]+)/(?P<collection>[^/?]+))?"
    r"/?"
    r"(?:\?(?P<options>.*))?$",
    re.IGNORECASE,
)

_CREDENTIALS_PATTERN = re.compile(r"(://[^:/@?]+:)[^@]*@")


class Protocol(str, Enum):
    """Connection protocol selected by the DSN scheme."""
    PLAIN = "couchbase"
    SECURE = "couchbases"


class ConnectionDescriptor(BaseModel):
    """Structured fields of a single connection string."""

    model_config = ConfigDict(frozen=True)

    protocol: Protocol = Protocol.PLAIN
    host: str
    username: Optional[str] = None
    password: Optional[str] = None
    bucket_name: str
    scope_name: Optional[str] = None
    collection_name: Optional[str] = None
    options: dict[str, str] = Field(default_factory=dict)
    raw_options: Optional[str] = Field(
        default=None,
        description="Options block exactly as written after '?', None when absent"
    )


class ResolvedConfig(BaseModel):
    """
    Final connection parameters merged from one or more descriptors.

    ``connection_string`` is what the cluster is opened with; credentials
    travel separately and never appear in it.
    """

    model_config = ConfigDict(frozen=True)

    hosts: list[str]
    protocol: Protocol = Protocol.PLAIN
    username: Optional[str] = None
    password: Optional[str] = None
    options: dict[str, Any] = Field(default_factory=dict)
    bucket_name: str
    scope_name: Optional[str] = None
    collection_name: Optional[str] = None
    connection_string: str

    @property
    def uses_default_collection(self) -> bool:
        return not self.scope_name


def mask_credentials(dsn: str) -> str:
    """Hide the password of a connection string for logging."""
    return _CREDENTIALS_PATTERN.sub(r"\1***@", dsn)


@contextmanager
def escalated_warnings() -> Iterator[None]:
    """
    Turn every warning raised inside the block into an exception.

    The previous warning filters are restored on exit, whether the block
    completes or raises. Warning filters are process-global, so this is not
    safe to enter from several threads at once.
    """
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        yield


def parse_options(options: str, dsn: str | None = None) -> dict[str, str]:
    """
    Parse a ``key=value&key=value`` options block.

    A key that appears more than once keeps its last value. A segment that
    does not contain exactly one ``=`` is malformed.
    """
    results: dict[str, str] = {}
    for segment in options.split("&"):
        if segment.count("=") != 1:
            raise MalformedDescriptorError(
                f"Invalid Couchbase DSN option {segment!r}: expected exactly one '='.",
                dsn=mask_credentials(dsn) if dsn else None,
            )
        key, value = segment.split("=", 1)
        if not key:
            raise MalformedDescriptorError(
                f"Invalid Couchbase DSN option {segment!r}: empty option name.",
                dsn=mask_credentials(dsn) if dsn else None,
            )
        results[key] = value
    return results


def parse_descriptor(dsn: str) -> ConnectionDescriptor:
    """
    Parse one connection string.

    Raises:
        MalformedDescriptorError: If the string does not start with
            ``couchbase:`` or ``couchbases:``, or does not match the grammar
    """
    if not isinstance(dsn, str) or not dsn.startswith(SCHEME_PREFIXES):
        raise MalformedDescriptorError(
            f'Invalid Couchbase DSN: "{mask_credentials(str(dsn))}" does not start with "couchbase:" or "couchbases:".',
            dsn=mask_credentials(str(dsn)),
        )

    match = _DSN_PATTERN.match(dsn)
    if match is None:
        raise MalformedDescriptorError(
            f'Invalid Couchbase DSN: "{mask_credentials(dsn)}".',
            dsn=mask_credentials(dsn),
        )

    username = match.group("username")
    password = match.group("password")
    if password is not None and len(password) < MIN_PASSWORD_LENGTH:
        # Too short to count as a credential; keep whatever is already known.
        logger.warning(
            "Ignoring DSN credentials with a password shorter than %d characters",
            MIN_PASSWORD_LENGTH,
            extra={"dsn": mask_credentials(dsn)}
        )
        username = password = None

    raw_options = match.group("options")
    options = parse_options(raw_options, dsn) if raw_options is not None else {}

    return ConnectionDescriptor(
        protocol=Protocol(match.group("protocol").lower()),
        host=match.group("host"),
        username=username,
        password=password,
        bucket_name=match.group("bucket"),
        scope_name=match.group("scope"),
        collection_name=match.group("collection"),
        options=options,
        raw_options=raw_options,
    )


def normalize_servers(servers: Any) -> list[str]:
    """
    Accept a single connection string or a non-empty list of them.

    Raises:
        InvalidArgumentKindError: If ``servers`` has any other shape
    """
    if isinstance(servers, str):
        return [servers]
    if not isinstance(servers, (list, tuple)):
        raise InvalidArgumentKindError(
            f'Argument "servers" must be a list or a string, "{type(servers).__name__}" given.',
            received=servers,
        )
    if not servers:
        raise InvalidArgumentKindError(
            'Argument "servers" must contain at least one connection string.',
            received=servers,
        )
    return list(servers)


def resolve_descriptors(
    servers: str | list[str] | tuple[str, ...],
    options: dict[str, Any] | None = None,
) -> ResolvedConfig:
    """
    Merge one or more connection strings into a single configuration.

    Precedence:
        - ``username``/``password`` start from ``options``; a descriptor that
          carries credentials replaces them for itself and every later one.
        - The protocol becomes ``couchbases`` as soon as any descriptor asks
          for it.
        - Caller options seed the merged options; inline options of each
          descriptor overwrite earlier values key by key.
        - Hosts are collected in order; bucket, scope, collection and the
          options suffix of the connection string come from the last
          descriptor.

    Args:
        servers: A connection string or a list of them
        options: Caller options; may include ``username`` and ``password``

    Returns:
        The resolved configuration

    Raises:
        InvalidArgumentKindError: If ``servers`` is not a string or a list
        MalformedDescriptorError: If any descriptor fails to parse
    """
    servers = normalize_servers(servers)

    merged_options = dict(options or {})
    username = merged_options.pop("username", None)
    password = merged_options.pop("password", None)
    protocol = Protocol.PLAIN
    hosts: list[str] = []
    descriptor: ConnectionDescriptor | None = None

    with escalated_warnings():
        for dsn in servers:
            descriptor = parse_descriptor(dsn)

            username = descriptor.username or username
            password = descriptor.password or password
            if descriptor.protocol is not Protocol.PLAIN:
                protocol = descriptor.protocol

            merged_options.update(descriptor.options)
            hosts.append(descriptor.host)

    suffix = f"?{descriptor.raw_options}" if descriptor.raw_options is not None else ""
    connection_string = f"{protocol.value}://{','.join(hosts)}{suffix}"

    logger.debug(
        "Resolved %d Couchbase DSN(s)",
        len(hosts),
        extra={"connection_string": connection_string, "bucket": descriptor.bucket_name}
    )

    return ResolvedConfig(
        hosts=hosts,
        protocol=protocol,
        username=username,
        password=password,
        options=merged_options,
        bucket_name=descriptor.bucket_name,
        scope_name=descriptor.scope_name,
        collection_name=descriptor.collection_name,
        connection_string=connection_string,
    )
