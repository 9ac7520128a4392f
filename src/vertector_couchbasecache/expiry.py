"""
Expiry normalization for Couchbase documents.

Couchbase reads an expiry of up to 30 days as a duration relative to now and
anything larger as an absolute Unix timestamp.
"""

import time
from datetime import timedelta

THIRTY_DAYS_IN_SECONDS = 2592000


def normalize_expiry(expiry: int, now: float | None = None) -> int:
    """
    Convert a ttl in seconds to the value the store expects.

    ``0`` (never expires) and ttls up to 30 days pass through unchanged;
    longer ttls become an absolute timestamp by adding the current time.

    Args:
        expiry: Time-to-live in seconds
        now: Current Unix time, defaults to ``time.time()``

    Returns:
        Expiry value for the store
    """
    if expiry and expiry > THIRTY_DAYS_IN_SECONDS:
        expiry += int(time.time() if now is None else now)
    return expiry


def to_sdk_expiry(expiry: int, now: float) -> timedelta:
    """
    Express a normalized expiry as the timedelta the SDK accepts.

    The SDK (checked against 3.2.7, see the ``couchbase`` extra) applies the
    same 30-day rule to the timedelta it is given, so an absolute timestamp
    is handed over relative to ``now`` and comes out as the same timestamp
    on the wire.
    """
    if expiry > THIRTY_DAYS_IN_SECONDS:
        return timedelta(seconds=expiry - int(now))
    return timedelta(seconds=expiry)
