"""
Value serialization for cache entries.

The adapter only needs ``marshall`` and ``unmarshall``; any object with that
shape can replace ``DefaultMarshaller``.
"""

import logging
import pickle
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Marshaller(Protocol):
    """Serializes cache values to byte strings and back."""

    def marshall(self, values: dict[str, Any]) -> tuple[dict[str, bytes], list[str]]:
        """Return serialized values and the keys that could not be serialized."""
        ...

    def unmarshall(self, value: bytes) -> Any:
        ...


class DefaultMarshaller:
    """
    Pickle-based marshaller.

    Values that cannot be pickled are reported as failed keys instead of
    raising, so the rest of the batch can still be written.
    """

    def __init__(self, protocol: int = pickle.HIGHEST_PROTOCOL):
        self.protocol = protocol

    def marshall(self, values: dict[str, Any]) -> tuple[dict[str, bytes], list[str]]:
        serialized: dict[str, bytes] = {}
        failed: list[str] = []

        for key, value in values.items():
            try:
                serialized[key] = pickle.dumps(value, protocol=self.protocol)
            except (pickle.PicklingError, TypeError, AttributeError) as e:
                logger.warning(
                    f"Failed to serialize value for key {key!r}",
                    extra={"key": key, "error_type": type(e).__name__, "error": str(e)}
                )
                failed.append(key)

        return serialized, failed

    def unmarshall(self, value: bytes) -> Any:
        return pickle.loads(value)
