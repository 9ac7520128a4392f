"""Per-key outcomes of batch cache operations."""

from dataclasses import dataclass, field
from typing import Iterable, Literal


@dataclass(frozen=True)
class KeyOutcome:
    """Outcome of a single key within a batch."""
    key: str
    success: bool
    reason: str | None = None


@dataclass
class BatchResult:
    """
    Outcomes of one batch call, one entry per key.

    A failing key never stops the batch; callers derive the "all succeeded"
    view from ``ok``.
    """
    outcomes: list[KeyOutcome] = field(default_factory=list)

    def succeed(self, key: str) -> None:
        self.outcomes.append(KeyOutcome(key, True))

    def fail(self, key: str, reason: str | None = None) -> None:
        self.outcomes.append(KeyOutcome(key, False, reason))

    def fail_all(self, keys: Iterable[str], reason: str | None = None) -> None:
        for key in keys:
            self.fail(key, reason)

    @property
    def ok(self) -> bool:
        return all(outcome.success for outcome in self.outcomes)

    @property
    def failed_keys(self) -> set[str]:
        return {outcome.key for outcome in self.outcomes if not outcome.success}

    @property
    def succeeded_keys(self) -> set[str]:
        return {outcome.key for outcome in self.outcomes if outcome.success}

    def as_save_result(self) -> Literal[True] | set[str]:
        """``True`` when every key succeeded, otherwise the failed keys."""
        return True if self.ok else self.failed_keys

    def __len__(self) -> int:
        return len(self.outcomes)
