"""Trigger batches: one delivery of change and signal notifications."""

from __future__ import annotations

import signal
from dataclasses import dataclass

from watchfiles import Change

# SIGQUIT does not exist on Windows.
SHUTDOWN_SIGNALS: frozenset[signal.Signals] = frozenset(
    sig
    for sig in (
        signal.SIGINT,
        signal.SIGTERM,
        getattr(signal, "SIGQUIT", None),
    )
    if sig is not None
)

FileChange = tuple[Change, str]


@dataclass(frozen=True, slots=True)
class TriggerBatch:
    """Changes and signals observed together, handled atomically."""

    changes: frozenset[FileChange] = frozenset()
    signals: frozenset[signal.Signals] = frozenset()

    @classmethod
    def from_changes(cls, changes: set[FileChange] | frozenset[FileChange]) -> TriggerBatch:
        return cls(changes=frozenset(changes))

    @classmethod
    def from_signal(cls, sig: signal.Signals) -> TriggerBatch:
        return cls(signals=frozenset({sig}))

    @property
    def requests_shutdown(self) -> bool:
        return not self.signals.isdisjoint(SHUTDOWN_SIGNALS)

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    def merge(self, other: TriggerBatch) -> TriggerBatch:
        return TriggerBatch(
            changes=self.changes | other.changes,
            signals=self.signals | other.signals,
        )

    def describe(self) -> str:
        parts = [f"{change.name}:{path}" for change, path in sorted(self.changes, key=_sort_key)]
        parts.extend(sig.name for sig in sorted(self.signals))
        return ", ".join(parts) or "empty"


def _sort_key(item: FileChange) -> tuple[str, int]:
    change, path = item
    return path, int(change)
