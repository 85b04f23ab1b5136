"""Tests for trigger batches."""

from __future__ import annotations

import signal

from watchfiles import Change

from rerunner.batch import SHUTDOWN_SIGNALS, TriggerBatch


def test_empty_batch() -> None:
    batch = TriggerBatch()
    assert batch.has_changes is False
    assert batch.requests_shutdown is False
    assert batch.describe() == "empty"


def test_interrupt_requests_shutdown() -> None:
    assert TriggerBatch.from_signal(signal.SIGINT).requests_shutdown is True
    assert TriggerBatch.from_signal(signal.SIGTERM).requests_shutdown is True


def test_sigint_and_sigterm_are_shutdown_signals() -> None:
    assert {signal.SIGINT, signal.SIGTERM} <= SHUTDOWN_SIGNALS


def test_changes_do_not_request_shutdown() -> None:
    batch = TriggerBatch.from_changes({(Change.modified, "/tmp/a.sh")})
    assert batch.has_changes is True
    assert batch.requests_shutdown is False


def test_merge_unions_changes_and_signals() -> None:
    changes = TriggerBatch.from_changes({(Change.modified, "/tmp/a.sh")})
    interrupt = TriggerBatch.from_signal(signal.SIGINT)
    merged = changes.merge(interrupt)
    assert merged.has_changes is True
    assert merged.requests_shutdown is True


def test_describe_lists_changes_then_signals() -> None:
    batch = TriggerBatch(
        changes=frozenset({(Change.modified, "/tmp/a.sh")}),
        signals=frozenset({signal.SIGINT}),
    )
    assert batch.describe() == "modified:/tmp/a.sh, SIGINT"
