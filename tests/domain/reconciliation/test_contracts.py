from __future__ import annotations

import pytest

from marketrecon.domain.model import BatchStatus
from marketrecon.domain.reconciliation import (
    BatchCancelledError,
    BatchResult,
    CancellationToken,
    ProgressCounters,
    TransientStorageError,
)


class _ManualClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_cancellation_token_cancel() -> None:
    token = CancellationToken()

    assert not token.cancelled
    token.raise_if_cancelled()

    token.cancel()

    assert token.cancelled
    with pytest.raises(BatchCancelledError):
        token.raise_if_cancelled()


def test_cancellation_token_deadline() -> None:
    clock = _ManualClock()
    token = CancellationToken(timeout=5, clock=clock)

    clock.now = 104.9
    assert not token.cancelled
    clock.now = 105.0
    assert token.cancelled


def test_batch_result_raise_for_status() -> None:
    committed = BatchResult(batch_id="b1", status=BatchStatus.COMMITTED, imported=2)
    failed = BatchResult(
        batch_id="b2",
        status=BatchStatus.FAILED,
        error=TransientStorageError("database is locked"),
    )

    committed.raise_for_status()
    assert committed.ok
    assert not failed.ok
    with pytest.raises(TransientStorageError, match="locked"):
        failed.raise_for_status()


def test_progress_counters_only_count_committed_batches() -> None:
    progress = ProgressCounters()
    progress.record_processed()
    progress.record_processed()

    progress.record_batch(
        BatchResult(batch_id="b1", status=BatchStatus.COMMITTED, imported=1, duplicates=1, errors=1)
    )
    progress.record_batch(BatchResult(batch_id="b2", status=BatchStatus.CANCELLED, imported=5))

    snapshot = progress.snapshot()
    assert snapshot["records_processed"] == 2
    assert snapshot["batches_committed"] == 1
    assert snapshot["batches_failed"] == 1
    assert snapshot["imported"] == 1
    assert snapshot["duplicates"] == 1
    assert snapshot["errors"] == 1
