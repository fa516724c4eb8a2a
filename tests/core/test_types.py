"""Tests for run summaries and the error hierarchy."""

from worldbackup.core.types import (
    BackupError,
    FatalTransferError,
    IntegrityError,
    ItemStatus,
    ProtocolError,
    RunSummary,
    ServerError,
    UnexpectedStatusError,
)


class TestRunSummary:
    """Tests for RunSummary."""

    def test_counts(self) -> None:
        """Counts and bytes follow the recorded results."""
        summary = RunSummary()
        summary.succeeded("a", 10)
        summary.succeeded("b", 5)
        summary.skipped("c.lck", "lock file")
        summary.failed("d", "locked")

        assert summary.succeeded_count == 2
        assert summary.skipped_count == 1
        assert summary.failed_count == 1
        assert summary.bytes_processed == 15
        assert summary.ok is False
        assert summary.paths(ItemStatus.SKIPPED) == {"c.lck"}
        assert str(summary) == "2 succeeded, 1 skipped, 1 failed (15 bytes)"

    def test_merge(self) -> None:
        """Merging appends results."""
        first = RunSummary()
        first.succeeded("a", 1)
        second = RunSummary()
        second.succeeded("b", 2)

        first.merge(second)

        assert first.paths() == {"a", "b"}
        assert first.ok is True


class TestErrors:
    """Tests for the exception hierarchy."""

    def test_fatal_errors(self) -> None:
        """Protocol and integrity errors are fatal transfer errors."""
        assert issubclass(ProtocolError, FatalTransferError)
        assert issubclass(IntegrityError, FatalTransferError)
        assert issubclass(FatalTransferError, BackupError)

    def test_unexpected_status_keeps_body(self) -> None:
        """Status and body are kept for diagnostics."""
        error = ServerError(503, "overloaded")
        assert isinstance(error, UnexpectedStatusError)
        assert error.status_code == 503
        assert error.body == "overloaded"
        assert "503" in str(error)
