"""Shared result and error types.

This module provides:
- BackupError and its subclasses: the exception hierarchy
- CancelledException: raised by cooperative cancel checks
- ItemStatus, ItemResult: per-item outcome of a walk or transfer
- RunSummary: counts of succeeded/skipped/failed items for a run
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto


class BackupError(Exception):
    """Base exception for backup errors."""


class ConfigError(BackupError):
    """Invalid or missing configuration."""


class SynchronizationError(BackupError):
    """A task required on the authority thread could not be run."""


class FatalTransferError(BackupError):
    """Failure that ends the current transfer and is never only logged."""


class ProtocolError(FatalTransferError):
    """The remote side broke the upload protocol."""


class UnexpectedStatusError(ProtocolError):
    """The remote side answered with a status the protocol does not expect.

    Attributes:
        status_code: HTTP status code of the response.
        body: Raw response body, kept for diagnostics.
    """

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Unexpected HTTP status {status_code}: {body[:200]}")


class ServerError(UnexpectedStatusError):
    """5xx response; the only status class worth retrying."""


class IntegrityError(FatalTransferError):
    """Remote byte count does not match the bytes sent."""


class CancelledException(Exception):
    """Raised when a cooperative cancel check fires."""


class ItemStatus(Enum):
    """Outcome of a single item (file or directory)."""

    SUCCEEDED = auto()
    SKIPPED = auto()
    FAILED = auto()


@dataclass
class ItemResult:
    """Result for one visited item."""

    path: str
    status: ItemStatus
    size: int = 0
    reason: str | None = None


@dataclass
class RunSummary:
    """Summary of a walk, copy or upload run.

    Per-item failures never abort a run; they are collected here instead
    of only being visible in the logs.
    """

    results: list[ItemResult] = field(default_factory=list)

    def add(self, result: ItemResult) -> ItemResult:
        """Record a result and return it."""
        self.results.append(result)
        return result

    def succeeded(self, path: str, size: int = 0) -> ItemResult:
        return self.add(ItemResult(path, ItemStatus.SUCCEEDED, size=size))

    def skipped(self, path: str, reason: str) -> ItemResult:
        return self.add(ItemResult(path, ItemStatus.SKIPPED, reason=reason))

    def failed(self, path: str, reason: str) -> ItemResult:
        return self.add(ItemResult(path, ItemStatus.FAILED, reason=reason))

    def merge(self, other: RunSummary) -> None:
        """Append all results of another summary."""
        self.results.extend(other.results)

    def _count(self, status: ItemStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def succeeded_count(self) -> int:
        return self._count(ItemStatus.SUCCEEDED)

    @property
    def skipped_count(self) -> int:
        return self._count(ItemStatus.SKIPPED)

    @property
    def failed_count(self) -> int:
        return self._count(ItemStatus.FAILED)

    @property
    def bytes_processed(self) -> int:
        return sum(r.size for r in self.results if r.status is ItemStatus.SUCCEEDED)

    @property
    def ok(self) -> bool:
        """True when no item failed."""
        return self.failed_count == 0

    def paths(self, status: ItemStatus = ItemStatus.SUCCEEDED) -> set[str]:
        """Paths of all items with the given status."""
        return {r.path for r in self.results if r.status is status}

    def __str__(self) -> str:
        return (
            f"{self.succeeded_count} succeeded, {self.skipped_count} skipped, "
            f"{self.failed_count} failed ({self.bytes_processed} bytes)"
        )
