"""Shared types and dataclasses for publish operations.

This module provides:
- SyncError and subclasses: Exception classes for each failing stage
- SyncItem: A local file and its content key
- ItemInput: A web URI to object key mapping submitted to a publish
- Uploaded, AlreadyPresent: Upload outcomes for a SyncItem
- CancelScope: Cancellation and deadline shared by one run
- SyncArgs: Parsed command line arguments
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field


class SyncError(Exception):
    """Base exception for sync errors."""


class ClientInitError(SyncError):
    """Failed to construct a client (e.g. unusable cert/key)."""


class TransportError(SyncError):
    """A remote call failed or returned an unexpected response."""


class UploadError(SyncError):
    """Failed to write a blob to the remote store."""


class WalkError(SyncError):
    """Failed to enumerate the source tree."""


class MirrorError(SyncError):
    """Failed to run the mirror fallback command."""


class OperationCancelled(SyncError):
    """The run was cancelled or exceeded its deadline."""


class PublishError(SyncError):
    """A publish create, add-items or commit request failed.

    Attributes:
        publish_id: ID of the affected publish, if one was created.
    """

    def __init__(self, message: str, publish_id: str | None = None) -> None:
        super().__init__(message)
        self.publish_id = publish_id


@dataclass(frozen=True)
class SyncItem:
    """A local file to be published.

    Attributes:
        src_path: Path of the file on the local source tree.
        key: SHA-256 of the file content, used as the blob object key.
    """

    src_path: str
    key: str


@dataclass(frozen=True)
class ItemInput:
    """A single item added to a publish."""

    web_uri: str
    object_key: str

    def to_dict(self) -> dict[str, str]:
        """Convert to the exodus-gw request representation."""
        return {"web_uri": self.web_uri, "object_key": self.object_key}


@dataclass(frozen=True)
class Uploaded:
    """The item's blob was written to the remote store."""

    item: SyncItem


@dataclass(frozen=True)
class AlreadyPresent:
    """The item's blob already existed, nothing was written."""

    item: SyncItem


UploadOutcome = Uploaded | AlreadyPresent


class CancelScope:
    """Cancellation signal and optional deadline for one run.

    Every blocking remote call and file read checks the scope, so setting
    it (or reaching the deadline) stops the run at the next check. A child
    scope is cancelled along with its parent but can also be cancelled on
    its own, leaving the parent untouched.
    """

    def __init__(
        self, timeout: float | None = None, parent: CancelScope | None = None
    ) -> None:
        """Initialize the scope.

        Args:
            timeout: Seconds from now until the run is cancelled, or None.
            parent: Scope whose cancellation and deadline also apply here.
        """
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._parent = parent

    def child(self) -> CancelScope:
        """Create a scope cancelled along with this one."""
        return CancelScope(parent=self)

    def cancel(self) -> None:
        """Cancel the run."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Whether the run was cancelled or is past its deadline."""
        if self._event.is_set():
            return True
        if self._parent is not None and self._parent.cancelled:
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds left until the deadline, or None if there is none."""
        if self._deadline is None:
            return self._parent.remaining() if self._parent is not None else None
        return max(0.0, self._deadline - time.monotonic())

    def sleep(self, seconds: float) -> None:
        """Sleep, waking early if the run is cancelled.

        Raises:
            OperationCancelled: If the run was cancelled or timed out.
        """
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        if self._parent is None:
            self._event.wait(seconds)
        else:
            # Only our own event can be waited on; poll for the parent
            end = time.monotonic() + seconds
            left = seconds
            while left > 0 and not self.cancelled:
                self._event.wait(min(left, 0.05))
                left = end - time.monotonic()
        self.check()

    def check(self) -> None:
        """Raise OperationCancelled if the run should stop."""
        if self._event.is_set():
            raise OperationCancelled("operation cancelled")
        if self._parent is not None:
            self._parent.check()
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise OperationCancelled("operation timed out")


@dataclass
class SyncArgs:
    """Arguments of one exodus-rsync invocation.

    Attributes:
        src: Source path (file or directory).
        dest: Destination, `<prefix>:<path>` for exodus-gw publishing.
        conf: Explicit config file path, or empty to search defaults.
        verbose: Verbosity level.
        rsync_flags: Flags forwarded to rsync in mirror fallback mode.
    """

    src: str
    dest: str
    conf: str = ""
    verbose: int = 0
    rsync_flags: list[str] = field(default_factory=list)

    @property
    def dest_path(self) -> str:
        """Destination path with any `<prefix>:` removed."""
        _, sep, path = self.dest.partition(":")
        return path if sep else self.dest

    @property
    def dry_run(self) -> bool:
        """Whether a trial run was requested."""
        return "--dry-run" in self.rsync_flags
