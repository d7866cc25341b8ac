"""Progress/outcome events emitted by the sync engine.

The engine reports every unit of work through a :class:`Logger`: it calls
``start(event)`` when the work begins and ``end(...)`` on the returned
:class:`LogEntry` when it finishes. Renderers (plain console, no-op, or
anything a GUI wants) implement :class:`Logger` without the engine
depending on any one of them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .types import ItemRef, ServerInfo, UserRef


@dataclass(frozen=True)
class SyncProfile:
    """Syncing a user's latest profile (and so their follow list)."""

    user: UserRef


@dataclass(frozen=True)
class SyncFeed:
    """Syncing a user's feed: everyone they follow.

    Lasts until the items of every followed user have been synced.
    """

    user: UserRef


@dataclass(frozen=True)
class SyncUserItems:
    """Syncing the items of one user."""

    user: UserRef
    max_count: int | None = None


@dataclass(frozen=True)
class CopyItem:
    """Copying one item from a source server to a destination."""

    user: UserRef
    item: ItemRef
    src: ServerInfo
    dest: ServerInfo


@dataclass(frozen=True)
class CopyFile:
    """Copying one file attachment of an item."""

    user: UserRef
    item: ItemRef
    file_name: str  # Just the base name, ex: "foo.png"
    total_bytes: int
    src: ServerInfo
    dest: ServerInfo


@dataclass(frozen=True)
class DebugInfo:
    """A free-form debug message."""

    message_parts: tuple[Any, ...]


LogEvent = SyncProfile | SyncFeed | SyncUserItems | CopyItem | CopyFile | DebugInfo


class Outcome(Enum):
    """How a logged unit of work ended."""

    SUCCESS = "success"
    WARNING = "warning"  # Something went wrong, but work continues
    ERROR = "error"  # This unit failed; sibling units are unaffected


@dataclass(frozen=True)
class LogEnd:
    """Passed to :meth:`LogEntry.end`."""

    outcome: Outcome
    message: str | None = None

    @classmethod
    def success(cls) -> "LogEnd":
        return cls(Outcome.SUCCESS)

    @classmethod
    def warning(cls, message: str) -> "LogEnd":
        return cls(Outcome.WARNING, message)

    @classmethod
    def error(cls, message: str) -> "LogEnd":
        return cls(Outcome.ERROR, message)


class LogEntry(ABC):
    """Handle for an in-progress log event."""

    @abstractmethod
    def end(self, end: LogEnd) -> None:
        """Called once, when the event has completed."""
        pass

    def bytes_copied(self, count: int) -> None:
        """Called for :class:`CopyFile` events as chunks are copied."""

    def increment_progress(self) -> None:
        """Called for :class:`SyncUserItems` events once per reconciled item."""


class Logger(ABC):
    """Implement this to customize how sync progress is reported.

    Designed to be usable both from a CLI and from a GUI.
    """

    @abstractmethod
    def start(self, event: LogEvent) -> LogEntry:
        """Called when a new log event starts.

        Args:
            event: What is starting.

        Returns:
            A LogEntry used to report progress and the end of the event.
        """
        pass
