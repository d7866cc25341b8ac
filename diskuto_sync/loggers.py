"""Implementations of the :class:`~diskuto_sync.events.Logger` interface."""

import json
import logging
from dataclasses import asdict
from typing import Any
from urllib.parse import urlsplit

from .events import (
    CopyFile,
    CopyItem,
    DebugInfo,
    LogEnd,
    LogEntry,
    LogEvent,
    Logger,
    Outcome,
    SyncFeed,
    SyncProfile,
    SyncUserItems,
)
from .types import ServerInfo

logger = logging.getLogger(__name__)

# ANSI colors
_YELLOW = "\033[93m"
_GRAY = "\033[90m"
_RED_BOLD = "\033[1;91m"
_YELLOW_BOLD = "\033[1;93m"
_RESET = "\033[0m"


class _NoOpEntry(LogEntry):
    def end(self, end: LogEnd) -> None:
        pass


_NO_OP_ENTRY = _NoOpEntry()


class NoOpLogger(Logger):
    """A logger that does nothing.

    Not recommended outside of tests, because it swallows errors.
    """

    def start(self, event: LogEvent) -> LogEntry:
        return _NO_OP_ENTRY


class _ConsoleEntry(LogEntry):
    def __init__(self, owner: "ConsoleLogger", event: LogEvent):
        self._owner = owner
        self._event = event
        self._copied = 0
        self._progress = 0

    def end(self, end: LogEnd) -> None:
        self._owner._log_end(end, self._event)

    def bytes_copied(self, count: int) -> None:
        self._copied += count
        if isinstance(self._event, CopyFile) and self._event.total_bytes:
            percent = 100 * self._copied // self._event.total_bytes
            logger.debug(f"{self._event.file_name}: {self._copied} bytes ({percent}%)")

    def increment_progress(self) -> None:
        self._progress += 1
        logger.debug(f"{self._owner.color(_YELLOW, self._event.user.label)}: {self._progress} items")


class ConsoleLogger(Logger):
    """Plain-text logger that writes through the stdlib logging module.

    Starts are logged at INFO, successful ends at DEBUG, warnings and
    errors with the details of the event that failed.
    """

    def __init__(self, color: bool = True):
        """Initialize the console logger.

        Args:
            color: Highlight users, servers and failures with ANSI colors.
        """
        self.use_color = color

    def color(self, code: str, text: str) -> str:
        if not self.use_color:
            return text
        return f"{code}{text}{_RESET}"

    def start(self, event: LogEvent) -> LogEntry:
        if isinstance(event, DebugInfo):
            logger.debug(" ".join(str(part) for part in event.message_parts))
            return _NO_OP_ENTRY

        logger.info(fmt_event(event, self.color))
        return _ConsoleEntry(self, event)

    def _log_end(self, end: LogEnd, event: LogEvent) -> None:
        if end.outcome == Outcome.SUCCESS:
            logger.debug(f"done: {fmt_event(event, self.color)}")
            return

        detail = event_detail(event)
        if end.outcome == Outcome.WARNING:
            logger.warning(f"{self.color(_YELLOW_BOLD, 'WARNING:')} {end.message} detail: {detail}")
        else:
            logger.error(f"{self.color(_RED_BOLD, 'ERROR:')} {end.message} detail: {detail}")


def _plain(_code: str, text: str) -> str:
    return text


def fmt_event(event: LogEvent, color=_plain) -> str:
    """Format a log event as a one-line message.

    Args:
        event: The event to describe.
        color: Callable ``(ansi_code, text) -> str`` used for highlighting.

    Returns:
        Human-readable description of the event.
    """
    if isinstance(event, DebugInfo):
        return " ".join(str(part) for part in event.message_parts)

    if not isinstance(event, (SyncProfile, SyncFeed, SyncUserItems, CopyItem, CopyFile)):
        raise TypeError(f"Unknown log event: {event!r}")

    user = color(_YELLOW, event.user.label)

    if isinstance(event, SyncProfile):
        return f"Syncing profile for {user}"
    if isinstance(event, SyncFeed):
        return f"Syncing feed for {user}"
    if isinstance(event, SyncUserItems):
        return f"Syncing items for {user}"

    src, dest = fmt_servers(event.src, event.dest)
    servers = color(_GRAY, f"{src} → {dest}")
    short_sig = color(_GRAY, event.item.short_signature)

    if isinstance(event, CopyItem):
        return f"Copy item for {user} {short_sig} {servers}"
    return f"Copy file {event.file_name} for {user} {short_sig} {servers}"


def fmt_servers(src: ServerInfo, dest: ServerInfo) -> tuple[str, str]:
    """Pick the shortest names that tell two servers apart.

    Uses configured names if either server has one; otherwise the hostnames
    if they differ, then host:port, then the full URLs.
    """
    if src.name or dest.name:
        return src.name or src.url, dest.name or dest.url

    s_url = urlsplit(src.url)
    d_url = urlsplit(dest.url)
    if s_url.hostname and d_url.hostname:
        if s_url.hostname != d_url.hostname:
            return s_url.hostname, d_url.hostname
        if s_url.netloc != d_url.netloc:
            return s_url.netloc, d_url.netloc

    return src.url, dest.url


def event_detail(event: LogEvent) -> str:
    """Serialize an event as JSON for warning/error details."""
    return json.dumps({"type": type(event).__name__, **asdict(event)}, default=_json_default)


def _json_default(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.hex()
    return str(value)
