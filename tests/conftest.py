"""Shared fixtures for diskuto-sync tests."""

import pytest

from diskuto_sync.events import LogEnd, LogEntry, Logger, LogEvent, Outcome
from diskuto_sync.transport import MemoryServer
from diskuto_sync.types import ItemRef, ServerInfo


class RecordingEntry(LogEntry):
    def __init__(self, event: LogEvent):
        self.event = event
        self.ends: list[LogEnd] = []
        self.bytes = 0
        self.progress = 0

    def end(self, end: LogEnd) -> None:
        self.ends.append(end)

    def bytes_copied(self, count: int) -> None:
        self.bytes += count

    def increment_progress(self) -> None:
        self.progress += 1


class RecordingLogger(Logger):
    """Keeps every started event and how it ended."""

    def __init__(self):
        self.entries: list[RecordingEntry] = []

    def start(self, event: LogEvent) -> LogEntry:
        entry = RecordingEntry(event)
        self.entries.append(entry)
        return entry

    def of_type(self, event_type: type) -> list[RecordingEntry]:
        return [e for e in self.entries if isinstance(e.event, event_type)]

    def outcomes(self, event_type: type) -> list[Outcome]:
        return [end.outcome for e in self.of_type(event_type) for end in e.ends]


def item(ts: int, sig: int | None = None) -> ItemRef:
    """Item with a recognizable 64 byte signature."""
    value = ts if sig is None else sig
    return ItemRef(ts, value.to_bytes(8, "big") * 8)


@pytest.fixture
def recorder():
    return RecordingLogger()


@pytest.fixture
def three_servers():
    """Two destinations and one read-only server, in config order."""
    return {
        ServerInfo("https://a.example.com", name="a", is_dest=True): MemoryServer("a"),
        ServerInfo("https://b.example.com", name="b", is_dest=True): MemoryServer("b"),
        ServerInfo("https://c.example.com", name="c", is_dest=False): MemoryServer("c"),
    }
