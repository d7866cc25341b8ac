"""Tests for PeekableCursor."""

import pytest

from diskuto_sync.sync import PeekableCursor
from diskuto_sync.types import ItemRef


async def _items(*timestamps):
    for ts in timestamps:
        yield ItemRef(ts, bytes([ts % 256]))


class TestPeekableCursor:
    """Tests for PeekableCursor."""

    @pytest.mark.asyncio
    async def test_peek_is_idempotent(self):
        """Test that peeking twice returns the same head."""
        cursor = PeekableCursor(_items(3, 2, 1))

        first = await cursor.peek()
        second = await cursor.peek()

        assert first == second
        assert first.timestamp_ms_utc == 3

    @pytest.mark.asyncio
    async def test_advance_moves_to_next_item(self):
        """Test walking the whole stream."""
        cursor = PeekableCursor(_items(3, 2, 1))
        seen = []

        while (head := await cursor.peek()) is not None:
            seen.append(head.timestamp_ms_utc)
            cursor.advance()

        assert seen == [3, 2, 1]
        assert cursor.exhausted

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        """Test that an empty stream peeks as None and stays exhausted."""
        cursor = PeekableCursor(_items())

        assert await cursor.peek() is None
        assert await cursor.peek() is None
        assert cursor.exhausted

    @pytest.mark.asyncio
    async def test_advance_without_peek_raises(self):
        """Test that advance() requires a pending head."""
        cursor = PeekableCursor(_items(1))

        with pytest.raises(RuntimeError):
            cursor.advance()

        await cursor.peek()
        cursor.advance()
        with pytest.raises(RuntimeError):
            cursor.advance()

    @pytest.mark.asyncio
    async def test_close_stops_the_stream(self):
        """Test that close() finalizes the underlying generator."""
        closed = []

        async def stream():
            try:
                yield ItemRef(1, b"\x01")
                yield ItemRef(0, b"\x00")
            finally:
                closed.append(True)

        cursor = PeekableCursor(stream())
        await cursor.peek()
        await cursor.close()

        assert closed == [True]
