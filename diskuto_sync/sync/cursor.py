"""One-item lookahead over a server's newest-first item stream."""

from collections.abc import AsyncIterator

from ..types import ItemRef


class PeekableCursor:
    """Lets the merge inspect a server's next item without consuming it.

    ``peek()`` returns None once the stream is exhausted.
    """

    def __init__(self, items: AsyncIterator[ItemRef]):
        self._items = items
        self._head: ItemRef | None = None
        self._exhausted = False

    async def peek(self) -> ItemRef | None:
        """Return the next item, or None if there are no more.

        Idempotent until ``advance()`` is called.
        """
        if self._head is None and not self._exhausted:
            try:
                self._head = await anext(self._items)
            except StopAsyncIteration:
                self._exhausted = True
        return self._head

    def advance(self) -> None:
        """Consume the item returned by the last ``peek()``.

        Raises:
            RuntimeError: If there is no peeked item to consume.
        """
        if self._head is None:
            raise RuntimeError("advance() called without a pending peeked item")
        self._head = None

    async def close(self) -> None:
        """Stop the underlying stream (ex: so an HTTP source stops paging)."""
        aclose = getattr(self._items, "aclose", None)
        if aclose is not None:
            await aclose()

    @property
    def exhausted(self) -> bool:
        return self._exhausted
