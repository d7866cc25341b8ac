"""Abstract interface to one server's item API."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, AsyncIterator
from enum import Enum

from ..types import Attachment, ItemRef, Profile


class TransportError(RuntimeError):
    """A request to a server failed."""


class PutResult(Enum):
    """Result of a successful push."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class ItemSource(ABC):
    """Read/write access to the per-user item logs of one server.

    Implementations are trusted to verify signatures and to apply their own
    timeouts; the sync engine only moves bytes between them.
    """

    @abstractmethod
    def get_user_items(self, user_id: str) -> AsyncIterator[ItemRef]:
        """Iterate over a user's items, newest first.

        Each call starts a fresh iteration from the newest item.

        Args:
            user_id: The user whose items to list.

        Returns:
            Async iterator of ItemRefs in descending timestamp order.
        """
        pass

    @abstractmethod
    async def get_item_bytes(self, user_id: str, signature: bytes) -> bytes | None:
        """Fetch the raw bytes of an item, or None if the server doesn't have it."""
        pass

    @abstractmethod
    async def put_item(self, user_id: str, signature: bytes, data: bytes) -> PutResult:
        """Push raw item bytes.

        Raises:
            TransportError: If the server rejected the item or couldn't be reached.
        """
        pass

    @abstractmethod
    async def get_profile(self, user_id: str) -> Profile | None:
        """Fetch the user's latest profile, or None if the server has none."""
        pass

    @abstractmethod
    async def list_attachments(self, user_id: str, signature: bytes) -> list[Attachment]:
        """List the file attachments of an item."""
        pass

    @abstractmethod
    async def has_file(self, user_id: str, signature: bytes, name: str) -> bool:
        """Check whether the server already stores an attachment."""
        pass

    @abstractmethod
    def stream_file(self, user_id: str, signature: bytes, name: str) -> AsyncIterator[bytes]:
        """Stream an attachment's contents in chunks.

        Callers close the returned generator when they stop reading early.
        """
        pass

    @abstractmethod
    async def put_file(
        self,
        user_id: str,
        signature: bytes,
        name: str,
        chunks: AsyncIterable[bytes],
    ) -> None:
        """Upload an attachment from a stream of chunks.

        Raises:
            TransportError: If the upload failed.
        """
        pass

    async def close(self) -> None:
        """Release any held connections."""
