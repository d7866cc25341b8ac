"""In-memory item server, for tests and for embedding the engine in other tools."""

import json
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from ..ordering import item_key
from ..types import Attachment, Follow, ItemRef, Profile
from .base import ItemSource, PutResult, TransportError


def encode_item(item: ItemRef, profile: Profile | None = None, body: str = "") -> bytes:
    """Serialize an item the way MemoryServer stores it.

    Real servers parse signed protobuf items; MemoryServer only needs enough
    to recover the ItemRef (and the profile, for profile items) from pushed
    bytes.
    """
    payload: dict[str, Any] = {
        "timestamp_ms_utc": item.timestamp_ms_utc,
        "signature": item.signature_hex,
        "body": body,
    }
    if profile is not None:
        payload["profile"] = {
            "display_name": profile.display_name,
            "follows": [
                {"user_id": f.user_id, "display_name": f.display_name}
                for f in profile.follows
            ],
        }
    return json.dumps(payload).encode()


def decode_item(data: bytes) -> tuple[ItemRef, Profile | None]:
    """Inverse of encode_item.

    Raises:
        ValueError: If the bytes are not an encoded item.
    """
    payload = json.loads(data)
    item = ItemRef(payload["timestamp_ms_utc"], bytes.fromhex(payload["signature"]))
    profile_data = payload.get("profile")
    if profile_data is None:
        return item, None
    follows = tuple(
        Follow(f["user_id"], f.get("display_name")) for f in profile_data.get("follows", [])
    )
    return item, Profile(item, profile_data.get("display_name"), follows)


class MemoryServer(ItemSource):
    """An ItemSource backed by dictionaries.

    Failure injection: ``fail_puts`` makes every push raise TransportError,
    ``fail_listing`` makes item iteration raise.
    """

    def __init__(self, name: str = "memory", chunk_size: int = 4):
        """Initialize an empty server.

        Args:
            name: Name used in error messages.
            chunk_size: Size of the chunks yielded by stream_file.
        """
        self.name = name
        self.chunk_size = chunk_size
        self.items: dict[str, dict[bytes, tuple[ItemRef, bytes]]] = {}
        self.profiles: dict[str, Profile] = {}
        self.attachments: dict[tuple[str, bytes], dict[str, bytes]] = {}
        self.fail_puts = False
        self.fail_listing = False
        self.put_count = 0

    def add_item(self, user_id: str, item: ItemRef, body: str = "") -> None:
        """Store an item directly, bypassing put_item."""
        self._store(user_id, item, encode_item(item, body=body))

    def add_profile(self, user_id: str, profile: Profile) -> None:
        """Store a profile; it is also an item in the user's log."""
        self._store(user_id, profile.item, encode_item(profile.item, profile))
        self._update_profile(user_id, profile)

    def add_file(self, user_id: str, signature: bytes, name: str, data: bytes) -> None:
        self.attachments.setdefault((user_id, signature), {})[name] = data

    def signatures(self, user_id: str) -> set[bytes]:
        """All item signatures stored for a user."""
        return set(self.items.get(user_id, {}))

    async def get_user_items(self, user_id: str) -> AsyncIterator[ItemRef]:
        if self.fail_listing:
            raise TransportError(f"{self.name}: listing failed")
        entries = [item for item, _ in self.items.get(user_id, {}).values()]
        for item in sorted(entries, key=item_key, reverse=True):
            yield item

    async def get_item_bytes(self, user_id: str, signature: bytes) -> bytes | None:
        entry = self.items.get(user_id, {}).get(signature)
        return entry[1] if entry else None

    async def put_item(self, user_id: str, signature: bytes, data: bytes) -> PutResult:
        if self.fail_puts:
            raise TransportError(f"{self.name}: put failed")
        self.put_count += 1
        if signature in self.items.get(user_id, {}):
            return PutResult.ALREADY_EXISTS

        try:
            item, profile = decode_item(data)
        except (ValueError, KeyError, TypeError) as e:
            raise TransportError(f"{self.name}: invalid item: {e}") from e
        if item.signature != signature:
            raise TransportError(f"{self.name}: signature mismatch")

        self._store(user_id, item, data)
        if profile is not None:
            self._update_profile(user_id, profile)
        return PutResult.CREATED

    async def get_profile(self, user_id: str) -> Profile | None:
        return self.profiles.get(user_id)

    async def list_attachments(self, user_id: str, signature: bytes) -> list[Attachment]:
        files = self.attachments.get((user_id, signature), {})
        return [Attachment(name, len(data)) for name, data in files.items()]

    async def has_file(self, user_id: str, signature: bytes, name: str) -> bool:
        return name in self.attachments.get((user_id, signature), {})

    async def stream_file(self, user_id: str, signature: bytes, name: str) -> AsyncIterator[bytes]:
        data = self.attachments.get((user_id, signature), {}).get(name)
        if data is None:
            raise TransportError(f"{self.name}: no such file {name}")
        for start in range(0, len(data), self.chunk_size):
            yield data[start:start + self.chunk_size]

    async def put_file(
        self,
        user_id: str,
        signature: bytes,
        name: str,
        chunks: AsyncIterable[bytes],
    ) -> None:
        if self.fail_puts:
            raise TransportError(f"{self.name}: put failed")
        data = b"".join([chunk async for chunk in chunks])
        self.add_file(user_id, signature, name, data)

    def _store(self, user_id: str, item: ItemRef, data: bytes) -> None:
        self.items.setdefault(user_id, {})[item.signature] = (item, data)

    def _update_profile(self, user_id: str, profile: Profile) -> None:
        current = self.profiles.get(user_id)
        if current is None or item_key(current.item) < item_key(profile.item):
            self.profiles[user_id] = profile
