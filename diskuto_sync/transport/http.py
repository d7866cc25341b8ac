"""HTTP client for a Diskuto server's item API.

Handles paging of item lists and retries requests with exponential backoff.
"""

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

import httpx

from ..types import Attachment, Follow, ItemRef, Profile
from .base import ItemSource, PutResult, TransportError

logger = logging.getLogger(__name__)


class DiskutoClient(ItemSource):
    """ItemSource that talks to one server over HTTP.

    Signatures are hex-encoded in URLs and JSON bodies. Item and file
    payloads are sent and received as raw bytes.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
    ):
        """Initialize the client.

        Args:
            base_url: Server URL (e.g., "https://blog.example.com").
            timeout: Request timeout in seconds.
            max_retries: Maximum attempts per request.
            backoff_seconds: Delay before the first retry; doubles each time.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/diskuto",
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        content: bytes | None = None,
    ) -> httpx.Response:
        """Make an HTTP request, retrying server errors with exponential backoff.

        Client errors (4xx) are returned to the caller without retrying.

        Raises:
            TransportError: If the request fails after all retries.
        """
        client = await self._get_client()
        backoff = self.backoff_seconds
        last_error = ""

        for attempt in range(self.max_retries):
            try:
                response = await client.request(method, path, params=params, content=content)
                if response.status_code < 500:
                    return response
                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    f"{self.base_url}: server error {response.status_code} on {method} {path}, "
                    f"attempt {attempt + 1}/{self.max_retries}"
                )
            except httpx.ConnectError as e:
                last_error = f"Connection failed: {e}"
                logger.warning(
                    f"{self.base_url}: connection failed, attempt {attempt + 1}/{self.max_retries}"
                )
            except httpx.TimeoutException:
                last_error = "Request timeout"
                logger.warning(
                    f"{self.base_url}: request timeout, attempt {attempt + 1}/{self.max_retries}"
                )
            except httpx.HTTPError as e:
                raise TransportError(f"{method} {self.base_url}{path}: {e}") from e

            if attempt < self.max_retries - 1:
                await asyncio.sleep(backoff)
                backoff *= 2

        raise TransportError(
            f"{method} {self.base_url}{path}: max retries ({self.max_retries}) exceeded ({last_error})"
        )

    @staticmethod
    def _check(response: httpx.Response) -> None:
        if response.is_error:
            raise TransportError(
                f"{response.request.method} {response.request.url}: "
                f"HTTP {response.status_code}: {response.text[:200]}"
            )

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"{response.request.url}: invalid JSON: {e}") from e

    async def get_user_items(self, user_id: str) -> AsyncIterator[ItemRef]:
        # Timestamps are not unique, so pages are requested with an inclusive
        # cursor and items already yielded at the boundary timestamp skipped.
        before: int | None = None
        last_ts: int | None = None
        seen_at_last_ts: set[bytes] = set()
        while True:
            params = {"before": before} if before is not None else None
            response = await self._request("GET", f"/users/{user_id}/items", params=params)
            self._check(response)
            data = self._json(response)

            entries = data.get("items", [])
            fresh = 0
            for entry in entries:
                item = _parse_item_ref(entry)
                if item.timestamp_ms_utc == last_ts and item.signature in seen_at_last_ts:
                    continue
                if item.timestamp_ms_utc != last_ts:
                    last_ts = item.timestamp_ms_utc
                    seen_at_last_ts = set()
                seen_at_last_ts.add(item.signature)
                fresh += 1
                yield item

            if data.get("no_more_items", False) or not entries:
                return

            if fresh:
                before = last_ts + 1
            else:
                # A whole page of items at last_ts that were already yielded.
                logger.debug(
                    f"{self.base_url}: page of {len(entries)} repeats at {last_ts} for {user_id}, "
                    "moving past them"
                )
                before = last_ts

    async def get_item_bytes(self, user_id: str, signature: bytes) -> bytes | None:
        response = await self._request("GET", f"/users/{user_id}/items/{signature.hex()}")
        if response.status_code == 404:
            return None
        self._check(response)
        return response.content

    async def put_item(self, user_id: str, signature: bytes, data: bytes) -> PutResult:
        response = await self._request(
            "PUT", f"/users/{user_id}/items/{signature.hex()}", content=data
        )
        if response.status_code == 409:
            return PutResult.ALREADY_EXISTS
        self._check(response)
        return PutResult.CREATED

    async def get_profile(self, user_id: str) -> Profile | None:
        response = await self._request("GET", f"/users/{user_id}/profile")
        if response.status_code == 404:
            return None
        self._check(response)
        data = self._json(response)

        try:
            return Profile(
                item=_parse_item_ref(data),
                display_name=data.get("display_name") or None,
                follows=tuple(
                    Follow(f["user_id"], f.get("display_name") or None)
                    for f in data.get("follows", [])
                ),
            )
        except (KeyError, TypeError) as e:
            raise TransportError(f"{self.base_url}: malformed profile for {user_id}: {e}") from e

    async def list_attachments(self, user_id: str, signature: bytes) -> list[Attachment]:
        response = await self._request("GET", f"/users/{user_id}/items/{signature.hex()}/files")
        if response.status_code == 404:
            return []
        self._check(response)
        data = self._json(response)
        return [Attachment(f["name"], int(f.get("size", 0))) for f in data.get("files", [])]

    async def has_file(self, user_id: str, signature: bytes, name: str) -> bool:
        response = await self._request(
            "HEAD", f"/users/{user_id}/items/{signature.hex()}/files/{name}"
        )
        if response.status_code == 404:
            return False
        self._check(response)
        return True

    async def stream_file(self, user_id: str, signature: bytes, name: str) -> AsyncIterator[bytes]:
        client = await self._get_client()
        path = f"/users/{user_id}/items/{signature.hex()}/files/{name}"
        try:
            async with client.stream("GET", path) as response:
                if response.is_error:
                    raise TransportError(f"GET {self.base_url}{path}: HTTP {response.status_code}")
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.HTTPError as e:
            raise TransportError(f"GET {self.base_url}{path}: {e}") from e

    async def put_file(
        self,
        user_id: str,
        signature: bytes,
        name: str,
        chunks: AsyncIterable[bytes],
    ) -> None:
        # A stream can only be sent once, so uploads are not retried.
        client = await self._get_client()
        path = f"/users/{user_id}/items/{signature.hex()}/files/{name}"
        try:
            response = await client.put(path, content=chunks)
        except httpx.HTTPError as e:
            raise TransportError(f"PUT {self.base_url}{path}: {e}") from e
        if response.status_code == 409:
            return
        self._check(response)

    async def check_connection(self) -> bool:
        """Check whether the server answers at all.

        Returns:
            True if the server responded without a server error.
        """
        try:
            client = await self._get_client()
            response = await client.get(self.base_url)
            return response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug(f"Connection check failed for {self.base_url}: {e}")
            return False


def _parse_item_ref(entry: dict[str, Any]) -> ItemRef:
    try:
        return ItemRef(int(entry["timestamp_ms_utc"]), bytes.fromhex(entry["signature"]))
    except (KeyError, TypeError, ValueError) as e:
        raise TransportError(f"malformed item entry {entry!r}: {e}") from e
