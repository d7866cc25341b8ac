"""Tests for the HTTP item source."""

import httpx
import pytest

from diskuto_sync.transport import DiskutoClient, PutResult, TransportError

BASE = "https://srv.example.com"
SIG = bytes(range(64))


def _client(handler, max_retries=3):
    """DiskutoClient whose requests go to ``handler`` instead of the network."""
    client = DiskutoClient(BASE, max_retries=max_retries, backoff_seconds=0)
    client._client = httpx.AsyncClient(
        base_url=f"{BASE}/diskuto",
        transport=httpx.MockTransport(handler),
    )
    return client


def _entry(ts, sig=SIG):
    return {"timestamp_ms_utc": ts, "signature": sig.hex()}


class TestGetUserItems:
    """Tests for paging through a user's item list."""

    @pytest.mark.asyncio
    async def test_pages_until_no_more_items(self):
        """Test that pages are requested up to and including the last timestamp seen."""
        pages = {
            None: {"items": [_entry(300), _entry(200)], "no_more_items": False},
            "201": {"items": [_entry(200), _entry(100)], "no_more_items": True},
        }
        seen_params = []

        def handler(request):
            assert request.url.path == "/diskuto/users/u1/items"
            before = request.url.params.get("before")
            seen_params.append(before)
            return httpx.Response(200, json=pages[before])

        client = _client(handler)
        items = [item async for item in client.get_user_items("u1")]
        await client.close()

        assert [i.timestamp_ms_utc for i in items] == [300, 200, 100]
        assert items[0].signature == SIG
        assert seen_params == [None, "201"]

    @pytest.mark.asyncio
    async def test_timestamp_tie_across_pages(self):
        """Test that items sharing a timestamp are all listed when a page splits them."""
        x = bytes([2]) * 64
        y = bytes([1]) * 64
        stored = [_entry(300), _entry(200, x), _entry(200, y), _entry(100)]
        seen_params = []

        def handler(request):
            before = request.url.params.get("before")
            seen_params.append(before)
            older = [e for e in stored if before is None or e["timestamp_ms_utc"] < int(before)]
            return httpx.Response(
                200, json={"items": older[:2], "no_more_items": len(older) <= 2}
            )

        client = _client(handler)
        items = [item async for item in client.get_user_items("u1")]

        assert [(i.timestamp_ms_utc, i.signature) for i in items] == [
            (300, SIG), (200, x), (200, y), (100, SIG),
        ]
        assert seen_params == [None, "201", "201", "200"]

    @pytest.mark.asyncio
    async def test_empty_page_ends_listing(self):
        """Test that an empty page stops paging even without no_more_items."""
        def handler(request):
            return httpx.Response(200, json={"items": []})

        client = _client(handler)
        items = [item async for item in client.get_user_items("u1")]

        assert items == []

    @pytest.mark.asyncio
    async def test_malformed_entry(self):
        """Test that a bad entry is a transport error."""
        def handler(request):
            return httpx.Response(200, json={"items": [{"timestamp_ms_utc": 1}]})

        client = _client(handler)
        with pytest.raises(TransportError, match="malformed"):
            [item async for item in client.get_user_items("u1")]


class TestItems:
    """Tests for fetching and pushing item bytes."""

    @pytest.mark.asyncio
    async def test_get_item_bytes(self):
        """Test fetching raw item bytes by hex signature."""
        def handler(request):
            assert request.url.path == f"/diskuto/users/u1/items/{SIG.hex()}"
            return httpx.Response(200, content=b"item-bytes")

        assert await _client(handler).get_item_bytes("u1", SIG) == b"item-bytes"

    @pytest.mark.asyncio
    async def test_get_item_bytes_not_found(self):
        """Test that a 404 means the item is missing."""
        client = _client(lambda request: httpx.Response(404))

        assert await client.get_item_bytes("u1", SIG) is None

    @pytest.mark.asyncio
    async def test_put_item_created(self):
        """Test pushing item bytes."""
        received = []

        def handler(request):
            assert request.method == "PUT"
            received.append(request.content)
            return httpx.Response(201)

        result = await _client(handler).put_item("u1", SIG, b"payload")

        assert result == PutResult.CREATED
        assert received == [b"payload"]

    @pytest.mark.asyncio
    async def test_put_item_conflict(self):
        """Test that 409 means the destination already has the item."""
        client = _client(lambda request: httpx.Response(409))

        assert await client.put_item("u1", SIG, b"payload") == PutResult.ALREADY_EXISTS

    @pytest.mark.asyncio
    async def test_put_item_rejected(self):
        """Test that other client errors are transport errors."""
        client = _client(lambda request: httpx.Response(400, text="bad signature"))

        with pytest.raises(TransportError, match="bad signature"):
            await client.put_item("u1", SIG, b"payload")


class TestProfile:
    """Tests for profile fetching."""

    @pytest.mark.asyncio
    async def test_get_profile(self):
        """Test parsing a profile with follows."""
        body = {
            **_entry(500),
            "display_name": "Alice",
            "follows": [
                {"user_id": "u2", "display_name": "Bob"},
                {"user_id": "u3"},
            ],
        }
        client = _client(lambda request: httpx.Response(200, json=body))

        profile = await client.get_profile("u1")

        assert profile.item.timestamp_ms_utc == 500
        assert profile.display_name == "Alice"
        assert [(f.user_id, f.display_name) for f in profile.follows] == [
            ("u2", "Bob"),
            ("u3", None),
        ]

    @pytest.mark.asyncio
    async def test_profile_not_found(self):
        """Test that a 404 means no profile."""
        client = _client(lambda request: httpx.Response(404))

        assert await client.get_profile("u1") is None

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        """Test that a non-JSON body is a transport error."""
        client = _client(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(TransportError, match="invalid JSON"):
            await client.get_profile("u1")


class TestRetry:
    """Tests for retry with backoff."""

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        """Test that 5xx responses are retried."""
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, content=b"ok")

        assert await _client(handler).get_item_bytes("u1", SIG) == b"ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        """Test that persistent server errors raise."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        with pytest.raises(TransportError, match="max retries"):
            await _client(handler, max_retries=2).get_item_bytes("u1", SIG)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_retries_connection_errors(self):
        """Test that connection failures are retried."""
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(404)

        assert await _client(handler).get_profile("u1") is None
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self):
        """Test that 4xx responses are returned immediately."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        await _client(handler).get_item_bytes("u1", SIG)
        assert len(calls) == 1


class TestFiles:
    """Tests for attachment endpoints."""

    @pytest.mark.asyncio
    async def test_list_attachments(self):
        """Test listing an item's files."""
        body = {"files": [{"name": "cat.png", "size": 1234}]}

        def handler(request):
            assert request.url.path.endswith(f"/items/{SIG.hex()}/files")
            return httpx.Response(200, json=body)

        files = await _client(handler).list_attachments("u1", SIG)

        assert [(f.name, f.size) for f in files] == [("cat.png", 1234)]

    @pytest.mark.asyncio
    async def test_has_file(self):
        """Test checking for a file with HEAD."""
        def handler(request):
            assert request.method == "HEAD"
            found = request.url.path.endswith("/files/here.png")
            return httpx.Response(200 if found else 404)

        client = _client(handler)

        assert await client.has_file("u1", SIG, "here.png") is True
        assert await client.has_file("u1", SIG, "gone.png") is False

    @pytest.mark.asyncio
    async def test_stream_and_put_file(self):
        """Test streaming a file from one server into another."""
        uploaded = []

        def source_handler(request):
            return httpx.Response(200, content=b"file-content")

        def dest_handler(request):
            uploaded.append(request.content)
            return httpx.Response(201)

        source = _client(source_handler)
        dest = _client(dest_handler)

        await dest.put_file("u1", SIG, "f.bin", source.stream_file("u1", SIG, "f.bin"))

        assert uploaded == [b"file-content"]

    @pytest.mark.asyncio
    async def test_stream_file_error(self):
        """Test that a failed download is a transport error."""
        client = _client(lambda request: httpx.Response(404))

        with pytest.raises(TransportError):
            [chunk async for chunk in client.stream_file("u1", SIG, "f.bin")]


class TestCheckConnection:
    """Tests for check_connection."""

    @pytest.mark.asyncio
    async def test_reachable(self):
        """Test a server that answers."""
        assert await _client(lambda request: httpx.Response(200)).check_connection() is True

    @pytest.mark.asyncio
    async def test_unreachable(self):
        """Test a server that refuses connections."""
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert await _client(handler).check_connection() is False


class TestClose:
    """Tests for client lifecycle."""

    @pytest.mark.asyncio
    async def test_client_created_lazily(self):
        """Test that no HTTP client exists until first use."""
        client = DiskutoClient(BASE + "/")

        assert client._client is None
        assert client.base_url == BASE

        http = await client._get_client()
        assert str(http.base_url) == f"{BASE}/diskuto/"

        await client.close()
        assert client._client is None

