"""Unit tests for calview.fetcher module."""

import logging
from types import SimpleNamespace

import httpx
import pytest

from calview.exceptions import FeedError, FetchError, NetworkError
from calview.fetcher import FeedFetcher

pytestmark = [pytest.mark.unit, pytest.mark.fast]

FEED_URL = "https://calendar.example.com/team.ics"
ICS_BODY = "BEGIN:VCALENDAR\nVERSION:2.0\nEND:VCALENDAR\n"


def mock_client(handler) -> httpx.AsyncClient:
    """HTTP client answering every request with ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestValidateUrl:
    """Tests for feed URL validation."""

    @pytest.mark.parametrize(
        "url",
        ["http://example.com/calendar.ics", "https://example.com/calendar.ics", "https://8.8.8.8/c.ics"],
    )
    def test_validate_url_when_http_then_allows(self, url: str) -> None:
        assert FeedFetcher.validate_url(url) is True

    @pytest.mark.parametrize(
        "url",
        ["ftp://example.com/file.ics", "file:///etc/passwd", "http:///calendar.ics", "not a url", ""],
    )
    def test_validate_url_when_invalid_then_blocks(self, url: str) -> None:
        assert FeedFetcher.validate_url(url) is False


class TestFeedFetcher:
    """Tests for FeedFetcher.fetch."""

    @pytest.mark.asyncio
    async def test_fetch_returns_body(self, simple_settings: SimpleNamespace) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            return httpx.Response(200, text=ICS_BODY, headers={"content-type": "text/calendar"})

        async with mock_client(handler) as client:
            fetcher = FeedFetcher(simple_settings, client=client)
            content = await fetcher.fetch(FEED_URL)

        assert content == ICS_BODY
        assert seen["url"] == FEED_URL

    @pytest.mark.asyncio
    async def test_fetch_when_http_404_then_fetch_error(self, simple_settings: SimpleNamespace) -> None:
        async with mock_client(lambda request: httpx.Response(404, text="missing")) as client:
            fetcher = FeedFetcher(simple_settings, client=client)
            with pytest.raises(FetchError) as exc_info:
                await fetcher.fetch(FEED_URL)

        assert exc_info.value.status_code == 404
        assert exc_info.value.url == FEED_URL
        assert "404" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_fetch_when_server_error_then_fetch_error(self, simple_settings: SimpleNamespace) -> None:
        async with mock_client(lambda request: httpx.Response(503)) as client:
            fetcher = FeedFetcher(simple_settings, client=client)
            with pytest.raises(FetchError) as exc_info:
                await fetcher.fetch(FEED_URL)
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            httpx.ConnectError("Connection refused"),
            httpx.ReadTimeout("Read timed out"),
            httpx.ConnectTimeout("Connect timed out"),
        ],
    )
    async def test_fetch_when_transport_fails_then_network_error(
        self, simple_settings: SimpleNamespace, error: Exception
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise error

        async with mock_client(handler) as client:
            fetcher = FeedFetcher(simple_settings, client=client)
            with pytest.raises(NetworkError) as exc_info:
                await fetcher.fetch(FEED_URL)

        assert isinstance(exc_info.value, FeedError)
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_fetch_when_body_empty_then_fetch_error(self, simple_settings: SimpleNamespace) -> None:
        async with mock_client(lambda request: httpx.Response(200, text="  \n")) as client:
            fetcher = FeedFetcher(simple_settings, client=client)
            with pytest.raises(FetchError):
                await fetcher.fetch(FEED_URL)

    @pytest.mark.asyncio
    async def test_fetch_when_url_invalid_then_no_request(self, simple_settings: SimpleNamespace) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, text=ICS_BODY)

        async with mock_client(handler) as client:
            fetcher = FeedFetcher(simple_settings, client=client)
            with pytest.raises(FetchError):
                await fetcher.fetch("file:///etc/passwd")

        assert calls == []

    @pytest.mark.asyncio
    async def test_fetch_follows_redirects(self, simple_settings: SimpleNamespace) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/old.ics":
                return httpx.Response(301, headers={"location": FEED_URL})
            return httpx.Response(200, text=ICS_BODY)

        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), follow_redirects=True
        ) as client:
            fetcher = FeedFetcher(simple_settings, client=client)
            content = await fetcher.fetch("https://calendar.example.com/old.ics")

        assert content == ICS_BODY

    @pytest.mark.asyncio
    async def test_fetch_warns_on_unexpected_content_type(
        self, simple_settings: SimpleNamespace, caplog
    ) -> None:
        handler = lambda request: httpx.Response(  # noqa: E731
            200, text=ICS_BODY, headers={"content-type": "text/html"}
        )
        async with mock_client(handler) as client:
            fetcher = FeedFetcher(simple_settings, client=client)
            with caplog.at_level(logging.WARNING, logger="calview.fetcher"):
                await fetcher.fetch(FEED_URL)

        assert "Unexpected content type" in caplog.text


class TestClientLifecycle:
    """Tests for HTTP client ownership."""

    @pytest.mark.asyncio
    async def test_context_manager_creates_and_closes_client(self, simple_settings: SimpleNamespace) -> None:
        async with FeedFetcher(simple_settings) as fetcher:
            client = fetcher.client
            assert client is not None
            assert client.headers["User-Agent"] == "calview-test/1.0"
            assert client.follow_redirects is True

        assert client.is_closed
        assert fetcher.client is None

    @pytest.mark.asyncio
    async def test_close_leaves_shared_client_open(self, simple_settings: SimpleNamespace) -> None:
        async with mock_client(lambda request: httpx.Response(200, text=ICS_BODY)) as client:
            fetcher = FeedFetcher(simple_settings, client=client)
            await fetcher.close()
            assert not client.is_closed
