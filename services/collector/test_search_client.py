"""
Unit tests for SearchClient

Tests request parameters, response parsing and status classification with a
mocked aiohttp session.
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import aiohttp

from services.collector.search_client import SearchClient
from shared.errors import ProviderRequestError, ProviderThrottled


WINDOW_START = datetime(2025, 5, 15, 0, 0, tzinfo=timezone.utc)
WINDOW_END = datetime(2025, 5, 15, 12, 0, tzinfo=timezone.utc)


class MockAsyncContextManager:
    """Mock async context manager for aiohttp responses."""

    def __init__(self, response):
        self.response = response

    async def __aenter__(self):
        return self.response

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None


def mock_response(status: int = 200, json_body=None, text: str = "", headers=None) -> MagicMock:
    response = MagicMock()
    response.status = status
    response.headers = headers or {}
    response.json = AsyncMock(return_value=json_body)
    response.text = AsyncMock(return_value=text)
    return response


class TestSearchClient:
    """Test suite for SearchClient."""

    @pytest.fixture
    def client(self) -> SearchClient:
        client = SearchClient(bearer_token="test-token")
        session = MagicMock()
        session.closed = False
        session.close = AsyncMock()
        client._session = session
        return client

    def test_build_params(self) -> None:
        """Test the window and pagination parameters."""
        params = SearchClient.build_params("(OpenAI) -is:retweet", WINDOW_START, WINDOW_END, 100, "abc")

        assert params["query"] == "(OpenAI) -is:retweet"
        assert params["max_results"] == "100"
        assert params["start_time"] == "2025-05-15T00:00:00Z"
        assert params["end_time"] == "2025-05-15T12:00:00Z"
        assert params["next_token"] == "abc"
        assert "created_at" in params["tweet.fields"]

    def test_build_params_first_page(self) -> None:
        """Test the first page carries no continuation token."""
        params = SearchClient.build_params("q", WINDOW_START, WINDOW_END)

        assert "next_token" not in params

    @pytest.mark.asyncio
    async def test_search_success(self, client: SearchClient) -> None:
        """Test a page of tweets is parsed."""
        body = {
            "data": [
                {"id": "1", "text": "hello", "created_at": "2025-05-15T01:00:00.000Z", "author_id": "9"},
                {"id": "2", "text": "world", "created_at": "2025-05-15T02:00:00.000Z", "author_id": "8"},
            ],
            "meta": {"result_count": 2, "next_token": "next"},
        }
        client._session.get.return_value = MockAsyncContextManager(mock_response(json_body=body))

        result = await client.search("q", WINDOW_START, WINDOW_END)

        assert [t.id for t in result.tweets] == ["1", "2"]
        assert result.tweets[0].author_id == "9"
        assert result.result_count == 2
        assert result.next_token == "next"

    @pytest.mark.asyncio
    async def test_search_empty_window(self, client: SearchClient) -> None:
        """Test a response without data and a zero count is an empty page."""
        body = {"meta": {"result_count": 0}}
        client._session.get.return_value = MockAsyncContextManager(mock_response(json_body=body))

        result = await client.search("q", WINDOW_START, WINDOW_END)

        assert result.tweets == []
        assert result.next_token is None

    @pytest.mark.asyncio
    async def test_search_throttled(self, client: SearchClient) -> None:
        """Test HTTP 429 raises ProviderThrottled."""
        response = mock_response(status=429, headers={"retry-after": "60"})
        client._session.get.return_value = MockAsyncContextManager(response)

        with pytest.raises(ProviderThrottled) as exc_info:
            await client.search("q", WINDOW_START, WINDOW_END)

        assert exc_info.value.retry_after_seconds == 60.0

    @pytest.mark.asyncio
    async def test_search_error_status(self, client: SearchClient) -> None:
        """Test other error statuses raise ProviderRequestError."""
        response = mock_response(status=401, text="Unauthorized")
        client._session.get.return_value = MockAsyncContextManager(response)

        with pytest.raises(ProviderRequestError) as exc_info:
            await client.search("q", WINDOW_START, WINDOW_END)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_search_transport_error(self, client: SearchClient) -> None:
        """Test aiohttp failures raise ProviderRequestError."""
        client._session.get.side_effect = aiohttp.ClientConnectionError("reset")

        with pytest.raises(ProviderRequestError, match="request failed"):
            await client.search("q", WINDOW_START, WINDOW_END)

    def test_parse_page_invalid_format(self) -> None:
        """Test a body that is not a search response is rejected."""
        with pytest.raises(ProviderRequestError):
            SearchClient.parse_page({"errors": [{"message": "bad"}]})
