"""
Search API client

This module implements the SearchClient class that pages through the recent
search endpoint of the Twitter API for one time window at a time.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from shared.errors import ProviderRequestError, ProviderThrottled
from shared.models import RawTweet, format_timestamp


@dataclass
class SearchPage:
    """One page of search results."""

    tweets: List[RawTweet] = field(default_factory=list)
    result_count: int = 0
    next_token: Optional[str] = None


class SearchClient:
    """Client for the recent search endpoint.

    A single request is issued per call; pagination, pacing and the request
    budget are the collector's job.
    """

    def __init__(
        self,
        bearer_token: str,
        url: str = "https://api.twitter.com/2/tweets/search/recent",
        timeout: float = 30.0,
    ) -> None:
        """Initialize the search client.

        Args:
            bearer_token: App bearer token for the search API
            url: Recent search endpoint
            timeout: Total request timeout in seconds
        """
        self.bearer_token = bearer_token
        self.url = url
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self.logger = structlog.get_logger(__name__)

    async def __aenter__(self) -> "SearchClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={
                    "Authorization": f"Bearer {self.bearer_token}",
                    "Content-Type": "application/json",
                },
            )
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    @staticmethod
    def build_params(
        query: str,
        start_time: datetime,
        end_time: datetime,
        max_results: int = 100,
        next_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {
            "query": query,
            "max_results": str(max_results),
            "start_time": format_timestamp(start_time),
            "end_time": format_timestamp(end_time),
            "tweet.fields": "created_at,text,author_id",
            "expansions": "author_id",
            "user.fields": "username",
        }
        if next_token:
            params["next_token"] = next_token
        return params

    @staticmethod
    def parse_page(data: Any) -> SearchPage:
        """Turn a decoded response body into a SearchPage.

        A body with no data and a zero result count is an empty page.

        Raises:
            ProviderRequestError: If the body is not a search response
        """
        if not isinstance(data, dict):
            raise ProviderRequestError("Invalid response format from Twitter API")

        meta = data.get("meta") or {}
        items = data.get("data")
        if items is None and meta.get("result_count", 0) == 0 and "meta" in data:
            items = []
        if not isinstance(items, list):
            raise ProviderRequestError(
                "Invalid response format from Twitter API",
                details={"keys": sorted(data)},
            )

        try:
            tweets = [RawTweet.from_api(item) for item in items]
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderRequestError(f"Invalid tweet in Twitter API response: {e}")

        return SearchPage(
            tweets=tweets,
            result_count=int(meta.get("result_count", len(tweets))),
            next_token=meta.get("next_token"),
        )

    async def search(
        self,
        query: str,
        start_time: datetime,
        end_time: datetime,
        max_results: int = 100,
        next_token: Optional[str] = None,
    ) -> SearchPage:
        """Fetch one page of tweets created in [start_time, end_time).

        Raises:
            ProviderThrottled: On HTTP 429
            ProviderRequestError: On any other failure
        """
        params = self.build_params(query, start_time, end_time, max_results, next_token)
        session = await self._get_session()

        try:
            async with session.get(self.url, params=params) as response:
                if response.status == 429:
                    retry_after = response.headers.get("retry-after", "")
                    raise ProviderThrottled(
                        "Twitter API rate limit hit",
                        retry_after_seconds=float(retry_after) if retry_after.isdigit() else None,
                    )
                if response.status != 200:
                    body = await response.text()
                    self.logger.error("Twitter API error", status=response.status, error=body[:200])
                    raise ProviderRequestError(
                        f"Twitter API error: {response.status}",
                        status_code=response.status,
                        details={"body": body[:500]},
                    )
                data = await response.json(content_type=None)
        except asyncio.TimeoutError:
            raise ProviderRequestError("Twitter API request timed out")
        except aiohttp.ClientError as e:
            raise ProviderRequestError(f"Twitter API request failed: {e}")
        except ValueError as e:
            raise ProviderRequestError(f"Invalid JSON from Twitter API: {e}")

        return self.parse_page(data)
