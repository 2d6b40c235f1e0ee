"""
Tweet collector

This module implements the TweetCollector class that walks a fixed historical
range in fixed-size windows, pages through the search API within each window,
and stores every previously unseen tweet as a pending item for enrichment.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Tuple

import structlog

from services.storage.kv_store import KVStore
from shared.config import PipelineSettings
from shared.errors import ConfigurationError, ProviderRequestError, ProviderThrottled
from shared.metrics import NEW_TWEETS, RATE_LIMIT_PAUSES, SEARCH_REQUESTS, TWEETS_COLLECTED
from shared.models import (
    RUN_CANCELLED,
    CollectionResult,
    RawTweet,
    enriched_key,
    pending_key,
)

from .run_registry import CancellationToken
from .search_client import SearchClient

CANCELLED_MESSAGE = "Collection process cancelled"


def partition_range(
    start: datetime, end: datetime, window: timedelta
) -> List[Tuple[datetime, datetime]]:
    """Split [start, end) into consecutive windows; the last one may be shorter."""
    if window <= timedelta(0):
        raise ValueError("Window size must be positive")

    windows = []
    window_start = start
    while window_start < end:
        window_end = min(window_start + window, end)
        windows.append((window_start, window_end))
        window_start = window_end
    return windows


class TweetCollector:
    """Collects tweets for the configured range into the pending queue.

    The collector tracks a run-wide request counter against the provider's
    rolling request budget and pauses before the budget runs out. Failures of
    a single window are recorded and the run moves on to the next window.
    """

    def __init__(
        self,
        store: KVStore,
        search_client: SearchClient,
        settings: PipelineSettings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the collector.

        Args:
            store: Key-value store holding pending and enriched tweets
            search_client: Client for the search API
            settings: Range, window, budget and pacing configuration
            sleep: Coroutine used for every delay
        """
        self.store = store
        self.search_client = search_client
        self.settings = settings
        self._sleep = sleep
        self._request_count = 0
        self.logger = structlog.get_logger(__name__)

    def windows(self) -> List[Tuple[datetime, datetime]]:
        return partition_range(
            self.settings.collection_start,
            self.settings.collection_end,
            timedelta(hours=self.settings.window_hours),
        )

    async def collect(self, token: CancellationToken) -> CollectionResult:
        """Run one collection pass over the configured range.

        Args:
            token: Cancellation token of the run, checked before every window
                and every page request

        Returns:
            CollectionResult with status "cancelled" if cancellation was observed

        Raises:
            ConfigurationError: If no bearer token is configured
        """
        if not self.settings.twitter_bearer_token:
            raise ConfigurationError("Twitter API token not configured")

        log = self.logger.bind(run_id=token.run_id)
        result = CollectionResult()
        self._request_count = 0

        windows = self.windows()
        log.info("Starting tweet collection",
                 range_start=self.settings.collection_start.isoformat(),
                 range_end=self.settings.collection_end.isoformat(),
                 windows=len(windows))

        for index, (window_start, window_end) in enumerate(windows):
            if token.cancelled:
                return self._cancelled(result, log)

            log.info("Processing time window",
                     window_start=window_start.isoformat(),
                     window_end=window_end.isoformat())

            completed = await self._collect_window(window_start, window_end, token, result, log)
            if not completed:
                return self._cancelled(result, log)

            log.info("Window complete", total_tweets=result.processed_count)

            if index < len(windows) - 1:
                await self._sleep(self.settings.window_delay_seconds)

        log.info("Collection complete",
                 total_tweets=result.processed_count,
                 new_tweets=result.new_tweets,
                 errors=len(result.errors))
        return result

    async def _collect_window(
        self,
        window_start: datetime,
        window_end: datetime,
        token: CancellationToken,
        result: CollectionResult,
        log,
    ) -> bool:
        """Page through one window.

        Returns:
            False if cancellation was observed, True otherwise
        """
        next_token: Optional[str] = None
        window_count = 0

        while True:
            if token.cancelled:
                return False

            if self._request_count >= self.settings.request_threshold:
                log.info("Approaching rate limit, pausing",
                         requests=self._request_count,
                         pause_seconds=self.settings.rate_window_seconds)
                RATE_LIMIT_PAUSES.labels(reason="budget").inc()
                await self._sleep(self.settings.rate_window_seconds)
                self._request_count = 0

            try:
                self._request_count += 1
                SEARCH_REQUESTS.inc()
                page = await self.search_client.search(
                    self.settings.search_query,
                    window_start,
                    window_end,
                    max_results=self.settings.max_results,
                    next_token=next_token,
                )
            except ProviderThrottled:
                log.warning("Rate limit hit, pausing",
                            pause_seconds=self.settings.rate_window_seconds)
                RATE_LIMIT_PAUSES.labels(reason="throttled").inc()
                await self._sleep(self.settings.rate_window_seconds)
                self._request_count = 0
                continue
            except ProviderRequestError as e:
                log.error("Error fetching tweets", error=str(e))
                result.errors.append(f"Error fetching tweets: {e}")
                return True

            window_count += len(page.tweets)
            result.processed_count += len(page.tweets)
            TWEETS_COLLECTED.inc(len(page.tweets))

            try:
                new_count = await self._store_new_tweets(page.tweets, result)
            except Exception as e:
                # tweets stored before the failure stay counted in new_tweets
                log.error("Error storing tweets", error=str(e))
                result.errors.append(f"Error storing tweets: {e}")
                return True

            log.info("Received tweets",
                     count=len(page.tweets),
                     new=new_count,
                     window_total=window_count)

            next_token = page.next_token
            if not next_token or len(page.tweets) < self.settings.max_results:
                return True

            await self._sleep(self.settings.page_delay_seconds)

    async def _store_new_tweets(self, tweets: List[RawTweet], result: CollectionResult) -> int:
        """Store tweets with neither an enriched nor a pending record.

        result.new_tweets is incremented as each tweet is stored.
        """
        new_count = 0
        for tweet in tweets:
            if await self.store.exists(enriched_key(tweet.id)):
                continue
            if await self.store.exists(pending_key(tweet.id)):
                continue
            await self.store.put(pending_key(tweet.id), tweet.to_pending())
            new_count += 1
            result.new_tweets += 1
            NEW_TWEETS.inc()
        return new_count

    def _cancelled(self, result: CollectionResult, log) -> CollectionResult:
        log.info("Collection process cancelled",
                 total_tweets=result.processed_count,
                 new_tweets=result.new_tweets)
        result.errors.append(CANCELLED_MESSAGE)
        result.status = RUN_CANCELLED
        return result
