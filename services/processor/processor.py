"""
Tweet processor

This module implements the TweetProcessor class that drains the pending
queue in small chunks, enriches each tweet through the EnrichmentClient,
stores the enriched tweet, maintains the daily index and removes the pending
marker. A failure is recorded per tweet and never aborts the run.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List

import structlog

from services.enrichment.enrichment_client import EnrichmentClient
from services.storage.kv_store import KVStore
from shared.config import PipelineSettings
from shared.errors import ConfigurationError, HostResourceError
from shared.metrics import ENRICHMENT_FAILURES, ENRICHMENT_TIME, TWEETS_ENRICHED
from shared.models import (
    PENDING_PREFIX,
    CollectionResult,
    EnrichedTweet,
    daily_key,
    enriched_key,
    pending_key,
    utc_date_key,
)


class TweetProcessor:
    """Enriches pending tweets with sentiment verdicts.

    Tweets are processed strictly one at a time, chunk by chunk, with pacing
    delays between tweets and between chunks. Failures caused by the HTTP
    client itself (HostResourceError) are counted, and once enough pile up
    the processor pauses before the next chunk.
    """

    def __init__(
        self,
        store: KVStore,
        enrichment_client: EnrichmentClient,
        settings: PipelineSettings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the processor.

        Args:
            store: Key-value store holding pending and enriched tweets
            enrichment_client: Client used to classify each tweet
            settings: Chunking and pacing configuration
            sleep: Coroutine used for every delay
        """
        self.store = store
        self.enrichment_client = enrichment_client
        self.settings = settings
        self._sleep = sleep
        self.logger = structlog.get_logger(__name__)

    async def load_pending(self) -> List[Dict[str, Any]]:
        """Load every pending tweet into memory."""
        pending = []
        for key in await self.store.list(PENDING_PREFIX):
            tweet = await self.store.get(key)
            if tweet:
                pending.append(tweet)
        return pending

    async def process(self) -> CollectionResult:
        """Run one processing pass over the pending queue.

        Returns:
            CollectionResult with processed_count == new_tweets

        Raises:
            ConfigurationError: If no enrichment API key is configured
        """
        if not self.settings.mistral_key:
            raise ConfigurationError("Mistral API token not configured")

        log = self.logger.bind(component="processor")
        result = CollectionResult()
        host_errors = 0

        pending = await self.load_pending()
        size = self.settings.chunk_size
        chunks = [pending[i:i + size] for i in range(0, len(pending), size)]
        log.info("Found unprocessed tweets", count=len(pending), chunks=len(chunks))

        for index, chunk in enumerate(chunks):
            if host_errors >= self.settings.host_error_threshold:
                log.warning("Too many host resource errors, pausing processing",
                            errors=host_errors,
                            pause_seconds=self.settings.host_error_pause_seconds)
                await self._sleep(self.settings.host_error_pause_seconds)
                host_errors = 0

            if index > 0:
                await self._sleep(self.settings.chunk_delay_seconds)

            log.info("Processing chunk", chunk=index + 1, of=len(chunks), size=len(chunk))

            for tweet in chunk:
                tweet_id = str(tweet.get("id", ""))
                try:
                    await self.process_tweet(tweet)
                except Exception as e:
                    # every per-tweet failure is recorded; the tweet stays pending
                    log.error("Error processing tweet", tweet_id=tweet_id,
                              error_type=type(e).__name__, error=str(e))
                    ENRICHMENT_FAILURES.labels(error_type=type(e).__name__).inc()
                    result.errors.append(f"Error processing tweet {tweet_id}: {e}")
                    if isinstance(e, HostResourceError):
                        host_errors += 1
                        await self._sleep(self.settings.host_error_cooldown_seconds)
                    continue

                result.processed_count += 1
                await self._sleep(self.settings.item_delay_seconds)

        result.new_tweets = result.processed_count
        log.info("Processing complete",
                 processed=result.processed_count,
                 errors=len(result.errors))
        return result

    async def process_tweet(self, tweet: Dict[str, Any]) -> EnrichedTweet:
        """Enrich and store one pending tweet."""
        tweet_id = str(tweet["id"])
        log = self.logger.bind(tweet_id=tweet_id)
        # a bad timestamp must fail while the tweet is still pending
        date_key = utc_date_key(tweet["created_at"])

        started = time.perf_counter()
        verdict = await self.enrichment_client.analyze(tweet.get("text", ""))
        ENRICHMENT_TIME.observe(time.perf_counter() - started)

        enriched = EnrichedTweet(
            id=tweet_id,
            text=tweet.get("text", ""),
            created_at=tweet["created_at"],
            sentiment_analysis=verdict,
        )
        await self.store.put(enriched_key(tweet_id), enriched.to_dict())
        await self.add_to_daily_index(date_key, tweet_id)
        await self.store.delete(pending_key(tweet_id))
        TWEETS_ENRICHED.inc()
        log.info("Stored enriched tweet",
                 label=verdict.primary_sentiment.label,
                 date=date_key)
        return enriched

    async def add_to_daily_index(self, date_key: str, tweet_id: str) -> bool:
        """Append tweet_id to the day's index unless already present.

        Two processors appending to the same day at once can lose an append;
        there is a single processing run at a time.

        Returns:
            True if the index was updated
        """
        key = daily_key(date_key)
        index = await self.store.get(key)
        if not isinstance(index, list):
            index = []
        if tweet_id in index:
            return False
        index.append(tweet_id)
        await self.store.put(key, index)
        return True
