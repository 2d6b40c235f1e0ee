"""
Pipeline service

Wires the key-value store, the provider clients, the collector, the processor
and the aggregator from PipelineSettings, and exposes the operations served
over HTTP.
"""

import asyncio
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from services.aggregation.aggregator import SENTIMENT_METRIC, SentimentAggregator
from services.collector.collector import CANCELLED_MESSAGE, TweetCollector
from services.collector.run_registry import RunRegistry
from services.collector.search_client import SearchClient
from services.enrichment.enrichment_client import EnrichmentClient
from services.enrichment.rate_limiter import TokenBucketRateLimiter
from services.processor.processor import TweetProcessor
from services.storage.kv_store import InMemoryKVStore, KVStore, RedisKVStore
from shared.config import PipelineSettings
from shared.errors import ConfigurationError
from shared.metrics import COLLECTION_RUNS
from shared.models import RUN_CANCELLED, RUN_COMPLETED, RUN_FAILED, CollectionResult

NO_ACTIVE_RUN_MESSAGE = "No active collection process found"


def create_store(settings: PipelineSettings) -> KVStore:
    """Create the key-value store selected by settings.kv_backend."""
    if settings.kv_backend == "memory":
        return InMemoryKVStore()
    return RedisKVStore(
        redis_host=settings.redis_host,
        redis_port=settings.redis_port,
        redis_db=settings.redis_db,
        redis_password=settings.redis_password,
    )


class PipelineService:
    """Entry point for every pipeline operation."""

    def __init__(
        self,
        settings: PipelineSettings,
        store: Optional[KVStore] = None,
        search_client: Optional[SearchClient] = None,
        enrichment_client: Optional[EnrichmentClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        today: Callable[[], date] = lambda: datetime.now(timezone.utc).date(),
    ) -> None:
        """Initialize the service.

        Args:
            settings: Pipeline configuration
            store: Key-value store, built from settings when omitted
            search_client: Search API client, built from settings when omitted
            enrichment_client: Enrichment API client, built from settings when omitted
            sleep: Coroutine used for every pacing delay
            today: Returns the current UTC day for the daily and weekly views
        """
        self.settings = settings
        self.store = store if store is not None else create_store(settings)
        self.search_client = search_client or SearchClient(
            bearer_token=settings.twitter_bearer_token,
            url=settings.search_url,
            timeout=settings.request_timeout_seconds,
        )
        self.enrichment_client = enrichment_client or EnrichmentClient(
            api_key=settings.mistral_key,
            rate_limiter=TokenBucketRateLimiter(
                capacity=settings.limiter_capacity,
                refill_window_seconds=settings.limiter_window_seconds,
                sleep=sleep,
            ),
            url=settings.enrichment_url,
            model=settings.enrichment_model,
            max_retries=settings.max_retries,
            base_delay=settings.base_delay_seconds,
            max_delay=settings.max_delay_seconds,
            timeout=settings.request_timeout_seconds,
            sleep=sleep,
        )
        self.registry = RunRegistry(self.store)
        self.collector = TweetCollector(self.store, self.search_client, settings, sleep=sleep)
        self.processor = TweetProcessor(self.store, self.enrichment_client, settings, sleep=sleep)
        self.aggregator = SentimentAggregator(self.store)
        self._today = today
        self.logger = structlog.get_logger(__name__)

    async def start_collection(self) -> Dict[str, Any]:
        """Start a collection run and wait for it to finish.

        A missing bearer token ends the run as failed and is reported in the
        result; any other unexpected error marks the run failed and is
        re-raised.
        """
        run, token = await self.registry.begin()
        log = self.logger.bind(run_id=run.run_id)
        log.info("Collection run started")

        try:
            result = await self.collector.collect(token)
        except ConfigurationError as e:
            log.error("Collection not configured", error=e.message)
            await self.registry.finish(run.run_id, failed=True)
            COLLECTION_RUNS.labels(status=RUN_FAILED).inc()
            return CollectionResult(errors=[e.message]).to_dict()
        except Exception as e:
            log.error("Collection run failed", error=str(e))
            await self.registry.finish(run.run_id, failed=True)
            COLLECTION_RUNS.labels(status=RUN_FAILED).inc()
            raise

        if result.status == RUN_CANCELLED:
            COLLECTION_RUNS.labels(status=RUN_CANCELLED).inc()
        else:
            await self.registry.finish(run.run_id)
            COLLECTION_RUNS.labels(status=RUN_COMPLETED).inc()

        log.info("Collection run finished", **result.to_dict())
        return result.to_dict()

    async def cancel_collection(self, run_id: Optional[str] = None) -> Dict[str, str]:
        """Cancel the active run, or the run named by run_id if it is active."""
        if await self.registry.cancel(run_id):
            return {"message": CANCELLED_MESSAGE}
        return {"message": NO_ACTIVE_RUN_MESSAGE}

    def collection_status(self) -> Dict[str, Any]:
        return self.registry.status()

    async def process(self) -> Dict[str, Any]:
        """Run one processing pass over the pending queue."""
        try:
            result = await self.processor.process()
        except ConfigurationError as e:
            self.logger.error("Processing not configured", error=e.message)
            return CollectionResult(errors=[e.message]).to_dict()
        return result.to_dict()

    async def sentiment(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        metric: str = SENTIMENT_METRIC,
    ) -> List[Dict[str, Any]]:
        """Per-day sentiment statistics; the range defaults to today only."""
        start = start or self._today().isoformat()
        days = await self.aggregator.sentiment_by_day(start, end or start, metric)
        return [day.to_dict() for day in days]

    async def tweets(
        self,
        day: str,
        sentiment: str,
        metric: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        tweets = await self.aggregator.items_for(day, sentiment, metric)
        return [tweet.to_dict() for tweet in tweets]

    async def daily(self) -> Dict[str, Any]:
        return (await self.aggregator.daily_summary(self._today())).to_dict()

    async def weekly(self) -> Dict[str, Any]:
        return (await self.aggregator.weekly_summary(self._today())).to_dict()

    async def health(self) -> Dict[str, Any]:
        """Report store connectivity."""
        healthy = True
        if isinstance(self.store, RedisKVStore):
            healthy = await self.store.health_check()
        return {
            "status": "healthy" if healthy else "unhealthy",
            "service": "sentiment-pipeline",
            "kv_backend": self.settings.kv_backend,
            "collection": self.registry.status().get("status"),
        }

    async def close(self) -> None:
        await self.search_client.close()
        await self.enrichment_client.close()
        await self.store.close()
