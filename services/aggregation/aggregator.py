"""
Sentiment aggregator

This module implements the SentimentAggregator class that rebuilds the
enriched tweets of a date range from the daily index and computes sentiment
distributions, per-aspect breakdowns and mean confidence.
"""

from collections import Counter
from datetime import date, timedelta
from typing import Dict, List, Optional, Union

import structlog

from services.storage.kv_store import KVStore
from shared.models import (
    ASPECT_SENTIMENTS,
    CANONICAL_ASPECTS,
    SENTIMENT_LABELS,
    DailySentiment,
    EnrichedTweet,
    SentimentTrends,
    daily_key,
    enriched_key,
)

SENTIMENT_METRIC = "sentiment"
METRICS = (SENTIMENT_METRIC,) + CANONICAL_ASPECTS

DateLike = Union[str, date]


def parse_date(value: DateLike) -> date:
    """Parse a YYYY-MM-DD calendar day.

    Raises:
        ValueError: If value is not a valid calendar day
    """
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid date: {value!r}, expected YYYY-MM-DD") from None


def date_range(start: DateLike, end: DateLike) -> List[date]:
    """Return every calendar day from start to end inclusive."""
    first = parse_date(start)
    last = parse_date(end)
    if last < first:
        raise ValueError("End date must not be before start date")
    return [first + timedelta(days=offset) for offset in range((last - first).days + 1)]


def validate_metric(metric: str) -> str:
    if metric not in METRICS:
        raise ValueError(f"Unknown metric: {metric!r}, expected one of {', '.join(METRICS)}")
    return metric


def analyze_trends(tweets: List[EnrichedTweet]) -> SentimentTrends:
    """Compute sentiment statistics over a set of enriched tweets.

    Labels and canonical aspects are zero-filled; unknown labels and aspect
    sentiments are not counted.
    """
    distribution: Dict[str, int] = {label: 0 for label in SENTIMENT_LABELS}
    aspects: Dict[str, Counter] = {
        aspect: Counter({sentiment: 0 for sentiment in ASPECT_SENTIMENTS})
        for aspect in CANONICAL_ASPECTS
    }
    total_confidence = 0.0

    for tweet in tweets:
        verdict = tweet.sentiment_analysis
        label = verdict.primary_sentiment.label
        if label in distribution:
            distribution[label] += 1
        total_confidence += verdict.overall_confidence

        for name, aspect in verdict.aspects.items():
            sentiment = aspect.sentiment.lower()
            if name in aspects and sentiment in ASPECT_SENTIMENTS:
                aspects[name][sentiment] += 1

    return SentimentTrends(
        total_tweets=len(tweets),
        sentiment_distribution=distribution,
        aspect_analysis={name: dict(counts) for name, counts in aspects.items()},
        average_confidence=total_confidence / len(tweets) if tweets else 0.0,
    )


class SentimentAggregator:
    """Read side of the pipeline.

    The daily index is treated as a hint: ids without a stored enriched tweet
    are skipped, and a day that cannot be read is logged and skipped.
    """

    def __init__(self, store: KVStore) -> None:
        self.store = store
        self.logger = structlog.get_logger(__name__)

    async def get_date_range_items(self, start: DateLike, end: DateLike) -> List[EnrichedTweet]:
        """Fetch every enriched tweet indexed under the days start..end inclusive."""
        tweets: List[EnrichedTweet] = []
        for day in date_range(start, end):
            tweets.extend(await self._items_for_day(day))
        return tweets

    async def _items_for_day(self, day: date) -> List[EnrichedTweet]:
        date_key = day.isoformat()
        try:
            index = await self.store.get(daily_key(date_key)) or []
            tweets = []
            for tweet_id in index:
                payload = await self.store.get(enriched_key(tweet_id))
                if payload:
                    tweets.append(EnrichedTweet.from_dict(payload))
            return tweets
        except Exception as e:
            self.logger.error("Error fetching data for day", date=date_key, error=str(e))
            return []

    def analyze_trends(self, tweets: List[EnrichedTweet]) -> SentimentTrends:
        return analyze_trends(tweets)

    async def sentiment_by_day(
        self,
        start: DateLike,
        end: Optional[DateLike] = None,
        metric: str = SENTIMENT_METRIC,
    ) -> List[DailySentiment]:
        """Compute one DailySentiment per day of start..end inclusive.

        Args:
            start: First day (YYYY-MM-DD)
            end: Last day, defaults to start
            metric: "sentiment" or one of the canonical aspect names

        Raises:
            ValueError: On invalid dates, end before start, or unknown metric
        """
        validate_metric(metric)
        days = date_range(start, end if end is not None else start)

        result = []
        for day in days:
            tweets = await self._items_for_day(day)
            result.append(DailySentiment(date=day.isoformat(), trends=analyze_trends(tweets)))
        return result

    async def items_for(
        self,
        day: DateLike,
        sentiment: str,
        metric: Optional[str] = None,
    ) -> List[EnrichedTweet]:
        """Drill down into one day's tweets.

        A lowercase aspect sentiment (positive, neutral or negative) filters
        on the sentiment of aspect `metric`; anything else filters on the
        primary label. A filter that can match nothing, such as an unknown
        label or an aspect sentiment without a canonical aspect, yields an
        empty list.

        Raises:
            ValueError: On an invalid date
        """
        tweets = await self._items_for_day(parse_date(day))

        if sentiment in ASPECT_SENTIMENTS:
            if metric not in CANONICAL_ASPECTS:
                return []
            return [
                tweet for tweet in tweets
                if tweet.sentiment_analysis.aspects[metric].sentiment.lower() == sentiment
            ]

        return [
            tweet for tweet in tweets
            if tweet.sentiment_analysis.primary_sentiment.label == sentiment
        ]

    async def daily_summary(self, today: date) -> SentimentTrends:
        return analyze_trends(await self.get_date_range_items(today, today))

    async def weekly_summary(self, today: date) -> SentimentTrends:
        """Trends from seven days before today through today."""
        start = today - timedelta(days=7)
        return analyze_trends(await self.get_date_range_items(start, today))
