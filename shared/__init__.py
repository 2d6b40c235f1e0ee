"""Shared modules for the AI sentiment pipeline."""

from .models import (
    CollectionResult,
    CollectionRun,
    DailySentiment,
    EnrichedTweet,
    RawTweet,
    SentimentTrends,
    SentimentVerdict,
)

__all__ = [
    "CollectionResult",
    "CollectionRun",
    "DailySentiment",
    "EnrichedTweet",
    "RawTweet",
    "SentimentTrends",
    "SentimentVerdict",
]
