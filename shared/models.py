"""Shared data models for the AI sentiment pipeline.

This module contains the core data structures used throughout the pipeline
for representing collected tweets, sentiment verdicts, enriched tweets and
collection runs.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field


SENTIMENT_LABELS = ("VERY_POSITIVE", "POSITIVE", "NEUTRAL", "NEGATIVE", "VERY_NEGATIVE")
ASPECT_SENTIMENTS = ("positive", "neutral", "negative")
CANONICAL_ASPECTS = ("technological", "societal", "ethical")

DEFAULT_ASPECT_SENTIMENT = "neutral"
DEFAULT_ASPECT_SCORE = 0.5

RUN_ACTIVE = "active"
RUN_CANCELLED = "cancelled"
RUN_COMPLETED = "completed"
RUN_FAILED = "failed"

ENRICHED_PREFIX = "tweet:"
PENDING_PREFIX = "unprocessed:"
DAILY_PREFIX = "daily:"
COLLECTION_STATUS_KEY = "collection_status"


def enriched_key(tweet_id: str) -> str:
    return f"{ENRICHED_PREFIX}{tweet_id}"


def pending_key(tweet_id: str) -> str:
    return f"{PENDING_PREFIX}{tweet_id}"


def daily_key(date_key: str) -> str:
    return f"{DAILY_PREFIX}{date_key}"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp as returned by the search API.

    Naive timestamps are taken to be UTC.
    """
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way the search API expects (second precision, Z)."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def utc_date_key(created_at: str) -> str:
    """Return the UTC calendar day (YYYY-MM-DD) a tweet was created on."""
    return parse_timestamp(created_at).astimezone(timezone.utc).date().isoformat()


@dataclass
class RawTweet:
    """Represents a tweet exactly as returned by the search API.

    Attributes:
        id: Provider identifier of the tweet
        text: Tweet text
        created_at: ISO-8601 creation timestamp
        author_id: Provider identifier of the author
    """

    id: str
    text: str
    created_at: str
    author_id: str = ""

    def __post_init__(self) -> None:
        """Validate raw tweet data."""
        if not self.id:
            raise ValueError("Tweet id cannot be empty")
        if not self.created_at:
            raise ValueError("Tweet created_at cannot be empty")
        try:
            parse_timestamp(self.created_at)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid tweet created_at: {self.created_at!r}") from None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "RawTweet":
        return cls(
            id=str(payload["id"]),
            text=payload.get("text", ""),
            created_at=payload["created_at"],
            author_id=str(payload.get("author_id", "")),
        )

    def to_pending(self) -> Dict[str, Any]:
        """Serialize as a pending item awaiting enrichment."""
        return {
            "id": self.id,
            "text": self.text,
            "created_at": self.created_at,
            "author_id": self.author_id,
            "processed": False,
        }


@dataclass
class SentimentScore:
    label: str
    score: float


@dataclass
class AspectSentiment:
    sentiment: str
    score: float


@dataclass
class SentimentVerdict:
    """Multi-aspect sentiment classification of a single tweet.

    Attributes:
        primary_sentiment: Overall label and its score
        aspects: Mapping of canonical aspect name to its sentiment
        overall_confidence: Model confidence in the verdict (0.0 to 1.0)
    """

    primary_sentiment: SentimentScore
    aspects: Dict[str, AspectSentiment]
    overall_confidence: float

    def __post_init__(self) -> None:
        """Validate sentiment verdict data."""
        if set(self.aspects) != set(CANONICAL_ASPECTS):
            raise ValueError(f"Aspects must be exactly {sorted(CANONICAL_ASPECTS)}")
        if not 0.0 <= self.overall_confidence <= 1.0:
            raise ValueError("Overall confidence must be between 0.0 and 1.0")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary_sentiment": {
                "label": self.primary_sentiment.label,
                "score": self.primary_sentiment.score,
            },
            "aspects": {
                name: {"sentiment": aspect.sentiment, "score": aspect.score}
                for name, aspect in self.aspects.items()
            },
            "overall_confidence": self.overall_confidence,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SentimentVerdict":
        primary = payload["primary_sentiment"]
        return cls(
            primary_sentiment=SentimentScore(label=primary["label"], score=float(primary["score"])),
            aspects={
                name: AspectSentiment(sentiment=aspect["sentiment"], score=float(aspect["score"]))
                for name, aspect in payload["aspects"].items()
            },
            overall_confidence=float(payload["overall_confidence"]),
        )


@dataclass
class EnrichedTweet:
    """A tweet together with its sentiment verdict.

    Attributes:
        id: Provider identifier of the tweet
        text: Tweet text
        created_at: ISO-8601 creation timestamp
        sentiment_analysis: The verdict returned by the enrichment API
        timestamp: When the enrichment happened
    """

    id: str
    text: str
    created_at: str
    sentiment_analysis: SentimentVerdict
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def date_key(self) -> str:
        return utc_date_key(self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "created_at": self.created_at,
            "sentiment_analysis": self.sentiment_analysis.to_dict(),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "EnrichedTweet":
        return cls(
            id=str(payload["id"]),
            text=payload.get("text", ""),
            created_at=payload["created_at"],
            sentiment_analysis=SentimentVerdict.from_dict(payload["sentiment_analysis"]),
            timestamp=payload.get("timestamp", ""),
        )


@dataclass
class CollectionRun:
    """State of one collection run.

    Attributes:
        run_id: Unique identifier handed out when the run starts
        started_at: When the run started
        status: One of active, cancelled, completed or failed
    """

    run_id: str
    started_at: datetime
    status: str = RUN_ACTIVE

    def __post_init__(self) -> None:
        if self.status not in (RUN_ACTIVE, RUN_CANCELLED, RUN_COMPLETED, RUN_FAILED):
            raise ValueError(f"Unknown run status: {self.status}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "timestamp": int(self.started_at.timestamp() * 1000),
            "started_at": self.started_at.isoformat(),
            "status": self.status,
        }


@dataclass
class CollectionResult:
    """Outcome of a collection or processing run."""

    processed_count: int = 0
    new_tweets: int = 0
    errors: List[str] = field(default_factory=list)
    status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "processed_count": self.processed_count,
            "new_tweets": self.new_tweets,
        }
        if self.errors:
            result["errors"] = list(self.errors)
        if self.status:
            result["status"] = self.status
        return result


@dataclass
class SentimentTrends:
    """Aggregated sentiment statistics over a set of enriched tweets."""

    total_tweets: int
    sentiment_distribution: Dict[str, int]
    aspect_analysis: Dict[str, Dict[str, int]]
    average_confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tweets": self.total_tweets,
            "sentiment_distribution": dict(self.sentiment_distribution),
            "aspect_analysis": {k: dict(v) for k, v in self.aspect_analysis.items()},
            "average_confidence": self.average_confidence,
        }


@dataclass
class DailySentiment:
    """Sentiment statistics of a single UTC day."""

    date: str
    trends: SentimentTrends

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"date": self.date}
        result.update(self.trends.to_dict())
        return result
