"""
Enrichment API client

This module implements the EnrichmentClient class that asks a chat-completion
language model for a multi-aspect sentiment verdict on one tweet. It is the
only component that talks to the enrichment API, and enforces the rate limit,
retries with exponential backoff, and response validation.
"""

import asyncio
import json
import re
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import aiohttp
import structlog

from shared.errors import (
    EnrichmentAPIError,
    EnrichmentFormatError,
    HostResourceError,
    RetriesExhaustedError,
)
from shared.metrics import ENRICHMENT_ATTEMPTS, ENRICHMENT_RETRIES
from shared.models import (
    ASPECT_SENTIMENTS,
    CANONICAL_ASPECTS,
    DEFAULT_ASPECT_SCORE,
    DEFAULT_ASPECT_SENTIMENT,
    SENTIMENT_LABELS,
    AspectSentiment,
    SentimentScore,
    SentimentVerdict,
)

from .rate_limiter import TokenBucketRateLimiter


THROTTLING_STATUSES = (409, 429)

SYSTEM_PROMPT = (
    "You are a sentiment analysis expert. You must ONLY return valid JSON in the "
    "exact format specified, with no additional text or explanation."
)

RESPONSE_TEMPLATE = """{
    "primary_sentiment": {"label": "POSITIVE", "score": 0.8},
    "aspects": {
        "technological": {"sentiment": "positive", "score": 0.8},
        "societal": {"sentiment": "positive", "score": 0.8},
        "ethical": {"sentiment": "positive", "score": 0.8}
    },
    "overall_confidence": 0.8
}"""

_CONTROL_CHARACTERS = re.compile(r"[\x00-\x1f\x7f]")


def _clamp_score(value: Any, default: float = DEFAULT_ASPECT_SCORE) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return default
    if score != score:  # NaN
        return default
    return min(1.0, max(0.0, score))


def clean_content(content: str) -> str:
    """Strip control characters and surrounding whitespace from model output."""
    return _CONTROL_CHARACTERS.sub("", content).strip()


def normalize_verdict(parsed: Any) -> SentimentVerdict:
    """Validate decoded model output and normalize it to a SentimentVerdict.

    The primary label is uppercased, aspect sentiments are lowercased, missing
    or unrecognised aspect sentiments get a neutral default and any other
    aspect is dropped.

    Raises:
        EnrichmentFormatError: If required fields are missing or the primary
            label is not one of the five sentiment labels
    """
    if not isinstance(parsed, dict):
        raise EnrichmentFormatError("Sentiment analysis is not a JSON object")

    primary = parsed.get("primary_sentiment")
    label = primary.get("label") if isinstance(primary, dict) else None
    aspects = parsed.get("aspects")
    if not label or not isinstance(label, str) or not isinstance(aspects, dict) \
            or "overall_confidence" not in parsed:
        raise EnrichmentFormatError(
            "Invalid sentiment analysis format",
            details={"keys": sorted(parsed)},
        )

    try:
        confidence = float(parsed["overall_confidence"])
    except (TypeError, ValueError):
        raise EnrichmentFormatError("overall_confidence is not a number")

    normalized_aspects: Dict[str, AspectSentiment] = {}
    for name in CANONICAL_ASPECTS:
        aspect = aspects.get(name)
        sentiment = aspect.get("sentiment") if isinstance(aspect, dict) else None
        if isinstance(sentiment, str):
            sentiment = sentiment.strip().lower()
        if sentiment not in ASPECT_SENTIMENTS:
            normalized_aspects[name] = AspectSentiment(
                sentiment=DEFAULT_ASPECT_SENTIMENT, score=DEFAULT_ASPECT_SCORE
            )
            continue
        normalized_aspects[name] = AspectSentiment(
            sentiment=sentiment,
            score=_clamp_score(aspect.get("score")),
        )

    normalized_label = re.sub(r"[\s-]+", "_", label.strip().upper())
    if normalized_label not in SENTIMENT_LABELS:
        raise EnrichmentFormatError(
            f"Unknown sentiment label: {label!r}",
            details={"label": label},
        )

    return SentimentVerdict(
        primary_sentiment=SentimentScore(
            label=normalized_label,
            score=_clamp_score(primary.get("score")),
        ),
        aspects=normalized_aspects,
        overall_confidence=_clamp_score(confidence, default=0.0),
    )


def parse_verdict(content: str) -> SentimentVerdict:
    """Parse model output, retrying once on a cleaned-up copy.

    Raises:
        EnrichmentFormatError: If neither the raw nor the cleaned content
            yields a valid verdict
    """
    try:
        return normalize_verdict(json.loads(content))
    except (json.JSONDecodeError, EnrichmentFormatError) as first_error:
        cleaned = clean_content(content)
        try:
            return normalize_verdict(json.loads(cleaned))
        except json.JSONDecodeError as e:
            raise EnrichmentFormatError(
                f"Failed to parse sentiment analysis result: {e}",
                details={"first_error": str(first_error)},
            )


class EnrichmentClient:
    """Client for the chat-completion API used to classify tweet sentiment.

    Every attempt, including retries, waits for a rate limiter token. Throttled
    attempts are retried with exponential backoff; other failures are raised
    immediately for the caller to record.
    """

    def __init__(
        self,
        api_key: str,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        url: str = "https://api.mistral.ai/v1/chat/completions",
        model: str = "mistral-small",
        max_retries: int = 5,
        base_delay: float = 8.0,
        max_delay: float = 120.0,
        timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the enrichment client.

        Args:
            api_key: Bearer token for the enrichment API
            rate_limiter: Shared token bucket (a 10 per minute bucket if None)
            url: Chat-completion endpoint
            model: Model name sent with every request
            max_retries: Maximum number of attempts per tweet
            base_delay: Pacing delay before the first attempt, in seconds
            max_delay: Cap on the exponential backoff delay, in seconds
            timeout: Total request timeout in seconds
            sleep: Coroutine used for every delay
        """
        self.api_key = api_key
        self.rate_limiter = rate_limiter or TokenBucketRateLimiter(10, 60.0, sleep=sleep)
        self.url = url
        self.model = model
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._sleep = sleep

        self._session: Optional[aiohttp.ClientSession] = None
        self.logger = structlog.get_logger(__name__)

    async def __aenter__(self) -> "EnrichmentClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def build_payload(self, text: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": (
                        f"Analyze this tweet and return ONLY a JSON object (no other text): "
                        f"{json.dumps(text)}\n{RESPONSE_TEMPLATE}"
                    ),
                },
            ],
            "temperature": 0.1,
            "max_tokens": 500,
            "response_format": {"type": "json_object"},
        }

    def backoff_delay(self, attempt: int) -> float:
        """Delay before a retry: min(base * 2^attempt, max)."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def throttle_delay(self, attempt: int) -> float:
        """Extra delay after a throttled attempt, on top of the backoff."""
        return self.base_delay * (2 ** (attempt + 2))

    async def _post(self, payload: Dict[str, Any]) -> Tuple[int, str]:
        """Send one request and return (status, body).

        Raises:
            HostResourceError: If the request could not be completed
        """
        session = await self._get_session()
        try:
            async with session.post(self.url, json=payload) as response:
                return response.status, await response.text()
        except asyncio.TimeoutError:
            raise HostResourceError("Enrichment request timed out")
        except aiohttp.ClientConnectionError as e:
            raise HostResourceError(f"Enrichment connection failed: {e}")

    def parse_response(self, body: str) -> SentimentVerdict:
        """Extract and parse the model message from a chat-completion body."""
        try:
            result = json.loads(body)
            content = result["choices"][0]["message"]["content"]
        except (json.JSONDecodeError, KeyError, IndexError, TypeError):
            raise EnrichmentFormatError("Invalid API response format")
        if not isinstance(content, str) or not content.strip():
            raise EnrichmentFormatError("Invalid API response format")

        return parse_verdict(content.strip())

    async def analyze(self, text: str) -> SentimentVerdict:
        """Classify the sentiment of one tweet.

        Args:
            text: Tweet text

        Returns:
            Normalized SentimentVerdict

        Raises:
            EnrichmentAPIError: On a non-throttling error status
            EnrichmentFormatError: If the model output cannot be parsed
            HostResourceError: If the HTTP client failed to complete a request
            RetriesExhaustedError: If every attempt was throttled
        """
        log = self.logger.bind(correlation_id=str(uuid.uuid4()), model=self.model)
        payload = self.build_payload(text)

        attempt = 0
        while attempt < self.max_retries:
            await self.rate_limiter.acquire()

            if attempt > 0:
                delay = self.backoff_delay(attempt)
                log.info("Retrying enrichment request",
                         attempt=attempt + 1,
                         max_retries=self.max_retries,
                         backoff_delay=delay)
            else:
                delay = self.base_delay
            await self._sleep(delay)

            ENRICHMENT_ATTEMPTS.inc()
            status, body = await self._post(payload)

            if status in THROTTLING_STATUSES:
                attempt += 1
                log.warning("Enrichment API throttled request",
                            status=status,
                            retry_count=attempt,
                            error=body[:200])
                if attempt >= self.max_retries:
                    break
                ENRICHMENT_RETRIES.inc()
                await self._sleep(self.throttle_delay(attempt))
                continue

            if not 200 <= status < 300:
                log.error("Enrichment API error", status=status, error=body[:200])
                raise EnrichmentAPIError(
                    "Failed to analyze sentiment",
                    status_code=status,
                    details={"body": body[:500]},
                )

            verdict = self.parse_response(body)
            log.debug("Sentiment analysis received",
                      label=verdict.primary_sentiment.label,
                      confidence=verdict.overall_confidence)
            return verdict

        raise RetriesExhaustedError("Maximum retries exceeded", attempts=attempt)
