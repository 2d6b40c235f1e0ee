"""Pipeline configuration.

Every tunable of the collector, the processor and the enrichment client lives
in PipelineSettings; create_pipeline_settings() builds one from the
environment.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from shared.models import parse_timestamp


DEFAULT_KEYWORDS = (
    "OpenAI", "ChatGPT", '"GPT-4"', '"Google AI"', '"Gemini AI"',
    '"Microsoft AI"', "Anthropic", "Mistral", "Mistral AI",
)


def build_search_query(keywords=DEFAULT_KEYWORDS) -> str:
    """Build the search query: any of the keywords, retweets excluded."""
    return "(" + " OR ".join(f"({keyword})" for keyword in keywords) + ") -is:retweet"


@dataclass
class PipelineSettings:
    """Configuration parameters for the collection and processing pipeline."""

    # Credentials
    twitter_bearer_token: str = ""
    mistral_key: str = ""

    # Storage
    kv_backend: str = "redis"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None

    # Search provider
    search_url: str = "https://api.twitter.com/2/tweets/search/recent"
    search_query: str = field(default_factory=build_search_query)
    collection_start: datetime = field(default_factory=lambda: parse_timestamp("2025-05-15T00:00:00Z"))
    collection_end: datetime = field(default_factory=lambda: parse_timestamp("2025-05-16T00:00:00Z"))
    window_hours: float = 12.0
    max_results: int = 100
    request_budget: int = 180
    request_budget_margin: int = 5
    rate_window_seconds: float = 15 * 60
    window_delay_seconds: float = 5.0
    page_delay_seconds: float = 1.0

    # Enrichment provider
    enrichment_url: str = "https://api.mistral.ai/v1/chat/completions"
    enrichment_model: str = "mistral-small"
    max_retries: int = 5
    base_delay_seconds: float = 8.0
    max_delay_seconds: float = 120.0
    limiter_capacity: int = 10
    limiter_window_seconds: float = 60.0

    # Processing
    chunk_size: int = 3
    chunk_delay_seconds: float = 45.0
    item_delay_seconds: float = 8.0
    host_error_threshold: int = 3
    host_error_pause_seconds: float = 60.0
    host_error_cooldown_seconds: float = 15.0

    # HTTP
    request_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.collection_start >= self.collection_end:
            raise ValueError("Collection start must be before collection end")
        if self.window_hours <= 0:
            raise ValueError("Window size must be positive")
        if not 0 < self.request_budget_margin < self.request_budget:
            raise ValueError("Request budget margin must be between 0 and the budget")
        if self.chunk_size < 1:
            raise ValueError("Chunk size must be at least 1")
        if self.max_retries < 1:
            raise ValueError("Max retries must be at least 1")
        if self.limiter_capacity < 1:
            raise ValueError("Limiter capacity must be at least 1")
        if self.kv_backend not in ("redis", "memory"):
            raise ValueError(f"Unknown KV backend: {self.kv_backend}")

    @property
    def request_threshold(self) -> int:
        """Request count at which the collector pauses preemptively."""
        return self.request_budget - self.request_budget_margin


def create_pipeline_settings(**overrides) -> PipelineSettings:
    """Create pipeline settings from environment variables.

    Keyword overrides take precedence over the environment.

    Returns:
        PipelineSettings instance
    """
    values = {
        "twitter_bearer_token": os.getenv("TWITTER_BEARER_TOKEN", ""),
        "mistral_key": os.getenv("MISTRAL_KEY", ""),
        "kv_backend": os.getenv("KV_BACKEND", "redis"),
        "redis_host": os.getenv("REDIS_HOST", "localhost"),
        "redis_port": int(os.getenv("REDIS_PORT", "6379")),
        "redis_db": int(os.getenv("REDIS_DB", "0")),
        "redis_password": os.getenv("REDIS_PASSWORD") or None,
    }

    start = os.getenv("COLLECTION_START")
    if start:
        values["collection_start"] = parse_timestamp(start)
    end = os.getenv("COLLECTION_END")
    if end:
        values["collection_end"] = parse_timestamp(end)
    model = os.getenv("ENRICHMENT_MODEL")
    if model:
        values["enrichment_model"] = model

    values.update(overrides)
    return PipelineSettings(**values)
