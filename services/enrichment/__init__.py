"""Sentiment enrichment through a chat-completion language model."""

from .enrichment_client import EnrichmentClient, normalize_verdict, parse_verdict
from .rate_limiter import TokenBucketRateLimiter

__all__ = ['EnrichmentClient', 'TokenBucketRateLimiter', 'normalize_verdict', 'parse_verdict']
