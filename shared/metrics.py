"""Prometheus metrics for the collection and processing runs."""

from prometheus_client import Counter, Histogram

TWEETS_COLLECTED = Counter('sentiment_tweets_collected_total', 'Tweets returned by the search API')
NEW_TWEETS = Counter('sentiment_new_tweets_total', 'Previously unseen tweets stored as pending')
SEARCH_REQUESTS = Counter('sentiment_search_requests_total', 'Search API requests issued')
RATE_LIMIT_PAUSES = Counter(
    'sentiment_rate_limit_pauses_total',
    'Pauses for the search rate window',
    ['reason'],
)
COLLECTION_RUNS = Counter('sentiment_collection_runs_total', 'Collection runs by outcome', ['status'])

ENRICHMENT_ATTEMPTS = Counter('sentiment_enrichment_attempts_total', 'Enrichment API requests issued')
ENRICHMENT_RETRIES = Counter('sentiment_enrichment_retries_total', 'Enrichment retries after throttling')
ENRICHMENT_FAILURES = Counter(
    'sentiment_enrichment_failures_total',
    'Tweets whose enrichment failed',
    ['error_type'],
)
TWEETS_ENRICHED = Counter('sentiment_tweets_enriched_total', 'Tweets enriched and stored')
ENRICHMENT_TIME = Histogram('sentiment_enrichment_seconds', 'Time spent enriching one tweet')
