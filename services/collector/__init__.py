"""Tweet collection from the search API.

This package provides the windowed collector, the search API client and the
collection run registry.
"""

from .collector import TweetCollector, partition_range
from .run_registry import CancellationToken, RunRegistry
from .search_client import SearchClient, SearchPage

__all__ = [
    'CancellationToken',
    'RunRegistry',
    'SearchClient',
    'SearchPage',
    'TweetCollector',
    'partition_range',
]
