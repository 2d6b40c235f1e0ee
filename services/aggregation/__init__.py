"""Read-side aggregation over the daily index."""

from .aggregator import SentimentAggregator, analyze_trends, date_range

__all__ = ['SentimentAggregator', 'analyze_trends', 'date_range']
