"""Sentiment enrichment of pending tweets."""

from .processor import TweetProcessor

__all__ = ['TweetProcessor']
