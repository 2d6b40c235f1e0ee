"""Key-value storage for the sentiment pipeline.

This package provides the KVStore interface and its Redis and in-memory
implementations.
"""

from .kv_store import InMemoryKVStore, KVStore, RedisKVStore

__all__ = ['InMemoryKVStore', 'KVStore', 'RedisKVStore']
