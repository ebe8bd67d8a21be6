"""
Cache Module — Persistent artifact cache.
"""

from .store import (
    CacheCopyOutcome,
    CacheResult,
    CacheStore,
    cache_key_for,
    default_cache_dir,
)

__all__ = [
    "CacheStore",
    "CacheResult",
    "CacheCopyOutcome",
    "cache_key_for",
    "default_cache_dir",
]
