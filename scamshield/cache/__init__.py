"""
Cache package: TTL key/value store with stale reads.
"""

from scamshield.cache.memory import Cache, CacheEntry, MemoryCache

__all__ = ["Cache", "CacheEntry", "MemoryCache"]
