"""Cache layer for kexporter.

Resolves and memoises metadata (labels, annotations, owner references,
deletion state) of the objects that events refer to, so that event bursts do
not turn into API server read bursts.

Submodules:
    reader    -- ObjectReader protocol and the dynamic-client implementation.
    metadata  -- LRU cache with per-key coalescing of concurrent misses.
"""

from kexporter.cache.metadata import ObjectMetadataCache, cache_key
from kexporter.cache.reader import DynamicObjectReader, ObjectNotFoundError, ObjectReader

__all__ = [
    "DynamicObjectReader",
    "ObjectMetadataCache",
    "ObjectNotFoundError",
    "ObjectReader",
    "cache_key",
]
