"""
Evaluation cache.

Process-local memo of resolved flag values keyed by
(environment, tenant, flag).
"""

from tenantflags.cache.interfaces import EvaluationCache
from tenantflags.cache.memory import NullEvaluationCache, ShardedTTLCache
from tenantflags.cache.models import CacheEntry, CacheKey, CacheStatistics

__all__ = [
    "CacheEntry",
    "CacheKey",
    "CacheStatistics",
    "EvaluationCache",
    "NullEvaluationCache",
    "ShardedTTLCache",
]
