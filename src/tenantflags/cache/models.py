"""
Cache Models.

Keys, entries and statistics of the evaluation cache.
"""

from dataclasses import dataclass
from typing import Any, NamedTuple

from tenantflags.settings import Environment


class CacheKey(NamedTuple):
    """Identity of one resolved evaluation."""

    environment: Environment
    tenant_id: str
    flag_key: str

    def __str__(self) -> str:
        return f"{self.environment.value}:{self.tenant_id}:{self.flag_key}"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Resolved boolean and its absolute expiry on the cache clock."""

    value: bool
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class CacheStatistics:
    """Counters maintained by a cache instance."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "expirations": self.expirations,
            "hit_rate": round(self.hit_rate, 4),
        }
