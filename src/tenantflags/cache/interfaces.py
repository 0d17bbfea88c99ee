"""Evaluation cache interfaces."""

from abc import ABC, abstractmethod
from typing import Any

from tenantflags.cache.models import CacheKey
from tenantflags.settings import Environment


class EvaluationCache(ABC):
    """Abstract base class for evaluation caches.

    Implementations are called from the event loop and must not block beyond
    a short critical section.
    """

    @abstractmethod
    def get(self, key: CacheKey) -> bool | None:
        """Get a resolved value, ``None`` when absent or expired."""
        pass

    @abstractmethod
    def set(self, key: CacheKey, value: bool, ttl: float) -> None:
        """Store a value for ``ttl`` seconds. ``ttl <= 0`` stores nothing."""
        pass

    @abstractmethod
    def delete(self, key: CacheKey) -> bool:
        """Delete one entry."""
        pass

    @abstractmethod
    def delete_flag(self, environment: Environment, flag_key: str) -> int:
        """Delete the entries of one flag for every tenant."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Delete every entry."""
        pass

    @abstractmethod
    def sweep(self) -> int:
        """Reclaim expired entries, returning how many were removed."""
        pass

    @abstractmethod
    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass
