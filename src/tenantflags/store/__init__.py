"""
Flag store.

Persistence contract and implementations for flag definitions, tenant
overrides and kill switches.
"""

from tenantflags.store.interfaces import MAX_BATCH_SIZE, FlagStore, check_batch_size
from tenantflags.store.keys import KeySpace, RecordKey
from tenantflags.store.memory import InMemoryFlagStore
from tenantflags.store.redis import RedisFlagStore
from tenantflags.store.sql import SqlFlagStore

__all__ = [
    "MAX_BATCH_SIZE",
    "FlagStore",
    "InMemoryFlagStore",
    "KeySpace",
    "RecordKey",
    "RedisFlagStore",
    "SqlFlagStore",
    "check_batch_size",
]
