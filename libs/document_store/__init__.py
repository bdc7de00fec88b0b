"""
Document store for the signal bridge.

Provides:
- DocumentStore: get/query/batch/conditional-update interface
- RedisDocumentStore: redis.asyncio implementation using WATCH/MULTI/EXEC
- StoreKeys: key layout
- Collection layout (signals, accounts, daily_stats, commands)
"""

from libs.document_store.client import RedisConfig, create_async_redis
from libs.document_store.collections import (
    ACCOUNTS,
    BRIDGE_COLLECTIONS,
    COMMANDS,
    DAILY_STATS,
    SIGNALS,
    CollectionSpec,
)
from libs.document_store.keys import StoreKeys
from libs.document_store.store import (
    Document,
    DocumentStore,
    RedisDocumentStore,
    WriteBatch,
)

__all__ = [
    "ACCOUNTS",
    "BRIDGE_COLLECTIONS",
    "COMMANDS",
    "DAILY_STATS",
    "SIGNALS",
    "CollectionSpec",
    "Document",
    "DocumentStore",
    "RedisConfig",
    "RedisDocumentStore",
    "StoreKeys",
    "WriteBatch",
    "create_async_redis",
]
