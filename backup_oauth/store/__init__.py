"""Pluggable key-value storage for authorization states and token records.

The default is in-memory storage for single-process deployments.
The Redis backend is available for multi-worker deployments.

Usage
-----
Configure via environment variables:
    BACKUP_OAUTH__STORE_BACKEND=redis
    BACKUP_OAUTH__REDIS_URL=redis://localhost:6379/0

Examples
--------
>>> from backup_oauth.store import get_store
>>> store = get_store()
>>> await store.set("oauth:state:abc", "{...}", ttl=600)
"""

from __future__ import annotations

from ._factory import create_store, get_store, reset_store
from .base import KeyValueStore, StoreBackend
from .memory import MemoryKeyValueStore


__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "StoreBackend",
    "create_store",
    "get_store",
    "reset_store",
]
