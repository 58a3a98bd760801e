"""Store factory.

Returns a process-wide store instance for the configured backend.
"""

from __future__ import annotations

import threading

from typing import TYPE_CHECKING, Any

from .base import KeyValueStore, StoreBackend
from .memory import MemoryKeyValueStore


if TYPE_CHECKING:
    from ..config import AuthSettings


_store_instance: KeyValueStore | None = None
_store_lock = threading.Lock()


def create_store(backend: str | StoreBackend = StoreBackend.MEMORY, **kwargs: Any) -> KeyValueStore:
    """Build a new store for ``backend``.

    Parameters
    ----------
    backend : str or StoreBackend
        ``"memory"`` or ``"redis"``.
    **kwargs : Any
        ``redis_url``, ``prefix`` and ``pool_size`` for the Redis backend.

    Returns
    -------
    KeyValueStore
        A new store instance.
    """
    try:
        backend = StoreBackend(backend)
    except ValueError:
        msg = f"Unknown store backend: {backend}"
        raise ValueError(msg) from None

    if backend is StoreBackend.REDIS:
        from .redis import RedisKeyValueStore

        return RedisKeyValueStore(
            redis_url=kwargs.get("redis_url", "redis://localhost:6379/0"),
            prefix=kwargs.get("prefix", "backup_oauth"),
            pool_size=kwargs.get("pool_size", 10),
        )
    return MemoryKeyValueStore()


def get_store(settings: AuthSettings | None = None) -> KeyValueStore:
    """Get the singleton store for the configured backend.

    Call ``reset_store()`` to clear the cached instance (e.g. in tests).

    Parameters
    ----------
    settings : AuthSettings, optional
        Auth settings; defaults to ``get_settings().auth``.

    Returns
    -------
    KeyValueStore
        The shared store instance.
    """
    global _store_instance  # noqa: PLW0603

    with _store_lock:
        if _store_instance is not None:
            return _store_instance

        if settings is None:
            from ..config import get_settings

            settings = get_settings().auth

        _store_instance = create_store(
            settings.store_backend,
            redis_url=settings.redis_url,
            prefix=settings.key_prefix,
        )
        return _store_instance


def reset_store() -> None:
    """Reset the singleton store instance."""
    global _store_instance  # noqa: PLW0603

    with _store_lock:
        _store_instance = None
