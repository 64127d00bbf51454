"""
store/connections.py -- Named store connections.

Connections are declared in settings: STORE_URL is the default connection and
STORE_CONNECTIONS maps extra names to URLs. get_store() opens each connection
once and hands the same KVStore back on every later call, so all providers
configured with the same connection_name share one engine and its pool.

Usage:
    store = get_store()             # default STORE_URL
    replica = get_store("replica")  # STORE_CONNECTIONS["replica"]
    close_all()                     # on shutdown
"""

from __future__ import annotations

import logging
from typing import Optional

from core.config import get_settings
from store.kv import KVStore

logger = logging.getLogger("kvauth.store")

_stores: dict[Optional[str], KVStore] = {}


def get_store(name: Optional[str] = None) -> KVStore:
    """Return the KVStore for the named connection, opening it on first use.

    Raises ValueError if name is not a configured connection.
    """
    if name in _stores:
        return _stores[name]

    settings = get_settings()
    if name is None:
        url = settings.store_url
    else:
        try:
            url = settings.store_connections[name]
        except KeyError:
            raise ValueError(f"Unknown store connection: {name!r}") from None

    store = KVStore(url)
    _stores[name] = store
    logger.info("Opened store connection %s", name or "default")
    return store


def close_all() -> None:
    """Dispose every open connection and forget it."""
    for store in _stores.values():
        store.close()
    _stores.clear()
