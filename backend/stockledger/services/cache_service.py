# Overview: In-process cache of stock read views, invalidated by the stock-changed signal.

from __future__ import annotations

import threading
import time

from flask import current_app

from ..signals import stock_changed


CACHE_EXTENSION_KEY = "stock_view_cache"


class StockViewCache:
    """
    Small TTL cache for per-product stock summaries.

    Entries are keyed by product id. A stock-changed notification for any
    branch of a product drops that product's entry.
    """

    def __init__(self, ttl_seconds: int = 60):
        self.ttl_seconds = ttl_seconds
        self._entries: dict[int, tuple[float, dict]] = {}
        self._lock = threading.Lock()

    def get(self, product_id: int) -> dict | None:
        with self._lock:
            entry = self._entries.get(product_id)
            if entry is None:
                return None
            stored_at, value = entry
            if time.monotonic() - stored_at > self.ttl_seconds:
                del self._entries[product_id]
                return None
            return value

    def set(self, product_id: int, value: dict) -> None:
        with self._lock:
            self._entries[product_id] = (time.monotonic(), value)

    def invalidate(self, product_id: int) -> None:
        with self._lock:
            self._entries.pop(product_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, product_id: int) -> bool:
        return self.get(product_id) is not None


def _on_stock_changed(sender, product_id=None, branch_id=None, **extra):
    cache = sender.extensions.get(CACHE_EXTENSION_KEY)
    if cache is not None and product_id is not None:
        cache.invalidate(product_id)
        sender.logger.debug("Invalidated stock view for product=%s branch=%s", product_id, branch_id)


def init_app(app) -> StockViewCache:
    cache = StockViewCache(ttl_seconds=app.config.get("STOCK_VIEW_CACHE_TTL_SECONDS", 60))
    app.extensions[CACHE_EXTENSION_KEY] = cache
    stock_changed.connect(_on_stock_changed)
    return cache


def get_cache() -> StockViewCache:
    return current_app.extensions[CACHE_EXTENSION_KEY]
