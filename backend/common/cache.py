"""
Best-effort cache access for the delivery services.

The relational store is the source of truth; everything kept here is a
disposable copy. Every call swallows backend errors (logged); an
unreachable Redis degrades to a cache miss.

Keys are built by ``CacheKeys``. Each kind of write has an explicit list of
keys it invalidates.
"""

import hashlib
import json
import logging
from typing import Any, Iterable, List, Optional

from django.core.cache import caches

logger = logging.getLogger(__name__)


class CacheKeys:
    """Typed builders for every cache key the services use."""

    PREFIX = "delivery"

    @classmethod
    def _key(cls, *parts) -> str:
        return ":".join([cls.PREFIX, *[str(p) for p in parts]])

    @classmethod
    def matches(cls, request_id, version: str, criteria: dict) -> str:
        # Saving the request changes its version, orphaning older entries
        digest = hashlib.sha1(
            json.dumps(criteria, sort_keys=True, default=str).encode("utf-8")
        ).hexdigest()[:16]
        return cls._key("matches", request_id, version, digest)

    @classmethod
    def delivery_request(cls, request_id) -> str:
        return cls._key("request", request_id)

    @classmethod
    def request_offers(cls, request_id) -> str:
        return cls._key("request_offers", request_id)

    @classmethod
    def offer_statistics(cls, request_id) -> str:
        return cls._key("offer_statistics", request_id)

    @classmethod
    def popular_routes(cls, period: str, category: Optional[str] = None) -> str:
        return cls._key("popular_routes", period, category or "all")

    # Invalidation lists, one per kind of mutation

    @classmethod
    def for_offer_write(cls, request_id) -> List[str]:
        """Keys to drop after an offer on ``request_id`` changes."""
        return [
            cls.request_offers(request_id),
            cls.offer_statistics(request_id),
            cls.delivery_request(request_id),
        ]

    @classmethod
    def for_request_write(cls, request_id) -> List[str]:
        """Keys to drop after the request itself changes."""
        return [
            cls.delivery_request(request_id),
            cls.request_offers(request_id),
            cls.offer_statistics(request_id),
        ]


class BestEffortCache:
    """
    Thin wrapper around a Django cache alias.

    ``get`` returns None on miss or error; ``set``/``delete`` return a bool
    telling whether the backend accepted the call.
    """

    def __init__(self, alias: str = "default", backend=None):
        self.alias = alias
        self._backend = backend

    @property
    def backend(self):
        if self._backend is None:
            return caches[self.alias]
        return self._backend

    def get(self, key: str) -> Optional[Any]:
        try:
            return self.backend.get(key)
        except Exception:
            logger.warning("Cache get failed for %s", key, exc_info=True)
            return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        try:
            self.backend.set(key, value, ttl_seconds)
            return True
        except Exception:
            logger.warning("Cache set failed for %s", key, exc_info=True)
            return False

    def delete(self, key: str) -> bool:
        try:
            self.backend.delete(key)
            return True
        except Exception:
            logger.warning("Cache delete failed for %s", key, exc_info=True)
            return False

    def delete_many(self, keys: Iterable[str]) -> bool:
        keys = list(keys)
        if not keys:
            return True
        try:
            self.backend.delete_many(keys)
            return True
        except Exception:
            logger.warning("Cache delete_many failed for %s", keys, exc_info=True)
            return False


_default_cache: Optional[BestEffortCache] = None


def get_cache() -> BestEffortCache:
    """Shared best-effort cache bound to the ``default`` alias."""
    global _default_cache
    if _default_cache is None:
        _default_cache = BestEffortCache()
    return _default_cache
