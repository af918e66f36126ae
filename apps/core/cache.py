"""
Cache key registry and a thin wrapper around Django's cache.

All cache access goes through CacheService so that backend errors never
break a request: a failed read is a miss and a failed write is logged.
"""
import logging
from typing import Any, Iterable
from django.core.cache import cache

logger = logging.getLogger(__name__)


class CacheKeys:
    """Centralized cache key definitions with consistent naming."""

    # Effective permission/module view for one user
    EFFECTIVE_ACCESS = "authz:effective:{user_id}"

    @classmethod
    def format(cls, key_template: str, **kwargs) -> str:
        """Format a cache key with provided parameters."""
        return key_template.format(**kwargs)


class CacheTTL:
    """Cache TTL (Time To Live) constants in seconds."""

    EFFECTIVE_ACCESS = 300  # 5 minutes


class CacheService:
    """Service for managing cached data with consistent patterns."""

    @staticmethod
    def get(key: str, default: Any = None) -> Any:
        try:
            value = cache.get(key, default)
            logger.debug(f"Cache {'HIT' if value is not None else 'MISS'}: {key}")
            return value
        except Exception as e:
            logger.error(f"Cache get error for key {key}: {str(e)}")
            return default

    @staticmethod
    def set(key: str, value: Any, ttl: int = None) -> bool:
        try:
            cache.set(key, value, timeout=ttl)
            logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.error(f"Cache set error for key {key}: {str(e)}")
            return False

    @staticmethod
    def delete(key: str) -> bool:
        try:
            cache.delete(key)
            logger.debug(f"Cache DELETE: {key}")
            return True
        except Exception as e:
            logger.error(f"Cache delete error for key {key}: {str(e)}")
            return False

    @staticmethod
    def delete_many(keys: Iterable[str]) -> bool:
        keys = list(keys)
        if not keys:
            return True
        try:
            cache.delete_many(keys)
            logger.debug(f"Cache DELETE_MANY: {len(keys)} keys")
            return True
        except Exception as e:
            logger.error(f"Cache delete_many error: {str(e)}")
            return False
