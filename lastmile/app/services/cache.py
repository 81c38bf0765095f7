"""
Read projection cache backed by Redis.

Keys are scoped by a generation counter so invalidate_all() is a single
INCR. Best-effort only: any Redis failure is logged and treated as a miss
(reads) or a no-op (writes).
"""

import json
import logging
from typing import Any, Optional

from lastmile.app.core.config import settings

logger = logging.getLogger("lastmile.cache")


class ProjectionCache:
    
    def __init__(self, redis, ttl_seconds: Optional[int] = None, prefix: Optional[str] = None):
        self.redis = redis
        self.ttl_seconds = ttl_seconds or settings.projection_cache_ttl_seconds
        self.prefix = prefix or settings.projection_cache_prefix
    
    @property
    def _generation_key(self) -> str:
        return f"{self.prefix}:generation"
    
    async def generation(self) -> Optional[str]:
        """Current generation, or None when Redis cannot be read."""
        try:
            value = await self.redis.get(self._generation_key)
        except Exception as e:
            logger.warning("Cache generation read failed: %s", e)
            return None
        return str(value or 0)
    
    def _key(self, generation: str, key: str) -> str:
        return f"{self.prefix}:{generation}:{key}"
    
    async def get(self, key: str, generation: Optional[str] = None) -> Optional[Any]:
        """
        Cached value for key, or None on a miss.
        
        Pass the generation read before building a value so the matching
        set() lands under the same generation; a concurrent invalidate_all()
        then orphans the entry instead of publishing it.
        """
        if generation is None:
            generation = await self.generation()
            if generation is None:
                return None
        try:
            raw = await self.redis.get(self._key(generation, key))
        except Exception as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding unreadable cache entry %s", key)
            return None
    
    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[int] = None,
        generation: Optional[str] = None,
    ) -> None:
        if generation is None:
            generation = await self.generation()
            if generation is None:
                return
        try:
            await self.redis.set(
                self._key(generation, key),
                json.dumps(value, default=str),
                ex=ttl_seconds or self.ttl_seconds,
            )
        except Exception as e:
            logger.warning("Cache write failed for %s: %s", key, e)
    
    async def invalidate(self, key: str) -> None:
        generation = await self.generation()
        if generation is None:
            return
        try:
            await self.redis.delete(self._key(generation, key))
        except Exception as e:
            logger.warning("Cache invalidate failed for %s: %s", key, e)
    
    async def invalidate_all(self) -> None:
        try:
            await self.redis.incr(self._generation_key)
        except Exception as e:
            logger.warning("Cache flush failed: %s", e)
