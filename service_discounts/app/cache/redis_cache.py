"""
Redis caching layer for Discounts Service.
"""

from typing import Dict, Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from shared.logging import get_logger
from shared.errors import StorageUnavailableError


CACHE_ERRORS = (RedisError, OSError)


class RedisCache:
    """Redis memory of the coupon applied to each cart."""

    def __init__(self, redis_url: str, coupon_ttl: int = 1800):
        self.redis_url = redis_url
        self.logger = get_logger("discounts.cache.redis")
        self.redis: Optional[redis.Redis] = None
        self.coupon_ttl = coupon_ttl

        # Cache key prefixes
        self.CART_COUPON_PREFIX = "cart_coupon:"

    async def start(self):
        """Start the Redis cache."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

            # Test connection
            await self.redis.ping()

            self.logger.info("Redis cache started")

        except CACHE_ERRORS as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise StorageUnavailableError("redis", str(e))

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis cache stopped")

    async def get_applied_coupon(self, cart_id: int) -> Optional[str]:
        """Get the coupon code remembered for a cart."""
        if self.redis is None:
            return None
        try:
            code = await self.redis.get(self._get_cart_coupon_key(cart_id))
            if code:
                self.logger.debug("Applied coupon found", cart_id=cart_id, coupon_code=code)
            return code or None

        except CACHE_ERRORS as e:
            self.logger.error("Error getting applied coupon", cart_id=cart_id, error=str(e))
            return None

    async def set_applied_coupon(self, cart_id: int, coupon_code: str) -> bool:
        """Remember the coupon code applied to a cart."""
        if self.redis is None:
            return False
        try:
            await self.redis.setex(
                self._get_cart_coupon_key(cart_id),
                self.coupon_ttl,
                coupon_code
            )
            self.logger.debug("Applied coupon cached", cart_id=cart_id, coupon_code=coupon_code)
            return True

        except CACHE_ERRORS as e:
            self.logger.error("Error caching applied coupon", cart_id=cart_id, error=str(e))
            return False

    async def clear_applied_coupon(self, cart_id: int) -> bool:
        """Forget the coupon code applied to a cart."""
        if self.redis is None:
            return False
        try:
            removed = await self.redis.delete(self._get_cart_coupon_key(cart_id))
            if removed:
                self.logger.info("Applied coupon cleared", cart_id=cart_id)
            return bool(removed)

        except CACHE_ERRORS as e:
            self.logger.error("Error clearing applied coupon", cart_id=cart_id, error=str(e))
            return False

    async def get_cache_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        if self.redis is None:
            return {}
        try:
            info = await self.redis.info()
            coupon_keys = 0
            async for _ in self.redis.scan_iter(match=f"{self.CART_COUPON_PREFIX}*"):
                coupon_keys += 1

            return {
                "redis_version": info.get("redis_version"),
                "used_memory": info.get("used_memory_human"),
                "connected_clients": info.get("connected_clients"),
                "applied_coupons": coupon_keys
            }

        except CACHE_ERRORS as e:
            self.logger.error("Error getting cache stats", error=str(e))
            return {}

    def _get_cart_coupon_key(self, cart_id: int) -> str:
        """Generate cache key for a cart's applied coupon."""
        return f"{self.CART_COUPON_PREFIX}{cart_id}"

    async def health_check(self) -> bool:
        """Check Redis health."""
        if self.redis is None:
            return False
        try:
            await self.redis.ping()
            return True
        except CACHE_ERRORS:
            return False
