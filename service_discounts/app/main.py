"""
Discounts service for the shop.
"""

from datetime import datetime
from typing import Optional

from shared.base_service import BaseService
from shared.errors import InvalidCouponError, StorageUnavailableError
from shared.logging import get_logger, set_cart_context

from .cache.redis_cache import RedisCache
from .persistence.postgres import PostgreSQLPersistence
from .repository.memory import InMemoryRuleRepository
from .rules.engine import DiscountEngine
from .rules.models import (
    ApplyCouponRequest, CartDiscountResponse, RuleReloadResponse, cart_total
)


class DiscountsService(BaseService):
    """Discounts service implementation."""

    def __init__(self):
        super().__init__("discounts", 8013)

        # Initialize components
        self.persistence = PostgreSQLPersistence(
            self.config.postgres_dsn,
            cart_rule_type_id=self.config.cart_rule_type_id
        )
        self.cache = RedisCache(self.config.redis_url, coupon_ttl=self.config.coupon_code_timeout)
        self.rule_repository = InMemoryRuleRepository()
        self.engine = DiscountEngine(self.rule_repository, get_logger("discounts.engine"))

        self._setup_discount_routes()

    def _setup_discount_routes(self):
        """Set up discount-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "discounts",
                "message": "Shop - Discounts Service",
                "version": "1.0.0",
                "capabilities": ["cart_rules", "coupons", "persistence", "caching"]
            }

        @self.app.get("/cart/{cart_id}/discount", response_model=CartDiscountResponse)
        async def get_cart_discount(cart_id: int):
            """Best discount for a cart, including its remembered coupon."""
            coupon_code = await self.cache.get_applied_coupon(cart_id)

            if coupon_code and not await self.refresh_coupon(coupon_code):
                # The remembered coupon was withdrawn since it was applied
                await self.cache.clear_applied_coupon(cart_id)
                coupon_code = None

            return await self.evaluate_cart(cart_id, coupon_code)

        @self.app.put("/cart/{cart_id}/coupon", response_model=CartDiscountResponse)
        async def apply_coupon(cart_id: int, request: ApplyCouponRequest):
            """Apply a coupon code to a cart."""
            await self.refresh_coupon(request.coupon_code)
            response = await self.evaluate_cart(cart_id, request.coupon_code)
            await self.cache.set_applied_coupon(cart_id, request.coupon_code)

            self.logger.info(
                "Coupon applied",
                cart_id=cart_id,
                coupon_code=request.coupon_code,
                discount_amount=str(response.discount_amount)
            )
            return response

        @self.app.delete("/cart/{cart_id}/coupon")
        async def remove_coupon(cart_id: int):
            """Forget the coupon applied to a cart."""
            removed = await self.cache.clear_applied_coupon(cart_id)
            return {"success": True, "removed": removed}

        @self.app.post("/discounts/rules/reload", response_model=RuleReloadResponse)
        async def reload_rules():
            """Reload cart rules and coupons from storage."""
            return await self.reload_rules()

        @self.app.get("/discounts/stats")
        async def get_stats():
            """Get discounts service statistics."""
            return {
                "engine": self.engine.get_engine_stats(),
                "repository": self.rule_repository.get_stats(),
                "cache": await self.cache.get_cache_stats(),
                "persistence": await self.persistence.get_rule_stats(),
                "timestamp": datetime.now().isoformat()
            }

    async def evaluate_cart(self, cart_id: int, coupon_code: Optional[str]) -> CartDiscountResponse:
        """Snapshot a cart and run the discount engine over it."""
        set_cart_context(cart_id)
        cart = await self.persistence.get_summary(cart_id)

        with self.metrics.time_operation("discount_evaluation_duration_seconds"):
            try:
                summary = self.engine.apply_discount(cart_id, cart, coupon_code)
            except InvalidCouponError:
                self.metrics.record_discount_evaluation("invalid_coupon")
                raise

        if summary.applied:
            self.metrics.record_discount_evaluation("applied", float(summary.amount))
        else:
            self.metrics.record_discount_evaluation("none")

        return CartDiscountResponse(
            cart_id=cart_id,
            cart_total=cart_total(cart),
            discount_applied=summary.applied,
            discount_amount=summary.amount,
            discount_summary=summary.by_rule,
            coupon_code=coupon_code
        )

    async def refresh_coupon(self, coupon_code: str) -> bool:
        """Re-read one coupon from storage into the loaded rule set.

        Returns whether the code currently resolves.
        """
        coupon = await self.persistence.load_coupon(coupon_code)
        if coupon is None:
            self.rule_repository.update_coupon(coupon_code)
            return False

        coupon_id, rule = coupon
        self.rule_repository.update_coupon(coupon_code, coupon_id, rule)
        return True

    async def reload_rules(self) -> RuleReloadResponse:
        """Swap in a freshly loaded rule set."""
        general_rules = await self.persistence.load_active_rules()
        coupon_rules = await self.persistence.load_coupon_rules()
        coupon_codes = await self.persistence.load_coupon_codes()

        repository = InMemoryRuleRepository(general_rules, coupon_rules, coupon_codes)
        self.rule_repository = repository
        self.engine = DiscountEngine(repository, self.engine.logger)

        stats = repository.get_stats()
        self.logger.info("Discount rules loaded", **stats)
        return RuleReloadResponse(**stats)

    async def _check_dependencies(self):
        """Check discounts service dependencies."""
        dependencies = {}

        dependencies["postgres"] = "ok" if await self.persistence.health_check() else "error"
        dependencies["redis"] = "ok" if await self.cache.health_check() else "error"

        return dependencies

    async def start(self):
        """Start discounts service components."""
        await self.persistence.start()

        try:
            await self.cache.start()
        except StorageUnavailableError as e:
            # Coupons are then applied per request only
            self.logger.warning("Redis cache unavailable", error=e.message)

        await self.reload_rules()

        self.logger.info("Discounts service started")

    async def stop(self):
        """Stop discounts service components."""
        await self.persistence.stop()
        await self.cache.stop()

        self.logger.info("Discounts service stopped")


def create_app():
    """Create discounts service application."""
    service = DiscountsService()
    return service.app


if __name__ == "__main__":
    service = DiscountsService()
    service.run()
