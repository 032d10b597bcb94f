"""
PostgreSQL persistence layer for Discounts Service.
"""

import asyncio
from decimal import Decimal
from typing import Dict, Any, Optional, List, Tuple

import asyncpg
from shared.logging import get_logger
from shared.errors import StorageUnavailableError
from ..repository.base import CartSnapshotProvider
from ..rules.models import RawRule, CartLine, CartSnapshot


STORAGE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

RULE_COLUMNS = """
    cp.coupon_id AS rule_id,
    cr.cart_rule_formula AS formula,
    cr.cart_rule_params -> 'vars' AS variable_bindings,
    cr.cart_rule_params -> 'checks' AS threshold_checks
"""


class PostgreSQLPersistence(CartSnapshotProvider):
    """PostgreSQL persistence layer for rules, coupons and cart summaries."""

    def __init__(self, dsn: str, cart_rule_type_id: int = 4):
        self.dsn = dsn
        self.cart_rule_type_id = cart_rule_type_id
        self.logger = get_logger("discounts.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=30
            )

            # Create tables if they don't exist
            await self._create_tables()

            self.logger.info("PostgreSQL persistence started")

        except STORAGE_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise StorageUnavailableError("postgres", str(e))

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL persistence stopped")

    async def _create_tables(self):
        """Create the rule tables; cart tables belong to the cart service."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS coupons (
                    coupon_id SERIAL PRIMARY KEY,
                    coupon_code VARCHAR(20) UNIQUE,
                    coupon_type_id INTEGER NOT NULL,
                    coupon_status BOOLEAN NOT NULL DEFAULT TRUE,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS cart_rules (
                    cart_rule_id SERIAL PRIMARY KEY,
                    coupon_id INTEGER NOT NULL REFERENCES coupons(coupon_id),
                    cart_rule_formula TEXT NOT NULL,
                    cart_rule_params JSONB NOT NULL DEFAULT '{}',
                    cart_rule_status BOOLEAN NOT NULL DEFAULT TRUE
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_coupons_type ON coupons(coupon_type_id);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_cart_rules_coupon ON cart_rules(coupon_id);
            """)

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise StorageUnavailableError("postgres", "Persistence not started")
        return self.pool

    async def load_active_rules(self) -> List[RawRule]:
        """Load the enabled general cart rules."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(f"""
                    SELECT {RULE_COLUMNS}
                    FROM coupons cp
                    JOIN cart_rules cr ON (cp.coupon_id = cr.coupon_id)
                    WHERE cp.coupon_type_id = $1 AND cr.cart_rule_status = TRUE
                    ORDER BY cp.coupon_id
                """, self.cart_rule_type_id)

                return [self._row_to_raw_rule(row) for row in rows]

        except STORAGE_ERRORS as e:
            self.logger.error("Error loading active cart rules", error=str(e))
            raise StorageUnavailableError("postgres", str(e))

    async def load_coupon_rules(self) -> Dict[int, RawRule]:
        """Load the enabled rule of every coupon, keyed by coupon ID."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(f"""
                    SELECT {RULE_COLUMNS}
                    FROM coupons cp
                    JOIN cart_rules cr ON (cp.coupon_id = cr.coupon_id)
                    WHERE cr.cart_rule_status = TRUE
                    ORDER BY cp.coupon_id, cr.cart_rule_id
                """)

                rules: Dict[int, RawRule] = {}
                for row in rows:
                    rule = self._row_to_raw_rule(row)
                    # First rule of a coupon wins
                    rules.setdefault(rule.rule_id, rule)
                return rules

        except STORAGE_ERRORS as e:
            self.logger.error("Error loading coupon rules", error=str(e))
            raise StorageUnavailableError("postgres", str(e))

    async def load_coupon_codes(self) -> Dict[str, int]:
        """Load active coupon codes mapped to their coupon IDs."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT coupon_code, coupon_id FROM coupons
                    WHERE coupon_code IS NOT NULL AND coupon_status = TRUE
                """)

                return {row['coupon_code']: int(row['coupon_id']) for row in rows}

        except STORAGE_ERRORS as e:
            self.logger.error("Error loading coupon codes", error=str(e))
            raise StorageUnavailableError("postgres", str(e))

    async def load_coupon(self, coupon_code: str) -> Optional[Tuple[int, Optional[RawRule]]]:
        """Load one active coupon and its first enabled rule.

        Returns None when the code is unknown or disabled; the rule is None
        when the coupon has no enabled rule.
        """
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(f"""
                    SELECT {RULE_COLUMNS}
                    FROM coupons cp
                    LEFT JOIN cart_rules cr
                        ON (cp.coupon_id = cr.coupon_id AND cr.cart_rule_status = TRUE)
                    WHERE cp.coupon_code = $1 AND cp.coupon_status = TRUE
                    ORDER BY cr.cart_rule_id
                    LIMIT 1
                """, coupon_code)

                if row is None:
                    return None
                if row['formula'] is None:
                    return int(row['rule_id']), None
                return int(row['rule_id']), self._row_to_raw_rule(row)

        except STORAGE_ERRORS as e:
            self.logger.error("Error loading coupon", coupon_code=coupon_code, error=str(e))
            raise StorageUnavailableError("postgres", str(e))

    async def get_summary(self, cart_id: int) -> CartSnapshot:
        """Load the cart summary: product ID to summed count and unit price."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT cci.product_id AS cart_item_id,
                           p.product_rate AS cart_item_rate,
                           SUM(cci.customer_cart_item_count) AS cart_item_count
                    FROM customer_cart_items cci
                    LEFT JOIN products p ON (p.product_id = cci.product_id)
                    WHERE cci.customer_cart_id = $1
                    GROUP BY cci.product_id, p.product_rate
                """, cart_id)

                return self._rows_to_snapshot(rows)

        except STORAGE_ERRORS as e:
            self.logger.error("Error loading cart summary", cart_id=cart_id, error=str(e))
            raise StorageUnavailableError("postgres", str(e))

    async def get_rule_stats(self) -> Dict[str, Any]:
        """Get rule statistics."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                stats = await conn.fetchrow("""
                    SELECT
                        COUNT(*) as total_rules,
                        COUNT(*) FILTER (WHERE cr.cart_rule_status = TRUE) as enabled_rules,
                        COUNT(*) FILTER (WHERE cp.coupon_type_id = $1) as cart_rules,
                        COUNT(DISTINCT cp.coupon_code) as coupon_codes
                    FROM cart_rules cr
                    JOIN coupons cp ON (cp.coupon_id = cr.coupon_id)
                """, self.cart_rule_type_id)

                return dict(stats)

        except STORAGE_ERRORS as e:
            self.logger.error("Error getting rule stats", error=str(e))
            raise StorageUnavailableError("postgres", str(e))

    def _row_to_raw_rule(self, row) -> RawRule:
        """Convert database row to RawRule object."""
        return RawRule(
            rule_id=int(row['rule_id']),
            formula=row['formula'] or "",
            variable_bindings=row['variable_bindings'],
            threshold_checks=row['threshold_checks']
        )

    def _rows_to_snapshot(self, rows) -> CartSnapshot:
        """Convert cart summary rows to a snapshot, skipping unpriced products."""
        snapshot: CartSnapshot = {}
        for row in rows:
            if row['cart_item_rate'] is None:
                self.logger.warning("Cart item without product rate", item_id=row['cart_item_id'])
                continue
            snapshot[int(row['cart_item_id'])] = CartLine(
                quantity=int(row['cart_item_count'] or 0),
                unit_price=Decimal(str(row['cart_item_rate']))
            )
        return snapshot

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except STORAGE_ERRORS:
            return False
