"""
Unit tests for the Discounts persistence and in-memory storage layers.
"""

import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from shared.errors import StorageUnavailableError
from service_discounts.app.cache.redis_cache import RedisCache
from service_discounts.app.persistence.postgres import PostgreSQLPersistence
from service_discounts.app.repository.memory import InMemoryRuleRepository, InMemoryCartStore
from service_discounts.app.rules.models import RawRule, CartLine, cart_total


def make_pool(conn):
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    pool.acquire.return_value.__aexit__.return_value = False
    return pool


class TestPostgreSQLPersistence:
    """Test cases for PostgreSQLPersistence."""

    @pytest.fixture
    def conn(self):
        return AsyncMock()

    @pytest.fixture
    def persistence(self, conn):
        persistence = PostgreSQLPersistence("postgres://localhost:5432/test", cart_rule_type_id=4)
        persistence.pool = make_pool(conn)
        return persistence

    async def test_load_active_rules(self, persistence, conn):
        conn.fetch.return_value = [
            {
                "rule_id": 101,
                "formula": "2apple=5",
                "variable_bindings": '{"apple": 1}',
                "threshold_checks": None,
            }
        ]

        rules = await persistence.load_active_rules()

        assert rules == [RawRule(rule_id=101, formula="2apple=5", variable_bindings='{"apple": 1}')]
        assert conn.fetch.call_args.args[1] == 4

    async def test_load_coupon_rules_first_rule_wins(self, persistence, conn):
        conn.fetch.return_value = [
            {"rule_id": 103, "formula": "2orange=8", "variable_bindings": None, "threshold_checks": None},
            {"rule_id": 103, "formula": "3orange=9", "variable_bindings": None, "threshold_checks": None},
            {"rule_id": 104, "formula": None, "variable_bindings": None, "threshold_checks": None},
        ]

        rules = await persistence.load_coupon_rules()

        assert rules[103].formula == "2orange=8"
        assert rules[104].formula == ""

    async def test_load_coupon_codes(self, persistence, conn):
        conn.fetch.return_value = [
            {"coupon_code": "ORANGE30", "coupon_id": 103},
            {"coupon_code": "APPLE10", "coupon_id": "7"},
        ]

        codes = await persistence.load_coupon_codes()

        assert codes == {"ORANGE30": 103, "APPLE10": 7}

    async def test_load_coupon(self, persistence, conn):
        conn.fetchrow.return_value = {
            "rule_id": 103,
            "formula": "2orange=8",
            "variable_bindings": '{"orange": 3}',
            "threshold_checks": None,
        }

        coupon = await persistence.load_coupon("ORANGE30")

        assert coupon == (103, RawRule(rule_id=103, formula="2orange=8", variable_bindings='{"orange": 3}'))
        assert conn.fetchrow.call_args.args[1] == "ORANGE30"

    async def test_load_coupon_without_rule(self, persistence, conn):
        conn.fetchrow.return_value = {
            "rule_id": 105,
            "formula": None,
            "variable_bindings": None,
            "threshold_checks": None,
        }

        assert await persistence.load_coupon("EMPTY10") == (105, None)

    async def test_load_unknown_coupon(self, persistence, conn):
        conn.fetchrow.return_value = None

        assert await persistence.load_coupon("GONE10") is None

    async def test_get_summary(self, persistence, conn):
        conn.fetch.return_value = [
            {"cart_item_id": 1, "cart_item_rate": Decimal("1.25"), "cart_item_count": 4},
            {"cart_item_id": 2, "cart_item_rate": 0.5, "cart_item_count": 2},
            {"cart_item_id": 9, "cart_item_rate": None, "cart_item_count": 1},
        ]

        cart = await persistence.get_summary(42)

        assert cart == {
            1: CartLine(quantity=4, unit_price=Decimal("1.25")),
            2: CartLine(quantity=2, unit_price=Decimal("0.5")),
        }
        assert conn.fetch.call_args.args[1] == 42

    async def test_database_error_raises_storage_unavailable(self, persistence, conn):
        conn.fetch.side_effect = OSError("connection reset")

        with pytest.raises(StorageUnavailableError) as exc_info:
            await persistence.get_summary(42)

        assert exc_info.value.status_code == 503

        with pytest.raises(StorageUnavailableError):
            await persistence.load_active_rules()

    async def test_not_started_raises_storage_unavailable(self):
        persistence = PostgreSQLPersistence("postgres://localhost:5432/test")

        with pytest.raises(StorageUnavailableError):
            await persistence.load_active_rules()

        assert await persistence.health_check() is False

    async def test_health_check(self, persistence, conn):
        conn.fetchval.return_value = 1

        assert await persistence.health_check() is True

        conn.fetchval.side_effect = OSError("down")

        assert await persistence.health_check() is False


class TestInMemoryStorage:
    """Test cases for the in-memory repository and cart store."""

    def test_rule_repository(self):
        general = RawRule(rule_id=1, formula="apple=5")
        coupon = RawRule(rule_id=2, formula="orange=1/2")
        repository = InMemoryRuleRepository([general], {2: coupon}, {"ORANGE50": 2})

        assert repository.get_active_rules() == [general]
        assert repository.get_rule_by_coupon(2) is coupon
        assert repository.get_rule_by_coupon(3) is None
        assert repository.resolve_coupon_code("ORANGE50") == 2
        assert repository.resolve_coupon_code("orange50") is None
        assert repository.get_stats() == {"general_rules": 1, "coupon_rules": 1, "coupon_codes": 1}

    def test_update_coupon(self):
        repository = InMemoryRuleRepository(coupon_rules={2: RawRule(rule_id=2, formula="orange=1/2")},
                                            coupon_codes={"ORANGE50": 2})
        rule = RawRule(rule_id=4, formula="apple=3")

        repository.update_coupon("APPLE3", 4, rule)
        assert repository.resolve_coupon_code("APPLE3") == 4
        assert repository.get_rule_by_coupon(4) is rule

        repository.update_coupon("ORANGE50", 2)
        assert repository.resolve_coupon_code("ORANGE50") == 2
        assert repository.get_rule_by_coupon(2) is None

        repository.update_coupon("ORANGE50")
        assert repository.resolve_coupon_code("ORANGE50") is None

    def test_active_rules_list_is_a_copy(self):
        repository = InMemoryRuleRepository([RawRule(rule_id=1, formula="apple=5")])

        repository.get_active_rules().clear()

        assert len(repository.get_active_rules()) == 1

    async def test_cart_store_snapshot(self):
        line = CartLine(quantity=3, unit_price=Decimal("2.00"))
        store = InMemoryCartStore({7: {1: line}})

        snapshot = await store.get_summary(7)
        snapshot[2] = line

        assert await store.get_summary(7) == {1: line}
        assert await store.get_summary(8) == {}

    def test_cart_total(self):
        cart = {
            1: CartLine(quantity=3, unit_price=Decimal("2.00")),
            2: CartLine(quantity=2, unit_price=Decimal("0.75")),
        }

        assert cart[1].line_total == Decimal("6.00")
        assert cart_total(cart) == Decimal("7.50")
        assert cart_total({}) == Decimal("0")


class TestRedisCache:
    """Test cases for RedisCache."""

    @pytest.fixture
    def cache(self):
        cache = RedisCache("redis://localhost:6379/0", coupon_ttl=600)
        cache.redis = AsyncMock()
        return cache

    async def test_applied_coupon_expires_after_configured_ttl(self, cache):
        assert await cache.set_applied_coupon(1, "ORANGE30") is True

        cache.redis.setex.assert_awaited_once_with("cart_coupon:1", 600, "ORANGE30")

    async def test_clear_applied_coupon(self, cache):
        cache.redis.delete.return_value = 1

        assert await cache.clear_applied_coupon(1) is True
        cache.redis.delete.assert_awaited_once_with("cart_coupon:1")

    async def test_cache_not_started(self):
        cache = RedisCache("redis://localhost:6379/0")

        assert await cache.get_applied_coupon(1) is None
        assert await cache.set_applied_coupon(1, "ORANGE30") is False
