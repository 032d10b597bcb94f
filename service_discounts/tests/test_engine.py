"""
Unit tests for the Discount Engine.
"""

import json
import pytest
from decimal import Decimal
from unittest.mock import MagicMock

from shared.errors import InvalidCouponError, StorageUnavailableError
from service_discounts.app.repository.base import RuleRepository
from service_discounts.app.repository.memory import InMemoryRuleRepository
from service_discounts.app.rules.engine import DiscountEngine
from service_discounts.app.rules.models import RawRule, CartLine, DiscountResult


APPLE = 1
BANANA = 2
ORANGE = 3

BINDINGS = json.dumps({"apple": APPLE, "banana": BANANA, "orange": ORANGE})


def rule(rule_id, formula, bindings=BINDINGS, checks=None):
    return RawRule(rule_id=rule_id, formula=formula, variable_bindings=bindings, threshold_checks=checks)


class TestDiscountEngine:
    """Test cases for DiscountEngine."""

    @pytest.fixture
    def logger(self):
        return MagicMock()

    @pytest.fixture
    def cart(self):
        return {
            APPLE: CartLine(quantity=10, unit_price=Decimal("1.00")),
            BANANA: CartLine(quantity=4, unit_price=Decimal("2.00")),
            ORANGE: CartLine(quantity=6, unit_price=Decimal("3.00")),
        }

    @pytest.fixture
    def repository(self):
        """General rules 101 and 102 and coupon ORANGE30 resolving to rule 103."""
        return InMemoryRuleRepository(
            general_rules=[
                rule(101, "apple=5"),
                rule(102, "1banana=12"),
            ],
            coupon_rules={
                103: rule(103, "2orange=8"),
                104: rule(104, "3banana=1/2"),
            },
            coupon_codes={"ORANGE30": 103, "BANANA50": 104, "EMPTY10": 105}
        )

    @pytest.fixture
    def engine(self, repository, logger):
        return DiscountEngine(repository, logger)

    def test_general_rules_only(self, engine, cart):
        summary = engine.apply_discount(1, cart)

        assert summary.applied is True
        assert summary.amount == Decimal("12.00")
        assert summary.by_rule == {101: Decimal("5.00"), 102: Decimal("12.00")}

    def test_coupon_competes_with_general_rules(self, engine, cart):
        """The coupon rule is merged into the summary; the best amount wins."""
        summary = engine.apply_discount(1, cart, "ORANGE30")

        assert summary.applied is True
        assert summary.amount == Decimal("12.00")
        assert summary.by_rule == {
            101: Decimal("5.00"),
            102: Decimal("12.00"),
            103: Decimal("8.00"),
        }

    def test_coupon_can_win(self, engine, cart):
        # 3 bananas at 2.00, applied once with 4 in the cart, half off
        summary = engine.apply_discount(1, cart, "BANANA50")

        assert summary.by_rule[104] == Decimal("3.00")
        assert summary.amount == Decimal("12.00")

        cart[BANANA] = CartLine(quantity=30, unit_price=Decimal("2.00"))
        summary = engine.apply_discount(1, cart, "BANANA50")

        # 10 applications of a 6.00 set, half off
        assert summary.by_rule[104] == Decimal("30.00")
        assert summary.amount == Decimal("30.00")

    def test_invalid_coupon_rejected(self, engine, cart, logger):
        with pytest.raises(InvalidCouponError) as exc_info:
            engine.apply_discount(1, cart, "BOGUSCODE")

        assert exc_info.value.code == "INVALID_COUPON"
        assert exc_info.value.details["coupon_code"] == "BOGUSCODE"
        logger.warning.assert_called_once()

    def test_invalid_coupon_skips_general_rules(self, cart):
        repository = MagicMock(spec=RuleRepository)
        repository.resolve_coupon_code.return_value = None
        engine = DiscountEngine(repository, MagicMock())

        with pytest.raises(InvalidCouponError):
            engine.apply_discount(1, cart, "BOGUSCODE")

        repository.get_active_rules.assert_not_called()

    def test_coupon_without_rule_adds_nothing(self, engine, cart):
        summary = engine.apply_discount(1, cart, "EMPTY10")

        assert summary.by_rule == {101: Decimal("5.00"), 102: Decimal("12.00")}

    def test_ineligible_coupon_rule_adds_nothing(self, engine):
        cart = {APPLE: CartLine(quantity=1, unit_price=Decimal("1.00"))}

        summary = engine.apply_discount(1, cart, "ORANGE30")

        assert summary.by_rule == {101: Decimal("5.00")}
        assert summary.amount == Decimal("5.00")

    def test_empty_coupon_code_is_ignored(self, engine, cart):
        summary = engine.apply_discount(1, cart, "")

        assert set(summary.by_rule) == {101, 102}

    def test_no_applicable_rules(self, engine):
        summary = engine.apply_discount(1, {})

        assert summary.applied is False
        assert summary.amount == Decimal("0")
        assert summary.by_rule == {}

    def test_malformed_rules_are_skipped(self, cart, logger):
        repository = InMemoryRuleRepository(general_rules=[
            rule(201, "apple="),
            rule(202, "apple=5", bindings="{broken"),
            rule(203, "apple=7"),
        ])
        engine = DiscountEngine(repository, logger)

        summary = engine.apply_discount(1, cart)

        assert summary.by_rule == {203: Decimal("7.00")}
        assert logger.warning.call_count == 2

    def test_flat_rule_needs_eligibility(self, engine):
        """A flat discount is only granted when its condition is satisfied."""
        cart = {BANANA: CartLine(quantity=1, unit_price=Decimal("2.00"))}

        summary = engine.apply_discount(1, cart)

        assert summary.by_rule == {102: Decimal("12.00")}

    def test_zero_discount_not_collected(self, cart):
        repository = InMemoryRuleRepository(general_rules=[rule(301, "apple=0"), rule(302, "apple=0/2")])
        engine = DiscountEngine(repository, MagicMock())

        summary = engine.apply_discount(1, cart)

        assert summary.applied is False
        assert summary.by_rule == {}

    def test_tie_keeps_all_entries(self, cart):
        repository = InMemoryRuleRepository(general_rules=[rule(401, "apple=6"), rule(402, "orange=6")])
        engine = DiscountEngine(repository, MagicMock())

        summary = engine.apply_discount(1, cart)

        assert summary.amount == Decimal("6.00")
        assert summary.by_rule == {401: Decimal("6.00"), 402: Decimal("6.00")}

    def test_storage_failure_propagates(self, cart):
        repository = MagicMock(spec=RuleRepository)
        repository.get_active_rules.side_effect = StorageUnavailableError("postgres", "connection refused")
        engine = DiscountEngine(repository, MagicMock())

        with pytest.raises(StorageUnavailableError):
            engine.apply_discount(1, cart)

    def test_evaluation_error_absorbed(self, cart, logger):
        engine = DiscountEngine(InMemoryRuleRepository(general_rules=[rule(501, "apple=5")]), logger)
        engine.evaluator.evaluate = MagicMock(side_effect=ArithmeticError("bad price"))

        assert engine.evaluate_rule(rule(501, "apple=5"), cart) is None
        logger.error.assert_called_once()

    def test_evaluate_rule_result(self, engine, cart):
        result = engine.evaluate_rule(rule(601, "2apple+1banana=1/2"), cart)

        # min(10 // 2, 4 // 1) = 4 applications of a 4.00 set, half off
        assert result == DiscountResult(rule_id=601, amount=Decimal("8.00"))

    def test_repeated_evaluation_is_stable(self, engine, cart):
        first = engine.apply_discount(1, cart, "ORANGE30")
        second = engine.apply_discount(1, cart, "ORANGE30")

        assert first == second

    def test_apple_scenario(self):
        """Flat 5.00 beats a quarter of 4.00 on a cart of four apples."""
        cart = {APPLE: CartLine(quantity=4, unit_price=Decimal("1.00"))}
        repository = InMemoryRuleRepository(general_rules=[
            rule(1, "2apple=5", bindings='{"apple": 1}'),
            rule(2, "1apple=1/4", bindings='{"apple": 1}'),
        ])
        engine = DiscountEngine(repository, MagicMock())

        summary = engine.apply_discount(1, cart)

        assert summary.by_rule == {1: Decimal("5.00"), 2: Decimal("1.00")}
        assert summary.amount == Decimal("5.00")

    def test_engine_stats(self, cart):
        repository = InMemoryRuleRepository(general_rules=[rule(2, "apple=5"), rule(1, "apple"), rule(3, "orange=1/2")])
        engine = DiscountEngine(repository, MagicMock())

        stats = engine.get_engine_stats()

        assert stats == {
            "active_rules": 3,
            "parseable_rules": 2,
            "malformed_rules": 1,
            "rule_ids": [2, 3],
        }

    def test_oversized_flat_rule_reported_as_malformed(self, cart, logger):
        repository = InMemoryRuleRepository(general_rules=[rule(701, "apple=" + "9" * 30), rule(702, "apple=5")])
        engine = DiscountEngine(repository, logger)

        summary = engine.apply_discount(1, cart)

        assert summary.by_rule == {702: Decimal("5.00")}
        assert logger.warning.call_args.kwargs["rule_id"] == 701
        logger.error.assert_not_called()
