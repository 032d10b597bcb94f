"""
Discount engine for Discounts Service.

Runs every general cart rule, plus the rule of an explicitly supplied
coupon, against one cart snapshot and keeps the best discount. The engine is
stateless between calls; the repository and logger are injected.
"""

import time
from decimal import Decimal
from typing import Any, Dict, Optional

from shared.errors import InvalidCouponError
from shared.logging import get_logger
from ..repository.base import RuleRepository
from .calculator import calculate_discount
from .evaluator import RuleEvaluator
from .models import RawRule, CartSnapshot, DiscountResult, DiscountSummary
from .parser import FormulaParser


class DiscountEngine:
    """Cart discount rule engine."""

    def __init__(self, repository: RuleRepository, logger=None):
        self.repository = repository
        self.logger = logger or get_logger("discounts.engine")
        self.parser = FormulaParser(self.logger)
        self.evaluator = RuleEvaluator(self.logger)

    def apply_discount(
        self,
        cart_id: int,
        cart: CartSnapshot,
        coupon_code: Optional[str] = None
    ) -> DiscountSummary:
        """Evaluate all competing rules for a cart and select the best one.

        Raises InvalidCouponError when a supplied coupon code does not
        resolve; storage errors from the repository propagate unchanged.
        """
        start_time = time.time()

        coupon_id = None
        if coupon_code:
            coupon_id = self.repository.resolve_coupon_code(coupon_code)
            if coupon_id is None:
                self.logger.warning("Coupon code rejected", cart_id=cart_id, coupon_code=coupon_code)
                raise InvalidCouponError(coupon_code, "Coupon code does not resolve to a rule")

        by_rule: Dict[int, Decimal] = {}
        for raw in self.repository.get_active_rules():
            result = self.evaluate_rule(raw, cart)
            if result is not None:
                by_rule[result.rule_id] = result.amount

        if coupon_id is not None:
            raw = self.repository.get_rule_by_coupon(coupon_id)
            if raw is None:
                self.logger.info("Coupon has no active rule", cart_id=cart_id, coupon_id=coupon_id)
            else:
                result = self.evaluate_rule(raw, cart)
                if result is not None:
                    by_rule[result.rule_id] = result.amount

        summary = DiscountSummary()
        if by_rule:
            summary = DiscountSummary(applied=True, amount=max(by_rule.values()), by_rule=by_rule)

        self.logger.info(
            "Cart discount evaluated",
            cart_id=cart_id,
            coupon_code=coupon_code,
            applied=summary.applied,
            amount=str(summary.amount),
            rules_matched=len(by_rule),
            evaluation_time_ms=round((time.time() - start_time) * 1000, 3)
        )
        return summary

    def evaluate_rule(self, raw: RawRule, cart: CartSnapshot) -> Optional[DiscountResult]:
        """Parse, bind and price one rule; None when it yields no discount."""
        rule = self.parser.parse(raw)
        if rule is None:
            return None

        try:
            eligible_price = self.evaluator.evaluate(rule, cart)
            if not eligible_price:
                return None
            amount = calculate_discount(rule.discount_expr, eligible_price)
        except (ArithmeticError, TypeError, ValueError) as e:
            self.logger.error("Error evaluating rule", rule_id=rule.rule_id, error=str(e))
            return None

        if not amount:
            return None

        self.logger.debug("Rule discount computed", rule_id=rule.rule_id, amount=str(amount))
        return DiscountResult(rule_id=rule.rule_id, amount=amount)

    def get_engine_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        rules = self.repository.get_active_rules()
        parsed = [rule for rule in (self.parser.parse(raw) for raw in rules) if rule is not None]
        return {
            "active_rules": len(rules),
            "parseable_rules": len(parsed),
            "malformed_rules": len(rules) - len(parsed),
            "rule_ids": sorted(rule.rule_id for rule in parsed),
        }
