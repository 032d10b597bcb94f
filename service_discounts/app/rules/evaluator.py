"""
Rule evaluator for Discounts Service.
"""

import re
from decimal import Decimal
from typing import List, Optional, Tuple

from shared.logging import get_logger
from .models import ParsedRule, CartSnapshot, ItemBindingSummary


TERM_PATTERN = re.compile(r"(\d+)?([a-zA-Z]+)")

ZERO = Decimal("0")


def tokenize_condition(condition: str) -> List[Tuple[int, str]]:
    """Split a condition into (required quantity, variable name) terms.

    A missing or zero quantity means one item.
    """
    terms = []
    for qty, name in TERM_PATTERN.findall(condition):
        terms.append((int(qty) if qty and int(qty) > 0 else 1, name))
    return terms


class RuleEvaluator:
    """Binds parsed rules to a cart snapshot and prices what they cover."""

    def __init__(self, logger=None):
        self.logger = logger or get_logger("discounts.evaluator")

    def evaluate(self, rule: ParsedRule, cart: CartSnapshot) -> Decimal:
        """Return the eligible price of a rule for the cart, 0 if ineligible."""
        summary = self.bind(rule, cart)
        if not summary:
            return ZERO

        frequency = min(item.frequency for item in summary)
        set_price = sum((item.unit_price * item.required_qty for item in summary), ZERO)

        eligible_price = set_price * frequency
        self.logger.debug(
            "Rule eligible",
            rule_id=rule.rule_id,
            frequency=frequency,
            set_price=str(set_price),
            eligible_price=str(eligible_price)
        )
        return eligible_price

    def bind(self, rule: ParsedRule, cart: CartSnapshot) -> Optional[List[ItemBindingSummary]]:
        """Resolve each condition term against the cart.

        Returns None as soon as one bound item is missing or short; terms
        whose variable has no binding are skipped.
        """
        summary = []
        min_qty = rule.thresholds.get("min")

        for required_qty, variable in tokenize_condition(rule.condition):
            item_id = rule.variable_bindings.get(variable)
            if item_id is None:
                continue

            line = cart.get(item_id)
            cart_qty = line.quantity if line is not None else 0

            if not cart_qty:
                self.logger.info("Rule not applicable; item not in cart", rule_id=rule.rule_id, item_id=item_id)
                return None

            if min_qty is not None and cart_qty < min_qty:
                self.logger.info(
                    "Rule not applicable; minimum item count not reached",
                    rule_id=rule.rule_id,
                    item_id=item_id,
                    minimum=min_qty,
                    cart_qty=cart_qty
                )
                return None

            if cart_qty < required_qty:
                self.logger.info(
                    "Rule not applicable; required item count not reached",
                    rule_id=rule.rule_id,
                    item_id=item_id,
                    required_qty=required_qty,
                    cart_qty=cart_qty
                )
                return None

            summary.append(ItemBindingSummary(
                item_id=item_id,
                unit_price=line.unit_price,
                required_qty=required_qty,
                cart_qty=cart_qty
            ))

        return summary
