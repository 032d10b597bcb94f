"""
Formula parser for Discounts Service.

A stored rule formula has the shape ``<condition>=<discount>``, e.g.
``2apple+1banana=1/2``. The condition names cart items through variables
bound in the rule parameters; the discount is either a flat amount or a
``numerator/denominator`` fraction of the eligible price.
"""

import json
import re
from typing import Any, Dict, Optional

from shared.errors import MalformedRuleError
from shared.logging import get_logger
from .calculator import FLAT_PATTERN, MAX_FLAT_DIGITS
from .models import RawRule, ParsedRule


FORMULA_PATTERN = re.compile(r"[a-zA-Z0-9)(+*/-]+=[0-9/*=-]+")


class FormulaParser:
    """Turns raw rule records into parsed rules."""

    def __init__(self, logger=None):
        self.logger = logger or get_logger("discounts.parser")

    def parse(self, raw: RawRule) -> Optional[ParsedRule]:
        """Parse a raw rule; malformed rules are logged and yield None."""
        try:
            return self._parse(raw)
        except MalformedRuleError as e:
            self.logger.warning(
                "Skipping malformed rule",
                rule_id=raw.rule_id,
                formula=raw.formula,
                reason=e.message,
                **e.details
            )
            return None

    def _parse(self, raw: RawRule) -> ParsedRule:
        formula = (raw.formula or "").strip()
        if not formula:
            raise MalformedRuleError("Empty formula")

        if not FORMULA_PATTERN.fullmatch(formula):
            raise MalformedRuleError("Formula does not match condition=discount shape")

        condition, discount_expr = formula.split("=", 1)

        if FLAT_PATTERN.fullmatch(discount_expr) and len(discount_expr.lstrip("0")) > MAX_FLAT_DIGITS:
            raise MalformedRuleError("Flat discount amount out of range", {"discount": discount_expr})

        bindings = self._decode_object(raw.variable_bindings, "variable_bindings")
        thresholds = self._decode_object(raw.threshold_checks, "threshold_checks")

        return ParsedRule(
            rule_id=raw.rule_id,
            condition=condition,
            discount_expr=discount_expr,
            variable_bindings=self._coerce_bindings(bindings),
            thresholds=self._coerce_thresholds(thresholds)
        )

    def _decode_object(self, value: Any, name: str) -> Dict[str, Any]:
        """Decode an optional JSON object; absence means an empty mapping."""
        if value is None or value == "":
            return {}

        if isinstance(value, (str, bytes)):
            try:
                value = json.loads(value)
            except ValueError as e:
                raise MalformedRuleError(f"Invalid JSON in {name}", {"error": str(e)})

        if value is None:
            return {}
        if not isinstance(value, dict):
            raise MalformedRuleError(f"{name} must be a JSON object", {"type": type(value).__name__})
        return value

    def _coerce_bindings(self, bindings: Dict[str, Any]) -> Dict[str, int]:
        coerced = {}
        for name, item_id in bindings.items():
            # int() would turn true into 1 and truncate 1.9
            if isinstance(item_id, bool) or (isinstance(item_id, float) and not item_id.is_integer()):
                raise MalformedRuleError("Variable bound to a non-integer item", {"variable": name})
            try:
                coerced[str(name)] = int(item_id)
            except (TypeError, ValueError):
                raise MalformedRuleError("Variable bound to a non-integer item", {"variable": name})
        return coerced

    def _coerce_thresholds(self, thresholds: Dict[str, Any]) -> Dict[str, float]:
        coerced = {}
        for name, limit in thresholds.items():
            if isinstance(limit, bool):
                raise MalformedRuleError("Threshold must be numeric", {"check": name})
            try:
                coerced[str(name)] = float(limit)
            except (TypeError, ValueError):
                raise MalformedRuleError("Threshold must be numeric", {"check": name})
        return coerced
