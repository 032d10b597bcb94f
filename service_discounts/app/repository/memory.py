"""
In-memory storage collaborators.

The service loads rules from PostgreSQL into an InMemoryRuleRepository so
that evaluation itself never blocks on I/O.
"""

from typing import Dict, Iterable, List, Optional

from ..rules.models import RawRule, CartSnapshot
from .base import RuleRepository, CartSnapshotProvider


class InMemoryRuleRepository(RuleRepository):
    """Rule repository over the loaded rules; coupons can be refreshed one by one."""

    def __init__(
        self,
        general_rules: Iterable[RawRule] = (),
        coupon_rules: Optional[Dict[int, RawRule]] = None,
        coupon_codes: Optional[Dict[str, int]] = None
    ):
        self._general_rules = tuple(general_rules)
        self._coupon_rules = dict(coupon_rules or {})
        self._coupon_codes = dict(coupon_codes or {})

    def get_active_rules(self) -> List[RawRule]:
        return list(self._general_rules)

    def get_rule_by_coupon(self, coupon_id: int) -> Optional[RawRule]:
        return self._coupon_rules.get(coupon_id)

    def resolve_coupon_code(self, code: str) -> Optional[int]:
        return self._coupon_codes.get(code)

    def update_coupon(self, code: str, coupon_id: Optional[int] = None, rule: Optional[RawRule] = None):
        """Record the current state of one coupon; no coupon_id forgets the code."""
        if coupon_id is None:
            self._coupon_codes.pop(code, None)
            return

        self._coupon_codes[code] = coupon_id
        if rule is None:
            self._coupon_rules.pop(coupon_id, None)
        else:
            self._coupon_rules[coupon_id] = rule

    def get_stats(self) -> Dict[str, int]:
        return {
            "general_rules": len(self._general_rules),
            "coupon_rules": len(self._coupon_rules),
            "coupon_codes": len(self._coupon_codes),
        }


class InMemoryCartStore(CartSnapshotProvider):
    """Cart snapshot provider backed by a dict; used locally and in tests."""

    def __init__(self, carts: Optional[Dict[int, CartSnapshot]] = None):
        self._carts = {cart_id: dict(cart) for cart_id, cart in (carts or {}).items()}

    async def get_summary(self, cart_id: int) -> CartSnapshot:
        # Copy so callers never share the stored mapping
        return dict(self._carts.get(cart_id, {}))
