"""
Storage collaborator interfaces consumed by the discount engine.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..rules.models import RawRule, CartSnapshot


class RuleRepository(ABC):
    """Source of raw discount rules and coupon codes."""

    @abstractmethod
    def get_active_rules(self) -> List[RawRule]:
        """All currently enabled general cart rules."""

    @abstractmethod
    def get_rule_by_coupon(self, coupon_id: int) -> Optional[RawRule]:
        """The active rule attached to a coupon, if any."""

    @abstractmethod
    def resolve_coupon_code(self, code: str) -> Optional[int]:
        """Coupon ID for a customer-facing code, if the code exists."""


class CartSnapshotProvider(ABC):
    """Source of point-in-time cart contents."""

    @abstractmethod
    async def get_summary(self, cart_id: int) -> CartSnapshot:
        """Item ID to quantity and unit price for one cart."""
