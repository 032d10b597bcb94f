"""
Rule data models for Discounts Service.
"""

from typing import Dict, Any, Optional, Union
from dataclasses import dataclass, field
from decimal import Decimal

from pydantic import BaseModel, Field


COUPON_CODE_PATTERN = r"^[A-Z0-9]{3,20}$"


@dataclass(frozen=True)
class RawRule:
    """Rule record as stored: formula text plus JSON parameters."""
    rule_id: int
    formula: str
    variable_bindings: Optional[Union[str, Dict[str, Any]]] = None
    threshold_checks: Optional[Union[str, Dict[str, Any]]] = None


@dataclass(frozen=True)
class ParsedRule:
    """Structured rule ready for evaluation."""
    rule_id: int
    condition: str
    discount_expr: str
    variable_bindings: Dict[str, int] = field(default_factory=dict)
    thresholds: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class CartLine:
    """One product line of a cart snapshot."""
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


# item_id -> line
CartSnapshot = Dict[int, CartLine]


def cart_total(cart: CartSnapshot) -> Decimal:
    """Sum of all line totals of a cart snapshot."""
    return sum((line.line_total for line in cart.values()), Decimal("0"))


@dataclass(frozen=True)
class ItemBindingSummary:
    """A resolved condition term, used while evaluating one rule."""
    item_id: int
    unit_price: Decimal
    required_qty: int
    cart_qty: int

    @property
    def frequency(self) -> int:
        return self.cart_qty // self.required_qty


@dataclass(frozen=True)
class DiscountResult:
    """Discount computed by one rule."""
    rule_id: int
    amount: Decimal


@dataclass
class DiscountSummary:
    """Outcome of applying all competing rules to a cart."""
    applied: bool = False
    amount: Decimal = Decimal("0")
    by_rule: Dict[int, Decimal] = field(default_factory=dict)


class ApplyCouponRequest(BaseModel):
    """Request model for applying a coupon to a cart."""
    coupon_code: str = Field(..., pattern=COUPON_CODE_PATTERN, description="Coupon code")


class CartDiscountResponse(BaseModel):
    """Response model for a cart discount lookup."""
    cart_id: int
    cart_total: Decimal = Field(..., description="Sum of the cart line totals")
    discount_applied: bool = Field(..., description="Whether any rule produced a discount")
    discount_amount: Decimal = Field(..., description="Best discount among the applicable rules")
    discount_summary: Dict[int, Decimal] = Field(default_factory=dict, description="Discount per rule ID")
    coupon_code: Optional[str] = Field(None, description="Coupon taken into account")


class RuleReloadResponse(BaseModel):
    """Response model for a rule reload."""
    general_rules: int
    coupon_rules: int
    coupon_codes: int

