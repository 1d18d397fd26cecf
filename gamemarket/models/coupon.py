# gamemarket/models/coupon.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel

class DiscountType(str, Enum):
    """Discount kinds"""
    PERCENTAGE = "percentage"
    FIXED = "fixed"

class CouponScope(str, Enum):
    GLOBAL = "global"  # platform-wide, whole cart
    SELLER = "seller"  # one seller's lines only

class Coupon(BaseModel):
    """Platform-wide percentage coupon"""
    id: Optional[UUID] = None
    code: str
    discount_percentage: Decimal
    valid_until: Optional[datetime] = None
    usage_limit: Optional[int] = None
    times_used: int = 0
    is_active: bool = True

class SellerCoupon(BaseModel):
    """Coupon issued by a seller for their own products"""
    id: Optional[UUID] = None
    seller_id: str
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = None
    times_used: int = 0
    total_discount_given: Decimal = Decimal(0)
    is_active: bool = True
    product_ids: List[str] = []

class AppliedCoupon(BaseModel):
    """Outcome of resolving a code against a cart"""
    code: str
    scope: CouponScope
    discount_type: DiscountType
    discount_value: Decimal
    applicable_subtotal: Decimal
    discount_amount: Decimal
    coupon_id: Optional[UUID] = None
    seller_id: Optional[str] = None
    product_ids: List[str] = []
