# gamemarket/services/coupon_service.py
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence
from .base_service import BaseService
from ..exceptions import ValidationError
from ..models.coupon import AppliedCoupon, Coupon, CouponScope, DiscountType, SellerCoupon
from ..models.order import CartLine
from ..utils.formatters import to_money
from ..utils.validators import normalize_coupon_code

COUPON_NOT_FOUND = "Coupon invalid or not found"
COUPON_EXPIRED = "This coupon has expired"
COUPON_LIMIT_REACHED = "This coupon has reached its usage limit"
COUPON_NOT_APPLICABLE = "This coupon is not valid for the items in your cart"

def _limit_reached(times_used: int, limit: Optional[int]) -> bool:
    # a missing or zero limit means unlimited
    return bool(limit) and times_used >= limit

def _expired(expires_at: Optional[datetime], now: datetime) -> bool:
    return expires_at is not None and expires_at < now

def compute_discount(discount_type: DiscountType, value: Decimal, subtotal: Decimal) -> Decimal:
    """Discount over the applicable subtotal, never larger than it"""
    if discount_type == DiscountType.PERCENTAGE:
        return min(to_money(subtotal * Decimal(value) / 100), subtotal)
    return min(to_money(value), subtotal)

def matching_lines(coupon: SellerCoupon, lines: Sequence[CartLine]) -> List[CartLine]:
    """Lines of the coupon's seller, narrowed to its product scope if it has one"""
    matches = [line for line in lines if line.seller_id == coupon.seller_id]
    if coupon.product_ids:
        scope = set(coupon.product_ids)
        matches = [line for line in matches if line.product_id in scope]
    return matches

def evaluate_seller_coupon(coupon: SellerCoupon, lines: Sequence[CartLine], now: datetime) -> AppliedCoupon:
    if _expired(coupon.expires_at, now):
        raise ValidationError(COUPON_EXPIRED, code="coupon_expired")
    if _limit_reached(coupon.times_used, coupon.max_uses):
        raise ValidationError(COUPON_LIMIT_REACHED, code="coupon_limit_reached")

    matches = matching_lines(coupon, lines)
    if not matches:
        raise ValidationError(COUPON_NOT_APPLICABLE, code="coupon_not_applicable")

    subtotal = to_money(sum(line.total_price for line in matches))
    return AppliedCoupon(
        code=coupon.code.upper(),
        scope=CouponScope.SELLER,
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
        applicable_subtotal=subtotal,
        discount_amount=compute_discount(coupon.discount_type, coupon.discount_value, subtotal),
        coupon_id=coupon.id,
        seller_id=coupon.seller_id,
        product_ids=list(coupon.product_ids)
    )

def evaluate_global_coupon(coupon: Coupon, lines: Sequence[CartLine], now: datetime) -> AppliedCoupon:
    if _expired(coupon.valid_until, now):
        raise ValidationError(COUPON_EXPIRED, code="coupon_expired")
    if _limit_reached(coupon.times_used, coupon.usage_limit):
        raise ValidationError(COUPON_LIMIT_REACHED, code="coupon_limit_reached")

    subtotal = to_money(sum(line.total_price for line in lines))
    return AppliedCoupon(
        code=coupon.code.upper(),
        scope=CouponScope.GLOBAL,
        discount_type=DiscountType.PERCENTAGE,
        discount_value=coupon.discount_percentage,
        applicable_subtotal=subtotal,
        discount_amount=compute_discount(DiscountType.PERCENTAGE, coupon.discount_percentage, subtotal),
        coupon_id=coupon.id
    )

def allocate_discount(lines: Sequence[CartLine], applied: Optional[AppliedCoupon]) -> List[Decimal]:
    """Net amount per line after spreading the discount over eligible lines.

    The discount is split proportionally to line totals; the rounding
    remainder goes to the last eligible line so the nets always sum to
    subtotal - discount.
    """
    totals = [to_money(line.total_price) for line in lines]
    if applied is None or applied.discount_amount == 0:
        return totals

    if applied.scope == CouponScope.SELLER:
        scope = set(applied.product_ids)
        eligible = [
            i for i, line in enumerate(lines)
            if line.seller_id == applied.seller_id and (not scope or line.product_id in scope)
        ]
    else:
        eligible = list(range(len(lines)))

    base = sum(totals[i] for i in eligible)
    nets = list(totals)
    remaining = applied.discount_amount
    for position, i in enumerate(eligible):
        if position == len(eligible) - 1:
            share = remaining
        else:
            share = to_money(applied.discount_amount * totals[i] / base) if base else Decimal(0)
        share = min(share, nets[i])
        nets[i] -= share
        remaining -= share
    return nets

class CouponService(BaseService):
    """Coupon lookup, validation and usage accounting"""

    async def resolve_coupon(self, code: str, lines: Sequence[CartLine],
                             now: Optional[datetime] = None) -> Dict[str, Any]:
        """Validate a code against the cart; has no side effects"""
        code = normalize_coupon_code(code)
        if not code:
            return {"valid": False, "error": "Enter a coupon code", "code": "coupon_missing"}

        now = now or datetime.now(timezone.utc)
        subtotal = to_money(sum(line.total_price for line in lines))

        try:
            seller_coupon = await self.get_seller_coupon(code)
            if seller_coupon:
                applied = evaluate_seller_coupon(seller_coupon, lines, now)
            else:
                global_coupon = await self.get_global_coupon(code)
                if not global_coupon:
                    raise ValidationError(COUPON_NOT_FOUND, code="coupon_not_found")
                applied = evaluate_global_coupon(global_coupon, lines, now)
        except ValidationError as e:
            return {"valid": False, "error": e.detail, "code": e.code}

        return {
            "valid": True,
            "coupon": applied,
            "amount": applied.discount_amount,
            "final_amount": subtotal - applied.discount_amount
        }

    async def get_seller_coupon(self, code: str) -> Optional[SellerCoupon]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT *
                FROM seller_coupons
                WHERE UPPER(code) = $1 AND is_active = true
            """, code)
            if not row:
                return None

            products = await conn.fetch("""
                SELECT product_id FROM seller_coupon_products WHERE coupon_id = $1
            """, row['id'])

        return SellerCoupon(**dict(row), product_ids=[p['product_id'] for p in products])

    async def get_global_coupon(self, code: str) -> Optional[Coupon]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT *
                FROM coupons
                WHERE UPPER(code) = $1 AND is_active = true
            """, code)
            return Coupon(**dict(row)) if row else None

    async def record_usage(self, conn, applied: AppliedCoupon, order_id, user_id: Optional[str]):
        """Count one use; runs inside the order-creation transaction.

        The increment re-checks the limit, so when two checkouts race for
        the last use the loser raises and its transaction rolls back.
        """
        if applied.scope == CouponScope.SELLER:
            result = await conn.execute("""
                UPDATE seller_coupons
                SET times_used = times_used + 1,
                    total_discount_given = total_discount_given + $2
                WHERE id = $1
                  AND (max_uses IS NULL OR max_uses = 0 OR times_used < max_uses)
            """, applied.coupon_id, applied.discount_amount)
            usage_table = "seller_coupon_usage"
        else:
            result = await conn.execute("""
                UPDATE coupons
                SET times_used = times_used + 1
                WHERE id = $1
                  AND (usage_limit IS NULL OR usage_limit = 0 OR times_used < usage_limit)
            """, applied.coupon_id)
            usage_table = "coupon_usage"

        if result == "UPDATE 0":
            raise ValidationError(COUPON_LIMIT_REACHED, code="coupon_limit_reached")

        await conn.execute(f"""
            INSERT INTO {usage_table} (
                coupon_id, order_id, user_id, discount_amount
            ) VALUES ($1, $2, $3, $4)
        """, applied.coupon_id, order_id, user_id, applied.discount_amount)

        self.logger.info(f"Coupon {applied.code} used on order {order_id}")

    async def create_global_coupon(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a platform coupon"""
        percentage = Decimal(str(data['discount_percentage']))
        if not 0 < percentage <= 100:
            return {"success": False, "error": "Percentage must be between 0 and 100", "code": "invalid_coupon"}

        async with self.db.pool.acquire() as conn:
            coupon_id = await conn.fetchval("""
                INSERT INTO coupons (
                    code, discount_percentage, valid_until, usage_limit, is_active
                ) VALUES ($1, $2, $3, $4, $5)
                RETURNING id
            """,
                normalize_coupon_code(data['code']),
                percentage,
                data.get('valid_until'),
                data.get('usage_limit'),
                data.get('is_active', True)
            )
        return {"success": True, "coupon_id": coupon_id}

    async def create_seller_coupon(self, seller_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a seller coupon, optionally restricted to some products"""
        discount_type = DiscountType(data['discount_type'])
        value = Decimal(str(data['discount_value']))
        if value <= 0 or (discount_type == DiscountType.PERCENTAGE and value > 100):
            return {"success": False, "error": "Invalid discount value", "code": "invalid_coupon"}

        async with self.transaction() as conn:
            coupon_id = await conn.fetchval("""
                INSERT INTO seller_coupons (
                    seller_id, code, discount_type, discount_value, expires_at, max_uses, is_active
                ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING id
            """,
                seller_id,
                normalize_coupon_code(data['code']),
                discount_type.value,
                value,
                data.get('expires_at'),
                data.get('max_uses'),
                data.get('is_active', True)
            )

            for product_id in data.get('product_ids') or []:
                await conn.execute("""
                    INSERT INTO seller_coupon_products (coupon_id, product_id)
                    VALUES ($1, $2)
                """, coupon_id, product_id)

        return {"success": True, "coupon_id": coupon_id}

    async def deactivate_seller_coupon(self, coupon_id, seller_id: str) -> bool:
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE seller_coupons
                SET is_active = false
                WHERE id = $1 AND seller_id = $2
            """, coupon_id, seller_id)
            return result == "UPDATE 1"
