import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from gamemarket.exceptions import ValidationError
from gamemarket.models.coupon import Coupon, CouponScope, DiscountType, SellerCoupon
from gamemarket.models.order import CartLine
from gamemarket.services.coupon_service import (
    CouponService, allocate_discount, compute_discount, evaluate_global_coupon, evaluate_seller_coupon
)


def seller_coupon(**overrides):
    data = dict(
        id=uuid.uuid4(), seller_id="seller-x", code="X20",
        discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("20"),
    )
    data.update(overrides)
    return SellerCoupon(**data)


def global_row(**overrides):
    row = {
        "id": uuid.uuid4(), "code": "SAVE10", "discount_percentage": Decimal("10"),
        "valid_until": None, "usage_limit": None, "times_used": 0, "is_active": True,
    }
    row.update(overrides)
    return row


def test_compute_discount_percentage_and_fixed():
    assert compute_discount(DiscountType.PERCENTAGE, Decimal("10"), Decimal("100.00")) == Decimal("10.00")
    assert compute_discount(DiscountType.FIXED, Decimal("15"), Decimal("40.00")) == Decimal("15.00")
    assert compute_discount(DiscountType.FIXED, Decimal("60"), Decimal("40.00")) == Decimal("40.00")


def test_percentage_rounds_half_up():
    assert compute_discount(DiscountType.PERCENTAGE, Decimal("15"), Decimal("0.30")) == Decimal("0.05")


def test_seller_coupon_only_discounts_its_seller(seller_x_line, seller_y_line, now):
    applied = evaluate_seller_coupon(seller_coupon(), [seller_x_line, seller_y_line], now)
    assert applied.scope == CouponScope.SELLER
    assert applied.applicable_subtotal == Decimal("50.00")
    assert applied.discount_amount == Decimal("10.00")

    nets = allocate_discount([seller_x_line, seller_y_line], applied)
    assert nets == [Decimal("40.00"), Decimal("30.00")]
    assert sum(nets) == Decimal("70.00")


def test_fixed_seller_coupon_capped_at_matching_subtotal(seller_x_line, seller_y_line, now):
    coupon = seller_coupon(discount_type=DiscountType.FIXED, discount_value=Decimal("75"))
    applied = evaluate_seller_coupon(coupon, [seller_x_line, seller_y_line], now)
    assert applied.discount_amount == Decimal("50.00")


def test_product_scope_narrows_matching_lines(now):
    lines = [
        CartLine(product_id="p1", name="A", price=Decimal("20"), seller_id="seller-x"),
        CartLine(product_id="p2", name="B", price=Decimal("80"), seller_id="seller-x"),
    ]
    applied = evaluate_seller_coupon(seller_coupon(product_ids=["p1"]), lines, now)
    assert applied.applicable_subtotal == Decimal("20.00")
    assert applied.discount_amount == Decimal("4.00")
    assert allocate_discount(lines, applied) == [Decimal("16.00"), Decimal("80.00")]


@pytest.mark.parametrize("overrides, code", [
    ({"expires_at": "2024-05-01T00:00:00+00:00"}, "coupon_expired"),
    ({"max_uses": 3, "times_used": 3}, "coupon_limit_reached"),
    ({"seller_id": "seller-z"}, "coupon_not_applicable"),
])
def test_seller_coupon_rejections(overrides, code, seller_x_line, now):
    with pytest.raises(ValidationError) as exc:
        evaluate_seller_coupon(seller_coupon(**overrides), [seller_x_line], now)
    assert exc.value.code == code


def test_zero_usage_limit_means_unlimited(seller_x_line, now):
    coupon = Coupon(**global_row(usage_limit=0, times_used=999))
    assert evaluate_global_coupon(coupon, [seller_x_line], now).discount_amount == Decimal("5.00")


def test_global_discount_allocation_keeps_the_total(now):
    lines = [
        CartLine(product_id=f"p{i}", name="x", price=Decimal("3.33"), seller_id=f"s{i}")
        for i in range(3)
    ]
    applied = evaluate_global_coupon(Coupon(**global_row()), lines, now)
    nets = allocate_discount(lines, applied)
    assert sum(nets) == Decimal("9.99") - applied.discount_amount


def test_no_coupon_leaves_line_totals(seller_x_line):
    assert allocate_discount([seller_x_line], None) == [Decimal("50.00")]


async def test_resolve_global_coupon_save10(db, conn, now):
    lines = [CartLine(product_id="p1", name="Skin", price=Decimal("100.00"))]
    # no seller coupon, then the global one
    conn.fetchrow.side_effect = [None, global_row()]

    result = await CouponService(db).resolve_coupon(" save10 ", lines, now)

    assert result["valid"] is True
    assert result["amount"] == Decimal("10.00")
    assert result["final_amount"] == Decimal("90.00")
    assert conn.fetchrow.call_args_list[0].args[1] == "SAVE10"


async def test_resolve_seller_coupon_first(db, conn, seller_x_line, seller_y_line, now):
    coupon_id = uuid.uuid4()
    conn.fetchrow.return_value = {
        "id": coupon_id, "seller_id": "seller-x", "code": "x20", "discount_type": "percentage",
        "discount_value": Decimal("20"), "expires_at": None, "max_uses": None, "times_used": 0,
        "total_discount_given": Decimal("0"), "is_active": True,
    }
    conn.fetch.return_value = []

    result = await CouponService(db).resolve_coupon("X20", [seller_x_line, seller_y_line], now)

    assert result["valid"] is True
    assert result["coupon"].code == "X20"
    assert result["amount"] == Decimal("10.00")
    assert result["final_amount"] == Decimal("70.00")


async def test_resolve_unknown_code(db, conn, seller_x_line, now):
    conn.fetchrow.side_effect = [None, None]
    result = await CouponService(db).resolve_coupon("NOPE", [seller_x_line], now)
    assert result == {"valid": False, "error": "Coupon invalid or not found", "code": "coupon_not_found"}


async def test_resolving_never_touches_usage_counters(db, conn, seller_x_line, now):
    conn.fetchrow.side_effect = [None, global_row(), None, global_row()]
    service = CouponService(db)

    first = await service.resolve_coupon("SAVE10", [seller_x_line], now)
    second = await service.resolve_coupon("SAVE10", [seller_x_line], now)

    assert first == second
    conn.execute.assert_not_called()


async def test_expired_global_coupon(db, conn, seller_x_line, now):
    conn.fetchrow.side_effect = [None, global_row(valid_until=now - timedelta(days=1))]
    result = await CouponService(db).resolve_coupon("SAVE10", [seller_x_line], now)
    assert result["valid"] is False
    assert result["code"] == "coupon_expired"


async def test_record_usage_increments_once(db, conn, seller_x_line, now):
    applied = evaluate_global_coupon(Coupon(**global_row()), [seller_x_line], now)
    order_id = uuid.uuid4()

    await CouponService(db).record_usage(conn, applied, order_id, "cust-1")

    increments = conn.executed("times_used = times_used + 1")
    assert len(increments) == 1
    assert len(conn.executed("INSERT INTO coupon_usage")) == 1


async def test_last_use_taken_by_a_concurrent_checkout(db, conn, seller_x_line, now):
    applied = evaluate_global_coupon(Coupon(**global_row(usage_limit=5, times_used=4)), [seller_x_line], now)
    conn.execute.return_value = "UPDATE 0"

    with pytest.raises(ValidationError) as exc:
        await CouponService(db).record_usage(conn, applied, uuid.uuid4(), "cust-1")

    assert exc.value.code == "coupon_limit_reached"
    assert "times_used < usage_limit" in conn.execute.call_args.args[0]
    assert not conn.executed("INSERT INTO coupon_usage")


async def test_seller_coupon_created_with_product_scope(db, conn):
    coupon_id = uuid.uuid4()
    conn.fetchval.return_value = coupon_id

    result = await CouponService(db).create_seller_coupon("seller-x", {
        "code": " x20 ", "discount_type": "fixed", "discount_value": "15", "product_ids": ["prod-a", "prod-c"],
    })

    assert result == {"success": True, "coupon_id": coupon_id}
    assert conn.fetchval.call_args.args[1:5] == ("seller-x", "X20", "fixed", Decimal("15"))
    assert [c.args[2] for c in conn.executed("INSERT INTO seller_coupon_products")] == ["prod-a", "prod-c"]


@pytest.mark.parametrize("value", ["0", "101"])
async def test_percentage_coupon_bounds(db, conn, value):
    result = await CouponService(db).create_seller_coupon("seller-x", {
        "code": "BAD", "discount_type": "percentage", "discount_value": value,
    })
    assert result["code"] == "invalid_coupon"
    conn.fetchval.assert_not_called()


async def test_global_coupon_code_is_normalized(db, conn):
    conn.fetchval.return_value = uuid.uuid4()
    result = await CouponService(db).create_global_coupon({"code": "save10", "discount_percentage": "10"})
    assert result["success"]
    assert conn.fetchval.call_args.args[1:3] == ("SAVE10", Decimal("10"))


async def test_global_coupon_over_100_percent(db, conn):
    result = await CouponService(db).create_global_coupon({"code": "save", "discount_percentage": "150"})
    assert result["code"] == "invalid_coupon"


async def test_deactivate_only_own_coupon(db, conn):
    coupon_id = uuid.uuid4()
    conn.execute.return_value = "UPDATE 0"
    assert not await CouponService(db).deactivate_seller_coupon(coupon_id, "seller-y")
    assert conn.execute.call_args.args[1:] == (coupon_id, "seller-y")
