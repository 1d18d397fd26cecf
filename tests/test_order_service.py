import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from conftest import order_row
from gamemarket.models.order import CardData, CartLine, PaymentMethod
from gamemarket.services.balance_service import BalanceService
from gamemarket.services.cart_service import CartService
from gamemarket.services.coupon_service import CouponService
from gamemarket.services.notification_service import NotificationService
from gamemarket.services.order_service import OrderService


def gateway_payment(status="pending", **extra):
    payment = {
        "success": True,
        "payment_id": "mp-123",
        "status": status,
        "status_detail": None,
        "pix_qr_code": "000201...",
        "pix_qr_code_base64": "iVBORw0...",
        "ticket_url": None,
    }
    payment.update(extra)
    return payment


def card():
    return CardData(card_number="4111111111111111", cardholder_name="ANA SOUZA", expiration_month="12",
                    expiration_year="2030", security_code="123", cpf="529.982.247-25")


@pytest.fixture
def gateway():
    gateway = AsyncMock()
    gateway.create_payment.return_value = gateway_payment()
    return gateway


@pytest.fixture
def orders(db, gateway):
    return OrderService(db, gateway, CouponService(db), BalanceService(db),
                        CartService(db), NotificationService(db))


def sold_item(amount="50.00"):
    return {"product_id": "prod-a", "product_name": "Conta Valorant", "quantity": 1,
            "price_per_unit": Decimal(amount), "net_amount": Decimal(amount), "seller_id": "seller-x"}


async def test_pix_checkout_with_global_coupon(orders, conn, gateway, customer):
    lines = [CartLine(product_id="skin-1", name="Skin AWP", price=Decimal("100.00"))]
    conn.fetchrow.side_effect = [
        None,
        {"id": uuid.uuid4(), "code": "SAVE10", "discount_percentage": Decimal("10"), "valid_until": None,
         "usage_limit": 100, "times_used": 4, "is_active": True},
        order_row(payment_status="pending", transaction_amount=Decimal("90.00")),
    ]

    result = await orders.create_order(lines, customer, PaymentMethod.PIX, coupon_code="save10")

    assert result["success"] is True
    assert result["status"] == "pending"
    assert gateway.create_payment.call_args.args[2] == Decimal("90.00")

    insert = conn.fetchrow.call_args_list[2].args
    assert insert[7] == Decimal("100.00")
    assert insert[8] == Decimal("90.00")
    assert insert[10] == "pending"
    assert (insert[11], insert[12]) == ("SAVE10", Decimal("10.00"))
    assert insert[14] == "000201..."

    assert len(conn.executed("times_used = times_used + 1")) == 1
    assert len(conn.executed("INSERT INTO order_items")) == 1
    assert len(conn.executed("pg_notify")) == 1
    # pending orders do not touch balances
    conn.fetchval.assert_not_called()


async def test_multi_seller_cart_stores_net_amount_per_line(orders, conn, customer, seller_x_line, seller_y_line):
    conn.fetchrow.side_effect = [
        {"id": uuid.uuid4(), "seller_id": "seller-x", "code": "X20", "discount_type": "percentage",
         "discount_value": Decimal("20"), "expires_at": None, "max_uses": None, "times_used": 0,
         "total_discount_given": Decimal("0"), "is_active": True},
        order_row(payment_status="pending"),
    ]
    conn.fetch.return_value = []

    result = await orders.create_order([seller_x_line, seller_y_line], customer, PaymentMethod.PIX,
                                       coupon_code="X20")

    assert result["success"] is True
    insert = conn.fetchrow.call_args_list[1].args
    assert insert[8] == Decimal("70.00")
    nets = [c.args[6] for c in conn.executed("INSERT INTO order_items")]
    assert nets == [Decimal("40.00"), Decimal("30.00")]
    assert len(conn.executed("INSERT INTO seller_coupon_usage")) == 1


async def test_gateway_failure_persists_nothing(orders, conn, gateway, customer, seller_x_line):
    gateway.create_payment.return_value = {"success": False, "error": "Payment gateway timed out"}

    result = await orders.create_order([seller_x_line], customer, PaymentMethod.PIX)

    assert result == {"success": False, "error": "Payment gateway timed out", "code": "gateway_error"}
    conn.fetchrow.assert_not_called()
    conn.execute.assert_not_called()


async def test_declined_card_persists_nothing(orders, conn, gateway, customer, seller_x_line):
    gateway.create_payment.return_value = gateway_payment("rejected", status_detail="cc_rejected_insufficient_amount")

    result = await orders.create_order([seller_x_line], customer, PaymentMethod.CREDIT_CARD, card=card())

    assert result["code"] == "payment_declined"
    assert "cc_rejected_insufficient_amount" in result["error"]
    conn.execute.assert_not_called()


@pytest.mark.parametrize("gateway_status, approved", [("pending", False), ("approved", True)])
async def test_coupon_exhausted_before_commit_voids_the_charge(orders, conn, gateway, customer, seller_x_line,
                                                                gateway_status, approved):
    gateway.create_payment.return_value = gateway_payment(gateway_status)
    conn.fetchrow.side_effect = [
        None,
        {"id": uuid.uuid4(), "code": "SAVE10", "discount_percentage": Decimal("10"), "valid_until": None,
         "usage_limit": 5, "times_used": 4, "is_active": True},
        order_row(payment_status=gateway_status),
    ]
    conn.execute.side_effect = lambda sql, *args: "UPDATE 0" if "times_used = times_used + 1" in sql else "OK"

    result = await orders.create_order([seller_x_line], customer, PaymentMethod.PIX, coupon_code="SAVE10")

    assert result["code"] == "coupon_limit_reached"
    gateway.cancel_payment.assert_awaited_once_with("mp-123", approved=approved)
    conn.fetchval.assert_not_called()


async def test_anonymous_checkout_is_rejected(orders, gateway, seller_x_line):
    result = await orders.create_order([seller_x_line], None, PaymentMethod.PIX)
    assert result["code"] == "unauthenticated"
    gateway.create_payment.assert_not_called()


async def test_empty_cart_is_rejected(orders, gateway, customer):
    result = await orders.create_order([], customer, PaymentMethod.PIX)
    assert result["code"] == "empty_cart"
    gateway.create_payment.assert_not_called()


async def test_incomplete_card_is_rejected_before_the_gateway(orders, gateway, customer, seller_x_line):
    result = await orders.create_order([seller_x_line], customer, PaymentMethod.CREDIT_CARD,
                                       card=CardData(card_number="4111111111111111"))
    assert result["code"] == "invalid_card_data"
    gateway.create_payment.assert_not_called()


async def test_invalid_coupon_stops_checkout(orders, conn, gateway, customer, seller_x_line):
    conn.fetchrow.side_effect = [None, None]
    result = await orders.create_order([seller_x_line], customer, PaymentMethod.PIX, coupon_code="NOPE")
    assert result["code"] == "coupon_not_found"
    gateway.create_payment.assert_not_called()


async def test_synchronous_approval_credits_seller_and_clears_cart(orders, conn, gateway, customer, seller_x_line):
    gateway.create_payment.return_value = gateway_payment("approved", pix_qr_code=None, pix_qr_code_base64=None)
    conn.fetchrow.side_effect = [order_row(payment_status="approved", payment_method="credit_card")]
    conn.fetchval.return_value = Decimal("50.00")

    result = await orders.create_order([seller_x_line], customer, PaymentMethod.CREDIT_CARD, card=card())

    assert result["status"] == "approved"
    assert "pending_balance = pending_balance + $2" in conn.fetchval.call_args.args[0]
    assert len(conn.executed("DELETE FROM cart_items")) == 1
    # card orders never store pix artifacts
    insert = conn.fetchrow.call_args_list[0].args
    assert insert[14] is None and insert[15] is None


async def test_gateway_approval_applies_once(orders, conn):
    pending = order_row(payment_status="pending")
    conn.fetchrow.side_effect = [pending, dict(pending, payment_status="approved")]
    conn.fetch.return_value = [sold_item()]
    conn.fetchval.return_value = Decimal("50.00")

    result = await orders.apply_gateway_status("mp-123", "approved")

    assert result == {"success": True, "status": "approved", "changed": True}
    update = conn.fetchrow.call_args_list[1].args
    assert update[2:4] == ("approved", "pending")
    assert len(conn.executed("INSERT INTO order_status_history")) == 1
    assert len(conn.executed("DELETE FROM cart_items")) == 1


async def test_repeated_gateway_approval_is_a_no_op(orders, conn):
    conn.fetchrow.return_value = order_row(payment_status="approved")

    result = await orders.apply_gateway_status("mp-123", "approved")

    assert result == {"success": True, "status": "approved", "changed": False}
    conn.execute.assert_not_called()


async def test_gateway_pending_changes_nothing(orders, conn):
    conn.fetchrow.return_value = order_row(payment_status="pending")
    result = await orders.apply_gateway_status("mp-123", "in_process")
    assert result["changed"] is False
    conn.execute.assert_not_called()


async def test_gateway_status_for_unknown_payment(orders, conn):
    conn.fetchrow.return_value = None
    result = await orders.apply_gateway_status("mp-404", "approved")
    assert result["code"] == "not_found"


async def test_seller_marks_delivered_and_releases_balance(orders, conn, now):
    approved = order_row(payment_status="approved")
    conn.fetchrow.side_effect = [approved, dict(approved, payment_status="delivered", delivered_at=now)]
    conn.fetch.return_value = [sold_item()]
    conn.fetchval.side_effect = [Decimal("0.00"), Decimal("50.00")]

    result = await orders.mark_delivered(approved["id"], "seller-x")

    assert result["success"] is True
    assert result["order"]["payment_status"] == "delivered"
    update = conn.fetchrow.call_args_list[1].args
    assert update[4] is True
    assert [c.args[2] for c in conn.fetchval.call_args_list] == [Decimal("-50.00"), Decimal("50.00")]


async def test_other_seller_cannot_mark_delivered(orders, conn):
    conn.fetchrow.return_value = order_row(payment_status="approved")
    result = await orders.mark_delivered(uuid.uuid4(), "seller-y")
    assert result["code"] == "forbidden"
    conn.execute.assert_not_called()


async def test_pending_order_cannot_be_delivered(orders, conn):
    conn.fetchrow.return_value = order_row(payment_status="pending")
    result = await orders.mark_delivered(uuid.uuid4(), "admin", is_admin=True)
    assert result["code"] == "invalid_transition"


async def test_concurrent_status_change_is_reported(orders, conn):
    conn.fetchrow.side_effect = [order_row(payment_status="approved"), None]
    result = await orders.mark_delivered(uuid.uuid4(), "seller-x")
    assert result["code"] == "concurrent_update"
