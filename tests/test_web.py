import json
import uuid
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from aiohttp.test_utils import TestClient, TestServer

from conftest import order_row, refund_row
from gamemarket.models.order import CartLine, PaymentMethod
from gamemarket.models.refund import RefundStatus
from gamemarket.web import create_app
from gamemarket.web.responses import dumps, from_result

CUSTOMER = {"X-User-Id": "cust-1", "X-User-Email": "ana@example.com", "X-User-Name": "Ana Souza"}
ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}


@pytest.fixture
def market():
    return SimpleNamespace(
        carts=AsyncMock(),
        coupons=AsyncMock(),
        orders=AsyncMock(),
        payments=AsyncMock(),
        refunds=AsyncMock(),
        balances=AsyncMock(),
        notifications=AsyncMock(),
        poller=MagicMock(),
        feed=MagicMock(),
    )


@pytest.fixture
async def client(market):
    async with TestClient(TestServer(create_app(market))) as client:
        yield client


def test_result_codes_map_to_http_statuses():
    assert from_result({"success": False, "error": "x", "code": "refund_exists"}).status == 409
    assert from_result({"success": False, "error": "x", "code": "gateway_error"}).status == 502
    assert from_result({"success": False, "error": "x", "code": "coupon_expired"}).status == 400
    assert from_result({"valid": False, "error": "x", "code": "coupon_not_found"}).status == 400
    assert from_result({"success": True, "status": "approved"}, status=201).status == 201


def test_dumps_handles_domain_values():
    order_id = uuid.uuid4()
    line = CartLine(product_id="p", name="Skin", price=Decimal("9.90"))
    body = json.loads(dumps({"id": order_id, "amount": Decimal("9.90"), "line": line}))
    assert body["id"] == str(order_id)
    assert body["amount"] == "9.90"
    assert body["line"]["price"] == "9.90"


async def test_anonymous_requests_are_refused(client, market):
    response = await client.get("/cart")
    assert response.status == 401
    assert (await response.json())["error"]["code"] == "unauthenticated"
    market.carts.get_cart.assert_not_called()


async def test_checkout_starts_polling_pending_orders(client, market):
    order_id = uuid.uuid4()
    market.carts.get_cart.return_value = [CartLine(product_id="p", name="Skin", price=Decimal("100"))]
    market.orders.create_order.return_value = {"success": True, "order_id": order_id, "status": "pending",
                                               "order": {"id": order_id}}

    response = await client.post("/checkout", json={"payment_method": "pix", "coupon_code": "SAVE10"},
                                 headers=CUSTOMER)

    assert response.status == 201
    body = await response.json()
    assert body["data"]["order_id"] == str(order_id)
    lines, user, method = market.orders.create_order.call_args.args
    assert user.user_id == "cust-1" and method == PaymentMethod.PIX
    market.poller.watch.assert_called_once_with(order_id)


async def test_declined_checkout(client, market):
    market.orders.create_order.return_value = {"success": False, "error": "Payment declined",
                                               "code": "payment_declined"}
    response = await client.post("/checkout", json={"payment_method": "pix", "lines": [
        {"product_id": "p", "name": "Skin", "price": "10.00"}
    ]}, headers=CUSTOMER)

    assert response.status == 400
    assert (await response.json())["error"]["code"] == "payment_declined"
    market.poller.watch.assert_not_called()


async def test_unknown_payment_method(client, market):
    response = await client.post("/checkout", json={"payment_method": "bitcoin"}, headers=CUSTOMER)
    assert (await response.json())["error"]["code"] == "invalid_payment_method"
    market.orders.create_order.assert_not_called()


async def test_malformed_json(client):
    response = await client.post("/cart", data="{not json", headers=CUSTOMER)
    assert response.status == 400
    assert (await response.json())["error"]["code"] == "invalid_json"


async def test_invalid_cart_line(client, market):
    response = await client.post("/cart", json={"product_id": "p"}, headers=CUSTOMER)
    assert response.status == 400
    market.carts.add_item.assert_not_called()


async def test_bad_path_id_is_not_found(client):
    response = await client.get("/orders/not-a-uuid/status", headers=CUSTOMER)
    assert response.status == 404


async def test_order_status_only_for_its_customer(client, market):
    market.orders.get_order.return_value = {"id": uuid.uuid4(), "user_id": "cust-2", "payment_status": "pending"}
    response = await client.get(f"/orders/{uuid.uuid4()}/status", headers=CUSTOMER)
    assert response.status == 403
    market.payments.check_payment_status.assert_not_called()


async def test_refund_submission_is_multipart(client, market):
    order_id = uuid.uuid4()
    market.refunds.submit_refund.return_value = {"success": True, "refund": {"id": uuid.uuid4()}}

    form = aiohttp.FormData()
    form.add_field("reason", "Produto não entregue")
    form.add_field("pix_key", "ana@example.com")
    form.add_field("pix_key_type", "email")
    form.add_field("proofs", b"\x89PNG print", filename="print.png", content_type="image/png")

    response = await client.post(f"/orders/{order_id}/refunds", data=form, headers=CUSTOMER)

    assert response.status == 201
    called_order, user_id, submission = market.refunds.submit_refund.call_args.args
    assert (called_order, user_id) == (order_id, "cust-1")
    assert [(p.filename, p.content_type, p.data) for p in submission.proofs] == [
        ("print.png", "image/png", b"\x89PNG print")
    ]


async def test_decisions_are_admin_only(client, market):
    response = await client.post(f"/refunds/{uuid.uuid4()}/decision", json={"status": "approved"},
                                 headers=CUSTOMER)
    assert response.status == 403
    market.refunds.decide.assert_not_called()


async def test_admin_decision(client, market):
    refund_id = uuid.uuid4()
    market.refunds.decide.return_value = {"success": True, "refund": {"id": refund_id, "status": "approved"}}

    response = await client.post(f"/refunds/{refund_id}/decision",
                                 json={"status": "approved", "admin_notes": "ok"}, headers=ADMIN)

    assert response.status == 200
    market.refunds.decide.assert_awaited_once_with(refund_id, "admin-1", RefundStatus.APPROVED, admin_notes="ok")


async def test_refund_conflicts_are_409(client, market):
    market.refunds.decide.return_value = {"success": False, "error": "Refund request already resolved",
                                          "code": "refund_resolved"}
    response = await client.post(f"/refunds/{uuid.uuid4()}/decision", json={"status": "rejected"},
                                 headers=ADMIN)
    assert response.status == 409


async def test_seller_balance_is_private(client, market):
    response = await client.get("/sellers/seller-x/balance", headers=CUSTOMER)
    assert response.status == 403
    market.balances.get_balance.assert_not_called()


async def test_webhook_id_from_query_string(client, market):
    market.payments.handle_webhook.return_value = {"success": True, "status": "approved", "changed": True}

    response = await client.post("/webhooks/mercadopago?type=payment&data.id=555",
                                 headers={"x-signature": "ts=1,v1=ab", "x-request-id": "req-1"})

    assert response.status == 200
    market.payments.handle_webhook.assert_awaited_once_with(
        {"type": "payment", "data": {"id": "555"}}, signature="ts=1,v1=ab", request_id="req-1"
    )


async def test_webhook_bad_signature_is_401(client, market):
    market.payments.handle_webhook.return_value = {"success": False, "error": "Invalid signature",
                                                   "code": "invalid_signature"}
    response = await client.post("/webhooks/mercadopago", json={"type": "payment", "data": {"id": "1"}})
    assert response.status == 401


async def test_order_detail_for_its_seller(client, market):
    order = order_row(discount_amount=Decimal("0.00"))
    market.orders.get_order.return_value = order
    market.orders.get_order_items.return_value = [
        {"id": 1, "order_id": order["id"], "product_id": "prod-a", "product_name": "Conta Valorant",
         "quantity": 1, "price_per_unit": Decimal("50.00"), "net_amount": Decimal("50.00"), "seller_id": "seller-x"}
    ]
    market.refunds.get_order_refunds.return_value = [refund_row(order_id=order["id"])]

    response = await client.get(f"/orders/{order['id']}", headers={"X-User-Id": "seller-x"})

    assert response.status == 200
    data = (await response.json())["data"]
    assert data["order"]["items"][0]["net_amount"] == "50.00"
    assert data["refunds"][0]["status"] == "pending"


async def test_order_detail_hidden_from_strangers(client, market):
    market.orders.get_order.return_value = order_row()
    response = await client.get(f"/orders/{uuid.uuid4()}", headers={"X-User-Id": "cust-9"})
    assert response.status == 403
    market.orders.get_order_items.assert_not_called()


async def test_refund_messages_for_admins(client, market):
    refund = refund_row()
    market.refunds.get_refund.return_value = refund
    market.refunds.get_messages.return_value = [
        {"id": uuid.uuid4(), "refund_id": refund["id"], "sender_id": "cust-1", "sender_type": "customer",
         "message": "Segue o video", "created_at": refund["created_at"]}
    ]

    response = await client.get(f"/refunds/{refund['id']}/messages", headers=ADMIN)

    messages = (await response.json())["data"]["messages"]
    assert [m["message"] for m in messages] == ["Segue o video"]


async def test_seller_creates_scoped_coupon(client, market):
    market.coupons.create_seller_coupon.return_value = {"success": True, "coupon_id": uuid.uuid4()}

    response = await client.post("/sellers/seller-x/coupons", headers={"X-User-Id": "seller-x"}, json={
        "code": "x20", "discount_type": "percentage", "discount_value": "20", "product_ids": ["prod-a"],
        "seller_id": "seller-y",
    })

    assert response.status == 201
    seller_id, data = market.coupons.create_seller_coupon.call_args.args
    assert seller_id == data["seller_id"] == "seller-x"
    assert data["product_ids"] == ["prod-a"]


async def test_sellers_manage_only_their_coupons(client, market):
    response = await client.delete(f"/sellers/seller-x/coupons/{uuid.uuid4()}", headers={"X-User-Id": "seller-y"})
    assert response.status == 403
    market.coupons.deactivate_seller_coupon.assert_not_called()


async def test_global_coupons_are_admin_only(client, market):
    response = await client.post("/coupons", json={"code": "SAVE10", "discount_percentage": "10"}, headers=CUSTOMER)
    assert response.status == 403
    market.coupons.create_global_coupon.assert_not_called()


async def test_unread_notifications(client, market):
    market.notifications.get_unread.return_value = [{"id": 1, "title": "Pagamento aprovado", "is_read": False}]
    response = await client.get("/notifications", headers=CUSTOMER)
    assert (await response.json())["data"]["notifications"][0]["title"] == "Pagamento aprovado"
    market.notifications.get_unread.assert_awaited_once_with("cust-1", is_admin=False)


async def test_admins_see_role_notifications(client, market):
    market.notifications.get_unread.return_value = []
    await client.get("/notifications", headers=ADMIN)
    market.notifications.get_unread.assert_awaited_once_with("admin-1", is_admin=True)
