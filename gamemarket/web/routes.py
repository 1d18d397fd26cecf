# gamemarket/web/routes.py
import asyncio
import json
from decimal import Decimal, InvalidOperation
from aiohttp import web
from .identity import current_user, is_admin, path_uuid, require_admin, require_self_or_admin
from .responses import dumps, fail, from_result, ok
from ..exceptions import NotFoundError, ValidationError
from ..models.coupon import Coupon, SellerCoupon
from ..models.order import CardData, CartLine, Order, OrderStatus, PaymentMethod
from ..models.refund import ProofFile, RefundMessage, RefundRequest, RefundStatus, RefundSubmission, SenderType
from ..models.seller import BalanceEntry

MARKET = web.AppKey("market")
SSE_HEARTBEAT = 15

routes = web.RouteTableDef()

def market(request: web.Request):
    return request.app[MARKET]

async def read_json(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    body = await request.json()
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object", code="invalid_json")
    return body

async def checkout_lines(request: web.Request, body: dict, user_id: str):
    """Lines from the body when given, otherwise the stored cart"""
    if body.get("lines"):
        return [CartLine(**line) for line in body["lines"]]
    return await market(request).carts.get_cart(user_id)

async def load_order(request: web.Request):
    order = await market(request).orders.get_order(path_uuid(request))
    if not order:
        raise NotFoundError("Order not found")
    return order

async def load_refund(request: web.Request):
    refund = await market(request).refunds.get_refund(path_uuid(request))
    if not refund:
        raise NotFoundError("Refund request not found")
    return refund

# -- cart --

@routes.get("/cart")
async def get_cart(request: web.Request):
    user = current_user(request)
    lines = await market(request).carts.get_cart(user.user_id)
    return ok({"lines": lines, "subtotal": sum((line.total_price for line in lines), Decimal(0))})

@routes.post("/cart")
async def add_to_cart(request: web.Request):
    user = current_user(request)
    line = CartLine(**await read_json(request))
    await market(request).carts.add_item(user.user_id, line)
    return ok({"line": line}, status=201)

@routes.delete("/cart/{product_id}")
async def remove_from_cart(request: web.Request):
    user = current_user(request)
    removed = await market(request).carts.remove_item(user.user_id, request.match_info["product_id"])
    if not removed:
        raise NotFoundError("Item not in cart")
    return ok()

@routes.delete("/cart")
async def clear_cart(request: web.Request):
    user = current_user(request)
    await market(request).carts.clear(user.user_id)
    return ok()

# -- checkout --

@routes.post("/coupons/resolve")
async def resolve_coupon(request: web.Request):
    user = current_user(request)
    body = await read_json(request)
    lines = await checkout_lines(request, body, user.user_id)
    result = await market(request).coupons.resolve_coupon(body.get("code", ""), lines)
    return from_result(result)

@routes.post("/checkout")
async def checkout(request: web.Request):
    user = current_user(request)
    body = await read_json(request)
    try:
        payment_method = PaymentMethod(body.get("payment_method"))
    except ValueError:
        return fail("Choose a payment method", "invalid_payment_method")

    card = CardData(**body["card"]) if body.get("card") else None
    lines = await checkout_lines(request, body, user.user_id)

    result = await market(request).orders.create_order(
        lines, user, payment_method, coupon_code=body.get("coupon_code"), card=card
    )
    if result["success"] and result["status"] == OrderStatus.PENDING.value:
        market(request).poller.watch(result["order_id"])
    return from_result(result, status=201)

# -- orders --

@routes.get("/orders")
async def list_orders(request: web.Request):
    user = current_user(request)
    orders = await market(request).orders.get_user_orders(user.user_id)
    return ok({"orders": [Order.from_record(order) for order in orders]})

@routes.get("/orders/{id}")
async def get_order(request: web.Request):
    """Order with its lines and refund history"""
    current_user(request)
    order = await load_order(request)
    require_self_or_admin(request, order['user_id'], order['seller_id'])

    items = await market(request).orders.get_order_items(order['id'])
    refunds = await market(request).refunds.get_order_refunds(order['id'])
    return ok({
        "order": Order.from_record(order, items=items),
        "refunds": [RefundRequest.from_record(refund) for refund in refunds],
    })

@routes.get("/orders/{id}/status")
async def order_status(request: web.Request):
    order = await load_order(request)
    require_self_or_admin(request, order['user_id'])
    result = await market(request).payments.check_payment_status(order['id'])
    return from_result(result)

@routes.get("/orders/{id}/events")
async def order_events(request: web.Request):
    """Server-sent status changes for one order"""
    order = await load_order(request)
    require_self_or_admin(request, order['user_id'])

    response = web.StreamResponse(headers={
        "Content-Type": "text/event-stream",
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
    })
    await response.prepare(request)

    async with market(request).feed.subscribe(order['id']) as queue:
        await response.write(f"data: {dumps({'order_id': order['id'], 'status': order['payment_status']})}\n\n".encode())
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=SSE_HEARTBEAT)
            except asyncio.TimeoutError:
                await response.write(b": keep-alive\n\n")
                continue
            await response.write(f"data: {json.dumps(event)}\n\n".encode())
            if OrderStatus(event["status"]) in (
                OrderStatus.CANCELLED, OrderStatus.REJECTED, OrderStatus.REFUNDED
            ):
                break

    await response.write_eof()
    return response

@routes.post("/orders/{id}/deliver")
async def deliver_order(request: web.Request):
    user = current_user(request)
    result = await market(request).orders.mark_delivered(
        path_uuid(request), user.user_id, is_admin=is_admin(request)
    )
    return from_result(result)

@routes.post("/orders/{id}/refunds")
async def submit_refund(request: web.Request):
    user = current_user(request)
    form = await request.post()

    proofs = [
        ProofFile(
            filename=part.filename,
            content_type=part.content_type,
            data=part.file.read()
        )
        for part in form.getall("proofs", [])
        if isinstance(part, web.FileField)
    ]
    submission = RefundSubmission(
        reason=form.get("reason"),
        description=form.get("description") or None,
        pix_key=form.get("pix_key", ""),
        pix_key_type=form.get("pix_key_type"),
        proofs=proofs
    )

    result = await market(request).refunds.submit_refund(path_uuid(request), user.user_id, submission)
    return from_result(result, status=201)

# -- refunds --

@routes.post("/refunds/{id}/seller-response")
async def seller_response(request: web.Request):
    user = current_user(request)
    body = await read_json(request)
    result = await market(request).refunds.seller_respond(
        path_uuid(request), user.user_id, body.get("response", "")
    )
    return from_result(result)

@routes.get("/refunds/{id}")
async def get_refund(request: web.Request):
    current_user(request)
    refund = await load_refund(request)
    require_self_or_admin(request, refund['customer_id'], refund['seller_id'])
    return ok({"refund": RefundRequest.from_record(refund)})

@routes.get("/refunds/{id}/messages")
async def list_refund_messages(request: web.Request):
    current_user(request)
    refund = await load_refund(request)
    require_self_or_admin(request, refund['customer_id'], refund['seller_id'])
    messages = await market(request).refunds.get_messages(refund['id'])
    return ok({"messages": [RefundMessage.from_record(m) for m in messages]})

@routes.post("/refunds/{id}/messages")
async def post_refund_message(request: web.Request):
    user = current_user(request)
    body = await read_json(request)
    refund = await load_refund(request)

    if is_admin(request):
        sender_type = SenderType.ADMIN
    elif user.user_id == refund['customer_id']:
        sender_type = SenderType.CUSTOMER
    else:
        sender_type = SenderType.SELLER

    result = await market(request).refunds.add_message(
        refund['id'], user.user_id, sender_type, body.get("message", "")
    )
    return from_result(result, status=201)

@routes.post("/refunds/{id}/decision")
async def refund_decision(request: web.Request):
    admin = require_admin(request)
    body = await read_json(request)
    try:
        decision = RefundStatus(body.get("status"))
    except ValueError:
        return fail("Unknown refund status", "invalid_decision")

    result = await market(request).refunds.decide(
        path_uuid(request), admin.user_id, decision, admin_notes=body.get("admin_notes")
    )
    return from_result(result)

# -- sellers --

@routes.get("/sellers/{id}/balance")
async def seller_balance(request: web.Request):
    seller_id = request.match_info["id"]
    require_self_or_admin(request, seller_id)
    balances = market(request).balances
    balance = await balances.get_balance(seller_id)
    if not balance:
        raise NotFoundError("Seller not found")
    entries = await balances.get_entries(seller_id)
    return ok({"balance": balance, "entries": [BalanceEntry.from_record(e) for e in entries]})

@routes.post("/sellers/{id}/withdrawals")
async def seller_withdrawal(request: web.Request):
    seller_id = request.match_info["id"]
    require_self_or_admin(request, seller_id)
    body = await read_json(request)
    try:
        amount = Decimal(str(body.get("amount")))
    except InvalidOperation:
        return fail("Enter a valid amount", "invalid_amount")
    result = await market(request).balances.withdraw(seller_id, amount)
    return from_result(result)

# -- gateway --

@routes.post("/webhooks/mercadopago")
async def mercadopago_webhook(request: web.Request):
    body = await read_json(request)
    # the gateway may send the id in the query string instead of the body
    if not body.get("data", {}).get("id") and request.query.get("data.id"):
        body = {"type": request.query.get("type"), "data": {"id": request.query["data.id"]}}

    result = await market(request).payments.handle_webhook(
        body,
        signature=request.headers.get("x-signature", ""),
        request_id=request.headers.get("x-request-id")
    )
    return from_result(result)

# -- coupons --

@routes.post("/coupons")
async def create_global_coupon(request: web.Request):
    require_admin(request)
    coupon = Coupon(**await read_json(request))
    result = await market(request).coupons.create_global_coupon(coupon.model_dump())
    return from_result(result, status=201)

@routes.post("/sellers/{id}/coupons")
async def create_seller_coupon(request: web.Request):
    seller_id = request.match_info["id"]
    require_self_or_admin(request, seller_id)
    coupon = SellerCoupon(**{**await read_json(request), "seller_id": seller_id})
    result = await market(request).coupons.create_seller_coupon(seller_id, coupon.model_dump())
    return from_result(result, status=201)

@routes.delete("/sellers/{id}/coupons/{coupon_id}")
async def deactivate_seller_coupon(request: web.Request):
    seller_id = request.match_info["id"]
    require_self_or_admin(request, seller_id)
    deactivated = await market(request).coupons.deactivate_seller_coupon(
        path_uuid(request, "coupon_id"), seller_id
    )
    if not deactivated:
        raise NotFoundError("Coupon not found")
    return ok()

# -- notifications --

@routes.get("/notifications")
async def unread_notifications(request: web.Request):
    user = current_user(request)
    notifications = await market(request).notifications.get_unread(
        user.user_id, is_admin=is_admin(request)
    )
    return ok({"notifications": notifications})
