# gamemarket/services/order_service.py
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence
from .base_service import BaseService
from .change_feed import ChangeFeed
from .coupon_service import allocate_discount
from .lifecycle import OrderEvent, gateway_event, transition_order
from ..exceptions import ConcurrentUpdateError, GatewayError, InvalidTransition, MarketplaceError, ValidationError
from ..models.order import CardData, CartLine, CustomerInfo, OrderStatus, PaymentMethod
from ..utils.formatters import to_money
from ..utils.messages import Messages
from ..utils.validators import ensure_checkout_input

# gateway outcomes at creation time that mean the charge did not go through
DECLINED_STATUSES = {"rejected", "cancelled"}

def describe_cart(lines: Sequence[CartLine]) -> str:
    if len(lines) == 1:
        return lines[0].name
    return f"{lines[0].name} + {len(lines) - 1} item(s)"

class OrderService(BaseService):
    """Checkout and order status lifecycle"""

    def __init__(self, db, gateway, coupon_service, balance_service, cart_service, notification_service):
        super().__init__(db)
        self.gateway = gateway
        self.coupon_service = coupon_service
        self.balance_service = balance_service
        self.cart_service = cart_service
        self.notification_service = notification_service

    async def create_order(self, lines: Sequence[CartLine], customer: Optional[CustomerInfo],
                           payment_method: PaymentMethod, coupon_code: Optional[str] = None,
                           card: Optional[CardData] = None) -> Dict[str, Any]:
        """Charge the cart and persist the order.

        Nothing is written unless the gateway accepts the charge; coupon
        usage is counted in the same transaction as the order insert.
        If the coupon runs out before the commit, the charge is voided.
        """
        if customer is None or not customer.user_id:
            return {"success": False, "error": "Sign in to checkout", "code": "unauthenticated"}

        if not lines:
            return ValidationError("Your cart is empty", code="empty_cart").to_result()

        try:
            ensure_checkout_input(payment_method, card)
        except ValidationError as e:
            return e.to_result()

        subtotal = to_money(sum(line.total_price for line in lines))
        applied = None
        if coupon_code:
            resolved = await self.coupon_service.resolve_coupon(coupon_code, lines)
            if not resolved["valid"]:
                return {"success": False, "error": resolved["error"], "code": resolved["code"]}
            applied = resolved["coupon"]

        discount = applied.discount_amount if applied else Decimal(0)
        amount = subtotal - discount
        nets = allocate_discount(lines, applied)

        order_id = uuid.uuid4()
        payment = await self.gateway.create_payment(
            str(order_id), describe_cart(lines), amount, customer, payment_method, card
        )
        if not payment["success"]:
            return GatewayError(payment["error"]).to_result()

        if payment["status"] in DECLINED_STATUSES:
            self.logger.info(f"Payment declined for {order_id}: {payment.get('status_detail')}")
            return {
                "success": False,
                "error": f"Payment declined: {payment.get('status_detail') or payment['status']}",
                "code": "payment_declined"
            }

        status = OrderStatus.APPROVED if payment["status"] == "approved" else OrderStatus.PENDING

        try:
            order = await self._persist_order(
                order_id, lines, nets, customer, payment_method, status, payment, applied, subtotal, amount
            )
        except ValidationError as e:
            # the coupon ran out between resolve and commit; the charge must not stand
            self.logger.warning(f"Order {order_id} not saved: {e.detail}; voiding payment {payment['payment_id']}")
            await self.gateway.cancel_payment(payment["payment_id"], approved=status == OrderStatus.APPROVED)
            return e.to_result()

        self.logger.info(f"Order {order_id} created as {status.value} ({payment_method.value}, {amount})")
        return {
            "success": True,
            "order_id": order_id,
            "status": status.value,
            "order": order
        }

    async def _persist_order(self, order_id, lines, nets, customer, payment_method, status, payment,
                             applied, subtotal, amount) -> Dict[str, Any]:
        first = lines[0]
        discount = applied.discount_amount if applied else Decimal(0)
        async with self.transaction() as conn:
            order = await conn.fetchrow("""
                INSERT INTO orders (
                    id, user_id, customer_email, customer_name,
                    product_id, product_name, product_price, transaction_amount,
                    payment_method, payment_status, coupon_code, discount_amount,
                    payment_id, pix_qr_code, pix_qr_code_base64, ticket_url,
                    seller_id, seller_name
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17, $18)
                RETURNING *
            """,
                order_id,
                customer.user_id,
                customer.email,
                customer.name,
                first.product_id,
                describe_cart(lines),
                subtotal,
                amount,
                payment_method.value,
                status.value,
                applied.code if applied else None,
                discount if applied else None,
                payment["payment_id"],
                payment.get("pix_qr_code") if payment_method == PaymentMethod.PIX else None,
                payment.get("pix_qr_code_base64") if payment_method == PaymentMethod.PIX else None,
                payment.get("ticket_url") if payment_method == PaymentMethod.TICKET else None,
                first.seller_id,
                first.seller_name
            )

            items = []
            for line, net in zip(lines, nets):
                await conn.execute("""
                    INSERT INTO order_items (
                        order_id, product_id, product_name, quantity,
                        price_per_unit, net_amount, seller_id
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                """, order_id, line.product_id, line.name, line.quantity,
                     line.price, net, line.seller_id)
                items.append({
                    "product_id": line.product_id,
                    "seller_id": line.seller_id,
                    "net_amount": net
                })

            await self._record_history(conn, order_id, None, status, "created")

            if applied:
                await self.coupon_service.record_usage(conn, applied, order_id, customer.user_id)

            if status == OrderStatus.APPROVED:
                await self._on_approved(conn, dict(order), items)

            await ChangeFeed.publish(conn, order_id, status.value)
            return dict(order)

    async def get_order(self, order_id) -> Optional[Dict[str, Any]]:
        async with self.db.pool.acquire() as conn:
            order = await conn.fetchrow("SELECT * FROM orders WHERE id = $1", order_id)
            return dict(order) if order else None

    async def get_order_items(self, order_id, conn=None) -> List[Dict[str, Any]]:
        async with self.transaction(conn) as conn:
            rows = await conn.fetch("""
                SELECT product_id, product_name, quantity, price_per_unit, net_amount, seller_id
                FROM order_items
                WHERE order_id = $1
                ORDER BY id
            """, order_id)
            return [dict(row) for row in rows]

    async def get_user_orders(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT *
                FROM orders
                WHERE user_id = $1
                ORDER BY created_at DESC
                LIMIT $2
            """, user_id, limit)
            return [dict(row) for row in rows]

    async def search_orders(self, status: Optional[OrderStatus] = None, seller_id: Optional[str] = None,
                            limit: int = 50) -> List[Dict[str, Any]]:
        """Back-office listing with optional filters"""
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT *
                FROM orders
                WHERE ($1::text IS NULL OR payment_status = $1)
                  AND ($2::text IS NULL OR seller_id = $2)
                ORDER BY created_at DESC
                LIMIT $3
            """, status.value if status else None, seller_id, limit)
            return [dict(row) for row in rows]

    async def _record_history(self, conn, order_id, from_status: Optional[OrderStatus],
                              to_status: OrderStatus, event: str):
        await conn.execute("""
            INSERT INTO order_status_history (order_id, from_status, to_status, event)
            VALUES ($1, $2, $3, $4)
        """, order_id, from_status.value if from_status else None, to_status.value, event)

    async def _on_approved(self, conn, order: Dict[str, Any], items: List[Dict[str, Any]]):
        await self.balance_service.credit_sale(conn, items, order['id'])
        await self.cart_service.remove_products(
            order['user_id'], [item['product_id'] for item in items], conn=conn
        )
        for seller_id in {item['seller_id'] for item in items if item.get('seller_id')}:
            await self.notification_service.notify(
                seller_id, "new_sale", "Nova venda",
                f"Pagamento aprovado para {order['product_name']}.", conn=conn
            )

    async def apply_event(self, conn, order: Dict[str, Any], event: OrderEvent) -> Dict[str, Any]:
        """Apply one lifecycle event inside the caller's transaction.

        The status write is a compare-and-set on the status read by the
        caller; side effects (balances, cart, notifications, change feed)
        share the same transaction.
        """
        current = OrderStatus(order['payment_status'])
        target = transition_order(current, event)

        updated = await conn.fetchrow("""
            UPDATE orders
            SET payment_status = $2,
                delivered_at = CASE WHEN $4 THEN COALESCE(delivered_at, NOW()) ELSE delivered_at END,
                updated_at = NOW()
            WHERE id = $1 AND payment_status = $3
            RETURNING *
        """, order['id'], target.value, current.value, target == OrderStatus.DELIVERED)

        if updated is None:
            raise ConcurrentUpdateError(f"Order {order['id']} changed while updating")
        updated = dict(updated)

        await self._record_history(conn, order['id'], current, target, event.value)

        if event in (OrderEvent.PAYMENT_APPROVED, OrderEvent.DELIVERED, OrderEvent.GATEWAY_REFUNDED):
            items = await self.get_order_items(order['id'], conn=conn)
            if event == OrderEvent.PAYMENT_APPROVED:
                await self._on_approved(conn, updated, items)
            elif event == OrderEvent.DELIVERED:
                await self.balance_service.release_sale(conn, items, order['id'])
            else:
                # chargeback or refund issued directly at the gateway
                await self.balance_service.debit_refund(
                    conn, items, order['id'], None, delivered=order.get('delivered_at') is not None
                )

        title, message = Messages.order_status_notification(updated, target)
        await self.notification_service.notify(updated['user_id'], "order_status", title, message, conn=conn)
        await ChangeFeed.publish(conn, order['id'], target.value, current.value)

        self.logger.info(f"Order {order['id']}: {current.value} -> {target.value} ({event.value})")
        return updated

    async def apply_gateway_status(self, payment_id: str, gateway_status: str) -> Dict[str, Any]:
        """Apply a status observed at the gateway; repeats are no-ops"""
        try:
            event = gateway_event(gateway_status)
        except InvalidTransition as e:
            self.logger.warning(f"Payment {payment_id}: {e.detail}")
            return e.to_result()

        try:
            async with self.transaction() as conn:
                order = await conn.fetchrow("""
                    SELECT * FROM orders WHERE payment_id = $1 FOR UPDATE
                """, payment_id)
                if not order:
                    return {"success": False, "error": "Order not found", "code": "not_found"}
                order = dict(order)

                if event is None:
                    return {"success": True, "status": order['payment_status'], "changed": False}

                try:
                    transition_order(order['payment_status'], event)
                except InvalidTransition:
                    self.logger.info(
                        f"Order {order['id']} already {order['payment_status']}; ignoring gateway '{gateway_status}'"
                    )
                    return {"success": True, "status": order['payment_status'], "changed": False}

                updated = await self.apply_event(conn, order, event)
        except MarketplaceError as e:
            self.logger.error(f"Could not apply gateway status for payment {payment_id}: {e.detail}")
            return e.to_result()

        return {"success": True, "status": updated['payment_status'], "changed": True}

    async def mark_delivered(self, order_id, actor_id: str, is_admin: bool = False) -> Dict[str, Any]:
        """Seller or admin confirms fulfillment; starts the refund window"""
        try:
            async with self.transaction() as conn:
                order = await conn.fetchrow("SELECT * FROM orders WHERE id = $1 FOR UPDATE", order_id)
                if not order:
                    return {"success": False, "error": "Order not found", "code": "not_found"}
                order = dict(order)

                if not is_admin and (order['seller_id'] is None or order['seller_id'] != actor_id):
                    return {
                        "success": False,
                        "error": "Only the seller or an admin can mark this order delivered",
                        "code": "forbidden"
                    }

                updated = await self.apply_event(conn, order, OrderEvent.DELIVERED)
        except MarketplaceError as e:
            return e.to_result()

        return {"success": True, "order": updated}
