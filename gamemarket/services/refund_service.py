# gamemarket/services/refund_service.py
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence
from .balance_service import seller_shares
from .base_service import BaseService
from .lifecycle import (
    ADMIN_DECISIONS, OrderEvent, RefundEvent, can_request_refund,
    refund_rejection_event, seller_response_deadline, transition_refund
)
from ..exceptions import (
    ConcurrentUpdateError, InvalidTransition, MarketplaceError, NotFoundError, ValidationError
)
from ..models.order import OrderStatus
from ..models.refund import OPEN_REFUND_STATUSES, RefundStatus, RefundSubmission, SenderType
from ..utils.messages import Messages

# requests that stop the customer from opening another one
BLOCKING_STATUSES = [status.value for status in OPEN_REFUND_STATUSES] + [RefundStatus.APPROVED.value]

class RefundService(BaseService):
    """Refund requests: submission, seller response, admin decision"""

    def __init__(self, db, order_service, balance_service, storage, notification_service):
        super().__init__(db)
        self.order_service = order_service
        self.balance_service = balance_service
        self.storage = storage
        self.notification_service = notification_service

    async def _check_eligibility(self, conn, order: Optional[Dict[str, Any]], customer_id: str, now: datetime):
        if not order or order['user_id'] != customer_id:
            raise NotFoundError("Order not found")

        if not can_request_refund(order['payment_status'], order['delivered_at'], now):
            raise InvalidTransition(
                "This order is not eligible for a refund",
                code="refund_not_eligible"
            )

        existing = await conn.fetchval("""
            SELECT status
            FROM refund_requests
            WHERE order_id = $1 AND status = ANY($2::text[])
            LIMIT 1
        """, order['id'], BLOCKING_STATUSES)
        if existing:
            raise InvalidTransition(
                "A refund request for this order already exists",
                code="refund_exists"
            )

    async def _log(self, conn, refund_id, user_id: Optional[str], user_type: SenderType,
                   action: str, details: Optional[Dict[str, Any]] = None):
        await conn.execute("""
            INSERT INTO refund_logs (refund_id, user_id, user_type, action, details)
            VALUES ($1, $2, $3, $4, $5)
        """, refund_id, user_id, user_type.value, action, details or {})

    async def _load(self, conn, refund_id) -> Dict[str, Any]:
        refund = await conn.fetchrow("SELECT * FROM refund_requests WHERE id = $1", refund_id)
        if not refund:
            raise NotFoundError("Refund request not found")
        return dict(refund)

    async def _write(self, conn, refund: Dict[str, Any], status: RefundStatus, **fields) -> Dict[str, Any]:
        """Compare-and-set on version; a stale version raises ConcurrentUpdateError"""
        columns = {"status": status.value, **fields}
        assignments = ", ".join(f"{name} = ${i}" for i, name in enumerate(columns, start=3))
        updated = await conn.fetchrow(f"""
            UPDATE refund_requests
            SET {assignments}, version = version + 1, updated_at = NOW()
            WHERE id = $1 AND version = $2
            RETURNING *
        """, refund['id'], refund['version'], *columns.values())

        if updated is None:
            raise ConcurrentUpdateError(
                "Refund request was changed by someone else; reload and try again"
            )
        if refund['status'] != status.value:
            self.logger.info(f"Refund {refund['id']}: {refund['status']} -> {status.value}")
        return dict(updated)

    async def submit_refund(self, order_id, customer_id: str, submission: RefundSubmission,
                            now: Optional[datetime] = None) -> Dict[str, Any]:
        """Open a refund request for an order.

        Proofs are checked before any I/O, uploaded under a per-request
        prefix, and removed again if the database write fails.
        """
        now = now or datetime.now(timezone.utc)

        try:
            self.storage.validate_proofs(submission.proofs)
            async with self.db.pool.acquire() as conn:
                order = await conn.fetchrow("SELECT * FROM orders WHERE id = $1", order_id)
                await self._check_eligibility(conn, dict(order) if order else None, customer_id, now)
            urls = await self.storage.upload_proofs(
                f"{order_id}/{uuid.uuid4().hex}", submission.proofs
            )
        except MarketplaceError as e:
            return e.to_result()

        try:
            async with self.transaction() as conn:
                order = dict(await conn.fetchrow("SELECT * FROM orders WHERE id = $1 FOR UPDATE", order_id))
                await self._check_eligibility(conn, order, customer_id, now)

                refund = dict(await conn.fetchrow("""
                    INSERT INTO refund_requests (
                        order_id, customer_id, seller_id, reason, description, proofs,
                        customer_pix_key, pix_key_type, order_amount, status, previous_order_status
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                    RETURNING *
                """,
                    order['id'],
                    customer_id,
                    order['seller_id'],
                    submission.reason.value,
                    submission.description,
                    urls,
                    submission.pix_key.strip(),
                    submission.pix_key_type.value,
                    order['transaction_amount'],
                    RefundStatus.PENDING.value,
                    order['payment_status']
                ))

                await self.order_service.apply_event(conn, order, OrderEvent.REFUND_REQUESTED)
                await self._log(conn, refund['id'], customer_id, SenderType.CUSTOMER, "created", {
                    "reason": submission.reason.value,
                    "proofs": len(urls)
                })

                title, message = Messages.refund_opened_for_seller(
                    refund, seller_response_deadline(refund['created_at'])
                )
                await self.notification_service.notify(
                    refund['seller_id'], "refund_opened", title, message, conn=conn
                )
                if refund['seller_id'] is None:
                    await self.notification_service.notify_admins("refund_opened", title, message, conn=conn)
        except MarketplaceError as e:
            await self.storage.discard_urls(urls)
            return e.to_result()
        except Exception:
            self.logger.error(f"Refund submission failed for order {order_id}", exc_info=True)
            await self.storage.discard_urls(urls)
            raise

        self.logger.info(f"Refund {refund['id']} opened for order {order_id}")
        return {"success": True, "refund": refund}

    async def seller_respond(self, refund_id, seller_id: str, response: str,
                             now: Optional[datetime] = None) -> Dict[str, Any]:
        """Record the seller's side; status stays pending"""
        now = now or datetime.now(timezone.utc)
        response = (response or "").strip()
        if not response:
            return ValidationError("Write a response", code="response_required").to_result()

        try:
            async with self.transaction() as conn:
                refund = await self._load(conn, refund_id)
                if refund['seller_id'] is None or refund['seller_id'] != seller_id:
                    return {"success": False, "error": "Not your refund request", "code": "forbidden"}
                if refund['seller_responded_at'] is not None:
                    raise InvalidTransition("Response already sent", code="already_responded")

                target = transition_refund(refund['status'], RefundEvent.SELLER_RESPONDED)
                updated = await self._write(
                    conn, refund, target, seller_response=response, seller_responded_at=now
                )
                await self._log(conn, refund['id'], seller_id, SenderType.SELLER, "seller_responded")
                await self.notification_service.notify(
                    refund['customer_id'], "refund_update", "Resposta do vendedor",
                    f"O vendedor respondeu sua solicitação de reembolso: {response}", conn=conn
                )
        except MarketplaceError as e:
            return e.to_result()

        return {"success": True, "refund": updated}

    async def decide(self, refund_id, admin_id: str, decision: RefundStatus,
                     admin_notes: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Admin moves a request to review, asks for info, approves or rejects.

        Approval refunds the order and takes each seller's share back from
        their balance; rejection returns the order to its prior status.
        """
        now = now or datetime.now(timezone.utc)
        try:
            decision = RefundStatus(decision)
        except ValueError:
            return ValidationError(f"Unknown decision: {decision}").to_result()

        event = ADMIN_DECISIONS.get(decision)
        if event is None:
            return ValidationError(f"Cannot set status {decision.value}").to_result()
        if decision == RefundStatus.MORE_INFO_REQUESTED and not (admin_notes or "").strip():
            return ValidationError("Describe what information is needed", code="notes_required").to_result()

        try:
            async with self.transaction() as conn:
                refund = await self._load(conn, refund_id)
                target = transition_refund(refund['status'], event)

                fields: Dict[str, Any] = {}
                if admin_notes:
                    fields["admin_notes"] = admin_notes.strip()
                if target.is_terminal:
                    fields["resolved_at"] = now
                    fields["resolved_by"] = admin_id

                items: List[Dict[str, Any]] = []
                if target == RefundStatus.APPROVED:
                    items = await self.order_service.get_order_items(refund['order_id'], conn=conn)
                    shares = seller_shares(items)
                    if shares:
                        fields["seller_deducted_amount"] = sum(shares.values(), Decimal(0))

                updated = await self._write(conn, refund, target, **fields)

                if target.is_terminal:
                    order = await conn.fetchrow(
                        "SELECT * FROM orders WHERE id = $1 FOR UPDATE", refund['order_id']
                    )
                    order = dict(order)
                    if order['payment_status'] == OrderStatus.REFUNDED.value:
                        # the gateway already returned the money and debited the sellers
                        self.logger.info(
                            f"Order {order['id']} refunded at the gateway; closing refund {refund['id']} only"
                        )
                    elif target == RefundStatus.APPROVED:
                        await self.order_service.apply_event(conn, order, OrderEvent.REFUND_APPROVED)
                        await self.balance_service.debit_refund(
                            conn, items, refund['order_id'], refund['id'],
                            delivered=refund['previous_order_status'] == OrderStatus.DELIVERED.value
                        )
                    else:
                        await self.order_service.apply_event(
                            conn, order, refund_rejection_event(refund['previous_order_status'])
                        )

                await self._log(conn, refund['id'], admin_id, SenderType.ADMIN, f"status_{target.value}", {
                    "from": refund['status'],
                    "notes": admin_notes
                })

                title, message = Messages.refund_status_notification(updated, target)
                await self.notification_service.notify(
                    refund['customer_id'], "refund_update", title, message, conn=conn
                )
                await self.notification_service.notify(
                    refund['seller_id'], "refund_update", title, message, conn=conn
                )
        except MarketplaceError as e:
            self.logger.warning(f"Decision {decision.value} on refund {refund_id} refused: {e.detail}")
            return e.to_result()

        return {"success": True, "refund": updated}

    async def escalate_overdue(self, refund: Dict[str, Any]) -> bool:
        """Send a request whose seller missed the deadline to admin review"""
        try:
            async with self.transaction() as conn:
                target = transition_refund(refund['status'], RefundEvent.SELLER_DEADLINE_MISSED)
                await self._write(conn, refund, target)
                await self._log(conn, refund['id'], None, SenderType.SYSTEM, "seller_deadline_missed")
                title, message = Messages.seller_deadline_missed(refund)
                await self.notification_service.notify_admins("refund_escalated", title, message, conn=conn)
        except (InvalidTransition, ConcurrentUpdateError) as e:
            # someone acted on it since the sweep read it
            self.logger.info(f"Skipped escalation of refund {refund['id']}: {e.detail}")
            return False
        return True

    async def add_message(self, refund_id, sender_id: str, sender_type: SenderType,
                          message: str) -> Dict[str, Any]:
        """Post on a refund thread; a customer reply resumes a paused review"""
        message = (message or "").strip()
        if not message:
            return ValidationError("Message is empty", code="message_required").to_result()
        sender_type = SenderType(sender_type)

        try:
            async with self.transaction() as conn:
                refund = await self._load(conn, refund_id)
                allowed = {
                    SenderType.CUSTOMER: refund['customer_id'] == sender_id,
                    SenderType.SELLER: refund['seller_id'] is not None and refund['seller_id'] == sender_id,
                    SenderType.ADMIN: True,
                }.get(sender_type, False)
                if not allowed:
                    return {"success": False, "error": "Not your refund request", "code": "forbidden"}

                if RefundStatus(refund['status']).is_terminal:
                    raise InvalidTransition(
                        f"Refund request is already {refund['status']}",
                        code="refund_resolved"
                    )

                row = dict(await conn.fetchrow("""
                    INSERT INTO refund_messages (refund_id, sender_id, sender_type, message)
                    VALUES ($1, $2, $3, $4)
                    RETURNING *
                """, refund['id'], sender_id, sender_type.value, message))

                status = refund['status']
                if sender_type == SenderType.CUSTOMER and status == RefundStatus.MORE_INFO_REQUESTED.value:
                    target = transition_refund(status, RefundEvent.CUSTOMER_REPLIED)
                    status = (await self._write(conn, refund, target))['status']
                    await self.notification_service.notify_admins(
                        "refund_update", "Cliente respondeu",
                        f"O cliente enviou informações no reembolso {refund['id']}.", conn=conn
                    )

                await self._log(conn, refund['id'], sender_id, sender_type, "message")
        except MarketplaceError as e:
            return e.to_result()

        return {"success": True, "message": row, "status": status}

    async def get_refund(self, refund_id) -> Optional[Dict[str, Any]]:
        async with self.db.pool.acquire() as conn:
            refund = await conn.fetchrow("SELECT * FROM refund_requests WHERE id = $1", refund_id)
            return dict(refund) if refund else None

    async def get_order_refunds(self, order_id) -> List[Dict[str, Any]]:
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM refund_requests WHERE order_id = $1 ORDER BY created_at DESC
            """, order_id)
            return [dict(row) for row in rows]

    async def list_refunds(self, statuses: Optional[Sequence[RefundStatus]] = None,
                           limit: int = 50) -> List[Dict[str, Any]]:
        """Oldest first, so the most urgent requests come on top"""
        statuses = statuses or OPEN_REFUND_STATUSES
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT *
                FROM refund_requests
                WHERE status = ANY($1::text[])
                ORDER BY created_at
                LIMIT $2
            """, [RefundStatus(s).value for s in statuses], limit)
            return [dict(row) for row in rows]

    async def get_messages(self, refund_id) -> List[Dict[str, Any]]:
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM refund_messages WHERE refund_id = $1 ORDER BY created_at
            """, refund_id)
            return [dict(row) for row in rows]
