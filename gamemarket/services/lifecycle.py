# gamemarket/services/lifecycle.py
"""Order and refund state machines.

Every status write in the service layer goes through ``transition_order`` or
``transition_refund``; a pair missing from the tables below raises
``InvalidTransition`` and nothing is written.
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional, Tuple
from ..config import Config
from ..exceptions import InvalidTransition
from ..models.order import OrderStatus
from ..models.refund import RefundStatus

class OrderEvent(str, Enum):
    PAYMENT_APPROVED = "payment_approved"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_CANCELLED = "payment_cancelled"
    DELIVERED = "delivered"
    REFUND_REQUESTED = "refund_requested"
    REFUND_APPROVED = "refund_approved"
    REFUND_REJECTED_TO_APPROVED = "refund_rejected_to_approved"
    REFUND_REJECTED_TO_DELIVERED = "refund_rejected_to_delivered"
    GATEWAY_REFUNDED = "gateway_refunded"

class RefundEvent(str, Enum):
    SELLER_RESPONDED = "seller_responded"
    START_REVIEW = "start_review"
    SELLER_DEADLINE_MISSED = "seller_deadline_missed"
    REQUEST_INFO = "request_info"
    CUSTOMER_REPLIED = "customer_replied"
    APPROVE = "approve"
    REJECT = "reject"

ORDER_TRANSITIONS: Dict[Tuple[OrderStatus, OrderEvent], OrderStatus] = {
    (OrderStatus.PENDING, OrderEvent.PAYMENT_APPROVED): OrderStatus.APPROVED,
    (OrderStatus.PENDING, OrderEvent.PAYMENT_REJECTED): OrderStatus.REJECTED,
    (OrderStatus.PENDING, OrderEvent.PAYMENT_CANCELLED): OrderStatus.CANCELLED,
    (OrderStatus.APPROVED, OrderEvent.DELIVERED): OrderStatus.DELIVERED,
    (OrderStatus.APPROVED, OrderEvent.REFUND_REQUESTED): OrderStatus.REFUND_REQUESTED,
    (OrderStatus.DELIVERED, OrderEvent.REFUND_REQUESTED): OrderStatus.REFUND_REQUESTED,
    (OrderStatus.REFUND_REQUESTED, OrderEvent.REFUND_APPROVED): OrderStatus.REFUNDED,
    (OrderStatus.REFUND_REQUESTED, OrderEvent.REFUND_REJECTED_TO_APPROVED): OrderStatus.APPROVED,
    (OrderStatus.REFUND_REQUESTED, OrderEvent.REFUND_REJECTED_TO_DELIVERED): OrderStatus.DELIVERED,
    (OrderStatus.APPROVED, OrderEvent.GATEWAY_REFUNDED): OrderStatus.REFUNDED,
    (OrderStatus.DELIVERED, OrderEvent.GATEWAY_REFUNDED): OrderStatus.REFUNDED,
    (OrderStatus.REFUND_REQUESTED, OrderEvent.GATEWAY_REFUNDED): OrderStatus.REFUNDED,
}

REFUND_TRANSITIONS: Dict[Tuple[RefundStatus, RefundEvent], RefundStatus] = {
    (RefundStatus.PENDING, RefundEvent.SELLER_RESPONDED): RefundStatus.PENDING,
    (RefundStatus.PENDING, RefundEvent.START_REVIEW): RefundStatus.IN_REVIEW,
    (RefundStatus.PENDING, RefundEvent.SELLER_DEADLINE_MISSED): RefundStatus.IN_REVIEW,
    (RefundStatus.PENDING, RefundEvent.REQUEST_INFO): RefundStatus.MORE_INFO_REQUESTED,
    (RefundStatus.IN_REVIEW, RefundEvent.REQUEST_INFO): RefundStatus.MORE_INFO_REQUESTED,
    (RefundStatus.MORE_INFO_REQUESTED, RefundEvent.CUSTOMER_REPLIED): RefundStatus.IN_REVIEW,
    (RefundStatus.PENDING, RefundEvent.APPROVE): RefundStatus.APPROVED,
    (RefundStatus.IN_REVIEW, RefundEvent.APPROVE): RefundStatus.APPROVED,
    (RefundStatus.MORE_INFO_REQUESTED, RefundEvent.APPROVE): RefundStatus.APPROVED,
    (RefundStatus.PENDING, RefundEvent.REJECT): RefundStatus.REJECTED,
    (RefundStatus.IN_REVIEW, RefundEvent.REJECT): RefundStatus.REJECTED,
    (RefundStatus.MORE_INFO_REQUESTED, RefundEvent.REJECT): RefundStatus.REJECTED,
}

# Admin decision endpoints speak in target statuses
ADMIN_DECISIONS: Dict[RefundStatus, RefundEvent] = {
    RefundStatus.IN_REVIEW: RefundEvent.START_REVIEW,
    RefundStatus.MORE_INFO_REQUESTED: RefundEvent.REQUEST_INFO,
    RefundStatus.APPROVED: RefundEvent.APPROVE,
    RefundStatus.REJECTED: RefundEvent.REJECT,
}

# Mercado Pago payment status -> order event
GATEWAY_STATUS_EVENTS: Dict[str, Optional[OrderEvent]] = {
    "pending": None,
    "in_process": None,
    "authorized": None,
    "in_mediation": None,
    "approved": OrderEvent.PAYMENT_APPROVED,
    "rejected": OrderEvent.PAYMENT_REJECTED,
    "cancelled": OrderEvent.PAYMENT_CANCELLED,
    "refunded": OrderEvent.GATEWAY_REFUNDED,
    "charged_back": OrderEvent.GATEWAY_REFUNDED,
}

def transition_order(current: OrderStatus, event: OrderEvent) -> OrderStatus:
    current = OrderStatus(current)
    try:
        return ORDER_TRANSITIONS[(current, OrderEvent(event))]
    except KeyError:
        raise InvalidTransition(
            f"Order in status '{current.value}' cannot accept '{OrderEvent(event).value}'"
        ) from None

def transition_refund(current: RefundStatus, event: RefundEvent) -> RefundStatus:
    current = RefundStatus(current)
    if current.is_terminal:
        raise InvalidTransition(
            f"Refund request is already {current.value}",
            code="refund_resolved"
        )
    try:
        return REFUND_TRANSITIONS[(current, RefundEvent(event))]
    except KeyError:
        raise InvalidTransition(
            f"Refund in status '{current.value}' cannot accept '{RefundEvent(event).value}'"
        ) from None

def gateway_event(gateway_status: str) -> Optional[OrderEvent]:
    """Map a gateway payment status to an order event; None means still pending"""
    if gateway_status not in GATEWAY_STATUS_EVENTS:
        raise InvalidTransition(f"Unknown gateway status '{gateway_status}'", code="unknown_gateway_status")
    return GATEWAY_STATUS_EVENTS[gateway_status]

def refund_rejection_event(previous_order_status: Optional[str]) -> OrderEvent:
    """Where an order returns to when its refund is rejected"""
    if previous_order_status == OrderStatus.DELIVERED.value:
        return OrderEvent.REFUND_REJECTED_TO_DELIVERED
    return OrderEvent.REFUND_REJECTED_TO_APPROVED

def can_request_refund(payment_status: str, delivered_at: Optional[datetime],
                       now: datetime, window_hours: Optional[int] = None) -> bool:
    """Refund eligibility: approved, or delivered no longer than the window ago"""
    window = timedelta(hours=window_hours if window_hours is not None else Config.REFUND_WINDOW_HOURS)
    if payment_status == OrderStatus.APPROVED.value:
        return True
    if payment_status == OrderStatus.DELIVERED.value:
        if delivered_at is None:
            return False
        return now - delivered_at <= window
    return False

def seller_response_deadline(created_at: datetime, response_hours: Optional[int] = None) -> datetime:
    hours = response_hours if response_hours is not None else Config.SELLER_RESPONSE_HOURS
    return created_at + timedelta(hours=hours)

def seller_deadline_expired(created_at: datetime, seller_responded_at: Optional[datetime],
                            now: datetime, response_hours: Optional[int] = None) -> bool:
    if seller_responded_at is not None:
        return False
    return now > seller_response_deadline(created_at, response_hours)
