# gamemarket/utils/messages.py
from datetime import datetime
from typing import Any, Dict, Tuple
from ..models.order import OrderStatus
from ..models.refund import RefundStatus
from ..utils.formatters import format_price, format_datetime, format_remaining

ORDER_STATUS_LABELS = {
    OrderStatus.PENDING: "⏳ Aguardando pagamento",
    OrderStatus.APPROVED: "✅ Pagamento aprovado",
    OrderStatus.DELIVERED: "📦 Entregue",
    OrderStatus.CANCELLED: "❌ Cancelado",
    OrderStatus.REJECTED: "🚫 Pagamento recusado",
    OrderStatus.REFUNDED: "↩️ Reembolsado",
    OrderStatus.REFUND_REQUESTED: "🔁 Reembolso solicitado",
}

REFUND_STATUS_LABELS = {
    RefundStatus.PENDING: "Pendente",
    RefundStatus.IN_REVIEW: "Em análise",
    RefundStatus.APPROVED: "Aprovado",
    RefundStatus.REJECTED: "Rejeitado",
    RefundStatus.MORE_INFO_REQUESTED: "Aguardando info",
}

class Messages:
    @staticmethod
    def format_order(order: Dict[str, Any]) -> str:
        """Order summary for the back office"""
        status = OrderStatus(order['payment_status'])
        lines = [
            f"🛍 Pedido {order['id']}",
            "------------------",
            f"📦 {order['product_name']}",
            f"💰 Total: {format_price(order['transaction_amount'])}",
        ]
        if order.get('coupon_code'):
            lines.append(f"🎫 Cupom {order['coupon_code']}: -{format_price(order['discount_amount'] or 0)}")
        lines += [
            f"💳 Método: {order['payment_method']}",
            f"📊 Status: {ORDER_STATUS_LABELS[status]}",
            f"🕒 Data: {format_datetime(order['created_at'])}",
        ]
        return "\n".join(lines)

    @staticmethod
    def format_refund(refund: Dict[str, Any], now: datetime, deadline: datetime) -> str:
        """Refund card for admin review"""
        status = RefundStatus(refund['status'])
        if refund.get('seller_responded_at'):
            seller_line = f"💬 Vendedor: {refund['seller_response']}"
        else:
            seller_line = f"⏱ Prazo do vendedor: {format_remaining(deadline, now)}"

        return (
            f"🔁 Reembolso {refund['id']}\n"
            f"Pedido: {refund['order_id']}\n"
            f"Motivo: {refund['reason']}\n"
            f"Valor: {format_price(refund['order_amount'])}\n"
            f"Status: {REFUND_STATUS_LABELS[status]}\n"
            f"Provas: {len(refund['proofs'])}\n"
            f"{seller_line}\n"
            f"Criado em: {format_datetime(refund['created_at'])}"
        )

    @staticmethod
    def order_status_notification(order: Dict[str, Any], status: OrderStatus) -> Tuple[str, str]:
        title = ORDER_STATUS_LABELS[status]
        return title, f"Pedido {order['product_name']} ({format_price(order['transaction_amount'])}): {title}"

    @staticmethod
    def refund_status_notification(refund: Dict[str, Any], status: RefundStatus) -> Tuple[str, str]:
        title = f"Reembolso: {REFUND_STATUS_LABELS[status]}"
        message = f"Sua solicitação de reembolso de {format_price(refund['order_amount'])} está: {REFUND_STATUS_LABELS[status]}."
        if status == RefundStatus.MORE_INFO_REQUESTED and refund.get('admin_notes'):
            message += f"\nObservação: {refund['admin_notes']}"
        return title, message

    @staticmethod
    def refund_opened_for_seller(refund: Dict[str, Any], deadline: datetime) -> Tuple[str, str]:
        return (
            "Nova solicitação de reembolso",
            f"Um cliente pediu reembolso de {format_price(refund['order_amount'])} "
            f"({refund['reason']}). Responda até {format_datetime(deadline)}."
        )

    @staticmethod
    def seller_deadline_missed(refund: Dict[str, Any]) -> Tuple[str, str]:
        return (
            "Prazo do vendedor expirado",
            f"Reembolso {refund['id']} ({format_price(refund['order_amount'])}) sem resposta do vendedor; enviado para análise."
        )
