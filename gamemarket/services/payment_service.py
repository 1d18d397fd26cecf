# gamemarket/services/payment_service.py
import asyncio
import logging
import uuid
import aiohttp
from decimal import Decimal
from typing import Any, Dict, Optional
from ..config import Config
from ..models.order import CardData, CustomerInfo, OrderStatus, PaymentMethod
from ..utils.security import verify_webhook_signature
from ..utils.validators import detect_card_brand, only_digits, validate_card_data

GATEWAY_METHOD_IDS = {
    PaymentMethod.PIX: "pix",
    PaymentMethod.TICKET: "bolbradesco",
}

def parse_payment(data: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a Mercado Pago payment body into the fields orders store"""
    transaction_data = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
    details = data.get("transaction_details") or {}
    return {
        "success": True,
        "payment_id": str(data["id"]),
        "status": data.get("status"),
        "status_detail": data.get("status_detail"),
        "pix_qr_code": transaction_data.get("qr_code"),
        "pix_qr_code_base64": transaction_data.get("qr_code_base64"),
        "ticket_url": details.get("external_resource_url"),
    }

def split_name(full_name: str) -> Dict[str, str]:
    parts = (full_name or "").split()
    if not parts:
        return {}
    return {
        "first_name": parts[0],
        "last_name": " ".join(parts[1:]) or parts[0]
    }

class MercadoPagoGateway:
    """Mercado Pago payments API client"""

    def __init__(self, access_token: Optional[str] = None, api_url: Optional[str] = None,
                 timeout: Optional[float] = None):
        self.access_token = access_token if access_token is not None else Config.MERCADOPAGO_ACCESS_TOKEN
        self.api_url = (api_url or Config.MERCADOPAGO_API_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout or Config.GATEWAY_TIMEOUT)
        self.logger = logging.getLogger(__name__)

    @property
    def notification_url(self) -> str:
        return f"{Config.PUBLIC_BASE_URL.rstrip('/')}/webhooks/mercadopago"

    def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    async def _request(self, method: str, path: str, payload: Optional[dict] = None,
                       idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(
                    method,
                    f"{self.api_url}{path}",
                    json=payload,
                    headers=self._headers(idempotency_key)
                ) as response:
                    try:
                        data = await response.json(content_type=None)
                    except ValueError:
                        # proxies answer with HTML error pages
                        data = None
                    if not isinstance(data, dict):
                        data = None
                    if response.status >= 400:
                        message = (data or {}).get("message") or f"HTTP {response.status}"
                        return {
                            "success": False,
                            "error": f"Payment gateway error: {message}"
                        }
                    if data is None:
                        return {
                            "success": False,
                            "error": "Payment gateway error: unreadable response"
                        }
                    return {"success": True, "data": data}
        except asyncio.TimeoutError:
            return {
                "success": False,
                "error": "Payment gateway timed out"
            }
        except aiohttp.ClientError as e:
            return {
                "success": False,
                "error": f"Payment gateway unreachable: {e}"
            }

    async def _create_card_token(self, card: CardData) -> Dict[str, Any]:
        result = await self._request("POST", "/v1/card_tokens", {
            "card_number": only_digits(card.card_number),
            "expiration_month": int(card.expiration_month or 0),
            "expiration_year": int(card.expiration_year or 0),
            "security_code": card.security_code,
            "cardholder": {
                "name": card.cardholder_name,
                "identification": {"type": "CPF", "number": only_digits(card.cpf)}
            }
        })
        if not result["success"]:
            return result
        return {"success": True, "token": result["data"]["id"]}

    async def create_payment(self, reference: str, description: str, amount: Decimal,
                             customer: CustomerInfo, payment_method: PaymentMethod,
                             card: Optional[CardData] = None) -> Dict[str, Any]:
        """Create a charge; returns artifacts for pix/ticket"""
        body: Dict[str, Any] = {
            "transaction_amount": float(amount),
            "description": description,
            "external_reference": reference,
            "notification_url": self.notification_url,
            "payer": {
                "email": customer.email,
                **split_name(customer.name)
            }
        }

        if payment_method == PaymentMethod.CREDIT_CARD:
            problems = validate_card_data(card)
            if problems:
                return {
                    "success": False,
                    "error": "Invalid card data: " + ", ".join(sorted(set(problems))),
                    "code": "invalid_card_data"
                }
            token = await self._create_card_token(card)
            if not token["success"]:
                return token
            body["token"] = token["token"]
            body["installments"] = card.installments
            body["payment_method_id"] = detect_card_brand(card.card_number)
            body["payer"]["identification"] = {"type": "CPF", "number": only_digits(card.cpf)}
        else:
            body["payment_method_id"] = GATEWAY_METHOD_IDS[payment_method]

        self.logger.info(f"Creating {payment_method.value} payment of {amount} for {reference}")
        result = await self._request("POST", "/v1/payments", body, idempotency_key=str(uuid.uuid4()))
        if not result["success"]:
            self.logger.error(f"Payment creation failed for {reference}: {result['error']}")
            return result

        return parse_payment(result["data"])

    async def cancel_payment(self, payment_id: str, approved: bool = False) -> Dict[str, Any]:
        """Void a charge: refund it when already approved, cancel it otherwise"""
        if approved:
            result = await self._request("POST", f"/v1/payments/{payment_id}/refunds", {},
                                         idempotency_key=str(uuid.uuid4()))
        else:
            result = await self._request("PUT", f"/v1/payments/{payment_id}", {"status": "cancelled"})
        if not result["success"]:
            self.logger.error(f"Could not void payment {payment_id}: {result['error']}")
        return result

    async def get_payment_status(self, payment_id: str) -> Dict[str, Any]:
        result = await self._request("GET", f"/v1/payments/{payment_id}")
        if not result["success"]:
            return result
        return parse_payment(result["data"])

class PaymentService:
    """Payment status checks, driven by polling or gateway webhooks"""

    def __init__(self, order_service, gateway: MercadoPagoGateway):
        self.order_service = order_service
        self.gateway = gateway
        self.logger = logging.getLogger(__name__)

    async def check_payment_status(self, order_id) -> Dict[str, Any]:
        """One status check; re-observing pending is a no-op"""
        order = await self.order_service.get_order(order_id)
        if not order:
            return {"success": False, "error": "Order not found", "code": "not_found"}

        if order['payment_status'] != OrderStatus.PENDING.value or not order.get('payment_id'):
            return {
                "success": True,
                "status": order['payment_status'],
                "approved": order['payment_status'] == OrderStatus.APPROVED.value
            }

        payment = await self.gateway.get_payment_status(order['payment_id'])
        if not payment["success"]:
            return payment

        result = await self.order_service.apply_gateway_status(order['payment_id'], payment["status"])
        if not result["success"]:
            return result

        status = result["status"]
        return {
            "success": True,
            "status": status,
            "status_detail": payment.get("status_detail"),
            "approved": status == OrderStatus.APPROVED.value
        }

    async def handle_webhook(self, payload: Dict[str, Any], signature: str = "",
                             request_id: Optional[str] = None) -> Dict[str, Any]:
        """Process a gateway notification.

        Only ``payment`` notifications are acted on; the payment is re-read
        from the gateway rather than trusting the notification body.
        """
        if payload.get("type") != "payment":
            self.logger.info(f"Ignored webhook type: {payload.get('type')}")
            return {"success": True, "ignored": True}

        payment_id = (payload.get("data") or {}).get("id")
        if not payment_id:
            return {"success": False, "error": "No payment id in notification", "code": "validation_error"}
        payment_id = str(payment_id)

        if not verify_webhook_signature(signature, request_id, payment_id):
            self.logger.warning(f"Rejected webhook with bad signature for payment {payment_id}")
            return {"success": False, "error": "Invalid signature", "code": "invalid_signature"}

        payment = await self.gateway.get_payment_status(payment_id)
        if not payment["success"]:
            return payment

        result = await self.order_service.apply_gateway_status(payment_id, payment["status"])
        if not result["success"] and result.get("code") == "not_found":
            # acknowledge so the gateway stops retrying
            self.logger.warning(f"Webhook for unknown payment {payment_id}")
            return {"success": True, "ignored": True}
        return result
