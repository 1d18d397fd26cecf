# gamemarket/models/order.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel, Field, model_validator
from .base import RecordModel, TimeStampedModel

class OrderStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    REFUNDED = "refunded"
    REFUND_REQUESTED = "refund_requested"

class PaymentMethod(str, Enum):
    PIX = "pix"
    CREDIT_CARD = "credit_card"
    TICKET = "ticket"

class CartLine(BaseModel):
    """A single line of the customer's cart at checkout time"""
    product_id: str
    name: str
    price: Decimal = Field(ge=0)
    quantity: int = Field(default=1, ge=1)
    seller_id: Optional[str] = None
    seller_name: Optional[str] = None

    @property
    def total_price(self) -> Decimal:
        return self.price * self.quantity

class CustomerInfo(BaseModel):
    """Authenticated customer identity"""
    user_id: str
    email: str
    name: str

class CardData(BaseModel):
    card_number: str = ""
    cardholder_name: str = ""
    expiration_month: str = ""
    expiration_year: str = ""
    security_code: str = ""
    cpf: str = ""
    installments: int = Field(default=1, ge=1, le=12)

class OrderItem(RecordModel):
    """Line snapshot stored with an order"""
    product_id: str
    product_name: str
    quantity: int
    price_per_unit: Decimal
    net_amount: Decimal
    seller_id: Optional[str] = None

    @property
    def total_price(self) -> Decimal:
        return self.price_per_unit * self.quantity

class Order(TimeStampedModel):
    """Order model for a checkout transaction"""
    id: UUID
    user_id: Optional[str] = None
    customer_email: str
    customer_name: str
    product_id: str
    product_name: str
    product_price: Decimal
    transaction_amount: Decimal
    payment_method: PaymentMethod
    payment_status: OrderStatus
    coupon_code: Optional[str] = None
    discount_amount: Optional[Decimal] = None
    payment_id: Optional[str] = None
    pix_qr_code: Optional[str] = None
    pix_qr_code_base64: Optional[str] = None
    ticket_url: Optional[str] = None
    seller_id: Optional[str] = None
    seller_name: Optional[str] = None
    delivered_at: Optional[datetime] = None
    items: List[OrderItem] = []

    @model_validator(mode="after")
    def check_amounts_and_artifacts(self):
        discount = self.discount_amount or Decimal(0)
        if discount < 0 or discount > self.product_price:
            raise ValueError("discount_amount must be between 0 and product_price")
        if self.transaction_amount != self.product_price - discount:
            raise ValueError("transaction_amount must equal product_price - discount_amount")

        has_pix = bool(self.pix_qr_code or self.pix_qr_code_base64)
        if has_pix and self.payment_method != PaymentMethod.PIX:
            raise ValueError("pix artifacts are only valid for pix orders")
        if self.ticket_url and self.payment_method != PaymentMethod.TICKET:
            raise ValueError("ticket_url is only valid for ticket orders")
        return self
