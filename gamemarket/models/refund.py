# gamemarket/models/refund.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel, Field
from .base import RecordModel, TimeStampedModel

MIN_PROOFS = 1
MAX_PROOFS = 5

class RefundStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    MORE_INFO_REQUESTED = "more_info_requested"

    @property
    def is_terminal(self) -> bool:
        return self in (RefundStatus.APPROVED, RefundStatus.REJECTED)

OPEN_REFUND_STATUSES = (
    RefundStatus.PENDING,
    RefundStatus.IN_REVIEW,
    RefundStatus.MORE_INFO_REQUESTED,
)

class RefundReason(str, Enum):
    NOT_DELIVERED = "Produto não entregue"
    DEFECTIVE = "Produto com defeito"
    NOT_AS_DESCRIBED = "Produto diferente do anunciado"
    INVALID_KEY = "Key/código inválido"
    ACCOUNT_NOT_WORKING = "Conta não funciona"
    SELLER_UNRESPONSIVE = "Vendedor não responde"
    OTHER = "Outro motivo"

class PixKeyType(str, Enum):
    CPF = "cpf"
    CNPJ = "cnpj"
    EMAIL = "email"
    PHONE = "phone"
    RANDOM = "random"

class SenderType(str, Enum):
    CUSTOMER = "customer"
    SELLER = "seller"
    ADMIN = "admin"
    SYSTEM = "system"

class ProofFile(BaseModel):
    """An uploaded proof before it is written to object storage"""
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

class RefundSubmission(BaseModel):
    """Customer input for a refund request"""
    reason: RefundReason
    description: Optional[str] = None
    pix_key: str = Field(min_length=1)
    pix_key_type: PixKeyType
    proofs: List[ProofFile]

class RefundRequest(TimeStampedModel):
    """Refund dispute tied to one order"""
    id: UUID
    order_id: UUID
    customer_id: str
    seller_id: Optional[str] = None
    reason: RefundReason
    description: Optional[str] = None
    proofs: List[str]
    customer_pix_key: str
    pix_key_type: PixKeyType
    order_amount: Decimal
    status: RefundStatus = RefundStatus.PENDING
    previous_order_status: Optional[str] = None
    admin_notes: Optional[str] = None
    seller_response: Optional[str] = None
    seller_responded_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    seller_deducted_amount: Optional[Decimal] = None
    version: int = 1

class RefundMessage(RecordModel):
    id: UUID
    refund_id: UUID
    sender_id: str
    sender_type: SenderType
    message: str
    created_at: datetime
