# gamemarket/models/seller.py
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from .base import TimeStampedModel

class BalanceEntryType(str, Enum):
    SALE = "sale"
    RELEASE = "release"
    REFUND = "refund"
    WITHDRAWAL = "withdrawal"

class BalanceBucket(str, Enum):
    PENDING = "pending"
    AVAILABLE = "available"

class BalanceEntry(TimeStampedModel):
    """Append-only ledger row; amount is signed"""
    id: int
    seller_id: str
    entry_type: BalanceEntryType
    bucket: BalanceBucket
    amount: Decimal
    balance_after: Decimal
    order_id: Optional[UUID] = None
    refund_id: Optional[UUID] = None
    description: Optional[str] = None
