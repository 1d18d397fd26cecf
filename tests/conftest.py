"""
Pytest fixtures: an in-memory stand-in for the asyncpg pool
"""
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from gamemarket.models.order import CartLine, CustomerInfo


class FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeConnection:
    """Connection whose query methods are AsyncMocks scripted per test"""

    def __init__(self):
        self.fetchrow = AsyncMock(return_value=None)
        self.fetchval = AsyncMock(return_value=None)
        self.fetch = AsyncMock(return_value=[])
        self.execute = AsyncMock(return_value="OK")

    def transaction(self):
        return FakeTransaction()

    def executed(self, fragment: str):
        """Calls to execute whose SQL contains fragment"""
        return [c for c in self.execute.call_args_list if fragment in c.args[0]]


class FakePool:
    def __init__(self, conn):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


@pytest.fixture
def conn():
    return FakeConnection()


@pytest.fixture
def db(conn):
    return SimpleNamespace(pool=FakePool(conn))


@pytest.fixture
def now():
    return datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def customer():
    return CustomerInfo(user_id="cust-1", email="cliente@example.com", name="Ana Souza")


@pytest.fixture
def seller_x_line():
    return CartLine(product_id="prod-a", name="Conta Valorant", price=Decimal("50.00"),
                    quantity=1, seller_id="seller-x", seller_name="Loja X")


@pytest.fixture
def seller_y_line():
    return CartLine(product_id="prod-b", name="Gift card Steam", price=Decimal("30.00"),
                    quantity=1, seller_id="seller-y", seller_name="Loja Y")


def order_row(**overrides):
    """A persisted order as asyncpg would return it"""
    row = {
        "id": uuid.uuid4(),
        "user_id": "cust-1",
        "customer_email": "cliente@example.com",
        "customer_name": "Ana Souza",
        "product_id": "prod-a",
        "product_name": "Conta Valorant",
        "product_price": Decimal("50.00"),
        "transaction_amount": Decimal("50.00"),
        "payment_method": "pix",
        "payment_status": "approved",
        "coupon_code": None,
        "discount_amount": None,
        "payment_id": "mp-123",
        "pix_qr_code": None,
        "pix_qr_code_base64": None,
        "ticket_url": None,
        "seller_id": "seller-x",
        "seller_name": "Loja X",
        "delivered_at": None,
        "created_at": datetime(2024, 5, 1, tzinfo=timezone.utc),
        "updated_at": None,
    }
    row.update(overrides)
    return row


def refund_row(**overrides):
    row = {
        "id": uuid.uuid4(),
        "order_id": uuid.uuid4(),
        "customer_id": "cust-1",
        "seller_id": "seller-x",
        "reason": "Produto não entregue",
        "description": None,
        "proofs": ["http://files/p1.png"],
        "customer_pix_key": "cliente@example.com",
        "pix_key_type": "email",
        "order_amount": Decimal("50.00"),
        "status": "pending",
        "previous_order_status": "delivered",
        "admin_notes": None,
        "seller_response": None,
        "seller_responded_at": None,
        "resolved_at": None,
        "resolved_by": None,
        "seller_deducted_amount": None,
        "version": 1,
        "created_at": datetime(2024, 5, 9, 12, 0, tzinfo=timezone.utc),
        "updated_at": None,
    }
    row.update(overrides)
    return row
