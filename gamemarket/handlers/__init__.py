# gamemarket/handlers/__init__.py
"""Telegram back-office handlers"""
from .admin_handlers import AdminHandler
from .refund_handlers import RefundHandler

__all__ = [
    'AdminHandler',
    'RefundHandler',
]
