"""Gaming-goods marketplace: checkout, payment and refund lifecycle service."""

__version__ = "0.1.0"
