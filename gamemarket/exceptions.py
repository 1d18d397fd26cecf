# gamemarket/exceptions.py
from typing import Optional


class MarketplaceError(Exception):
    """Base error for the marketplace domain"""

    code = "marketplace_error"
    status = 400

    def __init__(self, detail: str, code: Optional[str] = None):
        self.detail = detail
        if code:
            self.code = code
        super().__init__(detail)

    def to_result(self) -> dict:
        return {"success": False, "error": self.detail, "code": self.code}


class ValidationError(MarketplaceError):
    """Input rejected before any network call"""
    code = "validation_error"
    status = 400


class NotFoundError(MarketplaceError):
    code = "not_found"
    status = 404


class InvalidTransition(MarketplaceError):
    """A status change not allowed by the lifecycle tables"""
    code = "invalid_transition"
    status = 409


class ConcurrentUpdateError(MarketplaceError):
    code = "concurrent_update"
    status = 409


class GatewayError(MarketplaceError):
    """Payment gateway rejected the request or could not be reached"""
    code = "gateway_error"
    status = 502


class StorageError(MarketplaceError):
    code = "storage_error"
    status = 502


class AuthenticationError(MarketplaceError):
    code = "unauthenticated"
    status = 401


class PermissionDenied(MarketplaceError):
    code = "forbidden"
    status = 403
