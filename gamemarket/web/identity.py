# gamemarket/web/identity.py
from uuid import UUID
from aiohttp import web
from ..exceptions import AuthenticationError, NotFoundError, PermissionDenied
from ..models.order import CustomerInfo

ADMIN_ROLE = "admin"

def current_user(request: web.Request) -> CustomerInfo:
    """Identity forwarded by the authenticating proxy"""
    user_id = request.headers.get("X-User-Id", "").strip()
    if not user_id:
        raise AuthenticationError("Sign in to continue")
    return CustomerInfo(
        user_id=user_id,
        email=request.headers.get("X-User-Email", ""),
        name=request.headers.get("X-User-Name", "")
    )

def is_admin(request: web.Request) -> bool:
    return request.headers.get("X-User-Role", "").lower() == ADMIN_ROLE

def require_admin(request: web.Request) -> CustomerInfo:
    user = current_user(request)
    if not is_admin(request):
        raise PermissionDenied("Admins only")
    return user

def require_self_or_admin(request: web.Request, *party_ids) -> CustomerInfo:
    """Caller must be one of the given users, or an admin"""
    user = current_user(request)
    if not is_admin(request) and user.user_id not in {str(p) for p in party_ids if p is not None}:
        raise PermissionDenied("Not allowed")
    return user

def path_uuid(request: web.Request, name: str = "id") -> UUID:
    try:
        return UUID(request.match_info[name])
    except ValueError:
        raise NotFoundError("Not found") from None
