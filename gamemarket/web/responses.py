# gamemarket/web/responses.py
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from functools import partial
from uuid import UUID
import pydantic
from aiohttp import web
from ..exceptions import MarketplaceError

logger = logging.getLogger(__name__)

# result-dict codes that do not map to 400
STATUS_BY_CODE = {
    "unauthenticated": 401,
    "invalid_signature": 401,
    "forbidden": 403,
    "not_found": 404,
    "seller_not_found": 404,
    "invalid_transition": 409,
    "concurrent_update": 409,
    "refund_resolved": 409,
    "refund_exists": 409,
    "refund_not_eligible": 409,
    "already_responded": 409,
    "insufficient_balance": 409,
    "gateway_error": 502,
    "storage_error": 502,
    "proof_upload_failed": 502,
}

def _default(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (UUID, bytes)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, pydantic.BaseModel):
        return value.model_dump(mode="json")
    raise TypeError(f"{type(value).__name__} is not JSON serializable")

dumps = partial(json.dumps, default=_default)

def ok(data=None, status: int = 200) -> web.Response:
    return web.json_response({"ok": True, "data": data}, status=status, dumps=dumps)

def fail(message: str, code: str = "validation_error", status: int = 400) -> web.Response:
    return web.json_response(
        {"ok": False, "error": {"code": code, "message": message}},
        status=status,
        dumps=dumps
    )

def from_result(result: dict, status: int = 200) -> web.Response:
    """Turn a service result dict into a response"""
    if result.get("success", result.get("valid", True)):
        data = {k: v for k, v in result.items() if k not in ("success", "valid")}
        return ok(data, status=status)
    code = result.get("code") or "validation_error"
    return fail(result.get("error", "Request failed"), code, STATUS_BY_CODE.get(code, 400))

@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except MarketplaceError as e:
        return fail(e.detail, e.code, e.status)
    except pydantic.ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        return fail(errors or "Invalid input")
    except json.JSONDecodeError:
        return fail("Request body must be JSON", "invalid_json")
    except Exception:
        logger.error(f"Unhandled error on {request.method} {request.path}", exc_info=True)
        return fail("Internal error", "internal_error", 500)
