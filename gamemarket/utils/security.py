# gamemarket/utils/security.py
import hashlib
import hmac
import time
from typing import Dict, Optional
from ..config import Config

SIGNATURE_MAX_AGE = 300  # seconds

def parse_signature_header(header: str) -> Dict[str, str]:
    """Split 'ts=...,v1=...' into its parts"""
    parts = {}
    for chunk in (header or "").split(","):
        if "=" in chunk:
            key, value = chunk.split("=", 1)
            parts[key.strip()] = value.strip()
    return parts

def build_signature_manifest(data_id: str, request_id: Optional[str], ts: str) -> str:
    manifest = f"id:{str(data_id).lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    return manifest + f"ts:{ts};"

def sign_manifest(manifest: str, secret: str) -> str:
    return hmac.new(
        secret.encode(),
        manifest.encode(),
        hashlib.sha256
    ).hexdigest()

def verify_webhook_signature(signature_header: str, request_id: Optional[str], data_id: str,
                             secret: Optional[str] = None, now: Optional[float] = None) -> bool:
    """Check a Mercado Pago x-signature header"""
    secret = secret if secret is not None else Config.MERCADOPAGO_WEBHOOK_SECRET
    if not secret:
        # Signing not configured
        return True

    parts = parse_signature_header(signature_header)
    ts, signature = parts.get("ts"), parts.get("v1")
    if not ts or not signature or not ts.isdigit():
        return False

    # ts is in milliseconds
    current = now if now is not None else time.time()
    if abs(current - int(ts) / 1000) > SIGNATURE_MAX_AGE:
        return False

    expected = sign_manifest(build_signature_manifest(data_id, request_id, ts), secret)
    return hmac.compare_digest(signature, expected)
