import base64
import hashlib
import hmac
import json
from typing import Any, Dict, Tuple


def cryptomus_body(payload: Dict[str, Any]) -> str:
    """Compact JSON body exactly as it is sent to (and signed for) Cryptomus."""
    return json.dumps(payload, separators=(",", ":"))


def cryptomus_sign(body: str, api_key: str) -> str:
    """Cryptomus request/webhook signature: md5(base64(body) + api_key)."""
    encoded = base64.b64encode(str(body).encode("utf-8")).decode("ascii")
    return hashlib.md5((encoded + str(api_key or "")).encode("utf-8")).hexdigest()


def _webhook_signed_body(payload: Dict[str, Any]) -> str:
    # Cryptomus serialises callbacks PHP-style: compact, \uXXXX escapes, escaped slashes.
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True).replace("/", "\\/")


def verify_cryptomus_webhook(
    payload: Dict[str, Any],
    *,
    secret: str,
) -> Tuple[bool, str]:
    """Check the `sign` field of a Cryptomus callback against the shared secret.

    The signature covers the callback JSON with the `sign` key removed.
    Returns (ok, reason) so the caller can log why a callback was refused.
    """
    secret = str(secret or "").strip()
    if not secret:
        return (False, "missing_webhook_secret")
    if not isinstance(payload, dict):
        return (False, "bad_payload")
    received = str(payload.get("sign") or "").strip()
    if not received:
        return (False, "missing_sign")
    unsigned = {k: v for k, v in payload.items() if k != "sign"}
    candidates = (_webhook_signed_body(unsigned), cryptomus_body(unsigned))
    for body in candidates:
        if hmac.compare_digest(cryptomus_sign(body, secret), received.lower()):
            return (True, "ok")
    return (False, "signature_mismatch")
