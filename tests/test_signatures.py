import base64
import hashlib
import json

from shared.webhook_signatures import cryptomus_body, cryptomus_sign, verify_cryptomus_webhook

KEY = "cryptomus-test-key"


def _md5_sign(body: str, key: str) -> str:
    return hashlib.md5((base64.b64encode(body.encode("utf-8")).decode() + key).encode("utf-8")).hexdigest()


def test_cryptomus_body_is_compact():
    assert cryptomus_body({"amount": "9.99", "currency": "USD"}) == '{"amount":"9.99","currency":"USD"}'


def test_cryptomus_sign_matches_md5_of_base64_body():
    body = cryptomus_body({"amount": "9.99", "currency": "USD", "order_id": "o-1"})
    assert cryptomus_sign(body, KEY) == _md5_sign(body, KEY)


def test_webhook_signed_with_escaped_slashes_is_accepted():
    payload = {"order_id": "o-1", "status": "paid", "url": "https://pay.cryptomus.com/pay/u-1"}
    php_body = json.dumps(payload, separators=(",", ":")).replace("/", "\\/")
    signed = dict(payload, sign=_md5_sign(php_body, KEY))
    assert verify_cryptomus_webhook(signed, secret=KEY) == (True, "ok")


def test_webhook_signed_with_plain_json_is_accepted():
    payload = {"order_id": "o-1", "status": "paid"}
    signed = dict(payload, sign=_md5_sign(cryptomus_body(payload), KEY).upper())
    assert verify_cryptomus_webhook(signed, secret=KEY) == (True, "ok")


def test_webhook_tampered_payload_is_rejected():
    payload = {"order_id": "o-1", "status": "confirm_check"}
    signed = dict(payload, sign=_md5_sign(cryptomus_body(payload), KEY))
    signed["status"] = "paid"
    assert verify_cryptomus_webhook(signed, secret=KEY) == (False, "signature_mismatch")


def test_webhook_rejections():
    assert verify_cryptomus_webhook({"status": "paid"}, secret=KEY) == (False, "missing_sign")
    assert verify_cryptomus_webhook({"status": "paid", "sign": "x"}, secret="") == (False, "missing_webhook_secret")
