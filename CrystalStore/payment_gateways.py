#!/usr/bin/env python3
"""
Payment Gateways
Turn a pending order into an externally hosted pay link.

Canonical Owner: This module owns all outbound Stripe / Cryptomus API calls.
Both gateways are stateless request/response wrappers: no retries, failures
surface as GatewayError for the caller to report.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import aiohttp
import stripe
from aiohttp import ContentTypeError

from shared.webhook_signatures import cryptomus_body, cryptomus_sign

log = logging.getLogger("crystal-store")

METHOD_CARD = "card"
METHOD_CRYPTO = "crypto"


class GatewayError(Exception):
    """Payment provider refused or failed to create a payment session"""
    pass


@dataclass(frozen=True)
class CallbackConfig:
    success_url: str = ""
    cancel_url: str = ""
    webhook_url: str = ""

    @classmethod
    def for_provider(cls, public_base_url: str, provider: str) -> "CallbackConfig":
        base = str(public_base_url or "").strip().rstrip("/")
        if not base:
            return cls()
        return cls(
            success_url=f"{base}/success",
            cancel_url=f"{base}/cancel",
            webhook_url=f"{base}/webhooks/{provider}",
        )


@dataclass(frozen=True)
class PaymentSession:
    checkout_url: str
    provider_reference: str
    method: str
    provider: str

    def payment_fields(self) -> Dict[str, str]:
        """Order `payment` fields recorded when the session is created."""
        return {
            "method": self.method,
            "provider": self.provider,
            "url": self.checkout_url,
            "transactionId": self.provider_reference,
        }


def amount_minor_units(amount_usd: object) -> int:
    """USD decimal -> integer cents."""
    return int(round(float(amount_usd) * 100))


def amount_decimal_str(amount_usd: object) -> str:
    return f"{float(amount_usd):.2f}"


class StripeCheckoutGateway:
    """Card payments via Stripe Checkout Sessions"""

    method = METHOD_CARD
    provider = "stripe"

    def __init__(self, secret_key: str, stripe_client=stripe):
        if not secret_key:
            raise ValueError("Stripe secret key is required")
        self.secret_key = secret_key
        self._stripe = stripe_client

    def _create_session(self, *, order_id: str, product_name: str, amount_usd: float, callbacks: CallbackConfig):
        return self._stripe.checkout.Session.create(
            api_key=self.secret_key,
            mode="payment",
            line_items=[
                {
                    "price_data": {
                        "currency": "usd",
                        "unit_amount": amount_minor_units(amount_usd),
                        "product_data": {"name": product_name},
                    },
                    "quantity": 1,
                }
            ],
            metadata={"orderId": order_id},
            success_url=callbacks.success_url or "https://example.com/success",
            cancel_url=callbacks.cancel_url or "https://example.com/cancel",
        )

    async def create_payment_session(self, order: Dict, callbacks: CallbackConfig) -> PaymentSession:
        product = order.get("product") or {}
        order_id = str(order.get("id") or "")
        try:
            # Stripe's SDK is blocking; keep it off the event loop.
            session = await asyncio.to_thread(
                self._create_session,
                order_id=order_id,
                product_name=str(product.get("name") or "Order"),
                amount_usd=float(product.get("price") or 0),
                callbacks=callbacks,
            )
        except stripe.StripeError as e:
            log.error(f"stripe: checkout creation failed order_id={order_id}: {e}")
            raise GatewayError(getattr(e, "user_message", None) or str(e)) from e

        url = str(getattr(session, "url", "") or "")
        sid = str(getattr(session, "id", "") or "")
        if not url:
            raise GatewayError("Stripe did not return a checkout URL")
        log.info(f"stripe: checkout created order_id={order_id} session_id={sid}")
        return PaymentSession(checkout_url=url, provider_reference=sid, method=self.method, provider=self.provider)


class CryptomusGateway:
    """Crypto payments via Cryptomus invoices"""

    method = METHOD_CRYPTO
    provider = "cryptomus"

    def __init__(self, merchant_id: str, api_key: str, base_url: str = "https://api.cryptomus.com/v1"):
        """
        Args:
            merchant_id: Cryptomus merchant UUID (sent as the `merchant` header)
            api_key: Cryptomus payment API key (used to sign request bodies)
            base_url: API root, overridable for tests
        """
        if not merchant_id or not api_key:
            raise ValueError("Cryptomus merchant id and API key are required")
        self.merchant_id = merchant_id
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    @staticmethod
    def _extract_error_message(data: object, status: int) -> str:
        if isinstance(data, dict):
            msg = data.get("message")
            if msg:
                return str(msg)
            errors = data.get("errors")
            if isinstance(errors, dict) and errors:
                parts = []
                for field, vals in errors.items():
                    text = ", ".join(str(v) for v in vals) if isinstance(vals, list) else str(vals)
                    parts.append(f"{field}: {text}")
                return "; ".join(parts)
            err = data.get("error")
            if isinstance(err, dict) and err.get("message"):
                return str(err["message"])
        return f"HTTP {status}"

    async def _request(self, endpoint: str, payload: Dict) -> Dict:
        """
        POST a signed JSON payload to Cryptomus.

        Raises:
            GatewayError: If the request fails or the provider rejects it
        """
        url = f"{self.base_url}{endpoint}"
        body = cryptomus_body(payload)
        headers = {
            "merchant": self.merchant_id,
            "sign": cryptomus_sign(body, self.api_key),
            "Content-Type": "application/json",
        }
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    data=body,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=10),
                ) as resp:
                    try:
                        data = await resp.json()
                    except ContentTypeError:
                        txt = (await resp.text())[:2000]
                        data = {"message": txt}
                    if resp.status >= 400:
                        raise GatewayError(self._extract_error_message(data, resp.status))
                    return data if isinstance(data, dict) else {}
        except aiohttp.ClientError as e:
            raise GatewayError(f"Network error: {e}")

    async def create_payment_session(self, order: Dict, callbacks: CallbackConfig) -> PaymentSession:
        product = order.get("product") or {}
        order_id = str(order.get("id") or "")
        payload: Dict[str, str] = {
            "amount": amount_decimal_str(product.get("price") or 0),
            "currency": "USD",
            "order_id": order_id,
        }
        if callbacks.webhook_url:
            payload["url_callback"] = callbacks.webhook_url
        if callbacks.cancel_url:
            payload["url_return"] = callbacks.cancel_url
        if callbacks.success_url:
            payload["url_success"] = callbacks.success_url

        data = await self._request("/payment", payload)
        result = data.get("result") if isinstance(data.get("result"), dict) else {}
        url = str(result.get("url") or "").strip()
        if not url.startswith(("http://", "https://")):
            raise GatewayError(str(data.get("message") or "Cryptomus did not return a pay URL"))
        ref = str(result.get("uuid") or "")
        log.info(f"cryptomus: invoice created order_id={order_id} uuid={ref}")
        return PaymentSession(checkout_url=url, provider_reference=ref, method=self.method, provider=self.provider)


def build_gateways(*, stripe_secret_key: str = "", cryptomus_merchant_id: str = "", cryptomus_api_key: str = "") -> Dict[str, object]:
    """Gateways keyed by payment method; unconfigured providers are left out."""
    out: Dict[str, object] = {}
    if stripe_secret_key:
        out[METHOD_CARD] = StripeCheckoutGateway(stripe_secret_key)
    else:
        log.warning("stripe: secret key not configured; card payments disabled")
    if cryptomus_merchant_id and cryptomus_api_key:
        out[METHOD_CRYPTO] = CryptomusGateway(cryptomus_merchant_id, cryptomus_api_key)
    else:
        log.warning("cryptomus: merchant/API key not configured; crypto payments disabled")
    return out


def gateway_for(gateways: Dict[str, object], method: str) -> Optional[object]:
    return gateways.get(str(method or "").strip().lower())
