#!/usr/bin/env python3
"""
Webhook Reconciler
------------------
aiohttp endpoints for Stripe and Cryptomus payment callbacks.

Canonical Owner: This module owns the pending -> paid transition driven by
payment providers. Providers retry on any non-2xx answer, so every outcome
other than a failed trust check is acknowledged with 200; repeated
deliveries are absorbed by OrderStore.transition_to_paid.
"""

import json
import logging
from typing import Awaitable, Callable, Optional

import stripe
from aiohttp import web

from CrystalStore.order_store import OrderNotFound, OrderStore
from CrystalStore.store_utils import fmt_money
from shared.webhook_signatures import verify_cryptomus_webhook

log = logging.getLogger("crystal-store")

STRIPE_PAID_EVENTS = {"checkout.session.completed"}
CRYPTOMUS_PAID_STATUSES = {"paid", "paid_over", "paid_partial"}

Notifier = Callable[[dict], Awaitable[None]]


def _pick_first(*vals: object) -> str:
    for v in vals:
        s = str(v or "").strip()
        if s:
            return s
    return ""


def extract_stripe_payment(event: dict) -> Optional[tuple[str, dict]]:
    """(order_id, payment_fields) for a paid Stripe event, else None."""
    if not isinstance(event, dict):
        return None
    if str(event.get("type") or "") not in STRIPE_PAID_EVENTS:
        return None
    data = event.get("data") if isinstance(event.get("data"), dict) else {}
    obj = data.get("object") if isinstance(data.get("object"), dict) else {}
    metadata = obj.get("metadata") if isinstance(obj.get("metadata"), dict) else {}
    order_id = _pick_first(metadata.get("orderId"), metadata.get("order_id"))
    if not order_id:
        return None
    amount_total = obj.get("amount_total")
    paid_amount = None
    if isinstance(amount_total, (int, float)):
        paid_amount = fmt_money(float(amount_total) / 100.0, obj.get("currency"))
    return order_id, {
        "method": "card",
        "provider": "stripe",
        "transactionId": _pick_first(obj.get("payment_intent"), obj.get("id")) or None,
        "paidAmount": paid_amount,
    }


def extract_cryptomus_payment(payload: dict) -> Optional[tuple[str, dict]]:
    """(order_id, payment_fields) for a paid Cryptomus callback, else None."""
    if not isinstance(payload, dict):
        return None
    status = str(payload.get("status") or payload.get("payment_status") or "").strip().lower()
    if status not in CRYPTOMUS_PAID_STATUSES:
        return None
    order_id = _pick_first(payload.get("order_id"))
    if not order_id:
        return None
    amount = payload.get("amount")
    paid_amount = fmt_money(amount, payload.get("currency")) if amount not in (None, "") else None
    return order_id, {
        "method": "crypto",
        "provider": "cryptomus",
        "transactionId": _pick_first(payload.get("uuid"), payload.get("txid"), payload.get("payment_uuid")) or None,
        "paidAmount": paid_amount,
    }


class WebhookReconciler:
    """Maps provider callbacks back onto orders."""

    def __init__(
        self,
        store: OrderStore,
        *,
        notify_paid: Optional[Notifier] = None,
        stripe_webhook_secret: str = "",
        cryptomus_webhook_secret: str = "",
    ):
        self.store = store
        self.notify_paid = notify_paid
        self.stripe_webhook_secret = str(stripe_webhook_secret or "").strip()
        self.cryptomus_webhook_secret = str(cryptomus_webhook_secret or "").strip()
        if not self.stripe_webhook_secret:
            log.warning("webhooks: STRIPE webhook secret not configured; Stripe events will be accepted UNVERIFIED")
        if not self.cryptomus_webhook_secret:
            log.warning("webhooks: Cryptomus secret not configured; Cryptomus callbacks will be accepted UNVERIFIED")

    async def reconcile(self, source: str, order_id: str, payment_fields: dict) -> Optional[dict]:
        """Mark the order paid and notify once. Never raises."""
        try:
            order, newly_paid = await self.store.transition_to_paid(order_id, payment_fields)
        except OrderNotFound:
            log.warning(f"webhooks[{source}]: unknown order_id={order_id}; ignored")
            return None
        except Exception as e:
            log.exception(f"webhooks[{source}]: failed to mark order_id={order_id} paid: {e}")
            return None

        if not newly_paid:
            log.info(f"webhooks[{source}]: order_id={order_id} already paid; duplicate delivery ignored")
            return order
        log.info(f"webhooks[{source}]: order_id={order_id} marked paid ({payment_fields.get('paidAmount')})")
        if self.notify_paid is not None:
            try:
                await self.notify_paid(order)
            except Exception as e:
                log.warning(f"webhooks[{source}]: paid notification failed order_id={order_id}: {e}")
        return order

    # -----------------------------
    # HTTP handlers
    # -----------------------------
    async def handle_root(self, request: web.Request) -> web.Response:
        return web.Response(text="Crystal Store Online")

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.Response(text="ok")

    async def handle_success(self, request: web.Request) -> web.Response:
        return web.Response(text="Payment received. You can return to Discord; your ticket updates once the payment is confirmed.")

    async def handle_cancel(self, request: web.Request) -> web.Response:
        return web.Response(text="Payment cancelled. Return to your ticket in Discord to try again.")

    async def handle_stripe(self, request: web.Request) -> web.Response:
        # Signature covers the raw bytes; read them before anything parses the body.
        body = await request.read()
        if self.stripe_webhook_secret:
            sig_header = request.headers.get("Stripe-Signature", "")
            try:
                stripe.WebhookSignature.verify_header(
                    body.decode("utf-8", errors="replace"),
                    sig_header,
                    self.stripe_webhook_secret,
                    stripe.Webhook.DEFAULT_TOLERANCE,
                )
            except stripe.SignatureVerificationError as e:
                log.warning(f"webhooks[stripe]: signature rejected: {e}")
                return web.Response(status=401, text="invalid signature")
        else:
            log.warning("webhooks[stripe]: processing UNVERIFIED event (no webhook secret configured)")

        try:
            event = json.loads(body.decode("utf-8") or "{}")
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            log.warning(f"webhooks[stripe]: malformed payload: {e}")
            return web.json_response({"received": True})

        found = extract_stripe_payment(event)
        if found is None:
            log.info(f"webhooks[stripe]: event type={_event_type(event)} ignored")
        else:
            order_id, fields = found
            await self.reconcile("stripe", order_id, fields)
        return web.json_response({"received": True})

    async def handle_cryptomus(self, request: web.Request) -> web.Response:
        try:
            payload = json.loads((await request.read()).decode("utf-8") or "{}")
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            log.warning(f"webhooks[cryptomus]: malformed payload: {e}")
            return web.json_response({"received": True})
        if not isinstance(payload, dict):
            log.warning("webhooks[cryptomus]: payload is not an object; ignored")
            return web.json_response({"received": True})

        if self.cryptomus_webhook_secret:
            ok, reason = verify_cryptomus_webhook(payload, secret=self.cryptomus_webhook_secret)
            if not ok:
                log.warning(f"webhooks[cryptomus]: callback rejected ({reason}) order_id={payload.get('order_id')}")
                return web.Response(status=401, text="invalid signature")

        found = extract_cryptomus_payment(payload)
        if found is None:
            log.info(f"webhooks[cryptomus]: status={payload.get('status')} order_id={payload.get('order_id')} ignored")
        else:
            order_id, fields = found
            await self.reconcile("cryptomus", order_id, fields)
        return web.json_response({"received": True})

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self.handle_root)
        app.router.add_get("/health", self.handle_health)
        app.router.add_get("/success", self.handle_success)
        app.router.add_get("/cancel", self.handle_cancel)
        app.router.add_post("/webhooks/stripe", self.handle_stripe)
        app.router.add_post("/webhooks/cryptomus", self.handle_cryptomus)
        return app


def _event_type(event: object) -> str:
    try:
        return str(event.get("type") or "?")  # type: ignore[union-attr]
    except Exception:
        return "?"


async def start_http_server(app: web.Application, *, host: str, port: int) -> web.AppRunner:
    """Start the webhook HTTP server on the running loop (returns the runner for cleanup)."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, int(port))
    await site.start()
    log.info(f"HTTP server started on {host}:{port}")
    return runner
