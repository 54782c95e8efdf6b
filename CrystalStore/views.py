"""
Component views.

Buttons carry stable custom_ids (`crystal:*`); clicks are routed by
`StoreFront.handle_interaction`, so they keep working after a restart.
"""

from __future__ import annotations

import discord

from CrystalStore.catalog import Catalog
from CrystalStore.payment_gateways import METHOD_CARD, METHOD_CRYPTO

CID_OPEN = "crystal:open"
CID_PRODUCT_PREFIX = "crystal:prod:"
CID_PAY_PREFIX = "crystal:pay:"

_METHOD_LABELS = {
    METHOD_CARD: ("Card (Stripe)", "💳"),
    METHOD_CRYPTO: ("Crypto (Cryptomus)", "🪙"),
}


def product_custom_id(product_id: str) -> str:
    return f"{CID_PRODUCT_PREFIX}{product_id}"


def pay_custom_id(method: str, order_id: str) -> str:
    return f"{CID_PAY_PREFIX}{method}:{order_id}"


def parse_custom_id(custom_id: str) -> tuple[str, list[str]]:
    """`crystal:pay:card:<id>` -> ("pay", ["card", "<id>"]); ("", []) for foreign ids."""
    cid = str(custom_id or "")
    if not cid.startswith("crystal:"):
        return "", []
    parts = cid.split(":")
    if len(parts) < 2:
        return "", []
    if parts[1] == "pay":
        # order ids never contain ':'; methods never do either
        return "pay", parts[2:4] if len(parts) >= 4 else []
    if parts[1] == "prod":
        return "prod", [":".join(parts[2:])] if len(parts) >= 3 else []
    return parts[1], parts[2:]


class TicketPanelView(discord.ui.View):
    """Persistent "Open Ticket" panel."""

    def __init__(self):
        super().__init__(timeout=None)
        self.add_item(
            discord.ui.Button(
                label="Open Ticket",
                emoji="🎫",
                style=discord.ButtonStyle.primary,
                custom_id=CID_OPEN,
            )
        )


class ProductPickerView(discord.ui.View):
    def __init__(self, catalog: Catalog):
        super().__init__(timeout=None)
        # Discord allows 25 components per message.
        for product in list(catalog)[:25]:
            self.add_item(
                discord.ui.Button(
                    label=f"{product.name} (${product.price:.2f})"[:80],
                    emoji=product.emoji or None,
                    style=discord.ButtonStyle.secondary,
                    custom_id=product_custom_id(product.id)[:100],
                )
            )


class PaymentMethodView(discord.ui.View):
    """One button per configured payment method."""

    def __init__(self, order_id: str, methods: list[str]):
        super().__init__(timeout=None)
        for method in methods:
            label, emoji = _METHOD_LABELS.get(method, (method.title(), None))
            self.add_item(
                discord.ui.Button(
                    label=label,
                    emoji=emoji,
                    style=discord.ButtonStyle.success,
                    custom_id=pay_custom_id(method, order_id),
                )
            )


class PayLinkView(discord.ui.View):
    def __init__(self, url: str, *, label: str = "Pay now"):
        super().__init__(timeout=None)
        self.add_item(discord.ui.Button(label=label, style=discord.ButtonStyle.link, url=url))
