from __future__ import annotations

from contextlib import suppress
from datetime import datetime, timezone

import discord

from CrystalStore.store_utils import fmt_money

COLOR_BRAND = 0x5865F2
COLOR_PAID = 0x2ECC71
COLOR_PENDING = 0xF1C40F
COLOR_CLOSED = 0x95A5A6


def _member_avatar_url(user: discord.abc.User) -> str | None:
    """Best-effort avatar URL that works across discord.py versions and user types."""
    try:
        return str(user.display_avatar.url)
    except Exception:
        pass
    try:
        return str(user.default_avatar.url)
    except Exception:
        return None


def apply_member_header(embed: discord.Embed, user: discord.abc.User) -> None:
    """Apply author icon if an avatar URL is available."""
    url = _member_avatar_url(user)
    if not url:
        return
    with suppress(Exception):
        embed.set_author(name=str(user), icon_url=url)


_LABEL_OVERRIDES: dict[str, str] = {
    "order_id": "Order ID",
    "invoice_id": "Invoice ID",
    "transaction_id": "Transaction / Ref",
    "paid_amount": "Paid Amount",
    "method": "Payment Method",
}


def _human_label(key: str) -> str:
    k = str(key or "").strip()
    if not k:
        return ""
    if k in _LABEL_OVERRIDES:
        return _LABEL_OVERRIDES[k]
    parts = [p for p in k.replace("-", "_").split("_") if p]
    return " ".join(p[:1].upper() + p[1:] for p in parts) if parts else k


def kv_block(pairs: list[tuple[str, object]]) -> str:
    """`Label: value` lines, blanks hidden."""
    lines: list[str] = []
    for k, v in pairs:
        label = _human_label(k)
        s = "" if v is None else str(v).strip()
        if not label or not s:
            continue
        lines.append(f"{label}: {s}")
    return ("\n".join(lines)[:1024]) if lines else "—"


def order_kv(order: dict) -> list[tuple[str, object]]:
    product = order.get("product") or {}
    payment = order.get("payment") or {}
    return [
        ("order_id", f"`{order.get('id')}`"),
        ("product", product.get("name")),
        ("price", fmt_money(product.get("price"))),
        ("method", payment.get("method")),
        ("paid_amount", payment.get("paidAmount")),
        ("transaction_id", payment.get("transactionId")),
    ]


def build_panel_embed(store_name: str) -> discord.Embed:
    embed = discord.Embed(
        title=store_name,
        description="Press the button below to open a private ticket and place an order.",
        color=COLOR_BRAND,
    )
    embed.set_footer(text=store_name)
    return embed


def build_product_picker_embed(*, store_name: str, owner_mention: str) -> discord.Embed:
    return discord.Embed(
        title="Choose a product",
        description=f"👋 Welcome {owner_mention}\nPick the product you want to buy.",
        color=COLOR_BRAND,
    ).set_footer(text=store_name)


def build_payment_picker_embed(order: dict) -> discord.Embed:
    product = order.get("product") or {}
    embed = discord.Embed(
        title="Choose a payment method",
        description=f"**{product.get('name')}** — {fmt_money(product.get('price'))}",
        color=COLOR_PENDING,
    )
    embed.add_field(name="Order", value=f"`{order.get('id')}`", inline=False)
    return embed


def build_paid_embed(order: dict, *, store_name: str) -> discord.Embed:
    embed = discord.Embed(
        title="✅ Payment received",
        color=COLOR_PAID,
        timestamp=datetime.now(timezone.utc),
    )
    embed.add_field(name="Order", value=kv_block(order_kv(order)), inline=False)
    buyer = order.get("userId")
    if buyer:
        embed.add_field(name="Buyer", value=f"<@{buyer}> ({order.get('userTag') or '—'})", inline=False)
    embed.set_footer(text=store_name)
    return embed


def build_close_summary_embed(
    *,
    order: dict | None,
    channel_name: str,
    closed_by: discord.abc.User,
    store_name: str,
    forced: bool,
) -> discord.Embed:
    title = "🧾 Order completed" if order and not forced else "🔒 Ticket closed"
    embed = discord.Embed(
        title=title,
        color=COLOR_PAID if (order and not forced) else COLOR_CLOSED,
        timestamp=datetime.now(timezone.utc),
    )
    apply_member_header(embed, closed_by)
    embed.add_field(name="Channel", value=f"#{channel_name}", inline=True)
    embed.add_field(name="Closed By", value=str(closed_by), inline=True)
    if order:
        embed.add_field(name="Status", value=str(order.get("status") or "—"), inline=True)
        embed.add_field(name="Order", value=kv_block(order_kv(order)), inline=False)
        if order.get("userId"):
            embed.add_field(name="Buyer", value=f"<@{order.get('userId')}>", inline=False)
    embed.set_footer(text=store_name)
    return embed
