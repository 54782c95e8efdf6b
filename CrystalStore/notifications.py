from __future__ import annotations

import logging

import discord

from CrystalStore.store_embeds import build_paid_embed
from CrystalStore.store_utils import as_int as _as_int

log = logging.getLogger("crystal-store")


async def resolve_channel(bot, channel_id: int | str):
    """Cached channel, else an API fetch; None when it cannot be resolved."""
    cid = _as_int(channel_id)
    if cid <= 0 or bot is None:
        return None
    ch = bot.get_channel(cid)
    if ch is not None:
        return ch
    try:
        return await bot.fetch_channel(cid)
    except (discord.NotFound, discord.Forbidden):
        return None
    except discord.HTTPException as e:
        log.warning(f"notify: fetch_channel failed channel_id={cid}: {e}")
        return None


async def post_to_channel(bot, channel_id: int | str, content: str | None = None, *, embed: discord.Embed | None = None) -> bool:
    """Best-effort send; never raises."""
    try:
        ch = await resolve_channel(bot, channel_id)
        if ch is None:
            return False
        await ch.send(content=content, embed=embed)
        return True
    except Exception as e:
        log.warning(f"notify: send to channel_id={channel_id} failed: {e}")
        return False


class PaidNotifier:
    """Posts the paid notification into the order channel and the audit log channel."""

    def __init__(self, bot, *, store_name: str, log_channel_id: int = 0):
        self.bot = bot
        self.store_name = store_name
        self.log_channel_id = int(log_channel_id or 0)

    async def __call__(self, order: dict) -> None:
        embed = build_paid_embed(order, store_name=self.store_name)
        buyer = order.get("userId")
        content = f"<@{buyer}> your payment was received. Staff will complete your order shortly." if buyer else None
        delivered = await post_to_channel(self.bot, order.get("channelId"), content, embed=embed)
        if not delivered:
            log.warning(f"notify: paid notification not delivered order_id={order.get('id')} channel_id={order.get('channelId')}")
        if self.log_channel_id:
            await post_to_channel(self.bot, self.log_channel_id, embed=build_paid_embed(order, store_name=self.store_name))
