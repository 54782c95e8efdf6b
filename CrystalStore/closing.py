"""
Closing workflow
----------------
Staff type the close command (`+dn`) inside a ticket channel:

- paid order (or no order): countdown, receipt DM, audit summary, delete
- unpaid order: the first command only warns; the second force-closes
- a channel already counting down ignores further close commands

Receipt DM, audit post and channel deletion are best-effort.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import discord

from CrystalStore.invoices import write_invoice_async
from CrystalStore.notifications import post_to_channel
from CrystalStore.order_store import OrderStore, is_paid
from CrystalStore.store_embeds import build_close_summary_embed
from CrystalStore.ticket_sessions import TicketSessionManager

log = logging.getLogger("crystal-store")

CLOSE_IGNORED = "ignored"
CLOSE_DENIED = "denied"
CLOSE_CONFIRM = "confirm"
CLOSE_CLOSED = "closed"
CLOSE_ALREADY = "already_closing"


class ClosingWorkflow:
    def __init__(
        self,
        *,
        bot,
        store: OrderStore,
        sessions: TicketSessionManager,
        store_name: str,
        invoices_dir: Path,
        log_channel_id: int = 0,
        close_command: str = "+dn",
        close_delay_seconds: int = 10,
        invoice_writer=write_invoice_async,
    ):
        self.bot = bot
        self.store = store
        self.sessions = sessions
        self.store_name = store_name
        self.invoices_dir = Path(invoices_dir)
        self.log_channel_id = int(log_channel_id or 0)
        self.close_command = close_command
        self.close_delay_seconds = max(0, int(close_delay_seconds))
        self._invoice_writer = invoice_writer
        self._deletion_tasks: set[asyncio.Task] = set()

    def is_close_command(self, message: discord.Message) -> bool:
        return str(getattr(message, "content", "") or "").strip() == self.close_command

    async def handle_message(self, message: discord.Message) -> str:
        if not self.is_close_command(message):
            return CLOSE_IGNORED
        channel = message.channel
        if not self.sessions.channel_owner_id(channel):
            return CLOSE_IGNORED
        author = message.author
        if not self.sessions.is_staff(author, channel):
            await channel.send("❌ Only staff can close tickets.")
            return CLOSE_DENIED

        if self.sessions.is_closing(channel.id):
            await channel.send("🔒 This ticket is already closing.")
            return CLOSE_ALREADY

        order = await self.store.get_by_channel_id(channel.id)
        forced = bool(order) and not is_paid(order)
        if forced and not self.sessions.request_force_close(channel.id):
            await channel.send(
                f"⚠️ Order `{order.get('id')}` is **not paid**. "
                f"Type `{self.close_command}` again to force close this ticket."
            )
            return CLOSE_CONFIRM
        self.sessions.clear_force_close(channel.id)
        if not self.sessions.begin_closing(channel.id):
            return CLOSE_ALREADY

        try:
            await channel.send(f"🔒 This ticket will be closed in {self.close_delay_seconds} seconds.")
            if order:
                await self._deliver_invoice(order)
            if self.log_channel_id:
                await post_to_channel(
                    self.bot,
                    self.log_channel_id,
                    embed=build_close_summary_embed(
                        order=order,
                        channel_name=str(getattr(channel, "name", "") or channel.id),
                        closed_by=author,
                        store_name=self.store_name,
                        forced=forced,
                    ),
                )
        except Exception:
            self.sessions.end_closing(channel.id)
            raise
        log.info(
            f"closing: channel_id={channel.id} order_id={(order or {}).get('id')} "
            f"status={(order or {}).get('status')} forced={forced} by user_id={author.id}"
        )
        self._schedule_delete(channel)
        return CLOSE_CLOSED

    async def _deliver_invoice(self, order: dict) -> None:
        try:
            path = await self._invoice_writer(order, store_name=self.store_name, invoices_dir=self.invoices_dir)
        except Exception as e:
            log.exception(f"closing: invoice render failed order_id={order.get('id')}: {e}")
            return
        try:
            uid = int(order.get("userId") or 0)
            buyer = self.bot.get_user(uid) or await self.bot.fetch_user(uid)
            await buyer.send(
                content=f"🧾 Thank you for your purchase from {self.store_name}! Your receipt is attached.",
                file=discord.File(str(path)),
            )
        except Exception as e:
            # Buyer may have DMs closed.
            log.info(f"closing: receipt DM not delivered order_id={order.get('id')}: {e}")

    def _schedule_delete(self, channel) -> None:
        task = asyncio.create_task(self._delete_later(channel))
        self._deletion_tasks.add(task)
        task.add_done_callback(self._deletion_tasks.discard)

    async def _delete_later(self, channel) -> None:
        try:
            await asyncio.sleep(self.close_delay_seconds)
            await channel.delete(reason="Crystal Store: ticket closed")
        except Exception as e:
            log.warning(f"closing: delete failed channel_id={getattr(channel, 'id', 0)}: {e}")
        finally:
            self.sessions.end_closing(channel.id)
