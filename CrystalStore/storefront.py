"""
Storefront
----------
Component interaction routing: open ticket -> pick product -> pick payment
method -> pay link.

Canonical Owner: this module owns order creation and the recording of
payment sessions on orders. Marking orders paid belongs to the webhook
reconciler.
"""

from __future__ import annotations

import logging
from contextlib import suppress
from typing import Dict

import discord

from CrystalStore.catalog import Catalog
from CrystalStore.notifications import post_to_channel
from CrystalStore.order_store import OrderStore, is_paid, new_order
from CrystalStore.payment_gateways import (
    METHOD_CARD,
    METHOD_CRYPTO,
    CallbackConfig,
    GatewayError,
    gateway_for,
)
from CrystalStore.store_embeds import (
    build_panel_embed,
    build_payment_picker_embed,
    build_product_picker_embed,
)
from CrystalStore.store_utils import fmt_money
from CrystalStore.ticket_sessions import OPEN_BUSY, OPEN_CREATED, OPEN_EXISTS, TicketSessionManager
from CrystalStore.views import (
    PayLinkView,
    PaymentMethodView,
    ProductPickerView,
    TicketPanelView,
    parse_custom_id,
)

log = logging.getLogger("crystal-store")

GENERIC_ERROR = "❌ Something went wrong. Please try again or contact staff."
NOT_ALLOWED = "❌ Only the ticket owner or staff can do this."


class StoreFront:
    def __init__(
        self,
        *,
        bot,
        store: OrderStore,
        catalog: Catalog,
        sessions: TicketSessionManager,
        gateways: Dict[str, object],
        store_name: str,
        public_base_url: str = "",
        log_channel_id: int = 0,
    ):
        self.bot = bot
        self.store = store
        self.catalog = catalog
        self.sessions = sessions
        self.gateways = gateways
        self.store_name = store_name
        self.public_base_url = public_base_url
        self.log_channel_id = int(log_channel_id or 0)

    @property
    def payment_methods(self) -> list[str]:
        return [m for m in (METHOD_CARD, METHOD_CRYPTO) if m in self.gateways]

    # -----------------------------
    # Entry points
    # -----------------------------
    async def post_panel(self, channel) -> None:
        await channel.send(embed=build_panel_embed(self.store_name), view=TicketPanelView())

    async def handle_interaction(self, interaction: discord.Interaction) -> bool:
        """Route a component click; False when the custom_id is not ours."""
        if interaction.type != discord.InteractionType.component:
            return False
        data = interaction.data if isinstance(interaction.data, dict) else {}
        kind, args = parse_custom_id(str(data.get("custom_id") or ""))
        if kind not in ("open", "prod", "pay") or (kind != "open" and not args):
            return False
        try:
            if kind == "open":
                await self.open_ticket(interaction)
            elif kind == "prod":
                await self.select_product(interaction, args[0])
            else:
                await self.select_payment(interaction, args[0], args[1] if len(args) > 1 else "")
        except Exception as e:
            log.exception(f"storefront: {kind} interaction failed user_id={getattr(interaction.user, 'id', 0)}: {e}")
            with suppress(Exception):
                await self._reply(interaction, GENERIC_ERROR)
        return True

    # -----------------------------
    # Handlers
    # -----------------------------
    async def open_ticket(self, interaction: discord.Interaction) -> None:
        guild = interaction.guild
        member = interaction.user
        if guild is None:
            await self._reply(interaction, "❌ Tickets can only be opened inside the server.")
            return
        # Channel creation can outlast the 3s interaction window.
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.sessions.open_ticket(guild, member)

        if result.status == OPEN_BUSY:
            await self._reply(interaction, "⏳ Your ticket is being created, please wait a moment.")
            return
        if result.status == OPEN_EXISTS:
            await self._reply(interaction, f"📌 You already have a ticket: {result.channel.mention}")
            return
        if result.status != OPEN_CREATED:
            await self._reply(interaction, "❌ Could not open a ticket right now. Please contact staff.")
            return

        channel = result.channel
        await self._reply(interaction, f"✅ Ticket opened: {channel.mention}")
        await channel.send(
            content=member.mention,
            embed=build_product_picker_embed(store_name=self.store_name, owner_mention=member.mention),
            view=ProductPickerView(self.catalog),
        )
        if self.log_channel_id:
            await post_to_channel(self.bot, self.log_channel_id, f"🎫 Ticket opened: {channel.mention} by {member} (`{member.id}`)")

    async def select_product(self, interaction: discord.Interaction, product_id: str) -> None:
        channel = interaction.channel
        if not self.sessions.can_act(interaction.user, channel):
            await self._reply(interaction, NOT_ALLOWED)
            return
        product = self.catalog.get(product_id)
        if product is None:
            await self._reply(interaction, "❌ Product not found.")
            return

        existing = await self.store.get_by_channel_id(channel.id)
        if is_paid(existing):
            await self._reply(interaction, "✅ The order in this ticket is already paid.")
            return
        if existing:
            log.info(f"storefront: channel_id={channel.id} already has pending order_id={existing.get('id')}; re-offering")
            await self._offer_payment(interaction, existing, note="You already have a pending order in this ticket.")
            return

        owner_id = self.sessions.channel_owner_id(channel) or int(interaction.user.id)
        order = new_order(
            guild_id=getattr(interaction.guild, "id", "") or "",
            channel_id=channel.id,
            user_id=owner_id,
            user_tag=self._owner_tag(interaction, owner_id),
            product=product.snapshot(),
        )
        order = await self.store.upsert(order)
        log.info(f"storefront: order_id={order['id']} created product={product.id} channel_id={channel.id}")
        await self._offer_payment(interaction, order)

    async def select_payment(self, interaction: discord.Interaction, method: str, order_id: str) -> None:
        channel = interaction.channel
        if not self.sessions.can_act(interaction.user, channel):
            await self._reply(interaction, NOT_ALLOWED)
            return
        gateway = gateway_for(self.gateways, method)
        if gateway is None:
            await self._reply(interaction, "❌ This payment method is not available.")
            return
        order = await self.store.get_by_id(order_id)
        if order is None:
            await self._reply(interaction, "❌ Order not found.")
            return
        if str(order.get("channelId") or "") != str(channel.id):
            await self._reply(interaction, "❌ This order belongs to another ticket.")
            return
        if is_paid(order):
            await self._reply(interaction, "✅ This order is already paid.")
            return

        # The deferred reply is public in the ticket; the link and any gateway error both land there.
        await interaction.response.defer(thinking=True)
        callbacks = CallbackConfig.for_provider(self.public_base_url, gateway.provider)
        try:
            session = await gateway.create_payment_session(order, callbacks)
        except GatewayError as e:
            log.warning(f"storefront: {gateway.provider} session failed order_id={order_id}: {e}")
            await self._reply(interaction, f"❌ Could not create the payment link: {e}", ephemeral=False)
            return

        payment = dict(order.get("payment") or {})
        payment.update(session.payment_fields())
        await self.store.upsert({"id": order["id"], "payment": payment})

        product = order.get("product") or {}
        await self._reply(
            interaction,
            f"💳 Pay **{fmt_money(product.get('price'))}** for **{product.get('name')}** with the button below.\n"
            "This ticket is updated automatically once the payment is confirmed.",
            view=PayLinkView(session.checkout_url),
            ephemeral=False,
        )

    # -----------------------------
    # Helpers
    # -----------------------------
    async def _offer_payment(self, interaction: discord.Interaction, order: dict, *, note: str = "") -> None:
        methods = self.payment_methods
        if not methods:
            await self._reply(interaction, "❌ No payment methods are configured. Please contact staff.")
            return
        await self._reply(
            interaction,
            note or None,
            embed=build_payment_picker_embed(order),
            view=PaymentMethodView(str(order["id"]), methods),
            ephemeral=False,
        )

    @staticmethod
    def _owner_tag(interaction: discord.Interaction, owner_id: int) -> str:
        if int(interaction.user.id) == int(owner_id):
            return str(interaction.user)
        guild = interaction.guild
        member = guild.get_member(int(owner_id)) if guild is not None else None
        return str(member) if member is not None else ""

    @staticmethod
    async def _reply(
        interaction: discord.Interaction,
        content: str | None = None,
        *,
        embed: discord.Embed | None = None,
        view: discord.ui.View | None = None,
        ephemeral: bool = True,
    ) -> None:
        kwargs: dict = {"content": content, "ephemeral": ephemeral}
        if embed is not None:
            kwargs["embed"] = embed
        if view is not None:
            kwargs["view"] = view
        if interaction.response.is_done():
            await interaction.followup.send(**kwargs)
        else:
            await interaction.response.send_message(**kwargs)
