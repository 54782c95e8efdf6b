#!/usr/bin/env python3
"""
Crystal Store
-------------
Discord ticket storefront: one Bot process hosting the Discord client and
the aiohttp webhook server on the same event loop.
"""

import argparse
import asyncio
import logging
import sys
from contextlib import suppress
from typing import Optional

import discord
from aiohttp import web
from discord import app_commands
from discord.ext import commands

from CrystalStore.catalog import Catalog
from CrystalStore.closing import ClosingWorkflow
from CrystalStore.notifications import PaidNotifier, resolve_channel
from CrystalStore.order_store import OrderStore
from CrystalStore.payment_gateways import build_gateways
from CrystalStore.settings import BASE_DIR, StoreConfig, build_store_config
from CrystalStore.storefront import StoreFront
from CrystalStore.ticket_sessions import TicketSessionManager
from CrystalStore.webhook_reconciler import WebhookReconciler, start_http_server
from store_config import ConfigError, load_config_with_secrets

log = logging.getLogger("crystal-store")


class CrystalStoreBot:
    """Wires the store services onto a discord.py Bot."""

    def __init__(self, cfg: StoreConfig, catalog: Catalog):
        self.cfg = cfg
        self.catalog = catalog

        intents = discord.Intents.default()
        intents.guilds = True
        intents.messages = True
        intents.message_content = True
        self.bot = commands.Bot(command_prefix="!", intents=intents)

        self.store = OrderStore(cfg.orders_path)
        self.sessions = TicketSessionManager(
            category_id=cfg.ticket_category_id,
            support_role_id=cfg.support_role_id,
            owner_id=cfg.owner_id,
            lock_seconds=cfg.ticket_lock_seconds,
        )
        self.gateways = build_gateways(
            stripe_secret_key=cfg.stripe_secret_key,
            cryptomus_merchant_id=cfg.cryptomus_merchant_id,
            cryptomus_api_key=cfg.cryptomus_api_key,
        )
        self.storefront = StoreFront(
            bot=self.bot,
            store=self.store,
            catalog=catalog,
            sessions=self.sessions,
            gateways=self.gateways,
            store_name=cfg.store_name,
            public_base_url=cfg.public_base_url,
            log_channel_id=cfg.log_channel_id,
        )
        self.closing = ClosingWorkflow(
            bot=self.bot,
            store=self.store,
            sessions=self.sessions,
            store_name=cfg.store_name,
            invoices_dir=cfg.invoices_dir,
            log_channel_id=cfg.log_channel_id,
            close_command=cfg.close_command,
            close_delay_seconds=cfg.close_delay_seconds,
        )
        self.reconciler = WebhookReconciler(
            self.store,
            notify_paid=PaidNotifier(self.bot, store_name=cfg.store_name, log_channel_id=cfg.log_channel_id),
            stripe_webhook_secret=cfg.stripe_webhook_secret,
            cryptomus_webhook_secret=cfg.cryptomus_webhook_secret,
        )
        self._http_runner: Optional[web.AppRunner] = None
        self._panel_posted = False

        self.bot.setup_hook = self._setup_hook
        self._setup_events()
        self._setup_commands()

    # -----------------------------
    # Startup
    # -----------------------------
    async def _setup_hook(self) -> None:
        asyncio.get_running_loop().set_exception_handler(_loop_exception_handler)
        self._http_runner = await start_http_server(
            self.reconciler.build_app(),
            host=self.cfg.http_host,
            port=self.cfg.http_port,
        )
        try:
            if self.cfg.guild_id:
                guild = discord.Object(id=self.cfg.guild_id)
                self.bot.tree.copy_global_to(guild=guild)
                synced = await self.bot.tree.sync(guild=guild)
            else:
                synced = await self.bot.tree.sync()
            log.info(f"Synced {len(synced)} slash command(s)")
        except discord.HTTPException as e:
            log.error(f"Slash command sync failed: {e}")

    def _setup_events(self) -> None:
        @self.bot.event
        async def on_ready():
            log.info(f"Logged in as {self.bot.user} (id={getattr(self.bot.user, 'id', 0)})")
            log.info(f"Products: {len(self.catalog)} | payment methods: {', '.join(self.storefront.payment_methods) or 'none'}")
            if self.cfg.panel_channel_id and not self._panel_posted:
                self._panel_posted = True
                channel = await resolve_channel(self.bot, self.cfg.panel_channel_id)
                if channel is None:
                    log.warning(f"panel: channel_id={self.cfg.panel_channel_id} not found")
                    return
                try:
                    await self.storefront.post_panel(channel)
                    log.info(f"panel: posted to channel_id={self.cfg.panel_channel_id}")
                except discord.HTTPException as e:
                    log.warning(f"panel: post failed channel_id={self.cfg.panel_channel_id}: {e}")

        @self.bot.event
        async def on_interaction(interaction: discord.Interaction):
            await self.storefront.handle_interaction(interaction)

        @self.bot.event
        async def on_message(message: discord.Message):
            if message.author.bot or message.guild is None:
                return
            try:
                await self.closing.handle_message(message)
            except Exception as e:
                log.exception(f"closing: failed in channel_id={message.channel.id}: {e}")
                with suppress(discord.HTTPException):
                    await message.channel.send("❌ Something went wrong while closing this ticket.")

        @self.bot.event
        async def on_error(event_method: str, *args, **kwargs):
            log.exception(f"Unhandled error in {event_method}")

    def _setup_commands(self) -> None:
        @self.bot.tree.command(name="panel", description="Post the Open Ticket panel in this channel")
        @app_commands.default_permissions(administrator=True)
        @app_commands.guild_only()
        async def panel(interaction: discord.Interaction):
            perms = getattr(interaction.user, "guild_permissions", None)
            if not (perms and perms.administrator):
                await interaction.response.send_message("❌ Administrators only.", ephemeral=True)
                return
            try:
                await self.storefront.post_panel(interaction.channel)
            except discord.HTTPException as e:
                log.warning(f"panel: post failed channel_id={getattr(interaction.channel, 'id', 0)}: {e}")
                await interaction.response.send_message("❌ Could not post the panel here.", ephemeral=True)
                return
            await interaction.response.send_message("✅ Panel posted.", ephemeral=True)

    # -----------------------------
    # Run
    # -----------------------------
    async def start(self) -> None:
        async with self.bot:
            try:
                await self.bot.start(self.cfg.bot_token)
            finally:
                if self._http_runner is not None:
                    await self._http_runner.cleanup()
                    log.info("HTTP server stopped")


def _loop_exception_handler(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    exc = context.get("exception")
    log.error(f"Unhandled task error: {context.get('message')}", exc_info=exc)


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(add_help=True)
    parser.add_argument("--check-config", action="store_true", help="Validate config + secrets and exit (no Discord connection).")
    args = parser.parse_args()

    if args.check_config:
        from check_store_config import run as run_check

        raise SystemExit(run_check(BASE_DIR))

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    try:
        raw_cfg, config_path, _secrets_path = load_config_with_secrets(BASE_DIR)
    except ConfigError as e:
        log.error(str(e))
        sys.exit(2)
    cfg = build_store_config(raw_cfg)
    if not cfg.bot_token:
        log.error("bot_token not found in config.secrets.json / DISCORD_TOKEN (server-only)")
        sys.exit(2)
    try:
        catalog = Catalog.from_file(cfg.products_path)
    except RuntimeError as e:
        log.error(str(e))
        sys.exit(2)
    log.info(f"Loaded config from {config_path}; {len(catalog)} product(s)")

    app = CrystalStoreBot(cfg, catalog)
    try:
        asyncio.run(app.start())
    except KeyboardInterrupt:
        log.info("Stopped")


if __name__ == "__main__":
    main()
