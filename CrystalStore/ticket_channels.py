from __future__ import annotations

import re
from contextlib import suppress

import discord

TICKET_PREFIX = "ticket"
TICKET_TOPIC_MARKER = "crystal_store_ticket"

_NAME_RE = re.compile(rf"^{TICKET_PREFIX}-(\d{{5,25}})$")
_TOPIC_UID_RE = re.compile(r"\buser_id=(\d{5,25})\b")


def slug_channel_name(s: str, *, max_len: int = 90) -> str:
    """Discord channel name slug (lowercase, alnum + hyphen)."""
    raw = str(s or "").strip().lower()
    out: list[str] = []
    last_dash = False
    for ch in raw:
        ok = ("a" <= ch <= "z") or ("0" <= ch <= "9")
        if ok:
            out.append(ch)
            last_dash = False
        else:
            if not last_dash:
                out.append("-")
                last_dash = True
    slug = "".join(out).strip("-")
    while "--" in slug:
        slug = slug.replace("--", "-")
    if not slug:
        slug = TICKET_PREFIX
    return slug[: int(max_len or 90)]


def ticket_channel_name(user_id: int) -> str:
    """Deterministic per-user name: the owner is recoverable from the name alone."""
    return slug_channel_name(f"{TICKET_PREFIX}-{int(user_id)}")


def ticket_topic(*, user_id: int, user_tag: str) -> str:
    return (
        f"{TICKET_TOPIC_MARKER}\n"
        f"user_id={int(user_id)}\n"
        f"user_tag={str(user_tag or '').strip()}"
    ).strip()[:950]


def owner_id_from_channel(channel: object) -> int:
    """Ticket owner's user id from the channel name (topic as fallback); 0 if not a ticket."""
    name = str(getattr(channel, "name", "") or "").strip().lower()
    m = _NAME_RE.match(name)
    if m:
        return int(m.group(1))
    topic = str(getattr(channel, "topic", "") or "")
    if TICKET_TOPIC_MARKER in topic:
        m2 = _TOPIC_UID_RE.search(topic)
        if m2:
            return int(m2.group(1))
    return 0


def is_ticket_channel(channel: object) -> bool:
    return owner_id_from_channel(channel) > 0


def build_overwrites(
    *,
    guild: discord.Guild,
    owner: discord.abc.Snowflake,
    support_role_id: int,
) -> dict[discord.abc.Snowflake, discord.PermissionOverwrite]:
    overwrites: dict[discord.abc.Snowflake, discord.PermissionOverwrite] = {}
    overwrites[guild.default_role] = discord.PermissionOverwrite(view_channel=False)

    me = getattr(guild, "me", None)
    if me is not None:
        overwrites[me] = discord.PermissionOverwrite(
            view_channel=True,
            send_messages=True,
            read_message_history=True,
            manage_channels=True,
            manage_messages=True,
            embed_links=True,
            attach_files=True,
        )

    if int(support_role_id or 0) > 0:
        role = guild.get_role(int(support_role_id))
        if role:
            overwrites[role] = discord.PermissionOverwrite(view_channel=True, send_messages=True, read_message_history=True)

    overwrites[owner] = discord.PermissionOverwrite(
        view_channel=True,
        send_messages=True,
        read_message_history=True,
        attach_files=True,
    )
    return overwrites


async def find_ticket_channel(guild: discord.Guild, user_id: int):
    """Fresh (non-cached) lookup of an existing ticket channel for a user.

    Fetches the guild's channel list from the API so a channel created moments
    ago by another handler is seen even before the gateway cache catches up.
    """
    uid = int(user_id or 0)
    if uid <= 0:
        return None
    channels = await guild.fetch_channels()
    for ch in channels:
        if getattr(ch, "type", None) != discord.ChannelType.text:
            continue
        if owner_id_from_channel(ch) == uid:
            return ch
    return None


async def create_ticket_channel(
    *,
    guild: discord.Guild,
    owner: discord.Member,
    category_id: int,
    support_role_id: int,
    reason: str = "Crystal Store: open ticket",
):
    """Create the private ticket channel (under the category when it resolves)."""
    category = None
    if int(category_id or 0) > 0:
        with suppress(Exception):
            category = guild.get_channel(int(category_id))
        if category is None:
            with suppress(Exception):
                category = await guild.fetch_channel(int(category_id))
        if not isinstance(category, discord.CategoryChannel):
            category = None

    return await guild.create_text_channel(
        name=ticket_channel_name(int(owner.id)),
        category=category,
        topic=ticket_topic(user_id=int(owner.id), user_tag=str(owner)),
        overwrites=build_overwrites(guild=guild, owner=owner, support_role_id=support_role_id),
        reason=reason,
    )
