"""
Ticket sessions
---------------
One open ticket channel per user, who may act inside a ticket, and the
force-close confirmation record for unpaid orders, and which channels
are already closing.

State here is in-memory and per-process (lost on restart).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Hashable

import discord

from CrystalStore.ticket_channels import create_ticket_channel as _create_ticket_channel
from CrystalStore.ticket_channels import find_ticket_channel as _find_ticket_channel
from CrystalStore.ticket_channels import owner_id_from_channel as _owner_id_from_channel

log = logging.getLogger("crystal-store")

OPEN_CREATED = "created"
OPEN_EXISTS = "exists"
OPEN_BUSY = "busy"
OPEN_FAILED = "failed"


class ExpiringLock:
    """Per-key mutual exclusion that releases itself after `ttl_seconds`.

    A second acquire for a held key fails immediately instead of waiting; a
    handler that dies without releasing only blocks the key until expiry.
    """

    def __init__(self, ttl_seconds: float = 15.0, *, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._held: dict[Hashable, float] = {}

    def _purge(self) -> None:
        now = self._clock()
        for key in [k for k, exp in self._held.items() if exp <= now]:
            self._held.pop(key, None)

    def acquire(self, key: Hashable) -> bool:
        self._purge()
        if key in self._held:
            return False
        self._held[key] = self._clock() + self.ttl_seconds
        return True

    def release(self, key: Hashable) -> None:
        self._held.pop(key, None)

    def is_held(self, key: Hashable) -> bool:
        self._purge()
        return key in self._held


@dataclass
class TicketOpenResult:
    status: str
    channel: object | None = None
    error: str = ""

    @property
    def created(self) -> bool:
        return self.status == OPEN_CREATED


class TicketSessionManager:
    """Ticket creation guard, access checks and force-close confirmations."""

    def __init__(
        self,
        *,
        category_id: int = 0,
        support_role_id: int = 0,
        owner_id: int = 0,
        lock_seconds: float = 15.0,
    ):
        self.category_id = int(category_id or 0)
        self.support_role_id = int(support_role_id or 0)
        self.owner_id = int(owner_id or 0)
        self._open_locks = ExpiringLock(lock_seconds)
        self._force_close_requests: dict[int, int] = {}
        self._closing: set[int] = set()

    # -----------------------------
    # Opening
    # -----------------------------
    async def open_ticket(self, guild: discord.Guild, member: discord.Member) -> TicketOpenResult:
        uid = int(member.id)
        if not self._open_locks.acquire(uid):
            log.info(f"tickets: open already in progress for user_id={uid}")
            return TicketOpenResult(OPEN_BUSY)
        try:
            existing = await _find_ticket_channel(guild, uid)
            if existing is not None:
                log.info(f"tickets: user_id={uid} already has channel_id={getattr(existing, 'id', 0)}")
                return TicketOpenResult(OPEN_EXISTS, channel=existing)
            channel = await _create_ticket_channel(
                guild=guild,
                owner=member,
                category_id=self.category_id,
                support_role_id=self.support_role_id,
            )
            log.info(f"tickets: created channel_id={getattr(channel, 'id', 0)} for user_id={uid}")
            return TicketOpenResult(OPEN_CREATED, channel=channel)
        except discord.HTTPException as e:
            log.error(f"tickets: failed to open ticket for user_id={uid}: {e}")
            return TicketOpenResult(OPEN_FAILED, error=str(e))
        finally:
            self._open_locks.release(uid)

    # -----------------------------
    # Access control
    # -----------------------------
    @staticmethod
    def channel_owner_id(channel: object) -> int:
        return _owner_id_from_channel(channel)

    def is_staff(self, member: object, channel: object | None = None) -> bool:
        uid = int(getattr(member, "id", 0) or 0)
        if self.owner_id and uid == self.owner_id:
            return True
        try:
            rids = {int(r.id) for r in (getattr(member, "roles", None) or [])}
        except Exception:
            rids = set()
        if self.support_role_id and self.support_role_id in rids:
            return True
        if channel is not None and hasattr(channel, "permissions_for"):
            try:
                perms = channel.permissions_for(member)
                if bool(getattr(perms, "manage_channels", False)):
                    return True
            except Exception:
                pass
        return False

    def can_act(self, member: object, channel: object) -> bool:
        """Channel owner or staff."""
        owner = _owner_id_from_channel(channel)
        if owner and int(getattr(member, "id", 0) or 0) == owner:
            return True
        return self.is_staff(member, channel)

    # -----------------------------
    # Force-close confirmation
    # -----------------------------
    def request_force_close(self, channel_id: int) -> bool:
        """Record a close request for an unpaid order; True once it has been asked twice."""
        cid = int(channel_id)
        count = self._force_close_requests.get(cid, 0) + 1
        self._force_close_requests[cid] = count
        return count >= 2

    def clear_force_close(self, channel_id: int) -> None:
        self._force_close_requests.pop(int(channel_id), None)

    def pending_force_close(self, channel_id: int) -> int:
        return self._force_close_requests.get(int(channel_id), 0)

    # -----------------------------
    # Closing
    # -----------------------------
    def begin_closing(self, channel_id: int) -> bool:
        """Mark a channel as closing; False if a close is already under way."""
        cid = int(channel_id)
        if cid in self._closing:
            return False
        self._closing.add(cid)
        return True

    def end_closing(self, channel_id: int) -> None:
        self._closing.discard(int(channel_id))

    def is_closing(self, channel_id: int) -> bool:
        return int(channel_id) in self._closing
