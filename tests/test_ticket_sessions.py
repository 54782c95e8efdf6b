import asyncio

import discord

from conftest import BUYER_ID, SUPPORT_ROLE_ID, FakeChannel, FakeMember, FakeRole
from CrystalStore.ticket_channels import (
    is_ticket_channel,
    owner_id_from_channel,
    ticket_channel_name,
    ticket_topic,
)
from CrystalStore.ticket_sessions import (
    OPEN_BUSY,
    OPEN_CREATED,
    OPEN_EXISTS,
    OPEN_FAILED,
    ExpiringLock,
    TicketSessionManager,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _manager(**kwargs) -> TicketSessionManager:
    kwargs.setdefault("support_role_id", SUPPORT_ROLE_ID)
    return TicketSessionManager(**kwargs)


def test_expiring_lock_rejects_second_acquire():
    lock = ExpiringLock(15)
    assert lock.acquire(1) is True
    assert lock.acquire(1) is False
    assert lock.acquire(2) is True


def test_expiring_lock_releases_after_ttl():
    clock = FakeClock()
    lock = ExpiringLock(15, clock=clock)
    assert lock.acquire("u")
    clock.now += 14.9
    assert lock.is_held("u")
    clock.now += 0.2
    assert not lock.is_held("u")
    assert lock.acquire("u")


def test_expiring_lock_release():
    lock = ExpiringLock(15)
    lock.acquire("u")
    lock.release("u")
    assert lock.acquire("u")


def test_channel_name_round_trips_owner():
    name = ticket_channel_name(BUYER_ID)
    assert name == f"ticket-{BUYER_ID}"
    assert owner_id_from_channel(FakeChannel(1, name)) == BUYER_ID


def test_owner_from_topic_fallback():
    ch = FakeChannel(1, "renamed-by-staff", topic=ticket_topic(user_id=BUYER_ID, user_tag="buyer#0001"))
    assert owner_id_from_channel(ch) == BUYER_ID


def test_non_ticket_channel_has_no_owner():
    assert owner_id_from_channel(FakeChannel(1, "general")) == 0
    assert not is_ticket_channel(FakeChannel(1, "ticket-abc"))


async def test_open_ticket_creates_channel(guild, buyer):
    manager = _manager()
    result = await manager.open_ticket(guild, buyer)
    assert result.status == OPEN_CREATED
    assert result.created
    assert result.channel.name == f"ticket-{BUYER_ID}"
    assert guild.create_calls == 1


async def test_open_ticket_reuses_existing_channel(guild, buyer):
    manager = _manager()
    first = await manager.open_ticket(guild, buyer)
    second = await manager.open_ticket(guild, buyer)
    assert second.status == OPEN_EXISTS
    assert second.channel is first.channel
    assert guild.create_calls == 1


async def test_concurrent_opens_create_one_channel(guild, buyer):
    manager = _manager()
    results = await asyncio.gather(*(manager.open_ticket(guild, buyer) for _ in range(3)))
    statuses = sorted(r.status for r in results)
    assert statuses.count(OPEN_CREATED) == 1
    assert set(statuses) <= {OPEN_CREATED, OPEN_BUSY}
    assert guild.create_calls == 1
    assert len(guild.channels) == 1


async def test_open_ticket_failure_releases_lock(guild, buyer):
    manager = _manager()

    async def boom(*args, **kwargs):
        raise discord.Forbidden(type("R", (), {"status": 403, "reason": "Forbidden"})(), "missing permissions")

    guild.create_text_channel = boom
    result = await manager.open_ticket(guild, buyer)
    assert result.status == OPEN_FAILED
    assert not manager._open_locks.is_held(buyer.id)


def test_is_staff_by_role_owner_and_permission(buyer, staff, ticket_channel):
    manager = _manager(owner_id=999999999999999999)
    assert manager.is_staff(staff)
    assert not manager.is_staff(buyer)
    assert manager.is_staff(FakeMember(999999999999999999, "owner"))

    mod = FakeMember(555555555555555555, "mod", roles=[FakeRole(1)])
    managed = FakeChannel(ticket_channel.id, ticket_channel.name, managers=[mod.id])
    assert manager.is_staff(mod, managed)
    assert not manager.is_staff(mod, ticket_channel)


def test_can_act_owner_or_staff(buyer, staff, stranger, ticket_channel):
    manager = _manager()
    assert manager.can_act(buyer, ticket_channel)
    assert manager.can_act(staff, ticket_channel)
    assert not manager.can_act(stranger, ticket_channel)


def test_force_close_needs_two_requests():
    manager = _manager()
    assert manager.request_force_close(42) is False
    assert manager.pending_force_close(42) == 1
    assert manager.request_force_close(42) is True
    manager.clear_force_close(42)
    assert manager.pending_force_close(42) == 0
    assert manager.request_force_close(42) is False


def test_force_close_is_tracked_per_channel():
    manager = _manager()
    manager.request_force_close(1)
    assert manager.request_force_close(2) is False
    assert manager.request_force_close(1) is True


def test_closing_is_recorded_once_per_channel():
    manager = _manager()
    assert manager.begin_closing(42) is True
    assert manager.is_closing(42)
    assert manager.begin_closing(42) is False
    assert manager.begin_closing(43) is True
    manager.end_closing(42)
    assert not manager.is_closing(42)
    assert manager.begin_closing(42) is True
