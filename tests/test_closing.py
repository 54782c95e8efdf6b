import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from conftest import SUPPORT_ROLE_ID, FakeChannel
from CrystalStore.closing import (
    CLOSE_ALREADY,
    CLOSE_CLOSED,
    CLOSE_CONFIRM,
    CLOSE_DENIED,
    CLOSE_IGNORED,
    ClosingWorkflow,
)
from CrystalStore.order_store import new_order
from CrystalStore.ticket_sessions import TicketSessionManager

LOG_CHANNEL_ID = 700000000000000001


@pytest.fixture
def log_channel(fake_bot):
    ch = FakeChannel(LOG_CHANNEL_ID, "store-log")
    fake_bot.channels[LOG_CHANNEL_ID] = ch
    return ch


@pytest.fixture
def invoice_writer(tmp_path):
    async def _write(order, *, store_name, invoices_dir):
        path = tmp_path / f"{order['id'][:8]}.pdf"
        path.write_bytes(b"%PDF-1.4 test")
        return path

    return AsyncMock(side_effect=_write)


@pytest.fixture
def workflow(fake_bot, store, invoice_writer, log_channel, buyer):
    fake_bot.users[buyer.id] = buyer
    return ClosingWorkflow(
        bot=fake_bot,
        store=store,
        sessions=TicketSessionManager(support_role_id=SUPPORT_ROLE_ID),
        store_name="Crystal Store",
        invoices_dir="invoices",
        log_channel_id=LOG_CHANNEL_ID,
        close_delay_seconds=0,
        invoice_writer=invoice_writer,
    )


def _message(content, *, channel, author):
    return SimpleNamespace(content=content, channel=channel, author=author, guild=SimpleNamespace(id=1))


async def _order_for(store, channel, buyer, *, paid=False):
    order = new_order(
        guild_id=1,
        channel_id=channel.id,
        user_id=buyer.id,
        user_tag=str(buyer),
        product={"id": "gold", "name": "Gold Pack", "price": 9.99},
    )
    await store.upsert(order)
    if paid:
        order = await store.mark_paid(order["id"], {"method": "card", "paidAmount": "$9.99", "transactionId": "pi_1"})
    return order


async def _drain(workflow):
    await asyncio.gather(*list(workflow._deletion_tasks))


async def test_other_messages_are_ignored(workflow, ticket_channel, staff):
    assert await workflow.handle_message(_message("hello", channel=ticket_channel, author=staff)) == CLOSE_IGNORED
    assert await workflow.handle_message(_message("+dn now", channel=ticket_channel, author=staff)) == CLOSE_IGNORED
    assert ticket_channel.sent == []


async def test_close_outside_ticket_channel_is_ignored(workflow, staff):
    general = FakeChannel(1, "general")
    assert await workflow.handle_message(_message("+dn", channel=general, author=staff)) == CLOSE_IGNORED
    assert general.sent == []


async def test_non_staff_cannot_close(workflow, ticket_channel, buyer):
    outcome = await workflow.handle_message(_message("+dn", channel=ticket_channel, author=buyer))
    assert outcome == CLOSE_DENIED
    assert "Only staff" in ticket_channel.sent[-1]["content"]
    assert not ticket_channel.deleted


async def test_unpaid_order_needs_confirmation(workflow, store, ticket_channel, staff, buyer, invoice_writer):
    await _order_for(store, ticket_channel, buyer)
    outcome = await workflow.handle_message(_message("+dn", channel=ticket_channel, author=staff))
    assert outcome == CLOSE_CONFIRM
    assert "not paid" in ticket_channel.sent[-1]["content"]
    await asyncio.sleep(0)
    assert not ticket_channel.deleted
    invoice_writer.assert_not_awaited()


async def test_unpaid_order_force_closes_on_second_request(
    workflow, store, ticket_channel, staff, buyer, invoice_writer, log_channel
):
    order = await _order_for(store, ticket_channel, buyer)
    await workflow.handle_message(_message("+dn", channel=ticket_channel, author=staff))
    outcome = await workflow.handle_message(_message("+dn", channel=ticket_channel, author=staff))
    assert outcome == CLOSE_CLOSED
    await _drain(workflow)

    assert ticket_channel.deleted
    invoice_writer.assert_awaited_once()
    assert invoice_writer.await_args.args[0]["id"] == order["id"]
    assert len(buyer.dms) == 1
    summary = log_channel.sent[-1]["embed"]
    assert summary.title == "🔒 Ticket closed"
    assert workflow.sessions.pending_force_close(ticket_channel.id) == 0


async def test_paid_order_closes_immediately_with_receipt(
    workflow, store, ticket_channel, staff, buyer, invoice_writer, log_channel
):
    await _order_for(store, ticket_channel, buyer, paid=True)
    outcome = await workflow.handle_message(_message("+dn", channel=ticket_channel, author=staff))
    assert outcome == CLOSE_CLOSED
    assert "closed in 0 seconds" in ticket_channel.sent[0]["content"]
    await _drain(workflow)

    assert ticket_channel.deleted
    invoice_writer.assert_awaited_once()
    dm = buyer.dms[0]
    assert dm["file"].filename.endswith(".pdf")
    assert log_channel.sent[-1]["embed"].title == "🧾 Order completed"


async def test_no_order_is_a_plain_close(workflow, ticket_channel, staff, invoice_writer, log_channel):
    outcome = await workflow.handle_message(_message("+dn", channel=ticket_channel, author=staff))
    assert outcome == CLOSE_CLOSED
    await _drain(workflow)
    assert ticket_channel.deleted
    invoice_writer.assert_not_awaited()
    assert log_channel.sent


async def test_closed_dms_do_not_block_close(workflow, store, ticket_channel, staff, buyer):
    await _order_for(store, ticket_channel, buyer, paid=True)
    buyer.send = AsyncMock(side_effect=RuntimeError("Cannot send messages to this user"))
    outcome = await workflow.handle_message(_message("+dn", channel=ticket_channel, author=staff))
    assert outcome == CLOSE_CLOSED
    await _drain(workflow)
    assert ticket_channel.deleted


async def test_invoice_failure_does_not_block_close(workflow, store, ticket_channel, staff, buyer, invoice_writer):
    await _order_for(store, ticket_channel, buyer, paid=True)
    invoice_writer.side_effect = OSError("disk full")
    outcome = await workflow.handle_message(_message("+dn", channel=ticket_channel, author=staff))
    assert outcome == CLOSE_CLOSED
    await _drain(workflow)
    assert ticket_channel.deleted
    assert buyer.dms == []


async def test_delete_failure_is_tolerated(workflow, ticket_channel, staff):
    ticket_channel.delete = AsyncMock(side_effect=RuntimeError("already gone"))
    await workflow.handle_message(_message("+dn", channel=ticket_channel, author=staff))
    await _drain(workflow)
    ticket_channel.delete.assert_awaited_once()


async def test_repeated_close_during_countdown_runs_once(
    workflow, store, ticket_channel, staff, buyer, invoice_writer, log_channel
):
    await _order_for(store, ticket_channel, buyer, paid=True)
    workflow.close_delay_seconds = 10
    first = await workflow.handle_message(_message("+dn", channel=ticket_channel, author=staff))
    second = await workflow.handle_message(_message("+dn", channel=ticket_channel, author=staff))
    try:
        assert first == CLOSE_CLOSED
        assert second == CLOSE_ALREADY
        assert "already closing" in ticket_channel.sent[-1]["content"]
        invoice_writer.assert_awaited_once()
        assert len(buyer.dms) == 1
        assert len(log_channel.sent) == 1
        assert len(workflow._deletion_tasks) == 1
    finally:
        for task in workflow._deletion_tasks:
            task.cancel()
        await asyncio.gather(*list(workflow._deletion_tasks), return_exceptions=True)
    assert workflow.sessions.is_closing(ticket_channel.id) is False


async def test_close_can_be_retried_after_delete_fails(workflow, ticket_channel, staff):
    ticket_channel.delete = AsyncMock(side_effect=RuntimeError("missing permissions"))
    await workflow.handle_message(_message("+dn", channel=ticket_channel, author=staff))
    await _drain(workflow)
    assert await workflow.handle_message(_message("+dn", channel=ticket_channel, author=staff)) == CLOSE_CLOSED
    await _drain(workflow)
    assert ticket_channel.delete.await_count == 2
