"""
Order Store
-----------
JSON-file order records (`data/orders.json`, shaped {"orders": [...]}).

Canonical Owner: this module owns every read/write of the orders file.
The file is loaded whole and rewritten whole (atomic tmp + replace) on each
mutation. File access runs in a worker thread; an in-process asyncio.Lock
serialises load -> mutate -> save so coroutines in this process never lose
each other's updates.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from pathlib import Path

from CrystalStore.store_utils import load_json as _load_json
from CrystalStore.store_utils import now_iso as _now_iso
from CrystalStore.store_utils import parse_dt_any as _parse_dt_any
from CrystalStore.store_utils import save_json as _save_json

log = logging.getLogger("crystal-store")

STATUS_PENDING = "pending"
STATUS_PAID = "paid"

PAYMENT_KEYS = ("method", "provider", "url", "transactionId", "paidAmount")


class OrderNotFound(Exception):
    """Raised when an order id is not present in the store."""

    def __init__(self, order_id: str):
        super().__init__(f"Order not found: {order_id}")
        self.order_id = order_id


def new_order(
    *,
    guild_id: int | str,
    channel_id: int | str,
    user_id: int | str,
    user_tag: str,
    product: dict,
) -> dict:
    """Fresh pending order with a product snapshot (not yet persisted)."""
    return {
        "id": str(uuid.uuid4()),
        "status": STATUS_PENDING,
        "createdAt": _now_iso(),
        "paidAt": None,
        "guildId": str(guild_id),
        "channelId": str(channel_id),
        "userId": str(user_id),
        "userTag": str(user_tag or ""),
        "product": {
            "id": str(product.get("id") or ""),
            "name": str(product.get("name") or ""),
            "price": float(product.get("price") or 0),
        },
        "payment": {k: None for k in PAYMENT_KEYS},
    }


def is_paid(order: dict | None) -> bool:
    return bool(order) and str(order.get("status") or "").strip().lower() == STATUS_PAID


class OrderStore:
    """Order records keyed by id, looked up by id or by ticket channel."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    # -----------------------------
    # File I/O
    # -----------------------------
    def _load(self) -> dict:
        raw = _load_json(self.path)
        orders = raw.get("orders")
        if not isinstance(orders, list):
            raw["orders"] = []
        else:
            raw["orders"] = [o for o in orders if isinstance(o, dict)]
        return raw

    def _save(self, db: dict) -> None:
        _save_json(self.path, db)

    async def _read(self) -> dict:
        return await asyncio.to_thread(self._load)

    async def _write(self, db: dict) -> None:
        await asyncio.to_thread(self._save, db)

    @staticmethod
    def _index_of(db: dict, order_id: str) -> int:
        oid = str(order_id or "").strip()
        for i, rec in enumerate(db["orders"]):
            if str(rec.get("id") or "") == oid:
                return i
        return -1

    # -----------------------------
    # Public API
    # -----------------------------
    async def upsert(self, order: dict) -> dict:
        """Insert a new order or shallow-merge fields over the stored one."""
        oid = str((order or {}).get("id") or "").strip()
        if not oid:
            raise ValueError("order must carry an id")
        async with self._lock:
            db = await self._read()
            idx = self._index_of(db, oid)
            if idx == -1:
                stored = copy.deepcopy(order)
                db["orders"].append(stored)
            else:
                stored = dict(db["orders"][idx])
                for k, v in order.items():
                    # Product snapshot is frozen at creation.
                    if k in ("id", "product"):
                        continue
                    stored[k] = copy.deepcopy(v)
                db["orders"][idx] = stored
            await self._write(db)
            return copy.deepcopy(stored)

    async def get_by_id(self, order_id: str) -> dict | None:
        async with self._lock:
            db = await self._read()
            idx = self._index_of(db, order_id)
            return copy.deepcopy(db["orders"][idx]) if idx != -1 else None

    async def get_by_channel_id(self, channel_id: int | str) -> dict | None:
        """Most recent order created in a channel (there should only ever be one)."""
        async with self._lock:
            matches = self._channel_matches(await self._read(), channel_id)
        if not matches:
            return None
        if len(matches) > 1:
            log.warning(f"order_store: {len(matches)} orders share channel_id={channel_id}; using most recent")
        return copy.deepcopy(matches[-1])

    async def get_pending_by_channel_id(self, channel_id: int | str) -> dict | None:
        async with self._lock:
            matches = self._channel_matches(await self._read(), channel_id)
        pending = [o for o in matches if not is_paid(o)]
        return copy.deepcopy(pending[-1]) if pending else None

    async def mark_paid(self, order_id: str, payment_fields: dict) -> dict:
        order, _newly_paid = await self.transition_to_paid(order_id, payment_fields)
        return order

    async def transition_to_paid(self, order_id: str, payment_fields: dict) -> tuple[dict, bool]:
        """Mark an order paid; returns (order, newly_paid).

        Repeating the call is harmless: status stays paid and the original
        paidAt is kept, so the stored state matches a single call.
        """
        async with self._lock:
            db = await self._read()
            idx = self._index_of(db, order_id)
            if idx == -1:
                raise OrderNotFound(str(order_id))
            rec = dict(db["orders"][idx])
            newly_paid = not is_paid(rec)
            rec["status"] = STATUS_PAID
            if newly_paid or not rec.get("paidAt"):
                rec["paidAt"] = _now_iso()
            payment = dict(rec.get("payment") or {})
            for k, v in (payment_fields or {}).items():
                if v is not None:
                    payment[k] = v
            rec["payment"] = payment
            db["orders"][idx] = rec
            await self._write(db)
            return copy.deepcopy(rec), newly_paid

    @staticmethod
    def _channel_matches(db: dict, channel_id: int | str) -> list[dict]:
        cid = str(channel_id or "").strip()
        indexed = [(i, o) for i, o in enumerate(db["orders"]) if str(o.get("channelId") or "") == cid]

        def _key(item: tuple[int, dict]):
            i, o = item
            dt = _parse_dt_any(o.get("createdAt"))
            return (dt.timestamp() if dt else 0.0, i)

        return [o for _i, o in sorted(indexed, key=_key)]
