"""In-process serialization for check-then-act sequences.

The engine is triggered from many independent call sites at once (every
UI view kicks a reconciliation sweep on load).  Three sequences must not
interleave within one process:

    stock lot    look up invoice → create invoice; read amount → write amount
    catalog      flip entry statuses → swap the active-entry register
    sweeps       two identical sweeps running over the same lots

Each is guarded by a keyed asyncio.Lock.  Across processes the store's
constraints take over (unique invoices.stock_id / invoice_number, and the
version counters on stock lots and invoices).

Locks are created on first use and dropped when the last holder leaves,
so the registry does not grow with the number of lots ever touched.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field


@dataclass
class _Slot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class KeyedLock:
    """A family of asyncio locks addressed by string key."""

    def __init__(self, name: str):
        self.name = name
        self._slots: dict[str, _Slot] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot()
        slot.holders += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.holders -= 1
            if slot.holders == 0:
                self._slots.pop(key, None)

    def is_held(self, key: str) -> bool:
        slot = self._slots.get(key)
        return slot is not None and slot.lock.locked()

    def __len__(self) -> int:
        return len(self._slots)


stock_lot_locks = KeyedLock("stock_lot")
catalog_locks = KeyedLock("price_catalog")
sweep_locks = KeyedLock("sweep")

CATALOG_KEY = "active_entry"
