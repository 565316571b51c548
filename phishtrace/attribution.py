"""Write-once attribution map.

Protocol: a task calls `claim(key)`. The first claimant owns the key, computes
the record and `publish`es it exactly once; every later claimant gets False
and awaits `wait(key)` instead of querying again. Claim and publish are plain
synchronous calls, so they never interleave with other tasks on the event
loop and no lock is ever held across a network call.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator, Mapping
from typing import Optional

from .models import AttributionRecord


class AttributionMap:
    def __init__(self, initial: Optional[Mapping[str, AttributionRecord]] = None):
        self._records: dict[str, AttributionRecord] = dict(initial or {})
        self._pending: dict[str, asyncio.Future[AttributionRecord]] = {}

    def claim(self, key: str) -> bool:
        """Reserve `key`. True means the caller must compute and publish it."""
        if key in self._records or key in self._pending:
            return False
        self._pending[key] = asyncio.get_running_loop().create_future()
        return True

    def publish(self, key: str, record: AttributionRecord) -> None:
        if key in self._records:
            raise KeyError(f"attribution for {key!r} already published")
        fut = self._pending.pop(key, None)
        if fut is None:
            raise KeyError(f"attribution for {key!r} was never claimed")
        self._records[key] = record
        if not fut.done():
            fut.set_result(record)

    async def wait(self, key: str) -> AttributionRecord:
        record = self._records.get(key)
        if record is not None:
            return record
        fut = self._pending.get(key)
        if fut is None:
            raise KeyError(key)
        # shield: a cancelled waiter must not cancel the owner's future.
        return await asyncio.shield(fut)

    def get(self, key: str) -> Optional[AttributionRecord]:
        return self._records.get(key)

    def pending(self) -> list[str]:
        return sorted(self._pending)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)

    def snapshot(self) -> dict[str, AttributionRecord]:
        return dict(self._records)
