"""Attribution populator.

Resolves ownership for the closure of distinct keys in a record: every sender
address plus the host of every fulfillment node, intermediate hops included.
Each distinct key is looked up once, concurrently with the others, and at most
`max_concurrency` lookups are in flight. A failing key gets an error-tagged
record; it never stops the other keys and is never dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .attribution import AttributionMap
from .delegation import DelegationResolver
from .models import AttributionRecord, OutputRecord
from .normalize import KeyKind, attribution_key
from .resolver import Deadline

logger = logging.getLogger(__name__)


def collect_keys(record: OutputRecord) -> dict[str, KeyKind]:
    """Distinct normalized keys in first-seen order: senders, then chain hosts."""
    keys: dict[str, KeyKind] = {}

    def _add(value: Optional[str]) -> None:
        if not value:
            return
        try:
            key, kind = attribution_key(value)
        except ValueError:
            return
        keys.setdefault(key, kind)

    for sender in record.senders:
        _add(sender.ip)
    for chain in record.chains:
        for host in chain.hosts():
            _add(host)
    return keys


class AttributionPopulator:
    def __init__(self, delegation: DelegationResolver, *, max_concurrency: int = 8):
        self.delegation = delegation
        self.max_concurrency = max(1, max_concurrency)

    async def _lookup(
        self,
        key: str,
        kind: KeyKind,
        deadline: Optional[Deadline],
        limiter: asyncio.Semaphore,
    ) -> AttributionRecord:
        if deadline is not None and deadline.expired:
            return AttributionRecord.failed(key, kind, "Timeout", "run deadline expired")
        async with limiter:
            if deadline is not None and deadline.expired:
                return AttributionRecord.failed(key, kind, "Timeout", "run deadline expired")
            return await self.delegation.resolve(key, kind, deadline)

    async def resolve_key(
        self,
        amap: AttributionMap,
        key: str,
        kind: KeyKind,
        deadline: Optional[Deadline],
        limiter: asyncio.Semaphore,
    ) -> AttributionRecord:
        if not amap.claim(key):
            return await amap.wait(key)

        try:
            record = await self._lookup(key, kind, deadline, limiter)
        except Exception as e:  # noqa: BLE001
            logger.exception("attribution lookup for %s failed", key)
            record = AttributionRecord.failed(key, kind, "MalformedResponse", f"{type(e).__name__}: {e}")

        amap.publish(key, record)
        return record

    async def populate(
        self, record: OutputRecord, deadline: Optional[Deadline] = None
    ) -> OutputRecord:
        """Return a copy of `record` whose attribution map covers every distinct key."""
        out = record.copy()
        keys = collect_keys(out)

        # Records already present for keys still in the closure are kept as-is.
        amap = AttributionMap({k: v for k, v in out.attribution.items() if k in keys})
        limiter = asyncio.Semaphore(self.max_concurrency)

        await asyncio.gather(
            *(self.resolve_key(amap, key, kind, deadline, limiter) for key, kind in keys.items())
        )

        out.attribution = amap.snapshot()
        failed = sum(1 for r in out.attribution.values() if r.status == "error")
        logger.info("attributed %d key(s), %d with errors", len(out.attribution), failed)
        return out
