"""Delegation resolver: find the authoritative RDAP service and ask it.

IPs pick the delegation entry with the longest matching prefix, domains the
entry with the longest matching suffix. The table is never modified here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Optional

from . import rdap
from .bootstrap import DelegationTable
from .errors import NetworkError
from .models import AttributionRecord
from .normalize import KeyKind
from .resolver import Deadline, NetworkResolver

logger = logging.getLogger(__name__)


def candidate_names(name: str, suffix: str) -> Iterator[str]:
    """Names to query for `name`, most specific first.

    Registries often only know the registered name, so `a.b.example` is tried
    as `a.b.example` then `b.example`. Names are never shortened to the
    delegated suffix itself.
    """
    labels = [p for p in name.split(".") if p]
    floor = len(suffix.split(".")) + 1 if suffix else 2
    floor = min(floor, len(labels))
    for i in range(0, len(labels) - floor + 1):
        yield ".".join(labels[i:])


class DelegationResolver:
    def __init__(self, table: DelegationTable, resolver: NetworkResolver):
        self.table = table
        self.resolver = resolver

    async def resolve(
        self, key: str, kind: KeyKind, deadline: Optional[Deadline] = None
    ) -> AttributionRecord:
        """Resolve one normalized key. Never raises for lookup failures."""
        entry = self.table.find(key, kind)
        if entry is None:
            detail = "no matching delegation"
            if not self.table.available:
                detail = f"bootstrap unavailable: {self.table.reason or self.table.source}"
            return AttributionRecord.failed(key, kind, "NoDelegation", detail)

        service = entry.service_url
        if kind == "ip":
            return await self._resolve_ip(key, service, deadline)
        return await self._resolve_domain(key, entry.range, service, deadline)

    async def _resolve_ip(
        self, key: str, service: str, deadline: Optional[Deadline]
    ) -> AttributionRecord:
        try:
            payload = await self.resolver.query_registry(service, key, "ip", deadline)
        except NetworkError as e:
            logger.info("ip lookup for %s via %s failed: %s", key, service, e)
            return AttributionRecord.failed(key, "ip", e.kind, e.detail, service=service)

        fields = rdap.parse_ip_network(payload)
        return AttributionRecord(key=key, kind="ip", service=service, queried=key, **fields)

    async def _resolve_domain(
        self, key: str, suffix: str, service: str, deadline: Optional[Deadline]
    ) -> AttributionRecord:
        last: Optional[NetworkError] = None
        for name in candidate_names(key, suffix):
            try:
                payload = await self.resolver.query_registry(service, name, "domain", deadline)
            except NetworkError as e:
                if e.kind == "NotFound":
                    last = e
                    continue
                logger.info("domain lookup for %s via %s failed: %s", name, service, e)
                return AttributionRecord.failed(key, "domain", e.kind, e.detail, service=service)

            fields = rdap.parse_domain(payload)
            return AttributionRecord(key=key, kind="domain", service=service, queried=name, **fields)

        detail = last.detail if last is not None else "nothing to query"
        return AttributionRecord.failed(key, "domain", "NotFound", detail, service=service)
