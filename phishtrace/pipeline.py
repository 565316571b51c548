"""Pipeline orchestration.

One run: load the delegation table (once) while the URL seeds are expanded into
fulfillment chains, then attribute every distinct host and address. The whole
run shares one Deadline; whatever finished before it expired is kept.

The caller's Output Record is never modified: each stage returns a new copy.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from .bootstrap import DelegationTable, load_bootstrap
from .cache import BootstrapCache
from .config import Settings, load_settings
from .delegation import DelegationResolver
from .enumerator import RedirectEnumerator
from .models import OutputRecord
from .populator import AttributionPopulator
from .resolver import Deadline, NetworkResolver

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def make_resolver(settings: Settings) -> NetworkResolver:
    return NetworkResolver(timeout=settings.timeout, user_agent=settings.user_agent)


async def load_table(
    settings: Settings, resolver: NetworkResolver, deadline: Optional[Deadline] = None
) -> DelegationTable:
    cache = None
    if settings.cache_path:
        try:
            cache = BootstrapCache(settings.cache_path, ttl_seconds=settings.cache_ttl_seconds)
        except (sqlite3.Error, OSError) as e:
            logger.warning("bootstrap cache %s unusable, continuing without it: %s", settings.cache_path, e)
    return await load_bootstrap(settings.bootstrap_source, resolver, deadline=deadline, cache=cache)


async def enumerate_urls(
    record: OutputRecord,
    settings: Optional[Settings] = None,
    *,
    resolver: Optional[NetworkResolver] = None,
    deadline: Optional[Deadline] = None,
) -> OutputRecord:
    """Expand every URL seed into a fulfillment chain."""
    settings = settings or load_settings()
    resolver = resolver or make_resolver(settings)
    deadline = deadline or Deadline(settings.run_deadline)

    enumerator = RedirectEnumerator(
        resolver,
        max_redirects=settings.max_redirects,
        max_concurrency=settings.max_concurrent_fetches,
    )
    return await enumerator.enumerate_record(record, deadline)


async def populate(
    record: OutputRecord,
    settings: Optional[Settings] = None,
    *,
    table: Optional[DelegationTable] = None,
    resolver: Optional[NetworkResolver] = None,
    deadline: Optional[Deadline] = None,
) -> OutputRecord:
    """Attribute every distinct sender address and chain host."""
    settings = settings or load_settings()
    resolver = resolver or make_resolver(settings)
    deadline = deadline or Deadline(settings.run_deadline)
    if table is None:
        table = await load_table(settings, resolver, deadline)

    populator = AttributionPopulator(
        DelegationResolver(table, resolver), max_concurrency=settings.max_concurrent_lookups
    )
    out = await populator.populate(record, deadline)
    out.bootstrap_available = table.available
    return out


async def investigate(
    record: OutputRecord,
    settings: Optional[Settings] = None,
    *,
    table: Optional[DelegationTable] = None,
    resolver: Optional[NetworkResolver] = None,
) -> OutputRecord:
    """Run the full pipeline over one Output Record."""
    settings = settings or load_settings()
    resolver = resolver or make_resolver(settings)
    deadline = Deadline(settings.run_deadline)
    started_at = _now()

    if table is None:
        table, enumerated = await asyncio.gather(
            load_table(settings, resolver, deadline),
            enumerate_urls(record, settings, resolver=resolver, deadline=deadline),
        )
    else:
        enumerated = await enumerate_urls(record, settings, resolver=resolver, deadline=deadline)

    if not table.available:
        logger.warning("delegation data unavailable (%s); attribution will be NoDelegation", table.reason)

    out = await populate(enumerated, settings, table=table, resolver=resolver, deadline=deadline)
    out.started_at = started_at
    out.finished_at = _now()
    return out


def run_pipeline(
    record: OutputRecord,
    settings: Optional[Settings] = None,
    *,
    table: Optional[DelegationTable] = None,
    resolver: Optional[NetworkResolver] = None,
) -> OutputRecord:
    """Blocking entry point around `investigate`."""
    return asyncio.run(investigate(record, settings, table=table, resolver=resolver))
