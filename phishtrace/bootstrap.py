"""RDAP bootstrap delegation table.

The table maps IP ranges and domain suffixes to the RDAP services
authoritative for them (RFC 9224 bootstrap documents, published by IANA as
dns.json, ipv4.json and ipv6.json). It is loaded once per run and then only
read: the same immutable value is handed to every concurrent lookup.

A source that cannot be loaded gives an empty table marked unavailable, so
every lookup answers NoDelegation and the run carries on.
"""

from __future__ import annotations

import asyncio
import ipaddress
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Optional, Union

from .cache import BootstrapCache
from .errors import NetworkError
from .resolver import Deadline, NetworkResolver

logger = logging.getLogger(__name__)

EntryKind = Literal["ipv4", "ipv6", "domain"]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

BOOTSTRAP_FILES = ("dns.json", "ipv4.json", "ipv6.json")


@dataclass(frozen=True)
class DelegationEntry:
    kind: EntryKind
    range: str  # CIDR for ip entries, lowercase suffix ("" is the root) for domains
    services: tuple[str, ...]

    @property
    def service_url(self) -> str:
        """Preferred service base URL: the first https one, else the first."""
        for url in self.services:
            if url.lower().startswith("https://"):
                return url
        return self.services[0]


def _domain_suffix(value: str) -> str:
    s = value.strip().strip(".").lower()
    try:
        return s.encode("idna").decode("ascii") if s else s
    except UnicodeError:
        return s


def entries_from_services(services: Any) -> list[DelegationEntry]:
    """Parse the `services` array of a bootstrap document.

    Each service is `[[entry, ...], [url, ...]]`. Entries that parse as IP
    networks become ip entries, anything else is a domain suffix. Malformed
    services are skipped.
    """
    out: list[DelegationEntry] = []
    if not isinstance(services, list):
        return out

    for service in services:
        if not (isinstance(service, list) and len(service) >= 2):
            continue
        ranges, urls = service[-2], service[-1]
        if not (isinstance(ranges, list) and isinstance(urls, list)):
            continue
        urls_t = tuple(u for u in urls if isinstance(u, str) and u.strip())
        if not urls_t:
            continue

        for r in ranges:
            if not isinstance(r, str):
                continue
            try:
                net = ipaddress.ip_network(r.strip(), strict=False)
            except ValueError:
                out.append(DelegationEntry("domain", _domain_suffix(r), urls_t))
                continue
            kind: EntryKind = "ipv4" if net.version == 4 else "ipv6"
            out.append(DelegationEntry(kind, str(net), urls_t))
    return out


@dataclass(frozen=True)
class DelegationTable:
    entries: tuple[DelegationEntry, ...] = ()
    available: bool = True
    source: str = ""
    reason: Optional[str] = None

    _networks: tuple[tuple[IPNetwork, DelegationEntry], ...] = field(
        default=(), init=False, repr=False, compare=False
    )
    _suffixes: dict[str, DelegationEntry] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        networks: list[tuple[IPNetwork, DelegationEntry]] = []
        suffixes: dict[str, DelegationEntry] = {}
        for entry in self.entries:
            if entry.kind == "domain":
                # First entry for a suffix wins, as in the published documents.
                suffixes.setdefault(entry.range, entry)
            else:
                networks.append((ipaddress.ip_network(entry.range, strict=False), entry))
        # Most specific first, so the first containing network is the longest prefix.
        networks.sort(key=lambda t: t[0].prefixlen, reverse=True)
        object.__setattr__(self, "_networks", tuple(networks))
        object.__setattr__(self, "_suffixes", suffixes)

    @classmethod
    def unavailable(cls, source: str, reason: str) -> DelegationTable:
        return cls(entries=(), available=False, source=source, reason=reason)

    @classmethod
    def from_services(
        cls, services: Iterable[Any], *, source: str = ""
    ) -> DelegationTable:
        return cls(entries=tuple(entries_from_services(list(services))), source=source)

    @classmethod
    def from_mapping(cls, mapping: dict[str, Iterable[str]], *, source: str = "") -> DelegationTable:
        """Build a table from {range: [service_url, ...]}."""
        services = [[[r], list(urls)] for r, urls in mapping.items()]
        return cls.from_services(services, source=source)

    def __len__(self) -> int:
        return len(self.entries)

    def find_ip(self, ip: str) -> Optional[DelegationEntry]:
        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            return None
        for net, entry in self._networks:
            if net.version == addr.version and addr in net:
                return entry
        return None

    def find_domain(self, name: str) -> Optional[DelegationEntry]:
        labels = [p for p in _domain_suffix(name).split(".") if p]
        for i in range(len(labels)):
            entry = self._suffixes.get(".".join(labels[i:]))
            if entry is not None:
                return entry
        return self._suffixes.get("")

    def find(self, key: str, kind: str) -> Optional[DelegationEntry]:
        # IP and domain delegation are independent lookup spaces.
        if kind == "ip":
            return self.find_ip(key)
        return self.find_domain(key)


def _services_of(document: Any) -> list[Any]:
    if isinstance(document, dict) and isinstance(document.get("services"), list):
        return document["services"]
    raise ValueError("bootstrap document has no services array")


def _load_path(path: Path) -> DelegationTable:
    source = str(path)
    documents: list[Any] = []
    try:
        if path.is_dir():
            for name in BOOTSTRAP_FILES:
                p = path / name
                if p.exists():
                    documents.append(json.loads(p.read_text(encoding="utf-8")))
        else:
            documents.append(json.loads(path.read_text(encoding="utf-8")))
        services: list[Any] = []
        for doc in documents:
            services.extend(_services_of(doc))
    except (OSError, ValueError, RecursionError) as e:
        logger.warning("bootstrap source %s unusable: %s", source, e)
        return DelegationTable.unavailable(source, f"{type(e).__name__}: {e}")

    if not documents:
        logger.warning("bootstrap source %s holds no bootstrap documents", source)
        return DelegationTable.unavailable(source, "no bootstrap documents")
    return DelegationTable.from_services(services, source=source)


async def _fetch_document(
    url: str,
    resolver: NetworkResolver,
    deadline: Optional[Deadline],
    cache: Optional[BootstrapCache],
) -> Optional[dict[str, Any]]:
    if cache is not None:
        cached = cache.get(url)
        if cached is not None:
            logger.debug("bootstrap %s served from cache", url)
            return cached
    try:
        document = await resolver.get_json(url, deadline)
        _services_of(document)
    except (NetworkError, ValueError) as e:
        logger.warning("could not load bootstrap document %s: %s", url, e)
        return None
    if cache is not None:
        cache.set(url, document)
    return document


async def load_bootstrap(
    source: str,
    resolver: NetworkResolver,
    *,
    deadline: Optional[Deadline] = None,
    cache: Optional[BootstrapCache] = None,
) -> DelegationTable:
    """Load the delegation table once for a run. Never raises."""
    if not source.lower().startswith(("http://", "https://")):
        return _load_path(Path(source).expanduser())

    base = source if source.endswith("/") else source + "/"
    urls = [base + name for name in BOOTSTRAP_FILES]
    documents = await asyncio.gather(
        *(_fetch_document(u, resolver, deadline, cache) for u in urls)
    )

    services: list[Any] = []
    for doc in documents:
        if doc is not None:
            services.extend(doc["services"])

    if all(doc is None for doc in documents):
        return DelegationTable.unavailable(source, "no bootstrap document could be fetched")

    table = DelegationTable.from_services(services, source=source)
    logger.info("loaded %d delegation entries from %s", len(table), source)
    return table
