"""Models for phishtrace.

These dataclasses define the Output Record passed between the pipeline stages
and handed back to collaborators (reporter, persistence, rendering).

All public JSON outputs include:
- schema_version: "1"
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from .errors import ERROR_KINDS, ErrorKind, InvalidRecordError

NodeStatus = Literal["final_page", "redirect", "error", "loop_detected", "depth_exceeded"]
TERMINAL_STATUSES = ("final_page", "error", "loop_detected", "depth_exceeded")
NODE_STATUSES = ("redirect",) + TERMINAL_STATUSES

SCHEMA_VERSION = "1"


@dataclass(frozen=True)
class SenderAddress:
    """An IP address and the header context it was extracted from."""

    ip: str
    context: Optional[str] = None
    position: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {"ip": self.ip, "context": self.context, "position": self.position}


@dataclass(frozen=True)
class UrlSeed:
    url: str
    # Where in the message source the URL was found, e.g. "body:3".
    source: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "source": self.source}


@dataclass(frozen=True)
class FulfillmentNode:
    """One hop of a redirect chain: exactly one issued request."""

    url: str
    status: NodeStatus
    host: Optional[str] = None
    http_status: Optional[int] = None

    # Absolute next target for redirect / loop_detected / depth_exceeded nodes.
    location: Optional[str] = None

    error: Optional[ErrorKind] = None
    detail: Optional[str] = None

    # Final page metadata: content_type, server.
    page: Optional[dict[str, Any]] = None

    # Back reference to the previous hop (not ownership).
    previous: Optional[FulfillmentNode] = field(default=None, compare=False, repr=False)

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "status": self.status,
            "host": self.host,
            "http_status": self.http_status,
            "location": self.location,
            "error": self.error,
            "detail": self.detail,
            "page": dict(self.page) if self.page else None,
        }


@dataclass(frozen=True)
class FulfillmentChain:
    seed: UrlSeed
    nodes: tuple[FulfillmentNode, ...] = ()

    @property
    def terminal(self) -> Optional[FulfillmentNode]:
        return self.nodes[-1] if self.nodes else None

    @property
    def status(self) -> Optional[NodeStatus]:
        t = self.terminal
        return t.status if t else None

    @property
    def final_url(self) -> Optional[str]:
        t = self.terminal
        if t is not None and t.status == "final_page":
            return t.url
        return None

    def hosts(self) -> Iterator[str]:
        for node in self.nodes:
            if node.host:
                yield node.host

    def to_dict(self) -> dict[str, Any]:
        nodes = []
        for i, node in enumerate(self.nodes):
            d = node.to_dict()
            d["hop"] = i + 1
            d["previous"] = i if i > 0 else None
            nodes.append(d)
        return {
            "seed": self.seed.to_dict(),
            "status": self.status,
            "hops": len(self.nodes),
            "final_url": self.final_url,
            "nodes": nodes,
        }


@dataclass(frozen=True)
class AttributionRecord:
    """Ownership / abuse-contact metadata for one host or address."""

    key: str
    kind: Literal["ip", "domain"]
    status: Literal["ok", "error"] = "ok"
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None

    # Registry base URL queried and the object name it answered for (a parent
    # domain when the registry does not know the exact host).
    service: Optional[str] = None
    queried: Optional[str] = None

    organization: Optional[str] = None
    registrar: Optional[str] = None
    abuse_email: Optional[str] = None
    registration_date: Optional[str] = None  # ISO-8601

    # IP networks: handle, name, start_address, end_address, cidrs, country.
    network: Optional[dict[str, Any]] = None

    @classmethod
    def failed(
        cls, key: str, kind: Literal["ip", "domain"], error: ErrorKind, detail: str = "", **kw: Any
    ) -> AttributionRecord:
        return cls(key=key, kind=kind, status="error", error=error, detail=detail or None, **kw)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind,
            "status": self.status,
            "error": self.error,
            "detail": self.detail,
            "service": self.service,
            "queried": self.queried,
            "organization": self.organization,
            "registrar": self.registrar,
            "abuse_email": self.abuse_email,
            "registration_date": self.registration_date,
            "network": dict(self.network) if self.network else None,
        }


@dataclass
class OutputRecord:
    """Root aggregate handed through the pipeline."""

    senders: list[SenderAddress] = field(default_factory=list)
    seeds: list[UrlSeed] = field(default_factory=list)
    chains: list[FulfillmentChain] = field(default_factory=list)
    attribution: dict[str, AttributionRecord] = field(default_factory=dict)

    # Collaborator-owned fields, passed through untouched.
    run_id: Optional[int] = None
    subject: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    bootstrap_available: Optional[bool] = None

    def copy(self) -> OutputRecord:
        """Working copy: containers are new, entities are immutable and shared."""
        return OutputRecord(
            senders=list(self.senders),
            seeds=list(self.seeds),
            chains=list(self.chains),
            attribution=dict(self.attribution),
            run_id=self.run_id,
            subject=self.subject,
            extra=dict(self.extra),
            started_at=self.started_at,
            finished_at=self.finished_at,
            bootstrap_available=self.bootstrap_available,
        )

    def distinct_seeds(self) -> list[UrlSeed]:
        seen: set[str] = set()
        out: list[UrlSeed] = []
        for seed in self.seeds:
            if seed.url in seen:
                continue
            seen.add(seed.url)
            out.append(seed)
        return out

    def attribution_for(self, host_or_ip: str) -> Optional[AttributionRecord]:
        from .normalize import attribution_key

        try:
            key, _kind = attribution_key(host_or_ip)
        except ValueError:
            return None
        return self.attribution.get(key)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        out.update(
            {
                "schema_version": SCHEMA_VERSION,
                "run_id": self.run_id,
                "subject": self.subject,
                "senders": [s.to_dict() for s in self.senders],
                "seeds": [s.to_dict() for s in self.seeds],
                "chains": [c.to_dict() for c in self.chains],
                "attribution": {k: self.attribution[k].to_dict() for k in sorted(self.attribution)},
                "started_at": self.started_at,
                "finished_at": self.finished_at,
                "bootstrap_available": self.bootstrap_available,
            }
        )
        return out

    @classmethod
    def from_dict(cls, data: Any) -> OutputRecord:
        if not isinstance(data, dict):
            raise InvalidRecordError("output record must be a JSON object")

        known = {
            "schema_version",
            "run_id",
            "subject",
            "senders",
            "seeds",
            "urls",
            "chains",
            "attribution",
            "started_at",
            "finished_at",
            "bootstrap_available",
        }

        run_id = data.get("run_id")
        if run_id is not None and (isinstance(run_id, bool) or not isinstance(run_id, int)):
            raise InvalidRecordError("run_id must be an integer")
        subject = data.get("subject")
        if subject is not None and not isinstance(subject, str):
            raise InvalidRecordError("subject must be a string")

        seeds_raw = data.get("seeds")
        if seeds_raw is None:
            seeds_raw = data.get("urls")

        bootstrap_available = data.get("bootstrap_available")

        return cls(
            senders=list(_parse_senders(_as_list(data.get("senders"), "senders"))),
            seeds=list(_parse_seeds(_as_list(seeds_raw, "seeds"))),
            chains=[_parse_chain(c) for c in _as_list(data.get("chains"), "chains")],
            attribution=_parse_attribution(data.get("attribution")),
            run_id=run_id,
            subject=subject,
            extra={k: v for k, v in data.items() if k not in known},
            started_at=_opt_str(data.get("started_at"), "started_at"),
            finished_at=_opt_str(data.get("finished_at"), "finished_at"),
            bootstrap_available=bootstrap_available if isinstance(bootstrap_available, bool) else None,
        )


def _as_list(value: Any, name: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidRecordError(f"{name} must be a list")
    return value


def _opt_str(value: Any, name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidRecordError(f"{name} must be a string")
    return value


def _opt_int(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRecordError(f"{name} must be an integer")
    return value


def _parse_senders(items: Iterable[Any]) -> Iterator[SenderAddress]:
    for item in items:
        if isinstance(item, str):
            ip, context, position = item, None, None
        elif isinstance(item, dict):
            ip = item.get("ip")
            context = _opt_str(item.get("context"), "sender context")
            position = _opt_int(item.get("position"), "sender position")
        else:
            raise InvalidRecordError("sender must be a string or an object")
        if not isinstance(ip, str) or not ip.strip():
            raise InvalidRecordError("sender ip must be a non-empty string")
        yield SenderAddress(ip=ip.strip(), context=context, position=position)


def _parse_seeds(items: Iterable[Any]) -> Iterator[UrlSeed]:
    for item in items:
        if isinstance(item, str):
            url, source = item, None
        elif isinstance(item, dict):
            url = item.get("url")
            source = _opt_str(item.get("source"), "seed source")
        else:
            raise InvalidRecordError("seed must be a string or an object")
        if not isinstance(url, str) or not url.strip():
            raise InvalidRecordError("seed url must be a non-empty string")
        yield UrlSeed(url=url.strip(), source=source)


def _parse_chain(data: Any) -> FulfillmentChain:
    if not isinstance(data, dict):
        raise InvalidRecordError("chain must be an object")
    seeds = list(_parse_seeds([data.get("seed")]))

    nodes: list[FulfillmentNode] = []
    previous: Optional[FulfillmentNode] = None
    for raw in _as_list(data.get("nodes"), "chain nodes"):
        if not isinstance(raw, dict):
            raise InvalidRecordError("chain node must be an object")
        url = raw.get("url")
        status = raw.get("status")
        if not isinstance(url, str) or status not in NODE_STATUSES:
            raise InvalidRecordError("chain node needs a url and a known status")
        error = raw.get("error")
        if error is not None and error not in ERROR_KINDS:
            raise InvalidRecordError(f"unknown error kind: {error}")
        page = raw.get("page")
        node = FulfillmentNode(
            url=url,
            status=status,
            host=_opt_str(raw.get("host"), "node host"),
            http_status=_opt_int(raw.get("http_status"), "node http_status"),
            location=_opt_str(raw.get("location"), "node location"),
            error=error,
            detail=_opt_str(raw.get("detail"), "node detail"),
            page=page if isinstance(page, dict) else None,
            previous=previous,
        )
        nodes.append(node)
        previous = node

    return FulfillmentChain(seed=seeds[0], nodes=tuple(nodes))


def _parse_attribution(data: Any) -> dict[str, AttributionRecord]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidRecordError("attribution must be an object")

    out: dict[str, AttributionRecord] = {}
    for key, raw in data.items():
        if not isinstance(raw, dict):
            raise InvalidRecordError("attribution record must be an object")
        kind = raw.get("kind")
        status = raw.get("status", "ok")
        if kind not in ("ip", "domain") or status not in ("ok", "error"):
            raise InvalidRecordError(f"invalid attribution record for {key}")
        error = raw.get("error")
        if error is not None and error not in ERROR_KINDS:
            raise InvalidRecordError(f"unknown error kind: {error}")
        network = raw.get("network")
        out[str(key)] = AttributionRecord(
            key=str(key),
            kind=kind,
            status=status,
            error=error,
            detail=_opt_str(raw.get("detail"), "detail"),
            service=_opt_str(raw.get("service"), "service"),
            queried=_opt_str(raw.get("queried"), "queried"),
            organization=_opt_str(raw.get("organization"), "organization"),
            registrar=_opt_str(raw.get("registrar"), "registrar"),
            abuse_email=_opt_str(raw.get("abuse_email"), "abuse_email"),
            registration_date=_opt_str(raw.get("registration_date"), "registration_date"),
            network=network if isinstance(network, dict) else None,
        )
    return out
