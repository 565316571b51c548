"""Redirect-chain enumeration.

Each URL seed is followed one request at a time:

    Following --fetch--> Redirect      -> Following (next target)
                         FinalPage     -> final_page   (terminal)
                         FetchError    -> error        (terminal)
    next target already visited        -> loop_detected (terminal, no request)
    hop == max_redirects and redirects -> depth_exceeded (terminal)

Every node stands for exactly one issued request, so the chain length is the
number of requests made. Seeds are enumerated concurrently; the hops of one
chain are strictly sequential.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Union

from .models import FulfillmentChain, FulfillmentNode, OutputRecord, UrlSeed
from .normalize import canonical_url, is_http_url, url_host
from .resolver import Deadline, FetchError, FetchResult, FinalPage, NetworkResolver, Redirect

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Following:
    url: str


ChainState = Union[Following, None]


class RedirectEnumerator:
    def __init__(
        self,
        resolver: NetworkResolver,
        *,
        max_redirects: int = 10,
        max_concurrency: int = 8,
    ):
        if max_redirects < 1:
            raise ValueError("max_redirects must be >= 1")
        self.resolver = resolver
        self.max_redirects = max_redirects
        self.max_concurrency = max(1, max_concurrency)

    def _transition(
        self,
        url: str,
        hop: int,
        result: FetchResult,
        visited: set[str],
        previous: Optional[FulfillmentNode],
    ) -> tuple[FulfillmentNode, ChainState]:
        host = url_host(url)

        if isinstance(result, FinalPage):
            node = FulfillmentNode(
                url=url,
                status="final_page",
                host=host,
                http_status=result.status,
                page=result.meta(),
                previous=previous,
            )
            return node, None

        if isinstance(result, FetchError):
            node = FulfillmentNode(
                url=url,
                status="error",
                host=host,
                http_status=result.status,
                error=result.kind,
                detail=result.detail or None,
                previous=previous,
            )
            return node, None

        assert isinstance(result, Redirect)
        target = result.location
        common = dict(url=url, host=host, http_status=result.status, location=target, previous=previous)

        if canonical_url(target) in visited:
            return FulfillmentNode(status="loop_detected", error="LoopDetected", **common), None
        if hop >= self.max_redirects:
            node = FulfillmentNode(
                status="depth_exceeded",
                error="DepthExceeded",
                detail=f"still redirecting after {hop} requests",
                **common,
            )
            return node, None
        return FulfillmentNode(status="redirect", **common), Following(target)

    async def enumerate_seed(
        self,
        seed: UrlSeed,
        deadline: Optional[Deadline] = None,
        *,
        limiter: Optional[asyncio.Semaphore] = None,
    ) -> FulfillmentChain:
        if not is_http_url(seed.url):
            node = FulfillmentNode(
                url=seed.url,
                status="error",
                error="InvalidUrl",
                detail="not an absolute http(s) URL",
            )
            return FulfillmentChain(seed=seed, nodes=(node,))

        nodes: list[FulfillmentNode] = []
        visited: set[str] = set()
        previous: Optional[FulfillmentNode] = None
        state: ChainState = Following(seed.url)

        while isinstance(state, Following):
            url = state.url
            visited.add(canonical_url(url))
            hop = len(nodes) + 1

            result: FetchResult
            if deadline is not None and deadline.expired:
                result = FetchError("Timeout", "run deadline expired before request")
            elif limiter is not None:
                async with limiter:
                    result = await self.resolver.fetch(url, deadline)
            else:
                result = await self.resolver.fetch(url, deadline)

            node, state = self._transition(url, hop, result, visited, previous)
            nodes.append(node)
            previous = node

        logger.debug("seed %s: %d hop(s), %s", seed.url, len(nodes), nodes[-1].status)
        return FulfillmentChain(seed=seed, nodes=tuple(nodes))

    async def enumerate_record(
        self, record: OutputRecord, deadline: Optional[Deadline] = None
    ) -> OutputRecord:
        """Return a copy of `record` with one chain per distinct seed."""
        out = record.copy()
        seeds = record.distinct_seeds()
        limiter = asyncio.Semaphore(self.max_concurrency)

        async def _one(seed: UrlSeed) -> FulfillmentChain:
            try:
                return await self.enumerate_seed(seed, deadline, limiter=limiter)
            except Exception as e:  # noqa: BLE001
                logger.exception("enumerating %s failed", seed.url)
                node = FulfillmentNode(
                    url=seed.url,
                    status="error",
                    host=url_host(seed.url),
                    error="MalformedResponse",
                    detail=f"{type(e).__name__}: {e}",
                )
                return FulfillmentChain(seed=seed, nodes=(node,))

        # gather keeps seed order regardless of completion order.
        out.chains = list(await asyncio.gather(*(_one(s) for s in seeds)))
        return out
