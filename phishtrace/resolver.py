"""Network resolver: one HTTP hop and one registry query at a time.

Blocking urllib calls run in worker threads so the pipeline can await them
from asyncio tasks. Every call is bounded by the per-call timeout, cut short to
whatever is left of the run-level `Deadline` so the socket itself gives up when
the run does. Transient failures get one bounded backoff retry. Transport
failures never escape `fetch`; they come back as a `FetchError` carrying an
error kind.

No caching happens at this layer.
"""

from __future__ import annotations

import asyncio
import functools
import http.client
import json
import logging
import socket
import ssl
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar, Union
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import HTTPRedirectHandler, Request, build_opener, urlopen

from .errors import DeadlineExceeded, ErrorKind, NetworkError
from .normalize import resolve_location
from .retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T")

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
TRANSIENT_HTTP_STATUSES = frozenset({429, 502, 503, 504})
MAX_JSON_BYTES = 4 * 1024 * 1024


@dataclass(frozen=True)
class FinalPage:
    status: int
    content_type: Optional[str] = None
    server: Optional[str] = None

    def meta(self) -> dict[str, Any]:
        return {"status": self.status, "content_type": self.content_type, "server": self.server}


@dataclass(frozen=True)
class Redirect:
    status: int
    location: str  # absolute


@dataclass(frozen=True)
class FetchError:
    kind: ErrorKind
    detail: str = ""
    status: Optional[int] = None


FetchResult = Union[FinalPage, Redirect, FetchError]


class Deadline:
    """Run-level cancellation token threaded through every network call."""

    def __init__(self, seconds: float, *, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.seconds = seconds
        self.expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking call in a worker thread, awaiting it until the deadline.

        On expiry the call is abandoned (its thread ends within the per-call
        timeout) and DeadlineExceeded is raised.
        """
        remaining = self.remaining()
        if remaining <= 0:
            raise DeadlineExceeded()
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=remaining)
        except asyncio.TimeoutError:
            raise DeadlineExceeded() from None


class _NoRedirect(HTTPRedirectHandler):
    # Returning None makes urllib surface the 3xx as an HTTPError we can inspect.
    def redirect_request(self, req, fp, code, msg, headers, newurl):  # noqa: ARG002
        return None


_HOP_OPENER = build_opener(_NoRedirect)


def open_hop(req: Request, timeout: float) -> Any:
    """Issue a single request without following redirects."""
    return _HOP_OPENER.open(req, timeout=timeout)


def classify_exception(e: BaseException) -> NetworkError:
    """Map a transport exception to a NetworkError with an error kind."""
    if isinstance(e, NetworkError):
        return e
    if isinstance(e, HTTPError):
        if e.code in TRANSIENT_HTTP_STATUSES:
            return NetworkError("TransientNetwork", f"HTTP {e.code}")
        if e.code == 404:
            return NetworkError("NotFound", "HTTP 404")
        return NetworkError("MalformedResponse", f"HTTP {e.code}")

    reason: Any = e.reason if isinstance(e, URLError) else e
    if isinstance(reason, (ssl.SSLCertVerificationError, ssl.CertificateError, ssl.SSLError)):
        return NetworkError("TlsFailure", str(reason))
    if isinstance(reason, (socket.timeout, TimeoutError)):
        return NetworkError("Timeout", str(reason) or "timed out")
    if isinstance(reason, (http.client.HTTPException, UnicodeError, ValueError)):
        return NetworkError("MalformedResponse", f"{type(reason).__name__}: {reason}")
    if isinstance(reason, OSError):
        return NetworkError("TransientNetwork", f"{type(reason).__name__}: {reason}")
    if isinstance(e, URLError):
        return NetworkError("TransientNetwork", str(reason))
    return NetworkError("MalformedResponse", f"{type(e).__name__}: {e}")


def _close(resp: Any) -> None:
    close = getattr(resp, "close", None)
    if callable(close):
        try:
            close()
        except Exception:
            pass


def _hop_response(url: str, method: str, *, timeout: float, user_agent: str) -> tuple[int, Any]:
    """Return (status, headers) for one request; HTTP error statuses are responses too."""
    req = Request(url, method=method, headers={"User-Agent": user_agent, "Accept": "*/*"})
    try:
        resp = open_hop(req, timeout)
    except HTTPError as e:
        headers = e.headers
        _close(e)
        return int(e.code), headers
    try:
        status = getattr(resp, "status", None)
        if status is None:
            status = resp.getcode()
        return int(status), resp.headers
    finally:
        _close(resp)


def _header(headers: Any, name: str) -> Optional[str]:
    if headers is None:
        return None
    try:
        value = headers.get(name)
    except Exception:
        return None
    return str(value) if value is not None else None


def _fetch_once(url: str, user_agent: str, *, timeout: float) -> FetchResult:
    """One hop. Raises NetworkError for transport failures."""
    try:
        status, headers = _hop_response(url, "HEAD", timeout=timeout, user_agent=user_agent)
        if status in (405, 501):
            # HEAD not supported; ask again with GET.
            status, headers = _hop_response(url, "GET", timeout=timeout, user_agent=user_agent)
    except Exception as e:
        raise classify_exception(e) from e

    location = _header(headers, "Location")
    if status in REDIRECT_STATUSES or (300 <= status < 400 and location):
        if not location:
            return FetchError("MalformedResponse", "redirect without Location header", status)
        target = resolve_location(url, location)
        if target is None:
            return FetchError("MalformedResponse", f"unusable Location header: {location!r}", status)
        return Redirect(status=status, location=target)

    return FinalPage(
        status=status,
        content_type=_header(headers, "Content-Type"),
        server=_header(headers, "Server"),
    )


def _get_json(url: str, user_agent: str, accept: str, *, timeout: float) -> dict[str, Any]:
    """GET a JSON object (redirects followed). Raises NetworkError."""
    req = Request(url, headers={"User-Agent": user_agent, "Accept": accept})
    try:
        resp = urlopen(req, timeout=timeout)
        try:
            raw = resp.read(MAX_JSON_BYTES + 1)
        finally:
            _close(resp)
    except Exception as e:
        raise classify_exception(e) from e

    if len(raw) > MAX_JSON_BYTES:
        raise NetworkError("MalformedResponse", "response too large")
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError, RecursionError) as e:
        snippet = raw[:120].decode("utf-8", errors="replace")
        raise NetworkError("MalformedResponse", f"invalid JSON: {snippet!r}") from e
    if not isinstance(payload, dict):
        raise NetworkError("MalformedResponse", "expected a JSON object")
    return payload


def _should_retry(e: Exception) -> bool:
    return isinstance(e, NetworkError) and e.transient


class NetworkResolver:
    """Single-hop fetches and registry queries with timeout and one retry."""

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        user_agent: str = "phishtrace",
        retry: RetryPolicy = RetryPolicy(),
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self.retry = retry

    def _attempt_timeout(self, deadline: Optional[Deadline]) -> float:
        """Socket timeout for one attempt; never outlives the run deadline."""
        if deadline is None:
            return self.timeout
        return max(0.001, min(self.timeout, deadline.remaining()))

    async def _call(self, deadline: Optional[Deadline], fn: Callable[..., T], *args: Any) -> T:
        async def _attempt() -> T:
            call = functools.partial(fn, *args, timeout=self._attempt_timeout(deadline))
            if deadline is None:
                return await asyncio.to_thread(call)
            return await deadline.run(call)

        return await retry_async(
            _attempt,
            self.retry,
            should_retry=_should_retry,
            max_sleep=deadline.remaining if deadline is not None else None,
        )

    async def fetch(self, url: str, deadline: Optional[Deadline] = None) -> FetchResult:
        try:
            result = await self._call(deadline, _fetch_once, url, self.user_agent)
        except NetworkError as e:
            logger.debug("fetch %s failed: %s", url, e)
            if deadline is not None and deadline.expired:
                return FetchError("Timeout", "run deadline expired")
            return FetchError(e.kind, e.detail)
        logger.debug("fetch %s -> %s", url, result)
        return result

    async def get_json(
        self, url: str, deadline: Optional[Deadline] = None, *, accept: str = "application/json"
    ) -> dict[str, Any]:
        """GET a JSON document. Raises NetworkError."""
        return await self._call(deadline, _get_json, url, self.user_agent, accept)

    async def query_registry(
        self, service_url: str, key: str, kind: str, deadline: Optional[Deadline] = None
    ) -> dict[str, Any]:
        """Query an RDAP service for `kind` ("ip" or "domain"). Raises NetworkError."""
        url = f"{service_url.rstrip('/')}/{kind}/{quote(key, safe=':.')}"
        logger.debug("registry query %s", url)
        return await self.get_json(url, deadline, accept="application/rdap+json, application/json")
