"""Error kinds and the exceptions that carry them.

Network failures are raised as exceptions inside the resolver and converted to
tagged data (a fulfillment node status or an attribution record error) at the
hop / key boundary. Nothing in here should escape a pipeline run.
"""

from __future__ import annotations

from typing import Literal

ErrorKind = Literal[
    "TransientNetwork",
    "Timeout",
    "MalformedResponse",
    "NoDelegation",
    "LoopDetected",
    "DepthExceeded",
    "TlsFailure",
    "NotFound",
    "InvalidUrl",
]

ERROR_KINDS: tuple[str, ...] = (
    "TransientNetwork",
    "Timeout",
    "MalformedResponse",
    "NoDelegation",
    "LoopDetected",
    "DepthExceeded",
    "TlsFailure",
    "NotFound",
    "InvalidUrl",
)


class PhishtraceError(Exception):
    """Base class for phishtrace errors."""


class NetworkError(PhishtraceError):
    def __init__(self, kind: ErrorKind, detail: str = ""):
        super().__init__(f"{kind}: {detail}" if detail else kind)
        self.kind = kind
        self.detail = detail

    @property
    def transient(self) -> bool:
        return self.kind in ("TransientNetwork", "Timeout")


class DeadlineExceeded(NetworkError):
    """The run-level deadline expired. Never retried."""

    def __init__(self, detail: str = "run deadline expired"):
        super().__init__("Timeout", detail)

    @property
    def transient(self) -> bool:
        return False


class InvalidRecordError(PhishtraceError, ValueError):
    """Raised when an input Output Record does not have the expected shape."""
