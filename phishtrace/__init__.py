"""phishtrace - redirect-chain enumeration and network attribution for phishing mail."""

__version__ = "0.4.0"

from .bootstrap import DelegationEntry, DelegationTable, load_bootstrap  # noqa: E402
from .config import Settings, load_settings  # noqa: E402
from .models import (  # noqa: E402
    AttributionRecord,
    FulfillmentChain,
    FulfillmentNode,
    OutputRecord,
    SenderAddress,
    UrlSeed,
)
from .pipeline import enumerate_urls, investigate, populate, run_pipeline  # noqa: E402

__all__ = [
    "AttributionRecord",
    "DelegationEntry",
    "DelegationTable",
    "FulfillmentChain",
    "FulfillmentNode",
    "OutputRecord",
    "SenderAddress",
    "Settings",
    "UrlSeed",
    "enumerate_urls",
    "investigate",
    "load_bootstrap",
    "load_settings",
    "populate",
    "run_pipeline",
]
