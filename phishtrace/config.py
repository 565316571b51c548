"""Runtime settings.

Every option can be set from the environment (or a `.env` file) and overridden
by the caller. Defaults are conservative: bounded, non-zero and finite.
"""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from . import __version__

logger = logging.getLogger(__name__)

DEFAULT_BOOTSTRAP_SOURCE = "https://data.iana.org/rdap/"


@dataclass(frozen=True)
class Settings:
    timeout: float = 10.0  # per network call, seconds
    max_redirects: int = 10  # requests per chain
    max_concurrent_lookups: int = 8
    max_concurrent_fetches: int = 8
    run_deadline: float = 120.0  # whole run, seconds
    bootstrap_source: str = DEFAULT_BOOTSTRAP_SOURCE
    user_agent: str = f"phishtrace/{__version__}"

    # Opt-in bootstrap cache; None disables it.
    cache_path: Optional[str] = None
    cache_ttl_seconds: int = 86400


# name -> (env vars in priority order, lower bound, upper bound)
_NUMERIC: dict[str, tuple[tuple[str, ...], float, float]] = {
    "timeout": (("PHISHTRACE_TIMEOUT",), 0.1, 300.0),
    "max_redirects": (("PHISHTRACE_MAX_REDIRECTS",), 1, 50),
    "max_concurrent_lookups": (("PHISHTRACE_MAX_LOOKUPS",), 1, 64),
    "max_concurrent_fetches": (("PHISHTRACE_MAX_FETCHES",), 1, 64),
    "run_deadline": (("PHISHTRACE_RUN_DEADLINE",), 1.0, 3600.0),
}


def load_env_files() -> None:
    """Load the first .env file found (current dir, then home dir)."""
    for env_path in [Path(".env"), Path.home() / ".phishtrace.env"]:
        if env_path.exists():
            load_dotenv(env_path)
            break


def _clamp(name: str, value: float) -> float:
    _envs, lo, hi = _NUMERIC[name]
    if math.isnan(value) or value < lo or value > hi:
        clamped = min(max(value if not math.isnan(value) else lo, lo), hi)
        logger.warning("%s=%s out of range [%s, %s], using %s", name, value, lo, hi, clamped)
        return clamped
    return value


def _coerce(name: str, raw: Any, default: Any) -> Any:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("ignoring invalid %s=%r, using %s", name, raw, default)
        return default
    value = _clamp(name, value)
    return int(value) if isinstance(default, int) else value


def load_settings(env: Optional[Mapping[str, str]] = None, **overrides: Any) -> Settings:
    """Build Settings from env (defaults to os.environ) plus explicit overrides.

    Overrides that are None are ignored, so CLI flags can be passed straight in.
    """
    if env is None:
        env = os.environ

    base = Settings()
    values: dict[str, Any] = {}

    for name, (env_names, _lo, _hi) in _NUMERIC.items():
        for env_name in env_names:
            raw = env.get(env_name)
            if raw is not None and raw.strip():
                values[name] = _coerce(name, raw.strip(), getattr(base, name))
                break

    source = env.get("PHISHTRACE_BOOTSTRAP") or env.get("RDAP_BOOTSTRAP_HOST")
    if source and source.strip():
        values["bootstrap_source"] = source.strip()

    agent = env.get("PHISHTRACE_USER_AGENT")
    if agent and agent.strip():
        values["user_agent"] = agent.strip()

    known = {f.name for f in fields(Settings)}
    for name, value in overrides.items():
        if value is None:
            continue
        if name not in known:
            raise TypeError(f"unknown setting: {name}")
        if name in _NUMERIC:
            value = _coerce(name, value, getattr(base, name))
        values[name] = value

    return replace(base, **values)
