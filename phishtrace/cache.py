"""SQLite cache for RDAP bootstrap documents.

The IANA bootstrap registry changes rarely, so repeated runs can reuse a copy
instead of fetching it every time. Registry answers are never cached here.

- url -> JSON document + timestamps
- TTL handled at read time

NOTE: Cache is opt-in via CLI flags (see `phishtrace/cli.py`).
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import sqlite3
import time
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


def default_cache_path() -> str:
    base = os.getenv("XDG_CACHE_HOME") or os.path.expanduser("~/.cache")
    return os.path.join(base, "phishtrace", "bootstrap.sqlite")


def make_cache_key(url: str) -> str:
    return hashlib.sha256(f"bootstrap|{url}".encode("utf-8")).hexdigest()


def parse_ttl(ttl: str) -> int:
    """Parse TTL strings like: 3600, 10m, 24h, 7d."""
    s = ttl.strip().lower()
    if s.isdigit():
        return int(s)

    units = {"s": 1, "m": 60, "h": 3600, "d": 86400}
    unit = s[-1:] or "?"
    if unit not in units or not s[:-1].isdigit():
        raise ValueError(f"Invalid TTL: {ttl}")
    return int(s[:-1]) * units[unit]


@dataclass
class BootstrapCache:
    """sqlite store of bootstrap documents.

    Construction raises sqlite3.Error / OSError for an unusable file; once
    built, read and write failures are logged and treated as a miss.
    """

    path: str
    ttl_seconds: int = 86400

    def __post_init__(self) -> None:
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with self._connect() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS bootstrap (
                    key TEXT PRIMARY KEY,
                    url TEXT NOT NULL,
                    document TEXT NOT NULL,
                    fetched_at REAL NOT NULL
                )
                """
            )

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path)

    def get(self, url: str) -> Optional[dict[str, Any]]:
        try:
            with self._connect() as con:
                row = con.execute(
                    "SELECT document, fetched_at FROM bootstrap WHERE key = ?",
                    (make_cache_key(url),),
                ).fetchone()
        except sqlite3.Error as e:
            logger.warning("bootstrap cache %s unreadable: %s", self.path, e)
            return None
        if not row:
            return None
        document_json, fetched_at = row
        if self.ttl_seconds >= 0 and (time.time() - float(fetched_at)) > self.ttl_seconds:
            logger.debug("bootstrap cache entry for %s expired", url)
            return None
        try:
            document = json.loads(document_json)
        except (ValueError, RecursionError):
            return None
        return document if isinstance(document, dict) else None

    def set(self, url: str, document: dict[str, Any]) -> None:
        try:
            with self._connect() as con:
                con.execute(
                    """
                    INSERT INTO bootstrap (key, url, document, fetched_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        document=excluded.document,
                        fetched_at=excluded.fetched_at
                    """,
                    (make_cache_key(url), url, json.dumps(document), time.time()),
                )
                con.commit()
        except sqlite3.Error as e:
            logger.warning("bootstrap cache %s not writable: %s", self.path, e)
