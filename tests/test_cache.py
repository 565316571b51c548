import sqlite3
import tempfile
import unittest
from unittest.mock import patch

from phishtrace.cache import BootstrapCache, make_cache_key, parse_ttl


class TestBootstrapCache(unittest.TestCase):
    def test_cache_set_get(self):
        with tempfile.TemporaryDirectory() as d:
            c = BootstrapCache(f"{d}/cache.sqlite", ttl_seconds=60)
            c.set("https://data.iana.org/rdap/dns.json", {"services": []})
            self.assertEqual(c.get("https://data.iana.org/rdap/dns.json"), {"services": []})
            self.assertIsNone(c.get("https://data.iana.org/rdap/ipv4.json"))

    def test_set_overwrites(self):
        with tempfile.TemporaryDirectory() as d:
            c = BootstrapCache(f"{d}/cache.sqlite")
            c.set("u", {"v": 1})
            c.set("u", {"v": 2})
            self.assertEqual(c.get("u"), {"v": 2})

    def test_expired_entry_is_a_miss(self):
        with tempfile.TemporaryDirectory() as d:
            c = BootstrapCache(f"{d}/cache.sqlite", ttl_seconds=60)
            with patch("phishtrace.cache.time.time", return_value=1000.0):
                c.set("u", {"v": 1})
            with patch("phishtrace.cache.time.time", return_value=1061.0):
                self.assertIsNone(c.get("u"))
            with patch("phishtrace.cache.time.time", return_value=1059.0):
                self.assertEqual(c.get("u"), {"v": 1})

    def test_creates_parent_directory(self):
        with tempfile.TemporaryDirectory() as d:
            c = BootstrapCache(f"{d}/nested/dir/cache.sqlite")
            c.set("u", {"v": 1})
            self.assertEqual(c.get("u"), {"v": 1})

    def test_corrupt_row_is_a_miss(self):
        with tempfile.TemporaryDirectory() as d:
            path = f"{d}/cache.sqlite"
            c = BootstrapCache(path)
            with sqlite3.connect(path) as con:
                con.execute(
                    "INSERT INTO bootstrap (key, url, document, fetched_at) VALUES (?, ?, ?, ?)",
                    (make_cache_key("u"), "u", "{broken", 9e12),
                )
            self.assertIsNone(c.get("u"))

    def test_garbage_file_fails_construction(self):
        with tempfile.TemporaryDirectory() as d:
            path = f"{d}/cache.sqlite"
            with open(path, "wb") as fh:
                fh.write(b"not a database" * 100)
            with self.assertRaises(sqlite3.DatabaseError):
                BootstrapCache(path)

    def test_file_corrupted_after_open_is_a_miss(self):
        with tempfile.TemporaryDirectory() as d:
            path = f"{d}/cache.sqlite"
            c = BootstrapCache(path)
            c.set("u", {"v": 1})
            with open(path, "wb") as fh:
                fh.write(b"not a database" * 100)

            with self.assertLogs("phishtrace.cache", level="WARNING"):
                self.assertIsNone(c.get("u"))
            with self.assertLogs("phishtrace.cache", level="WARNING"):
                c.set("u", {"v": 2})

    def test_cache_key_is_stable(self):
        self.assertEqual(make_cache_key("u"), make_cache_key("u"))
        self.assertNotEqual(make_cache_key("u"), make_cache_key("v"))


class TestParseTtl(unittest.TestCase):
    def test_units(self):
        self.assertEqual(parse_ttl("3600"), 3600)
        self.assertEqual(parse_ttl("10m"), 600)
        self.assertEqual(parse_ttl("24h"), 86400)
        self.assertEqual(parse_ttl(" 7D "), 7 * 86400)

    def test_invalid(self):
        for bad in ("", "h", "1.5h", "10w", "abc"):
            with self.assertRaises(ValueError, msg=bad):
                parse_ttl(bad)


if __name__ == "__main__":
    unittest.main()
