import json
import tempfile
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

from phishtrace.bootstrap import DelegationTable, entries_from_services, load_bootstrap
from phishtrace.cache import BootstrapCache
from phishtrace.errors import NetworkError
from phishtrace.resolver import NetworkResolver
from phishtrace.retry import RetryPolicy
from tests.fakes import FakeResolver

IANA = "https://data.iana.org/rdap/"

DNS_DOC = {
    "version": "1.0",
    "services": [
        [["com", "net"], ["https://rdap.verisign.example/com/v1/"]],
        [["example"], ["http://rdap.example/", "https://rdap.example/"]],
        [["co.example"], ["https://rdap.co.example/"]],
    ],
}
IPV4_DOC = {
    "version": "1.0",
    "services": [
        [["203.0.0.0/8"], ["https://rdap.apnic.example/"]],
        [["203.0.113.0/24"], ["https://rdap.test-net.example/"]],
    ],
}
IPV6_DOC = {
    "version": "1.0",
    "services": [[["2001:db8::/32"], ["https://rdap.v6.example/"]]],
}


ALL_SERVICES = DNS_DOC["services"] + IPV4_DOC["services"] + IPV6_DOC["services"]


class TestDelegationTable(unittest.TestCase):
    def setUp(self):
        self.table = DelegationTable.from_services(ALL_SERVICES)

    def test_entries_are_split_by_kind(self):
        kinds = sorted({e.kind for e in entries_from_services(ALL_SERVICES)})
        self.assertEqual(kinds, ["domain", "ipv4", "ipv6"])

    def test_longest_prefix_wins(self):
        self.assertEqual(self.table.find_ip("203.0.113.9").range, "203.0.113.0/24")
        self.assertEqual(self.table.find_ip("203.5.5.5").range, "203.0.0.0/8")
        self.assertIsNone(self.table.find_ip("198.51.100.1"))

    def test_ipv6_lookup(self):
        self.assertEqual(self.table.find_ip("2001:db8::1").service_url, "https://rdap.v6.example/")
        self.assertIsNone(self.table.find_ip("2001:db9::1"))

    def test_longest_suffix_wins(self):
        self.assertEqual(self.table.find_domain("login.co.example").range, "co.example")
        self.assertEqual(self.table.find_domain("a.b.example").range, "example")
        self.assertEqual(self.table.find_domain("Shop.COM.").range, "com")
        self.assertIsNone(self.table.find_domain("example.org"))

    def test_suffix_match_is_label_aligned(self):
        self.assertIsNone(self.table.find_domain("notexample"))

    def test_prefers_https_service(self):
        self.assertEqual(self.table.find_domain("a.example").service_url, "https://rdap.example/")

    def test_ip_and_domain_spaces_are_independent(self):
        self.assertIsNone(self.table.find("203.0.113.9", "domain"))
        self.assertIsNone(self.table.find("a.example", "ip"))

    def test_malformed_services_are_skipped(self):
        table = DelegationTable.from_services([["only-one"], "junk", [["ok.example"], ["https://r/"]]])
        self.assertEqual(len(table), 1)

    def test_from_mapping(self):
        table = DelegationTable.from_mapping({"198.51.100.0/24": ["https://r.example/"]})
        self.assertEqual(table.find_ip("198.51.100.7").service_url, "https://r.example/")

    def test_unavailable_table_matches_nothing(self):
        table = DelegationTable.unavailable("https://x/", "down")
        self.assertFalse(table.available)
        self.assertIsNone(table.find("203.0.113.9", "ip"))


class TestLoadBootstrap(unittest.IsolatedAsyncioTestCase):
    async def test_loads_all_three_documents(self):
        resolver = FakeResolver(
            documents={IANA + "dns.json": DNS_DOC, IANA + "ipv4.json": IPV4_DOC, IANA + "ipv6.json": IPV6_DOC}
        )
        table = await load_bootstrap(IANA, resolver)

        self.assertTrue(table.available)
        self.assertEqual(len(resolver.loaded), 3)
        self.assertIsNotNone(table.find_ip("2001:db8::5"))
        self.assertIsNotNone(table.find_domain("x.com"))

    async def test_partial_failure_keeps_what_loaded(self):
        resolver = FakeResolver(
            documents={
                IANA + "dns.json": DNS_DOC,
                IANA + "ipv4.json": NetworkError("TransientNetwork", "reset"),
            }
        )
        with self.assertLogs("phishtrace.bootstrap", level="WARNING"):
            table = await load_bootstrap(IANA.rstrip("/"), resolver)

        self.assertTrue(table.available)
        self.assertIsNotNone(table.find_domain("a.example"))
        self.assertIsNone(table.find_ip("203.0.113.9"))

    async def test_all_documents_failing_gives_unavailable_table(self):
        with self.assertLogs("phishtrace.bootstrap", level="WARNING"):
            table = await load_bootstrap(IANA, FakeResolver())

        self.assertFalse(table.available)
        self.assertEqual(len(table), 0)

    async def test_document_without_services_is_rejected(self):
        resolver = FakeResolver(documents={IANA + "dns.json": {"version": "1.0"}})
        with self.assertLogs("phishtrace.bootstrap", level="WARNING"):
            table = await load_bootstrap(IANA, resolver)

        self.assertFalse(table.available)

    async def test_local_directory(self):
        with tempfile.TemporaryDirectory() as d:
            Path(d, "dns.json").write_text(json.dumps(DNS_DOC), encoding="utf-8")
            Path(d, "ipv4.json").write_text(json.dumps(IPV4_DOC), encoding="utf-8")
            table = await load_bootstrap(d, FakeResolver())

        self.assertTrue(table.available)
        self.assertEqual(table.find_ip("203.0.113.1").range, "203.0.113.0/24")

    async def test_local_single_file(self):
        with tempfile.TemporaryDirectory() as d:
            p = Path(d, "custom.json")
            p.write_text(json.dumps(IPV6_DOC), encoding="utf-8")
            table = await load_bootstrap(str(p), FakeResolver())

        self.assertIsNotNone(table.find_ip("2001:db8::1"))

    async def test_missing_path_is_unavailable(self):
        with self.assertLogs("phishtrace.bootstrap", level="WARNING"):
            table = await load_bootstrap("/nonexistent/phishtrace/bootstrap.json", FakeResolver())

        self.assertFalse(table.available)
        self.assertIn("FileNotFoundError", table.reason)

    async def test_invalid_json_file_is_unavailable(self):
        with tempfile.TemporaryDirectory() as d:
            p = Path(d, "broken.json")
            p.write_text("{not json", encoding="utf-8")
            with self.assertLogs("phishtrace.bootstrap", level="WARNING"):
                table = await load_bootstrap(str(p), FakeResolver())

        self.assertFalse(table.available)

    async def test_deeply_nested_file_is_unavailable(self):
        with tempfile.TemporaryDirectory() as d:
            p = Path(d, "nested.json")
            p.write_text("[" * 200000 + "]" * 200000, encoding="utf-8")
            with self.assertLogs("phishtrace.bootstrap", level="WARNING"):
                table = await load_bootstrap(str(p), FakeResolver())

        self.assertFalse(table.available)

    async def test_deeply_nested_documents_over_http_are_unavailable(self):
        body = b"[" * 200000 + b"]" * 200000
        resp = SimpleNamespace(status=200, headers={}, read=lambda n=-1: body)
        resolver = NetworkResolver(timeout=1, retry=RetryPolicy(retries=0))

        with patch("phishtrace.resolver.urlopen", lambda req, timeout: resp):
            with self.assertLogs("phishtrace.bootstrap", level="WARNING"):
                table = await load_bootstrap(IANA, resolver)

        self.assertFalse(table.available)
        self.assertIsNone(table.find_ip("203.0.113.9"))

    async def test_cache_hit_skips_network(self):
        with tempfile.TemporaryDirectory() as d:
            cache = BootstrapCache(str(Path(d, "c.sqlite")))
            cache.set(IANA + "dns.json", DNS_DOC)

            resolver = FakeResolver(documents={IANA + "ipv4.json": IPV4_DOC})
            with self.assertLogs("phishtrace.bootstrap", level="WARNING"):
                table = await load_bootstrap(IANA, resolver, cache=cache)

            self.assertNotIn(IANA + "dns.json", resolver.loaded)
            self.assertIsNotNone(table.find_domain("a.example"))
            # fetched documents are stored for the next run
            self.assertEqual(cache.get(IANA + "ipv4.json"), IPV4_DOC)


if __name__ == "__main__":
    unittest.main()
