import asyncio
import unittest

from phishtrace.enumerator import RedirectEnumerator
from phishtrace.models import OutputRecord, UrlSeed
from phishtrace.resolver import Deadline
from tests.fakes import FakeResolver, failed, page, redirect


class TestEnumerateSeed(unittest.IsolatedAsyncioTestCase):
    async def test_no_redirect_is_single_final_node(self):
        resolver = FakeResolver()
        chain = await RedirectEnumerator(resolver).enumerate_seed(UrlSeed("http://a.example/x"))

        self.assertEqual(len(chain.nodes), 1)
        self.assertEqual(chain.status, "final_page")
        self.assertEqual(chain.nodes[0].host, "a.example")
        self.assertEqual(chain.nodes[0].http_status, 200)
        self.assertEqual(chain.final_url, "http://a.example/x")

    async def test_follows_redirects_to_final_page(self):
        resolver = FakeResolver(
            pages={
                "http://a.example/x": redirect("http://b.example/y", 301),
                "http://b.example/y": redirect("https://c.example/z"),
            }
        )
        chain = await RedirectEnumerator(resolver).enumerate_seed(UrlSeed("http://a.example/x"))

        self.assertEqual([n.status for n in chain.nodes], ["redirect", "redirect", "final_page"])
        self.assertEqual(list(chain.hosts()), ["a.example", "b.example", "c.example"])
        self.assertEqual(chain.nodes[0].location, "http://b.example/y")
        self.assertIs(chain.nodes[2].previous, chain.nodes[1])
        self.assertIs(chain.nodes[1].previous, chain.nodes[0])
        self.assertIsNone(chain.nodes[0].previous)

    async def test_loop_is_detected_without_refetching(self):
        resolver = FakeResolver(
            pages={
                "http://a.example/": redirect("http://b.example/"),
                "http://b.example/": redirect("http://a.example/"),
            }
        )
        chain = await RedirectEnumerator(resolver).enumerate_seed(UrlSeed("http://a.example/"))

        self.assertEqual(resolver.fetched, ["http://a.example/", "http://b.example/"])
        self.assertEqual(len(chain.nodes), 2)
        self.assertEqual(chain.status, "loop_detected")
        self.assertEqual(chain.terminal.error, "LoopDetected")
        self.assertEqual(chain.terminal.location, "http://a.example/")

    async def test_loop_detection_uses_normalized_urls(self):
        resolver = FakeResolver(
            pages={
                "http://a.example/": redirect("http://b.example/"),
                "http://b.example/": redirect("HTTP://A.EXAMPLE:80/#top"),
            }
        )
        chain = await RedirectEnumerator(resolver).enumerate_seed(UrlSeed("http://a.example/"))

        self.assertEqual(chain.status, "loop_detected")
        self.assertEqual(len(resolver.fetched), 2)

    async def test_self_redirect_is_a_loop(self):
        resolver = FakeResolver(pages={"http://a.example/": redirect("http://a.example/")})
        chain = await RedirectEnumerator(resolver).enumerate_seed(UrlSeed("http://a.example/"))

        self.assertEqual(len(chain.nodes), 1)
        self.assertEqual(chain.status, "loop_detected")

    async def test_depth_exceeded_at_max_redirects(self):
        pages = {f"http://h{i}.example/": redirect(f"http://h{i + 1}.example/") for i in range(10)}
        resolver = FakeResolver(pages=pages)
        enumerator = RedirectEnumerator(resolver, max_redirects=3)

        chain = await enumerator.enumerate_seed(UrlSeed("http://h0.example/"))

        self.assertEqual(len(chain.nodes), 3)
        self.assertEqual(len(resolver.fetched), 3)
        self.assertEqual(chain.status, "depth_exceeded")
        self.assertEqual(chain.terminal.error, "DepthExceeded")

    async def test_final_page_at_exactly_max_redirects(self):
        resolver = FakeResolver(
            pages={
                "http://h0.example/": redirect("http://h1.example/"),
                "http://h1.example/": redirect("http://h2.example/"),
            }
        )
        chain = await RedirectEnumerator(resolver, max_redirects=3).enumerate_seed(
            UrlSeed("http://h0.example/")
        )

        self.assertEqual(len(chain.nodes), 3)
        self.assertEqual(chain.status, "final_page")

    async def test_error_is_terminal_and_keeps_earlier_hops(self):
        resolver = FakeResolver(
            pages={
                "http://a.example/": redirect("https://b.example/"),
                "https://b.example/": failed("TlsFailure", "certificate verify failed"),
            }
        )
        chain = await RedirectEnumerator(resolver).enumerate_seed(UrlSeed("http://a.example/"))

        self.assertEqual([n.status for n in chain.nodes], ["redirect", "error"])
        self.assertEqual(chain.terminal.error, "TlsFailure")
        self.assertEqual(chain.terminal.host, "b.example")

    async def test_invalid_seed_is_not_fetched(self):
        resolver = FakeResolver()
        chain = await RedirectEnumerator(resolver).enumerate_seed(UrlSeed("ftp://a.example/file"))

        self.assertEqual(resolver.fetched, [])
        self.assertEqual(len(chain.nodes), 1)
        self.assertEqual(chain.terminal.error, "InvalidUrl")

    async def test_expired_deadline_records_timeout_without_fetching(self):
        resolver = FakeResolver()
        deadline = Deadline(0.0)

        chain = await RedirectEnumerator(resolver).enumerate_seed(UrlSeed("http://a.example/"), deadline)

        self.assertEqual(resolver.fetched, [])
        self.assertEqual(chain.status, "error")
        self.assertEqual(chain.terminal.error, "Timeout")

    def test_max_redirects_must_be_positive(self):
        with self.assertRaises(ValueError):
            RedirectEnumerator(FakeResolver(), max_redirects=0)


class TestEnumerateRecord(unittest.IsolatedAsyncioTestCase):
    async def test_one_chain_per_distinct_seed_in_order(self):
        resolver = FakeResolver(pages={"http://a.example/": redirect("http://b.example/")})
        record = OutputRecord(
            seeds=[
                UrlSeed("http://a.example/"),
                UrlSeed("http://c.example/"),
                UrlSeed("http://a.example/", source="body:2"),
            ]
        )

        out = await RedirectEnumerator(resolver).enumerate_record(record)

        self.assertEqual([c.seed.url for c in out.chains], ["http://a.example/", "http://c.example/"])
        self.assertEqual(resolver.fetched.count("http://a.example/"), 1)
        # caller's record untouched
        self.assertEqual(record.chains, [])

    async def test_one_failing_seed_does_not_affect_others(self):
        resolver = FakeResolver(pages={"http://bad.example/": failed("TransientNetwork", "reset")})
        record = OutputRecord(seeds=[UrlSeed("http://bad.example/"), UrlSeed("http://good.example/")])

        out = await RedirectEnumerator(resolver).enumerate_record(record)

        self.assertEqual([c.status for c in out.chains], ["error", "final_page"])

    async def test_unexpected_exception_becomes_error_chain(self):
        class Exploding(FakeResolver):
            async def fetch(self, url, deadline=None):
                if "boom" in url:
                    raise RuntimeError("kaboom")
                return await super().fetch(url, deadline)

        record = OutputRecord(seeds=[UrlSeed("http://boom.example/"), UrlSeed("http://ok.example/")])
        with self.assertLogs("phishtrace.enumerator", level="ERROR"):
            out = await RedirectEnumerator(Exploding()).enumerate_record(record)

        self.assertEqual(out.chains[0].terminal.error, "MalformedResponse")
        self.assertEqual(out.chains[1].status, "final_page")

    async def test_fetch_concurrency_is_bounded(self):
        state = {"active": 0, "peak": 0}

        class Counting(FakeResolver):
            async def fetch(self, url, deadline=None):
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
                await asyncio.sleep(0.01)
                state["active"] -= 1
                return page()

        record = OutputRecord(seeds=[UrlSeed(f"http://h{i}.example/") for i in range(10)])
        out = await RedirectEnumerator(Counting(), max_concurrency=3).enumerate_record(record)

        self.assertEqual(len(out.chains), 10)
        self.assertLessEqual(state["peak"], 3)


if __name__ == "__main__":
    unittest.main()
