#!/usr/bin/env python3
"""
Test catalog caching: single-flight loading, background refresh and stale fallback.
"""

import asyncio
import io
import unittest
from contextlib import redirect_stderr
from unittest.mock import patch

from odata_catalog_lib.catalog_cache import CatalogCache, CatalogLoader
from odata_catalog_lib.errors import ExecutionError, ExecutionErrorKind, ParseError
from odata_catalog_lib.metadata_parser import MetadataParser
from odata_catalog_lib.profile import SynthesisProfile
from odata_catalog_lib.synthesizer import CatalogSynthesizer
from metadata_fixtures import V4_METADATA

SERVICE = "https://example.com/odata"

MODEL = MetadataParser().parse(V4_METADATA)
CATALOG_A = CatalogSynthesizer().synthesize(MODEL, service_identity=SERVICE)
CATALOG_B = CatalogSynthesizer(SynthesisProfile.read_only()).synthesize(MODEL, service_identity=SERVICE)


class FakeLoader:
    """Returns (or raises) the queued results in order; the last one repeats."""

    def __init__(self, *results, delay=0):
        self.results = list(results)
        self.delay = delay
        self.calls = 0

    async def load(self, identity):
        self.calls += 1
        await asyncio.sleep(self.delay)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeClock:

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestCatalogCache(unittest.TestCase):
    """Loading, refreshing and replacing catalogs."""

    def setUp(self):
        self.clock = FakeClock()

    def make_cache(self, loader, ttl=300, backoff=60):
        return CatalogCache(loader, ttl_seconds=ttl, clock=self.clock, error_backoff_seconds=backoff)

    def test_first_load_is_cached(self):
        loader = FakeLoader(CATALOG_A)
        cache = self.make_cache(loader)

        async def run():
            first = await cache.get_catalog(SERVICE)
            second = await cache.get_catalog(SERVICE)
            return first, second

        first, second = asyncio.run(run())
        self.assertIs(first, CATALOG_A)
        self.assertIs(second, CATALOG_A)
        self.assertEqual(loader.calls, 1)
        self.assertEqual(cache.identities, [SERVICE])
        self.assertEqual(cache.loaded_at(SERVICE), 0.0)

    def test_concurrent_first_loads_share_one_fetch(self):
        loader = FakeLoader(CATALOG_A, delay=0.01)
        cache = self.make_cache(loader)

        async def run():
            return await asyncio.gather(*(cache.get_catalog(SERVICE) for _ in range(5)))

        results = asyncio.run(run())
        self.assertTrue(all(result is CATALOG_A for result in results))
        self.assertEqual(loader.calls, 1)

    def test_failing_first_load_raises_and_is_retried(self):
        loader = FakeLoader(ParseError("broken document"), CATALOG_A)
        cache = self.make_cache(loader)

        async def run():
            with self.assertRaises(ParseError):
                await cache.get_catalog(SERVICE)
            self.assertIsNone(cache.peek(SERVICE))
            return await cache.get_catalog(SERVICE)

        self.assertIs(asyncio.run(run()), CATALOG_A)
        self.assertEqual(loader.calls, 2)

    def test_expired_catalog_is_served_while_refreshing(self):
        loader = FakeLoader(CATALOG_A, CATALOG_B)
        cache = self.make_cache(loader)

        async def run():
            await cache.get_catalog(SERVICE)
            self.clock.now = 301
            served = await cache.get_catalog(SERVICE)
            await asyncio.sleep(0.05)
            return served

        served = asyncio.run(run())
        self.assertIs(served, CATALOG_A)
        self.assertIs(cache.peek(SERVICE), CATALOG_B)
        self.assertEqual(cache.loaded_at(SERVICE), 301)
        self.assertEqual(loader.calls, 2)

    def test_fresh_catalog_is_not_refreshed(self):
        loader = FakeLoader(CATALOG_A, CATALOG_B)
        cache = self.make_cache(loader)

        async def run():
            await cache.get_catalog(SERVICE)
            self.clock.now = 299
            await cache.get_catalog(SERVICE)
            await asyncio.sleep(0.05)

        asyncio.run(run())
        self.assertEqual(loader.calls, 1)
        self.assertIs(cache.peek(SERVICE), CATALOG_A)

    def test_failed_refresh_keeps_previous_catalog(self):
        failure = ExecutionError("metadata unavailable", kind=ExecutionErrorKind.NETWORK)
        loader = FakeLoader(CATALOG_A, failure)
        cache = self.make_cache(loader)

        async def run():
            await cache.get_catalog(SERVICE)
            self.clock.now = 301
            self.assertFalse(await cache.refresh(SERVICE))
            self.assertIs(cache.peek(SERVICE), CATALOG_A)

            # Inside the backoff window no new refresh is started
            self.clock.now = 330
            self.assertIs(await cache.get_catalog(SERVICE), CATALOG_A)
            await asyncio.sleep(0.05)
            self.assertEqual(loader.calls, 2)

            # After it, the next read schedules another attempt
            self.clock.now = 362
            self.assertIs(await cache.get_catalog(SERVICE), CATALOG_A)
            await asyncio.sleep(0.05)
            self.assertEqual(loader.calls, 3)

        asyncio.run(run())
        self.assertIs(cache.peek(SERVICE), CATALOG_A)

    def test_refresh_of_unknown_identity_failing(self):
        cache = self.make_cache(FakeLoader(ExecutionError("down", kind=ExecutionErrorKind.NETWORK)))
        self.assertFalse(asyncio.run(cache.refresh(SERVICE)))
        self.assertIsNone(cache.peek(SERVICE))

    def test_listeners_see_every_replacement(self):
        loader = FakeLoader(CATALOG_A, CATALOG_B)
        cache = self.make_cache(loader)
        events = []
        cache.add_listener(lambda identity, previous, new: events.append((identity, previous, new)))

        async def run():
            await cache.get_catalog(SERVICE)
            self.assertTrue(await cache.refresh(SERVICE))

        asyncio.run(run())
        self.assertEqual(events, [(SERVICE, None, CATALOG_A), (SERVICE, CATALOG_A, CATALOG_B)])

    def test_periodic_refresh(self):
        loader = FakeLoader(CATALOG_A, CATALOG_B)
        cache = CatalogCache(loader, ttl_seconds=0.02)

        async def run():
            await cache.get_catalog(SERVICE)
            cache.start()
            await asyncio.sleep(0.15)
            await cache.stop()

        asyncio.run(run())
        self.assertGreaterEqual(loader.calls, 2)
        self.assertIs(cache.peek(SERVICE), CATALOG_B)

    def test_concurrent_refreshes_share_one_fetch(self):
        loader = FakeLoader(CATALOG_A, CATALOG_B, delay=0.01)
        cache = self.make_cache(loader)

        async def run():
            await cache.get_catalog(SERVICE)
            # A loaded entry is served while the refresh is still fetching
            pending = asyncio.gather(cache.refresh(SERVICE), cache.refresh(SERVICE))
            await asyncio.sleep(0)
            self.assertIs(await cache.get_catalog(SERVICE), CATALOG_A)
            return await pending

        self.assertEqual(asyncio.run(run()), [True, True])
        self.assertEqual(loader.calls, 2)
        self.assertIs(cache.peek(SERVICE), CATALOG_B)

    def test_failing_listener_does_not_block_replacement(self):
        loader = FakeLoader(CATALOG_A, CATALOG_B)
        cache = self.make_cache(loader)
        seen = []

        def broken(identity, previous, new):
            if previous is not None:
                raise KeyError("listener state")

        cache.add_listener(broken)
        cache.add_listener(lambda identity, previous, new: seen.append(new))

        async def run():
            await cache.get_catalog(SERVICE)
            return await cache.refresh(SERVICE)

        with redirect_stderr(io.StringIO()) as err:
            self.assertTrue(asyncio.run(run()))
        self.assertEqual(seen, [CATALOG_A, CATALOG_B])
        self.assertIs(cache.peek(SERVICE), CATALOG_B)
        self.assertIn("ERROR: Catalog listener failed", err.getvalue())

    def test_periodic_refresh_survives_unexpected_errors(self):
        loader = FakeLoader(CATALOG_A, KeyError("unexpected"), KeyError("unexpected"), CATALOG_B)
        cache = CatalogCache(loader, ttl_seconds=0.01, error_backoff_seconds=0.01)

        async def run():
            await cache.get_catalog(SERVICE)
            cache.start()
            await asyncio.sleep(0.2)
            alive = not cache._periodic_task.done()
            await cache.stop()
            return alive

        with redirect_stderr(io.StringIO()) as err:
            alive = asyncio.run(run())
        self.assertTrue(alive)
        self.assertGreaterEqual(loader.calls, 4)
        self.assertIs(cache.peek(SERVICE), CATALOG_B)
        self.assertIn(f"ERROR: Catalog refresh for {SERVICE} failed", err.getvalue())

    def test_periodic_refresh_disabled(self):
        loader = FakeLoader(CATALOG_A)
        cache = CatalogCache(loader, ttl_seconds=0)

        async def run():
            await cache.get_catalog(SERVICE)
            cache.start()
            await asyncio.sleep(0.05)
            await cache.stop()

        asyncio.run(run())
        self.assertEqual(loader.calls, 1)


class TestCatalogLoader(unittest.TestCase):
    """Fetch, parse and synthesize in one step."""

    @patch("odata_catalog_lib.catalog_cache.MetadataFetcher.fetch")
    def test_load(self, mock_fetch):
        mock_fetch.return_value = V4_METADATA.encode("utf-8")
        loader = CatalogLoader(profile=SynthesisProfile.read_only())
        catalog = asyncio.run(loader.load(SERVICE))

        self.assertEqual(catalog.service_identity, SERVICE)
        self.assertIn("GetProducts", catalog.names)
        self.assertNotIn("CreateProducts", catalog.names)

    @patch("odata_catalog_lib.catalog_cache.MetadataFetcher.fetch")
    def test_load_propagates_parse_errors(self, mock_fetch):
        mock_fetch.return_value = b"<not-metadata/>"
        with self.assertRaises(ParseError):
            asyncio.run(CatalogLoader().load(SERVICE))


if __name__ == "__main__":
    unittest.main()
