"""
Catalog cache: one immutable operation catalog per service identity, refreshed
in the background once its time-to-live has passed.

Readers never wait on a refresh. Loads of one identity share a single in-flight
task, and the result replaces the old catalog with one dict assignment, so no
lock is held while metadata is fetched. A failed refresh leaves the old one in
place.
"""

import asyncio
import contextlib
import sys
import time
from datetime import datetime
from typing import Callable, Dict, List, NamedTuple, Optional

from .metadata_parser import MetadataFetcher, MetadataParser
from .models import Catalog
from .profile import SynthesisProfile
from .session import Auth
from .synthesizer import CatalogSynthesizer

# (identity, previous catalog or None, new catalog)
CatalogListener = Callable[[str, Optional[Catalog], Catalog], None]


class CatalogLoader:
    """Fetches, parses and synthesizes the catalog of one service."""

    def __init__(self, profile: Optional[SynthesisProfile] = None, auth: Auth = None,
                 verbose: bool = False, timeout: float = 60):
        self.auth = auth
        self.verbose = verbose
        self.timeout = timeout
        self.parser = MetadataParser(verbose=verbose)
        self.synthesizer = CatalogSynthesizer(profile, verbose=verbose)

    def _fetch(self, identity: str) -> bytes:
        fetcher = MetadataFetcher(identity, auth=self.auth, verbose=self.verbose, timeout=self.timeout)
        try:
            return fetcher.fetch()
        finally:
            fetcher.session.close()

    async def load(self, identity: str) -> Catalog:
        document = await asyncio.to_thread(self._fetch, identity)
        model = self.parser.parse(document)
        return self.synthesizer.synthesize(model, service_identity=identity)


class CacheEntry(NamedTuple):
    catalog: Catalog
    loaded_at: float


class CatalogCache:
    def __init__(self, loader: CatalogLoader, ttl_seconds: float = 300, verbose: bool = False,
                 clock: Callable[[], float] = time.monotonic, error_backoff_seconds: float = 60):
        self.loader = loader
        self.ttl_seconds = ttl_seconds
        self.verbose = verbose
        self.error_backoff_seconds = error_backoff_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._last_failure: Dict[str, float] = {}
        self._refresh_tasks: Dict[str, asyncio.Task] = {}
        self._listeners: List[CatalogListener] = []
        self._periodic_task: Optional[asyncio.Task] = None

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} CatalogCache VERBOSE] {message}", file=sys.stderr)

    def add_listener(self, listener: CatalogListener):
        self._listeners.append(listener)

    @property
    def identities(self) -> List[str]:
        return list(self._entries)

    def peek(self, identity: str) -> Optional[Catalog]:
        """Current catalog without triggering a load or refresh."""
        entry = self._entries.get(identity)
        return entry.catalog if entry else None

    def loaded_at(self, identity: str) -> Optional[float]:
        entry = self._entries.get(identity)
        return entry.loaded_at if entry else None

    def _load_once(self, identity: str) -> asyncio.Task:
        """Start a load for identity, or join the one already running."""
        task = self._inflight.get(identity)
        if task is None or task.done():
            task = asyncio.ensure_future(self._load_and_store(identity))
            self._inflight[identity] = task
        return task

    async def _load_and_store(self, identity: str) -> Catalog:
        catalog = await self.loader.load(identity)
        self._store(identity, catalog)
        return catalog

    def _is_stale(self, identity: str, entry: CacheEntry) -> bool:
        now = self._clock()
        if now - entry.loaded_at < self.ttl_seconds:
            return False
        failed_at = self._last_failure.get(identity)
        return failed_at is None or now - failed_at >= self.error_backoff_seconds

    def _store(self, identity: str, catalog: Catalog):
        previous = self._entries.get(identity)
        self._entries[identity] = CacheEntry(catalog, self._clock())
        self._last_failure.pop(identity, None)
        self._log_verbose(f"Catalog for {identity} replaced ({len(catalog.descriptors)} operations)")
        for listener in list(self._listeners):
            try:
                listener(identity, previous.catalog if previous else None, catalog)
            except Exception as e:
                print(f"ERROR: Catalog listener failed for {identity}: {e}", file=sys.stderr)

    async def get_catalog(self, identity: str) -> Catalog:
        """Return the current catalog, loading it on first use.

        A failing first load raises. Once a catalog exists it is always returned,
        and an expired one is refreshed in the background.
        """
        entry = self._entries.get(identity)
        if entry is None:
            self._log_verbose(f"Loading catalog for {identity}")
            return await asyncio.shield(self._load_once(identity))

        if self._is_stale(identity, entry):
            self._schedule_refresh(identity)
        return entry.catalog

    def _schedule_refresh(self, identity: str):
        task = self._refresh_tasks.get(identity)
        if task is not None and not task.done():
            return
        self._log_verbose(f"Catalog for {identity} expired; refreshing in background")
        self._refresh_tasks[identity] = asyncio.ensure_future(self.refresh(identity))

    async def refresh(self, identity: str) -> bool:
        """Reload one identity now. Returns False (and keeps the old catalog) on failure."""
        try:
            await asyncio.shield(self._load_once(identity))
        except Exception as e:
            self._last_failure[identity] = self._clock()
            stale = " serving previous catalog" if identity in self._entries else " no catalog available"
            print(f"ERROR: Catalog refresh for {identity} failed ({e});{stale}", file=sys.stderr)
            return False
        return True

    async def _run_periodic(self):
        delay = self.ttl_seconds
        while True:
            await asyncio.sleep(delay)
            results = [await self.refresh(identity) for identity in self.identities]
            delay = self.ttl_seconds if all(results) else self.error_backoff_seconds

    def start(self):
        """Start the periodic refresh task on the running loop."""
        if self._periodic_task is not None and not self._periodic_task.done():
            return
        if self.ttl_seconds <= 0:
            self._log_verbose("Periodic refresh disabled (ttl <= 0)")
            return
        self._periodic_task = asyncio.get_running_loop().create_task(self._run_periodic())
        self._log_verbose(f"Periodic refresh started (every {self.ttl_seconds}s)")

    async def stop(self):
        tasks = [t for t in [*self._refresh_tasks.values(), *self._inflight.values()] if not t.done()]
        if self._periodic_task is not None:
            tasks.append(self._periodic_task)
            self._periodic_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._refresh_tasks.clear()
        self._inflight.clear()
        self._log_verbose("Catalog cache stopped")
