"""Caching directory over the tenant registry.

Entries are immutable ``(TenantInfo, expires_at)`` pairs. A refresh builds a
new entry and swaps it into the map; nothing is ever mutated in place, so a
reader holding an entry keeps a consistent value while others refresh it.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog

from schema_tenancy.errors import TenantNotFoundError
from schema_tenancy.tenancy.models import TenantInfo, TenantOption
from schema_tenancy.tenancy.registry import TenantRegistry

logger = structlog.get_logger()


@dataclass(frozen=True)
class _CacheEntry:
    info: TenantInfo
    expires_at: float


class TenantDirectory:
    """slug → TenantInfo lookups with a time-bounded cache.

    ``schema_name`` never changes for a tenant, but ``name`` and ``settings``
    may, so every entry expires after ``ttl_seconds``. NotFound is never
    cached: a tenant created after a failed lookup is visible immediately,
    and a tenant removed from the registry is evicted on the next refresh.

    Thread-safe: the entry map is guarded by a lock and only ever replaced
    per key. Concurrent misses for one slug share a single registry read.
    """

    def __init__(
        self,
        registry: TenantRegistry,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()
        self._refresh_locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @property
    def caching_enabled(self) -> bool:
        return self._ttl > 0

    def _get_fresh(self, slug: str) -> TenantInfo | None:
        with self._lock:
            entry = self._entries.get(slug)
        if entry is None or entry.expires_at <= self._clock():
            return None
        return entry.info

    @asynccontextmanager
    async def _refresh_lock(self, slug: str) -> AsyncIterator[None]:
        # Locks are reference-counted so the map only holds slugs with a
        # refresh in flight, whatever slugs clients send.
        with self._lock:
            lock, users = self._refresh_locks.get(slug, (None, 0))
            if lock is None:
                lock = asyncio.Lock()
            self._refresh_locks[slug] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            with self._lock:
                lock, users = self._refresh_locks[slug]
                if users <= 1:
                    del self._refresh_locks[slug]
                else:
                    self._refresh_locks[slug] = (lock, users - 1)

    async def find_by_slug(
        self, slug: str, *, force_refresh: bool = False
    ) -> TenantInfo:
        """Resolve ``slug`` to its TenantInfo.

        Args:
            slug: Normalized tenant slug.
            force_refresh: Bypass the cache and re-read the registry.

        Raises:
            TenantNotFoundError: no registry row for ``slug``.
            TenantMisconfiguredError: row has an unusable schema name.
        """
        if not self.caching_enabled:
            return await self._registry.find_by_slug(slug)

        if not force_refresh:
            cached = self._get_fresh(slug)
            if cached is not None:
                return cached

        async with self._refresh_lock(slug):
            # Another waiter may have refreshed the entry already.
            if not force_refresh:
                cached = self._get_fresh(slug)
                if cached is not None:
                    return cached
            return await self._refresh(slug)

    async def _refresh(self, slug: str) -> TenantInfo:
        try:
            info = await self._registry.find_by_slug(slug)
        except TenantNotFoundError:
            if self.invalidate(slug):
                logger.info("tenant_cache_evicted", slug=slug)
            raise

        entry = _CacheEntry(info=info, expires_at=self._clock() + self._ttl)
        with self._lock:
            previous = self._entries.get(slug)
            self._entries[slug] = entry

        if previous is not None and previous.info.schema_name != info.schema_name:
            logger.error(
                "tenant_schema_changed",
                slug=slug,
                previous_schema=previous.info.schema_name,
                schema_name=info.schema_name,
            )
        logger.debug("tenant_cache_refreshed", slug=slug)
        return info

    def invalidate(self, slug: str | None = None) -> bool:
        """Drop one cached entry, or all of them when ``slug`` is None.

        Returns:
            True if anything was removed.
        """
        with self._lock:
            if slug is None:
                removed = bool(self._entries)
                self._entries = {}
                return removed
            return self._entries.pop(slug, None) is not None

    async def list_active(self) -> list[TenantOption]:
        """Tenant selection list, always read through to the registry."""
        return await self._registry.list_active()
