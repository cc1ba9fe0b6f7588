# catalog_ingest/services/aggregate_service.py

"""Paginated, filtered, cached multi-marketplace listing search."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from catalog_ingest.config.settings import Settings
from catalog_ingest.errors import PersistenceFailure
from catalog_ingest.filters.listing_filter import FilterBounds, ListingFilter
from catalog_ingest.models.listing import NormalizedListing, SavedListingRecord
from catalog_ingest.services.fetch_orchestrator import (
    FetchOrchestrator,
    provider_fetch_size,
)
from catalog_ingest.storage.interfaces import ListingStore
from catalog_ingest.storage.result_cache import ResultCache, build_cache_key

logger = logging.getLogger("catalog_ingest.aggregate")


@dataclass
class AggregateQuery:
    """One aggregate search request."""

    query: str
    platform: str = "ALL"
    offset: int = 0
    limit: int = Settings.DEFAULT_PAGE_LIMIT
    bounds: FilterBounds = field(default_factory=FilterBounds)
    headless: bool = False
    nocache: bool = False
    debug: bool = False

    def clamped(self) -> "AggregateQuery":
        """Return a copy with offset >= 0 and limit within 1..MAX_PAGE_LIMIT."""
        return AggregateQuery(
            query=self.query.strip(),
            platform=(self.platform or Settings.ALL_PLATFORMS).upper(),
            offset=max(0, int(self.offset)),
            limit=min(Settings.MAX_PAGE_LIMIT, max(1, int(self.limit))),
            bounds=self.bounds,
            headless=self.headless,
            nocache=self.nocache,
            debug=self.debug,
        )


@dataclass
class AggregateResult:
    """A page of listings plus the size of the full filtered set."""

    items: list[NormalizedListing] = field(
        default_factory=lambda: list[NormalizedListing]()
    )
    total: int = 0
    meta: dict[str, Any] | None = None


class AggregateService:
    """Fetch → refine → cache → paginate.

    The full filtered, sorted result set is cached under a key that
    ignores pagination, so later pages of the same query are served
    without touching the marketplaces.
    """

    def __init__(
        self,
        orchestrator: FetchOrchestrator,
        cache: ResultCache,
        store: ListingStore | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.cache = cache
        self.store = store

    async def query(self, request: AggregateQuery) -> AggregateResult:
        """Answer one aggregate request.

        An empty query is not an error: it yields an empty page with
        ``total`` 0 and no marketplace is contacted.

        Raises:
            InvalidArgument: unsupported platform selector.
        """
        req = request.clamped()
        # Validate the selector before consulting the cache
        self.orchestrator.resolve(req.platform)

        key = build_cache_key(req.query, req.platform, req.bounds, req.headless)
        cached = None if req.nocache else self.cache.get(key)
        meta: dict[str, Any] = {
            "cacheHit": cached is not None,
            "platformCounts": {},
            "errors": {},
        }

        if cached is not None:
            listings: list[NormalizedListing] = cached
        else:
            per_provider = provider_fetch_size(
                req.platform, req.offset, req.limit, req.headless
            )
            outcome = await self.orchestrator.fetch(
                req.platform, req.query, per_provider, req.headless
            )
            listings, stats = ListingFilter.refine(outcome.listings, req.bounds)
            meta.update(
                platformCounts=outcome.platform_counts,
                errors=outcome.errors,
                fetched=stats.fetched,
                deduplicated=stats.deduplicated,
                excluded=stats.reasons,
            )
            if not req.nocache:
                self.cache.set(key, listings)
            await self._persist(listings, req.query)

        page = listings[req.offset:req.offset + req.limit]
        return AggregateResult(
            items=page,
            total=len(listings),
            meta=meta if req.debug else None,
        )

    async def _persist(
        self,
        listings: list[NormalizedListing],
        query: str,
    ) -> None:
        """Best-effort upsert of fresh results, tagged with the query."""
        if self.store is None or not listings:
            return
        records = [
            SavedListingRecord.from_listing(x, [], [query]) for x in listings
        ]
        try:
            saved = await asyncio.to_thread(self.store.upsert_listings, records)
        except PersistenceFailure as exc:
            logger.warning(
                "Listing snapshot save failed for '%s': %s",
                query,
                exc,
                exc_info=True,
            )
            return
        logger.debug("Upserted %d listings for '%s'", saved, query)
