# catalog_ingest/services/topoff.py

"""Category coverage top-off: find sparse leaves and fill them."""

import asyncio
import logging

from catalog_ingest.config.settings import Settings
from catalog_ingest.filters.listing_filter import ListingFilter
from catalog_ingest.models.category import CategoryLeaf
from catalog_ingest.models.job import Classification, Quality, WorkItem
from catalog_ingest.models.listing import ExternalListing, SavedListingRecord
from catalog_ingest.services.fetch_orchestrator import FetchOrchestrator
from catalog_ingest.services.term_generator import TermGenerator
from catalog_ingest.storage.interfaces import (
    ImageCache,
    ListingStore,
    TaxonomyProvider,
)

logger = logging.getLogger("catalog_ingest.topoff")


class CoverageWorkSource:
    """Leaves whose stored listing count is below ``min_coverage``."""

    def __init__(
        self,
        taxonomy: TaxonomyProvider,
        store: ListingStore,
        platforms: list[str],
        min_coverage: int | None = None,
    ) -> None:
        self.taxonomy = taxonomy
        self.store = store
        self.platforms = platforms
        self.min_coverage = (
            min_coverage if min_coverage is not None else Settings.MIN_COVERAGE
        )

    def pending_items(self) -> list[WorkItem]:
        items: list[WorkItem] = []
        leaves = self.taxonomy.leaves()
        for leaf in leaves:
            existing = sum(
                self.store.count_listings(p, leaf.key) for p in self.platforms
            )
            if existing >= self.min_coverage:
                continue
            items.append(WorkItem(
                item_id=leaf.key,
                label=leaf.label,
                payload={"existing": existing, "aliases": list(leaf.aliases)},
            ))
        logger.info(
            "%d of %d leaves below %d listings",
            len(items),
            len(leaves),
            self.min_coverage,
        )
        return items


class TopoffDispatcher:
    """Tops off one leaf by searching its generated terms.

    Terms are tried in order until the leaf's deficit is covered.  A term
    whose static fetch looks thin is retried headless when allowed.
    Kept listings are tagged with the leaf key and the query words.
    """

    def __init__(
        self,
        orchestrator: FetchOrchestrator,
        store: ListingStore,
        platform: str,
        term_generator: TermGenerator | None = None,
        image_cache: ImageCache | None = None,
        min_coverage: int | None = None,
        per_term_limit: int = 70,
        headless: bool = False,
        terms_cap: int | None = None,
        tokens_max: int | None = None,
        combos: int | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.platform = platform
        self.terms = term_generator or TermGenerator()
        self.image_cache = image_cache
        self.min_coverage = (
            min_coverage if min_coverage is not None else Settings.MIN_COVERAGE
        )
        self.per_term_limit = per_term_limit
        self.headless = headless
        self.terms_cap = terms_cap if terms_cap is not None else Settings.TERMS_CAP
        self.tokens_max = (
            tokens_max if tokens_max is not None else Settings.TOKENS_MAX
        )
        self.combos = combos if combos is not None else Settings.TERM_COMBOS

    async def _fetch_term(self, term: str) -> list[ExternalListing]:
        outcome = await self.orchestrator.fetch(
            self.platform, term, self.per_term_limit
        )
        batch = outcome.listings
        if self.headless and len(batch) < min(6, self.per_term_limit / 2):
            rendered = await self.orchestrator.fetch(
                self.platform, term, self.per_term_limit, headless=True
            )
            if len(rendered.listings) > len(batch):
                batch = rendered.listings
        return batch

    async def _coverage(self, platforms: list[str], category: str) -> int:
        """Listings currently tagged with ``category`` across ``platforms``."""
        counts = [
            await asyncio.to_thread(self.store.count_listings, p, category)
            for p in platforms
        ]
        return sum(counts)

    async def _localize_images(self, records: list[SavedListingRecord]) -> None:
        if self.image_cache is None:
            return
        for rec in records:
            if not rec.image:
                continue
            local = await asyncio.to_thread(
                self.image_cache.cache_external_image, rec.image
            )
            if local:
                rec.image = local

    async def dispatch(self, item: WorkItem) -> Classification:
        leaf = CategoryLeaf(
            key=item.item_id,
            label=item.label or item.item_id,
            aliases=list(item.payload.get("aliases") or []),
        )
        existing = int(item.payload.get("existing") or 0)
        target = min(self.min_coverage, Settings.MAX_PER_LEAF)
        deficit = target - existing
        if deficit <= 0:
            return Classification(quality=Quality.GOOD, detail="already covered")

        platforms = self.orchestrator.resolve(self.platform)
        baseline = await self._coverage(platforms, leaf.key)
        added = 0
        any_results = False
        seen: set[str] = set()
        for term in self.terms.generate(
            leaf,
            terms_cap=self.terms_cap,
            tokens_max=self.tokens_max,
            combos=self.combos,
        ):
            if added >= deficit:
                break
            batch = await self._fetch_term(term)
            any_results = any_results or bool(batch)
            kept, _ = ListingFilter.refine(batch)
            fresh = [x for x in kept if x.canonical_url not in seen]
            fresh = fresh[:deficit - added]
            if not fresh:
                continue
            seen.update(x.canonical_url for x in fresh)
            records = [
                SavedListingRecord.from_listing(
                    x, [leaf.key], [leaf.label, *term.split()]
                )
                for x in fresh
            ]
            await self._localize_images(records)
            await asyncio.to_thread(self.store.upsert_listings, records)
            # updates of already-tagged rows are not coverage
            gained = await self._coverage(platforms, leaf.key) - baseline - added
            added += gained
            logger.info(
                "Leaf %s term '%s': %d upserted, +%d new (%d/%d)",
                leaf.key,
                term,
                len(records),
                gained,
                existing + added,
                target,
            )

        if added >= deficit:
            quality = Quality.GOOD
        elif added > 0:
            quality = Quality.PARTIAL
        else:
            quality = Quality.BAD
        return Classification(
            quality=quality,
            fallback=not any_results,
            detail=f"+{added} ({existing + added}/{target})",
        )
