# catalog_ingest/filters/listing_filter.py

"""Quality filtering: MOQ floor, banned keywords and caller price/MOQ bounds."""

import logging
from dataclasses import dataclass, field

from catalog_ingest.config.settings import Settings
from catalog_ingest.filters.deduplicator import (
    ListingDeduplicator,
    normalize_url,
)
from catalog_ingest.filters.text_parsers import (
    is_excluded_by_keywords,
    parse_moq,
    parse_price,
    parse_quantity_hint,
)
from catalog_ingest.models.listing import ExternalListing, NormalizedListing

logger = logging.getLogger("catalog_ingest.filters")


@dataclass
class FilterBounds:
    """Optional caller-supplied numeric bounds.

    Non-positive values are treated as "not supplied", matching how the
    query surface reads empty form fields.
    """

    min_price: float | None = None
    max_price: float | None = None
    min_moq: float | None = None
    max_moq: float | None = None

    def __post_init__(self) -> None:
        for name in ("min_price", "max_price", "min_moq", "max_moq"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                setattr(self, name, None)

    def as_key(self) -> dict[str, float | None]:
        """Return the bounds as a plain dict for cache keys."""
        return {
            "minPrice": self.min_price,
            "maxPrice": self.max_price,
            "minMoq": self.min_moq,
            "maxMoq": self.max_moq,
        }


@dataclass
class RefineStats:
    """Counters from one normalise → dedup → filter → sort pass."""

    fetched: int = 0
    deduplicated: int = 0
    excluded: int = 0
    reasons: dict[str, int] = field(
        default_factory=lambda: dict[str, int]()
    )


def effective_moq(listing: ExternalListing) -> int | None:
    """Resolve a listing's MOQ from its explicit MOQ text or its other text."""
    explicit = parse_moq(listing.moq_text)
    if explicit is not None:
        return explicit
    combined = (
        f"{listing.price_text or ''} {listing.title or ''} "
        f"{listing.description or ''}"
    )
    from_text = parse_moq(combined)
    if from_text is not None:
        return from_text
    return parse_quantity_hint(f"{listing.moq_text or ''} {combined}")


def normalize_listing(listing: ExternalListing) -> NormalizedListing:
    """Attach canonical URL and parsed price/MOQ to a scraped listing."""
    return NormalizedListing(
        platform=listing.platform,
        url=listing.url,
        title=listing.title,
        image=listing.image,
        price_text=listing.price_text,
        moq_text=listing.moq_text,
        store_name=listing.store_name,
        description=listing.description,
        rating=listing.rating,
        orders=listing.orders,
        canonical_url=normalize_url(listing.url or ""),
        parsed_price=parse_price(listing.price_text),
        parsed_moq=effective_moq(listing),
    )


class ListingFilter:
    """Drop listings that fail the wholesale quality policy."""

    @staticmethod
    def rejection_reason(
        listing: NormalizedListing,
        bounds: FilterBounds,
    ) -> str | None:
        """Return why a listing is rejected, or ``None`` if it passes."""
        if is_excluded_by_keywords(
            listing.title, listing.description
        ).excluded:
            return "keyword"

        moq = listing.parsed_moq
        floor = max(Settings.MOQ_FLOOR, bounds.min_moq or 0)
        if moq is not None and moq < floor:
            return "moq_floor"
        if bounds.min_moq is not None and moq is None:
            return "moq_unknown"
        if bounds.max_moq is not None and moq is not None and moq > bounds.max_moq:
            return "max_moq"

        price = listing.parsed_price
        if bounds.min_price is not None and (
            price is None or price < bounds.min_price
        ):
            return "min_price"
        if bounds.max_price is not None and (
            price is not None and price > bounds.max_price
        ):
            return "max_price"
        return None

    @staticmethod
    def apply(
        listings: list[NormalizedListing],
        bounds: FilterBounds | None = None,
    ) -> tuple[list[NormalizedListing], dict[str, int]]:
        """Filter listings, returning the kept list and per-reason counts."""
        active = bounds or FilterBounds()
        kept: list[NormalizedListing] = []
        reasons: dict[str, int] = {}
        for listing in listings:
            reason = ListingFilter.rejection_reason(listing, active)
            if reason is None:
                kept.append(listing)
            else:
                reasons[reason] = reasons.get(reason, 0) + 1

        excluded = sum(reasons.values())
        if excluded:
            logger.info(
                "Quality filter excluded %d listings %s",
                excluded,
                reasons,
            )
        return kept, reasons

    @staticmethod
    def sort_listings(
        listings: list[NormalizedListing],
    ) -> list[NormalizedListing]:
        """Deterministic order: lower-cased title, then raw URL."""
        return sorted(
            listings,
            key=lambda x: ((x.title or "").lower(), x.url or ""),
        )

    @staticmethod
    def refine(
        listings: list[ExternalListing],
        bounds: FilterBounds | None = None,
    ) -> tuple[list[NormalizedListing], RefineStats]:
        """Normalise, deduplicate, filter and sort a fetched batch."""
        stats = RefineStats(fetched=len(listings))
        normalized = [normalize_listing(x) for x in listings]
        unique, stats.deduplicated = ListingDeduplicator.deduplicate(
            normalized
        )
        kept, stats.reasons = ListingFilter.apply(unique, bounds)
        stats.excluded = sum(stats.reasons.values())
        return ListingFilter.sort_listings(kept), stats
