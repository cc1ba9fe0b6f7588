# tests/test_listing_filter.py

"""Tests for the wholesale quality filter and deterministic ordering."""

import random
import unittest

from catalog_ingest.filters.listing_filter import (
    FilterBounds,
    ListingFilter,
    effective_moq,
    normalize_listing,
)
from catalog_ingest.models.listing import ExternalListing


def _listing(
    url: str,
    title: str = "Widget",
    moq: str = "",
    price: str = "",
    description: str = "",
) -> ExternalListing:
    return ExternalListing(
        platform="ALIBABA",
        url=url,
        title=title,
        moq_text=moq,
        price_text=price,
        description=description,
    )


class TestEndToEnd(unittest.TestCase):
    """normalize → dedup → filter → sort on a small batch."""

    def test_duplicate_dropped_regardless_of_its_moq(self) -> None:
        kept, stats = ListingFilter.refine([
            _listing("https://a.com/x?s=1", "Widget", "MOQ 100"),
            _listing("https://a.com/x?s=2", "widget", "50"),
        ])
        self.assertEqual(len(kept), 1)
        self.assertEqual(kept[0].canonical_url, "https://a.com/x")
        self.assertEqual(kept[0].parsed_moq, 100)
        self.assertEqual(stats.deduplicated, 1)
        self.assertEqual(stats.excluded, 0)


class TestEffectiveMoq(unittest.TestCase):
    """Fallback chain for the MOQ used by the floor."""

    def test_explicit_moq_text(self) -> None:
        self.assertEqual(effective_moq(_listing("u", moq="MOQ: 500 pcs")), 500)

    def test_from_title(self) -> None:
        self.assertEqual(
            effective_moq(_listing("u", title="Bottle Min. Order: 30")), 30
        )

    def test_retail_phrase_resolves_to_one(self) -> None:
        self.assertEqual(
            effective_moq(_listing("u", price="$5 for 1 item")), 1
        )

    def test_unknown(self) -> None:
        self.assertIsNone(effective_moq(_listing("u", title="Bottle")))


class TestListingFilter(unittest.TestCase):
    """Exclusion policy."""

    def _apply(self, listing: ExternalListing, bounds: FilterBounds | None = None):
        return ListingFilter.apply([normalize_listing(listing)], bounds)

    def test_retail_listing_excluded_by_floor(self) -> None:
        kept, reasons = self._apply(_listing("https://a.com/1", price="$5 for 1 item"))
        self.assertEqual(kept, [])
        self.assertEqual(reasons, {"moq_floor": 1})

    def test_moq_one_excluded_even_with_min_moq_one(self) -> None:
        kept, _ = self._apply(
            _listing("https://a.com/1", moq="MOQ: 1"),
            FilterBounds(min_moq=1),
        )
        self.assertEqual(kept, [])

    def test_moq_two_passes_floor(self) -> None:
        kept, _ = self._apply(_listing("https://a.com/1", moq="MOQ: 2"))
        self.assertEqual(len(kept), 1)

    def test_caller_min_moq_raises_floor(self) -> None:
        kept, reasons = self._apply(
            _listing("https://a.com/1", moq="MOQ: 50"),
            FilterBounds(min_moq=100),
        )
        self.assertEqual(kept, [])
        self.assertEqual(reasons, {"moq_floor": 1})

    def test_unknown_moq_kept_without_caller_min(self) -> None:
        kept, _ = self._apply(_listing("https://a.com/1", title="Ceramic mug"))
        self.assertEqual(len(kept), 1)

    def test_unknown_moq_dropped_with_caller_min(self) -> None:
        kept, reasons = self._apply(
            _listing("https://a.com/1", title="Ceramic mug"),
            FilterBounds(min_moq=10),
        )
        self.assertEqual(kept, [])
        self.assertEqual(reasons, {"moq_unknown": 1})

    def test_banned_keyword(self) -> None:
        kept, reasons = self._apply(
            _listing("https://a.com/1", title="Freight forwarder to Europe", moq="MOQ 10")
        )
        self.assertEqual(kept, [])
        self.assertEqual(reasons, {"keyword": 1})

    def test_price_bounds(self) -> None:
        cheap = _listing("https://a.com/1", price="US$ 1.50", moq="MOQ 10")
        pricey = _listing("https://a.com/2", price="US$ 90", moq="MOQ 10")
        unknown = _listing("https://a.com/3", moq="MOQ 10")
        bounds = FilterBounds(min_price=2, max_price=50)
        kept, reasons = ListingFilter.apply(
            [normalize_listing(x) for x in (cheap, pricey, unknown)], bounds
        )
        self.assertEqual(kept, [])
        self.assertEqual(reasons, {"min_price": 2, "max_price": 1})

    def test_max_price_keeps_unknown(self) -> None:
        kept, _ = self._apply(
            _listing("https://a.com/1", moq="MOQ 10"), FilterBounds(max_price=5)
        )
        self.assertEqual(len(kept), 1)

    def test_max_moq(self) -> None:
        kept, reasons = self._apply(
            _listing("https://a.com/1", moq="MOQ 5000"), FilterBounds(max_moq=1000)
        )
        self.assertEqual(kept, [])
        self.assertEqual(reasons, {"max_moq": 1})

    def test_non_positive_bounds_ignored(self) -> None:
        bounds = FilterBounds(min_price=0, max_price=-1, min_moq=0, max_moq=0)
        self.assertEqual(
            bounds.as_key(),
            {"minPrice": None, "maxPrice": None, "minMoq": None, "maxMoq": None},
        )


class TestSortStability(unittest.TestCase):
    """Ordering is by lower-cased title then raw URL, and deterministic."""

    def _batch(self) -> list[ExternalListing]:
        return [
            _listing("https://a.com/b", "beta", "MOQ 10"),
            _listing("https://a.com/a2", "Alpha", "MOQ 10"),
            _listing("https://a.com/a1", "alpha", "MOQ 10"),
            _listing("https://a.com/c", "Gamma", "MOQ 10"),
        ]

    def test_order(self) -> None:
        kept, _ = ListingFilter.refine(self._batch())
        self.assertEqual(
            [x.url for x in kept],
            [
                "https://a.com/a1",
                "https://a.com/a2",
                "https://a.com/b",
                "https://a.com/c",
            ],
        )

    def test_repeatable_on_shuffled_input(self) -> None:
        batch = self._batch()
        first, _ = ListingFilter.refine(batch)
        random.Random(7).shuffle(batch)
        second, _ = ListingFilter.refine(batch)
        self.assertEqual(
            [(x.title, x.url) for x in first],
            [(x.title, x.url) for x in second],
        )


if __name__ == "__main__":
    unittest.main()
