# catalog_ingest/models/listing.py

"""Listing data models for inter-module data flow."""

from dataclasses import dataclass, field


@dataclass
class ExternalListing:
    """A single listing as scraped from one marketplace."""

    platform: str
    url: str
    title: str
    image: str = ""
    price_text: str = ""
    moq_text: str = ""
    store_name: str = ""
    description: str = ""
    rating: str = ""
    orders: str = ""


@dataclass
class NormalizedListing(ExternalListing):
    """An external listing with canonical URL and parsed numeric signals."""

    canonical_url: str = ""
    parsed_price: float | None = None
    parsed_moq: int | None = None


@dataclass
class SavedListingRecord(ExternalListing):
    """A listing as upserted into the listing store.

    ``categories`` and ``terms`` are coverage tags; the store key is
    ``(platform, canonical_url)``.
    """

    canonical_url: str = ""
    categories: list[str] = field(
        default_factory=lambda: list[str]()
    )
    terms: list[str] = field(
        default_factory=lambda: list[str]()
    )

    @classmethod
    def from_listing(
        cls,
        listing: NormalizedListing,
        categories: list[str],
        terms: list[str],
    ) -> "SavedListingRecord":
        """Tag a normalized listing for persistence."""
        return cls(
            platform=listing.platform,
            url=listing.url,
            title=listing.title or "Product",
            image=listing.image,
            price_text=listing.price_text,
            moq_text=listing.moq_text,
            store_name=listing.store_name,
            description=listing.description,
            rating=listing.rating,
            orders=listing.orders,
            canonical_url=listing.canonical_url or listing.url,
            categories=list(dict.fromkeys(categories)),
            terms=list(dict.fromkeys(t for t in terms if t)),
        )


def listing_to_dict(listing: ExternalListing) -> dict[str, object]:
    """Serialise a listing to a plain dict for JSON output."""
    data: dict[str, object] = {
        "platform": listing.platform,
        "url": listing.url,
        "title": listing.title,
        "image": listing.image,
        "price": listing.price_text,
        "moq": listing.moq_text,
        "storeName": listing.store_name,
        "description": listing.description,
        "rating": listing.rating,
        "orders": listing.orders,
    }
    if isinstance(listing, NormalizedListing):
        data["canonicalUrl"] = listing.canonical_url
        data["parsedPrice"] = listing.parsed_price
        data["parsedMoq"] = listing.parsed_moq
    return data
