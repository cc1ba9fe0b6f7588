# catalog_ingest/filters/deduplicator.py

"""URL canonicalisation and first-seen listing deduplication."""

import logging
from typing import TypeVar
from urllib.parse import urlsplit, urlunsplit

from catalog_ingest.models.listing import ExternalListing

logger = logging.getLogger("catalog_ingest.filters")

ListingT = TypeVar("ListingT", bound=ExternalListing)


def normalize_url(raw: str) -> str:
    """Canonicalise a listing URL by clearing its query and fragment.

    Input that does not parse as an absolute URL (no scheme or host) is
    returned unchanged.  Never raises.
    """
    if not raw:
        return raw
    try:
        parts = urlsplit(raw.strip())
    except ValueError:
        return raw
    if not parts.scheme or not parts.netloc:
        return raw
    path = parts.path or "/"
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), path, "", "")
    )


class ListingDeduplicator:
    """Collapse listings that share a canonical URL, keeping the first."""

    @staticmethod
    def deduplicate(
        listings: list[ListingT],
    ) -> tuple[list[ListingT], int]:
        """Remove duplicate listings in fetch order.

        The first occurrence of each canonical URL is kept; order among
        kept items is preserved.  Listings without a URL are dropped.

        Returns the deduplicated list and the count of removed items.
        """
        if not listings:
            return [], 0

        seen: set[str] = set()
        kept: list[ListingT] = []
        removed = 0

        for listing in listings:
            key = normalize_url(listing.url or "")
            if not key or key in seen:
                removed += 1
                continue
            seen.add(key)
            kept.append(listing)

        if removed:
            logger.info(
                "Deduplication removed %d duplicate listings",
                removed,
            )

        return kept, removed
