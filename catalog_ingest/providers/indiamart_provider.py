# catalog_ingest/providers/indiamart_provider.py

"""Provider for dir.indiamart.com search results."""

import logging
from urllib.parse import quote_plus, urlsplit, urlunsplit

from bs4 import Tag

from catalog_ingest.models.listing import ExternalListing
from catalog_ingest.providers.base_provider import BaseProvider, clean_text

logger = logging.getLogger("catalog_ingest.indiamart")


class IndiaMartProvider(BaseProvider):
    """Provider for IndiaMART's directory search."""

    def __init__(self) -> None:
        super().__init__("INDIAMART")

    def _get_homepage(self) -> str:
        """Return the IndiaMART directory homepage URL."""
        return "https://dir.indiamart.com/"

    def _search_url(self, query: str, page: int) -> str:
        return (
            "https://dir.indiamart.com/search.mp"
            f"?ss={quote_plus(query)}&pg={page}"
        )

    def _canonical_link(self, href: str) -> str:
        """Reduce a result link to origin and path.

        Directory redirects (``/products/?id=..``) identify the product only
        through the query string, which URL normalisation strips; they map
        to an empty URL and are skipped.
        """
        absolute = self._absolute(href)
        parts = urlsplit(absolute)
        if not parts.netloc:
            return absolute
        if parts.path.rstrip("/").endswith("/products"):
            return ""
        return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))

    def _parse_card(self, card: Tag) -> ExternalListing | None:
        """Parse a single result card into an ExternalListing."""
        link_el = card.select_one(self.selectors.get("link", "a[href]"))
        href = link_el.get("href") if link_el else None
        if not isinstance(href, str) or not href:
            return None

        title = self._select_text(card, "title")
        if not title and link_el is not None:
            title = clean_text(link_el.get_text(" "))
        url = self._canonical_link(href)
        if not url:
            logger.debug("Skipping directory redirect link %s", href)
            return None
        if not title:
            return None

        return ExternalListing(
            platform=self.platform,
            url=url,
            title=title,
            image=self._select_image(card),
            price_text=self._select_text(card, "price"),
            moq_text=self._select_text(card, "moq"),
            store_name=self._select_text(card, "store"),
            description=self._select_text(card, "description"),
        )
