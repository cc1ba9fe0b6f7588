# catalog_ingest/providers/made_in_china_provider.py

"""Provider for made-in-china.com search results."""

import re
from urllib.parse import quote

from bs4 import Tag

from catalog_ingest.models.listing import ExternalListing
from catalog_ingest.providers.base_provider import BaseProvider, clean_text


class MadeInChinaProvider(BaseProvider):
    """Provider for made-in-china.com.

    Search pages are served under a keyword slug; cards come in several
    legacy layouts, so the title falls back through ``data-title``, the
    product name node and heading tags.
    """

    def __init__(self) -> None:
        super().__init__("MADE_IN_CHINA")

    def _get_homepage(self) -> str:
        """Return the Made-in-China homepage URL."""
        return "https://www.made-in-china.com/"

    def _search_url(self, query: str, page: int) -> str:
        slug = quote(re.sub(r"\s+", "_", query.strip()) or "products")
        if page == 1:
            return (
                "https://www.made-in-china.com/products-search/"
                f"hot-china-products/{slug}.html"
            )
        return (
            "https://www.made-in-china.com/products-search/"
            f"hot-china-products/{slug}_{page}.html"
        )

    def _parse_card(self, card: Tag) -> ExternalListing | None:
        """Parse one product card into an ExternalListing."""
        link_el = card.select_one(self.selectors.get("link", "a[href]"))
        href = link_el.get("href") if link_el else None
        if not isinstance(href, str) or not href:
            return None

        data_title = card.get("data-title")
        title = (
            clean_text(data_title) if isinstance(data_title, str) else ""
        ) or self._select_text(card, "title")
        if not title and link_el is not None:
            title_attr = link_el.get("title")
            title = clean_text(title_attr) if isinstance(title_attr, str) else ""
        if not title:
            return None

        return ExternalListing(
            platform=self.platform,
            url=self._canonical_link(href),
            title=title,
            image=self._select_image(card),
            price_text=self._select_text(card, "price"),
            moq_text=self._select_text(card, "moq"),
            store_name=self._select_text(card, "store"),
        )
