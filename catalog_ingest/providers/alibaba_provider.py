# catalog_ingest/providers/alibaba_provider.py

"""Provider for alibaba.com search results."""

import re
from urllib.parse import quote_plus, urlsplit, urlunsplit

from bs4 import Tag

from catalog_ingest.models.listing import ExternalListing
from catalog_ingest.providers.base_provider import BaseProvider, clean_text

# Thumbnail suffixes: "H1.jpg_300x300.jpg", "H1_220x220.jpg", "H1.png_300x300q80.jpg_.webp"
_THUMB_SUFFIX_RE = re.compile(
    r"(\.(?:jpg|jpeg|png|webp))?_\d{2,4}x\d{2,4}(?:q\d{2})?(\.(?:jpg|jpeg|png|webp))(?:_\.webp)?$",
    re.I,
)


class AlibabaProvider(BaseProvider):
    """Provider for alibaba.com (B2B wholesale)."""

    def __init__(self) -> None:
        super().__init__("ALIBABA")

    def _get_homepage(self) -> str:
        """Return the Alibaba homepage URL."""
        return "https://www.alibaba.com/"

    def _search_url(self, query: str, page: int) -> str:
        return (
            "https://www.alibaba.com/trade/search"
            f"?SearchText={quote_plus(query)}&page={page}"
        )

    def _canonical_link(self, href: str) -> str:
        """Drop Alibaba's tracking query (spm, s, etc.)."""
        absolute = self._absolute(href)
        parts = urlsplit(absolute)
        if not parts.netloc:
            return absolute
        return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))

    @staticmethod
    def upgrade_thumbnail(url: str) -> str:
        """Turn a sized thumbnail URL into the full-size image URL."""
        if not url:
            return url
        return _THUMB_SUFFIX_RE.sub(lambda m: m.group(1) or m.group(2), url)

    def _parse_card(self, card: Tag) -> ExternalListing | None:
        """Parse a single search card into an ExternalListing."""
        link_sel = self.selectors.get("link", "a[href]")
        link_el = card.select_one(link_sel)
        href = link_el.get("href") if link_el else None
        if not isinstance(href, str) or not href:
            return None

        title = self._select_text(card, "title")
        if not title and link_el is not None:
            title_attr = link_el.get("title")
            title = clean_text(
                title_attr if isinstance(title_attr, str) else link_el.get_text(" ")
            )
        if not title:
            return None

        return ExternalListing(
            platform=self.platform,
            url=self._canonical_link(href),
            title=title,
            image=self.upgrade_thumbnail(self._select_image(card)),
            price_text=self._select_text(card, "price"),
            moq_text=self._select_text(card, "moq"),
            store_name=self._select_text(card, "store"),
            rating=self._select_text(card, "rating"),
        )
