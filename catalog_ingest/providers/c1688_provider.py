# catalog_ingest/providers/c1688_provider.py

"""Provider for 1688.com offer search."""

import json
import re
from typing import Any
from urllib.parse import quote, urlsplit, urlunsplit

from bs4 import BeautifulSoup, Tag

from catalog_ingest.models.listing import ExternalListing
from catalog_ingest.providers.base_provider import BaseProvider, clean_text

_OFFER_HREF_RE = re.compile(r"(?:detail|offer)\.1688\.com|/offer/")
_PRICE_RE = re.compile(r"[¥￥]?\s*\d+[\d,.]*\s*(?:USD|RMB|CNY|元)?")
_MOQ_RE = re.compile(
    r"(?:(?:MOQ|Min\.?\s*Order|Minimum\s*Order|起订量?|最小起订量|≥|>=)\s*[\d,]+)"
    r"|(?:[\d,]+\s*(?:件|箱|套|个|pcs|pieces|units|bags|lots)\b)",
    re.IGNORECASE,
)
_OFFER_LIST_KEY = '"offerList"'


class C1688Provider(BaseProvider):
    """Provider for 1688.com (Alibaba's domestic wholesale site).

    Desktop result pages often ship their offers as an inline JSON
    ``offerList`` instead of rendered cards; that blob is read before
    the JSON-LD and anchor fallbacks.
    """

    def __init__(self) -> None:
        super().__init__("C1688")

    def _get_homepage(self) -> str:
        """Return the 1688 homepage URL."""
        return "https://www.1688.com/"

    def _search_url(self, query: str, page: int) -> str:
        return (
            "https://s.1688.com/selloffer/offer_search.htm"
            f"?keywords={quote(query)}&n=y&beginPage={page}"
        )

    def _canonical_link(self, href: str) -> str:
        """Reduce an offer link to origin and path."""
        absolute = self._absolute(href)
        parts = urlsplit(absolute)
        if not parts.netloc:
            return absolute
        return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))

    def _parse_card(self, card: Tag) -> ExternalListing | None:
        """Parse one offer card into an ExternalListing."""
        link_el = card.select_one(self.selectors.get("link", "a[href]"))
        href = link_el.get("href") if link_el else None
        if not isinstance(href, str) or not _OFFER_HREF_RE.search(href):
            return None

        title = self._select_text(card, "title")
        if not title and link_el is not None:
            title_attr = link_el.get("title")
            title = clean_text(
                title_attr if isinstance(title_attr, str) else link_el.get_text(" ")
            )
        if not title:
            return None

        block = clean_text(card.get_text(" "))
        price = self._select_text(card, "price")
        if not price:
            match = _PRICE_RE.search(block)
            price = clean_text(match.group(0)) if match else ""
        moq = self._select_text(card, "moq")
        if not moq:
            match = _MOQ_RE.search(block)
            moq = clean_text(match.group(0)) if match else ""

        return ExternalListing(
            platform=self.platform,
            url=self._canonical_link(href),
            title=title[:140],
            image=self._select_image(card),
            price_text=price,
            moq_text=moq,
            store_name=self._select_text(card, "store"),
            orders=self._select_text(card, "orders"),
        )

    def _parse_embedded(self, soup: BeautifulSoup) -> list[ExternalListing]:
        """Read the inline ``offerList`` blob, then fall back to JSON-LD."""
        offers = self._extract_offer_list(soup)
        listings: list[ExternalListing] = []
        for offer in offers:
            listing = self._offer_to_listing(offer)
            if listing is not None:
                listings.append(listing)
        if listings:
            return listings
        return super()._parse_embedded(soup)

    @staticmethod
    def _extract_offer_list(soup: BeautifulSoup) -> list[dict[str, Any]]:
        decoder = json.JSONDecoder()
        for script in soup.find_all("script"):
            text = script.get_text() or ""
            idx = text.find(_OFFER_LIST_KEY)
            if idx < 0:
                continue
            start = text.find("[", idx + len(_OFFER_LIST_KEY))
            if start < 0:
                continue
            try:
                data, _ = decoder.raw_decode(text, start)
            except json.JSONDecodeError:
                continue
            if isinstance(data, list):
                return [x for x in data if isinstance(x, dict)]
        return []

    def _offer_to_listing(self, offer: dict[str, Any]) -> ExternalListing | None:
        info: Any = offer.get("information") or {}
        if not isinstance(info, dict):
            info = {}
        href = str(
            offer.get("detailUrl") or info.get("detailUrl") or offer.get("url") or ""
        )
        title = clean_text(str(
            offer.get("subject") or info.get("subject") or offer.get("title") or ""
        ))
        if not href or not title:
            return None

        price_info: Any = offer.get("tradePrice") or offer.get("priceInfo") or {}
        price = ""
        if isinstance(price_info, dict):
            amount = price_info.get("price") or price_info.get("offerPrice")
            if amount is not None:
                price = f"¥{amount}"
        elif offer.get("price") is not None:
            price = f"¥{offer['price']}"

        quantity: Any = offer.get("quantityBegin") or offer.get("minOrderQuantity")
        moq = f"{quantity}件起订" if quantity else ""

        image: Any = offer.get("image") or {}
        image_url = (
            image.get("imgUrl", "") if isinstance(image, dict) else str(image)
        )
        company: Any = offer.get("company") or {}

        return ExternalListing(
            platform=self.platform,
            url=self._canonical_link(href),
            title=title[:140],
            image=self._absolute(image_url) if image_url else "",
            price_text=price,
            moq_text=moq,
            store_name=clean_text(
                str(company.get("name", "")) if isinstance(company, dict) else ""
            ),
        )
