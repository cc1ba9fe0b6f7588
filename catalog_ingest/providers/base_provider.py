# catalog_ingest/providers/base_provider.py

"""Abstract base class for all marketplace providers."""

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import urljoin

import cloudscraper  # type: ignore[import-untyped]
from bs4 import BeautifulSoup, Tag
from curl_cffi import requests as curl_requests
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from catalog_ingest.config.settings import Settings
from catalog_ingest.models.listing import ExternalListing

_WHITESPACE_RE = re.compile(r"\s+")


def clean_text(value: str | None) -> str:
    """Collapse whitespace and trim."""
    if not value:
        return ""
    return _WHITESPACE_RE.sub(" ", value).strip()


class BaseProvider(ABC):
    """Abstract base class for all marketplace providers.

    Subclasses supply URLs and card parsing; callers only ever use
    :meth:`fetch`, which never raises.
    """

    platform: str = ""

    def __init__(self, platform: str) -> None:
        self.platform = platform
        self.logger = logging.getLogger(
            f"catalog_ingest.{platform.lower()}"
        )
        self.settings = Settings()
        self.selectors: dict[str, str] = self._load_selectors()
        self.session = curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )
        self._current_delay: float = (
            self.settings.REQUEST_DELAY
        )
        self._consecutive_failures: int = 0
        self._circuit_open: bool = False
        self._circuit_opened_at: float = 0.0
        self._request_timeout: int = (
            self.settings.REQUEST_TIMEOUT
        )

    # ── Public contract ──────────────────────────────────

    def fetch(
        self,
        query: str,
        limit: int,
        headless: bool = False,
    ) -> list[ExternalListing]:
        """Search this marketplace; return at most ``limit`` listings.

        Network and parse errors are logged and yield an empty list.
        """
        if limit <= 0:
            return []
        try:
            listings = self._search(query, limit, headless)
        except Exception as exc:
            self.logger.error(
                "[%s] Fetch failed for '%s': %s",
                self.platform,
                query,
                exc,
                exc_info=True,
            )
            return []
        self.logger.info(
            "[%s] '%s' -> %d listings",
            self.platform,
            query,
            len(listings),
        )
        return listings[:limit]

    # ── Configuration ────────────────────────────────────

    def _load_selectors(self) -> dict[str, str]:
        """Load CSS selectors for this platform from selectors.json."""
        with open(self.settings.SELECTORS_PATH, encoding="utf-8") as f:
            all_selectors: dict[str, Any] = json.load(f)
        result: dict[str, str] = all_selectors.get(
            self.platform, {}
        )
        return result

    def _wait(self) -> None:
        """Sleep using the current (possibly escalated) delay."""
        time.sleep(self._current_delay)

    # ── Response validation ──────────────────────────────

    # Cloudflare challenge page markers (checked before keyword scan)
    _CF_CHALLENGE_MARKERS: list[str] = [
        "challenges.cloudflare.com",
        "cdn-cgi/challenge-platform",
        "just a moment",
        "cf-turnstile",
        "cf_chl_opt",
    ]

    def _validate_response(
        self, resp: curl_requests.Response,
    ) -> bool:
        """Check for challenge pages and CAPTCHA indicators."""
        text = resp.text
        if text.lstrip().startswith(("{", "[")):
            return True
        lower = text.lower()

        for marker in self._CF_CHALLENGE_MARKERS:
            if marker in lower:
                self.logger.warning(
                    "[%s] Cloudflare challenge detected "
                    "(marker: '%s')",
                    self.platform,
                    marker,
                )
                return False

        # Skip the keyword scan on large pages with real content
        has_body_content = (
            "<body" in lower and len(text) > 5000
        )
        if not has_body_content:
            for keyword in self.settings.CAPTCHA_KEYWORDS:
                if keyword in lower:
                    self.logger.warning(
                        "[%s] CAPTCHA keyword '%s' "
                        "detected",
                        self.platform,
                        keyword,
                    )
                    return False
        return True

    # ── Circuit breaker & backoff ────────────────────────

    def _check_circuit(self) -> bool:
        """Return True if the circuit breaker blocks this request.

        After CIRCUIT_BREAKER_COOLDOWN seconds the breaker enters
        a half-open state, allowing a single probe request through.
        """
        if not self._circuit_open:
            return False
        elapsed = time.time() - self._circuit_opened_at
        if elapsed >= self.settings.CIRCUIT_BREAKER_COOLDOWN:
            self.logger.info(
                "[%s] Circuit breaker half-open after %.0fs",
                self.platform,
                elapsed,
            )
            self._circuit_open = False
            return False
        return True

    def _record_success(self) -> None:
        """Reset failure counters after a successful fetch."""
        self._consecutive_failures = 0
        self._circuit_open = False
        self._circuit_opened_at = 0.0
        self._current_delay = self.settings.REQUEST_DELAY

    def _record_failure(self) -> None:
        """Track failure and open circuit breaker if needed."""
        self._consecutive_failures += 1
        threshold = (
            self.settings.CIRCUIT_BREAKER_THRESHOLD
        )
        if self._consecutive_failures >= threshold:
            self._circuit_open = True
            self._circuit_opened_at = time.time()
            self.logger.error(
                "[%s] Circuit breaker opened after %d "
                "consecutive failures",
                self.platform,
                self._consecutive_failures,
            )

    def _escalate_delay(self) -> None:
        """Double the current delay up to the configured max."""
        max_delay = (
            self.settings.REQUEST_DELAY
            * self.settings.MAX_DELAY_MULTIPLIER
        )
        self._current_delay = min(
            self._current_delay * 2, max_delay
        )
        self.logger.warning(
            "[%s] Rate-limited, delay escalated to %.1fs",
            self.platform,
            self._current_delay,
        )

    # ── HTTP ─────────────────────────────────────────────

    def _fetch_get(
        self,
        url: str,
        headers: dict[str, str],
    ) -> curl_requests.Response | None:
        """GET with retries, adaptive delay, and circuit breaker."""
        if self._check_circuit():
            return None
        for attempt in range(self.settings.MAX_RETRIES):
            try:
                resp = self.session.get(
                    url,
                    headers=headers,
                    timeout=self._request_timeout,
                )
                if resp.status_code == 200:
                    if not self._validate_response(resp):
                        self._escalate_delay()
                        time.sleep(self._current_delay)
                        continue
                    self._record_success()
                    return resp
                self.logger.warning(
                    "[%s] HTTP %d on attempt %d",
                    self.platform,
                    resp.status_code,
                    attempt + 1,
                )
                if resp.status_code in (429, 403, 503):
                    self._escalate_delay()
                    time.sleep(self._current_delay)
            except Exception as exc:
                self.logger.warning(
                    "[%s] Request error on attempt %d: %s",
                    self.platform,
                    attempt + 1,
                    exc,
                    exc_info=True,
                )
                time.sleep(
                    self._current_delay * (attempt + 1)
                )
        self._record_failure()
        return None

    def _get_page(self, url: str) -> BeautifulSoup | None:
        """Fetch a page, falling back to cloudscraper on failure."""
        if self._check_circuit():
            return None
        headers: dict[str, str] = {
            **self.settings.DEFAULT_HEADERS,
            "Referer": self._get_homepage(),
        }
        self._wait()

        # Primary: curl_cffi (browser-impersonating TLS)
        resp = self._fetch_get(url, headers)
        if resp:
            return BeautifulSoup(resp.text, "lxml")

        # Fallback: cloudscraper (JS challenge solver)
        self.logger.info(
            "[%s] curl_cffi exhausted, falling back to cloudscraper",
            self.platform,
        )
        try:
            _cs: Any = cloudscraper
            scraper: Any = _cs.create_scraper()
            fallback_resp: Any = scraper.get(
                url,
                headers=headers,
                timeout=self._request_timeout,
            )
            if fallback_resp.status_code == 200:
                return BeautifulSoup(
                    str(fallback_resp.text), "lxml"
                )
        except Exception as e:
            self.logger.error(
                "[%s] cloudscraper fallback also failed: %s",
                self.platform,
                e,
                exc_info=True,
            )

        return None

    def _render_headless(self, url: str) -> BeautifulSoup | None:
        """Render a page in headless Chromium and return its DOM."""
        self.logger.info("[%s] Headless render: %s", self.platform, url)
        try:
            with sync_playwright() as pw:
                browser = pw.chromium.launch(
                    headless=True,
                    args=["--no-sandbox", "--disable-setuid-sandbox"],
                )
                try:
                    page = browser.new_page(
                        extra_http_headers={
                            "Accept-Language": self.settings.DEFAULT_HEADERS[
                                "Accept-Language"
                            ],
                        },
                    )
                    page.goto(
                        url,
                        timeout=self.settings.HEADLESS_TIMEOUT_MS,
                        wait_until="domcontentloaded",
                    )
                    page.wait_for_timeout(1200)
                    html = page.content()
                finally:
                    browser.close()
        except PlaywrightError as exc:
            self.logger.warning(
                "[%s] Headless render failed: %s",
                self.platform,
                exc,
                exc_info=True,
            )
            return None
        return BeautifulSoup(html, "lxml")

    # ── Parsing helpers ──────────────────────────────────

    def _absolute(self, href: str | None) -> str:
        """Resolve a (possibly protocol-relative) link against the homepage."""
        if not href:
            return ""
        href = href.strip()
        if href.startswith("//"):
            return f"https:{href}"
        if href.startswith("http://"):
            return "https://" + href[len("http://"):]
        return urljoin(self._get_homepage(), href)

    def _select_text(self, card: Tag, key: str) -> str:
        """Return the cleaned text of the first node matching a selector key."""
        selector = self.selectors.get(key, "")
        if not selector:
            return ""
        el = card.select_one(selector)
        return clean_text(el.get_text(" ")) if el else ""

    def _select_image(self, card: Tag) -> str:
        """Return the best image URL inside a card (lazy-load aware)."""
        selector = self.selectors.get("image", "img")
        img = card.select_one(selector)
        if img is None:
            return ""
        for attr in ("data-src", "data-lazy-src", "data-original", "src"):
            value = img.get(attr)
            if isinstance(value, str) and value and not value.startswith("data:"):
                return self._absolute(value)
        return ""

    @staticmethod
    def _json_ld_products(soup: BeautifulSoup) -> list[dict[str, Any]]:
        """Collect schema.org Product objects from JSON-LD script tags."""
        products: list[dict[str, Any]] = []
        for script in soup.select('script[type="application/ld+json"]'):
            try:
                data: Any = json.loads(script.get_text() or "null")
            except json.JSONDecodeError:
                continue
            stack: list[Any] = [data]
            while stack:
                node = stack.pop()
                if isinstance(node, list):
                    stack.extend(node)
                elif isinstance(node, dict):
                    if node.get("@type") == "Product":
                        products.append(node)
                    stack.extend(
                        v for v in node.values()
                        if isinstance(v, (list, dict))
                    )
        return products

    # ── Pagination ───────────────────────────────────────

    def _search(
        self,
        query: str,
        limit: int,
        headless: bool,
    ) -> list[ExternalListing]:
        """Walk result pages until ``limit`` listings or two empty pages.

        With ``headless`` enabled, a page whose static HTML yields no
        listings is re-rendered in Chromium once before giving up.
        """
        listings: list[ExternalListing] = []
        seen_urls: set[str] = set()
        empty_streak = 0

        for page in range(1, self.settings.MAX_PAGES + 1):
            url = self._search_url(query, page)
            self.logger.info(
                "[%s] Fetching page %d (%d so far)",
                self.platform,
                page,
                len(listings),
            )
            soup = self._get_page(url)
            batch = self._parse_page(soup) if soup else []
            if not batch and headless:
                rendered = self._render_headless(url)
                batch = self._parse_page(rendered) if rendered else []
            if soup is None and not batch:
                break

            fresh = [x for x in batch if x.url and x.url not in seen_urls]
            seen_urls.update(x.url for x in fresh)
            listings.extend(fresh)

            if len(listings) >= limit:
                break
            empty_streak = 0 if fresh else empty_streak + 1
            if empty_streak >= 2:
                self.logger.info(
                    "[%s] Two consecutive empty pages, stopping",
                    self.platform,
                )
                break

        return listings[:limit]

    def _parse_page(self, soup: BeautifulSoup) -> list[ExternalListing]:
        """Parse cards, falling back to embedded JSON then product anchors."""
        selector = self.selectors.get("product_card", "")
        cards = soup.select(selector) if selector else []
        listings = [
            x for x in (self._parse_card(c) for c in cards) if x is not None
        ]
        if listings:
            return listings

        listings = self._parse_embedded(soup)
        if listings:
            self.logger.debug(
                "[%s] Embedded JSON fallback produced %d",
                self.platform,
                len(listings),
            )
            return listings

        listings = self._parse_anchors(soup)
        if listings:
            self.logger.debug(
                "[%s] Loose anchor fallback produced %d",
                self.platform,
                len(listings),
            )
        return listings

    def _parse_embedded(self, soup: BeautifulSoup) -> list[ExternalListing]:
        """Build listings from JSON-LD Product objects on the page."""
        listings: list[ExternalListing] = []
        for product in self._json_ld_products(soup):
            offers: Any = product.get("offers") or {}
            if isinstance(offers, list):
                offers = offers[0] if offers else {}
            price = ""
            if isinstance(offers, dict):
                amount = offers.get("price") or offers.get("lowPrice")
                currency = offers.get("priceCurrency", "")
                if amount is not None:
                    price = clean_text(f"{currency} {amount}")
            image: Any = product.get("image") or ""
            if isinstance(image, list):
                image = image[0] if image else ""
            url = self._canonical_link(str(product.get("url") or ""))
            title = clean_text(str(product.get("name") or ""))
            if not url or not title:
                continue
            listings.append(ExternalListing(
                platform=self.platform,
                url=url,
                title=title,
                image=self._absolute(str(image)) if image else "",
                price_text=price,
                description=clean_text(str(product.get("description") or "")),
            ))
        return listings

    def _parse_anchors(self, soup: BeautifulSoup) -> list[ExternalListing]:
        """Last resort: titled links that look like product detail pages."""
        pattern = self.selectors.get("product_link_pattern", "")
        if not pattern:
            return []
        link_re = re.compile(pattern, re.IGNORECASE)
        listings: list[ExternalListing] = []
        seen: set[str] = set()
        for a in soup.select("a[href]"):
            href = a.get("href")
            if not isinstance(href, str) or not link_re.search(href):
                continue
            url = self._canonical_link(href)
            title_attr = a.get("title")
            title = clean_text(
                title_attr if isinstance(title_attr, str) else a.get_text(" ")
            )[:140]
            if not url or len(title) < 4 or url in seen:
                continue
            seen.add(url)
            listings.append(ExternalListing(
                platform=self.platform, url=url, title=title,
            ))
        return listings

    def _canonical_link(self, href: str) -> str:
        """Absolutise a product link; subclasses may strip tracking."""
        return self._absolute(href)

    @abstractmethod
    def _get_homepage(self) -> str:
        """Return the homepage URL for the Referer header."""
        ...

    @abstractmethod
    def _search_url(self, query: str, page: int) -> str:
        """Return the search results URL for a 1-based page number."""
        ...

    @abstractmethod
    def _parse_card(self, card: Tag) -> ExternalListing | None:
        """Parse one result card; ``None`` when it lacks a link or title."""
        ...
