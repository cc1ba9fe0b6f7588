# catalog_ingest/services/rescrape_client.py

"""HTTP client for the listing rescrape trigger endpoint."""

import logging
from typing import Any

from curl_cffi import requests as curl_requests

from catalog_ingest.config.settings import Settings
from catalog_ingest.models.job import Classification, Quality, RescrapeResponse

logger = logging.getLogger("catalog_ingest.rescrape")

_RATE_LIMIT_STATUSES = frozenset({429, 503})


def _count(value: Any) -> int:
    """Attribute / tier counts may arrive as a number or as the list itself."""
    if isinstance(value, (list, dict)):
        return len(value)
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def classify_response(
    response: RescrapeResponse,
    good_threshold: int | None = None,
) -> Classification:
    """Classify a rescrape reply as good, partial or bad.

    ``good`` needs at least ``good_threshold`` attributes; any non-zero
    count below that is ``partial``.  HTTP errors, transport failures and
    unsuccessful replies are ``bad``.  A reply whose ``debug_source``
    mentions "fallback" was served from a degraded path and carries the
    ``fallback`` marker used for block detection.
    """
    threshold = (
        good_threshold if good_threshold is not None
        else Settings.GOOD_ATTRIBUTE_THRESHOLD
    )
    rate_limited = response.status_code in _RATE_LIMIT_STATUSES
    fallback = "fallback" in (response.debug_source or "").lower()

    if response.status_code != 200 or not response.success:
        return Classification(
            quality=Quality.BAD,
            fallback=fallback,
            rate_limited=rate_limited,
            detail=f"HTTP {response.status_code}" if response.status_code
            else response.debug_source or "no response",
        )
    if response.attributes >= threshold:
        quality = Quality.GOOD
    elif response.attributes > 0:
        quality = Quality.PARTIAL
    else:
        quality = Quality.BAD
    return Classification(
        quality=quality,
        fallback=fallback,
        detail=(
            f"{response.attributes} attrs, {response.price_tiers} tiers"
        ),
    )


class RescrapeClient:
    """POSTs ``{"listingId": ...}`` to the rescrape endpoint."""

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.url: str = url or Settings.RESCRAPE_URL
        self.timeout: float = (
            timeout if timeout is not None else Settings.DISPATCH_TIMEOUT
        )
        self.session = curl_requests.Session(
            impersonate=Settings.IMPERSONATE_BROWSER
        )

    def trigger(self, listing_id: str) -> RescrapeResponse:
        """Request a rescrape; transport errors become a status-0 reply."""
        try:
            resp = self.session.post(
                self.url,
                json={"listingId": listing_id},
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except Exception as exc:
            logger.warning(
                "Rescrape request for %s failed: %s", listing_id, exc
            )
            return RescrapeResponse(status_code=0, debug_source=f"error: {exc}")

        if resp.status_code != 200:
            logger.warning(
                "Rescrape of %s returned HTTP %d",
                listing_id,
                resp.status_code,
            )
            return RescrapeResponse(status_code=resp.status_code)

        try:
            body: Any = resp.json()
        except ValueError as exc:
            logger.warning(
                "Rescrape of %s returned non-JSON body: %s", listing_id, exc
            )
            return RescrapeResponse(
                status_code=resp.status_code, debug_source="invalid json"
            )
        if not isinstance(body, dict):
            body = {}
        return RescrapeResponse(
            status_code=resp.status_code,
            success=bool(body.get("success")),
            attributes=_count(body.get("attributes")),
            price_tiers=_count(body.get("priceTiers")),
            quality=str(body.get("quality") or ""),
            debug_source=str(body.get("debugSource") or ""),
        )
