# catalog_ingest/services/health_checker.py

"""Marketplace reachability and search health checks.

Each platform is graded from its homepage response:

* ``ok`` / ``slow``: HTTP 200 with real content (slow above
  ``HEALTH_SLOW_MS``).
* ``blocked``: HTTP 200 but a Cloudflare or CAPTCHA interstitial, or an
  HTTP 403/429; batch jobs should cool down rather than retry.
* ``down``: any other HTTP error, a network error, or a provider that
  cannot be loaded.

With a canary query the provider's first search page is also fetched and
parsed; a reachable marketplace whose search yields no listings is
``degraded`` (selectors drifted or results are served by JavaScript).
"""

import asyncio
import logging
import time
from dataclasses import dataclass

from catalog_ingest.config.settings import Settings
from catalog_ingest.providers.base_provider import BaseProvider
from catalog_ingest.services.fetch_orchestrator import load_provider_class

logger = logging.getLogger("catalog_ingest.health")

_BLOCK_STATUSES = frozenset({403, 429})
FAILING_STATUSES = frozenset({"down", "blocked"})


@dataclass
class HealthResult:
    """Result of a single platform health check."""

    platform: str
    status: str  # "ok", "slow", "degraded", "blocked", "down"
    latency_ms: float
    message: str
    listings: int | None = None  # parsed from the canary search page

    @property
    def failing(self) -> bool:
        return self.status in FAILING_STATUSES


def _grade_homepage(
    provider: BaseProvider,
    platform_id: str,
) -> HealthResult:
    start = time.monotonic()
    try:
        homepage = provider._get_homepage()
        resp = provider.session.get(
            homepage,
            headers={**provider.settings.DEFAULT_HEADERS, "Referer": homepage},
            timeout=Settings.HEALTH_TIMEOUT,
        )
    except Exception as exc:
        logger.debug("Homepage request failed for %s", platform_id, exc_info=True)
        return HealthResult(
            platform_id,
            "down",
            (time.monotonic() - start) * 1000,
            str(exc)[:80],
        )
    elapsed_ms = (time.monotonic() - start) * 1000

    if resp.status_code in _BLOCK_STATUSES:
        return HealthResult(
            platform_id, "blocked", elapsed_ms, f"HTTP {resp.status_code}"
        )
    if resp.status_code != 200:
        return HealthResult(
            platform_id, "down", elapsed_ms, f"HTTP {resp.status_code}"
        )
    if not provider._validate_response(resp):
        return HealthResult(platform_id, "blocked", elapsed_ms, "Challenge page")
    if elapsed_ms > Settings.HEALTH_SLOW_MS:
        return HealthResult(platform_id, "slow", elapsed_ms, "High latency")
    return HealthResult(platform_id, "ok", elapsed_ms, "")


def _check_search(provider: BaseProvider, result: HealthResult, query: str) -> None:
    """Fetch and parse page 1 of ``query``; downgrade ``result`` if empty."""
    soup = provider._get_page(provider._search_url(query, 1))
    if soup is None:
        result.status = "degraded"
        result.message = "Search page unavailable"
        result.listings = 0
        return
    result.listings = len(provider._parse_page(soup))
    if result.listings == 0:
        result.status = "degraded"
        result.message = f"No listings for '{query}'"
    elif not result.message:
        result.message = f"{result.listings} listings on page 1"


def probe_platform(
    platform: dict[str, str],
    canary_query: str | None = None,
) -> HealthResult:
    """Grade one platform; with ``canary_query`` also exercise its search."""
    platform_id = platform["id"]
    try:
        provider = load_provider_class(platform["provider"])()
    except Exception as exc:
        return HealthResult(
            platform=platform_id,
            status="down",
            latency_ms=0.0,
            message=f"Failed to load provider: {exc}",
        )

    result = _grade_homepage(provider, platform_id)
    if canary_query and not result.failing:
        _check_search(provider, result, canary_query)
    return result


class HealthChecker:
    """Runs concurrent health checks against the registered platforms."""

    def __init__(
        self,
        platforms: list[dict[str, str]] | None = None,
        canary_query: str | None = None,
    ) -> None:
        self.platforms = platforms or Settings.AVAILABLE_PLATFORMS
        self.canary_query = canary_query

    async def check_all(self) -> list[HealthResult]:
        """Probe every platform concurrently, in registry order."""
        results: list[HealthResult] = list(
            await asyncio.gather(
                *(
                    asyncio.to_thread(probe_platform, p, self.canary_query)
                    for p in self.platforms
                )
            )
        )
        for r in results:
            log = logger.warning if r.failing else logger.info
            log(
                "Health check %s: %s (%.0fms) %s",
                r.platform,
                r.status,
                r.latency_ms,
                r.message,
            )
        return results

    @staticmethod
    def exit_code(results: list[HealthResult]) -> int:
        """1 when any platform is down or blocking us, else 0."""
        return 1 if any(r.failing for r in results) else 0
