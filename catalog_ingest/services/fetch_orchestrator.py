# catalog_ingest/services/fetch_orchestrator.py

"""Fans a query out to marketplace providers with per-call timeouts."""

import asyncio
import importlib
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from catalog_ingest.config.settings import Settings
from catalog_ingest.errors import InvalidArgument, ProviderError, ProviderTimeout
from catalog_ingest.models.listing import ExternalListing

logger = logging.getLogger("catalog_ingest.orchestrator")

ProviderFactory = Callable[[], Any]


@dataclass
class FetchOutcome:
    """Concatenated provider results plus per-platform bookkeeping."""

    listings: list[ExternalListing] = field(
        default_factory=lambda: list[ExternalListing]()
    )
    platform_counts: dict[str, int] = field(
        default_factory=lambda: dict[str, int]()
    )
    errors: dict[str, str] = field(
        default_factory=lambda: dict[str, str]()
    )


def load_provider_class(dotted_path: str) -> type[Any]:
    """Dynamically import a provider class from its dotted module path."""
    module_path, class_name = dotted_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    cls: type[Any] = getattr(module, class_name)
    return cls


def provider_fetch_size(
    platform: str,
    offset: int,
    limit: int,
    headless: bool = False,
) -> int:
    """How many listings to request from each provider for a page window.

    A single platform is asked for the whole window (capped at 800).
    With ``ALL`` each provider contributes a share of a 120-item floor,
    clamped to keep total page walks bounded.
    """
    window = max(0, offset) + max(0, limit)
    if platform.upper() != Settings.ALL_PLATFORMS:
        return min(800, window)
    target = max(120, window)
    if headless:
        return min(220, max(80, target))
    return min(240, max(60, math.ceil(target / 3)))


class FetchOrchestrator:
    """Runs providers concurrently, each in a worker thread.

    Provider calls never fail the fetch: a timeout or exception is logged,
    recorded in :attr:`FetchOutcome.errors` and contributes no listings.
    """

    def __init__(
        self,
        factories: dict[str, ProviderFactory] | None = None,
        timeout: float | None = None,
        concurrency: int | None = None,
    ) -> None:
        self.settings = Settings()
        if factories is None:
            factories = {
                p["id"]: load_provider_class(p["provider"])
                for p in self.settings.AVAILABLE_PLATFORMS
            }
        self._factories: dict[str, ProviderFactory] = dict(factories)
        self.timeout: float = (
            timeout if timeout is not None else self.settings.PROVIDER_TIMEOUT
        )
        self._concurrency: int = max(
            1, concurrency or self.settings.PROVIDER_CONCURRENCY
        )
        self._semaphores: dict[str, asyncio.Semaphore] = {}

    @property
    def platform_ids(self) -> list[str]:
        """Registered platform ids in registry order."""
        return list(self._factories)

    def resolve(self, platform: str) -> list[str]:
        """Expand a platform selector into the platform ids to query."""
        selector = (platform or "").strip().upper()
        if selector == self.settings.ALL_PLATFORMS:
            return self.platform_ids
        if selector in self._factories:
            return [selector]
        raise InvalidArgument(
            f"Unsupported platform '{platform}'. Expected "
            f"{self.settings.ALL_PLATFORMS} or one of "
            f"{', '.join(self.platform_ids)}"
        )

    def _semaphore(self, platform_id: str) -> asyncio.Semaphore:
        sem = self._semaphores.get(platform_id)
        if sem is None:
            sem = asyncio.Semaphore(self._concurrency)
            self._semaphores[platform_id] = sem
        return sem

    async def _run_provider(
        self,
        platform_id: str,
        query: str,
        limit: int,
        headless: bool,
    ) -> list[ExternalListing]:
        """Run one provider call under its semaphore and the timeout.

        On timeout the worker thread keeps running in the background;
        its eventual result is discarded.
        """
        async with self._semaphore(platform_id):
            provider = self._factories[platform_id]()
            try:
                listings: list[ExternalListing] = await asyncio.wait_for(
                    asyncio.to_thread(provider.fetch, query, limit, headless),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError as exc:
                raise ProviderTimeout(platform_id, self.timeout) from exc
            except Exception as exc:
                raise ProviderError(platform_id, str(exc)) from exc
        return list(listings or [])

    async def fetch(
        self,
        platform: str,
        query: str,
        limit: int,
        headless: bool = False,
    ) -> FetchOutcome:
        """Fetch up to ``limit`` listings per selected provider.

        Raises:
            InvalidArgument: ``platform`` is neither ``ALL`` nor registered.
        """
        platform_ids = self.resolve(platform)
        outcome = FetchOutcome()
        if limit <= 0 or not query.strip():
            for pid in platform_ids:
                outcome.platform_counts[pid] = 0
            return outcome

        batches = await asyncio.gather(
            *(
                self._run_provider(pid, query, limit, headless)
                for pid in platform_ids
            ),
            return_exceptions=True,
        )

        for pid, batch in zip(platform_ids, batches):
            if isinstance(batch, list):
                outcome.listings.extend(batch)
                outcome.platform_counts[pid] = len(batch)
                continue
            outcome.platform_counts[pid] = 0
            outcome.errors[pid] = str(batch)
            if isinstance(batch, ProviderTimeout):
                logger.warning("%s for query '%s'", batch, query)
            elif isinstance(batch, BaseException):
                logger.error(
                    "Provider error for query '%s': %s",
                    query,
                    batch,
                    exc_info=batch,
                )

        logger.info(
            "Fetched %d listings for '%s' from %s",
            len(outcome.listings),
            query,
            outcome.platform_counts,
        )
        return outcome
