# catalog_ingest/services/batch_runner.py

"""Resumable, rate-limit-aware batch runner for long ingestion jobs."""

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from catalog_ingest.config.settings import Settings
from catalog_ingest.errors import PersistenceFailure, UpstreamBlocked
from catalog_ingest.models.job import (
    Classification,
    JobProgress,
    Quality,
    RunSummary,
    WorkItem,
)
from catalog_ingest.services.rescrape_client import (
    RescrapeClient,
    classify_response,
)
from catalog_ingest.storage.interfaces import ListingStore, ProgressStore

logger = logging.getLogger("catalog_ingest.batch")

SleepFn = Callable[[float], Awaitable[None]]


class WorkSource(Protocol):
    """Produces the ordered list of items a job walks through."""

    def pending_items(self) -> list[WorkItem]:
        ...


class Dispatcher(Protocol):
    """Processes one work item and classifies the outcome."""

    async def dispatch(self, item: WorkItem) -> Classification:
        ...


class BlockDetector:
    """Counts consecutive ``bad`` results.

    Every ``bad`` (timeouts and rate-limited replies included) extends the
    streak and only ``good`` or ``partial`` ends it.  Blocking is flagged
    once the streak reaches the threshold on a result that came from the
    fallback path.
    """

    def __init__(self, threshold: int, consecutive: int = 0) -> None:
        self.threshold = max(1, threshold)
        self.consecutive = max(0, consecutive)

    def record(self, result: Classification) -> bool:
        """Track one result; return True when the threshold is reached."""
        if result.quality is Quality.BAD:
            self.consecutive += 1
        else:
            self.consecutive = 0
        return result.fallback and self.consecutive >= self.threshold

    def reset(self) -> None:
        self.consecutive = 0


class MissingDetailWorkSource:
    """Listings the store reports as lacking scraped detail."""

    def __init__(self, store: ListingStore, platform: str | None = None) -> None:
        self.store = store
        self.platform = platform

    def pending_items(self) -> list[WorkItem]:
        return self.store.listings_missing_detail(self.platform)


class RescrapeDispatcher:
    """Triggers a remote rescrape per listing and classifies the reply."""

    def __init__(
        self,
        client: RescrapeClient | None = None,
        good_threshold: int | None = None,
    ) -> None:
        self.client = client or RescrapeClient()
        self.good_threshold = good_threshold

    async def dispatch(self, item: WorkItem) -> Classification:
        response = await asyncio.to_thread(self.client.trigger, item.item_id)
        return classify_response(response, self.good_threshold)


class BatchRunner:
    """Walks a work list in checkpointed batches.

    Each batch is split into chunks dispatched concurrently.  Progress is
    saved after every batch and after a block cooldown is triggered, so an
    interrupted job resumes exactly where it stopped.  Completion removes
    the checkpoint.

    Args:
        work_source: yields the full ordered work list.
        dispatcher: processes and classifies a single item.
        progress_store: loads, saves and deletes :class:`JobProgress`.
        settings: tuning constants (defaults to :class:`Settings`).
        sleep: awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        work_source: WorkSource,
        dispatcher: Dispatcher,
        progress_store: ProgressStore,
        settings: Any = None,
        sleep: SleepFn | None = None,
    ) -> None:
        self.work_source = work_source
        self.dispatcher = dispatcher
        self.progress_store = progress_store
        self.settings = settings or Settings()
        self._sleep: SleepFn = sleep or asyncio.sleep
        self._stop_requested = False
        self.detector = BlockDetector(self.settings.BLOCK_THRESHOLD)

    # ── Control ──────────────────────────────────────────

    def request_stop(self) -> None:
        """Finish the in-flight batch, save progress and return."""
        if not self._stop_requested:
            logger.warning("Stop requested; finishing current batch")
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def _install_signal_handler(self, loop: asyncio.AbstractEventLoop) -> bool:
        try:
            loop.add_signal_handler(signal.SIGINT, self.request_stop)
        except (NotImplementedError, RuntimeError, ValueError):
            # Not on the main thread or no signal support (e.g. Windows)
            return False
        return True

    # ── Steps ────────────────────────────────────────────

    def _checkpoint(self, progress: JobProgress) -> None:
        try:
            self.progress_store.save(progress)
        except PersistenceFailure as exc:
            logger.error("Checkpoint failed: %s", exc, exc_info=True)

    async def _dispatch_one(self, item: WorkItem) -> Classification:
        """Dispatch with a timeout; failures become ``bad`` results."""
        try:
            return await asyncio.wait_for(
                self.dispatcher.dispatch(item),
                timeout=self.settings.DISPATCH_TIMEOUT,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Item %s timed out after %.0fs",
                item.item_id,
                self.settings.DISPATCH_TIMEOUT,
            )
            return Classification(quality=Quality.BAD, detail="timeout")
        except Exception as exc:
            logger.error(
                "Item %s failed: %s", item.item_id, exc, exc_info=True
            )
            return Classification(quality=Quality.BAD, detail=str(exc))

    @staticmethod
    def _tally(progress: JobProgress, result: Classification) -> None:
        if result.quality is Quality.GOOD:
            progress.succeeded += 1
        elif result.quality is Quality.PARTIAL:
            progress.partial += 1
        else:
            progress.failed += 1

    async def _cooldown(self, progress: JobProgress) -> None:
        blocked = UpstreamBlocked(self.detector.consecutive)
        logger.warning(
            "Upstream blocking suspected (%s); cooling down for %.0fs",
            blocked,
            self.settings.BLOCK_COOLDOWN,
        )
        self._checkpoint(progress)
        await self._sleep(self.settings.BLOCK_COOLDOWN)
        self.detector.reset()
        progress.consecutive_failures = 0

    # ── Main loop ────────────────────────────────────────

    async def run(self) -> RunSummary:
        """Run until the work list is exhausted or a stop is requested."""
        loop = asyncio.get_running_loop()
        handler_installed = self._install_signal_handler(loop)
        try:
            return await self._run()
        finally:
            if handler_installed:
                loop.remove_signal_handler(signal.SIGINT)

    async def _run(self) -> RunSummary:
        progress = self.progress_store.load() or JobProgress()
        self.detector.consecutive = progress.consecutive_failures
        items = await asyncio.to_thread(self.work_source.pending_items)
        total = len(items)
        batch_size = max(1, self.settings.BATCH_SIZE)
        chunk_size = min(20, max(3, self.settings.CHUNK_SIZE))
        cooldowns = 0
        backoffs = 0

        logger.info(
            "Starting batch run: %d items, resuming at offset %d",
            total,
            progress.offset,
        )

        while progress.offset < total and not self._stop_requested:
            start = progress.offset
            batch = items[start:start + batch_size]
            logger.info(
                "Batch %d (%d-%d of %d)",
                start // batch_size + 1,
                start + 1,
                start + len(batch),
                total,
            )
            rate_limited = 0

            for chunk_start in range(0, len(batch), chunk_size):
                chunk = batch[chunk_start:chunk_start + chunk_size]
                results = await asyncio.gather(
                    *(self._dispatch_one(item) for item in chunk)
                )
                blocked = False
                for item, result in zip(chunk, results):
                    self._tally(progress, result)
                    rate_limited += int(result.rate_limited)
                    blocked = self.detector.record(result) or blocked
                    logger.debug(
                        "%s %s: %s",
                        result.quality.value,
                        item.item_id,
                        result.detail,
                    )
                progress.consecutive_failures = self.detector.consecutive

                if blocked:
                    progress.offset = start + chunk_start + len(chunk)
                    cooldowns += 1
                    await self._cooldown(progress)
                elif chunk_start + chunk_size < len(batch):
                    await self._sleep(self.settings.CHUNK_DELAY)

            progress.offset = start + len(batch)
            self._checkpoint(progress)

            if batch and rate_limited / len(batch) > self.settings.RATE_LIMIT_RATIO:
                backoffs += 1
                logger.warning(
                    "%d/%d responses rate-limited; backing off %.0fs",
                    rate_limited,
                    len(batch),
                    self.settings.RATE_LIMIT_BACKOFF,
                )
                await self._sleep(self.settings.RATE_LIMIT_BACKOFF)

            if progress.offset < total and not self._stop_requested:
                await self._sleep(self.settings.BATCH_DELAY)

        completed = progress.offset >= total
        if completed:
            self.progress_store.delete()
        logger.info(
            "Batch run %s: %d good, %d partial, %d bad, offset %d/%d",
            "complete" if completed else "stopped",
            progress.succeeded,
            progress.partial,
            progress.failed,
            progress.offset,
            total,
        )
        return RunSummary(
            progress=progress,
            total=total,
            completed=completed,
            cooldowns=cooldowns,
            rate_limit_backoffs=backoffs,
        )
