# tests/test_batch_runner.py

"""Tests for the resumable batch runner and block detection."""

import asyncio
import unittest

from catalog_ingest.config.settings import Settings
from catalog_ingest.errors import PersistenceFailure
from catalog_ingest.models.job import (
    Classification,
    JobProgress,
    Quality,
    WorkItem,
)
from catalog_ingest.services.batch_runner import BatchRunner, BlockDetector

_GOOD = Classification(Quality.GOOD)
_PARTIAL = Classification(Quality.PARTIAL)
_BAD = Classification(Quality.BAD)
_FALLBACK = Classification(Quality.BAD, fallback=True)
_LIMITED = Classification(Quality.BAD, rate_limited=True)


class _TestSettings(Settings):
    BATCH_SIZE = 15
    CHUNK_SIZE = 3
    CHUNK_DELAY = 1.0
    BATCH_DELAY = 2.0
    DISPATCH_TIMEOUT = 0.05
    BLOCK_THRESHOLD = 15
    BLOCK_COOLDOWN = 1800.0
    RATE_LIMIT_RATIO = 0.5
    RATE_LIMIT_BACKOFF = 30.0


class _MemoryProgressStore:
    def __init__(self, progress: JobProgress | None = None) -> None:
        self.progress = progress
        self.saves: list[JobProgress] = []
        self.deleted = False

    def load(self) -> JobProgress | None:
        return self.progress

    def save(self, progress: JobProgress) -> None:
        snapshot = JobProgress.from_dict(progress.to_dict())
        self.saves.append(snapshot)
        self.progress = snapshot

    def delete(self) -> None:
        self.deleted = True
        self.progress = None


class _FailingProgressStore(_MemoryProgressStore):
    def save(self, progress: JobProgress) -> None:
        raise PersistenceFailure("read-only filesystem")


class _ListSource:
    def __init__(self, count: int) -> None:
        self.items = [WorkItem(item_id=str(i)) for i in range(count)]

    def pending_items(self) -> list[WorkItem]:
        return list(self.items)


class _ScriptedDispatcher:
    """Returns ``result`` for every item and records dispatch order."""

    def __init__(self, result: Classification = _GOOD) -> None:
        self.result = result
        self.seen: list[str] = []

    async def dispatch(self, item: WorkItem) -> Classification:
        self.seen.append(item.item_id)
        return self.result


class _SequenceDispatcher:
    """Returns scripted results in dispatch order."""

    def __init__(self, results: list[Classification]) -> None:
        self.results = list(results)

    async def dispatch(self, item: WorkItem) -> Classification:
        return self.results.pop(0)


class _RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class TestBlockDetector(unittest.TestCase):
    """Consecutive fallback counting."""

    def test_fallbacks_accumulate(self) -> None:
        detector = BlockDetector(3)
        self.assertFalse(detector.record(_FALLBACK))
        self.assertFalse(detector.record(_FALLBACK))
        self.assertTrue(detector.record(_FALLBACK))

    def test_good_and_partial_reset(self) -> None:
        for result in (_GOOD, _PARTIAL):
            detector = BlockDetector(3, consecutive=2)
            self.assertFalse(detector.record(result))
            self.assertEqual(detector.consecutive, 0)

    def test_plain_bad_extends_streak(self) -> None:
        for result in (_BAD, _LIMITED):
            detector = BlockDetector(15, consecutive=7)
            self.assertFalse(detector.record(result))
            self.assertEqual(detector.consecutive, 8)

    def test_plain_bad_inside_fallback_streak_still_fires(self) -> None:
        detector = BlockDetector(15)
        sequence = [_FALLBACK] * 7 + [_BAD] + [_FALLBACK] * 7
        fired = [detector.record(result) for result in sequence]
        self.assertEqual(detector.consecutive, 15)
        self.assertEqual(fired, [False] * 14 + [True])

    def test_threshold_needs_fallback_marker(self) -> None:
        detector = BlockDetector(3, consecutive=2)
        self.assertFalse(detector.record(_BAD))
        self.assertEqual(detector.consecutive, 3)
        self.assertTrue(detector.record(_FALLBACK))

    def test_reset(self) -> None:
        detector = BlockDetector(2, consecutive=5)
        detector.reset()
        self.assertEqual(detector.consecutive, 0)


class TestBatchRunner(unittest.IsolatedAsyncioTestCase):
    """State machine behaviour with in-memory collaborators."""

    def _runner(
        self,
        count: int,
        dispatcher,
        store: _MemoryProgressStore | None = None,
    ) -> tuple[BatchRunner, _MemoryProgressStore, _RecordingSleep]:
        store = store or _MemoryProgressStore()
        sleep = _RecordingSleep()
        runner = BatchRunner(
            _ListSource(count), dispatcher, store, _TestSettings(), sleep
        )
        return runner, store, sleep

    async def test_completion_deletes_progress(self) -> None:
        runner, store, sleep = self._runner(30, _ScriptedDispatcher(_GOOD))
        summary = await runner.run()
        self.assertTrue(summary.completed)
        self.assertEqual(summary.progress.succeeded, 30)
        self.assertEqual(summary.progress.offset, 30)
        self.assertTrue(store.deleted)
        self.assertEqual([s.offset for s in store.saves], [15, 30])
        # one batch delay between the two batches, none after the last
        self.assertEqual(sleep.calls.count(_TestSettings.BATCH_DELAY), 1)

    async def test_chunk_delay_between_chunks(self) -> None:
        runner, _, sleep = self._runner(15, _ScriptedDispatcher(_GOOD))
        await runner.run()
        self.assertEqual(sleep.calls, [_TestSettings.CHUNK_DELAY] * 4)

    async def test_fifteen_fallbacks_trigger_one_cooldown(self) -> None:
        runner, store, sleep = self._runner(15, _ScriptedDispatcher(_FALLBACK))
        summary = await runner.run()
        self.assertEqual(summary.cooldowns, 1)
        self.assertEqual(sleep.calls.count(_TestSettings.BLOCK_COOLDOWN), 1)
        self.assertEqual(runner.detector.consecutive, 0)
        self.assertEqual(summary.progress.failed, 15)
        # checkpoint taken before cooling down
        self.assertEqual(store.saves[0].offset, 15)

    async def test_cooldown_not_repeated_until_another_full_streak(self) -> None:
        for count, expected in ((30, 2), (29, 1)):
            with self.subTest(count=count):
                runner, _, sleep = self._runner(
                    count, _ScriptedDispatcher(_FALLBACK)
                )
                summary = await runner.run()
                self.assertEqual(summary.cooldowns, expected)
                self.assertEqual(
                    sleep.calls.count(_TestSettings.BLOCK_COOLDOWN), expected
                )

    async def test_timeouts_mixed_into_blocked_streak(self) -> None:
        results = [_FALLBACK] * 6 + [_LIMITED] * 3 + [_FALLBACK] * 6
        runner, _, _ = self._runner(15, _SequenceDispatcher(results))
        summary = await runner.run()
        self.assertEqual(summary.cooldowns, 1)

    async def test_streak_carried_over_from_saved_progress(self) -> None:
        store = _MemoryProgressStore(JobProgress(consecutive_failures=14))
        runner, _, _ = self._runner(3, _ScriptedDispatcher(_FALLBACK), store)
        summary = await runner.run()
        self.assertEqual(summary.cooldowns, 1)

    async def test_plain_bad_results_never_cool_down(self) -> None:
        runner, _, sleep = self._runner(30, _ScriptedDispatcher(_BAD))
        summary = await runner.run()
        self.assertEqual(summary.cooldowns, 0)
        self.assertNotIn(_TestSettings.BLOCK_COOLDOWN, sleep.calls)

    async def test_resume_from_offset(self) -> None:
        dispatcher = _ScriptedDispatcher(_GOOD)
        store = _MemoryProgressStore(JobProgress(offset=40, succeeded=40))
        runner, _, _ = self._runner(60, dispatcher, store)
        summary = await runner.run()
        self.assertEqual(dispatcher.seen[0], "40")
        self.assertEqual(len(dispatcher.seen), 20)
        self.assertEqual(summary.progress.succeeded, 60)

    async def test_stop_saves_progress_and_keeps_it(self) -> None:
        store = _MemoryProgressStore()
        runner: BatchRunner

        class _StoppingDispatcher(_ScriptedDispatcher):
            async def dispatch(self, item: WorkItem) -> Classification:
                runner.request_stop()
                return await super().dispatch(item)

        dispatcher = _StoppingDispatcher(_GOOD)
        runner, _, _ = self._runner(45, dispatcher, store)
        summary = await runner.run()
        self.assertTrue(runner.stop_requested)
        self.assertFalse(summary.completed)
        self.assertFalse(store.deleted)
        self.assertEqual(store.progress.offset, 15)
        self.assertEqual(len(dispatcher.seen), 15)

    async def test_rate_limited_batch_backs_off(self) -> None:
        runner, _, sleep = self._runner(15, _ScriptedDispatcher(_LIMITED))
        summary = await runner.run()
        self.assertEqual(summary.rate_limit_backoffs, 1)
        self.assertIn(_TestSettings.RATE_LIMIT_BACKOFF, sleep.calls)

    async def test_timeout_counts_as_bad(self) -> None:
        class _SlowDispatcher:
            async def dispatch(self, item: WorkItem) -> Classification:
                await asyncio.sleep(5)
                return _GOOD

        runner, _, _ = self._runner(3, _SlowDispatcher())
        summary = await runner.run()
        self.assertEqual(summary.progress.failed, 3)
        self.assertTrue(summary.completed)

    async def test_dispatcher_exception_counts_as_bad(self) -> None:
        class _RaisingDispatcher:
            async def dispatch(self, item: WorkItem) -> Classification:
                raise ConnectionError("reset")

        runner, _, _ = self._runner(3, _RaisingDispatcher())
        summary = await runner.run()
        self.assertEqual(summary.progress.failed, 3)

    async def test_checkpoint_failure_does_not_abort(self) -> None:
        store = _FailingProgressStore()
        runner, _, _ = self._runner(30, _ScriptedDispatcher(_GOOD), store)
        summary = await runner.run()
        self.assertTrue(summary.completed)
        self.assertTrue(store.deleted)

    async def test_empty_work_list(self) -> None:
        runner, store, sleep = self._runner(0, _ScriptedDispatcher())
        summary = await runner.run()
        self.assertTrue(summary.completed)
        self.assertEqual(summary.total, 0)
        self.assertEqual(sleep.calls, [])
        self.assertTrue(store.deleted)


if __name__ == "__main__":
    unittest.main()
