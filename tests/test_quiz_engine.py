"""
Unit tests for countdown timers and the QuizEngine registry.
"""
import asyncio
import logging
import unittest
from unittest.mock import AsyncMock, patch

from grammarmaster.quiz_engine import QuizEngine, QuizTimer, TimerLifecycleLogger, format_time

_real_sleep = asyncio.sleep


async def yielding_sleep(_delay):
    """Stand-in for asyncio.sleep that only yields to the event loop."""
    await _real_sleep(0)


class TestFormatTime(unittest.TestCase):
    def test_format_time(self):
        self.assertEqual(format_time(600), "10:00")
        self.assertEqual(format_time(65), "01:05")
        self.assertEqual(format_time(9), "00:09")
        self.assertEqual(format_time(0), "00:00")

    def test_negative_clamps_to_zero(self):
        self.assertEqual(format_time(-5), "00:00")


class TestTimerLifecycleLogger(unittest.TestCase):
    def test_updates_are_throttled(self):
        with self.assertLogs('grammarmaster.quiz_engine', level='DEBUG') as logs:
            for remaining in (59, 50, 7, 3):
                TimerLifecycleLogger.log_timer_update("u1", remaining, 60)

        self.assertEqual(len(logs.records), 3)
        self.assertTrue(all(r.session_key == "u1" for r in logs.records))


class TestTimerLifecycleRecords(unittest.IsolatedAsyncioTestCase):
    @patch('grammarmaster.quiz_engine.asyncio.sleep', side_effect=yielding_sleep)
    async def test_cancelled_timer_logs_creation_and_completion(self, mock_sleep):
        engine = QuizEngine()

        with self.assertLogs('grammarmaster.quiz_engine', level='INFO') as logs:
            engine.start_timer("u1", 600, AsyncMock(), AsyncMock())
            await _real_sleep(0)
            await engine.cancel_timer("u1")

        events = [(r.event_type, getattr(r, 'completion_type', None)) for r in logs.records]
        self.assertEqual(events, [('timer_created', None), ('timer_completed', 'asyncio_cancelled')])
        self.assertEqual(logs.records[0].duration, 600)


class TestQuizTimer(unittest.IsolatedAsyncioTestCase):
    """Test cases for a single countdown."""

    @patch('grammarmaster.quiz_engine.asyncio.sleep', new_callable=AsyncMock)
    async def test_countdown_ticks_then_expires_once(self, mock_sleep):
        timer = QuizTimer("u1", tick_interval=1.0)
        ticks = []
        completion = AsyncMock()

        async def on_tick(remaining):
            ticks.append(remaining)

        await timer.start_countdown(3, on_tick, completion)

        self.assertEqual(ticks, [2, 1, 0])
        completion.assert_awaited_once()
        self.assertTrue(timer.is_expired)
        self.assertEqual(timer.remaining_time, 0)
        self.assertEqual(mock_sleep.await_count, 3)
        mock_sleep.assert_awaited_with(1.0)

    async def test_cancel_without_task(self):
        timer = QuizTimer("u1")
        timer.cancel()
        self.assertTrue(timer.is_cancelled)
        self.assertIsNone(timer.task)


class TestQuizEngine(unittest.IsolatedAsyncioTestCase):
    """Test cases for QuizEngine timer tracking."""

    def setUp(self):
        logging.disable(logging.CRITICAL)
        self.engine = QuizEngine(tick_interval=1.0)

    def tearDown(self):
        logging.disable(logging.NOTSET)

    @patch('grammarmaster.quiz_engine.asyncio.sleep', new_callable=AsyncMock)
    async def test_start_timer_runs_to_expiry(self, mock_sleep):
        ticks = []
        completion = AsyncMock()

        async def on_tick(remaining):
            ticks.append(remaining)

        task = self.engine.start_timer("u1", 5, on_tick, completion)
        self.assertIs(self.engine.get_timer_task("u1"), task)
        self.assertEqual(self.engine.active_timer_count(), 1)

        await task

        self.assertEqual(ticks, [4, 3, 2, 1, 0])
        completion.assert_awaited_once()
        # Finished timers are no longer tracked
        self.assertEqual(self.engine.active_timer_count(), 0)
        self.assertIsNone(self.engine.get_timer_status("u1"))

    @patch('grammarmaster.quiz_engine.asyncio.sleep', side_effect=yielding_sleep)
    async def test_cancel_timer_stops_countdown(self, mock_sleep):
        ticks = []
        completion = AsyncMock()

        async def on_tick(remaining):
            ticks.append(remaining)

        task = self.engine.start_timer("u1", 600, on_tick, completion)
        for _ in range(3):
            await _real_sleep(0)

        self.assertTrue(await self.engine.cancel_timer("u1"))

        self.assertTrue(task.done())
        self.assertLess(len(ticks), 600)
        completion.assert_not_awaited()
        self.assertIsNone(self.engine.get_timer_task("u1"))

    async def test_cancel_unknown_timer(self):
        self.assertFalse(await self.engine.cancel_timer("nobody"))

    @patch('grammarmaster.quiz_engine.asyncio.sleep', new_callable=AsyncMock)
    async def test_cancel_from_own_completion_callback(self, mock_sleep):
        """The expiry callback may cancel its own timer without deadlocking."""
        results = []

        async def on_expired():
            results.append(await self.engine.cancel_timer("u1"))

        task = self.engine.start_timer("u1", 2, AsyncMock(), on_expired)
        await task

        self.assertEqual(results, [True])
        self.assertFalse(task.cancelled())
        self.assertEqual(self.engine.active_timer_count(), 0)

    @patch('grammarmaster.quiz_engine.asyncio.sleep', side_effect=yielding_sleep)
    async def test_starting_again_replaces_active_timer(self, mock_sleep):
        first_completion = AsyncMock()
        second_completion = AsyncMock()

        first = self.engine.start_timer("u1", 600, AsyncMock(), first_completion)
        await _real_sleep(0)
        second = self.engine.start_timer("u1", 2, AsyncMock(), second_completion)

        await second
        await asyncio.gather(first, return_exceptions=True)

        self.assertTrue(first.cancelled())
        first_completion.assert_not_awaited()
        second_completion.assert_awaited_once()

    @patch('grammarmaster.quiz_engine.asyncio.sleep', side_effect=yielding_sleep)
    async def test_timers_are_isolated_per_session(self, mock_sleep):
        completion_a = AsyncMock()
        completion_b = AsyncMock()

        self.engine.start_timer("a", 600, AsyncMock(), completion_a)
        task_b = self.engine.start_timer("b", 3, AsyncMock(), completion_b)
        await task_b

        completion_b.assert_awaited_once()
        completion_a.assert_not_awaited()
        self.assertEqual(self.engine.active_timer_count(), 1)
        self.assertEqual(await self.engine.cancel_all_timers(), 1)
        self.assertEqual(self.engine.active_timer_count(), 0)

    @patch('grammarmaster.quiz_engine.asyncio.sleep', side_effect=yielding_sleep)
    async def test_timer_status(self, mock_sleep):
        self.engine.start_timer("u1", 600, AsyncMock(), AsyncMock())
        await _real_sleep(0)

        status = self.engine.get_timer_status("u1")
        self.assertTrue(status['is_running'])
        self.assertFalse(status['is_cancelled'])
        self.assertFalse(status['is_expired'])
        self.assertLessEqual(status['remaining_time'], 600)
        self.assertEqual(status['formatted_time'], format_time(status['remaining_time']))

        await self.engine.cancel_all_timers()

    @patch('grammarmaster.quiz_engine.asyncio.sleep', new_callable=AsyncMock)
    async def test_callback_error_is_contained(self, mock_sleep):
        async def broken_tick(remaining):
            raise RuntimeError("render failed")

        completion = AsyncMock()
        task = self.engine.start_timer("u1", 3, broken_tick, completion)
        await task

        completion.assert_not_awaited()
        self.assertEqual(self.engine.active_timer_count(), 0)


class TestTimerReadiness(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        logging.disable(logging.CRITICAL)
        self.engine = QuizEngine()

    def tearDown(self):
        logging.disable(logging.NOTSET)

    async def test_no_existing_timer(self):
        self.assertTrue(self.engine._verify_timer_readiness("u1"))

    async def test_inactive_timer_is_removed(self):
        timer = QuizTimer("u1")
        timer.cancel()
        self.engine._timers["u1"] = timer

        self.assertTrue(self.engine._verify_timer_readiness("u1"))
        self.assertNotIn("u1", self.engine._timers)

    @patch('grammarmaster.quiz_engine.asyncio.sleep', side_effect=yielding_sleep)
    async def test_active_timer_blocks_readiness(self, mock_sleep):
        self.engine.start_timer("u1", 600, AsyncMock(), AsyncMock())
        self.assertFalse(self.engine._verify_timer_readiness("u1"))
        await self.engine.cancel_timer("u1")


if __name__ == '__main__':
    unittest.main()
