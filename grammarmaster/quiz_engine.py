"""
Countdown timing for attempt sessions.
Runs one cooperative countdown per session and tracks the tasks so every exit path can cancel them.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

# Set up logger for timer operations
logger = logging.getLogger(__name__)

UpdateCallback = Callable[[int], Awaitable[Any]]
CompletionCallback = Callable[[], Awaitable[Any]]


def format_time(seconds: int) -> str:
    """
    Format a remaining-time counter as zero-padded MM:SS.

    Args:
        seconds: Whole seconds remaining; negative values display as 00:00

    Returns:
        Formatted string, e.g. 600 -> "10:00", 65 -> "01:05"
    """
    seconds = max(0, int(seconds))
    minutes, secs = divmod(seconds, 60)
    return f"{minutes:02d}:{secs:02d}"


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_creation(session_key: str, duration: int) -> None:
        """Log timer creation event with structured data."""
        logger.info(
            f"Timer lifecycle: CREATED - Session {session_key}, Duration {duration}s",
            extra={
                'event_type': 'timer_created',
                'session_key': session_key,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(session_key: str, remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        if remaining_time % 10 == 0 or remaining_time <= 5:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100 if total_duration else 100.0
            logger.debug(
                f"Timer lifecycle: UPDATE - Session {session_key}, Remaining {format_time(remaining_time)} ({progress_percent:.1f}% elapsed)",
                extra={
                    'event_type': 'timer_update',
                    'session_key': session_key,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(session_key: str, completion_type: str, total_duration: int) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.info(
            f"Timer lifecycle: COMPLETED - Session {session_key}, Type {completion_type}, Duration {total_duration}s",
            extra={
                'event_type': 'timer_completed',
                'session_key': session_key,
                'completion_type': completion_type,
                'total_duration': total_duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(session_key: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Session {session_key}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'session_key': session_key,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_race_condition_detected(session_key: str, details: str) -> None:
        logger.warning(
            f"Timer lifecycle: RACE_CONDITION - Session {session_key}: {details}",
            extra={
                'event_type': 'timer_race_condition',
                'session_key': session_key,
                'details': details,
                'timestamp': time.time()
            }
        )


class QuizTimer:
    """Countdown for one attempt session, decrementing once per tick."""

    def __init__(self, session_key: str, tick_interval: float = 1.0):
        self._task: Optional[asyncio.Task] = None
        self._remaining_time = 0
        self._total_duration = 0
        self._is_cancelled = False
        self._expired = False
        self._session_key = session_key
        self._tick_interval = tick_interval

    async def start_countdown(
        self,
        duration: int,
        update_callback: UpdateCallback,
        completion_callback: CompletionCallback
    ) -> None:
        """
        Run the countdown with callbacks for ticks and expiry.

        Args:
            duration: Timer duration in seconds
            update_callback: Awaited after every tick with the remaining time
            completion_callback: Awaited exactly once when the remaining time reaches zero
        """
        self._remaining_time = duration
        self._total_duration = duration
        self._is_cancelled = False

        try:
            while self._remaining_time > 0 and not self._is_cancelled:
                await asyncio.sleep(self._tick_interval)
                if self._is_cancelled:
                    break
                self._remaining_time -= 1
                TimerLifecycleLogger.log_timer_update(
                    self._session_key,
                    self._remaining_time,
                    self._total_duration
                )
                await update_callback(self._remaining_time)

            if self._is_cancelled:
                TimerLifecycleLogger.log_timer_completion(self._session_key, "cancelled", self._total_duration)
                return

            self._expired = True
            TimerLifecycleLogger.log_timer_completion(self._session_key, "natural_expiry", self._total_duration)
            await completion_callback()

        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(self._session_key, "asyncio_cancelled", self._total_duration)
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self._session_key,
                "countdown_execution_error",
                str(e),
                "start_countdown"
            )
            raise

    def cancel(self) -> None:
        """Stop the countdown. A task cancelling itself is only flagged."""
        self._is_cancelled = True
        if self._task and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def is_expired(self) -> bool:
        return self._expired

    @property
    def remaining_time(self) -> int:
        """Get remaining time in seconds."""
        return self._remaining_time

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task


class QuizEngine:
    """Registry of running countdowns, keyed by session."""

    CANCEL_WAIT_TIMEOUT = 2.0

    def __init__(self, tick_interval: float = 1.0):
        """
        Initialize the timer registry.

        Args:
            tick_interval: Seconds between ticks. Each tick removes one second of quiz time.
        """
        self.tick_interval = tick_interval
        self._timers: Dict[str, QuizTimer] = {}

    def _verify_timer_readiness(self, session_key: str) -> bool:
        """
        Verify no active timer exists before starting a new one.

        Inactive leftovers are removed. Returns False if an active timer was found.
        """
        timer = self._timers.get(session_key)
        if timer is None:
            return True

        if timer.task and not timer.task.done() and not timer.is_cancelled:
            TimerLifecycleLogger.log_race_condition_detected(
                session_key,
                "Active timer exists during readiness check"
            )
            return False

        del self._timers[session_key]
        logger.debug(f"Removed inactive timer for session {session_key}")
        return True

    def start_timer(
        self,
        session_key: str,
        duration: int,
        update_callback: UpdateCallback,
        completion_callback: CompletionCallback
    ) -> asyncio.Task:
        """
        Start a countdown as a background task on the running event loop.

        An active timer already registered under the same key is cancelled first,
        so one session never has two countdowns.

        Args:
            session_key: Session identifier
            duration: Timer duration in seconds
            update_callback: Awaited after each tick with the remaining time
            completion_callback: Awaited once on expiry

        Returns:
            The countdown task
        """
        if not self._verify_timer_readiness(session_key):
            self._timers.pop(session_key).cancel()

        timer = QuizTimer(session_key, self.tick_interval)
        self._timers[session_key] = timer
        TimerLifecycleLogger.log_timer_creation(session_key, duration)

        timer._task = asyncio.create_task(
            self._run_timer(session_key, timer, duration, update_callback, completion_callback)
        )
        return timer._task

    async def _run_timer(
        self,
        session_key: str,
        timer: QuizTimer,
        duration: int,
        update_callback: UpdateCallback,
        completion_callback: CompletionCallback
    ) -> None:
        try:
            await timer.start_countdown(duration, update_callback, completion_callback)
        except asyncio.CancelledError:
            logger.debug(
                f"Timer task was cancelled for session {session_key}",
                extra={
                    'event_type': 'timer_task_cancelled',
                    'session_key': session_key,
                    'timestamp': time.time()
                }
            )
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(session_key, "execution_error", str(e), "timer_task_execution")
        finally:
            if self._timers.get(session_key) is timer:
                del self._timers[session_key]

    async def cancel_timer(self, session_key: str) -> bool:
        """
        Cancel the timer for a session and wait for its task to finish.

        When called from inside the timer's own task (its expiry callback), the
        timer is only flagged and untracked; the task then returns on its own.

        Args:
            session_key: Session identifier

        Returns:
            True if a timer was cancelled, False if none was tracked
        """
        timer = self._timers.get(session_key)
        if timer is None:
            logger.debug(
                f"No active timer found for session {session_key}",
                extra={
                    'event_type': 'timer_cancel_no_timer',
                    'session_key': session_key,
                    'timestamp': time.time()
                }
            )
            return False

        timer.cancel()
        del self._timers[session_key]

        task = timer.task
        if task is not None and task is not asyncio.current_task() and not task.done():
            done, _ = await asyncio.wait({task}, timeout=self.CANCEL_WAIT_TIMEOUT)
            if not done:
                TimerLifecycleLogger.log_timer_error(
                    session_key,
                    "cancellation_timeout",
                    f"Timer task did not finish within {self.CANCEL_WAIT_TIMEOUT}s",
                    "cancel_timer"
                )
                return True

        logger.debug(f"Cancelled timer for session {session_key}")
        return True

    async def cancel_all_timers(self) -> int:
        """Cancel every tracked timer. Returns how many were cancelled."""
        cancelled = 0
        for session_key in list(self._timers):
            if await self.cancel_timer(session_key):
                cancelled += 1
        return cancelled

    def get_timer_task(self, session_key: str) -> Optional[asyncio.Task]:
        timer = self._timers.get(session_key)
        return timer.task if timer else None

    def get_timer_status(self, session_key: str) -> Optional[dict]:
        """
        Get the status of a session's timer.

        Returns:
            Dictionary with timer status or None if no timer is tracked
        """
        timer = self._timers.get(session_key)
        if timer is None:
            return None
        return {
            'remaining_time': timer.remaining_time,
            'formatted_time': format_time(timer.remaining_time),
            'is_cancelled': timer.is_cancelled,
            'is_expired': timer.is_expired,
            'is_running': bool(timer.task and not timer.task.done())
        }

    def active_timer_count(self) -> int:
        return len(self._timers)
