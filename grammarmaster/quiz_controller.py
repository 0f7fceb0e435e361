"""
Attempt session controller for GrammarMaster.
Runs the per-user session state machine: open, answer, navigate, finish or exit.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .config_manager import ConfigManager
from .data_manager import DataManager
from .errors import (
    AuthorizationError,
    PersistenceError,
    QuizError,
    QuizNotFoundError,
    SubmissionValidationError,
)
from .models import AttemptSession, Question, QuizResult, SessionState, calculate_percentage
from .quiz_engine import QuizEngine, format_time
from .result_recorder import ResultRecorder, summarize_results
from .scorer import build_review, score_attempt

EventCallback = Callable[[str, Dict[str, Any]], Awaitable[Any]]


class QuizControllerError(Exception):
    """Base exception for quiz controller errors."""
    pass


class SessionConflictError(QuizControllerError):
    """Raised when a user opens a quiz while another attempt is still running."""
    pass


class SessionNotFoundError(QuizControllerError):
    """Raised when attempting to operate on a non-existent session."""
    pass


class InvalidSessionStateError(QuizControllerError):
    """Raised when session is in an invalid state for the requested operation."""
    pass


class InvalidAnswerError(QuizControllerError):
    """Raised when an answer names an unknown question or option."""
    pass


class QuizController:
    """
    Orchestrates attempt sessions for every user.

    Each user has at most one open session. The caller identity is passed to
    every operation; nothing is read from ambient state. Session events are
    delivered to the callback given at open time.
    """

    def __init__(
        self,
        data_manager: DataManager,
        result_recorder: ResultRecorder,
        config_manager: Optional[ConfigManager] = None,
        quiz_engine: Optional[QuizEngine] = None
    ):
        """
        Initialize the quiz controller.

        Args:
            data_manager: Quiz catalog
            result_recorder: Persists finished attempts
            config_manager: Source of the timer tick interval
            quiz_engine: Timer registry, built from the configured tick interval if omitted
        """
        self.logger = logging.getLogger(__name__)
        self.data_manager = data_manager
        self.result_recorder = result_recorder
        self.config_manager = config_manager or ConfigManager()
        self.quiz_engine = quiz_engine or QuizEngine(self.config_manager.get_tick_interval())

        self._active_sessions: Dict[str, AttemptSession] = {}
        self._event_callbacks: Dict[str, EventCallback] = {}
        self._session_errors: Dict[str, List[str]] = {}

        self.logger.info("QuizController initialized")

    def _log_transition(self, session: AttemptSession, from_state: SessionState, reason: str) -> None:
        self.logger.info(
            f"Session {session.user_id}/{session.quiz_id}: {from_state.value} -> {session.state.value} ({reason})",
            extra={
                'event_type': 'session_transition',
                'session_key': session.user_id,
                'from_state': from_state.value,
                'to_state': session.state.value,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    async def _emit(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        callback = self._event_callbacks.get(user_id)
        if callback is None:
            return
        try:
            await callback(event, payload)
        except Exception as e:
            self.logger.error(f"Event callback failed for {event} on session {user_id}: {e}", exc_info=True)

    def _require_session(self, user_id: str) -> AttemptSession:
        session = self._active_sessions.get(str(user_id))
        if session is None:
            raise SessionNotFoundError(f"No open quiz session for user {user_id}")
        return session

    def _require_in_progress(self, user_id: str, operation: str) -> AttemptSession:
        session = self._require_session(user_id)
        if session.state != SessionState.IN_PROGRESS:
            raise InvalidSessionStateError(
                f"Cannot {operation} while session is {session.state.value}"
            )
        return session

    def _check_open_conflict(self, key: str, quiz_id: str) -> None:
        """Raise if the user has an unfinished attempt; drop a completed one."""
        existing = self._active_sessions.get(key)
        if existing is None:
            return
        if existing.state in (SessionState.IN_PROGRESS, SessionState.SUBMITTING, SessionState.LOADING):
            self.logger.warning(f"User {key} tried to open quiz {quiz_id} with an attempt already open")
            raise SessionConflictError(f"User {key} already has an open quiz session")
        self._discard_session(key)

    async def open_session(
        self,
        user_id: str,
        quiz_id: str,
        event_callback: Optional[EventCallback] = None
    ) -> AttemptSession:
        """
        Open an attempt session and start its countdown.

        Args:
            user_id: Caller identity
            quiz_id: Catalog id of the quiz to attempt
            event_callback: Awaited with (event, payload) for tick, auto_submitted,
                completed and submit_failed events

        Returns:
            The session, in IN_PROGRESS

        Raises:
            AuthorizationError: If no caller identity is given
            SessionConflictError: If the user already has an unfinished attempt
            QuizNotFoundError: If the quiz id is unknown; no session is created
        """
        if not user_id:
            raise AuthorizationError("A caller identity is required to start a quiz")
        key = str(user_id)

        self._check_open_conflict(key, quiz_id)
        quiz = await asyncio.to_thread(self.data_manager.get_quiz, quiz_id)
        # Another open for this user may have landed during the lookup
        self._check_open_conflict(key, quiz_id)

        session = AttemptSession(user_id=key, quiz_id=quiz.id)
        self._active_sessions[key] = session
        if event_callback is not None:
            self._event_callbacks[key] = event_callback

        session.quiz = quiz
        session.remaining_time = quiz.time_limit * 60
        session.current_index = 0
        session.answers = {}
        session.state = SessionState.IN_PROGRESS
        self._log_transition(session, SessionState.LOADING, "quiz loaded")

        self.quiz_engine.start_timer(
            key,
            session.remaining_time,
            lambda remaining: self._on_tick(session, remaining),
            lambda: self._on_timer_expired(session)
        )
        return session

    async def _on_tick(self, session: AttemptSession, remaining_time: int) -> None:
        if session.state != SessionState.IN_PROGRESS:
            return
        session.remaining_time = remaining_time
        await self._emit(session.user_id, 'tick', {
            'remaining_time': remaining_time,
            'formatted_time': format_time(remaining_time)
        })

    async def _on_timer_expired(self, session: AttemptSession) -> None:
        """Auto-submit with whatever answers exist at expiry."""
        session.remaining_time = 0
        try:
            await self._submit(session, trigger='timer')
        except QuizError as e:
            self.logger.warning(f"Auto-submit failed for session {session.user_id}: {e}")
        except Exception as e:
            self.logger.error(f"Unexpected error during auto-submit for session {session.user_id}: {e}", exc_info=True)
            await self._emit(session.user_id, 'submit_failed', {
                'trigger': 'timer',
                'error': str(e),
                'user_message': self.get_user_friendly_error_message(e, 'auto-submit')
            })

    def select_answer(self, user_id: str, question_id: int, option_index: int) -> None:
        """
        Record a selection, replacing any earlier one for the same question.

        Raises:
            SessionNotFoundError: If the user has no session
            InvalidSessionStateError: If the session is not IN_PROGRESS
            InvalidAnswerError: If the question or option does not exist
        """
        session = self._require_in_progress(user_id, "select an answer")
        question = session.quiz.get_question(question_id)
        if question is None:
            raise InvalidAnswerError(f"Question {question_id} is not part of quiz {session.quiz_id}")
        if not 0 <= option_index < len(question.options):
            raise InvalidAnswerError(
                f"Option {option_index} is out of range for question {question_id}"
            )
        session.answers[question_id] = option_index
        self.logger.debug(f"User {session.user_id} selected option {option_index} for question {question_id}")

    def next_question(self, user_id: str) -> int:
        """Advance one question. No-op at the last question. Returns the position."""
        session = self._require_in_progress(user_id, "navigate")
        if session.current_index < session.quiz.total_questions - 1:
            session.current_index += 1
        return session.current_index

    def previous_question(self, user_id: str) -> int:
        """Go back one question. No-op at the first question. Returns the position."""
        session = self._require_in_progress(user_id, "navigate")
        if session.current_index > 0:
            session.current_index -= 1
        return session.current_index

    def get_current_question(self, user_id: str) -> Optional[Question]:
        session = self._active_sessions.get(str(user_id))
        if session is None or session.quiz is None:
            return None
        return session.quiz.questions[session.current_index]

    async def finish(self, user_id: str) -> Optional[QuizResult]:
        """
        Submit the attempt at any position.

        Also used to retry after a failed submission. A trigger that loses the
        race against another submission is ignored and returns None.

        Returns:
            The recorded QuizResult, or None if another submission owns the session

        Raises:
            SessionNotFoundError: If the user has no session
            InvalidSessionStateError: If the session was never started or was exited
            SubmissionValidationError, AuthorizationError, PersistenceError: From the recorder;
                the session stays in SUBMITTING
        """
        session = self._require_session(user_id)
        if session.state in (SessionState.LOADING, SessionState.EXITED):
            raise InvalidSessionStateError(f"Cannot finish while session is {session.state.value}")
        return await self._submit(session, trigger='user')

    async def _submit(self, session: AttemptSession, trigger: str) -> Optional[QuizResult]:
        previous_state = session.state
        if not session.claim_submission():
            self.logger.info(
                f"Ignored {trigger} submission for session {session.user_id}: state is {session.state.value}",
                extra={
                    'event_type': 'submission_ignored',
                    'session_key': session.user_id,
                    'trigger': trigger,
                    'state': session.state.value,
                    'timestamp': time.time()
                }
            )
            return None

        if previous_state == SessionState.IN_PROGRESS:
            self._log_transition(session, previous_state, f"{trigger} finish")
        else:
            self.logger.info(f"Retrying submission for session {session.user_id}")

        try:
            await self.quiz_engine.cancel_timer(session.user_id)

            if trigger == 'timer':
                await self._emit(session.user_id, 'auto_submitted', {
                    'answered_count': session.answered_count,
                    'total_questions': session.quiz.total_questions
                })

            report = score_attempt(session.quiz.questions, dict(session.answers))
            # Storage writes block; keep them off the event loop so other timers keep ticking
            result = await asyncio.to_thread(
                self.result_recorder.record,
                session.user_id,
                session.quiz_id,
                report.score,
                report.total_questions,
                report.outcomes
            )
        except QuizError as e:
            session.release_submission(error=str(e))
            self._session_errors.setdefault(session.user_id, []).append(f"submit: {e}")
            self.logger.error(f"Submission failed for session {session.user_id}: {e}")
            await self._emit(session.user_id, 'submit_failed', {
                'trigger': trigger,
                'error': str(e),
                'retryable': isinstance(e, PersistenceError),
                'user_message': self.get_user_friendly_error_message(e, 'submit')
            })
            raise
        except BaseException as e:
            # Cancelled or crashed mid-submit: leave SUBMITTING retryable
            session.release_submission(error=str(e) or type(e).__name__)
            self._session_errors.setdefault(session.user_id, []).append(f"submit: {type(e).__name__}")
            self.logger.warning(
                f"Submission for session {session.user_id} interrupted by {type(e).__name__}",
                extra={
                    'event_type': 'submission_interrupted',
                    'session_key': session.user_id,
                    'trigger': trigger,
                    'timestamp': time.time()
                }
            )
            raise

        session.release_submission(result=result)
        self._log_transition(session, SessionState.SUBMITTING, "result recorded")
        await self._emit(session.user_id, 'completed', {
            'trigger': trigger,
            'result': result,
            'percentage': result.percentage
        })
        return result

    async def exit_session(self, user_id: str) -> bool:
        """
        Leave the quiz. Discards an unfinished attempt without recording a result,
        or closes a completed one.

        Raises:
            SessionNotFoundError: If the user has no session
            InvalidSessionStateError: If a submission is in flight
        """
        session = self._require_session(user_id)
        if session.submission_in_flight:
            raise InvalidSessionStateError("Cannot exit while the quiz is being submitted")

        await self.quiz_engine.cancel_timer(session.user_id)
        if session.state in (SessionState.IN_PROGRESS, SessionState.SUBMITTING, SessionState.LOADING):
            previous_state = session.state
            session.state = SessionState.EXITED
            self._log_transition(session, previous_state, "user exit")

        self._discard_session(session.user_id)
        return True

    def _discard_session(self, key: str) -> None:
        self._active_sessions.pop(key, None)
        self._event_callbacks.pop(key, None)
        self._session_errors.pop(key, None)

    def get_session(self, user_id: str) -> Optional[AttemptSession]:
        return self._active_sessions.get(str(user_id))

    def has_active_session(self, user_id: str) -> bool:
        session = self._active_sessions.get(str(user_id))
        return session is not None and session.state in (SessionState.IN_PROGRESS, SessionState.SUBMITTING)

    def get_session_state(self, user_id: str) -> Optional[SessionState]:
        session = self._active_sessions.get(str(user_id))
        return session.state if session else None

    def get_session_progress(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Get progress information for a session.

        Returns:
            Dictionary with progress info, None if the user has no session
        """
        session = self._active_sessions.get(str(user_id))
        if session is None or session.quiz is None:
            return None

        total = session.quiz.total_questions
        return {
            'quiz_id': session.quiz_id,
            'quiz_title': session.quiz.title,
            'state': session.state.value,
            'current_question': session.current_index + 1,
            'total_questions': total,
            'answered_count': session.answered_count,
            'progress_percent': calculate_percentage(session.current_index + 1, total),
            'remaining_time': session.remaining_time,
            'formatted_time': format_time(session.remaining_time),
            'start_time': session.start_time,
            'last_error': session.last_error
        }

    def get_review(self, user_id: str) -> List[Dict[str, Any]]:
        """
        Review entries for a completed attempt.

        Raises:
            InvalidSessionStateError: If the attempt has not completed
        """
        session = self._require_session(user_id)
        if session.state != SessionState.COMPLETED:
            raise InvalidSessionStateError("Review is available after the quiz is submitted")
        return build_review(session.quiz, session.answers)

    def get_user_history(self, user_id: str) -> Dict[str, Any]:
        """Results of a user with the dashboard summary."""
        results = self.result_recorder.list_results(user_id)
        return {
            'results': results,
            'summary': summarize_results(results, self.data_manager.get_quiz_count())
        }

    def handle_session_error(self, user_id: str, error: Exception, operation: str) -> Dict[str, Any]:
        """
        Log an error and turn it into a result dictionary for the front-end.

        Args:
            user_id: Caller identity
            error: The exception that occurred
            operation: Description of the operation that failed

        Returns:
            Dictionary with error handling results
        """
        if isinstance(error, (QuizError, QuizControllerError)):
            self.logger.warning(f"Error in {operation} for user {user_id}: {error}")
        else:
            self.logger.error(f"Error in {operation} for user {user_id}: {error}", exc_info=True)

        self._session_errors.setdefault(str(user_id), []).append(f"{operation}: {error}")
        return {
            'success': False,
            'error': str(error),
            'operation': operation,
            'retryable': isinstance(error, PersistenceError),
            'user_message': self.get_user_friendly_error_message(error, operation)
        }

    def get_user_friendly_error_message(self, error: Exception, operation: str) -> str:
        """
        Generate user-friendly error messages.

        Args:
            error: The exception that occurred
            operation: Description of the operation that failed

        Returns:
            User-friendly error message
        """
        if isinstance(error, QuizNotFoundError):
            return "❌ That quiz is unavailable. Use `/quizzes` to see the catalog."

        elif isinstance(error, SessionConflictError):
            return "❌ You already have a quiz in progress. Finish it with `/finish` or leave with `/exit`."

        elif isinstance(error, SessionNotFoundError):
            return "❌ You don't have an open quiz. Start one with `/start`."

        elif isinstance(error, InvalidSessionStateError):
            return f"❌ {error}."

        elif isinstance(error, InvalidAnswerError):
            return "❌ That option doesn't exist for this question."

        elif isinstance(error, AuthorizationError):
            return "❌ We couldn't confirm who you are. Please sign in again and retry `/finish`."

        elif isinstance(error, SubmissionValidationError):
            return "❌ Your submission was rejected as invalid. Use `/exit` and start the quiz again."

        elif isinstance(error, PersistenceError):
            return "❌ Your result couldn't be saved. Your answers are kept, try `/finish` again."

        else:
            return f"❌ An unexpected error occurred during {operation}. Please try again."

    def get_error_summary(self, user_id: str) -> Dict[str, Any]:
        errors = self._session_errors.get(str(user_id), [])
        return {
            'error_count': len(errors),
            'recent_errors': errors[-5:],
            'has_errors': bool(errors)
        }

    def get_all_active_sessions(self) -> Dict[str, Dict[str, Any]]:
        return {key: self.get_session_progress(key) for key in self._active_sessions}

    async def shutdown(self) -> None:
        """Cancel every countdown and discard unfinished attempts."""
        cancelled = await self.quiz_engine.cancel_all_timers()
        for key in list(self._active_sessions):
            session = self._active_sessions[key]
            if session.state == SessionState.IN_PROGRESS:
                session.state = SessionState.EXITED
                self._log_transition(session, SessionState.IN_PROGRESS, "shutdown")
            self._discard_session(key)
        self.logger.info(f"QuizController shut down, {cancelled} timers cancelled")
