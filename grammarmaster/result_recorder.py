"""
Result Recorder: append-only persistence of scored attempts.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from .errors import AuthorizationError, PersistenceError, StorageError, SubmissionValidationError
from .models import AnswerOutcome, QuizResult, calculate_percentage, round_half_up
from .storage import MemoryRepository, Repository


class ResultRecorder:
    """Validates and appends quiz results. Results are never updated or deleted."""

    def __init__(self, repository: Optional[Repository] = None):
        self.repository = repository if repository is not None else MemoryRepository()
        self.logger = logging.getLogger(__name__)

    def _validate(self, user_id: str, quiz_id: str, score: Any, total_questions: Any,
                  outcomes: Sequence[AnswerOutcome]) -> None:
        if not user_id:
            raise AuthorizationError("A caller identity is required to record results")

        if not isinstance(quiz_id, str) or not quiz_id.strip():
            raise SubmissionValidationError("quizId is required")

        for name, value in (("score", score), ("totalQuestions", total_questions)):
            if not isinstance(value, int) or isinstance(value, bool):
                raise SubmissionValidationError(f"{name} must be an integer")

        if total_questions < 0:
            raise SubmissionValidationError("totalQuestions cannot be negative")

        if not 0 <= score <= total_questions:
            raise SubmissionValidationError(
                f"score must be between 0 and {total_questions}, got {score}"
            )

        if len(outcomes) > total_questions:
            raise SubmissionValidationError(
                f"Got {len(outcomes)} answers for a quiz of {total_questions} questions"
            )

        if not all(isinstance(outcome, AnswerOutcome) for outcome in outcomes):
            raise SubmissionValidationError("answers must be question outcome records")

    def record(
        self,
        user_id: str,
        quiz_id: str,
        score: int,
        total_questions: int,
        outcomes: Sequence[AnswerOutcome]
    ) -> QuizResult:
        """
        Validate and append a new result.

        Args:
            user_id: Authenticated caller identity
            quiz_id: Quiz the attempt was made against
            score: Count of correct answers
            total_questions: Number of questions in the quiz
            outcomes: Per-question outcomes in question order

        Returns:
            The persisted QuizResult

        Raises:
            AuthorizationError: If no caller identity is given
            SubmissionValidationError: If the payload is malformed
            PersistenceError: If the repository failed to store the result
        """
        self._validate(user_id, quiz_id, score, total_questions, outcomes)

        result = QuizResult(
            id=str(uuid.uuid4()),
            user_id=str(user_id),
            quiz_id=quiz_id,
            score=score,
            total_questions=total_questions,
            answers=list(outcomes),
            completed_at=datetime.now()
        )

        try:
            self.repository.create(result.to_dict())
        except StorageError as e:
            self.logger.error(f"Failed to persist result for user {user_id} on quiz {quiz_id}: {e}")
            raise PersistenceError(f"Could not save quiz result: {e}") from e

        self.logger.info(
            f"Recorded result {result.id}: user {user_id} scored {score}/{total_questions} on quiz {quiz_id}"
        )
        return result

    def list_results(self, user_id: str) -> List[QuizResult]:
        """
        List a user's results in completion order.

        Raises:
            PersistenceError: If the repository could not be read
        """
        user_id = str(user_id)
        try:
            records = self.repository.list(lambda record: record.get('userId') == user_id)
        except StorageError as e:
            self.logger.error(f"Failed to read results for user {user_id}: {e}")
            raise PersistenceError(f"Could not load quiz results: {e}") from e
        return [QuizResult.from_dict(record) for record in records]


def summarize_results(results: Sequence[QuizResult], total_quizzes: int) -> Dict[str, Any]:
    """
    Build the dashboard summary for one user's results.

    Args:
        results: The user's results in completion order
        total_quizzes: Number of quizzes in the catalog

    Returns:
        Dictionary with completedQuizzes, averageScore, overallProgress and recentResults
    """
    completed = len(results)
    if completed:
        raw_percentages = [result.score * 100 / result.total_questions if result.total_questions else 0
                           for result in results]
        average = round_half_up(sum(raw_percentages) / completed)
    else:
        average = 0

    return {
        'completedQuizzes': completed,
        'averageScore': average,
        'overallProgress': calculate_percentage(completed, total_quizzes),
        'recentResults': [result.to_dict() for result in list(results)[-3:]][::-1],
    }
