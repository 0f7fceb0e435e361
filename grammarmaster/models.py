"""
Core data models for the GrammarMaster quiz engine.
"""
import math
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum


class Difficulty(Enum):
    """Difficulty levels a quiz can be published with."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class SessionState(Enum):
    """Enumeration of possible attempt session states."""
    LOADING = "loading"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    EXITED = "exited"


@dataclass
class Question:
    """Represents a single multiple-choice question."""
    id: int
    question: str
    options: List[str]
    correct_answer: int
    explanation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'question': self.question,
            'options': list(self.options),
            'correctAnswer': self.correct_answer,
            'explanation': self.explanation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Question":
        return cls(
            id=data['id'],
            question=data['question'],
            options=list(data['options']),
            correct_answer=data['correctAnswer'],
            explanation=data.get('explanation', ""),
        )


@dataclass
class Quiz:
    """An immutable quiz definition held by the catalog."""
    id: str
    title: str
    description: str
    difficulty: Difficulty
    category: str
    time_limit: int  # minutes
    questions: List[Question] = field(default_factory=list)
    created_at: Optional[datetime] = None

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    def get_question(self, question_id: int) -> Optional[Question]:
        """Look up a question by its identifier."""
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'difficulty': self.difficulty.value,
            'category': self.category,
            'timeLimit': self.time_limit,
            'questions': [q.to_dict() for q in self.questions],
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Quiz":
        created_at = data.get('createdAt')
        return cls(
            id=data['id'],
            title=data['title'],
            description=data.get('description', ""),
            difficulty=Difficulty(data['difficulty']),
            category=data['category'],
            time_limit=data['timeLimit'],
            questions=[Question.from_dict(q) for q in data['questions']],
            created_at=datetime.fromisoformat(created_at) if created_at else None,
        )


@dataclass
class AnswerOutcome:
    """Per-question outcome of a scored attempt."""
    question_id: int
    answer: Optional[int]
    correct: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            'questionId': self.question_id,
            'answer': self.answer,
            'correct': self.correct,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnswerOutcome":
        return cls(
            question_id=data['questionId'],
            answer=data.get('answer'),
            correct=bool(data['correct']),
        )


@dataclass
class ScoreReport:
    """Output of the scorer for one answer set."""
    score: int
    total_questions: int
    outcomes: List[AnswerOutcome]

    @property
    def percentage(self) -> int:
        return calculate_percentage(self.score, self.total_questions)


@dataclass
class QuizResult:
    """A persisted, append-only record of a finished attempt."""
    id: str
    user_id: str
    quiz_id: str
    score: int
    total_questions: int
    answers: List[AnswerOutcome]
    completed_at: datetime

    @property
    def percentage(self) -> int:
        return calculate_percentage(self.score, self.total_questions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'userId': self.user_id,
            'quizId': self.quiz_id,
            'score': self.score,
            'totalQuestions': self.total_questions,
            'answers': [a.to_dict() for a in self.answers],
            'completedAt': self.completed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuizResult":
        return cls(
            id=data['id'],
            user_id=data['userId'],
            quiz_id=data['quizId'],
            score=data['score'],
            total_questions=data['totalQuestions'],
            answers=[AnswerOutcome.from_dict(a) for a in data['answers']],
            completed_at=datetime.fromisoformat(data['completedAt']),
        )


@dataclass
class AttemptSession:
    """One user's in-flight attempt at a quiz."""
    user_id: str
    quiz_id: str
    quiz: Optional[Quiz] = None
    state: SessionState = SessionState.LOADING
    answers: Dict[int, int] = field(default_factory=dict)
    current_index: int = 0
    remaining_time: int = 0
    start_time: datetime = field(default_factory=datetime.now)
    submission_in_flight: bool = False
    result: Optional[QuizResult] = None
    last_error: Optional[str] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def claim_submission(self) -> bool:
        """
        Atomically claim the right to submit this attempt.

        Succeeds from IN_PROGRESS, or from SUBMITTING when the previous
        submission failed and nothing is in flight.

        Returns:
            True if the caller now owns the submission, False otherwise
        """
        with self._lock:
            if self.state == SessionState.IN_PROGRESS:
                self.state = SessionState.SUBMITTING
                self.submission_in_flight = True
                return True
            if self.state == SessionState.SUBMITTING and not self.submission_in_flight:
                self.submission_in_flight = True
                return True
            return False

    def release_submission(self, result: Optional[QuizResult] = None, error: Optional[str] = None) -> None:
        """Finish an in-flight submission, completing the session on success."""
        with self._lock:
            self.submission_in_flight = False
            if result is not None:
                self.result = result
                self.last_error = None
                self.state = SessionState.COMPLETED
            else:
                self.last_error = error

    @property
    def answered_count(self) -> int:
        return len(self.answers)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up."""
    return math.floor(value + 0.5)


def calculate_percentage(score: int, total: int) -> int:
    """Whole-number percentage of correct answers; 0 for an empty quiz."""
    if total <= 0:
        return 0
    return round_half_up(score * 100 / total)
