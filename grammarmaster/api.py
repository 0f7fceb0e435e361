"""
HTTP API for the quiz catalog and quiz result history.
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .auth import decode_access_token, extract_bearer_token
from .config_manager import ConfigManager
from .data_manager import DataManager
from .errors import (
    AuthorizationError,
    PersistenceError,
    QuizNotFoundError,
    SubmissionValidationError,
)
from .models import AnswerOutcome, Quiz, QuizResult
from .result_recorder import ResultRecorder, summarize_results

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class QuestionModel(CamelModel):
    id: int
    question: str
    options: List[str]
    correct_answer: int = Field(alias="correctAnswer")
    explanation: str = ""


class QuizModel(CamelModel):
    id: str
    title: str
    description: str
    difficulty: str
    category: str
    time_limit: int = Field(alias="timeLimit")
    questions: List[QuestionModel]
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    @classmethod
    def from_quiz(cls, quiz: Quiz) -> "QuizModel":
        return cls.model_validate(quiz.to_dict())


class AnswerOutcomeModel(CamelModel):
    question_id: int = Field(alias="questionId")
    answer: Optional[int] = None
    correct: bool


class SubmitResultRequest(CamelModel):
    quiz_id: str = Field(alias="quizId", min_length=1)
    score: int
    total_questions: int = Field(alias="totalQuestions")
    answers: List[AnswerOutcomeModel]


class QuizResultModel(CamelModel):
    id: str
    user_id: str = Field(alias="userId")
    quiz_id: str = Field(alias="quizId")
    score: int
    total_questions: int = Field(alias="totalQuestions")
    answers: List[AnswerOutcomeModel]
    completed_at: datetime = Field(alias="completedAt")

    @classmethod
    def from_result(cls, result: QuizResult) -> "QuizResultModel":
        return cls.model_validate(result.to_dict())


class DashboardSummaryModel(CamelModel):
    completed_quizzes: int = Field(alias="completedQuizzes")
    average_score: int = Field(alias="averageScore")
    overall_progress: int = Field(alias="overallProgress")
    recent_results: List[QuizResultModel] = Field(alias="recentResults")


def create_app(
    data_manager: DataManager,
    recorder: ResultRecorder,
    config_manager: Optional[ConfigManager] = None
) -> FastAPI:
    """
    Build the FastAPI application around an already loaded catalog.

    Args:
        data_manager: Quiz catalog
        recorder: Result recorder
        config_manager: Token settings; defaults are used if omitted
    """
    config_manager = config_manager or ConfigManager()

    app = FastAPI(
        title="GrammarMaster Quiz API",
        description="Grammar quiz catalog and quiz result history",
        version="1.0.0"
    )

    def get_current_user_id(authorization: Optional[str] = Header(default=None)) -> str:
        """Dependency resolving the bearer token to the caller id."""
        token = extract_bearer_token(authorization)
        return decode_access_token(token, config_manager.get_jwt_secret(), config_manager.get_jwt_algorithm())

    @app.exception_handler(QuizNotFoundError)
    async def quiz_not_found_handler(request: Request, exc: QuizNotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": "Quiz not found"})

    @app.exception_handler(SubmissionValidationError)
    async def submission_validation_handler(request: Request, exc: SubmissionValidationError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [{"loc": list(error.get("loc", ())), "msg": error.get("msg", "")} for error in exc.errors()]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "Invalid quiz result data", "errors": errors}
        )

    @app.exception_handler(AuthorizationError)
    async def authorization_handler(request: Request, exc: AuthorizationError):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": str(exc)},
            headers={"WWW-Authenticate": "Bearer"}
        )

    @app.exception_handler(PersistenceError)
    async def persistence_handler(request: Request, exc: PersistenceError):
        logger.error(f"Persistence failure on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Quiz results are temporarily unavailable, please retry"}
        )

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    @app.get("/api/quizzes", response_model=List[QuizModel])
    def list_quizzes():
        return [QuizModel.from_quiz(quiz) for quiz in data_manager.list_quizzes()]

    @app.get("/api/quizzes/{quiz_id}", response_model=QuizModel)
    def get_quiz(quiz_id: str):
        return QuizModel.from_quiz(data_manager.get_quiz(quiz_id))

    @app.post("/api/quiz-results", response_model=QuizResultModel, status_code=status.HTTP_201_CREATED)
    def submit_result(body: SubmitResultRequest, user_id: str = Depends(get_current_user_id)):
        outcomes = [
            AnswerOutcome(question_id=a.question_id, answer=a.answer, correct=a.correct)
            for a in body.answers
        ]
        result = recorder.record(user_id, body.quiz_id, body.score, body.total_questions, outcomes)
        return QuizResultModel.from_result(result)

    @app.get("/api/quiz-results", response_model=List[QuizResultModel])
    def list_results(user_id: str = Depends(get_current_user_id)):
        return [QuizResultModel.from_result(result) for result in recorder.list_results(user_id)]

    @app.get("/api/quiz-results/summary", response_model=DashboardSummaryModel)
    def results_summary(user_id: str = Depends(get_current_user_id)):
        summary = summarize_results(recorder.list_results(user_id), data_manager.get_quiz_count())
        return DashboardSummaryModel.model_validate(summary)

    logger.info("GrammarMaster API application created")
    return app
