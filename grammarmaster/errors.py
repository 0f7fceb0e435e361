"""
Exception taxonomy shared by the catalog, the result recorder and the API.
"""


class QuizError(Exception):
    """Base exception for quiz engine errors."""
    pass


class QuizNotFoundError(QuizError):
    """Raised when a quiz id does not match any catalog entry."""

    def __init__(self, quiz_id: str):
        super().__init__(f"Quiz not found: {quiz_id}")
        self.quiz_id = quiz_id


class SubmissionValidationError(QuizError):
    """Raised when a result payload is malformed. Never retried."""
    pass


class AuthorizationError(QuizError):
    """Raised when a submission carries no valid caller identity."""
    pass


class PersistenceError(QuizError):
    """Raised when a result could not be stored. The caller may retry."""
    pass


class StorageError(Exception):
    """Raised by repositories when the backing store fails."""
    pass
