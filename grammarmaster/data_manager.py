"""
Quiz catalog: loads JSON quiz definitions, validates them, and serves lookups.
"""
import json
import os
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime
from pathlib import Path

from .errors import QuizNotFoundError, StorageError
from .models import Difficulty, Question, Quiz
from .storage import MemoryRepository, Repository


SAMPLE_QUIZZES: List[Dict[str, Any]] = [
    {
        "id": "present-tenses",
        "title": "Present Tenses",
        "description": "Master the use of simple present, present continuous, and present perfect tenses.",
        "difficulty": "beginner",
        "category": "tenses",
        "timeLimit": 10,
        "questions": [
            {
                "id": 1,
                "question": "She _______ to work every morning at 8 AM.",
                "options": ["go", "goes", "going", "went"],
                "correctAnswer": 1,
                "explanation": "With third person singular (she/he/it) in simple present, we add 's' to the verb."
            },
            {
                "id": 2,
                "question": "They _______ studying English for two years.",
                "options": ["are", "have been", "were", "had been"],
                "correctAnswer": 1,
                "explanation": "Present perfect continuous shows an action that started in the past and continues to the present."
            }
        ]
    },
    {
        "id": "conditional-sentences",
        "title": "Conditional Sentences",
        "description": "Learn about zero, first, second, and third conditional structures.",
        "difficulty": "intermediate",
        "category": "conditionals",
        "timeLimit": 15,
        "questions": [
            {
                "id": 1,
                "question": "If it _______ tomorrow, we will stay inside.",
                "options": ["rain", "rains", "will rain", "rained"],
                "correctAnswer": 1,
                "explanation": "In first conditional, we use simple present in the if-clause and will + infinitive in the main clause."
            }
        ]
    },
    {
        "id": "advanced-grammar",
        "title": "Advanced Grammar",
        "description": "Challenge yourself with complex grammatical structures and rules.",
        "difficulty": "advanced",
        "category": "advanced",
        "timeLimit": 20,
        "questions": [
            {
                "id": 1,
                "question": "_______ the meeting been postponed, we would have had more time to prepare.",
                "options": ["Had", "If", "Should", "Were"],
                "correctAnswer": 0,
                "explanation": "This is an inverted third conditional structure, where 'had' is moved to the beginning instead of using 'if'."
            }
        ]
    }
]


class DataManager:
    """Manages loading, validation and lookup of quiz definitions."""

    MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB

    def __init__(
        self,
        quiz_directory: str = "./quizzes/",
        repository_factory: Callable[[], Repository] = MemoryRepository
    ):
        """
        Initialize DataManager with quiz directory path.

        Args:
            quiz_directory: Path to directory containing JSON quiz files
            repository_factory: Builds the repository that holds loaded quizzes
        """
        self.quiz_directory = Path(quiz_directory)
        self._repository_factory = repository_factory
        self.repository: Repository = repository_factory()
        self.logger = logging.getLogger(__name__)
        self.load_errors: List[str] = []  # Track loading errors for user feedback
        self.fallback_quiz_created = False

    def load_quiz_files(self) -> Dict[str, Quiz]:
        """
        Load all JSON files from the quiz directory.

        Returns:
            Dictionary mapping quiz ids to Quiz objects
        """
        self.repository = self._repository_factory()
        self.load_errors.clear()
        self.fallback_quiz_created = False

        directory_result = self._ensure_quiz_directory()
        if not directory_result['success']:
            self.load_errors.append(directory_result['error'])
            return self._create_fallback_quiz()

        scan_result = self._scan_quiz_files()
        if not scan_result['success']:
            self.load_errors.append(scan_result['error'])
            return self._create_fallback_quiz()

        json_files = scan_result['files']

        if not json_files:
            self.logger.warning(f"No JSON files found in {self.quiz_directory}")
            self.load_errors.append(f"No quiz files found in {self.quiz_directory}")
            return self._create_sample_quizzes()

        successful_loads = 0
        for json_file in json_files:
            load_result = self._load_quiz_file_safely(json_file)
            if load_result['success']:
                successful_loads += 1
            else:
                self.load_errors.append(f"{json_file.name}: {load_result['error']}")

        if successful_loads == 0:
            self.logger.error("No quiz files could be loaded successfully")
            self.load_errors.append("All quiz files failed to load")
            return self._create_fallback_quiz()

        self.logger.info(f"Successfully loaded {successful_loads} quiz files")
        if self.load_errors:
            self.logger.warning(f"Encountered {len(self.load_errors)} loading errors")

        return self._quizzes_by_id()

    def _load_single_file(self, file_path: Path) -> Optional[dict]:
        """
        Load and parse a single JSON file.

        Args:
            file_path: Path to the JSON file

        Returns:
            Parsed JSON data or None if loading failed
        """
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in {file_path}: {e}")
            return None
        except OSError as e:
            self.logger.error(f"Failed to read quiz file {file_path}: {e}")
            return None

        if isinstance(data, dict) and 'id' not in data:
            data['id'] = file_path.stem
        if self.validate_quiz_structure(data):
            return data
        self.logger.error(f"Invalid quiz structure in {file_path}")
        return None

    def validate_quiz_structure(self, data: Any) -> bool:
        """
        Validate that JSON data has the correct quiz structure.

        Expected structure:
        {
            "id": str,              # Optional in files, defaults to file name
            "title": str,
            "description": str,     # Optional
            "difficulty": "beginner" | "intermediate" | "advanced",
            "category": str,
            "timeLimit": int,       # minutes
            "questions": [
                {
                    "id": int,
                    "question": str,
                    "options": [str, str, ...],
                    "correctAnswer": int,
                    "explanation": str  # Optional
                }
            ]
        }

        Args:
            data: Parsed JSON data to validate

        Returns:
            True if structure is valid, False otherwise
        """
        if not isinstance(data, dict):
            self.logger.error("Quiz data must be a JSON object")
            return False

        for key in ("id", "title", "category"):
            if not isinstance(data.get(key), str) or not data[key].strip():
                self.logger.error(f"Quiz '{key}' must be a non-empty string")
                return False

        if not isinstance(data.get("description", ""), str):
            self.logger.error("Quiz 'description' must be a string")
            return False

        created_at = data.get("createdAt")
        if created_at is not None:
            try:
                datetime.fromisoformat(created_at)
            except (TypeError, ValueError):
                self.logger.error("Quiz 'createdAt' must be an ISO 8601 timestamp")
                return False

        valid_difficulties = [d.value for d in Difficulty]
        if data.get("difficulty") not in valid_difficulties:
            self.logger.error(f"Quiz 'difficulty' must be one of {', '.join(valid_difficulties)}")
            return False

        time_limit = data.get("timeLimit")
        if not isinstance(time_limit, int) or isinstance(time_limit, bool) or time_limit < 1:
            self.logger.error("Quiz 'timeLimit' must be a positive number of minutes")
            return False

        questions = data.get("questions")
        if not isinstance(questions, list):
            self.logger.error("'questions' value must be an array")
            return False

        if not questions:
            self.logger.error("Questions array cannot be empty")
            return False

        seen_ids = set()
        for i, question_data in enumerate(questions):
            if not isinstance(question_data, dict):
                self.logger.error(f"Question {i} must be an object")
                return False

            question_id = question_data.get("id")
            if not isinstance(question_id, int) or isinstance(question_id, bool):
                self.logger.error(f"Question {i} 'id' must be an integer")
                return False
            if question_id in seen_ids:
                self.logger.error(f"Question {i} reuses id {question_id}")
                return False
            seen_ids.add(question_id)

            if not isinstance(question_data.get("question"), str):
                self.logger.error(f"Question {i} 'question' field must be a string")
                return False

            options = question_data.get("options")
            if not isinstance(options, list) or len(options) < 2:
                self.logger.error(f"Question {i} 'options' must be an array of at least 2 entries")
                return False
            if not all(isinstance(option, str) for option in options):
                self.logger.error(f"Question {i} options must be strings")
                return False

            correct_answer = question_data.get("correctAnswer")
            if (not isinstance(correct_answer, int) or isinstance(correct_answer, bool)
                    or not 0 <= correct_answer < len(options)):
                self.logger.error(f"Question {i} 'correctAnswer' must index into its options")
                return False

            if not isinstance(question_data.get("explanation", ""), str):
                self.logger.error(f"Question {i} 'explanation' field must be a string")
                return False

        return True

    def _parse_quiz(self, quiz_data: dict) -> Quiz:
        """
        Parse validated quiz data into a Quiz object.

        Args:
            quiz_data: Validated quiz data dictionary

        Returns:
            Quiz object
        """
        questions = [
            Question(
                id=q["id"],
                question=q["question"],
                options=list(q["options"]),
                correct_answer=q["correctAnswer"],
                explanation=q.get("explanation", "")
            )
            for q in quiz_data["questions"]
        ]
        created_at = quiz_data.get("createdAt")
        return Quiz(
            id=quiz_data["id"],
            title=quiz_data["title"],
            description=quiz_data.get("description", ""),
            difficulty=Difficulty(quiz_data["difficulty"]),
            category=quiz_data["category"],
            time_limit=quiz_data["timeLimit"],
            questions=questions,
            created_at=datetime.fromisoformat(created_at) if created_at else datetime.now()
        )

    def _store_quiz(self, quiz: Quiz) -> None:
        self.repository.create(quiz.to_dict())

    def _quizzes_by_id(self) -> Dict[str, Quiz]:
        return {quiz.id: quiz for quiz in self.list_quizzes()}

    def get_quiz(self, quiz_id: str) -> Quiz:
        """
        Retrieve a quiz definition.

        Args:
            quiz_id: Identifier of the quiz

        Returns:
            The matching Quiz

        Raises:
            QuizNotFoundError: If no quiz has this id
        """
        record = self.repository.get(quiz_id)
        if record is None:
            self.logger.info(f"Quiz lookup failed for id '{quiz_id}'")
            raise QuizNotFoundError(quiz_id)
        return Quiz.from_dict(record)

    def list_quizzes(self) -> List[Quiz]:
        """Return every quiz in the catalog, in load order."""
        return [Quiz.from_dict(record) for record in self.repository.list()]

    def get_available_quizzes(self) -> List[str]:
        """
        Get list of available quiz ids.

        Returns:
            List of quiz identifiers
        """
        return [record['id'] for record in self.repository.list()]

    def quiz_exists(self, quiz_id: str) -> bool:
        return self.repository.get(quiz_id) is not None

    def get_quiz_count(self) -> int:
        return len(self.repository.list())

    def create_quiz(
        self,
        title: str,
        description: str,
        difficulty: str,
        category: str,
        time_limit: int,
        questions: List[Dict[str, Any]]
    ) -> Quiz:
        """
        Author a new quiz and add it to the catalog.

        Args:
            title: Quiz title
            description: Short description
            difficulty: beginner, intermediate or advanced
            category: Topic category
            time_limit: Time limit in minutes
            questions: Question dictionaries in the quiz file format

        Returns:
            The created Quiz with its assigned id

        Raises:
            ValueError: If the definition fails validation
        """
        quiz_data = {
            "id": str(uuid.uuid4()),
            "title": title,
            "description": description,
            "difficulty": difficulty,
            "category": category,
            "timeLimit": time_limit,
            "questions": questions,
        }
        if not self.validate_quiz_structure(quiz_data):
            raise ValueError(f"Invalid quiz definition: '{title}'")

        quiz = self._parse_quiz(quiz_data)
        self._store_quiz(quiz)
        self.logger.info(f"Created quiz '{quiz.title}' ({quiz.id}) with {quiz.total_questions} questions")
        return quiz

    def _ensure_quiz_directory(self) -> Dict[str, Any]:
        """
        Ensure quiz directory exists.

        Returns:
            Dictionary with success status and error message if applicable
        """
        try:
            if not self.quiz_directory.exists():
                self.quiz_directory.mkdir(parents=True, exist_ok=True)
                self.logger.info(f"Created quiz directory: {self.quiz_directory}")

            if not os.access(self.quiz_directory, os.R_OK):
                return {
                    'success': False,
                    'error': f"Permission denied: Cannot read from {self.quiz_directory}"
                }

            return {'success': True}

        except PermissionError:
            return {
                'success': False,
                'error': f"Permission denied: Cannot access {self.quiz_directory}"
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error accessing {self.quiz_directory}: {e}"
            }

    def _scan_quiz_files(self) -> Dict[str, Any]:
        """
        Scan quiz directory for JSON files.

        Returns:
            Dictionary with success status, files list, and error message if applicable
        """
        try:
            json_files = sorted(self.quiz_directory.glob("*.json"))
            return {
                'success': True,
                'files': json_files
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error scanning {self.quiz_directory}: {e}",
                'files': []
            }

    def _load_quiz_file_safely(self, json_file: Path) -> Dict[str, Any]:
        """
        Load a single quiz file with error handling.

        Args:
            json_file: Path to the JSON file to load

        Returns:
            Dictionary with success status and error message if applicable
        """
        try:
            if not os.access(json_file, os.R_OK):
                return {
                    'success': False,
                    'error': "Permission denied: Cannot read file"
                }

            file_size = json_file.stat().st_size
            if file_size > self.MAX_FILE_SIZE:
                return {
                    'success': False,
                    'error': f"File too large ({file_size / 1024 / 1024:.1f}MB). Maximum size is {self.MAX_FILE_SIZE / 1024 / 1024}MB"
                }

            quiz_data = self._load_single_file(json_file)
            if quiz_data is None:
                return {
                    'success': False,
                    'error': "Invalid JSON structure or validation failed"
                }

            if self.quiz_exists(quiz_data["id"]):
                return {
                    'success': False,
                    'error': f"Duplicate quiz id '{quiz_data['id']}'"
                }

            quiz = self._parse_quiz(quiz_data)
            self._store_quiz(quiz)
            self.logger.info(f"Loaded quiz '{quiz.id}' with {quiz.total_questions} questions")

            return {'success': True}

        except OSError as e:
            return {
                'success': False,
                'error': f"System error: {e}"
            }
        except StorageError as e:
            return {
                'success': False,
                'error': f"Storage error: {e}"
            }
        except (KeyError, TypeError, ValueError) as e:
            return {
                'success': False,
                'error': f"Could not parse quiz: {e}"
            }

    def _create_sample_quizzes(self) -> Dict[str, Quiz]:
        """
        Write the sample grammar quizzes when no quiz files are found.

        Returns:
            Dictionary with the sample quizzes loaded
        """
        for quiz_data in SAMPLE_QUIZZES:
            sample_file_path = self.quiz_directory / f"{quiz_data['id']}.json"
            try:
                if not sample_file_path.exists():
                    with open(sample_file_path, 'w', encoding='utf-8') as f:
                        json.dump(quiz_data, f, indent=2, ensure_ascii=False)
                    self.logger.info(f"Created sample quiz file: {sample_file_path}")
            except OSError as e:
                self.logger.error(f"Failed to write sample quiz {sample_file_path}: {e}")
                self.load_errors.append(f"Failed to write sample quiz: {e}")

            self._store_quiz(self._parse_quiz(dict(quiz_data)))

        self.logger.info(f"Loaded {len(SAMPLE_QUIZZES)} sample quizzes")
        return self._quizzes_by_id()

    def _create_fallback_quiz(self) -> Dict[str, Quiz]:
        """
        Create a minimal fallback quiz in memory when all file operations fail.

        Returns:
            Dictionary with the fallback quiz loaded
        """
        fallback_quiz = Quiz(
            id="fallback-quiz",
            title="Fallback Quiz",
            description="Shown because quiz files could not be loaded.",
            difficulty=Difficulty.BEGINNER,
            category="system",
            time_limit=5,
            questions=[
                Question(
                    id=1,
                    question="What should you do when quiz files can't be loaded?",
                    options=["Ignore it", "Check the quiz directory and file permissions"],
                    correct_answer=1,
                    explanation="The catalog reads JSON files from the configured quiz directory."
                )
            ],
            created_at=datetime.now()
        )
        self._store_quiz(fallback_quiz)
        self.fallback_quiz_created = True
        self.logger.warning("Created fallback quiz due to file loading failures")
        return self._quizzes_by_id()

    def get_load_errors(self) -> List[str]:
        """
        Get list of errors encountered during the last load operation.

        Returns:
            List of error messages
        """
        return self.load_errors.copy()

    def has_load_errors(self) -> bool:
        return len(self.load_errors) > 0

    def is_fallback_quiz_active(self) -> bool:
        return self.fallback_quiz_created

    def get_loading_summary(self) -> Dict[str, Any]:
        """
        Get a summary of the last loading operation.

        Returns:
            Dictionary with loading statistics and status
        """
        return {
            'total_quizzes': self.get_quiz_count(),
            'has_errors': self.has_load_errors(),
            'error_count': len(self.load_errors),
            'errors': self.get_load_errors(),
            'fallback_active': self.is_fallback_quiz_active(),
            'quiz_directory': str(self.quiz_directory),
            'available_quizzes': self.get_available_quizzes()
        }
