"""
Test fixtures and sample data for GrammarMaster tests.
"""
import json
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List
from unittest.mock import AsyncMock, Mock

import discord

from grammarmaster.data_manager import DataManager
from grammarmaster.errors import StorageError
from grammarmaster.models import Difficulty, Question, Quiz
from grammarmaster.storage import MemoryRepository


class TestFixtures:
    """Centralized test fixtures for all test modules."""

    @staticmethod
    def create_sample_questions() -> List[Question]:
        """Two questions whose correct answers are both option 1."""
        return [
            Question(
                id=1,
                question="She _______ to work every morning at 8 AM.",
                options=["go", "goes", "going", "went"],
                correct_answer=1,
                explanation="Third person singular adds 's' in the simple present."
            ),
            Question(
                id=2,
                question="They _______ studying English for two years.",
                options=["are", "have been", "were", "had been"],
                correct_answer=1,
                explanation="Present perfect continuous for an action continuing to the present."
            ),
        ]

    @staticmethod
    def create_sample_quiz(quiz_id: str = "present-tenses", time_limit: int = 10) -> Quiz:
        return Quiz(
            id=quiz_id,
            title="Present Tenses",
            description="Simple present and present perfect.",
            difficulty=Difficulty.BEGINNER,
            category="tenses",
            time_limit=time_limit,
            questions=TestFixtures.create_sample_questions(),
            created_at=datetime(2024, 1, 1, 12, 0, 0)
        )

    @staticmethod
    def create_valid_quiz_json(quiz_id: str = "articles") -> Dict:
        """Create valid quiz JSON structure."""
        return {
            "id": quiz_id,
            "title": "Articles",
            "description": "A, an and the.",
            "difficulty": "beginner",
            "category": "articles",
            "timeLimit": 5,
            "questions": [
                {
                    "id": 1,
                    "question": "I saw _______ elephant at the zoo.",
                    "options": ["a", "an", "the"],
                    "correctAnswer": 1,
                    "explanation": "Use 'an' before a vowel sound."
                },
                {
                    "id": 2,
                    "question": "_______ sun rises in the east.",
                    "options": ["A", "An", "The"],
                    "correctAnswer": 2
                }
            ]
        }

    @staticmethod
    def create_invalid_quiz_json_structures() -> List[Dict]:
        """Create various invalid quiz JSON structures for testing."""
        valid = TestFixtures.create_valid_quiz_json()

        def variant(**changes):
            data = json.loads(json.dumps(valid))
            data.update(changes)
            return data

        def question_variant(**changes):
            data = json.loads(json.dumps(valid))
            data["questions"][0].update(changes)
            return data

        return [
            variant(title=""),
            variant(difficulty="expert"),
            variant(timeLimit=0),
            variant(timeLimit="10"),
            variant(questions=[]),
            variant(questions="not an array"),
            question_variant(options=["only one"]),
            question_variant(correctAnswer=3),
            question_variant(correctAnswer=-1),
            question_variant(question=123),
            question_variant(id=2),  # duplicate question id
            variant(createdAt="yesterday"),
            variant(createdAt=20240101),
        ]

    @staticmethod
    def create_temp_quiz_files(temp_dir: str) -> Dict[str, Path]:
        """Create temporary quiz files for testing."""
        quiz_files = {}

        valid_file = Path(temp_dir) / "articles.json"
        with open(valid_file, 'w') as f:
            json.dump(TestFixtures.create_valid_quiz_json(), f)
        quiz_files["valid"] = valid_file

        no_id_quiz = TestFixtures.create_valid_quiz_json()
        del no_id_quiz["id"]
        no_id_file = Path(temp_dir) / "prepositions.json"
        with open(no_id_file, 'w') as f:
            json.dump(no_id_quiz, f)
        quiz_files["no_id"] = no_id_file

        invalid_file = Path(temp_dir) / "invalid.json"
        with open(invalid_file, 'w') as f:
            f.write("{ invalid json }")
        quiz_files["invalid"] = invalid_file

        invalid_structure_file = Path(temp_dir) / "invalid_structure.json"
        with open(invalid_structure_file, 'w') as f:
            json.dump(TestFixtures.create_invalid_quiz_json_structures()[1], f)
        quiz_files["invalid_structure"] = invalid_structure_file

        non_json_file = Path(temp_dir) / "not_a_quiz.txt"
        with open(non_json_file, 'w') as f:
            f.write("This is not a JSON file")
        quiz_files["non_json"] = non_json_file

        return quiz_files

    @staticmethod
    def create_loaded_data_manager(temp_dir: str, *quizzes: Quiz) -> DataManager:
        """DataManager whose catalog holds the given quizzes (the sample quiz by default)."""
        for quiz in quizzes or (TestFixtures.create_sample_quiz(),):
            with open(Path(temp_dir) / f"{quiz.id}.json", 'w') as f:
                json.dump(quiz.to_dict(), f)
        data_manager = DataManager(temp_dir)
        data_manager.load_quiz_files()
        return data_manager


class FailingRepository(MemoryRepository):
    """Repository whose writes fail until `failures` runs out."""

    def __init__(self, failures: int = 1):
        super().__init__()
        self.failures = failures
        self.create_calls = 0

    def create(self, record):
        self.create_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise StorageError("disk unavailable")
        return super().create(record)


class SlowRepository(MemoryRepository):
    """Repository whose writes block the calling thread for `delay` seconds."""

    def __init__(self, delay: float = 0.3):
        super().__init__()
        self.delay = delay

    def create(self, record):
        time.sleep(self.delay)
        return super().create(record)


class MockDiscordObjects:
    """Mock Discord objects for testing bot functionality."""

    @staticmethod
    def create_mock_interaction(channel_id: int = 12345, user_id: int = 67890) -> Mock:
        """Create mock Discord interaction."""
        interaction = Mock(spec=discord.Interaction)
        interaction.channel_id = channel_id
        interaction.user = Mock()
        interaction.user.id = user_id
        interaction.user.mention = f"<@{user_id}>"
        interaction.user.send = AsyncMock()
        interaction.channel = Mock()
        interaction.channel.id = channel_id
        interaction.channel.send = AsyncMock()
        interaction.response = Mock()
        interaction.response.is_done.return_value = False
        interaction.response.send_message = AsyncMock()
        interaction.followup = Mock()
        interaction.followup.send = AsyncMock()
        interaction.edit_original_response = AsyncMock()
        return interaction

    @staticmethod
    def sent_embed(interaction: Mock) -> discord.Embed:
        """The embed passed to the interaction's first response."""
        return interaction.response.send_message.call_args.kwargs['embed']
