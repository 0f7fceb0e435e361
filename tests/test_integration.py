"""
Integration tests for GrammarMaster.
Tests complete quiz flows across the catalog, sessions, storage and the HTTP API.
"""
import asyncio
import logging
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from grammarmaster.api import create_app
from grammarmaster.auth import create_access_token
from grammarmaster.config_manager import ConfigManager
from grammarmaster.data_manager import DataManager
from grammarmaster.models import SessionState
from grammarmaster.quiz_controller import QuizController
from grammarmaster.result_recorder import ResultRecorder
from grammarmaster.storage import create_repository


class TestCompleteQuizFlow(unittest.IsolatedAsyncioTestCase):
    """Sample catalog, JSON result file and API sharing one results store."""

    def setUp(self):
        """Set up integration test environment."""
        logging.disable(logging.CRITICAL)
        self.temp_dir = tempfile.mkdtemp()

        self.config_manager = ConfigManager()
        self.config_manager.apply_config({
            'quiz': {
                'quiz_directory': str(Path(self.temp_dir) / "quizzes"),
                'results_file': str(Path(self.temp_dir) / "data" / "results.json"),
            },
            'api': {'jwt_secret': "integration-secret"},
        })

        self.data_manager = DataManager(self.config_manager.get_quiz_directory())
        self.data_manager.load_quiz_files()
        self.recorder = ResultRecorder(create_repository(self.config_manager.get_results_file()))
        self.controller = QuizController(self.data_manager, self.recorder, self.config_manager)

    async def asyncTearDown(self):
        await self.controller.shutdown()

    def tearDown(self):
        """Clean up test environment."""
        logging.disable(logging.NOTSET)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def api_client(self):
        return TestClient(create_app(self.data_manager, self.recorder, self.config_manager))

    def auth_headers(self, user_id):
        token = create_access_token(user_id, self.config_manager.get_jwt_secret())
        return {"Authorization": f"Bearer {token}"}

    async def test_complete_quiz_flow(self):
        """Take every sample quiz; the dashboard reflects all three results."""
        user_id = "learner"

        await self.controller.open_session(user_id, "present-tenses")
        self.controller.select_answer(user_id, 1, 1)
        self.controller.next_question(user_id)
        self.controller.select_answer(user_id, 2, 0)
        first = await self.controller.finish(user_id)
        self.assertEqual((first.score, first.total_questions), (1, 2))

        await self.controller.open_session(user_id, "conditional-sentences")
        self.controller.select_answer(user_id, 1, 1)
        await self.controller.finish(user_id)

        await self.controller.open_session(user_id, "advanced-grammar")
        await self.controller.finish(user_id)

        summary = self.controller.get_user_history(user_id)['summary']
        self.assertEqual(summary['completedQuizzes'], 3)
        self.assertEqual(summary['averageScore'], 50)
        self.assertEqual(summary['overallProgress'], 100)
        self.assertEqual(summary['recentResults'][0]['quizId'], "advanced-grammar")

        # The API reads the same results file
        response = self.api_client().get("/api/quiz-results/summary", headers=self.auth_headers(user_id))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['averageScore'], 50)

    async def test_results_survive_restart(self):
        await self.controller.open_session("learner", "present-tenses")
        result = await self.controller.finish("learner")

        reopened = ResultRecorder(create_repository(self.config_manager.get_results_file()))
        self.assertEqual(reopened.list_results("learner"), [result])

    async def test_api_submission_visible_to_bot_history(self):
        response = self.api_client().post(
            "/api/quiz-results",
            json={
                "quizId": "conditional-sentences",
                "score": 1,
                "totalQuestions": 1,
                "answers": [{"questionId": 1, "answer": 1, "correct": True}],
            },
            headers=self.auth_headers("learner")
        )
        self.assertEqual(response.status_code, 201)

        history = self.controller.get_user_history("learner")
        self.assertEqual(len(history['results']), 1)
        self.assertEqual(history['summary']['averageScore'], 100)

    @patch('grammarmaster.quiz_engine.asyncio.sleep', new_callable=AsyncMock)
    async def test_concurrent_users_time_out_independently(self, mock_sleep):
        for user_id in ("a", "b", "c"):
            await self.controller.open_session(user_id, "conditional-sentences")
        self.controller.select_answer("b", 1, 1)
        await self.controller.exit_session("c")

        tasks = [self.controller.quiz_engine.get_timer_task(user_id) for user_id in ("a", "b")]
        await asyncio.gather(*tasks)

        self.assertEqual(self.controller.get_session_state("a"), SessionState.COMPLETED)
        self.assertEqual(self.controller.get_session("b").result.score, 1)
        self.assertIsNone(self.controller.get_session("c"))
        self.assertEqual(self.recorder.list_results("c"), [])
        self.assertEqual(self.controller.quiz_engine.active_timer_count(), 0)


if __name__ == '__main__':
    unittest.main()
