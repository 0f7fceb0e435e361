"""
Tests for the HTTP API using FastAPI's TestClient.
"""
import logging
import shutil
import tempfile
import unittest

from fastapi.testclient import TestClient

from grammarmaster.api import create_app
from grammarmaster.auth import create_access_token, decode_access_token, extract_bearer_token
from grammarmaster.config_manager import ConfigManager
from grammarmaster.errors import AuthorizationError
from grammarmaster.result_recorder import ResultRecorder
from tests.test_fixtures import FailingRepository, TestFixtures

SECRET = "test-secret"


def result_payload(**changes):
    payload = {
        "quizId": "present-tenses",
        "score": 1,
        "totalQuestions": 2,
        "answers": [
            {"questionId": 1, "answer": 1, "correct": True},
            {"questionId": 2, "answer": 0, "correct": False},
        ],
    }
    payload.update(changes)
    return payload


class TestAuthHelpers(unittest.TestCase):
    def test_token_round_trip(self):
        token = create_access_token("user-1", SECRET)
        self.assertEqual(decode_access_token(token, SECRET), "user-1")

    def test_wrong_secret_rejected(self):
        token = create_access_token("user-1", SECRET)
        with self.assertRaises(AuthorizationError):
            decode_access_token(token, "another-secret")

    def test_expired_token_rejected(self):
        token = create_access_token("user-1", SECRET, expire_days=-1)
        with self.assertRaises(AuthorizationError) as context:
            decode_access_token(token, SECRET)
        self.assertEqual(str(context.exception), "Token has expired")

    def test_extract_bearer_token(self):
        self.assertEqual(extract_bearer_token("Bearer abc.def"), "abc.def")
        for header in (None, "", "Basic abc", "Bearer "):
            with self.subTest(header=header):
                with self.assertRaises(AuthorizationError):
                    extract_bearer_token(header)


class TestQuizApi(unittest.TestCase):
    """Test cases for catalog and result endpoints."""

    def setUp(self):
        logging.disable(logging.CRITICAL)
        self.temp_dir = tempfile.mkdtemp()
        self.data_manager = TestFixtures.create_loaded_data_manager(self.temp_dir)
        self.config_manager = ConfigManager()
        self.config_manager.set_jwt_secret(SECRET)
        self.recorder = ResultRecorder()
        self.client = TestClient(create_app(self.data_manager, self.recorder, self.config_manager))
        self.headers = self.auth_headers("user-1")

    def tearDown(self):
        logging.disable(logging.NOTSET)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def auth_headers(self, user_id):
        return {"Authorization": f"Bearer {create_access_token(user_id, SECRET)}"}

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_list_quizzes(self):
        response = self.client.get("/api/quizzes")

        self.assertEqual(response.status_code, 200)
        quizzes = response.json()
        self.assertEqual(len(quizzes), 1)
        self.assertEqual(quizzes[0]["id"], "present-tenses")
        self.assertEqual(quizzes[0]["timeLimit"], 10)
        self.assertEqual(quizzes[0]["questions"][0]["correctAnswer"], 1)

    def test_get_quiz(self):
        response = self.client.get("/api/quizzes/present-tenses")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["title"], "Present Tenses")

    def test_get_unknown_quiz(self):
        response = self.client.get("/api/quizzes/missing")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"detail": "Quiz not found"})

    def test_submit_result(self):
        response = self.client.post("/api/quiz-results", json=result_payload(), headers=self.headers)

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["userId"], "user-1")
        self.assertEqual(body["score"], 1)
        self.assertEqual(body["answers"][1], {"questionId": 2, "answer": 0, "correct": False})
        self.assertIn("completedAt", body)
        self.assertEqual(len(self.recorder.list_results("user-1")), 1)

    def test_submit_requires_token(self):
        response = self.client.post("/api/quiz-results", json=result_payload())

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.headers["WWW-Authenticate"], "Bearer")
        self.assertEqual(self.recorder.list_results("user-1"), [])

    def test_submit_with_bad_token(self):
        response = self.client.post(
            "/api/quiz-results",
            json=result_payload(),
            headers={"Authorization": "Bearer not-a-token"}
        )
        self.assertEqual(response.status_code, 401)

    def test_submit_malformed_body(self):
        for payload in (
            result_payload(quizId=""),
            result_payload(score="lots"),
            {"quizId": "present-tenses"},
        ):
            with self.subTest(payload=payload):
                response = self.client.post("/api/quiz-results", json=payload, headers=self.headers)
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()["detail"], "Invalid quiz result data")
                self.assertTrue(response.json()["errors"])

    def test_submit_inconsistent_score(self):
        response = self.client.post("/api/quiz-results", json=result_payload(score=5), headers=self.headers)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.recorder.list_results("user-1"), [])

    def test_storage_failure_is_service_unavailable(self):
        client = TestClient(create_app(
            self.data_manager, ResultRecorder(FailingRepository(failures=1)), self.config_manager
        ))
        response = client.post("/api/quiz-results", json=result_payload(), headers=self.headers)
        self.assertEqual(response.status_code, 503)

        # The same submission succeeds once storage recovers
        response = client.post("/api/quiz-results", json=result_payload(), headers=self.headers)
        self.assertEqual(response.status_code, 201)

    def test_results_are_scoped_to_caller(self):
        self.client.post("/api/quiz-results", json=result_payload(), headers=self.headers)
        self.client.post("/api/quiz-results", json=result_payload(score=2), headers=self.auth_headers("user-2"))

        response = self.client.get("/api/quiz-results", headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual([r["score"] for r in response.json()], [1])
        self.assertEqual(self.client.get("/api/quiz-results").status_code, 401)

    def test_summary(self):
        self.client.post("/api/quiz-results", json=result_payload(score=1), headers=self.headers)
        self.client.post("/api/quiz-results", json=result_payload(score=2), headers=self.headers)

        response = self.client.get("/api/quiz-results/summary", headers=self.headers)

        self.assertEqual(response.status_code, 200)
        summary = response.json()
        self.assertEqual(summary["completedQuizzes"], 2)
        self.assertEqual(summary["averageScore"], 75)
        self.assertEqual(summary["overallProgress"], 200)
        self.assertEqual([r["score"] for r in summary["recentResults"]], [2, 1])

    def test_empty_summary(self):
        response = self.client.get("/api/quiz-results/summary", headers=self.headers)
        self.assertEqual(response.json(), {
            "completedQuizzes": 0,
            "averageScore": 0,
            "overallProgress": 0,
            "recentResults": [],
        })


if __name__ == '__main__':
    unittest.main()
