import json
import unittest
from unittest.mock import MagicMock, patch

from requests import RequestException

from merittrac.services.analysis_service import (
    AnalysisRequest,
    AnalysisServiceError,
    PerformanceAnalysisService,
    build_prompt,
)
from merittrac.services.auth_service import AuthServiceError, FirebaseAuthService


def _response(status_code, payload):
    res = MagicMock()
    res.status_code = status_code
    res.json.return_value = payload
    return res


REQUEST = AnalysisRequest.model_validate(
    {
        "studentName": "Asha",
        "studentId": "s1",
        "marksData": [
            {"semester": "Sem 1", "subject": "Physics", "ca1": 8, "ca2": 9, "midTerm": 15, "endTerm": 48},
        ],
    }
)


class FirebaseAuthServiceTests(unittest.TestCase):
    def setUp(self):
        self.auth = FirebaseAuthService("web-key")

    def test_requires_api_key(self):
        with self.assertRaises(AuthServiceError):
            FirebaseAuthService("")

    @patch("merittrac.services.auth_service.requests.post")
    def test_sign_in(self, post):
        post.return_value = _response(
            200,
            {"localId": "u1", "email": "a@x.edu", "idToken": "tok", "refreshToken": "ref"},
        )
        result = self.auth.sign_in("a@x.edu", "pw")
        self.assertEqual((result.uid, result.id_token, result.refresh_token), ("u1", "tok", "ref"))
        self.assertEqual(post.call_args.kwargs["params"], {"key": "web-key"})
        self.assertTrue(post.call_args[0][0].endswith("/accounts:signInWithPassword"))

    @patch("merittrac.services.auth_service.requests.post")
    def test_error_message_surfaced(self, post):
        post.return_value = _response(400, {"error": {"message": "EMAIL_EXISTS"}})
        with self.assertRaisesRegex(AuthServiceError, "EMAIL_EXISTS"):
            self.auth.sign_up("a@x.edu", "pw")

    @patch("merittrac.services.auth_service.requests.post", side_effect=RequestException("down"))
    def test_network_failure(self, post):
        with self.assertRaisesRegex(AuthServiceError, "AUTH_SERVICE_UNAVAILABLE"):
            self.auth.sign_in("a@x.edu", "pw")


class PerformanceAnalysisServiceTests(unittest.TestCase):
    def setUp(self):
        self.service = PerformanceAnalysisService("ai-key", "gemini-test", "https://ai.example/v1beta/")

    def test_prompt_lists_marks(self):
        prompt = build_prompt(REQUEST)
        self.assertIn("Student Name: Asha", prompt)
        self.assertIn("Semester: Sem 1, Subject: Physics, CA1: 8, CA2: 9, Mid Term: 15, End Term: 48", prompt)

    @patch("merittrac.services.analysis_service.requests.post")
    def test_analyze(self, post):
        analysis = {
            "overallPerformance": "Solid",
            "strengths": "Physics",
            "weaknesses": "Mid term",
            "recommendations": "Practice papers",
        }
        post.return_value = _response(
            200,
            {"candidates": [{"content": {"parts": [{"text": json.dumps(analysis)}]}}]},
        )

        result = self.service.analyze(REQUEST)

        self.assertEqual(result.overall_performance, "Solid")
        self.assertEqual(result.model_dump(by_alias=True), analysis)
        self.assertEqual(post.call_args[0][0], "https://ai.example/v1beta/models/gemini-test:generateContent")
        body = post.call_args.kwargs["json"]
        self.assertEqual(body["generationConfig"]["responseMimeType"], "application/json")

    @patch("merittrac.services.analysis_service.requests.post")
    def test_malformed_output_rejected(self, post):
        post.return_value = _response(
            200,
            {"candidates": [{"content": {"parts": [{"text": json.dumps({"strengths": "x"})}]}}]},
        )
        with self.assertRaisesRegex(AnalysisServiceError, "INVALID_ANALYSIS_RESPONSE"):
            self.service.analyze(REQUEST)

    @patch("merittrac.services.analysis_service.requests.post")
    def test_service_error(self, post):
        post.return_value = _response(429, {"error": {"message": "RESOURCE_EXHAUSTED"}})
        with self.assertRaisesRegex(AnalysisServiceError, "RESOURCE_EXHAUSTED"):
            self.service.analyze(REQUEST)

    @patch("merittrac.services.analysis_service.requests.post")
    def test_empty_candidates(self, post):
        post.return_value = _response(200, {"candidates": []})
        with self.assertRaisesRegex(AnalysisServiceError, "EMPTY_ANALYSIS_RESPONSE"):
            self.service.analyze(REQUEST)


if __name__ == "__main__":
    unittest.main()
