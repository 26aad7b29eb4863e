import json
import unittest

import requests

import tutor


class _FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload
        self.text = json.dumps(payload)

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(response=self)


class _FakeHttp:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _completion(content):
    return _FakeResponse(200, {"choices": [{"message": {"content": content}}]})


class PracticeFeedbackTests(unittest.TestCase):
    def test_structured_reply_is_parsed(self):
        http = _FakeHttp(_completion('<think>hmm</think>{"feedback": "Good start.", "score": 0.8, "hints": ["Check the bias term"]}'))
        result = tutor.generate_practice_feedback("Explain a perceptron", "It sums inputs", http=http)
        self.assertEqual(result.feedback, "Good start.")
        self.assertEqual(result.score, 0.8)
        self.assertEqual(result.hints, ["Check the bias term"])

    def test_free_text_reply_is_wrapped(self):
        http = _FakeHttp(_completion("Nice work, but mention the activation."))
        result = tutor.generate_practice_feedback("Explain a perceptron", "It sums inputs", http=http)
        self.assertEqual(result.feedback, "Nice work, but mention the activation.")
        self.assertIsNone(result.score)

    def test_bad_request_retries_with_minimal_payload(self):
        http = _FakeHttp(_FakeResponse(400, {"error": "invalid"}), _completion("Answer"))
        messages = [{"role": "user", "content": "Hello"}]
        result = tutor._llm_call(messages, model="m", http=http, max_tokens=99)
        self.assertEqual(result, "Answer")
        first_call, second_call = http.calls
        self.assertIn("temperature", first_call["json"])
        self.assertEqual(second_call["json"], {"model": "m", "messages": messages})

    def test_transport_errors_raise_service_error(self):
        http = _FakeHttp(requests.ConnectionError("refused"))
        with self.assertRaises(tutor.TutorServiceError):
            tutor.generate_practice_feedback("Q", "A", http=http)

    def test_server_error_raises_service_error(self):
        http = _FakeHttp(_FakeResponse(503, {"error": "busy"}))
        with self.assertRaises(tutor.TutorServiceError) as ctx:
            tutor.generate_practice_feedback("Q", "A", http=http)
        self.assertIn("503", str(ctx.exception))

    def test_empty_reply_raises_service_error(self):
        http = _FakeHttp(_completion("<think>only thoughts</think>"))
        with self.assertRaises(tutor.TutorServiceError):
            tutor.generate_practice_feedback("Q", "A", http=http)

    def test_tone_follows_affective_state(self):
        messages = tutor.build_feedback_messages("Q", "A", "frustrated")
        self.assertIn("frustrated", messages[0]["content"])
        self.assertNotIn("{tone}", tutor.build_feedback_messages("Q", "A")[0]["content"])


if __name__ == "__main__":
    unittest.main()
