import json

import requests

import ai_tests
import config


class FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def _gemini(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def test_split_counts():
    assert ai_tests.split_counts(10, ["objective", "theory"]) == (6, 4)
    assert ai_tests.split_counts(5, ["objective", "theory"]) == (3, 2)
    assert ai_tests.split_counts(4, ["theory"]) == (0, 4)
    assert ai_tests.split_counts(4, ["objective"]) == (4, 0)
    assert ai_tests.split_counts(4, ["objective", "theory"]) == (3, 1)
    assert ai_tests.split_counts(1, ["objective", "theory"]) == (1, 0)


def test_prompt_mentions_context():
    prompt = ai_tests.build_prompt("Biology", "Cells", 10, "hard", ["objective", "theory"], "waec", "ss2", "Use diagrams")
    assert "WAEC" in prompt
    assert "Senior Secondary 2" in prompt
    assert "Generate 6 objective questions" in prompt
    assert "Generate 4 theory questions" in prompt
    assert "Use diagrams" in prompt


def test_parse_response_strips_fences():
    raw = "Here you go:\n```json\n" + json.dumps([
        {"type": "objective", "question": "2+2?", "options": ["3", "4", "5", "6"], "correctAnswer": 1},
        {"type": "theory", "question": "Explain addition", "sampleAnswer": "..."},
    ]) + "\n```"
    questions = ai_tests.parse_response(raw)
    assert [q["type"] for q in questions] == ["objective", "theory"]
    assert questions[0]["correct_answer"] == 1
    assert questions[0]["marks"] == 2
    assert questions[1]["marks"] == 10
    assert questions[1]["options"] is None


def test_parse_response_garbage():
    assert ai_tests.parse_response("not json at all") == []
    assert ai_tests.parse_response('{"a": 1}') == []


def test_fallback_when_key_missing(monkeypatch):
    monkeypatch.setattr(config, "GOOGLE_API_KEY", None)
    questions, generated, reason = ai_tests.generate_questions("Physics", "Motion", question_count=5)
    assert generated is False
    assert reason == "GOOGLE_API_KEY not configured"
    assert len(questions) == 5
    assert sum(q["marks"] for q in questions) == 3 * 2 + 2 * 10
    assert [q["id"] for q in questions] == ["q_1", "q_2", "q_3", "q_4", "q_5"]


def test_fallback_on_provider_error(monkeypatch):
    monkeypatch.setattr(config, "GOOGLE_API_KEY", "key")
    monkeypatch.setattr(requests, "post", lambda *a, **kw: FakeResponse(503))
    questions, generated, reason = ai_tests.generate_questions("Physics", "Motion", 3, question_types=["theory"])
    assert generated is False
    assert reason == "AI provider error: 503"
    assert all(q["type"] == "theory" for q in questions)


def test_fallback_on_transport_error(monkeypatch):
    monkeypatch.setattr(config, "GOOGLE_API_KEY", "key")

    def boom(*a, **kw):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(requests, "post", boom)
    _, generated, reason = ai_tests.generate_questions("Physics", "Motion", 2)
    assert generated is False
    assert reason.startswith("AI provider unreachable")


def test_provider_success(monkeypatch):
    monkeypatch.setattr(config, "GOOGLE_API_KEY", "key")
    calls = {}

    def fake_post(url, params=None, json=None, timeout=None):
        calls.update(url=url, params=params, body=json, timeout=timeout)
        return FakeResponse(200, _gemini('[{"type": "objective", "question": "Q?", "options": ["a","b","c","d"]}]'))

    monkeypatch.setattr(requests, "post", fake_post)
    questions, generated, reason = ai_tests.generate_questions("Maths", "Sets", 1, question_types=["objective"])
    assert generated is True and reason is None
    assert questions[0]["question"] == "Q?"
    assert calls["params"] == {"key": "key"}
    assert calls["body"]["generationConfig"]["maxOutputTokens"] == 8192
    assert calls["timeout"] == config.AI_TIMEOUT_SECONDS
    assert config.AI_MODEL in calls["url"]
