"""
Tests for the question generation / grading client with requests mocked out.
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from interview.ledger import AnswerLedger, TranscriptAssembler
from llm.client import InterviewApiClient
from models.errors import ApiError
from models.schemas import SessionSetup

SETUP = {"role": "Backend Engineer", "level": "Senior", "topics": ["caching"], "questionCount": 3}


def make_response(status=200, text="", content_type="text/plain", json_data=None):
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.text = text
    response.headers = {"content-type": content_type}
    if json_data is None:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = json_data
    return response


@pytest.fixture
def client():
    return InterviewApiClient(base_url="http://interview.test/", timeout=5)


@pytest.fixture
def mock_request():
    with patch("llm.client.requests.request") as mocked:
        yield mocked


def test_generate_questions_from_numbered_text(client, mock_request):
    mock_request.side_effect = [
        make_response(text="ok"),
        make_response(text="1. What is a cache?\n2) When does it go stale?\r\n\n3 - How do you invalidate it?"),
    ]

    questions = client.generate_questions(SETUP)

    assert questions == [
        "What is a cache?",
        "When does it go stale?",
        "How do you invalidate it?",
    ]
    health_call, generate_call = mock_request.call_args_list
    assert health_call.args == ("GET", "http://interview.test/healthz")
    assert generate_call.args == ("POST", "http://interview.test/generate-questions")
    prompt = generate_call.kwargs["json"]["prompt"]
    assert "Return EXACTLY 3 interview questions." in prompt
    assert "Role: Backend Engineer" in prompt
    assert generate_call.kwargs["timeout"] == 5


def test_generate_questions_from_json(client, mock_request):
    mock_request.side_effect = [
        make_response(text="ok"),
        make_response(
            text='{"questions": ["  First?  ", "", "Second?"]}',
            content_type="application/json; charset=utf-8",
        ),
    ]

    assert client.generate_questions(SETUP) == ["First?", "Second?"]


def test_malformed_json_rejected(client, mock_request):
    mock_request.side_effect = [
        make_response(text="ok"),
        make_response(text="{not json", content_type="application/json"),
    ]

    with pytest.raises(ApiError, match="Malformed JSON"):
        client.generate_questions(SETUP)


@pytest.mark.parametrize("body", [
    "<!DOCTYPE html><html><body>Oops</body></html>",
    "Cannot POST /generate-questions: Not Found",
])
def test_error_page_rejected(client, mock_request, body):
    mock_request.side_effect = [make_response(text="ok"), make_response(text=body)]

    with pytest.raises(ApiError, match="non-JSON"):
        client.generate_questions(SETUP)


def test_empty_question_list_rejected(client, mock_request):
    mock_request.side_effect = [make_response(text="ok"), make_response(text="\n  \n")]

    with pytest.raises(ApiError, match="no questions"):
        client.generate_questions(SETUP)


def test_unreachable_server(client, mock_request):
    mock_request.side_effect = requests.exceptions.ConnectionError("refused")

    assert client.health_check() is False
    with pytest.raises(ApiError, match="healthz"):
        client.generate_questions(SETUP)


def test_http_error_carries_status(client, mock_request):
    mock_request.return_value = make_response(status=503, text="overloaded")

    with pytest.raises(ApiError) as exc_info:
        client._request("POST", "/grade")

    assert exc_info.value.status_code == 503
    assert "HTTP 503" in exc_info.value.message


def _transcript():
    setup = SessionSetup.from_payload({"questions": ["Q1?", "Q2?"], "timerSec": 30, "role": "SRE"})
    ledger = AnswerLedger(setup.questions, setup.timer_sec)
    ledger.record_answer(0, "restart it", elapsed_seconds=12)
    return TranscriptAssembler.assemble(setup, ledger)


def test_grade_posts_transcript(client, mock_request):
    grade = {"overall": {"score": 70, "summary": "fine"}, "items": []}
    mock_request.return_value = make_response(json_data=grade, content_type="application/json")

    assert client.grade(_transcript()) == grade

    call = mock_request.call_args
    assert call.args == ("POST", "http://interview.test/grade")
    body = call.kwargs["json"]
    assert body["timerSec"] == 30
    assert body["setup"]["role"] == "SRE"
    assert [item["answer"] for item in body["items"]] == ["restart it", "(no answer)"]
    assert body["items"][0]["durationSec"] == 12


def test_grade_non_json_body(client, mock_request):
    mock_request.return_value = make_response(text="<html>gateway</html>")

    with pytest.raises(ApiError, match="not JSON"):
        client.grade(_transcript())
